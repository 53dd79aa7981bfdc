# Signing keys, PKCE and JWT sign/verify.
# Created: 2026-10-18
#
# The RSA key pair lives only in process memory. The private half never leaves
# this module; resource servers verify tokens with the JWKS built from the
# public half.

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TTL_SECONDS = 3600
SIGNING_ALGORITHM = "RS256"
PKCE_VERIFIER_LENGTH = 128


class TokenError(Exception):
    """A bearer token could not be trusted."""


class InvalidSignature(TokenError):
    """Malformed token, bad signature, or wrong audience/issuer."""


class TokenExpired(TokenError):
    """Token signature is fine but ``exp`` has passed."""


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def s256_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding (RFC 7636 §4.2)."""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


class CryptoProvider:
    """RS256 signing, PKCE helpers and random identifiers.

    ``clock`` returns the current Unix time; tests inject a fake one to
    exercise expiry boundaries.
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._private_key: rsa.RSAPrivateKey | None = None
        self._public_key: rsa.RSAPublicKey | None = None
        self._kid: str = ""
        self.generate_key_pair()

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def generate_key_pair(self) -> None:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        public_key = private_key.public_key()
        kid = self._thumbprint(public_key)
        with self._lock:
            self._private_key = private_key
            self._public_key = public_key
            self._kid = kid
        logger.info("Generated RS256 signing key (kid=%s)", kid)

    def _ensure_keys(self) -> None:
        # Re-init only if something cleared the keys. Not a rotation policy.
        if self._private_key is None or self._public_key is None:
            self.generate_key_pair()

    @property
    def kid(self) -> str:
        self._ensure_keys()
        return self._kid

    @staticmethod
    def _thumbprint(public_key: rsa.RSAPublicKey) -> str:
        jwk = json.loads(RSAAlgorithm.to_jwk(public_key))
        canonical = json.dumps(
            {"e": jwk["e"], "kty": jwk["kty"], "n": jwk["n"]},
            separators=(",", ":"),
            sort_keys=True,
        )
        return _b64url(hashlib.sha256(canonical.encode()).digest())

    def public_jwk(self) -> dict[str, Any]:
        """Public verification key as a JWK (RFC 7517)."""
        self._ensure_keys()
        jwk = json.loads(RSAAlgorithm.to_jwk(self._public_key))
        jwk.update({"kid": self._kid, "use": "sig", "alg": SIGNING_ALGORITHM})
        return jwk

    def jwks(self) -> dict[str, list[dict[str, Any]]]:
        return {"keys": [self.public_jwk()]}

    # ------------------------------------------------------------------
    # PKCE
    # ------------------------------------------------------------------

    def pkce_challenge(self) -> PKCEPair:
        verifier = secrets.token_urlsafe(96)[:PKCE_VERIFIER_LENGTH]
        return PKCEPair(verifier=verifier, challenge=s256_challenge(verifier))

    def pkce_verify(self, verifier: str, challenge: str) -> bool:
        try:
            computed = s256_challenge(verifier)
        except UnicodeEncodeError:
            return False
        return hmac.compare_digest(computed.encode(), challenge.encode())

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def random_token(self) -> str:
        """URL-safe random string with 256 bits of entropy."""
        return secrets.token_urlsafe(32)

    def client_id(self) -> str:
        return secrets.token_hex(16)

    # ------------------------------------------------------------------
    # JWT
    # ------------------------------------------------------------------

    def sign(self, claims: dict[str, Any]) -> str:
        """Sign *claims* as an RS256 JWT. ``iat``/``exp`` are always set here."""
        self._ensure_keys()
        now = int(self._clock())
        payload = dict(claims)
        payload["iat"] = now
        payload["exp"] = now + ACCESS_TOKEN_TTL_SECONDS
        return jwt.encode(
            payload,
            self._private_key,
            algorithm=SIGNING_ALGORITHM,
            headers={"kid": self._kid},
        )

    def verify(
        self,
        token: str,
        audience: str | None = None,
        issuer: str | None = None,
    ) -> dict[str, Any]:
        """Return the claims of *token* or raise ``InvalidSignature``/``TokenExpired``."""
        self._ensure_keys()
        try:
            claims = jwt.decode(
                token,
                self._public_key,
                algorithms=[SIGNING_ALGORITHM],
                audience=audience,
                issuer=issuer,
                options={
                    "verify_exp": False,
                    "verify_aud": audience is not None,
                    "require": ["exp", "iat", "sub"],
                },
            )
        except jwt.InvalidTokenError as exc:
            raise InvalidSignature(str(exc)) from exc

        if self._clock() >= claims["exp"]:
            raise TokenExpired("Token expired")
        return claims
