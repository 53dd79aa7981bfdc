"""OAuth 2.1 authorization server that signs users in with Google."""

__version__ = "0.1.0"
