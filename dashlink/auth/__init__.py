"""
Credential handling: storage, advisory decoding, refresh and session events.

AuthService lives in dashlink.auth.service (it depends on the client context).
"""

from dashlink.auth.refresher import TokenPair, TokenRefresher
from dashlink.auth.session import SessionEvents, SessionListener
from dashlink.auth.tokens import Credential, TokenClaims, TokenStore, decode_token

__all__ = [
    "Credential",
    "TokenClaims",
    "TokenStore",
    "decode_token",
    "SessionEvents",
    "SessionListener",
    "TokenPair",
    "TokenRefresher",
]
