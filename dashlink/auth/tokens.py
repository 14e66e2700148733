"""
Credential storage and advisory token decoding.

Decoded claims are display data only (user name, email, expiry used to time
renewals). Nothing here verifies a signature; the backend remains the sole
authority on whether a token is accepted.
"""

import base64
import binascii
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger


@dataclass(frozen=True)
class Credential:
    """Access/refresh token pair."""

    access_token: str
    refresh_token: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"accessToken": self.access_token, "refreshToken": self.refresh_token}


def decode_token(token: str | None) -> dict[str, Any] | None:
    """
    Best-effort decode of a JWT payload segment.

    Returns None on any malformed input instead of raising.
    """
    if not token:
        return None
    try:
        segment = token.split(".")[1]
        padded = segment + "=" * (-len(segment) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded).decode("utf-8"))
    except (IndexError, ValueError, binascii.Error, UnicodeDecodeError) as e:
        logger.debug(f"Could not decode token payload: {e}")
        return None
    return payload if isinstance(payload, dict) else None


@dataclass(frozen=True)
class TokenClaims:
    """Subset of access token claims the client cares about."""

    expires_at: float | None
    subject: str | None
    username: str | None
    email: str | None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TokenClaims":
        exp = payload.get("exp")
        subject = payload.get("userId") or payload.get("sub")
        return cls(
            expires_at=float(exp) if isinstance(exp, (int, float)) else None,
            subject=str(subject) if subject is not None else None,
            username=payload.get("username") or payload.get("preferred_username"),
            email=payload.get("email"),
        )

    @classmethod
    def from_token(cls, token: str | None) -> "TokenClaims | None":
        payload = decode_token(token)
        return cls.from_payload(payload) if payload is not None else None

    def seconds_until_expiry(self, now: float | None = None) -> float:
        """Seconds left before expiry; a token without exp counts as expired."""
        if self.expires_at is None:
            return 0.0
        now = time.time() if now is None else now
        return self.expires_at - now


class TokenStore:
    """
    Holds the single current credential pair.

    With a path, the pair (and only the pair) survives restarts as a small
    JSON file. Expiry is never stored; it is recomputed from the token.
    """

    def __init__(self, path: str | Path | None = None):
        self._path = Path(path) if path else None
        self._credential: Credential | None = None
        if self._path is not None:
            self._credential = self._load()

    @property
    def access_token(self) -> str | None:
        return self._credential.access_token if self._credential else None

    @property
    def refresh_token(self) -> str | None:
        return self._credential.refresh_token if self._credential else None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token and self.refresh_token)

    def get(self) -> Credential | None:
        return self._credential

    def set(self, credential: Credential) -> None:
        """Replace the whole pair."""
        self._credential = credential
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(credential.to_dict()))

    def clear(self) -> None:
        self._credential = None
        if self._path is not None:
            self._path.unlink(missing_ok=True)

    def _load(self) -> Credential | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable token store {self._path}: {e}")
            return None
        access_token = data.get("accessToken") if isinstance(data, dict) else None
        if not access_token:
            return None
        return Credential(access_token=access_token, refresh_token=data.get("refreshToken"))
