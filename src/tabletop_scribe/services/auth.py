"""Bearer token authentication."""

from dataclasses import dataclass
from typing import Protocol

_BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity extracted from a verified access token."""

    sub: str
    email: str | None = None
    username: str | None = None


class TokenVerifier(Protocol):
    """Interface for verifying access tokens."""

    def verify(self, token: str) -> AuthenticatedUser | None:
        """Return the token's user, or None when the token is not valid."""


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an Authorization header, if it is a bearer header."""
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX) :].strip()
    return token or None
