"""Cognito access token verification with PyJWT."""

import logging
from dataclasses import dataclass
from typing import Any

import jwt

from tabletop_scribe.services.auth import AuthenticatedUser, TokenVerifier

logger = logging.getLogger(__name__)

JWKS_CACHE_SECONDS = 600


@dataclass
class CognitoTokenVerifier(TokenVerifier):
    """Verifies RS256 Cognito access tokens against the pool's JWKS."""

    issuer: str
    jwk_client: Any

    @classmethod
    def create(cls, issuer: str) -> "CognitoTokenVerifier":
        """Create a verifier that fetches and caches the pool's signing keys."""
        jwk_client = jwt.PyJWKClient(
            f"{issuer}/.well-known/jwks.json",
            cache_keys=True,
            lifespan=JWKS_CACHE_SECONDS,
        )
        return cls(issuer=issuer, jwk_client=jwk_client)

    def verify(self, token: str) -> AuthenticatedUser | None:
        """Verify signature, issuer and token use; return None on any failure."""
        try:
            signing_key = self.jwk_client.get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                issuer=self.issuer,
                options={"verify_aud": False},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("JWT verify failed: token expired")
            return None
        except jwt.PyJWTError as exc:
            logger.warning("JWT verify failed: %s", exc)
            return None
        if claims.get("token_use") != "access":
            logger.warning("JWT verify failed: not an access token")
            return None
        sub = claims.get("sub")
        if not sub:
            return None
        return AuthenticatedUser(
            sub=str(sub),
            email=claims.get("email"),
            username=claims.get("username"),
        )
