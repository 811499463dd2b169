"""JWT session tokens for the dashboard and admin APIs.

Tokens are issued by the platform's login flow and signed with a shared
secret (HS256 by default). Only access tokens are accepted here.
"""
from datetime import timedelta
from typing import Dict, Optional
from uuid import UUID

import jwt

from metergate.config import settings
from metergate.utils.clock import utcnow


class JWTAuth:
    """JWT authentication handler with shared-secret signing."""

    def __init__(self, secret_key: str | None = None, algorithm: str | None = None):
        """Initialize JWT auth from settings."""
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.access_token_expire_minutes = settings.access_token_expire_minutes

    def create_access_token(
        self,
        user_id: UUID,
        email: str,
        role: str,
        additional_claims: Optional[Dict] = None,
        expires_in: timedelta | None = None,
    ) -> str:
        """
        Create JWT access token.

        Args:
            user_id: User UUID
            email: User email
            role: User role (USER or SUPERADMIN); informational only
            additional_claims: Additional JWT claims
            expires_in: Lifetime override; defaults to the configured expiry

        Returns:
            Encoded JWT token
        """
        now = utcnow()
        expire = now + (expires_in or timedelta(minutes=self.access_token_expire_minutes))

        claims = {
            "sub": str(user_id),
            "email": email,
            "role": role,
            "iat": now,
            "exp": expire,
            "type": "access",
        }

        if additional_claims:
            claims.update(additional_claims)

        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> Dict:
        """
        Verify and decode an access token.

        Raises:
            jwt.ExpiredSignatureError: If token is expired
            jwt.InvalidTokenError: If token is invalid or not an access token
        """
        payload = jwt.decode(
            token,
            self.secret_key,
            algorithms=[self.algorithm],
            options={"require": ["sub", "exp"]},
        )

        if payload.get("type") != "access":
            raise jwt.InvalidTokenError("Not an access token")

        return payload


# Global JWT auth instance
jwt_auth = JWTAuth()
