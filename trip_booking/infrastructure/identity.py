"""Bearer-JWT identity verification for trip owners (HS256 via python-jose)."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from jose import JWTError, jwt

from trip_booking.config import Settings, settings as default_settings
from trip_booking.domain.entities import Identity, utcnow
from trip_booking.domain.exceptions import Unauthorized


class JWTIdentityVerifier:
    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings) -> "JWTIdentityVerifier":
        return cls(cfg.jwt_secret_key, cfg.jwt_algorithm)

    def verify(self, credential: Optional[str]) -> Identity:
        """Decode the bearer token; ``sub`` is the user id."""
        if not credential:
            raise Unauthorized("Missing Bearer token", reason="missing_credentials")
        try:
            payload = jwt.decode(credential, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            raise Unauthorized("Invalid or expired token", reason="invalid_credentials")
        user_id = payload.get("sub")
        if not user_id:
            raise Unauthorized("Invalid token payload", reason="invalid_credentials")
        return Identity(user_id=str(user_id), email=payload.get("email"))

    def create_access_token(
        self,
        user_id: str,
        email: Optional[str] = None,
        expires_in: timedelta = timedelta(hours=1),
    ) -> str:
        """Sign a JWT for ``user_id`` (used by seed data and tests)."""
        claims = {"sub": user_id, "exp": utcnow() + expires_in}
        if email:
            claims["email"] = email
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)
