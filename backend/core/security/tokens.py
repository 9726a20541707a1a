"""
JWT token service for authentication.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass
class TokenPayload:
    """JWT token payload structure."""

    sub: str  # Subject (user ID)
    exp: datetime  # Expiration time
    iat: datetime  # Issued at
    type: str  # Token type: "access" or "refresh"
    email: str | None = None
    role: str | None = None


class TokenService:
    """Service for creating and validating JWT tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_token_expire_minutes: int = 30,
        refresh_token_expire_days: int = 7,
    ):
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._access_token_expire_minutes = access_token_expire_minutes
        self._refresh_token_expire_days = refresh_token_expire_days

    @property
    def access_token_ttl_seconds(self) -> int:
        return self._access_token_expire_minutes * 60

    def _encode(self, payload: dict, lifetime: timedelta) -> str:
        now = datetime.now(UTC)
        payload = {**payload, "iat": now, "exp": now + lifetime}
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def create_access_token(
        self,
        user_id: str,
        email: str | None = None,
        role: str | None = None,
    ) -> str:
        """
        Create an access token.

        Args:
            user_id: User ID to encode in the token
            email: Optional email to include
            role: Optional role to include

        Returns:
            Encoded JWT access token
        """
        payload = {"sub": user_id, "type": ACCESS_TOKEN_TYPE}
        if email:
            payload["email"] = email
        if role:
            payload["role"] = role
        return self._encode(payload, timedelta(minutes=self._access_token_expire_minutes))

    def create_refresh_token(self, user_id: str) -> str:
        """Create a refresh token for ``user_id``."""
        return self._encode(
            {"sub": user_id, "type": REFRESH_TOKEN_TYPE},
            timedelta(days=self._refresh_token_expire_days),
        )

    def create_token_pair(
        self,
        user_id: str,
        email: str | None = None,
        role: str | None = None,
    ) -> tuple[str, str]:
        """Create both access and refresh tokens as ``(access, refresh)``."""
        access_token = self.create_access_token(user_id, email, role)
        refresh_token = self.create_refresh_token(user_id)
        return access_token, refresh_token

    def decode_token(self, token: str) -> TokenPayload | None:
        """
        Decode and validate a JWT token.

        Args:
            token: JWT token to decode

        Returns:
            TokenPayload if valid, None if invalid or expired
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
            )

            for required in ("sub", "exp", "type"):
                if required not in payload:
                    raise JWTError(f"Missing required field: {required}")

            return TokenPayload(
                sub=payload["sub"],
                exp=datetime.fromtimestamp(payload["exp"], tz=UTC),
                iat=datetime.fromtimestamp(payload.get("iat", 0), tz=UTC),
                type=payload["type"],
                email=payload.get("email"),
                role=payload.get("role"),
            )
        except JWTError:
            return None

    def verify_access_token(self, token: str) -> TokenPayload | None:
        """Decode ``token`` and accept it only if it is an access token."""
        payload = self.decode_token(token)
        if payload and payload.type == ACCESS_TOKEN_TYPE:
            return payload
        return None

    def verify_refresh_token(self, token: str) -> TokenPayload | None:
        """Decode ``token`` and accept it only if it is a refresh token."""
        payload = self.decode_token(token)
        if payload and payload.type == REFRESH_TOKEN_TYPE:
            return payload
        return None
