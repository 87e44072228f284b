"""Data models for stored OAuth tokens."""

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field


class TokenStatus(str, Enum):
    """State of the stored token for a service."""

    VALID = "valid"
    EXPIRED = "expired"
    MISSING = "missing"
    INVALID = "invalid"


class OAuthToken(BaseModel):
    """OAuth2 access token with its refresh token and granted scopes.

    Attributes:
        access_token: Bearer token sent to Google APIs.
        refresh_token: Long-lived token used to obtain new access tokens.
        expires_at: Expiry time (timezone-aware, UTC).
        scopes: Granted OAuth scopes.
        token_type: Token type, always "Bearer" for Google.
    """

    access_token: str = Field(..., description="OAuth access token")
    refresh_token: str | None = Field(default=None, description="OAuth refresh token")
    expires_at: datetime = Field(..., description="Access token expiry (UTC)")
    scopes: list[str] = Field(default_factory=list, description="Granted scopes")
    token_type: str = Field(default="Bearer", description="Token type")

    def is_expired(self, buffer_seconds: int = 60) -> bool:
        """Check whether the token is expired or expires within the buffer.

        Args:
            buffer_seconds: Treat the token as expired this many seconds early.

        Returns:
            True if the token should be refreshed before use.
        """
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) + timedelta(seconds=buffer_seconds) >= expires_at


class TokenMetadata(BaseModel):
    service_name: str = Field(..., description="Service the token belongs to")
    provider: str = Field(default="google", description="OAuth provider")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the token was first stored",
    )
    last_refreshed: datetime | None = Field(default=None, description="Last refresh time")


class StoredToken(BaseModel):
    """Versioned on-disk record combining a token and its metadata."""

    version: int = Field(default=1, description="Storage format version")
    metadata: TokenMetadata
    token: OAuthToken
