"""
API key schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiKeyCreateRequest(BaseModel):
    name: str = Field("API key", min_length=1, max_length=100)


class ApiKeyResponse(BaseModel):
    """Stored key metadata; the raw key is never returned again."""

    id: str
    name: str
    key_prefix: str
    created_at: datetime
    last_used_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Returned once at creation; ``key`` cannot be retrieved later."""

    key: str


class ApiKeyListResponse(BaseModel):
    items: list[ApiKeyResponse]
    total: int
