"""
API key management for the public API.
"""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.capabilities import Capability, Session
from core.plans import MAX_ACTIVE_API_KEYS
from core.security.api_keys import GeneratedApiKey, generate_api_key, hash_api_key, looks_like_api_key
from infrastructure.database.models.api_key import ApiKey
from infrastructure.database.models.base import utcnow
from infrastructure.database.models.user import User

logger = logging.getLogger(__name__)


class ApiKeyError(ValueError):
    """API key request not allowed."""


class ApiKeyService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def count_active(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count(ApiKey.id)).where(
                ApiKey.user_id == user_id,
                ApiKey.revoked_at.is_(None),
            )
        )
        return result.scalar_one()

    async def create_key(self, session: Session, name: str) -> tuple[ApiKey, GeneratedApiKey]:
        """
        Mint a key for the session's user.

        Returns the stored row and the generated key; the raw key is not
        recoverable afterwards.

        Raises:
            ApiKeyError: Without API access or when the key limit is reached
        """
        if not session.can(Capability.API_ACCESS):
            raise ApiKeyError("API access requires the Enterprise plan")

        user = session.user
        if await self.count_active(user.id) >= MAX_ACTIVE_API_KEYS:
            raise ApiKeyError(f"You can have at most {MAX_ACTIVE_API_KEYS} active API keys")

        generated = generate_api_key()
        api_key = ApiKey(
            user_id=user.id,
            name=name.strip() or "API key",
            key_hash=generated.key_hash,
            key_prefix=generated.display_prefix,
        )
        self.db.add(api_key)
        await self.db.flush()
        logger.info("Created API key %s", api_key.key_prefix, extra={"user_id": user.id})
        return api_key, generated

    async def list_keys(self, user_id: str, include_revoked: bool = False) -> list[ApiKey]:
        query = select(ApiKey).where(ApiKey.user_id == user_id)
        if not include_revoked:
            query = query.where(ApiKey.revoked_at.is_(None))
        result = await self.db.execute(query.order_by(ApiKey.created_at.desc()))
        return list(result.scalars().all())

    async def revoke_key(self, key_id: str, user_id: str) -> Optional[ApiKey]:
        result = await self.db.execute(
            select(ApiKey).where(ApiKey.id == key_id, ApiKey.user_id == user_id)
        )
        api_key = result.scalar_one_or_none()
        if api_key is None:
            return None
        if api_key.revoked_at is None:
            api_key.revoked_at = utcnow()
            await self.db.flush()
            logger.info("Revoked API key %s", api_key.key_prefix, extra={"user_id": user_id})
        return api_key

    async def authenticate(self, raw_key: str) -> Optional[tuple[ApiKey, User]]:
        """Resolve a raw key to its active key row and owner, stamping last use."""
        if not raw_key or not looks_like_api_key(raw_key):
            return None

        result = await self.db.execute(
            select(ApiKey, User)
            .join(User, User.id == ApiKey.user_id)
            .where(
                ApiKey.key_hash == hash_api_key(raw_key),
                ApiKey.revoked_at.is_(None),
            )
        )
        row = result.first()
        if row is None:
            return None

        api_key, user = row
        if not user.is_active:
            return None

        api_key.last_used_at = utcnow()
        await self.db.flush()
        return api_key, user
