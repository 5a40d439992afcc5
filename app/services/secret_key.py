"""
Secret Key Service - Generation, hashing and revocation of app secret keys.

NO DICTIONARIES - All data uses typed models/dataclasses.

Keys are hashed with HMAC-SHA256 under the process-wide SECRET and looked
up by that hash; the plaintext is returned once at creation and never stored.
"""

import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import App, SecretKey
from app.exceptions import OwnershipError, ResourceNotFoundError

logger = get_logger(__name__)

KEY_PREFIX = "tr_"


@dataclass(frozen=True)
class GeneratedSecretKey:
    """Newly generated secret key (includes plaintext, shown once)."""

    key_id: int
    plaintext_key: str
    name: str
    created_at: datetime


def generate_secret_key() -> str:
    """Generate a new plaintext key: tr_ + base64 of 32 random bytes."""
    random_bytes = secrets.token_bytes(32)
    return KEY_PREFIX + base64.b64encode(random_bytes).decode("ascii")


def hash_secret_key(plaintext_key: str, secret: str | None = None) -> str:
    """Keyed hash of a secret key, base64 encoded."""
    key = (secret if secret is not None else settings.secret).encode("utf-8")
    digest = hmac.new(key, plaintext_key.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class SecretKeyService:
    """Service for secret key management."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_plaintext(self, plaintext_key: str) -> SecretKey | None:
        """Look up a stored key by the hash of a presented plaintext key."""
        key_hash = hash_secret_key(plaintext_key)
        result = await self.db.execute(select(SecretKey).where(SecretKey.hash == key_hash))
        return result.scalars().first()

    async def create_secret_key(self, app: App, name: str) -> GeneratedSecretKey:
        """
        Create a key for an app and store its hash.

        Returns:
            GeneratedSecretKey with plaintext key (shown once!)
        """
        plaintext_key = generate_secret_key()
        record = SecretKey(app_id=app.id, name=name, hash=hash_secret_key(plaintext_key))
        self.db.add(record)
        await self.db.flush()
        await self.db.commit()

        logger.info(
            "secret_key_created",
            key_id=record.id,
            app_id=app.id,
            hash_prefix=record.hash[:8],
        )

        return GeneratedSecretKey(
            key_id=record.id,
            plaintext_key=plaintext_key,
            name=record.name,
            created_at=record.created_at,
        )

    async def revoke_secret_key(self, key_id: int, user_id: int) -> None:
        """
        Delete a key owned (through its app) by the given user.

        Raises:
            ResourceNotFoundError: Key doesn't exist
            OwnershipError: Key belongs to another user's app
        """
        stmt = (
            select(SecretKey, App.user_id)
            .join(App, App.id == SecretKey.app_id)
            .where(SecretKey.id == key_id)
        )
        row = (await self.db.execute(stmt)).first()
        if row is None:
            raise ResourceNotFoundError("secret_key", key_id)

        record, owner_id = row
        if owner_id != user_id:
            raise OwnershipError("secret_key", key_id)

        await self.db.delete(record)
        await self.db.commit()

        logger.info("secret_key_revoked", key_id=key_id, app_id=record.app_id)
