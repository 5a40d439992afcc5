"""
Session Service - Opaque bearer sessions for the tenant dashboard.

NO DICTIONARIES - Sessions are SessionData dataclasses.

Only the SHA-256 of a token is stored; the token itself is handed out once.
"""

import base64
import hashlib
import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import Session, User
from app.exceptions import AuthenticationError
from app.models.domain import SessionData

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def generate_session_token() -> str:
    return base64.b32encode(secrets.token_bytes(20)).decode("ascii").lower()


def session_id_for(token: str) -> str:
    """Lowercase hex SHA-256 of a session token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionService:
    """Create, validate (with sliding expiry) and invalidate sessions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_session(self, user_id: int) -> tuple[str, SessionData]:
        """Open a session for a user. Returns the raw token (shown once!) and the session."""
        token = generate_session_token()
        expires_at = _utc_now() + timedelta(days=settings.session_lifetime_days)
        record = Session(id=session_id_for(token), user_id=user_id, expires_at=expires_at)
        self.session.add(record)
        await self.session.flush()

        user = await self.session.get(User, user_id)
        await self.session.commit()

        logger.info("session_created", user_id=user_id, session_prefix=record.id[:8])
        return token, SessionData(
            session_id=record.id,
            user_id=user_id,
            plan=user.pricing_plan if user else "free",
            expires_at=expires_at,
        )

    async def validate_session_token(self, token: str) -> SessionData | None:
        """
        Resolve a bearer token to its session and user.

        Expired sessions are deleted. Sessions inside the renewal window get
        their expiry pushed out to a full lifetime again.
        """
        session_id = session_id_for(token)
        stmt = (
            select(Session, User)
            .join(User, User.id == Session.user_id)
            .where(Session.id == session_id)
        )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            return None

        record, user = row
        now = _utc_now()

        if now >= record.expires_at:
            await self.session.execute(delete(Session).where(Session.id == session_id))
            await self.session.commit()
            logger.info("session_expired", user_id=user.id, session_prefix=session_id[:8])
            return None

        renewal_window = timedelta(days=settings.session_renewal_window_days)
        if now >= record.expires_at - renewal_window:
            record.expires_at = now + timedelta(days=settings.session_lifetime_days)
            await self.session.commit()
            logger.debug("session_renewed", user_id=user.id, session_prefix=session_id[:8])

        return SessionData(
            session_id=record.id,
            user_id=user.id,
            plan=user.pricing_plan,
            expires_at=record.expires_at,
        )

    async def authenticate(self, token: str | None) -> SessionData:
        """
        Resolve a bearer token or fail.

        Raises:
            AuthenticationError: No token, or the token is unknown or expired
        """
        if not token:
            raise AuthenticationError("Authorization header required")

        session = await self.validate_session_token(token)
        if session is None:
            logger.info("session_rejected", session_prefix=session_id_for(token)[:8])
            raise AuthenticationError("Invalid or expired session")
        return session

    async def invalidate_session(self, session_id: str) -> None:
        await self.session.execute(delete(Session).where(Session.id == session_id))
        await self.session.commit()
        logger.info("session_invalidated", session_prefix=session_id[:8])
