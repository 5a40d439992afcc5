"""
FastAPI Dependencies - Session authentication and shared services.

NO DICTIONARIES - All dependencies return typed objects.
"""

from dataclasses import replace

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.session import get_write_db
from app.exceptions import AuthenticationError
from app.models.domain import PlanTier, SessionData
from app.services.billing_state import BillingStateService
from app.services.notifications import PushNotifier
from app.services.sessions import SessionService

logger = get_logger(__name__)

# Bearer token scheme for dashboard sessions
bearer_scheme = HTTPBearer(auto_error=False)

_notifier: PushNotifier | None = None


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_write_db),
) -> SessionData:
    """
    FastAPI dependency resolving ``Authorization: Bearer <session token>``.

    A user without a running subscription cycle gets a fresh one and is put
    back on the free plan.

    Usage:
        @router.get("/apps")
        async def list_apps(user: SessionData = Depends(get_current_user)):
            ...

    Raises:
        HTTPException 401 if no token or unknown / expired token
    """
    token = credentials.credentials if credentials is not None else None
    try:
        session = await SessionService(db).authenticate(token)
    except AuthenticationError as exc:
        raise _unauthorized(exc.reason) from exc

    if await BillingStateService(db).ensure_active_cycle(session.user_id):
        logger.info("session_plan_reset", user_id=session.user_id, previous_plan=session.plan)
        session = replace(session, plan=PlanTier.FREE.value)

    return session


def get_notifier() -> PushNotifier:
    """Process-wide push notifier."""
    global _notifier
    if _notifier is None:
        _notifier = PushNotifier()
    return _notifier
