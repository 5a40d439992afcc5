"""
Billing State Service - Plan and subscription-cycle mutations.

NO DICTIONARIES - Operates on ORM rows and typed enums.

Called when a paid subscription starts or is revoked, and by the session
dependency when a user has no running cycle (a lapsed subscription falls
back to the free plan).
"""

from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import BillingPeriod, SubscriptionCycle, User
from app.exceptions import ResourceNotFoundError
from app.models.domain import PlanTier, SubscriptionInterval
from app.observability.metrics import metrics
from app.services.quota import QuotaLedger, add_months

logger = get_logger(__name__)

PERIODS_PER_INTERVAL: dict[SubscriptionInterval, int] = {
    SubscriptionInterval.MONTH: 1,
    SubscriptionInterval.YEAR: 12,
}


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def monthly_windows(
    start: datetime, end: datetime, count: int
) -> list[tuple[datetime, datetime]]:
    """Split [start, end) into at most ``count`` month-long windows, the last cut at end."""
    windows: list[tuple[datetime, datetime]] = []
    for k in range(count):
        window_start = add_months(start, k)
        if window_start >= end:
            break
        window_end = end if k == count - 1 else min(add_months(start, k + 1), end)
        windows.append((window_start, window_end))
    return windows


class BillingStateService:
    """Read and mutate a user's plan and subscription cycles."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.ledger = QuotaLedger(session)

    async def current_plan(self, user_id: int) -> str:
        """
        Raises:
            ResourceNotFoundError: Unknown user
        """
        result = await self.session.execute(select(User.pricing_plan).where(User.id == user_id))
        plan = result.scalar_one_or_none()
        if plan is None:
            raise ResourceNotFoundError("user", user_id)
        return plan

    async def ensure_active_cycle(self, user_id: int) -> bool:
        """
        Make sure a cycle covers now. Returns True when one had to be created.

        A user without a running cycle has no paid subscription either, so the
        plan is reset to free alongside the new cycle.
        """
        now = _utc_now()
        if await self.ledger.find_active_cycle(user_id, now) is not None:
            return False

        await self.ledger.get_or_create_current_cycle(user_id, now)
        await self.session.execute(
            update(User).where(User.id == user_id).values(pricing_plan=PlanTier.FREE.value)
        )
        await self.session.commit()

        logger.info("subscription_lapsed_to_free", user_id=user_id)
        return True

    async def start_subscription(
        self,
        user_id: int,
        plan: str,
        start: datetime,
        end: datetime,
        interval: SubscriptionInterval,
    ) -> SubscriptionCycle:
        """
        Switch a user onto a paid plan for [start, end).

        Any cycle still running is closed at now. The new cycle never starts
        before now, so it cannot overlap the one just closed.
        """
        if end <= start:
            raise ValueError("Subscription end must be after its start")

        now = _utc_now()
        await self.ledger.lock_user(user_id)

        running = await self._latest_cycle(user_id)
        if running is not None and running.end_date > now:
            await self._close_cycle(running, now)

        cycle_start = max(start, now)
        if cycle_start >= end:
            raise ValueError("Subscription has already ended")

        cycle = SubscriptionCycle(user_id=user_id, start_date=cycle_start, end_date=end)
        self.session.add(cycle)
        await self.session.flush()

        for window_start, window_end in monthly_windows(
            cycle_start, end, PERIODS_PER_INTERVAL[interval]
        ):
            self.session.add(
                BillingPeriod(
                    subscription_cycle_id=cycle.id,
                    start_date=window_start,
                    end_date=window_end,
                )
            )

        await self.session.execute(
            update(User).where(User.id == user_id).values(pricing_plan=plan)
        )
        await self.session.flush()
        await self.session.commit()

        metrics.record_ledger_row_created("subscription_cycle")
        logger.info(
            "subscription_started",
            user_id=user_id,
            plan=plan,
            interval=interval.value,
            cycle_id=cycle.id,
            start_date=cycle_start.isoformat(),
            end_date=end.isoformat(),
        )
        return cycle

    async def revoke_subscription(self, user_id: int) -> None:
        """End the latest cycle now and drop the user to the free plan."""
        now = _utc_now()
        await self.ledger.lock_user(user_id)

        latest = await self._latest_cycle(user_id)
        if latest is not None and latest.end_date > now:
            await self._close_cycle(latest, now)

        await self.session.execute(
            update(User).where(User.id == user_id).values(pricing_plan=PlanTier.FREE.value)
        )
        await self.session.commit()

        logger.info(
            "subscription_revoked",
            user_id=user_id,
            cycle_id=latest.id if latest is not None else None,
        )

    async def _latest_cycle(self, user_id: int) -> SubscriptionCycle | None:
        stmt = (
            select(SubscriptionCycle)
            .where(SubscriptionCycle.user_id == user_id)
            .order_by(SubscriptionCycle.end_date.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _close_cycle(self, cycle: SubscriptionCycle, now: datetime) -> None:
        """End a cycle at now, cutting its periods to match."""
        if cycle.start_date >= now:
            # Not started yet: nothing was metered in it
            await self.session.delete(cycle)
            await self.session.flush()
            return

        cycle.end_date = now
        await self.session.execute(
            update(BillingPeriod)
            .where(
                BillingPeriod.subscription_cycle_id == cycle.id,
                BillingPeriod.start_date < now,
                BillingPeriod.end_date > now,
            )
            .values(end_date=now)
        )
        await self.session.execute(
            delete(BillingPeriod).where(
                BillingPeriod.subscription_cycle_id == cycle.id,
                BillingPeriod.start_date >= now,
            )
        )
        await self.session.flush()
