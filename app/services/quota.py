"""
Quota Ledger - Subscription cycles, billing periods and usage counters.

NO DICTIONARIES - Admissions are UsageAdmission dataclasses.

Cycles and periods are created lazily, inside the request that needs them.
Creation for a user is serialized with a transaction-scoped advisory lock;
the counter row is additionally locked with SELECT FOR UPDATE so the
read-check-increment sequence cannot interleave with another submission.
The migration's exclusion constraint on overlapping cycles is the last line:
a conflict there is retried once before surfacing.
"""

import calendar
from datetime import UTC, datetime

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import BillingPeriod, SubscriptionCycle, UsageCounter
from app.exceptions import ConcurrencyError
from app.models.domain import PlanTier, UsageAdmission
from app.observability.metrics import metrics

logger = get_logger(__name__)

# First key of the two-key advisory lock; the second is the user id.
LEDGER_LOCK_NAMESPACE = 7301


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift a datetime by whole calendar months, clamping the day (Jan 31 + 1 = Feb 28/29)."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def month_window(
    cycle_start: datetime, cycle_end: datetime, now: datetime
) -> tuple[datetime, datetime]:
    """
    The monthly sub-window of a cycle that contains ``now``.

    Windows are anchored on the cycle start (start + k months), and the last
    window is cut at the cycle end.
    """
    k = (now.year - cycle_start.year) * 12 + (now.month - cycle_start.month)
    if add_months(cycle_start, k) > now:
        k -= 1
    k = max(k, 0)
    start = add_months(cycle_start, k)
    end = min(add_months(cycle_start, k + 1), cycle_end)
    return start, end


def submission_limit_for(plan: str) -> int | None:
    """Submissions allowed per billing period. None means unmetered."""
    if plan == PlanTier.FREE.value:
        return settings.free_plan_submission_limit
    if plan == PlanTier.LAUNCH.value:
        return settings.launch_plan_submission_limit
    return None


class QuotaLedger:
    """
    Usage metering across subscription cycles and monthly billing periods.

    Nothing here commits: admission runs inside the caller's transaction so
    the increment is only kept if the submission itself is persisted.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger with database session."""
        self.session = session

    async def admit_usage(self, user_id: int, plan: str) -> UsageAdmission:
        """
        Count one submission against the user's current billing period.

        The check is strict: with limit N, the Nth submission is admitted and
        the (N+1)th is rejected without touching the counter.

        Raises:
            ConcurrencyError: Ledger rows still conflict after one retry
        """
        for attempt in (1, 2):
            try:
                admission = await self._admit_once(user_id, plan)
            except IntegrityError as e:
                logger.warning(
                    "usage_ledger_conflict",
                    user_id=user_id,
                    attempt=attempt,
                    error=str(e),
                )
                await self.session.rollback()
                continue

            metrics.record_usage_admission(admission.admitted, plan)
            if not admission.admitted:
                logger.info(
                    "usage_limit_reached",
                    user_id=user_id,
                    plan=plan,
                    usage_count=admission.usage_count,
                    limit=admission.limit,
                    billing_period_id=admission.billing_period_id,
                )
            return admission

        metrics.record_error("ConcurrencyError", "admit_usage")
        raise ConcurrencyError(f"usage ledger of user {user_id}")

    async def get_or_create_current_cycle(
        self, user_id: int, now: datetime | None = None
    ) -> SubscriptionCycle:
        """
        Return the cycle containing ``now``, creating one starting now if none does.

        Calling this twice in a row returns the same cycle.
        """
        now = now or _utc_now()

        cycle = await self.find_active_cycle(user_id, now)
        if cycle is not None:
            return cycle

        await self.lock_user(user_id)
        cycle = await self.find_active_cycle(user_id, now)
        if cycle is not None:
            return cycle

        return await self._create_cycle(user_id, now)

    async def get_or_create_current_period(
        self, cycle: SubscriptionCycle, now: datetime | None = None
    ) -> BillingPeriod:
        """Return the billing period of ``cycle`` covering ``now``, creating it on a miss."""
        now = now or _utc_now()

        period = await self._find_period(cycle.id, now)
        if period is not None:
            return period

        start, end = month_window(cycle.start_date, cycle.end_date, now)
        return await self._create_period(cycle.id, start, end)

    async def _admit_once(self, user_id: int, plan: str) -> UsageAdmission:
        now = _utc_now()
        limit = submission_limit_for(plan)

        await self.lock_user(user_id)
        cycle = await self.get_or_create_current_cycle(user_id, now)
        period = await self.get_or_create_current_period(cycle, now)

        counter = await self._lock_counter(user_id, period.id)
        if counter is None:
            if limit is not None and limit <= 0:
                return UsageAdmission(
                    admitted=False, usage_count=0, limit=limit, billing_period_id=period.id
                )
            # First submission of the period starts the counter at 1
            counter = UsageCounter(user_id=user_id, billing_period_id=period.id, usage_count=1)
            self.session.add(counter)
            await self.session.flush()
            metrics.record_ledger_row_created("usage_counter")
            return UsageAdmission(
                admitted=True, usage_count=1, limit=limit, billing_period_id=period.id
            )

        if limit is not None and counter.usage_count >= limit:
            return UsageAdmission(
                admitted=False,
                usage_count=counter.usage_count,
                limit=limit,
                billing_period_id=period.id,
            )

        counter.usage_count += 1
        await self.session.flush()
        return UsageAdmission(
            admitted=True,
            usage_count=counter.usage_count,
            limit=limit,
            billing_period_id=period.id,
        )

    async def lock_user(self, user_id: int) -> None:
        """Take the per-user ledger lock until the transaction ends."""
        await self.session.execute(
            text("SELECT pg_advisory_xact_lock(:namespace, :user_id)"),
            {"namespace": LEDGER_LOCK_NAMESPACE, "user_id": user_id},
        )

    async def find_active_cycle(self, user_id: int, now: datetime) -> SubscriptionCycle | None:
        """Most recent (by end date) cycle whose [start, end) contains now."""
        stmt = (
            select(SubscriptionCycle)
            .where(
                SubscriptionCycle.user_id == user_id,
                SubscriptionCycle.start_date <= now,
                SubscriptionCycle.end_date > now,
            )
            .order_by(SubscriptionCycle.end_date.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _create_cycle(self, user_id: int, now: datetime) -> SubscriptionCycle:
        end = add_months(now, settings.subscription_cycle_months)
        cycle = SubscriptionCycle(user_id=user_id, start_date=now, end_date=end)
        self.session.add(cycle)
        await self.session.flush()

        first_end = min(add_months(now, 1), end)
        await self._create_period(cycle.id, now, first_end)

        metrics.record_ledger_row_created("subscription_cycle")
        logger.info(
            "subscription_cycle_created",
            user_id=user_id,
            cycle_id=cycle.id,
            start_date=now.isoformat(),
            end_date=end.isoformat(),
        )
        return cycle

    async def _find_period(self, cycle_id: int, now: datetime) -> BillingPeriod | None:
        stmt = (
            select(BillingPeriod)
            .where(
                BillingPeriod.subscription_cycle_id == cycle_id,
                BillingPeriod.start_date <= now,
                BillingPeriod.end_date > now,
            )
            .order_by(BillingPeriod.start_date.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _create_period(self, cycle_id: int, start: datetime, end: datetime) -> BillingPeriod:
        period = BillingPeriod(subscription_cycle_id=cycle_id, start_date=start, end_date=end)
        self.session.add(period)
        await self.session.flush()

        metrics.record_ledger_row_created("billing_period")
        logger.info(
            "billing_period_created",
            cycle_id=cycle_id,
            billing_period_id=period.id,
            start_date=start.isoformat(),
            end_date=end.isoformat(),
        )
        return period

    async def _lock_counter(self, user_id: int, billing_period_id: int) -> UsageCounter | None:
        """Lock the usage counter row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(UsageCounter)
            .where(
                UsageCounter.user_id == user_id,
                UsageCounter.billing_period_id == billing_period_id,
            )
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
