"""
Tests for the Quota Ledger.

Covers plan limits at the boundary, lazy cycle / period / counter creation,
and the retry-once behaviour on ledger conflicts.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from app.db.models import BillingPeriod, SubscriptionCycle, UsageCounter
from app.exceptions import ConcurrencyError
from app.models.api import RejectionKind
from app.services.quota import QuotaLedger, add_months, month_window, submission_limit_for

CYCLE_START = datetime(2026, 1, 31, 9, 30, tzinfo=UTC)


def _cycle(cycle_id: int = 1) -> SubscriptionCycle:
    return SubscriptionCycle(
        id=cycle_id,
        user_id=7,
        start_date=CYCLE_START,
        end_date=add_months(CYCLE_START, 1),
    )


def _period(period_id: int = 5) -> BillingPeriod:
    return BillingPeriod(
        id=period_id,
        subscription_cycle_id=1,
        start_date=CYCLE_START,
        end_date=add_months(CYCLE_START, 1),
    )


@pytest.fixture
def ledger(db_session: AsyncMock) -> QuotaLedger:
    """Ledger whose storage helpers are patched per test."""
    ledger = QuotaLedger(db_session)
    ledger.lock_user = AsyncMock()
    ledger.get_or_create_current_cycle = AsyncMock(return_value=_cycle())
    ledger.get_or_create_current_period = AsyncMock(return_value=_period())
    return ledger


class TestAddMonths:
    """Tests for calendar month arithmetic."""

    def test_simple_shift(self):
        assert add_months(datetime(2026, 3, 15, tzinfo=UTC), 1) == datetime(2026, 4, 15, tzinfo=UTC)

    def test_clamps_to_month_end(self):
        assert add_months(datetime(2026, 1, 31, tzinfo=UTC), 1) == datetime(2026, 2, 28, tzinfo=UTC)

    def test_leap_year(self):
        assert add_months(datetime(2028, 1, 31, tzinfo=UTC), 1) == datetime(2028, 2, 29, tzinfo=UTC)

    def test_year_rollover(self):
        assert add_months(datetime(2026, 12, 5, tzinfo=UTC), 1) == datetime(2027, 1, 5, tzinfo=UTC)

    def test_twelve_months(self):
        assert add_months(datetime(2026, 6, 1, tzinfo=UTC), 12) == datetime(2027, 6, 1, tzinfo=UTC)


class TestMonthWindow:
    """Tests for locating the monthly window of a multi-month cycle."""

    def test_first_month(self):
        start = datetime(2026, 1, 10, tzinfo=UTC)
        end = add_months(start, 12)

        window = month_window(start, end, datetime(2026, 1, 20, tzinfo=UTC))

        assert window == (start, datetime(2026, 2, 10, tzinfo=UTC))

    def test_before_anniversary_day_stays_in_previous_window(self):
        start = datetime(2026, 1, 10, tzinfo=UTC)
        end = add_months(start, 12)

        window = month_window(start, end, datetime(2026, 3, 5, tzinfo=UTC))

        assert window == (datetime(2026, 2, 10, tzinfo=UTC), datetime(2026, 3, 10, tzinfo=UTC))

    def test_last_window_cut_at_cycle_end(self):
        start = datetime(2026, 1, 10, tzinfo=UTC)
        end = datetime(2026, 3, 1, tzinfo=UTC)

        window = month_window(start, end, datetime(2026, 2, 20, tzinfo=UTC))

        assert window == (datetime(2026, 2, 10, tzinfo=UTC), end)


class TestPlanLimits:
    """Tests for submission_limit_for."""

    def test_free_plan(self):
        assert submission_limit_for("free") == 100

    def test_launch_plan(self):
        assert submission_limit_for("launch") == 1000

    def test_unknown_plan_is_unmetered(self):
        assert submission_limit_for("enterprise") is None


class TestAdmitUsage:
    """Tests for QuotaLedger.admit_usage."""

    async def test_first_submission_creates_counter_at_one(
        self, ledger: QuotaLedger, db_session: AsyncMock
    ):
        with patch.object(ledger, "_lock_counter", new_callable=AsyncMock, return_value=None):
            admission = await ledger.admit_usage(7, "free")

        assert admission.admitted is True
        assert admission.usage_count == 1
        added = db_session.add.call_args[0][0]
        assert isinstance(added, UsageCounter)
        assert added.usage_count == 1
        assert added.billing_period_id == 5

    async def test_hundredth_free_submission_admitted(self, ledger: QuotaLedger):
        counter = UsageCounter(id=1, user_id=7, billing_period_id=5, usage_count=99)

        with patch.object(ledger, "_lock_counter", new_callable=AsyncMock, return_value=counter):
            admission = await ledger.admit_usage(7, "free")

        assert admission.admitted is True
        assert counter.usage_count == 100

    async def test_hundred_and_first_free_submission_rejected(self, ledger: QuotaLedger):
        """At the limit the submission is rejected and the counter stays put."""
        counter = UsageCounter(id=1, user_id=7, billing_period_id=5, usage_count=100)

        with patch.object(ledger, "_lock_counter", new_callable=AsyncMock, return_value=counter):
            admission = await ledger.admit_usage(7, "free")

        assert admission.admitted is False
        assert admission.reason == RejectionKind.LIMIT_REACHED
        assert admission.usage_count == 100
        assert counter.usage_count == 100

    async def test_launch_plan_boundary(self, ledger: QuotaLedger):
        counter = UsageCounter(id=1, user_id=7, billing_period_id=5, usage_count=999)

        with patch.object(ledger, "_lock_counter", new_callable=AsyncMock, return_value=counter):
            first = await ledger.admit_usage(7, "launch")
            second = await ledger.admit_usage(7, "launch")

        assert first.admitted is True
        assert second.admitted is False
        assert counter.usage_count == 1000

    async def test_unmetered_plan_always_admitted(self, ledger: QuotaLedger):
        counter = UsageCounter(id=1, user_id=7, billing_period_id=5, usage_count=1_000_000)

        with patch.object(ledger, "_lock_counter", new_callable=AsyncMock, return_value=counter):
            admission = await ledger.admit_usage(7, "enterprise")

        assert admission.admitted is True
        assert admission.limit is None
        assert counter.usage_count == 1_000_001

    async def test_user_is_locked_before_counting(self, ledger: QuotaLedger):
        with patch.object(ledger, "_lock_counter", new_callable=AsyncMock, return_value=None):
            await ledger.admit_usage(7, "free")

        ledger.lock_user.assert_awaited_with(7)

    async def test_conflict_is_retried_once(self, ledger: QuotaLedger, db_session: AsyncMock):
        conflict = IntegrityError("INSERT", {}, Exception("exclusion violation"))
        counter = UsageCounter(id=1, user_id=7, billing_period_id=5, usage_count=3)

        with patch.object(
            ledger, "_lock_counter", new_callable=AsyncMock, side_effect=[conflict, counter]
        ):
            admission = await ledger.admit_usage(7, "free")

        assert admission.admitted is True
        assert counter.usage_count == 4
        db_session.rollback.assert_awaited_once()

    async def test_second_conflict_raises(self, ledger: QuotaLedger, db_session: AsyncMock):
        conflict = IntegrityError("INSERT", {}, Exception("exclusion violation"))

        with patch.object(
            ledger, "_lock_counter", new_callable=AsyncMock, side_effect=[conflict, conflict]
        ):
            with pytest.raises(ConcurrencyError):
                await ledger.admit_usage(7, "free")

        assert db_session.rollback.await_count == 2

    async def test_admission_never_commits(self, ledger: QuotaLedger, db_session: AsyncMock):
        """The caller's transaction decides whether the increment sticks."""
        counter = UsageCounter(id=1, user_id=7, billing_period_id=5, usage_count=3)

        with patch.object(ledger, "_lock_counter", new_callable=AsyncMock, return_value=counter):
            await ledger.admit_usage(7, "free")

        db_session.commit.assert_not_called()


class TestCurrentCycle:
    """Tests for get_or_create_current_cycle / get_or_create_current_period."""

    async def test_existing_cycle_is_returned(self, db_session: AsyncMock):
        ledger = QuotaLedger(db_session)
        cycle = _cycle()

        with (
            patch.object(ledger, "find_active_cycle", new_callable=AsyncMock, return_value=cycle),
            patch.object(ledger, "_create_cycle", new_callable=AsyncMock) as mock_create,
            patch.object(ledger, "lock_user", new_callable=AsyncMock) as mock_lock,
        ):
            result = await ledger.get_or_create_current_cycle(7)

        assert result is cycle
        mock_create.assert_not_called()
        mock_lock.assert_not_called()

    async def test_second_call_returns_same_cycle(self, db_session: AsyncMock):
        """Calling twice for a user with no cycle creates exactly one."""
        ledger = QuotaLedger(db_session)
        created: list[SubscriptionCycle] = []

        async def fake_find(user_id: int, now: datetime) -> SubscriptionCycle | None:
            return created[-1] if created else None

        async def fake_create(user_id: int, now: datetime) -> SubscriptionCycle:
            cycle = SubscriptionCycle(
                id=len(created) + 1, user_id=user_id, start_date=now, end_date=add_months(now, 1)
            )
            created.append(cycle)
            return cycle

        with (
            patch.object(ledger, "find_active_cycle", side_effect=fake_find),
            patch.object(ledger, "_create_cycle", side_effect=fake_create),
            patch.object(ledger, "lock_user", new_callable=AsyncMock),
        ):
            first = await ledger.get_or_create_current_cycle(7)
            second = await ledger.get_or_create_current_cycle(7)

        assert first is second
        assert len(created) == 1

    async def test_cycle_created_concurrently_is_reused_after_lock(self, db_session: AsyncMock):
        """A cycle that appears while waiting for the lock is not duplicated."""
        ledger = QuotaLedger(db_session)
        cycle = _cycle()

        with (
            patch.object(
                ledger, "find_active_cycle", new_callable=AsyncMock, side_effect=[None, cycle]
            ),
            patch.object(ledger, "_create_cycle", new_callable=AsyncMock) as mock_create,
            patch.object(ledger, "lock_user", new_callable=AsyncMock) as mock_lock,
        ):
            result = await ledger.get_or_create_current_cycle(7)

        assert result is cycle
        mock_lock.assert_awaited_once_with(7)
        mock_create.assert_not_called()

    async def test_new_cycle_gets_matching_first_period(self, db_session: AsyncMock):
        ledger = QuotaLedger(db_session)
        now = datetime(2026, 5, 2, 8, 0, tzinfo=UTC)

        cycle = await ledger._create_cycle(7, now)

        added = [call[0][0] for call in db_session.add.call_args_list]
        period = next(a for a in added if isinstance(a, BillingPeriod))
        assert cycle.start_date == now
        assert cycle.end_date == datetime(2026, 6, 2, 8, 0, tzinfo=UTC)
        assert (period.start_date, period.end_date) == (cycle.start_date, cycle.end_date)

    async def test_missing_period_is_created_for_current_month(self, db_session: AsyncMock):
        ledger = QuotaLedger(db_session)
        start = datetime(2026, 1, 10, tzinfo=UTC)
        cycle = SubscriptionCycle(id=1, user_id=7, start_date=start, end_date=add_months(start, 12))
        now = datetime(2026, 4, 12, tzinfo=UTC)

        with patch.object(ledger, "_find_period", new_callable=AsyncMock, return_value=None):
            period = await ledger.get_or_create_current_period(cycle, now)

        assert period.start_date == datetime(2026, 4, 10, tzinfo=UTC)
        assert period.end_date == datetime(2026, 5, 10, tzinfo=UTC)
        assert period.subscription_cycle_id == 1

    async def test_lock_user_uses_advisory_lock(self, db_session: AsyncMock):
        db_session.execute = AsyncMock(return_value=MagicMock())

        await QuotaLedger(db_session).lock_user(7)

        statement, params = db_session.execute.call_args[0]
        assert "pg_advisory_xact_lock" in str(statement)
        assert params["user_id"] == 7
