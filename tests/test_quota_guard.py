"""
Tests for the Quota Guard - subscription limits on case creation.
"""
import asyncio
from datetime import timedelta

import pytest

from app.core.database import get_db_session
from app.core.errors import QuotaExceeded, ValidationFailed, Forbidden, NotFound
from app.core.utc import utc_now
from app.services.compliance import case_registry, quota_guard
from app.services.compliance.case_registry import NewCase


def new_case(condo_id: str, case_type: str = "notice") -> NewCase:
    return NewCase(
        condominium_id=condo_id,
        type=case_type,
        title="Garbage left in the hallway",
        description="Bags left outside apartment 203 overnight",
        occurred_at=utc_now() - timedelta(hours=2),
        resident_id="resident-1",
    )


# ============================================================================
# AUTHORIZATION
# ============================================================================

class TestCheckAndAuthorize:

    @pytest.mark.asyncio
    async def test_limit_reached_raises_with_limit_and_used(self, db_session, make_subscription, make_case, condo_id):
        await make_subscription(notifications_limit=5)
        for _ in range(5):
            await make_case(case_type="notice", status="notified")

        with pytest.raises(QuotaExceeded) as exc:
            await quota_guard.check_and_authorize(db_session, condo_id, "notice")

        assert exc.value.details["limit"] == 5
        assert exc.value.details["used"] == 5
        assert exc.value.details["type"] == "notice"

    @pytest.mark.asyncio
    async def test_unlimited_always_authorized(self, db_session, make_subscription, make_case, condo_id):
        await make_subscription(warnings_limit=-1)
        for _ in range(25):
            await make_case(case_type="warning", status="warned")

        quota = await quota_guard.check_and_authorize(db_session, condo_id, "warning")
        assert quota.unlimited
        assert quota.used == 25
        assert quota.remaining is None

    @pytest.mark.asyncio
    async def test_under_limit_authorized(self, db_session, make_subscription, make_case, condo_id):
        await make_subscription(fines_limit=3)
        await make_case(case_type="fine", status="fined")

        quota = await quota_guard.check_and_authorize(db_session, condo_id, "fine")
        assert quota.limit == 3
        assert quota.used == 1
        assert quota.remaining == 2

    @pytest.mark.asyncio
    async def test_types_counted_separately(self, db_session, make_subscription, make_case, condo_id):
        await make_subscription(notifications_limit=1, warnings_limit=1)
        await make_case(case_type="warning", status="warned")

        quota = await quota_guard.check_and_authorize(db_session, condo_id, "notice")
        assert quota.used == 0

    @pytest.mark.asyncio
    async def test_no_subscription(self, db_session, condo_id):
        with pytest.raises(QuotaExceeded) as exc:
            await quota_guard.check_and_authorize(db_session, condo_id, "warning")
        assert exc.value.details == {"type": "warning", "limit": 0, "used": 0, "reason": "no_subscription"}

    @pytest.mark.asyncio
    async def test_inactive_subscription(self, db_session, make_subscription, condo_id):
        await make_subscription(active=False)
        with pytest.raises(QuotaExceeded) as exc:
            await quota_guard.check_and_authorize(db_session, condo_id, "warning")
        assert exc.value.details["reason"] == "inactive_subscription"


# ============================================================================
# USAGE COUNTING
# ============================================================================

class TestUsageCounting:

    @pytest.mark.asyncio
    async def test_only_counted_statuses_are_used(self, db_session, make_subscription, make_case, condo_id):
        subscription = await make_subscription(notifications_limit=10)
        for status in ["registered", "notified", "in_defense", "archived", "warned", "fined"]:
            await make_case(case_type="notice", status=status)

        quota = await quota_guard.measure(db_session, subscription, "notice")
        assert quota.used == 4
        assert quota.pending == 2

    @pytest.mark.asyncio
    async def test_period_bounds_are_inclusive(self, db_session, make_subscription, make_case, condo_id):
        start = utc_now() - timedelta(days=10)
        end = utc_now() - timedelta(days=1)
        subscription = await make_subscription(period_start=start, period_end=end)

        await make_case(case_type="warning", status="warned", created_at=start)
        await make_case(case_type="warning", status="warned", created_at=end)
        await make_case(case_type="warning", status="warned", created_at=start - timedelta(seconds=1))
        await make_case(case_type="warning", status="warned", created_at=end + timedelta(seconds=1))

        quota = await quota_guard.measure(db_session, subscription, "warning")
        assert quota.used == 2

    @pytest.mark.asyncio
    async def test_other_condominium_not_counted(self, db_session, make_subscription, make_case, condo_id):
        subscription = await make_subscription()
        await make_case(condominium_id="condo-2", case_type="warning", status="warned")

        quota = await quota_guard.measure(db_session, subscription, "warning")
        assert quota.used == 0

    @pytest.mark.asyncio
    async def test_pending_cases_hold_a_slot(self, db_session, make_subscription, make_case, condo_id):
        await make_subscription(warnings_limit=1)
        await make_case(case_type="warning", status="registered")

        with pytest.raises(QuotaExceeded) as exc:
            await quota_guard.check_and_authorize(db_session, condo_id, "warning")
        assert exc.value.details["used"] == 0
        assert exc.value.details["pending"] == 1

    @pytest.mark.asyncio
    async def test_pending_reservation_can_be_disabled(
        self, db_session, make_subscription, make_case, condo_id, settings, monkeypatch
    ):
        monkeypatch.setattr(settings, "quota_counts_pending_cases", False)
        await make_subscription(warnings_limit=1)
        await make_case(case_type="warning", status="registered")

        quota = await quota_guard.check_and_authorize(db_session, condo_id, "warning")
        assert quota.used == 0
        assert quota.pending == 0


# ============================================================================
# CONCURRENCY
# ============================================================================

class TestConcurrentCreation:

    @pytest.mark.asyncio
    async def test_two_creates_one_slot_exactly_one_wins(self, make_subscription, manager, condo_id):
        await make_subscription(notifications_limit=1)

        async def attempt():
            async with get_db_session() as session:
                return await case_registry.create_case(session, manager, new_case(condo_id))

        results = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

        created = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, QuotaExceeded)]
        assert len(created) == 1
        assert len(rejected) == 1

        async with get_db_session() as session:
            cases = await case_registry.list_cases(session, condominium_id=condo_id)
        assert len(cases) == 1


# ============================================================================
# SUBSCRIPTIONS & REPORTS
# ============================================================================

class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_upsert_creates_then_updates(self, db_session, system_actor, condo_id):
        first = await quota_guard.upsert_subscription(
            db_session, system_actor, condo_id, "start", True, None, None, 10, 10, 0
        )
        second = await quota_guard.upsert_subscription(
            db_session, system_actor, condo_id, "enterprise", True, None, None, -1, -1, -1
        )
        assert first.id == second.id
        assert second.plan == "enterprise"
        assert second.notifications_limit == -1

    @pytest.mark.asyncio
    async def test_upsert_rejects_inverted_period(self, db_session, system_actor, condo_id):
        now = utc_now()
        with pytest.raises(ValidationFailed):
            await quota_guard.upsert_subscription(
                db_session, system_actor, condo_id, "start", True, now, now - timedelta(days=1), 10, 10, 0
            )

    @pytest.mark.asyncio
    async def test_upsert_rejects_limit_below_unlimited(self, db_session, system_actor, condo_id):
        with pytest.raises(ValidationFailed) as exc:
            await quota_guard.upsert_subscription(
                db_session, system_actor, condo_id, "start", True, None, None, -2, 10, 0
            )
        assert exc.value.field == "notifications_limit"

    @pytest.mark.asyncio
    async def test_manager_cannot_upsert(self, db_session, manager, condo_id):
        with pytest.raises(Forbidden):
            await quota_guard.upsert_subscription(
                db_session, manager, condo_id, "start", True, None, None, 10, 10, 0
            )

    @pytest.mark.asyncio
    async def test_usage_report_lists_all_types(self, db_session, make_subscription, make_case, condo_id):
        await make_subscription(notifications_limit=5, warnings_limit=-1, fines_limit=2)
        await make_case(case_type="fine", status="fined")

        report = await quota_guard.usage_report(db_session, condo_id)
        usage = {u["type"]: u for u in report["usage"]}

        assert set(usage) == {"warning", "notice", "fine"}
        assert usage["fine"]["used"] == 1
        assert usage["fine"]["remaining"] == 1
        assert usage["warning"]["unlimited"] is True

    @pytest.mark.asyncio
    async def test_usage_report_without_subscription(self, db_session, condo_id):
        with pytest.raises(NotFound):
            await quota_guard.usage_report(db_session, condo_id)
