"""
Tests for the Defense Window Calculator and defense submission.
"""
import asyncio
from datetime import timedelta

import pytest

from app.core.database import get_db_session
from app.core.errors import DefenseAlreadySubmitted, Forbidden, NotEligible, ValidationFailed
from app.core.utc import utc_now
from app.services.compliance import case_registry, decision_authority, defense_window
from app.services.compliance.defense_window import AttachmentRef


# ============================================================================
# ELIGIBILITY & WINDOW
# ============================================================================

class TestEligibility:

    @pytest.mark.parametrize("status", ["registered", "notified"])
    @pytest.mark.asyncio
    async def test_open_statuses_are_eligible(self, make_case, status):
        case = await make_case(status=status)
        assert defense_window.is_defense_eligible(case, has_defense=False)

    @pytest.mark.parametrize("status", ["in_defense", "archived", "warned", "fined"])
    @pytest.mark.asyncio
    async def test_other_statuses_are_not(self, make_case, status):
        case = await make_case(status=status)
        assert not defense_window.is_defense_eligible(case, has_defense=False)

    @pytest.mark.asyncio
    async def test_existing_defense_blocks(self, make_case):
        case = await make_case(status="notified")
        error = defense_window.eligibility_error(case, has_defense=True)
        assert isinstance(error, DefenseAlreadySubmitted)

    @pytest.mark.asyncio
    async def test_window_not_enforced_by_default(self, make_case):
        case = await make_case(created_at=utc_now() - timedelta(days=30))
        assert defense_window.is_defense_eligible(case, has_defense=False)

    @pytest.mark.asyncio
    async def test_window_enforced_when_enabled(self, make_case, settings, monkeypatch):
        monkeypatch.setattr(settings, "enforce_defense_window", True)
        late = await make_case(created_at=utc_now() - timedelta(days=8))
        on_time = await make_case(created_at=utc_now() - timedelta(days=6))

        assert not defense_window.is_defense_eligible(late, has_defense=False)
        assert defense_window.is_defense_eligible(on_time, has_defense=False)

    def test_deadline_is_seven_days_after_submission(self):
        submitted = utc_now()
        assert defense_window.compute_deadline(submitted) == submitted + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_window_days_remaining_and_urgency(self, make_case):
        now = utc_now()
        case = await make_case(created_at=now - timedelta(days=5))

        window = defense_window.defense_window(case, has_defense=False, now=now)
        assert window.closes_at == case.created_at + timedelta(days=7)
        assert window.days_remaining == 2
        assert window.is_urgent
        assert not window.is_expired

    @pytest.mark.asyncio
    async def test_window_expired(self, make_case):
        now = utc_now()
        case = await make_case(created_at=now - timedelta(days=10))

        window = defense_window.defense_window(case, has_defense=False, now=now)
        assert window.is_expired
        assert window.days_remaining == 0


# ============================================================================
# SUBMISSION
# ============================================================================

class TestSubmitDefense:

    @pytest.mark.asyncio
    async def test_registered_case_moves_to_in_defense(self, db_session, make_case, resident):
        case = await make_case(status="registered")

        defense = await defense_window.submit_defense(
            db_session, resident, case.id, resident.actor_id, "I was not home that night."
        )

        stored = await case_registry.get_case(db_session, case.id)
        assert stored.status == "in_defense"
        assert defense.deadline == defense.submitted_at + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_attachments_are_stored(self, db_session, make_case, resident):
        case = await make_case(status="notified")
        defense = await defense_window.submit_defense(
            db_session, resident, case.id, resident.actor_id, "See the receipt.",
            [AttachmentRef("https://files.example/receipt.pdf", "PDF", "Party receipt")],
        )

        attachments = await defense_window.list_attachments(db_session, defense.id)
        assert len(attachments) == 1
        assert attachments[0].file_type == "pdf"

    @pytest.mark.asyncio
    async def test_archived_case_not_eligible(self, db_session, make_case, resident):
        case = await make_case(status="archived")

        with pytest.raises(NotEligible) as exc:
            await defense_window.submit_defense(db_session, resident, case.id, resident.actor_id, "Too late?")
        assert exc.value.code == "not_eligible"

        assert await defense_window.get_defense(db_session, case.id) is None

    @pytest.mark.asyncio
    async def test_second_defense_rejected(self, db_session, make_case, resident):
        case = await make_case(status="notified")
        await defense_window.submit_defense(db_session, resident, case.id, resident.actor_id, "First answer")

        with pytest.raises(DefenseAlreadySubmitted):
            await defense_window.submit_defense(db_session, resident, case.id, resident.actor_id, "Second")

    @pytest.mark.asyncio
    async def test_concurrent_submissions_keep_one_defense(self, make_case, resident):
        case = await make_case(status="notified")

        async def attempt(text):
            async with get_db_session() as session:
                return await defense_window.submit_defense(session, resident, case.id, resident.actor_id, text)

        results = await asyncio.gather(attempt("A"), attempt("B"), return_exceptions=True)
        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert sum(1 for r in results if isinstance(r, DefenseAlreadySubmitted)) == 1

    @pytest.mark.asyncio
    async def test_blank_content(self, db_session, make_case, resident):
        case = await make_case()
        with pytest.raises(ValidationFailed):
            await defense_window.submit_defense(db_session, resident, case.id, resident.actor_id, "  ")

    @pytest.mark.asyncio
    async def test_resident_cannot_answer_for_someone_else(self, db_session, make_case, resident):
        case = await make_case(resident_id="resident-2")
        with pytest.raises(Forbidden):
            await defense_window.submit_defense(db_session, resident, case.id, "resident-2", "Not mine")
        with pytest.raises(Forbidden):
            await defense_window.submit_defense(db_session, resident, case.id, resident.actor_id, "Not mine")

    @pytest.mark.asyncio
    async def test_manager_cannot_submit(self, db_session, make_case, manager):
        case = await make_case()
        with pytest.raises(Forbidden):
            await defense_window.submit_defense(db_session, manager, case.id, "resident-1", "Hmm")

    @pytest.mark.asyncio
    async def test_deadline_frozen_after_policy_change(self, db_session, make_case, resident, settings, monkeypatch):
        case = await make_case()
        defense = await defense_window.submit_defense(
            db_session, resident, case.id, resident.actor_id, "Answer"
        )
        frozen = defense.deadline

        monkeypatch.setattr(settings, "defense_deadline_days", 10)
        stored = await defense_window.get_defense(db_session, case.id)
        assert stored.deadline == frozen


class TestDefenseQueue:

    @pytest.mark.asyncio
    async def test_queue_lists_cases_awaiting_ruling(self, db_session, make_case, resident, manager):
        waiting = await make_case(status="notified")
        decided = await make_case(status="notified")
        await make_case(status="notified")  # no defense yet

        for case in (waiting, decided):
            await defense_window.submit_defense(db_session, resident, case.id, resident.actor_id, "Answer")
        await decision_authority.record_decision(db_session, manager, decided.id, "archived", "Accepted")

        queue = await case_registry.defense_queue(db_session, "condo-1")
        assert [case.id for case, _ in queue] == [waiting.id]
