"""
Tests for the Notification Tracker - sends and delivery callbacks.
"""
from datetime import timedelta

import pytest

from app.core.errors import Forbidden, NotFound, ValidationFailed
from app.core.utc import utc_now
from app.services.compliance import case_registry, notification_tracker


class TestRecordSent:

    @pytest.mark.asyncio
    async def test_first_send_marks_notified(self, db_session, make_case, manager):
        case = await make_case(status="registered")

        sent = await notification_tracker.record_sent(db_session, manager, case.id, "WhatsApp")

        assert sent.status_changed
        assert sent.case_status == "notified"
        assert sent.event.channel == "whatsapp"
        assert sent.event.resident_id == "resident-1"

    @pytest.mark.asyncio
    async def test_later_sends_leave_status(self, db_session, make_case, manager):
        case = await make_case(status="registered")
        await notification_tracker.record_sent(db_session, manager, case.id, "whatsapp")
        again = await notification_tracker.record_sent(db_session, manager, case.id, "email")

        assert not again.status_changed
        assert again.case_status == "notified"
        assert len(await notification_tracker.list_notifications(db_session, case.id)) == 2

    @pytest.mark.parametrize("status", ["in_defense", "archived", "fined"])
    @pytest.mark.asyncio
    async def test_send_never_moves_later_statuses(self, db_session, make_case, manager, status):
        case = await make_case(status=status)
        sent = await notification_tracker.record_sent(db_session, manager, case.id, "email")

        assert not sent.status_changed
        assert (await case_registry.get_case(db_session, case.id)).status == status

    @pytest.mark.asyncio
    async def test_blank_channel(self, db_session, make_case, manager):
        case = await make_case()
        with pytest.raises(ValidationFailed):
            await notification_tracker.record_sent(db_session, manager, case.id, "")

    @pytest.mark.asyncio
    async def test_failed_send_changes_nothing(self, db_session, make_case):
        case = await make_case(status="registered")
        notification_tracker.record_send_failure(case.id, "whatsapp", "number unreachable")

        assert (await case_registry.get_case(db_session, case.id)).status == "registered"
        assert await notification_tracker.list_notifications(db_session, case.id) == []


class TestDeliveryStages:

    @pytest.mark.asyncio
    async def test_delivered_twice_same_as_once(self, db_session, make_case, manager, system_actor):
        case = await make_case(created_at=utc_now() - timedelta(days=1))
        sent = await notification_tracker.record_sent(
            db_session, manager, case.id, "whatsapp", sent_at=utc_now() - timedelta(hours=2)
        )

        first_at = utc_now() - timedelta(minutes=5)
        once = await notification_tracker.record_delivered(db_session, system_actor, sent.event.id, first_at)
        twice = await notification_tracker.record_delivered(db_session, system_actor, sent.event.id)

        assert once.delivered_at == first_at
        assert twice.delivered_at == first_at

    @pytest.mark.asyncio
    async def test_read_backfills_delivered(self, db_session, make_case, manager, system_actor):
        case = await make_case()
        sent = await notification_tracker.record_sent(db_session, manager, case.id, "email")

        event = await notification_tracker.record_read(db_session, system_actor, sent.event.id)
        assert event.read_at is not None
        assert event.delivered_at == event.read_at
        assert event.acknowledged_at is None

    @pytest.mark.asyncio
    async def test_acknowledged_keeps_earlier_stamps(self, db_session, make_case, manager, system_actor):
        case = await make_case(created_at=utc_now() - timedelta(days=1))
        sent = await notification_tracker.record_sent(
            db_session, manager, case.id, "whatsapp", sent_at=utc_now() - timedelta(hours=2)
        )
        delivered_at = utc_now() - timedelta(hours=1)
        await notification_tracker.record_delivered(db_session, system_actor, sent.event.id, delivered_at)

        event = await notification_tracker.record_acknowledged(db_session, system_actor, sent.event.id)
        assert event.delivered_at == delivered_at
        assert event.read_at == event.acknowledged_at

    @pytest.mark.asyncio
    async def test_stages_never_touch_case(self, db_session, make_case, manager, system_actor):
        case = await make_case()
        sent = await notification_tracker.record_sent(db_session, manager, case.id, "whatsapp")
        await notification_tracker.record_acknowledged(db_session, system_actor, sent.event.id)

        assert (await case_registry.get_case(db_session, case.id)).status == "notified"

    @pytest.mark.asyncio
    async def test_lookup_by_provider_message_id(self, db_session, make_case, manager):
        case = await make_case()
        sent = await notification_tracker.record_sent(
            db_session, manager, case.id, "whatsapp", provider_message_id="wamid.123"
        )
        found = await notification_tracker.find_by_provider_message_id(db_session, "wamid.123")
        assert found.id == sent.event.id

        with pytest.raises(NotFound):
            await notification_tracker.find_by_provider_message_id(db_session, "wamid.missing")

    @pytest.mark.asyncio
    async def test_unknown_event(self, db_session, system_actor):
        with pytest.raises(NotFound):
            await notification_tracker.record_delivered(db_session, system_actor, "missing")

    @pytest.mark.asyncio
    async def test_resident_cannot_report_delivery(self, db_session, make_case, manager, resident):
        case = await make_case()
        sent = await notification_tracker.record_sent(db_session, manager, case.id, "whatsapp")
        with pytest.raises(Forbidden):
            await notification_tracker.record_read(db_session, resident, sent.event.id)


class TestStampChecks:

    @pytest.mark.asyncio
    async def test_future_sent_at_rejected(self, db_session, make_case, manager):
        case = await make_case(status="registered")

        with pytest.raises(ValidationFailed) as exc:
            await notification_tracker.record_sent(
                db_session, manager, case.id, "letter", sent_at=utc_now() + timedelta(hours=1)
            )

        assert exc.value.field == "sent_at"
        assert await notification_tracker.list_notifications(db_session, case.id) == []
        assert (await case_registry.get_case(db_session, case.id)).status == "registered"

    @pytest.mark.asyncio
    async def test_small_clock_skew_accepted(self, db_session, make_case, manager):
        case = await make_case()
        sent_at = utc_now() + timedelta(minutes=1)

        sent = await notification_tracker.record_sent(db_session, manager, case.id, "email", sent_at=sent_at)
        assert sent.event.sent_at == sent_at

    @pytest.mark.asyncio
    async def test_sent_before_case_rejected(self, db_session, make_case, manager):
        case = await make_case()

        with pytest.raises(ValidationFailed) as exc:
            await notification_tracker.record_sent(
                db_session, manager, case.id, "letter", sent_at=utc_now() - timedelta(days=2)
            )
        assert exc.value.field == "sent_at"

    @pytest.mark.asyncio
    async def test_future_delivery_stamp_rejected(self, db_session, make_case, manager, system_actor):
        case = await make_case()
        sent = await notification_tracker.record_sent(db_session, manager, case.id, "whatsapp")

        with pytest.raises(ValidationFailed) as exc:
            await notification_tracker.record_delivered(
                db_session, system_actor, sent.event.id, utc_now() + timedelta(days=1)
            )
        assert exc.value.field == "timestamp"

    @pytest.mark.asyncio
    async def test_delivery_before_send_clamped(self, db_session, make_case, manager, system_actor):
        case = await make_case()
        sent = await notification_tracker.record_sent(db_session, manager, case.id, "whatsapp")

        event = await notification_tracker.record_delivered(
            db_session, system_actor, sent.event.id, sent.event.sent_at - timedelta(hours=1)
        )
        assert event.delivered_at == sent.event.sent_at

    @pytest.mark.asyncio
    async def test_read_never_before_delivered(self, db_session, make_case, manager, system_actor):
        case = await make_case(created_at=utc_now() - timedelta(days=1))
        sent = await notification_tracker.record_sent(
            db_session, manager, case.id, "whatsapp", sent_at=utc_now() - timedelta(hours=3)
        )
        delivered_at = utc_now() - timedelta(hours=1)
        await notification_tracker.record_delivered(db_session, system_actor, sent.event.id, delivered_at)

        event = await notification_tracker.record_read(
            db_session, system_actor, sent.event.id, utc_now() - timedelta(hours=2)
        )
        assert event.read_at == delivered_at
        assert event.delivered_at == delivered_at
