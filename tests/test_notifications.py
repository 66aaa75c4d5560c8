import httpx
import pytest
from sqlalchemy import select

from app.core.errors import NotFound
from app.models.notification import DeliveryChannel, DeliveryLog, NotificationType
from app.services.notification_service import (
    NotificationDispatcher,
    PushMessage,
    PushSender,
    list_notifications,
    mark_read,
)


class FakeGateway:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, str, dict]] = []

    async def send(self, token, title, body, payload):
        if self.fail:
            raise httpx.ConnectError("gateway down")
        self.sent.append((token, title, body, payload))
        return {"data": {"status": "ok"}}


async def _push_log(session_maker) -> list[DeliveryLog]:
    async with session_maker() as s:
        result = await s.execute(
            select(DeliveryLog).where(DeliveryLog.channel == DeliveryChannel.PUSH).order_by(DeliveryLog.id)
        )
        return list(result.scalars().all())


async def test_notify_writes_record_and_queues_push(session, directory):
    dispatcher = NotificationDispatcher(session)
    record = await dispatcher.notify(
        directory.vet.id, NotificationType.NEW_APPOINTMENT, "New appointment request", "Tomorrow 09:00"
    )
    await session.commit()
    assert record.id is not None
    assert not record.is_read
    queued = dispatcher.drain()
    assert [m.recipient_id for m in queued] == [directory.vet.id]
    assert queued[0].payload["notificationId"] == record.id
    assert dispatcher.drain() == []


async def test_notify_once_skips_completed_key(session, directory):
    dispatcher = NotificationDispatcher(session)
    first = await dispatcher.notify_once(
        "reminder:1:one_hour", directory.client.id, NotificationType.APPOINTMENT_REMINDER, "Soon", "In 1 hour"
    )
    await session.commit()
    second = await dispatcher.notify_once(
        "reminder:1:one_hour", directory.client.id, NotificationType.APPOINTMENT_REMINDER, "Soon", "In 1 hour"
    )
    assert first is not None
    assert second is None
    assert len(await list_notifications(session, directory.client.id)) == 1


async def test_push_sent_and_logged(session_maker, directory):
    gateway = FakeGateway()
    sender = PushSender(session_maker, gateway=gateway, enabled=True)
    ok = await sender.push_notify(directory.vet.id, "Hi", "x" * 150, {"type": "new_message"})
    assert ok
    token, _, body, _ = gateway.sent[0]
    assert token == "ExponentPushToken[vet]"
    assert len(body) == 103
    log = await _push_log(session_maker)
    assert log[0].succeeded


async def test_push_failure_is_swallowed(session_maker, directory):
    sender = PushSender(session_maker, gateway=FakeGateway(fail=True), enabled=True)
    assert await sender.push_notify(directory.vet.id, "Hi", "body") is False
    log = await _push_log(session_maker)
    assert len(log) == 1
    assert not log[0].succeeded
    assert "ConnectError" in log[0].detail


async def test_push_without_token_is_logged(session_maker, directory):
    gateway = FakeGateway()
    sender = PushSender(session_maker, gateway=gateway, enabled=True)
    assert await sender.push_notify(directory.client.id, "Hi", "body") is False
    assert gateway.sent == []
    log = await _push_log(session_maker)
    assert log[0].detail == "no device token"


async def test_keyed_push_sent_once(session_maker, directory):
    gateway = FakeGateway()
    sender = PushSender(session_maker, gateway=gateway, enabled=True)
    message = PushMessage(directory.vet.id, "Reminder", "body", dedupe_key="reminder:9:one_hour:push")
    assert await sender.deliver([message, message]) == 1
    assert len(gateway.sent) == 1


async def test_disabled_sender_does_nothing(session_maker, directory):
    gateway = FakeGateway()
    sender = PushSender(session_maker, gateway=gateway, enabled=False)
    assert await sender.push_notify(directory.vet.id, "Hi", "body") is False
    assert gateway.sent == []
    assert await _push_log(session_maker) == []


async def test_mark_read_is_owner_only(session, directory):
    dispatcher = NotificationDispatcher(session)
    record = await dispatcher.notify(
        directory.client.id, NotificationType.APPOINTMENT_CONFIRMED, "Confirmed", "See you"
    )
    await session.commit()

    with pytest.raises(NotFound):
        await mark_read(session, directory.other_client.id, record.id)
    updated = await mark_read(session, directory.client.id, record.id)
    await session.commit()
    assert updated.is_read
    assert await list_notifications(session, directory.client.id, unread_only=True) == []
    # marking again keeps it read
    assert (await mark_read(session, directory.client.id, record.id)).is_read
