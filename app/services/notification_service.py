import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.errors import NotFound
from app.models.notification import DeliveryChannel, DeliveryLog, NotificationRecord, NotificationType
from app.services.directory_service import get_device_token

logger = logging.getLogger(__name__)

PUSH_BODY_LIMIT = 100


@dataclass
class PushMessage:
    recipient_id: int
    title: str
    body: str
    payload: dict[str, Any] = field(default_factory=dict)
    dedupe_key: str | None = None


class NotificationDispatcher:
    """In-app notifications written in the caller's transaction.

    Pushes are only queued here; the caller hands ``drain()`` to a PushSender
    once its transaction has committed.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._outbox: list[PushMessage] = []

    async def notify(
        self,
        recipient_id: int,
        type: NotificationType,
        title: str,
        content: str,
        linked_appointment_id: int | None = None,
        push: bool = True,
        push_key: str | None = None,
    ) -> NotificationRecord:
        record = NotificationRecord(
            recipient_id=recipient_id,
            type=type,
            title=title,
            content=content,
            linked_appointment_id=linked_appointment_id,
        )
        self.session.add(record)
        await self.session.flush()
        await self.session.refresh(record)
        logger.debug("Notification %s (%s) for user %s", record.id, type.value, recipient_id)
        if push:
            payload: dict[str, Any] = {"type": type.value, "notificationId": record.id}
            if linked_appointment_id is not None:
                payload["appointmentId"] = linked_appointment_id
            self._outbox.append(
                PushMessage(recipient_id, title, content, payload, dedupe_key=push_key)
            )
        return record

    async def already_sent(self, dedupe_key: str) -> bool:
        result = await self.session.execute(
            select(DeliveryLog.id).where(DeliveryLog.dedupe_key == dedupe_key)
        )
        return result.scalar_one_or_none() is not None

    async def notify_once(
        self,
        dedupe_key: str,
        recipient_id: int,
        type: NotificationType,
        title: str,
        content: str,
        linked_appointment_id: int | None = None,
    ) -> NotificationRecord | None:
        """Like notify(), but a no-op if a send with this key already completed.

        The key is recorded in the same transaction as the notification; the
        unique index on delivery_log.dedupe_key rejects a concurrent duplicate.
        """
        if await self.already_sent(dedupe_key):
            logger.info("Skipping duplicate dispatch %s", dedupe_key)
            return None
        self.session.add(
            DeliveryLog(
                dedupe_key=dedupe_key,
                channel=DeliveryChannel.IN_APP,
                recipient_id=recipient_id,
            )
        )
        return await self.notify(
            recipient_id,
            type,
            title,
            content,
            linked_appointment_id=linked_appointment_id,
            push_key=f"{dedupe_key}:push",
        )

    def drain(self) -> list[PushMessage]:
        out, self._outbox = self._outbox, []
        return out


class ExpoPushGateway:
    """Expo push HTTP API."""

    def __init__(self, url: str | None = None, timeout: float | None = None) -> None:
        self.url = url or settings.expo_push_url
        self.timeout = timeout or settings.push_timeout_seconds

    async def send(self, token: str, title: str, body: str, payload: dict[str, Any]) -> dict:
        message = {
            "to": token,
            "sound": "default",
            "title": title,
            "body": body,
            "data": payload,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                self.url,
                json=message,
                headers={"Accept": "application/json", "Accept-Encoding": "gzip, deflate"},
            )
            resp.raise_for_status()
            data = resp.json()
        ticket = data.get("data") or {}
        if isinstance(ticket, dict) and ticket.get("status") == "error":
            raise httpx.HTTPError(ticket.get("message") or "push ticket error")
        return data


def _truncate(body: str) -> str:
    return body if len(body) <= PUSH_BODY_LIMIT else body[:PUSH_BODY_LIMIT] + "..."


class PushSender:
    """Best-effort push delivery. Never raises; outcomes go to the delivery log."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        gateway: ExpoPushGateway | None = None,
        enabled: bool | None = None,
    ) -> None:
        self.session_maker = session_maker
        self.gateway = gateway or ExpoPushGateway()
        self.enabled = settings.push_enabled if enabled is None else enabled

    async def push_notify(
        self,
        recipient_id: int,
        title: str,
        body: str,
        payload: dict[str, Any] | None = None,
        dedupe_key: str | None = None,
    ) -> bool:
        if not self.enabled:
            logger.debug("Push disabled, skipping send to user %s", recipient_id)
            return False
        try:
            async with self.session_maker() as session:
                if dedupe_key and await NotificationDispatcher(session).already_sent(dedupe_key):
                    return False
                token = await get_device_token(session, recipient_id)
                ok, detail = False, None
                if not token:
                    detail = "no device token"
                    logger.info("User %s has no push token registered", recipient_id)
                else:
                    try:
                        await self.gateway.send(token, title, _truncate(body), payload or {})
                        ok = True
                        logger.info("Push sent to user %s", recipient_id)
                    except Exception as e:
                        detail = f"{type(e).__name__}: {e}"
                        logger.warning("Push to user %s failed: %s", recipient_id, detail)
                session.add(
                    DeliveryLog(
                        dedupe_key=dedupe_key if ok else None,
                        channel=DeliveryChannel.PUSH,
                        recipient_id=recipient_id,
                        succeeded=ok,
                        detail=detail,
                    )
                )
                await session.commit()
                return ok
        except Exception as e:
            logger.exception("Push bookkeeping failed for user %s: %s", recipient_id, e)
            return False

    async def deliver(self, messages: list[PushMessage]) -> int:
        sent = 0
        for m in messages:
            if await self.push_notify(m.recipient_id, m.title, m.body, m.payload, m.dedupe_key):
                sent += 1
        return sent


async def list_notifications(
    session: AsyncSession, recipient_id: int, unread_only: bool = False, limit: int = 100
) -> list[NotificationRecord]:
    q = select(NotificationRecord).where(NotificationRecord.recipient_id == recipient_id)
    if unread_only:
        q = q.where(NotificationRecord.is_read == False)  # noqa: E712
    q = q.order_by(NotificationRecord.created_at.desc(), NotificationRecord.id.desc()).limit(limit)
    result = await session.execute(q)
    return list(result.scalars().all())


async def mark_read(session: AsyncSession, recipient_id: int, notification_id: int) -> NotificationRecord:
    """Recipient marks a notification read. One-way; read never reverts to unread."""
    await session.execute(
        update(NotificationRecord)
        .where(
            NotificationRecord.id == notification_id,
            NotificationRecord.recipient_id == recipient_id,
        )
        .values(is_read=True)
    )
    result = await session.execute(
        select(NotificationRecord)
        .where(
            NotificationRecord.id == notification_id,
            NotificationRecord.recipient_id == recipient_id,
        )
        .execution_options(populate_existing=True)
    )
    record = result.scalar_one_or_none()
    if not record:
        raise NotFound(f"Notification {notification_id} not found")
    return record
