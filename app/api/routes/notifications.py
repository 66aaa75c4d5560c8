from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_actor, get_session
from app.api.schemas.appointment import NotificationPublic
from app.models.notification import NotificationRecord
from app.models.user import Actor
from app.services.notification_service import list_notifications, mark_read

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _to_public(n: NotificationRecord) -> NotificationPublic:
    return NotificationPublic(
        id=n.id,
        type=n.type,
        title=n.title,
        content=n.content,
        linked_appointment_id=n.linked_appointment_id,
        is_read=n.is_read,
        created_at=n.created_at,
    )


@router.get("", response_model=list[NotificationPublic])
async def my_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> list[NotificationPublic]:
    records = await list_notifications(session, actor.id, unread_only=unread_only, limit=limit)
    return [_to_public(n) for n in records]


@router.post("/{notification_id}/read", response_model=NotificationPublic)
async def read_notification(
    notification_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> NotificationPublic:
    record = await mark_read(session, actor.id, notification_id)
    return _to_public(record)
