from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_clock, get_current_actor, get_session
from app.api.schemas.appointment import AvailableSlotsResponse, SlotInfo
from app.core.clock import Clock
from app.core.config import settings
from app.models.user import Actor
from app.services.availability_service import get_available_slots_for_date
from app.services.directory_service import get_practitioner

router = APIRouter(prefix="/slots", tags=["slots"])


@router.get("/available", response_model=AvailableSlotsResponse)
async def available_slots(
    practitioner_id: int = Query(...),
    date_param: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(get_current_actor),
) -> AvailableSlotsResponse:
    """Return the practitioner's slots for the given date (UTC). Each slot has start_utc, end_utc, and available (bool)."""
    await get_practitioner(session, practitioner_id)
    slots_with_availability = await get_available_slots_for_date(
        session, practitioner_id, date_param, now=clock.now()
    )
    slot_infos = [
        SlotInfo(
            start_utc=s,
            end_utc=s + timedelta(minutes=settings.appointment_duration_minutes),
            available=avail,
        )
        for s, avail in slots_with_availability
    ]
    return AvailableSlotsResponse(
        date=date_param.isoformat(),
        practitioner_id=practitioner_id,
        slots=slot_infos,
    )
