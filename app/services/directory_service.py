"""Read-only lookups against the user directory (identity, clinic assignment, device tokens)."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DataIntegrityError, PractitionerNotFound
from app.models.user import User, UserRole


async def get_user(session: AsyncSession, user_id: int) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_practitioner(session: AsyncSession, practitioner_id: int) -> User:
    user = await get_user(session, practitioner_id)
    if not user or user.role != UserRole.PRACTITIONER:
        raise PractitionerNotFound(f"User {practitioner_id} is not a practitioner")
    return user


async def get_practitioner_clinic(session: AsyncSession, practitioner_id: int) -> int:
    practitioner = await get_practitioner(session, practitioner_id)
    if practitioner.clinic_id is None:
        raise DataIntegrityError(f"Practitioner {practitioner_id} has no clinic assigned")
    return practitioner.clinic_id


async def get_device_token(session: AsyncSession, user_id: int) -> str | None:
    result = await session.execute(select(User.push_token).where(User.id == user_id))
    token = result.scalar_one_or_none()
    return token or None
