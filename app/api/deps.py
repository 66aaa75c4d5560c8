from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, get_clock
from app.core.db import async_session_maker, get_session
from app.core.security import decode_access_token
from app.models.user import Actor, User
from app.services.booking_service import BookingService
from app.services.directory_service import get_user
from app.services.notification_service import PushSender

security = HTTPBearer(auto_error=False)


async def get_current_user(
    session: AsyncSession = Depends(get_session),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id = decode_access_token(credentials.credentials)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        uid = int(user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = await get_user(session, uid)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    return Actor.from_user(user)


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return async_session_maker


def get_push_sender(
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> PushSender:
    return PushSender(session_maker)


def get_booking_service(
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> BookingService:
    return BookingService(session, clock)
