import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./unused-test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PUSH_ENABLED", "false")
os.environ.setdefault("ENV", "test")

from dataclasses import dataclass  # noqa: E402
from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from app.core.clock import FrozenClock  # noqa: E402
from app.core.db import build_engine, build_session_maker, init_db  # noqa: E402
from app.models import Actor, User, UserRole  # noqa: E402
from app.services.booking_service import BookingService  # noqa: E402

CLINIC_ID = 7
NOW = datetime(2025, 3, 1, 12, 0)


@dataclass
class Directory:
    client: Actor
    other_client: Actor
    vet: Actor
    other_vet: Actor
    admin: Actor


@pytest.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'clinic.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_maker(engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as s:
        yield s


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
async def directory(session_maker) -> Directory:
    rows = {
        "client": User(email="owner@example.com", full_name="Pet Owner", role=UserRole.CLIENT),
        "other_client": User(email="owner2@example.com", full_name="Other Owner", role=UserRole.CLIENT),
        "vet": User(
            email="vet@example.com",
            full_name="Dr. Vet",
            role=UserRole.PRACTITIONER,
            clinic_id=CLINIC_ID,
            push_token="ExponentPushToken[vet]",
        ),
        "other_vet": User(
            email="vet2@example.com", full_name="Dr. Other", role=UserRole.PRACTITIONER, clinic_id=CLINIC_ID
        ),
        "admin": User(email="admin@example.com", full_name="Front Desk", role=UserRole.ADMIN),
    }
    async with session_maker() as s:
        s.add_all(rows.values())
        await s.commit()
        for u in rows.values():
            await s.refresh(u)
    return Directory(**{k: Actor.from_user(u) for k, u in rows.items()})


@pytest.fixture
def service(session, clock) -> BookingService:
    return BookingService(session, clock)


@pytest.fixture
async def make_service(session_maker, clock):
    """BookingService factory on independent sessions, for concurrency tests."""
    opened: list[AsyncSession] = []

    def _make() -> BookingService:
        s = session_maker()
        opened.append(s)
        return BookingService(s, clock)

    yield _make
    for s in opened:
        await s.close()
