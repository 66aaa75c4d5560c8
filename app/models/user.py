from enum import Enum

from sqlalchemy import Column, Enum as SAEnum
from sqlmodel import Field, SQLModel


class UserRole(str, Enum):
    CLIENT = "client"
    PRACTITIONER = "practitioner"
    ADMIN = "admin"


class UserBase(SQLModel):
    email: str = Field(unique=True, index=True)
    full_name: str | None = None


class User(UserBase, table=True):
    """Directory row owned by the identity provider; read-only here."""

    __tablename__ = "users"
    id: int | None = Field(default=None, primary_key=True)
    role: UserRole = Field(
        default=UserRole.CLIENT,
        sa_column=Column(
            "role",
            SAEnum(
                UserRole,
                name="user_role",
                native_enum=False,
                length=16,
                values_callable=lambda e: [m.value for m in e],
            ),
            nullable=False,
        ),
    )
    clinic_id: int | None = None  # practitioners only
    push_token: str | None = None  # device token registered by the mobile app


class Actor(SQLModel):
    """Who is calling, as supplied by the identity provider."""

    id: int
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=user.role)
