"""User SQLAlchemy model and Pydantic schemas for login."""

from typing import Optional

from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from readersync.db.session import Base


class User(Base):
    """User table: username is primary key and login identifier."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(255), primary_key=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch ms


# Pydantic schemas for API
class LoginRequest(BaseModel):
    """Login request body. version must match the server's compat version."""

    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    version: str = Field(min_length=1, validation_alias=AliasChoices("version", "clientVersion"))
    device: Optional[str] = None


class LoginResponse(BaseModel):
    """Session token response. expiresAt is epoch milliseconds."""

    ok: bool = True
    token: str
    expiresAt: int
