# trust_engine/models.py
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class ActionTokenStatus(str, Enum):
    UNUSED = "unused"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class ActionToken(SQLModel, table=True):
    __tablename__ = "transaction_actions"

    id: Optional[int] = Field(default=None, primary_key=True)
    token: str = Field(index=True, unique=True)
    unsigned_transaction: str
    creator_address: str
    content_hash: str
    content_title: Optional[str] = None
    status: str = Field(default=ActionTokenStatus.UNUSED.value, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    consumed_at: Optional[datetime] = None
