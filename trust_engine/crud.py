# trust_engine/crud.py

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, select, create_engine

from trust_engine.errors import ConflictError
from trust_engine.models import ActionToken, ActionTokenStatus, iso_utc, utcnow

log = logging.getLogger("crud")

TOKEN_BYTES = 16  # 128 bits, 32 hex characters
DEFAULT_TOKEN_TTL = timedelta(hours=24)


# ---------- Database Setup ----------
class Database:
    """
    Owns the connection pool for the action-token table. Created once on
    startup, handed to whoever needs it, disposed on shutdown.
    """

    def __init__(self, url: str):
        self.url = url
        self.engine = None

    def init(self):
        """Create the engine and all SQLModel tables."""
        if self.engine is not None:
            return
        if self.url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        else:
            kwargs = {"pool_size": 10, "max_overflow": 0, "pool_timeout": 2, "pool_recycle": 1800, "pool_pre_ping": True}
        self.engine = create_engine(self.url, echo=False, **kwargs)
        SQLModel.metadata.create_all(self.engine)

    def session(self) -> Session:
        if self.engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return Session(self.engine)

    def close(self):
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None


# ---------- ACTION TOKENS ----------
def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def issue_action_token(
    db: Database,
    unsigned_transaction: str,
    creator_address: str,
    content_hash: str,
    content_title: Optional[str] = None,
    ttl: timedelta = DEFAULT_TOKEN_TTL,
    now: Optional[datetime] = None,
) -> ActionToken:
    """Store an unsigned transaction under a fresh single-use token."""
    now = now or utcnow()
    with db.session() as s:
        rec = ActionToken(
            token=generate_token(),
            unsigned_transaction=unsigned_transaction,
            creator_address=creator_address,
            content_hash=content_hash,
            content_title=content_title,
            status=ActionTokenStatus.UNUSED.value,
            created_at=now,
            expires_at=now + ttl,
        )
        s.add(rec)
        s.commit()
        s.refresh(rec)
        return rec


def get_action_token(db: Database, token: str) -> Optional[ActionToken]:
    with db.session() as s:
        q = select(ActionToken).where(ActionToken.token == token)
        return s.exec(q).first()


def peek_action_token(db: Database, token: str, now: Optional[datetime] = None) -> ActionToken:
    """Look up `token` without consuming it. An unused token past expiry reads as expired."""
    now = now or utcnow()
    rec = get_action_token(db, token)
    if rec is None:
        raise _unknown_token(token)
    if rec.status == ActionTokenStatus.UNUSED.value and rec.expires_at < now:
        rec.status = ActionTokenStatus.EXPIRED.value
    return rec


def _unknown_token(token: str) -> ConflictError:
    return ConflictError("This action link does not exist.", {
        "token": token,
        "suggestion": "Request a new action link by registering again with returnActionLink set.",
    })


def redeem_action_token(db: Database, token: str, now: Optional[datetime] = None) -> ActionToken:
    """
    Consume `token` and return its record. The status check and the transition
    to consumed are one conditional UPDATE, so of any number of concurrent
    callers exactly one succeeds.
    """
    now = now or utcnow()
    stmt = (
        update(ActionToken)
        .where(
            ActionToken.token == token,
            ActionToken.status == ActionTokenStatus.UNUSED.value,
            ActionToken.expires_at >= now,
        )
        .values(status=ActionTokenStatus.CONSUMED.value, consumed_at=now)
    )
    with db.engine.begin() as conn:
        consumed = conn.execute(stmt).rowcount == 1

    rec = get_action_token(db, token)
    if consumed:
        log.info("Action token %s... redeemed", token[:8])
        return rec

    if rec is None:
        raise _unknown_token(token)
    if rec.status == ActionTokenStatus.UNUSED.value and rec.expires_at < now:
        _mark_expired(db, token)
        rec.status = ActionTokenStatus.EXPIRED.value
    if rec.status == ActionTokenStatus.EXPIRED.value:
        raise ConflictError("This action link has expired.", {
            "token": token,
            "expiredAt": iso_utc(rec.expires_at),
            "suggestion": "Request a new action link by registering again with returnActionLink set.",
        })
    raise ConflictError("This action link has already been used.", {
        "token": token,
        "consumedAt": iso_utc(rec.consumed_at) if rec.consumed_at else None,
    })


def _mark_expired(db: Database, token: str):
    stmt = (
        update(ActionToken)
        .where(ActionToken.token == token, ActionToken.status == ActionTokenStatus.UNUSED.value)
        .values(status=ActionTokenStatus.EXPIRED.value)
    )
    with db.engine.begin() as conn:
        conn.execute(stmt)


# ---------- UTILITY ----------
def expire_action_tokens(db: Database, now: Optional[datetime] = None) -> int:
    """Mark every unused token past its expiry as expired (for scheduler)."""
    now = now or utcnow()
    stmt = (
        update(ActionToken)
        .where(ActionToken.status == ActionTokenStatus.UNUSED.value, ActionToken.expires_at < now)
        .values(status=ActionTokenStatus.EXPIRED.value)
    )
    with db.engine.begin() as conn:
        return conn.execute(stmt).rowcount
