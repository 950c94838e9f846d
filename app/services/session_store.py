"""Persistence helpers for therapy sessions.

Every write to a session goes through :func:`mutate_session`, which

  - holds an in-process ``asyncio.Lock`` keyed by the session id, so two
    requests for the same session run one after the other while other
    sessions proceed in parallel (the lock is dropped once unused);
  - re-reads the session in a fresh DB session, applies the change and
    commits in one transaction;
  - retries when another process bumped the row's ``version`` first
    (SQLAlchemy raises ``StaleDataError`` for that), with exponential
    backoff between attempts.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.database import async_session
from app.models import Child, Therapist, TherapySession
from app.services.errors import (
    SessionConflictError,
    SessionNotFoundError,
    SessionValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_session_id() -> str:
    """Millisecond timestamp plus a random suffix, both base-36."""
    return _to_base36(int(time.time() * 1000)) + _to_base36(secrets.randbits(52))


# ---------------------------------------------------------------------------
# Session references & lookups
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionRef:
    """Identifies a session; therapist code and username narrow the lookup."""

    session_id: str
    therapist_code: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "SessionRef":
        session_id = str(data.get("sessionId") or "").strip()
        if not session_id:
            raise SessionValidationError("sessionId is required")
        return cls(
            session_id=session_id,
            therapist_code=data.get("therapistCode") or None,
            username=data.get("username") or None,
        )


async def load_session(db: AsyncSession, ref: SessionRef) -> TherapySession:
    stmt = select(TherapySession).where(TherapySession.session_id == ref.session_id)
    if ref.therapist_code or ref.username:
        stmt = stmt.join(Child, TherapySession.child_id == Child.id)
        if ref.username:
            stmt = stmt.where(Child.username == ref.username)
        if ref.therapist_code:
            stmt = stmt.join(Therapist, Child.therapist_id == Therapist.id).where(
                Therapist.code == ref.therapist_code
            )
    result = await db.execute(stmt)
    session = result.scalar_one_or_none()
    if session is None:
        raise SessionNotFoundError("Session not found")
    return session


async def load_child(db: AsyncSession, therapist_code: str, username: str) -> Child:
    if not therapist_code or not username:
        raise SessionValidationError("therapistCode and username are required")
    result = await db.execute(
        select(Child)
        .join(Therapist, Child.therapist_id == Therapist.id)
        .where(Therapist.code == therapist_code, Child.username == username)
    )
    child = result.scalar_one_or_none()
    if child is None:
        raise SessionNotFoundError("Therapist or child not found")
    return child


# ---------------------------------------------------------------------------
# Serialised mutation
# ---------------------------------------------------------------------------


class SessionLockRegistry:
    """One ``asyncio.Lock`` per session id while anyone holds or waits on it.

    Each entry counts its users; the last one out removes it, so idle
    sessions leave nothing behind.
    """

    def __init__(self) -> None:
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(session_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[session_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            entry = self._locks.get(session_id)
            if entry is not None and entry[0] is lock:
                if entry[1] <= 1:
                    del self._locks[session_id]
                else:
                    self._locks[session_id] = (lock, entry[1] - 1)

    def clear(self) -> None:
        self._locks.clear()

    def __len__(self) -> int:
        return len(self._locks)


session_locks = SessionLockRegistry()


async def mutate_session(
    ref: SessionRef,
    mutation: Callable[[AsyncSession, TherapySession], Awaitable[T]],
    session_factory: async_sessionmaker = async_session,
) -> T:
    """Run *mutation* against the session and commit, serialised per session.

    If *mutation* raises, nothing is committed.  Version conflicts back off
    and retry; ``SessionConflictError`` is raised only once
    ``settings.max_write_retries`` attempts have all lost.
    """
    async with session_locks.hold(ref.session_id):
        for attempt in range(1, settings.max_write_retries + 1):
            async with session_factory() as db:
                session = await load_session(db, ref)
                try:
                    result = await mutation(db, session)
                    await db.commit()
                    return result
                except StaleDataError:
                    await db.rollback()
                    logger.warning(
                        "Concurrent write on session %s (attempt %d/%d), retrying",
                        ref.session_id, attempt, settings.max_write_retries,
                    )
            if attempt < settings.max_write_retries:
                await asyncio.sleep(settings.write_retry_backoff * 2 ** (attempt - 1))
    raise SessionConflictError(
        f"Could not save session {ref.session_id} after {settings.max_write_retries} attempts"
    )
