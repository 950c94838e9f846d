"""Nightly sweep that caches reports for sessions which never got one.

Scheduled from ``main.py``.  Covers sessions whose auto-analysis failed
and that have not been saved to again since.  It reuses the auto-trigger
policy, so sessions that already have a report are left alone.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from app.config import settings
from app.database import async_session
from app.models import TherapySession, TypingResult
from app.services.session_lifecycle import session_attempts
from app.services.session_store import SessionRef, mutate_session
from app.services.typing_analysis import try_auto_analyze

log = logging.getLogger(__name__)


async def find_unanalysed_sessions() -> list[str]:
    """Session ids with enough typing results and no cached report."""
    async with async_session() as db:
        result = await db.execute(
            select(TherapySession.session_id)
            .join(TypingResult, TypingResult.session_pk == TherapySession.id)
            .where(TherapySession.typing_analysis.is_(None))
            .group_by(TherapySession.id, TherapySession.session_id)
            .having(func.count(TypingResult.id) >= settings.auto_analysis_threshold)
        )
        return [row[0] for row in result.all()]


async def sweep_pending_analyses() -> int:
    """Cache a report on every eligible session; returns how many were written."""
    session_ids = await find_unanalysed_sessions()
    if not session_ids:
        log.info("Analysis sweep: nothing to do")
        return 0

    async def _apply(db, session: TherapySession) -> bool:
        report = try_auto_analyze(session_attempts(session), session.typing_analysis)
        if report is None:
            return False
        session.typing_analysis = report
        return True

    written = 0
    for session_id in session_ids:
        try:
            if await mutate_session(SessionRef(session_id=session_id), _apply):
                written += 1
        except Exception:
            log.exception("Analysis sweep failed for session %s", session_id)

    log.info("Analysis sweep: cached %d of %d pending reports", written, len(session_ids))
    return written
