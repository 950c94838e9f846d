from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Point the app at a throwaway database before anything imports app.config
_TMP_DIR = Path(tempfile.mkdtemp(prefix="typing-engine-tests-"))
os.environ["TYPING_ENGINE_DB_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR / 'test.db'}"

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import select  # noqa: E402

from app.database import Base, async_session, engine, init_db  # noqa: E402
from app.models import Child, Therapist, TypingResult  # noqa: E402
from app.services.session_store import SessionRef, load_session, session_locks  # noqa: E402
from main import app  # noqa: E402

THERAPIST_CODE = "424242"


@pytest.fixture
async def database():
    """Fresh schema for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await init_db()
    session_locks.clear()
    yield
    await engine.dispose()


@pytest.fixture
async def client(database):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def make_child(database):
    """Factory: create a child (and the shared therapist) and return its username."""

    async def _make(username: str = "sam", preferred_game: str | None = "typing",
                    themes: list[str] | None = None, preferred_story: str | None = None) -> str:
        async with async_session() as db:
            result = await db.execute(select(Therapist).where(Therapist.code == THERAPIST_CODE))
            therapist = result.scalar_one_or_none()
            if therapist is None:
                therapist = Therapist(username="dr-lee", code=THERAPIST_CODE)
                db.add(therapist)
                await db.flush()
            therapist_id = therapist.id
            db.add(Child(
                therapist_id=therapist_id,
                username=username,
                assigned_themes=list(themes or ["underwater"]),
                preferred_game=preferred_game,
                preferred_story=preferred_story,
                played_puzzles=[],
            ))
            await db.commit()
        return username

    return _make


@pytest.fixture
def start_session(client):
    """Log a child in over HTTP and return the new session id."""

    async def _start(username: str) -> str:
        resp = await client.post(
            "/api/child-login", json={"code": THERAPIST_CODE, "childName": username}
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["sessionId"]

    return _start


async def fetch_session(session_id: str):
    async with async_session() as db:
        return await load_session(db, SessionRef(session_id=session_id))


async def insert_raw_results(session_id: str, attempts: list[dict]) -> None:
    """Write typing rows directly, bypassing the auto-analysis trigger."""
    async with async_session() as db:
        session = await load_session(db, SessionRef(session_id=session_id))
        for a in attempts:
            session.typing_results.append(
                TypingResult(word=a["word"], input=a["input"], correct=a["correct"])
            )
        await db.commit()
