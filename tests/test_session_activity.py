from __future__ import annotations

import asyncio

import httpx
import pytest
from sqlalchemy import inspect

from app.database import engine, init_db
from app.services.analysis_sweep import find_unanalysed_sessions, sweep_pending_analyses
from app.services.emotion_client import EmotionBuffer, predict_emotion
from app.services.errors import EmotionServiceError
from app.services.session_store import generate_session_id, session_locks
from conftest import THERAPIST_CODE, fetch_session, insert_raw_results


def test_session_ids_are_unique():
    ids = {generate_session_id() for _ in range(1000)}
    assert len(ids) == 1000


async def test_theme_changes_record_repeats(client, make_child, start_session):
    await make_child("mia", themes=["underwater"])
    session_id = await start_session("mia")

    for theme in ["space", "space", "jungle"]:
        resp = await client.post(
            "/api/track-theme-change", json={"sessionId": session_id, "theme": theme}
        )
        assert resp.status_code == 200
        assert resp.json()["currentTheme"] == theme

    session = await fetch_session(session_id)
    assert session.themes_changed == ["space", "space", "jungle"]
    assert session.assigned_themes == ["underwater"]


async def test_theme_change_checks_owner(client, make_child, start_session):
    await make_child("mia")
    session_id = await start_session("mia")

    resp = await client.post("/api/track-theme-change", json={
        "sessionId": session_id, "theme": "space",
        "therapistCode": THERAPIST_CODE, "username": "someone-else",
    })
    assert resp.status_code == 404

    resp = await client.post("/api/track-theme-change", json={"sessionId": session_id})
    assert resp.status_code == 400


async def test_emotions_and_puzzles_are_appended(client, make_child, start_session):
    await make_child("leo", preferred_game="puzzles")
    session_id = await start_session("leo")

    for emotion in ["happy", "sad"]:
        resp = await client.post("/api/track-emotion", json={"sessionId": session_id, "emotion": emotion})
        assert resp.status_code == 200

    for _ in range(2):
        resp = await client.post("/api/update-played-puzzles", json={
            "sessionId": session_id,
            "theme": "space",
            "level": "2",
            "puzzleId": "p-7",
            "emotionsDuring": ["happy"],
        })
        assert resp.status_code == 200

    resp = await client.get("/api/get-session-data", params={"sessionId": session_id})
    data = resp.json()["sessionData"]
    assert data["emotionsOfChild"] == ["happy", "sad"]
    assert len(data["playedPuzzles"]) == 2
    assert data["playedPuzzles"][0]["level"] == 2
    assert data["playedPuzzles"][0]["emotionsDuring"] == ["happy"]

    resp = await client.get(
        "/api/get-child-sessions", params={"therapistCode": THERAPIST_CODE, "childName": "leo"}
    )
    assert resp.status_code == 200


async def test_puzzle_requires_fields(client, make_child, start_session):
    await make_child("leo")
    session_id = await start_session("leo")

    resp = await client.post("/api/update-played-puzzles", json={"sessionId": session_id, "theme": "space"})
    assert resp.status_code == 400

    resp = await client.post("/api/update-played-puzzles", json={
        "sessionId": session_id, "theme": "space", "level": "hard", "puzzleId": "p-1",
    })
    assert resp.status_code == 400


async def test_puzzle_level_zero_is_accepted(client, make_child, start_session):
    await make_child("leo")
    session_id = await start_session("leo")

    resp = await client.post("/api/update-played-puzzles", json={
        "sessionId": session_id, "theme": "space", "level": 0, "puzzleId": "intro",
    })

    assert resp.status_code == 200
    [puzzle] = (await fetch_session(session_id)).played_puzzles
    assert puzzle.level == 0


async def test_session_locks_are_released_after_writes(client, make_child, start_session):
    await make_child("leo")
    session_ids = [await start_session("leo") for _ in range(10)]

    responses = await asyncio.gather(*[
        client.post("/api/track-emotion", json={"sessionId": sid, "emotion": "happy"})
        for sid in session_ids
        for _ in range(3)
    ])

    assert all(r.status_code == 200 for r in responses)
    assert len(session_locks) == 0
    session = await fetch_session(session_ids[0])
    assert session.emotions_of_child == ["happy"] * 3


async def test_session_lock_is_released_when_the_write_fails(client, database):
    resp = await client.post("/api/track-emotion", json={"sessionId": "missing", "emotion": "happy"})

    assert resp.status_code == 404
    assert len(session_locks) == 0


async def test_reading_recording_is_appended(client, make_child, start_session):
    await make_child("ava", preferred_game="reading")
    session_id = await start_session("ava")

    resp = await client.post("/api/save-reading-audio", json={
        "sessionId": session_id, "storyId": "42", "storyTitle": "The Fox", "audioRef": "rec/1.webm",
    })

    assert resp.status_code == 200
    session = await fetch_session(session_id)
    [recording] = session.reading_recordings
    assert recording["storyId"] == "42"
    assert recording["audioRef"] == "rec/1.webm"


async def test_unknown_session_is_not_found(client, database):
    resp = await client.post("/api/track-emotion", json={"sessionId": "missing", "emotion": "happy"})
    assert resp.status_code == 404

    resp = await client.get("/api/get-session-data", params={"sessionId": "missing"})
    assert resp.status_code == 404


async def test_malformed_body_is_rejected(client):
    resp = await client.post(
        "/api/track-emotion", content=b"not json", headers={"content-type": "application/json"}
    )
    assert resp.status_code == 400


# ---- Emotion prediction ----


async def test_predict_emotion_posts_landmarks():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        return httpx.Response(200, json={"emotion": "happy"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        emotion = await predict_emotion([[0.1, 0.2, 0.3]], client=client)

    assert emotion == "happy"
    assert seen["path"] == "/predict"


async def test_predict_emotion_service_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "model down"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(EmotionServiceError):
            await predict_emotion([[0.1]], client=client)


def test_emotion_buffer_dominant_then_cleared():
    buffer = EmotionBuffer()
    for e in ["sad", "happy", "happy", "sad", "angry"]:
        buffer.add("s1", e)
    buffer.add("s2", "calm")

    assert buffer.pop_dominant("s1") == "sad"
    assert buffer.pop_dominant("s1") is None
    assert buffer.pop_dominant("s2") == "calm"


def test_emotion_buffer_is_bounded():
    buffer = EmotionBuffer(max_sessions=3, per_session=4)
    for i in range(5):
        buffer.add(f"s{i}", "happy")
    buffer.add("s2", "calm")

    assert len(buffer) == 3
    assert buffer.pop_dominant("s0") is None
    assert buffer.pop_dominant("s1") is None

    # only the latest four survive, so "happy" outnumbers "sad"
    for e in ["sad", "sad", "sad", "happy", "happy", "happy"]:
        buffer.add("s9", e)
    assert buffer.pop_dominant("s9") == "happy"


async def test_emotion_endpoints(client, monkeypatch):
    async def fake_predict(landmarks):
        return "surprised"

    monkeypatch.setattr("app.routes.sessions.predict_emotion", fake_predict)

    resp = await client.post("/api/facemesh-landmarks", json={"sessionId": "s9", "landmarks": [[1, 2]]})
    assert resp.json() == {"emotion": "surprised"}

    resp = await client.get("/api/emotion", params={"sessionId": "s9"})
    assert resp.json() == {"emotion": "surprised"}

    resp = await client.get("/api/emotion", params={"sessionId": "s9"})
    assert resp.status_code == 404


# ---- Scheduled sweep ----


async def test_sweep_caches_missing_reports_once(client, make_child, start_session):
    await make_child("mia")
    pending = await start_session("mia")
    too_small = await start_session("mia")
    await insert_raw_results(pending, [{"word": "cat", "input": "cat", "correct": True}] * 10)
    await insert_raw_results(too_small, [{"word": "cat", "input": "cat", "correct": True}] * 3)

    assert await find_unanalysed_sessions() == [pending]
    assert await sweep_pending_analyses() == 1
    assert (await fetch_session(pending)).typing_analysis["totalWords"] == 10
    assert (await fetch_session(too_small)).typing_analysis is None

    assert await sweep_pending_analyses() == 0


# ---- Schema ----


async def test_init_db_is_idempotent(database):
    await init_db()
    await init_db()

    async with engine.connect() as conn:
        columns = await conn.run_sync(
            lambda sync_conn: {c["name"] for c in inspect(sync_conn).get_columns("therapy_sessions")}
        )
    assert {"reading_recordings", "typing_analysis", "version"} <= columns
