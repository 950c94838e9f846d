"""Client for the external facial-emotion prediction service.

The browser sends face-mesh landmarks; we forward them to the model
service (``POST {EMOTION_SERVICE_URL}/predict``) and remember each
predicted emotion for the session until the puzzle ends, when the
dominant one is read back and the buffer cleared.
"""

from __future__ import annotations

import logging
from collections import Counter, OrderedDict, deque
from typing import Any

import httpx

from app.config import settings
from app.services.errors import EmotionServiceError, SessionValidationError

logger = logging.getLogger(__name__)


async def predict_emotion(landmarks: Any, client: httpx.AsyncClient | None = None) -> str:
    """Ask the prediction service for the emotion shown by *landmarks*."""
    if not landmarks:
        raise SessionValidationError("landmarks are required")

    url = f"{settings.emotion_service_url.rstrip('/')}/predict"
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.emotion_service_timeout) as own:
                resp = await own.post(url, json={"landmarks": landmarks})
        else:
            resp = await client.post(url, json={"landmarks": landmarks})
        resp.raise_for_status()
        emotion = resp.json().get("emotion")
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Emotion prediction failed: %s", e)
        raise EmotionServiceError("Failed to predict emotion") from e

    if not emotion:
        raise EmotionServiceError("Prediction service returned no emotion")
    return str(emotion)


class EmotionBuffer:
    """Per-session list of emotions seen during the current puzzle.

    Bounded both ways: each session keeps its latest *per_session*
    emotions, and once *max_sessions* are buffered the least recently
    updated one is dropped.
    """

    def __init__(self, max_sessions: int | None = None, per_session: int | None = None) -> None:
        self.max_sessions = max_sessions or settings.emotion_buffer_sessions
        self.per_session = per_session or settings.emotion_buffer_size
        self._by_session: OrderedDict[str, deque[str]] = OrderedDict()

    def add(self, session_id: str, emotion: str) -> None:
        emotions = self._by_session.pop(session_id, None)
        if emotions is None:
            emotions = deque(maxlen=self.per_session)
        emotions.append(emotion)
        self._by_session[session_id] = emotions
        while len(self._by_session) > self.max_sessions:
            dropped, _ = self._by_session.popitem(last=False)
            logger.debug("Emotion buffer full, dropped session %s", dropped)

    def pop_dominant(self, session_id: str) -> str | None:
        """Most frequent emotion (first seen wins ties); clears the buffer."""
        emotions = self._by_session.pop(session_id, None)
        if not emotions:
            return None
        return Counter(emotions).most_common(1)[0][0]

    def __len__(self) -> int:
        return len(self._by_session)


emotion_buffer = EmotionBuffer()
