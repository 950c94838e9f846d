"""Exceptions raised by the session engine and translated by the routers."""

from __future__ import annotations


class SessionEngineError(Exception):
    """Base class; ``status_code`` is what the HTTP layer answers with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def payload(self) -> dict:
        return {"error": self.message}


class SessionValidationError(SessionEngineError):
    """Missing or malformed request fields."""

    status_code = 400


class SessionNotFoundError(SessionEngineError):
    """Unknown therapist, child or session."""

    status_code = 404


class NoTypingResultsError(SessionEngineError):
    status_code = 404


class GameModePolicyError(SessionEngineError):
    """Typing results sent to a session whose game mode is not typing."""

    status_code = 403

    def payload(self) -> dict:
        return {"error": self.message, "accepted": False}


class SessionConflictError(SessionEngineError):
    """Optimistic-lock retries ran out."""

    status_code = 503


class EmotionServiceError(SessionEngineError):
    status_code = 502
