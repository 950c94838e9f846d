"""SQLAlchemy ORM models for the typing-therapy session engine."""

from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Therapists & children
# ---------------------------------------------------------------------------


class Therapist(Base):
    __tablename__ = "therapists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)  # children join with this
    password_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)

    children: Mapped[list["Child"]] = relationship(
        back_populates="therapist", cascade="all, delete-orphan", order_by="Child.id"
    )


class Child(Base):
    __tablename__ = "children"
    __table_args__ = (UniqueConstraint("therapist_id", "username"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    therapist_id: Mapped[int] = mapped_column(Integer, ForeignKey("therapists.id"))
    username: Mapped[str] = mapped_column(String(128), nullable=False)
    joined_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)
    assigned_themes: Mapped[list[str]] = mapped_column(JSON, default=list)
    preferred_game: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True
    )  # typing | puzzles | reading
    preferred_story: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    played_puzzles: Mapped[list[str]] = mapped_column(JSON, default=list)  # flat, deduplicated ids

    therapist: Mapped["Therapist"] = relationship(back_populates="children")
    sessions: Mapped[list["TherapySession"]] = relationship(
        back_populates="child", cascade="all, delete-orphan", order_by="TherapySession.id",
        lazy="selectin",
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TherapySession(Base):
    __tablename__ = "therapy_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    child_id: Mapped[int] = mapped_column(Integer, ForeignKey("children.id"))
    session_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    started_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)

    # Snapshot of the child's themes when the session started
    assigned_themes: Mapped[list[str]] = mapped_column(JSON, default=list)
    # Every theme assignment event, including repeats of the current theme
    themes_changed: Mapped[list[str]] = mapped_column(JSON, default=list)
    emotions_of_child: Mapped[list[str]] = mapped_column(JSON, default=list)

    preferred_game: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    preferred_story: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # word -> most recent input; the typing_results rows are authoritative
    typing_results_map: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)
    typing_analysis: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    reading_recordings: Mapped[Optional[list[dict]]] = mapped_column(JSON, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    child: Mapped["Child"] = relationship(back_populates="sessions")
    typing_results: Mapped[list["TypingResult"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", order_by="TypingResult.id",
        lazy="selectin",
    )
    played_puzzles: Mapped[list["PuzzleRecord"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", order_by="PuzzleRecord.id",
        lazy="selectin",
    )


# ---------------------------------------------------------------------------
# Session activity rows
# ---------------------------------------------------------------------------


class TypingResult(Base):
    __tablename__ = "typing_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_pk: Mapped[int] = mapped_column(
        Integer, ForeignKey("therapy_sessions.id"), index=True
    )
    word: Mapped[str] = mapped_column(String(100), nullable=False)
    input: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    correct: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)

    session: Mapped["TherapySession"] = relationship(back_populates="typing_results")

    def as_dict(self) -> dict:
        return {
            "word": self.word,
            "input": self.input,
            "correct": self.correct,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


class PuzzleRecord(Base):
    __tablename__ = "puzzle_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_pk: Mapped[int] = mapped_column(
        Integer, ForeignKey("therapy_sessions.id"), index=True
    )
    theme: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    puzzle_id: Mapped[str] = mapped_column(String(100), nullable=False)
    completed_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)
    emotions_during: Mapped[list[str]] = mapped_column(JSON, default=list)

    session: Mapped["TherapySession"] = relationship(back_populates="played_puzzles")

    def as_dict(self) -> dict:
        return {
            "theme": self.theme,
            "level": self.level,
            "puzzleId": self.puzzle_id,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "emotionsDuring": list(self.emotions_during or []),
        }
