"""Seed the database with a default therapist and practice child."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models import Child, Therapist

DEFAULT_CHILD_NAME = "learner"


async def seed_default_users(db: AsyncSession) -> None:
    """Create the default therapist and one typing-game child if missing."""

    # --- Therapist ---
    result = await db.execute(
        select(Therapist).where(Therapist.username == settings.default_therapist_username)
    )
    therapist = result.scalar_one_or_none()
    if therapist is None:
        therapist = Therapist(
            username=settings.default_therapist_username,
            code=settings.default_therapist_code,
        )
        db.add(therapist)
        await db.flush()

    # --- Default child ---
    result = await db.execute(
        select(Child).where(
            Child.therapist_id == therapist.id, Child.username == DEFAULT_CHILD_NAME
        )
    )
    child = result.scalar_one_or_none()
    if child is None:
        db.add(Child(
            therapist_id=therapist.id,
            username=DEFAULT_CHILD_NAME,
            assigned_themes=["underwater"],
            preferred_game="typing",
            played_puzzles=[],
        ))

    await db.commit()
