"""
Scheduler component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from src.domain.entities import Chapter, Story


class ChapterRepoPort(Protocol):
    """Repository interface for chapters."""

    def get_by_id(self, chapter_id: UUID) -> Chapter | None:
        """Get chapter by ID."""
        ...

    def update_schedule_if_status(self, chapter: Chapter, expected_status: str) -> Chapter | None:
        """Write schedule fields only if the stored status still matches; None otherwise."""
        ...

    def list_scheduled(self, author_id: UUID | None = None) -> list[Chapter]:
        """List scheduled chapters by due date, optionally for one author."""
        ...


class StoryRepoPort(Protocol):
    """Repository interface for stories."""

    def get_many(self, story_ids: list[UUID]) -> dict[UUID, Story]:
        """Get stories keyed by ID; unknown IDs are omitted."""
        ...


class TimePort(Protocol):
    """Time port for schedule validation."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...
