"""
Reconciler component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from src.domain.entities import Chapter


class ChapterRepoPort(Protocol):
    """Schedule store interface used by the reconciler."""

    def list_due(self, now_utc: datetime, limit: int) -> list[Chapter]:
        """List scheduled chapters due at or before now_utc, oldest first."""
        ...

    def publish_if_scheduled(self, chapter_id: UUID, now_utc: datetime) -> Chapter | None:
        """
        Atomically flip a due chapter to published and recompute aggregates.

        Returns the published chapter, or None if it was no longer
        scheduled and due (already published by a concurrent pass).
        """
        ...


class ClockPort(Protocol):
    """Time source for the pass."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...

    def monotonic(self) -> float:
        """Get a monotonic reading in seconds."""
        ...
