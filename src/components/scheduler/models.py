"""
Scheduler component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from src.domain.entities import Chapter

# --- Validation Error ---


@dataclass(frozen=True)
class SchedulerValidationError:
    """Scheduler validation error."""

    code: str
    message: str
    chapter_id: UUID | None = None


# Error codes the HTTP layer maps to status codes
CHAPTER_NOT_FOUND = "chapter_not_found"
FORBIDDEN = "forbidden"
PUBLISH_TIME_PAST = "publish_time_past"
INVALID_TIMEZONE = "invalid_timezone"
INVALID_TRANSITION = "invalid_transition"
NOT_SCHEDULED = "not_scheduled"


# --- Input Models ---


@dataclass(frozen=True)
class ScheduleChapterInput:
    """Input for scheduling a chapter for future publish."""

    chapter_id: UUID
    author_id: UUID
    publish_at_utc: datetime
    timezone: str | None = None


@dataclass(frozen=True)
class UnscheduleChapterInput:
    """Input for cancelling a chapter's schedule."""

    chapter_id: UUID
    author_id: UUID


@dataclass(frozen=True)
class ListScheduledInput:
    """Input for listing every scheduled chapter."""


@dataclass(frozen=True)
class ListUpcomingInput:
    """Input for listing one author's upcoming scheduled chapters."""

    author_id: UUID


# --- Views ---


@dataclass(frozen=True)
class ScheduledChapterView:
    """A scheduled chapter joined with its story, relative to a point in time."""

    chapter_id: UUID
    title: str
    chapter_number: int
    story_id: UUID
    story_title: str | None
    story_slug: str | None
    author_id: UUID
    scheduled_publish_at: datetime | None
    timezone: str | None
    should_publish: bool
    # Positive when already due, negative while still in the future
    seconds_overdue: float | None


# --- Output Models ---


@dataclass(frozen=True)
class ScheduleOutput:
    """Output for schedule operation."""

    chapter: Chapter | None
    errors: list[SchedulerValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class UnscheduleOutput:
    """Output for unschedule operation."""

    chapter: Chapter | None
    errors: list[SchedulerValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class ScheduledListOutput:
    """Output for listing scheduled chapters."""

    current_time: datetime
    chapters: tuple[ScheduledChapterView, ...]

    @property
    def total_scheduled(self) -> int:
        return len(self.chapters)

    @property
    def ready_to_publish(self) -> int:
        return sum(1 for c in self.chapters if c.should_publish)
