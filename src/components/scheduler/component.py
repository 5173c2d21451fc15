"""
Scheduler component - Author-facing chapter scheduling.

Handles setting and clearing a chapter's publish schedule, and the
read-only views over scheduled chapters used by operators and authors.

Invariants:
- I1: A schedule is only accepted when strictly in the future at write time
- I2: The timezone label is display metadata; comparisons are in UTC
- I3: Only the chapter's author may change its schedule
- I4: Published chapters cannot be scheduled again
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.domain.state import transition

from .models import (
    CHAPTER_NOT_FOUND,
    FORBIDDEN,
    INVALID_TIMEZONE,
    INVALID_TRANSITION,
    NOT_SCHEDULED,
    PUBLISH_TIME_PAST,
    ListScheduledInput,
    ListUpcomingInput,
    ScheduleChapterInput,
    ScheduledChapterView,
    ScheduledListOutput,
    ScheduleOutput,
    SchedulerValidationError,
    UnscheduleChapterInput,
    UnscheduleOutput,
)
from .ports import ChapterRepoPort, StoryRepoPort, TimePort

logger = logging.getLogger(__name__)


def _now_utc(time_port: TimePort | None) -> datetime:
    if time_port:
        return time_port.now_utc()
    return datetime.now(UTC)


def as_utc(dt: datetime) -> datetime:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def is_valid_timezone(name: str) -> bool:
    """Check that `name` is a known IANA timezone."""
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _error(code: str, message: str, chapter_id: UUID | None = None) -> SchedulerValidationError:
    return SchedulerValidationError(code=code, message=message, chapter_id=chapter_id)


# --- Component Entry Points ---


def run_schedule(
    inp: ScheduleChapterInput,
    *,
    repo: ChapterRepoPort,
    time_port: TimePort | None = None,
) -> ScheduleOutput:
    """
    Schedule a chapter for publishing.

    Args:
        inp: Input containing chapter, author, target time and timezone label.
        repo: Chapter repository port.
        time_port: Optional time port.

    Returns:
        ScheduleOutput with the scheduled chapter or errors.
    """
    chapter = repo.get_by_id(inp.chapter_id)
    if chapter is None:
        return ScheduleOutput(
            chapter=None,
            errors=[_error(CHAPTER_NOT_FOUND, "Chapter not found", inp.chapter_id)],
            success=False,
        )

    if chapter.author_id != inp.author_id:
        return ScheduleOutput(
            chapter=None,
            errors=[_error(FORBIDDEN, "Only the author can schedule this chapter", chapter.id)],
            success=False,
        )

    if inp.timezone is not None and not is_valid_timezone(inp.timezone):
        return ScheduleOutput(
            chapter=None,
            errors=[_error(INVALID_TIMEZONE, f"Unknown timezone: {inp.timezone}", chapter.id)],
            success=False,
        )

    now = _now_utc(time_port)
    publish_at = as_utc(inp.publish_at_utc)
    if publish_at <= now:
        return ScheduleOutput(
            chapter=None,
            errors=[
                _error(PUBLISH_TIME_PAST, "Scheduled date must be in the future", chapter.id)
            ],
            success=False,
        )

    try:
        updated = transition(chapter, "scheduled", now, publish_at, inp.timezone)
    except ValueError as e:
        return ScheduleOutput(
            chapter=None,
            errors=[_error(INVALID_TRANSITION, str(e), chapter.id)],
            success=False,
        )

    saved = repo.update_schedule_if_status(updated, chapter.status)
    if saved is None:
        # A publish pass or another edit moved the chapter on since it was read
        current = repo.get_by_id(chapter.id)
        status = current.status if current else "missing"
        return ScheduleOutput(
            chapter=None,
            errors=[
                _error(
                    INVALID_TRANSITION,
                    f"Chapter is now '{status}' and cannot be scheduled",
                    chapter.id,
                )
            ],
            success=False,
        )

    logger.info(
        "Chapter %s scheduled for %s (%s)",
        saved.id,
        publish_at.isoformat(),
        inp.timezone or "UTC",
    )
    return ScheduleOutput(chapter=saved, errors=[], success=True)


def run_unschedule(
    inp: UnscheduleChapterInput,
    *,
    repo: ChapterRepoPort,
    time_port: TimePort | None = None,
) -> UnscheduleOutput:
    """
    Cancel a chapter's schedule, returning it to draft.

    Args:
        inp: Input containing chapter and author.
        repo: Chapter repository port.
        time_port: Optional time port.

    Returns:
        UnscheduleOutput with the draft chapter or errors.
    """
    chapter = repo.get_by_id(inp.chapter_id)
    if chapter is None:
        return UnscheduleOutput(
            chapter=None,
            errors=[_error(CHAPTER_NOT_FOUND, "Chapter not found", inp.chapter_id)],
            success=False,
        )

    if chapter.author_id != inp.author_id:
        return UnscheduleOutput(
            chapter=None,
            errors=[_error(FORBIDDEN, "Only the author can unschedule this chapter", chapter.id)],
            success=False,
        )

    if chapter.status != "scheduled":
        return UnscheduleOutput(
            chapter=None,
            errors=[
                _error(NOT_SCHEDULED, f"Chapter is '{chapter.status}', not scheduled", chapter.id)
            ],
            success=False,
        )

    updated = transition(chapter, "draft", _now_utc(time_port))
    saved = repo.update_schedule_if_status(updated, "scheduled")
    if saved is None:
        return UnscheduleOutput(
            chapter=None,
            errors=[_error(NOT_SCHEDULED, "Chapter is no longer scheduled", chapter.id)],
            success=False,
        )

    logger.info("Chapter %s unscheduled", saved.id)
    return UnscheduleOutput(chapter=saved, errors=[], success=True)


def _build_views(
    repo: ChapterRepoPort,
    stories: StoryRepoPort,
    now: datetime,
    author_id: UUID | None = None,
) -> list[ScheduledChapterView]:
    chapters = repo.list_scheduled(author_id)
    story_map = stories.get_many(list({c.story_id for c in chapters}))

    views = []
    for ch in chapters:
        story = story_map.get(ch.story_id)
        due_at = ch.scheduled_publish_at
        views.append(
            ScheduledChapterView(
                chapter_id=ch.id,
                title=ch.title,
                chapter_number=ch.chapter_number,
                story_id=ch.story_id,
                story_title=story.title if story else None,
                story_slug=story.slug if story else None,
                author_id=ch.author_id,
                scheduled_publish_at=due_at,
                timezone=ch.timezone,
                should_publish=due_at is not None and due_at <= now,
                seconds_overdue=(now - due_at).total_seconds() if due_at else None,
            )
        )
    return views


def run_list_scheduled(
    inp: ListScheduledInput,
    *,
    repo: ChapterRepoPort,
    stories: StoryRepoPort,
    time_port: TimePort | None = None,
) -> ScheduledListOutput:
    """List every scheduled chapter with its due state."""
    now = _now_utc(time_port)
    views = _build_views(repo, stories, now)
    return ScheduledListOutput(current_time=now, chapters=tuple(views))


def run_list_upcoming(
    inp: ListUpcomingInput,
    *,
    repo: ChapterRepoPort,
    stories: StoryRepoPort,
    time_port: TimePort | None = None,
) -> ScheduledListOutput:
    """List an author's chapters scheduled strictly in the future."""
    now = _now_utc(time_port)
    views = [v for v in _build_views(repo, stories, now, inp.author_id) if not v.should_publish]
    return ScheduledListOutput(current_time=now, chapters=tuple(views))


def run(
    inp: ScheduleChapterInput | UnscheduleChapterInput | ListScheduledInput | ListUpcomingInput,
    *,
    repo: ChapterRepoPort,
    stories: StoryRepoPort | None = None,
    time_port: TimePort | None = None,
) -> ScheduleOutput | UnscheduleOutput | ScheduledListOutput:
    """
    Main entry point for the scheduler component.

    Dispatches to appropriate handler based on input type.
    """
    if isinstance(inp, ScheduleChapterInput):
        return run_schedule(inp, repo=repo, time_port=time_port)
    elif isinstance(inp, UnscheduleChapterInput):
        return run_unschedule(inp, repo=repo, time_port=time_port)
    elif isinstance(inp, (ListScheduledInput, ListUpcomingInput)):
        if stories is None:
            raise ValueError("StoryRepoPort is required for list operations")
        if isinstance(inp, ListScheduledInput):
            return run_list_scheduled(inp, repo=repo, stories=stories, time_port=time_port)
        return run_list_upcoming(inp, repo=repo, stories=stories, time_port=time_port)
    else:
        raise ValueError(f"Unknown input type: {type(inp)}")
