from datetime import datetime
from typing import Any

from src.domain.entities import Chapter, ChapterStatus


def can_transition(
    current: ChapterStatus,
    new: ChapterStatus,
    scheduled_publish_at: datetime | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Determine if a chapter status transition is allowed.
    """
    if current == new:
        # Rescheduling replaces the date, so it is validated like a fresh schedule
        if new == "scheduled":
            return _is_future(scheduled_publish_at, now)
        return True

    if current in ("draft", "private"):
        if new == "scheduled":
            return _is_future(scheduled_publish_at, now)
        if new in ("draft", "private", "published"):
            return True

    if current == "scheduled":
        if new == "published":
            return True
        if new == "draft":
            return True  # Un-schedule

    if current == "published":
        if new == "private":
            return True

    return False


def _is_future(scheduled_publish_at: datetime | None, now: datetime | None) -> bool:
    if not scheduled_publish_at or not now:
        return False
    return scheduled_publish_at > now


def transition(
    chapter: Chapter,
    new_status: ChapterStatus,
    now: datetime,
    scheduled_publish_at: datetime | None = None,
    timezone: str | None = None,
) -> Chapter:
    """
    Return a NEW Chapter with the updated status and timestamps.
    Raises ValueError if transition is invalid.
    """
    if not can_transition(chapter.status, new_status, scheduled_publish_at, now):
        raise ValueError(f"Invalid transition from {chapter.status} to {new_status}")

    updates: dict[str, Any] = {
        "status": new_status,
        "updated_at": now,
    }

    if new_status == "scheduled":
        updates["scheduled_publish_at"] = scheduled_publish_at
        updates["timezone"] = timezone
        updates["published_at"] = None
    else:
        # Schedule fields only carry meaning while scheduled
        updates["scheduled_publish_at"] = None
        updates["timezone"] = None

    if new_status == "published":
        updates["published_at"] = now

    if new_status == "draft":
        updates["published_at"] = None

    return chapter.model_copy(update=updates)
