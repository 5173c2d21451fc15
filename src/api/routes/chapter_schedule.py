"""
Chapter Scheduling API Routes.

Lets an author set or cancel the future publish time of one of their
chapters.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.adapters.clock import SystemClock
from src.adapters.sqlite.repos import SQLiteChapterRepo
from src.api.deps import auto_publish, get_chapter_repo, get_clock, get_current_author_id
from src.components.scheduler import (
    CHAPTER_NOT_FOUND,
    FORBIDDEN,
    ScheduleChapterInput,
    SchedulerValidationError,
    UnscheduleChapterInput,
    run_schedule,
    run_unschedule,
)
from src.domain.entities import Chapter

router = APIRouter(dependencies=[Depends(auto_publish)])


# --- Request/Response Models ---


class ScheduleRequest(BaseModel):
    """Request to schedule a chapter."""

    scheduled_date: datetime = Field(..., description="Target publish time; naive values are UTC")
    timezone: str | None = Field(default=None, description="IANA timezone the author picked in")


class ScheduledChapterBody(BaseModel):
    id: UUID
    scheduled_publish_at: datetime | None
    timezone: str | None
    status: str


class ScheduleResponse(BaseModel):
    success: bool
    chapter: ScheduledChapterBody


# --- Helpers ---

_STATUS_BY_CODE = {
    CHAPTER_NOT_FOUND: 404,
    FORBIDDEN: 403,
}


def _serialize_errors(errors: list[SchedulerValidationError]) -> list[dict[str, Any]]:
    """Serialize errors for JSON response."""
    return [
        {
            "code": e.code,
            "message": e.message,
            "chapter_id": str(e.chapter_id) if e.chapter_id else None,
        }
        for e in errors
    ]


def _raise_for_errors(errors: list[SchedulerValidationError]) -> None:
    status_code = _STATUS_BY_CODE.get(errors[0].code, 400)
    raise HTTPException(status_code=status_code, detail={"errors": _serialize_errors(errors)})


def chapter_to_body(chapter: Chapter) -> ScheduledChapterBody:
    return ScheduledChapterBody(
        id=chapter.id,
        scheduled_publish_at=chapter.scheduled_publish_at,
        timezone=chapter.timezone,
        status=chapter.status,
    )


# --- Routes ---


@router.post("/{chapter_id}/schedule", response_model=ScheduleResponse)
def schedule_chapter(
    chapter_id: UUID,
    request: ScheduleRequest,
    author_id: UUID = Depends(get_current_author_id),
    repo: SQLiteChapterRepo = Depends(get_chapter_repo),
    clock: SystemClock = Depends(get_clock),
) -> Any:
    """Schedule (or reschedule) a chapter for future publishing."""
    result = run_schedule(
        ScheduleChapterInput(
            chapter_id=chapter_id,
            author_id=author_id,
            publish_at_utc=request.scheduled_date,
            timezone=request.timezone,
        ),
        repo=repo,
        time_port=clock,
    )

    if result.errors:
        _raise_for_errors(result.errors)

    if result.chapter is None:
        raise HTTPException(status_code=500, detail="Failed to schedule chapter")

    return ScheduleResponse(success=True, chapter=chapter_to_body(result.chapter))


@router.delete("/{chapter_id}/schedule")
def unschedule_chapter(
    chapter_id: UUID,
    author_id: UUID = Depends(get_current_author_id),
    repo: SQLiteChapterRepo = Depends(get_chapter_repo),
    clock: SystemClock = Depends(get_clock),
) -> dict[str, Any]:
    """Cancel a chapter's schedule; the chapter goes back to draft."""
    result = run_unschedule(
        UnscheduleChapterInput(chapter_id=chapter_id, author_id=author_id),
        repo=repo,
        time_port=clock,
    )

    if result.errors:
        _raise_for_errors(result.errors)

    return {"success": True}
