"""
Author Schedule API Routes.

Upcoming scheduled chapters for the calling author.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.adapters.clock import SystemClock
from src.adapters.sqlite.repos import SQLiteChapterRepo, SQLiteStoryRepo
from src.api.deps import (
    auto_publish,
    get_chapter_repo,
    get_clock,
    get_current_author_id,
    get_story_repo,
)
from src.components.scheduler import ListUpcomingInput, run_list_upcoming

router = APIRouter(dependencies=[Depends(auto_publish)])


class ScheduledPost(BaseModel):
    chapter_id: UUID
    title: str
    chapter_number: int
    story_id: UUID
    story_title: str | None
    story_slug: str | None
    scheduled_publish_at: datetime | None
    timezone: str | None


class ScheduledPostsResponse(BaseModel):
    posts: list[ScheduledPost]


@router.get("/scheduled-posts", response_model=ScheduledPostsResponse)
def scheduled_posts(
    author_id: UUID = Depends(get_current_author_id),
    repo: SQLiteChapterRepo = Depends(get_chapter_repo),
    stories: SQLiteStoryRepo = Depends(get_story_repo),
    clock: SystemClock = Depends(get_clock),
) -> Any:
    result = run_list_upcoming(
        ListUpcomingInput(author_id=author_id),
        repo=repo,
        stories=stories,
        time_port=clock,
    )
    return ScheduledPostsResponse(
        posts=[
            ScheduledPost(
                chapter_id=v.chapter_id,
                title=v.title,
                chapter_number=v.chapter_number,
                story_id=v.story_id,
                story_title=v.story_title,
                story_slug=v.story_slug,
                scheduled_publish_at=v.scheduled_publish_at,
                timezone=v.timezone,
            )
            for v in result.chapters
        ]
    )
