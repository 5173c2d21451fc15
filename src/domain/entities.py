from datetime import UTC, datetime
from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

# --- Enums / Literals ---
ChapterStatus = Literal["draft", "scheduled", "published", "private"]
StoryStatus = Literal["draft", "ongoing", "completed", "hiatus"]
StoryVisibility = Literal["public", "private", "unlisted"]


def utc_now() -> datetime:
    return datetime.now(UTC)


# --- Authors ---

class AuthorStats(BaseModel):
    total_chapters_published: int = 0
    total_words_written: int = 0


class Author(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    username: str
    display_name: str
    stats: AuthorStats = Field(default_factory=AuthorStats)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# --- Stories ---

class Story(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    author_id: UUID
    slug: str
    title: str
    description: str = ""
    status: StoryStatus = "draft"
    visibility: StoryVisibility = "public"

    # Cached aggregate: sum of word_count over published chapters
    total_words: int = 0

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# --- Chapters ---

class Chapter(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    story_id: UUID
    author_id: UUID
    chapter_number: int
    title: str
    content: str = ""
    status: ChapterStatus = "draft"

    scheduled_publish_at: datetime | None = None
    timezone: str | None = None  # display only
    published_at: datetime | None = None

    word_count: int = 0
    reading_time_minutes: int = 0

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def is_due(self, now: datetime) -> bool:
        """True when the chapter is scheduled at or before `now`."""
        return (
            self.status == "scheduled"
            and self.scheduled_publish_at is not None
            and self.scheduled_publish_at <= now
        )
