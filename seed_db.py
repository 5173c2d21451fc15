import os
import sys
from datetime import UTC, datetime, timedelta
from uuid import uuid4

# Add root to pythonpath
sys.path.append(os.getcwd())

from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite.repos import SQLiteAuthorRepo, SQLiteChapterRepo, SQLiteStoryRepo
from src.api.deps import Settings
from src.domain.entities import Author, Chapter, Story
from src.domain.text import with_text_stats
from src.rules.loader import load_rules

LOREM = (
    "The lighthouse keeper counted ships the way other people counted sheep, "
    "and on the night the fog came in she lost count entirely. "
)


def seed() -> None:
    settings = Settings()
    print(f"Seeding to {settings.db_path}")

    rules = load_rules(settings.rules_path)
    SQLiteMigrator(settings.db_path, settings.migrations_dir).run_migrations()

    authors = SQLiteAuthorRepo(settings.db_path)
    stories = SQLiteStoryRepo(settings.db_path)
    chapters = SQLiteChapterRepo(settings.db_path)

    now = datetime.now(UTC)

    author = authors.save(
        Author(id=uuid4(), username=f"keeper-{uuid4().hex[:6]}", display_name="The Keeper")
    )
    story = stories.save(
        Story(
            id=uuid4(),
            author_id=author.id,
            slug=f"fog-light-{author.id.hex[:6]}",
            title="Fog Light",
            description="A serial about a lighthouse and the ships it misses.",
            status="ongoing",
        )
    )

    # 1: already published, 2: overdue, 3: due in an hour, 4: draft
    plan: list[tuple[str, datetime | None]] = [
        ("published", None),
        ("scheduled", now - timedelta(minutes=5)),
        ("scheduled", now + timedelta(hours=1)),
        ("draft", None),
    ]
    for number, (status, when) in enumerate(plan, start=1):
        chapter = Chapter(
            id=uuid4(),
            story_id=story.id,
            author_id=author.id,
            chapter_number=number,
            title=f"Chapter {number}",
            content=LOREM * (number * 20),
            status=status,
            scheduled_publish_at=when,
            timezone="Europe/London" if when else None,
            published_at=now - timedelta(days=1) if status == "published" else None,
        )
        chapters.save(with_text_stats(chapter, rules.content.words_per_minute))

    print(f"Seeded author {author.id} ({author.username}) with story '{story.slug}'.")
    print(f"Set X-Author-Id: {author.id} to call the author endpoints.")


if __name__ == "__main__":
    seed()
