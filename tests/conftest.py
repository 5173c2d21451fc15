from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite.repos import SQLiteAuthorRepo, SQLiteChapterRepo, SQLiteStoryRepo
from src.domain.entities import Author, Chapter, Story
from src.rules.loader import load_rules

PROJECT_ROOT = Path(__file__).resolve().parents[1]
MIGRATIONS_DIR = str(PROJECT_ROOT / "migrations")
RULES_PATH = PROJECT_ROOT / "rules.yaml"


class FixedClock:
    """Clock pinned to a given instant; monotonic advances only when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now
        self.mono = 0.0

    def now_utc(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)
        self.mono += seconds


@pytest.fixture
def now():
    return datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def clock(now):
    return FixedClock(now)


@pytest.fixture
def rules():
    """Load REAL rules from project root."""
    return load_rules(RULES_PATH)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "story_press.db")
    SQLiteMigrator(path, MIGRATIONS_DIR).run_migrations()
    return path


@pytest.fixture
def author_repo(db_path):
    return SQLiteAuthorRepo(db_path)


@pytest.fixture
def story_repo(db_path):
    return SQLiteStoryRepo(db_path)


@pytest.fixture
def chapter_repo(db_path):
    return SQLiteChapterRepo(db_path)


@pytest.fixture
def author(author_repo):
    return author_repo.save(Author(username="keeper", display_name="The Keeper"))


@pytest.fixture
def story(story_repo, author):
    return story_repo.save(Story(author_id=author.id, slug="fog-light", title="Fog Light"))


@pytest.fixture
def make_chapter(chapter_repo, story, author):
    """Factory persisting a chapter in the default story."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "story_id": story.id,
            "author_id": author.id,
            "chapter_number": counter["n"],
            "title": f"Chapter {counter['n']}",
        }
        fields.update(overrides)
        return chapter_repo.save(Chapter(**fields))

    return _make
