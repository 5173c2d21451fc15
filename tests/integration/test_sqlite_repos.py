import sqlite3
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from src.adapters.sqlite.repos import SQLiteRateLimitStore, parse_dt, to_db_ts
from src.domain.entities import Chapter, Story


def test_to_db_ts_is_fixed_width_utc():
    local = datetime(2025, 6, 1, 14, 0, tzinfo=UTC).astimezone()
    a = to_db_ts(datetime(2025, 6, 1, 12, 0, tzinfo=UTC))
    b = to_db_ts(datetime(2025, 6, 1, 12, 0, 0, 5, tzinfo=UTC))

    assert a == "2025-06-01T12:00:00.000000+00:00"
    assert len(a) == len(b)
    assert a < b
    assert parse_dt(to_db_ts(local)) == local


def test_naive_timestamps_taken_as_utc():
    assert to_db_ts(datetime(2025, 6, 1, 12, 0)) == "2025-06-01T12:00:00.000000+00:00"


def test_author_roundtrip(author_repo, author):
    fetched = author_repo.get_by_id(author.id)

    assert fetched is not None
    assert fetched.username == "keeper"
    assert fetched.stats.total_chapters_published == 0
    assert author_repo.get_by_id(uuid4()) is None


def test_story_lookup(story_repo, story):
    assert story_repo.get_by_slug("fog-light").id == story.id
    assert story_repo.get_many([story.id, uuid4()]) == {story.id: story_repo.get_by_id(story.id)}
    assert story_repo.get_many([]) == {}


def test_story_save_never_overwrites_total_words(story_repo, story, make_chapter):
    make_chapter(status="published", word_count=700)

    story_repo.save(story.model_copy(update={"title": "Fog Light (revised)", "total_words": 0}))

    saved = story_repo.get_by_id(story.id)
    assert saved.title == "Fog Light (revised)"
    assert saved.total_words == 700


def test_chapter_roundtrip(chapter_repo, make_chapter, now):
    ch = make_chapter(
        status="scheduled",
        scheduled_publish_at=now + timedelta(hours=1),
        timezone="Europe/London",
        content="<p>hello</p>",
    )

    fetched = chapter_repo.get_by_id(ch.id)

    assert fetched.status == "scheduled"
    assert fetched.scheduled_publish_at == now + timedelta(hours=1)
    assert fetched.timezone == "Europe/London"
    assert fetched.content == "<p>hello</p>"


def test_list_by_story_filters_status(chapter_repo, story, make_chapter):
    make_chapter(status="published")
    make_chapter(status="draft")
    make_chapter(status="published")

    assert [c.chapter_number for c in chapter_repo.list_by_story(story.id)] == [1, 2, 3]
    assert [c.chapter_number for c in chapter_repo.list_by_story(story.id, "published")] == [1, 3]


def test_list_due_orders_and_limits(chapter_repo, make_chapter, now):
    late = make_chapter(status="scheduled", scheduled_publish_at=now - timedelta(minutes=1))
    early = make_chapter(status="scheduled", scheduled_publish_at=now - timedelta(hours=1))
    exact = make_chapter(status="scheduled", scheduled_publish_at=now)
    make_chapter(status="scheduled", scheduled_publish_at=now + timedelta(microseconds=1))
    make_chapter(status="draft")

    due = chapter_repo.list_due(now, limit=10)

    assert [c.id for c in due] == [early.id, late.id, exact.id]
    assert [c.id for c in chapter_repo.list_due(now, limit=1)] == [early.id]


def test_list_scheduled_by_author(chapter_repo, make_chapter, author, now):
    mine = make_chapter(status="scheduled", scheduled_publish_at=now + timedelta(days=1))

    assert [c.id for c in chapter_repo.list_scheduled()] == [mine.id]
    assert [c.id for c in chapter_repo.list_scheduled(author.id)] == [mine.id]
    assert chapter_repo.list_scheduled(uuid4()) == []


def test_publish_if_scheduled(
    chapter_repo, story_repo, author_repo, story, author, make_chapter, now
):
    ch = make_chapter(
        status="scheduled", scheduled_publish_at=now - timedelta(minutes=1), word_count=250
    )

    published = chapter_repo.publish_if_scheduled(ch.id, now)

    assert published is not None
    assert published.status == "published"
    assert published.published_at == now
    assert published.scheduled_publish_at is None
    saved_story = story_repo.get_by_id(story.id)
    assert saved_story.total_words == 250
    assert saved_story.updated_at == now
    assert author_repo.get_by_id(author.id).stats.total_words_written == 250


def test_publish_if_scheduled_is_conditional(chapter_repo, story_repo, story, make_chapter, now):
    future = make_chapter(status="scheduled", scheduled_publish_at=now + timedelta(minutes=1))
    draft = make_chapter(status="draft", word_count=100)

    assert chapter_repo.publish_if_scheduled(future.id, now) is None
    assert chapter_repo.publish_if_scheduled(draft.id, now) is None
    assert chapter_repo.publish_if_scheduled(uuid4(), now) is None
    assert chapter_repo.get_by_id(future.id).status == "scheduled"
    assert story_repo.get_by_id(story.id).total_words == 0


def test_save_recomputes_on_unpublish(chapter_repo, story_repo, story, make_chapter, now):
    ch = make_chapter(status="published", published_at=now, word_count=400)
    assert story_repo.get_by_id(story.id).total_words == 400

    chapter_repo.save(ch.model_copy(update={"status": "private"}))

    assert story_repo.get_by_id(story.id).total_words == 0


def test_aggregates_scoped_per_story(chapter_repo, story_repo, author, make_chapter, now):
    other = story_repo.save(Story(author_id=author.id, slug="tide", title="Tide"))
    make_chapter(status="published", word_count=100)
    chapter_repo.save(
        Chapter(
            story_id=other.id,
            author_id=author.id,
            chapter_number=1,
            title="Low water",
            status="published",
            word_count=40,
        )
    )

    assert story_repo.get_by_id(other.id).total_words == 40


class TestRateLimitStore:
    def test_shared_across_instances(self, db_path, now):
        first = SQLiteRateLimitStore(db_path)
        second = SQLiteRateLimitStore(db_path)

        assert first.hit("k", 60, 2, now) == (True, None)
        assert second.hit("k", 60, 2, now + timedelta(seconds=1)) == (True, None)
        allowed, oldest = first.hit("k", 60, 2, now + timedelta(seconds=2))

        assert allowed is False
        assert oldest == now

    def test_old_hits_expire(self, db_path, now):
        store = SQLiteRateLimitStore(db_path)
        store.hit("k", 60, 1, now)

        assert store.hit("k", 60, 1, now + timedelta(seconds=60))[0] is True


def test_update_schedule_if_status_matches_stored_status(chapter_repo, make_chapter, now):
    ch = make_chapter(status="scheduled", scheduled_publish_at=now + timedelta(days=1))
    moved = ch.model_copy(update={"scheduled_publish_at": now + timedelta(days=2)})

    assert chapter_repo.update_schedule_if_status(moved, "draft") is None
    assert chapter_repo.get_by_id(ch.id).scheduled_publish_at == now + timedelta(days=1)

    saved = chapter_repo.update_schedule_if_status(moved, "scheduled")
    assert saved is not None
    assert saved.scheduled_publish_at == now + timedelta(days=2)


def test_blank_timestamp_reads_as_aware_minimum(db_path, chapter_repo, make_chapter, now):
    ch = make_chapter()
    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE chapters SET created_at = '' WHERE id = ?", (str(ch.id),))
    conn.commit()
    conn.close()

    fetched = chapter_repo.get_by_id(ch.id)

    assert fetched.created_at.tzinfo is not None
    assert fetched.created_at < now
