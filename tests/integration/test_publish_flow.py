"""
End-to-end publishing against a real SQLite database.
"""

from __future__ import annotations

import sqlite3
import threading
from datetime import timedelta

import pytest

from src.adapters.sqlite.repos import SQLiteChapterRepo
from src.components.reconciler import (
    PublishReconciler,
    ReconcileConfig,
    ReconcileInput,
    run_reconcile,
)
from src.components.scheduler import (
    INVALID_TRANSITION,
    NOT_SCHEDULED,
    ScheduleChapterInput,
    UnscheduleChapterInput,
    run_schedule,
    run_unschedule,
)
from src.domain.entities import Chapter, Story


def test_story_total_after_publish(
    chapter_repo, story_repo, author_repo, story, author, make_chapter, clock, now
):
    a = make_chapter(
        status="scheduled", scheduled_publish_at=now - timedelta(days=1), word_count=1000
    )
    b = make_chapter(status="published", published_at=now - timedelta(days=3), word_count=500)

    result = run_reconcile(ReconcileInput(), repo=chapter_repo, clock=clock)

    assert result.published_count == 1
    assert result.errors == []
    assert chapter_repo.get_by_id(a.id).status == "published"
    assert chapter_repo.get_by_id(b.id).status == "published"
    assert story_repo.get_by_id(story.id).total_words == 1500
    stats = author_repo.get_by_id(author.id).stats
    assert stats.total_chapters_published == 2
    assert stats.total_words_written == 1500


def test_future_and_unscheduled_untouched(chapter_repo, make_chapter, clock, now):
    future = make_chapter(status="scheduled", scheduled_publish_at=now + timedelta(minutes=5))
    draft = make_chapter(status="draft")

    result = run_reconcile(ReconcileInput(), repo=chapter_repo, clock=clock)

    assert result.published_count == 0
    assert chapter_repo.get_by_id(future.id).status == "scheduled"
    assert chapter_repo.get_by_id(draft.id).status == "draft"


def test_second_pass_is_noop(chapter_repo, story_repo, story, make_chapter, clock, now):
    make_chapter(status="scheduled", scheduled_publish_at=now - timedelta(hours=1), word_count=10)

    first = run_reconcile(ReconcileInput(), repo=chapter_repo, clock=clock)
    second = run_reconcile(ReconcileInput(), repo=chapter_repo, clock=clock)

    assert (first.published_count, second.published_count) == (1, 0)
    assert story_repo.get_by_id(story.id).total_words == 10


def test_scheduled_then_published_when_due(chapter_repo, make_chapter, author, clock, now):
    draft = make_chapter(word_count=300)
    scheduled = run_schedule(
        ScheduleChapterInput(
            chapter_id=draft.id,
            author_id=author.id,
            publish_at_utc=now + timedelta(hours=1),
            timezone="America/New_York",
        ),
        repo=chapter_repo,
        time_port=clock,
    )
    assert scheduled.success

    early = run_reconcile(ReconcileInput(), repo=chapter_repo, clock=clock)
    clock.advance(3600)
    on_time = run_reconcile(ReconcileInput(), repo=chapter_repo, clock=clock)

    assert early.published_count == 0
    assert on_time.published_count == 1
    assert chapter_repo.get_by_id(draft.id).published_at == clock.now


def test_one_failing_chapter_does_not_block_others(
    db_path, chapter_repo, story_repo, story, make_chapter, clock, now
):
    bad = make_chapter(
        status="scheduled", scheduled_publish_at=now - timedelta(hours=2), word_count=100
    )
    good = make_chapter(
        status="scheduled", scheduled_publish_at=now - timedelta(hours=1), word_count=200
    )
    conn = sqlite3.connect(db_path)
    conn.execute(
        f"""
        CREATE TRIGGER fail_one BEFORE UPDATE OF status ON chapters
        WHEN NEW.id = '{bad.id}' AND NEW.status = 'published'
        BEGIN SELECT RAISE(ABORT, 'boom'); END;
        """
    )
    conn.commit()
    conn.close()

    result = run_reconcile(ReconcileInput(), repo=chapter_repo, clock=clock)

    assert result.published_count == 1
    assert [e.chapter_id for e in result.errors] == [bad.id]
    assert "boom" in result.errors[0].reason
    assert chapter_repo.get_by_id(bad.id).status == "scheduled"
    assert chapter_repo.get_by_id(good.id).status == "published"
    # Rolled back item left no partial aggregate behind
    assert story_repo.get_by_id(story.id).total_words == 200


def test_batch_cap_leaves_rest_for_next_pass(chapter_repo, make_chapter, clock, now):
    for i in range(4):
        make_chapter(status="scheduled", scheduled_publish_at=now - timedelta(minutes=i + 1))
    reconciler = PublishReconciler(chapter_repo, clock, ReconcileConfig(batch_size=3))

    first = reconciler.reconcile()
    second = reconciler.reconcile()

    assert (first.published_count, first.has_more) == (3, True)
    assert (second.published_count, second.has_more) == (1, False)


def test_multiple_stories_with_workers(
    chapter_repo, story_repo, author_repo, author, clock, now
):
    stories = [
        story_repo.save(Story(author_id=author.id, slug=f"story-{i}", title=f"Story {i}"))
        for i in range(3)
    ]
    for s in stories:
        for n in range(1, 4):
            chapter_repo.save(
                Chapter(
                    story_id=s.id,
                    author_id=author.id,
                    chapter_number=n,
                    title=f"Part {n}",
                    status="scheduled",
                    scheduled_publish_at=now - timedelta(minutes=n),
                    word_count=100,
                )
            )

    result = PublishReconciler(chapter_repo, clock, ReconcileConfig(max_workers=3)).reconcile()

    assert result.published_count == 9
    assert result.errors == []
    assert all(story_repo.get_by_id(s.id).total_words == 300 for s in stories)
    assert author_repo.get_by_id(author.id).stats.total_chapters_published == 9


@pytest.mark.parametrize("attempt", range(3))
def test_concurrent_passes_publish_once(
    db_path, story_repo, story, make_chapter, clock, now, attempt
):
    ch = make_chapter(
        status="scheduled", scheduled_publish_at=now - timedelta(minutes=1), word_count=1000
    )
    barrier = threading.Barrier(2)
    results = []

    def worker():
        repo = SQLiteChapterRepo(db_path)
        barrier.wait()
        results.append(run_reconcile(ReconcileInput(trigger="race"), repo=repo, clock=clock))

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert len(results) == 2
    assert sum(r.published_count for r in results) == 1
    assert all(r.errors == [] for r in results)
    assert SQLiteChapterRepo(db_path).get_by_id(ch.id).status == "published"
    assert story_repo.get_by_id(story.id).total_words == 1000


def test_reschedule_after_selection_is_respected(chapter_repo, make_chapter, author, clock, now):
    """A chapter moved into the future between selection and publish stays scheduled."""
    ch = make_chapter(status="scheduled", scheduled_publish_at=now - timedelta(minutes=1))

    class ReschedulingRepo:
        def list_due(self, now_utc, limit):
            due = chapter_repo.list_due(now_utc, limit)
            chapter_repo.save(
                chapter_repo.get_by_id(ch.id).model_copy(
                    update={"scheduled_publish_at": now + timedelta(days=1)}
                )
            )
            return due

        def publish_if_scheduled(self, chapter_id, now_utc):
            return chapter_repo.publish_if_scheduled(chapter_id, now_utc)

    result = run_reconcile(ReconcileInput(), repo=ReschedulingRepo(), clock=clock)

    assert result.published_count == 0
    assert result.skipped_count == 1
    assert chapter_repo.get_by_id(ch.id).status == "scheduled"


class StaleReadRepo:
    """Serves a chapter as it was read before a publish pass overtook it."""

    def __init__(self, repo, stale):
        self.repo = repo
        self.stale = stale

    def get_by_id(self, chapter_id):
        if chapter_id == self.stale.id:
            return self.stale
        return self.repo.get_by_id(chapter_id)

    def update_schedule_if_status(self, chapter, expected_status):
        return self.repo.update_schedule_if_status(chapter, expected_status)

    def list_scheduled(self, author_id=None):
        return self.repo.list_scheduled(author_id)


class TestAuthorWriteAfterPublish:
    """Author edits validated against a pre-publish read must not undo the publish."""

    @pytest.fixture
    def overtaken(self, chapter_repo, make_chapter, clock, now):
        ch = make_chapter(
            status="scheduled", scheduled_publish_at=now - timedelta(minutes=1), word_count=700
        )
        stale = chapter_repo.get_by_id(ch.id)
        published = run_reconcile(ReconcileInput(), repo=chapter_repo, clock=clock)
        assert published.published_count == 1
        return stale

    def test_unschedule_keeps_published(
        self, chapter_repo, story_repo, story, author, overtaken, clock
    ):
        result = run_unschedule(
            UnscheduleChapterInput(chapter_id=overtaken.id, author_id=author.id),
            repo=StaleReadRepo(chapter_repo, overtaken),
            time_port=clock,
        )

        assert result.success is False
        assert result.errors[0].code == NOT_SCHEDULED
        assert chapter_repo.get_by_id(overtaken.id).status == "published"
        assert story_repo.get_by_id(story.id).total_words == 700

    def test_reschedule_keeps_published_and_is_not_republished(
        self, chapter_repo, author, overtaken, clock, now
    ):
        result = run_schedule(
            ScheduleChapterInput(
                chapter_id=overtaken.id,
                author_id=author.id,
                publish_at_utc=now + timedelta(hours=1),
            ),
            repo=StaleReadRepo(chapter_repo, overtaken),
            time_port=clock,
        )

        assert result.success is False
        assert result.errors[0].code == INVALID_TRANSITION
        assert "published" in result.errors[0].message
        saved = chapter_repo.get_by_id(overtaken.id)
        assert saved.status == "published"
        assert saved.published_at is not None

        clock.advance(7200)
        again = run_reconcile(ReconcileInput(), repo=chapter_repo, clock=clock)
        assert again.published_count == 0
