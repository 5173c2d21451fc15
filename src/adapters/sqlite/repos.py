import sqlite3
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from src.domain.entities import Author, AuthorStats, Chapter, Story

# Connections wait this long for a competing writer before failing
BUSY_TIMEOUT_SECONDS = 10.0

# Stand-in for a missing timestamp; aware so it compares with every other value
MIN_UTC = datetime.min.replace(tzinfo=UTC)


# Helper to convert sqlite rows to dicts
def dict_factory(cursor: sqlite3.Cursor, row: Any) -> dict[str, Any]:
    d = {}
    for idx, col in enumerate(cursor.description):
        d[col[0]] = row[idx]
    return d


def to_db_ts(dt: datetime) -> str:
    """
    Serialize a datetime as fixed-width UTC ISO text.

    Fixed width keeps lexicographic order equal to chronological order,
    which the due-date queries rely on. Naive datetimes are taken as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_dt(s: str | None) -> datetime | None:
    return datetime.fromisoformat(s) if s else None


class _SQLiteRepo:
    def __init__(self, db_path: str):
        self.db_path = db_path

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT_SECONDS)
        conn.row_factory = dict_factory
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _get_write_conn(self) -> sqlite3.Connection:
        """Connection in autocommit mode; callers issue BEGIN IMMEDIATE themselves."""
        conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT_SECONDS, isolation_level=None)
        conn.row_factory = dict_factory
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn


class SQLiteAuthorRepo(_SQLiteRepo):
    def save(self, author: Author) -> Author:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO authors (
                    id, username, display_name,
                    total_chapters_published, total_words_written,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    username=excluded.username,
                    display_name=excluded.display_name,
                    updated_at=excluded.updated_at
            """,
                (
                    str(author.id),
                    author.username,
                    author.display_name,
                    author.stats.total_chapters_published,
                    author.stats.total_words_written,
                    to_db_ts(author.created_at),
                    to_db_ts(author.updated_at),
                ),
            )
            conn.commit()
            return author
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_by_id(self, author_id: UUID) -> Author | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM authors WHERE id = ?", (str(author_id),)
            ).fetchone()
            if not row:
                return None
            return Author(
                id=UUID(row["id"]),
                username=row["username"],
                display_name=row["display_name"],
                stats=AuthorStats(
                    total_chapters_published=row["total_chapters_published"],
                    total_words_written=row["total_words_written"],
                ),
                created_at=parse_dt(row["created_at"]) or MIN_UTC,
                updated_at=parse_dt(row["updated_at"]) or MIN_UTC,
            )
        finally:
            conn.close()


class SQLiteStoryRepo(_SQLiteRepo):
    def save(self, story: Story) -> Story:
        """
        Upsert story metadata.

        total_words is owned by the chapter repo and never written from here.
        """
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO stories (
                    id, author_id, slug, title, description,
                    status, visibility, total_words, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    author_id=excluded.author_id,
                    slug=excluded.slug,
                    title=excluded.title,
                    description=excluded.description,
                    status=excluded.status,
                    visibility=excluded.visibility,
                    updated_at=excluded.updated_at
            """,
                (
                    str(story.id),
                    str(story.author_id),
                    story.slug,
                    story.title,
                    story.description,
                    story.status,
                    story.visibility,
                    story.total_words,
                    to_db_ts(story.created_at),
                    to_db_ts(story.updated_at),
                ),
            )
            conn.commit()
            return story
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_by_id(self, story_id: UUID) -> Story | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM stories WHERE id = ?", (str(story_id),)
            ).fetchone()
            return self._row_to_story(row) if row else None
        finally:
            conn.close()

    def get_by_slug(self, slug: str) -> Story | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM stories WHERE slug = ?", (slug,)).fetchone()
            return self._row_to_story(row) if row else None
        finally:
            conn.close()

    def get_many(self, story_ids: list[UUID]) -> dict[UUID, Story]:
        if not story_ids:
            return {}
        conn = self._get_conn()
        try:
            placeholders = ",".join("?" for _ in story_ids)
            rows = conn.execute(
                f"SELECT * FROM stories WHERE id IN ({placeholders})",
                [str(s) for s in story_ids],
            ).fetchall()
            stories = [self._row_to_story(r) for r in rows]
            return {s.id: s for s in stories}
        finally:
            conn.close()

    def _row_to_story(self, row: dict[str, Any]) -> Story:
        return Story(
            id=UUID(row["id"]),
            author_id=UUID(row["author_id"]),
            slug=row["slug"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            visibility=row["visibility"],
            total_words=row["total_words"],
            created_at=parse_dt(row["created_at"]) or MIN_UTC,
            updated_at=parse_dt(row["updated_at"]) or MIN_UTC,
        )


class SQLiteChapterRepo(_SQLiteRepo):
    def save(self, chapter: Chapter) -> Chapter:
        """
        Upsert a chapter and recompute the story and author aggregates.

        Aggregates are recomputed on every save so a status change to or
        from 'published' through any path keeps total_words consistent.
        """
        conn = self._get_write_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                """
                INSERT INTO chapters (
                    id, story_id, author_id, chapter_number, title, content,
                    status, scheduled_publish_at, timezone, published_at,
                    word_count, reading_time_minutes, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    chapter_number=excluded.chapter_number,
                    title=excluded.title,
                    content=excluded.content,
                    status=excluded.status,
                    scheduled_publish_at=excluded.scheduled_publish_at,
                    timezone=excluded.timezone,
                    published_at=excluded.published_at,
                    word_count=excluded.word_count,
                    reading_time_minutes=excluded.reading_time_minutes,
                    updated_at=excluded.updated_at
            """,
                (
                    str(chapter.id),
                    str(chapter.story_id),
                    str(chapter.author_id),
                    chapter.chapter_number,
                    chapter.title,
                    chapter.content,
                    chapter.status,
                    (
                        to_db_ts(chapter.scheduled_publish_at)
                        if chapter.scheduled_publish_at
                        else None
                    ),
                    chapter.timezone,
                    to_db_ts(chapter.published_at) if chapter.published_at else None,
                    chapter.word_count,
                    chapter.reading_time_minutes,
                    to_db_ts(chapter.created_at),
                    to_db_ts(chapter.updated_at),
                ),
            )
            self._recompute_aggregates(
                conn, chapter.story_id, chapter.author_id, chapter.updated_at, touch_story=False
            )
            conn.execute("COMMIT")
            return chapter
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def get_by_id(self, chapter_id: UUID) -> Chapter | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM chapters WHERE id = ?", (str(chapter_id),)
            ).fetchone()
            return self._row_to_chapter(row) if row else None
        finally:
            conn.close()

    def list_by_story(self, story_id: UUID, status: str | None = None) -> list[Chapter]:
        conn = self._get_conn()
        try:
            query = "SELECT * FROM chapters WHERE story_id = ?"
            params: list[str] = [str(story_id)]
            if status:
                query += " AND status = ?"
                params.append(status)
            query += " ORDER BY chapter_number ASC"
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_chapter(r) for r in rows]
        finally:
            conn.close()

    def list_due(self, now_utc: datetime, limit: int) -> list[Chapter]:
        """Scheduled chapters with scheduled_publish_at <= now, oldest first."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT * FROM chapters
                WHERE status = 'scheduled'
                  AND scheduled_publish_at IS NOT NULL
                  AND scheduled_publish_at <= ?
                ORDER BY scheduled_publish_at ASC, id ASC
                LIMIT ?
            """,
                (to_db_ts(now_utc), limit),
            ).fetchall()
            return [self._row_to_chapter(r) for r in rows]
        finally:
            conn.close()

    def list_scheduled(self, author_id: UUID | None = None) -> list[Chapter]:
        """All scheduled chapters, optionally for one author, by due date."""
        conn = self._get_conn()
        try:
            query = "SELECT * FROM chapters WHERE status = 'scheduled'"
            params: list[str] = []
            if author_id:
                query += " AND author_id = ?"
                params.append(str(author_id))
            query += " ORDER BY scheduled_publish_at ASC, id ASC"
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_chapter(r) for r in rows]
        finally:
            conn.close()

    def publish_if_scheduled(self, chapter_id: UUID, now_utc: datetime) -> Chapter | None:
        """
        Atomically publish a due chapter and recompute its aggregates.

        The status flip is a conditional update that only matches a chapter
        still 'scheduled' and due at `now_utc`. When no row matches (another
        pass won, or the author rescheduled) nothing is written and None is
        returned. Status change and aggregate recompute commit together.
        """
        now_ts = to_db_ts(now_utc)
        conn = self._get_write_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                """
                UPDATE chapters SET
                    status = 'published',
                    published_at = ?,
                    scheduled_publish_at = NULL,
                    timezone = NULL,
                    updated_at = ?
                WHERE id = ?
                  AND status = 'scheduled'
                  AND scheduled_publish_at <= ?
            """,
                (now_ts, now_ts, str(chapter_id), now_ts),
            )
            if cursor.rowcount != 1:
                conn.execute("ROLLBACK")
                return None

            row = conn.execute(
                "SELECT * FROM chapters WHERE id = ?", (str(chapter_id),)
            ).fetchone()
            chapter = self._row_to_chapter(row)
            self._recompute_aggregates(
                conn, chapter.story_id, chapter.author_id, now_utc, touch_story=True
            )
            conn.execute("COMMIT")
            return chapter
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def update_schedule_if_status(self, chapter: Chapter, expected_status: str) -> Chapter | None:
        """
        Write a schedule change only if the stored status is still `expected_status`.

        Used by author-side schedule and unschedule, which validate against a
        read that a concurrent publish pass may have overtaken. Returns None
        and writes nothing when the row moved on. Neither side of these
        transitions is 'published', so aggregates are left alone.
        """
        conn = self._get_write_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                """
                UPDATE chapters SET
                    status = ?,
                    scheduled_publish_at = ?,
                    timezone = ?,
                    published_at = ?,
                    updated_at = ?
                WHERE id = ?
                  AND status = ?
            """,
                (
                    chapter.status,
                    (
                        to_db_ts(chapter.scheduled_publish_at)
                        if chapter.scheduled_publish_at
                        else None
                    ),
                    chapter.timezone,
                    to_db_ts(chapter.published_at) if chapter.published_at else None,
                    to_db_ts(chapter.updated_at),
                    str(chapter.id),
                    expected_status,
                ),
            )
            if cursor.rowcount != 1:
                conn.execute("ROLLBACK")
                return None

            row = conn.execute(
                "SELECT * FROM chapters WHERE id = ?", (str(chapter.id),)
            ).fetchone()
            conn.execute("COMMIT")
            return self._row_to_chapter(row)
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _recompute_aggregates(
        self,
        conn: sqlite3.Connection,
        story_id: UUID,
        author_id: UUID,
        now_utc: datetime,
        touch_story: bool,
    ) -> None:
        """Recompute story total_words and author stats from published chapters."""
        story_sql = """
            UPDATE stories SET total_words = (
                SELECT COALESCE(SUM(word_count), 0) FROM chapters
                WHERE story_id = :story_id AND status = 'published'
            )
        """
        if touch_story:
            story_sql += ", updated_at = :now"
        story_sql += " WHERE id = :story_id"
        conn.execute(story_sql, {"story_id": str(story_id), "now": to_db_ts(now_utc)})

        conn.execute(
            """
            UPDATE authors SET
                total_chapters_published = (
                    SELECT COUNT(*) FROM chapters
                    WHERE author_id = :author_id AND status = 'published'
                ),
                total_words_written = (
                    SELECT COALESCE(SUM(word_count), 0) FROM chapters
                    WHERE author_id = :author_id AND status = 'published'
                )
            WHERE id = :author_id
        """,
            {"author_id": str(author_id)},
        )

    def _row_to_chapter(self, row: dict[str, Any]) -> Chapter:
        return Chapter(
            id=UUID(row["id"]),
            story_id=UUID(row["story_id"]),
            author_id=UUID(row["author_id"]),
            chapter_number=row["chapter_number"],
            title=row["title"],
            content=row["content"],
            status=row["status"],
            scheduled_publish_at=parse_dt(row["scheduled_publish_at"]),
            timezone=row["timezone"],
            published_at=parse_dt(row["published_at"]),
            word_count=row["word_count"],
            reading_time_minutes=row["reading_time_minutes"],
            created_at=parse_dt(row["created_at"]) or MIN_UTC,
            updated_at=parse_dt(row["updated_at"]) or MIN_UTC,
        )


class SQLiteRateLimitStore(_SQLiteRepo):
    """
    Sliding-window hit log shared by every process using the same database.
    """

    def hit(
        self,
        key: str,
        window_seconds: int,
        limit: int,
        now_utc: datetime,
    ) -> tuple[bool, datetime | None]:
        """
        Record a hit for `key` if fewer than `limit` hits fall in the window.

        Returns (allowed, oldest_hit_in_window). The oldest hit is returned
        on denial so callers can compute when the window frees up.
        """
        cutoff = to_db_ts(now_utc - timedelta(seconds=window_seconds))
        conn = self._get_write_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                "DELETE FROM rate_limit_hits WHERE bucket_key = ? AND hit_at <= ?",
                (key, cutoff),
            )
            row = conn.execute(
                "SELECT COUNT(*) AS n, MIN(hit_at) AS oldest "
                "FROM rate_limit_hits WHERE bucket_key = ?",
                (key,),
            ).fetchone()
            if row["n"] >= limit:
                conn.execute("COMMIT")
                return False, parse_dt(row["oldest"])

            conn.execute(
                "INSERT INTO rate_limit_hits (bucket_key, hit_at) VALUES (?, ?)",
                (key, to_db_ts(now_utc)),
            )
            conn.execute("COMMIT")
            return True, None
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
