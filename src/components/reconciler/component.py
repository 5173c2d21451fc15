"""
Reconciler component - publishes scheduled chapters whose time has come.

One pass selects chapters with status 'scheduled' and a publish time at or
before now, then publishes each one independently.

Invariants:
- I1: A chapter transitions scheduled -> published at most once, even when
  passes overlap (conditional update in the store)
- I2: One chapter failing never aborts the rest of the pass
- I3: A story's total_words equals the sum over its published chapters
  after each publish
- I4: Chapters of the same story are processed sequentially, in due order
- I5: A pass stops starting new chapters once its timeout has elapsed;
  chapters already published stay published
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from src.domain.entities import Chapter
from src.rules.models import SchedulerRules

from .models import (
    DEFAULT_CONFIG,
    ItemError,
    ReconcileConfig,
    ReconcileInput,
    ReconcileOutput,
    StoreUnavailableError,
)
from .ports import ChapterRepoPort, ClockPort

logger = logging.getLogger(__name__)


def config_from_rules(rules: SchedulerRules) -> ReconcileConfig:
    """Build reconciler config from the scheduler rules section."""
    return ReconcileConfig(
        batch_size=rules.batch_size,
        pass_timeout_seconds=rules.pass_timeout_seconds,
        max_workers=rules.max_workers,
    )


def group_by_story(chapters: list[Chapter]) -> list[list[Chapter]]:
    """Split chapters into per-story groups, keeping their relative order."""
    groups: dict[UUID, list[Chapter]] = {}
    for chapter in chapters:
        groups.setdefault(chapter.story_id, []).append(chapter)
    return list(groups.values())


@dataclass
class _GroupOutcome:
    published: list[UUID] = field(default_factory=list)
    skipped: int = 0
    errors: list[ItemError] = field(default_factory=list)
    timed_out: bool = False


class PublishReconciler:
    """
    Publish reconciler.

    Stateless between passes: everything it needs to know lives in the store.
    """

    def __init__(
        self,
        repo: ChapterRepoPort,
        clock: ClockPort | None = None,
        config: ReconcileConfig | None = None,
    ) -> None:
        self._repo = repo
        self._clock = clock
        self._config = config or DEFAULT_CONFIG

    def _now_utc(self) -> datetime:
        if self._clock:
            return self._clock.now_utc()
        return datetime.now(UTC)

    def _monotonic(self) -> float:
        if self._clock:
            return self._clock.monotonic()
        return time.monotonic()

    def reconcile(self, trigger: str = "manual") -> ReconcileOutput:
        """
        Run one reconciliation pass.

        Raises:
            StoreUnavailableError: the due-chapter query failed, nothing was published.
        """
        started_at = self._now_utc()
        deadline = self._monotonic() + self._config.pass_timeout_seconds
        batch_size = self._config.batch_size

        try:
            # One extra row tells us whether the cap left anything behind
            due = self._repo.list_due(started_at, batch_size + 1)
        except Exception as e:
            logger.exception("Reconcile (%s): selecting due chapters failed", trigger)
            raise StoreUnavailableError(f"Could not query scheduled chapters: {e}") from e

        has_more = len(due) > batch_size
        due = due[:batch_size]

        if not due:
            logger.debug("Reconcile (%s): no chapters due at %s", trigger, started_at.isoformat())
            return ReconcileOutput(
                published_count=0,
                started_at=started_at,
                finished_at=self._now_utc(),
            )

        groups = group_by_story(due)
        workers = min(self._config.max_workers, len(groups))

        if workers <= 1:
            outcomes = [self._process_group(g, started_at, deadline) for g in groups]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reconcile") as pool:
                outcomes = list(
                    pool.map(lambda g: self._process_group(g, started_at, deadline), groups)
                )

        published_ids: list[UUID] = []
        errors: list[ItemError] = []
        skipped = 0
        timed_out = False
        for outcome in outcomes:
            published_ids.extend(outcome.published)
            errors.extend(outcome.errors)
            skipped += outcome.skipped
            timed_out = timed_out or outcome.timed_out

        result = ReconcileOutput(
            published_count=len(published_ids),
            errors=errors,
            skipped_count=skipped,
            published_ids=tuple(published_ids),
            has_more=has_more or timed_out,
            timed_out=timed_out,
            started_at=started_at,
            finished_at=self._now_utc(),
        )

        logger.info(
            "Reconcile (%s): %d due, %d published, %d skipped, %d failed%s",
            trigger,
            len(due),
            result.published_count,
            result.skipped_count,
            result.failed_count,
            " (timed out)" if timed_out else "",
        )
        return result

    def _process_group(
        self,
        chapters: list[Chapter],
        now_utc: datetime,
        deadline: float,
    ) -> _GroupOutcome:
        """Publish one story's due chapters in order."""
        outcome = _GroupOutcome()

        for chapter in chapters:
            if self._monotonic() >= deadline:
                outcome.timed_out = True
                break

            try:
                published = self._repo.publish_if_scheduled(chapter.id, now_utc)
            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.warning("Failed to publish chapter %s: %s", chapter.id, reason)
                outcome.errors.append(ItemError(chapter_id=chapter.id, reason=reason))
                continue

            if published is None:
                # Lost the conditional update to another pass or a reschedule
                logger.debug("Chapter %s no longer due, skipping", chapter.id)
                outcome.skipped += 1
                continue

            logger.info(
                "Published chapter %s (story %s, chapter %d)",
                published.id,
                published.story_id,
                published.chapter_number,
            )
            outcome.published.append(published.id)

        return outcome


# --- Component Entry Points ---


def run_reconcile(
    inp: ReconcileInput,
    *,
    repo: ChapterRepoPort,
    clock: ClockPort | None = None,
    rules: SchedulerRules | None = None,
) -> ReconcileOutput:
    """
    Run one reconciliation pass.

    Args:
        inp: Input naming the trigger source.
        repo: Chapter repository port.
        clock: Optional clock port.
        rules: Optional scheduler rules; defaults apply when omitted.

    Returns:
        ReconcileOutput summary.
    """
    config = config_from_rules(rules) if rules else DEFAULT_CONFIG
    reconciler = PublishReconciler(repo=repo, clock=clock, config=config)
    return reconciler.reconcile(trigger=inp.trigger)


def run(
    inp: ReconcileInput,
    *,
    repo: ChapterRepoPort,
    clock: ClockPort | None = None,
    rules: SchedulerRules | None = None,
) -> ReconcileOutput:
    """Main entry point for the reconciler component."""
    if isinstance(inp, ReconcileInput):
        return run_reconcile(inp, repo=repo, clock=clock, rules=rules)
    raise ValueError(f"Unknown input type: {type(inp)}")
