import os
from collections.abc import Callable
from functools import lru_cache
from pathlib import Path
from typing import Annotated
from uuid import UUID

from fastapi import BackgroundTasks, Depends, Header, HTTPException, status

from src.adapters.clock import SystemClock
from src.adapters.poller import ThrottledPublisher
from src.adapters.sqlite.repos import (
    SQLiteChapterRepo,
    SQLiteRateLimitStore,
    SQLiteStoryRepo,
)
from src.app_shell.rate_limit import RateLimiter
from src.components.reconciler import ReconcileInput, ReconcileOutput, run_reconcile
from src.rules.loader import load_rules
from src.rules.models import Rules

PROJECT_ROOT = Path(__file__).resolve().parents[2]


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("STORY_PRESS_DATA_DIR", "./data"))
        self.db_path = str(self.data_dir / "story_press.db")
        self.rules_path = Path(
            os.environ.get("STORY_PRESS_RULES", str(self.base_dir / "rules.yaml"))
        )
        self.migrations_dir = os.environ.get(
            "STORY_PRESS_MIGRATIONS", str(PROJECT_ROOT / "migrations")
        )
        # No default: the cron trigger stays disabled until a secret is set
        self.cron_api_key: str | None = os.environ.get("CRON_API_KEY") or None


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules(settings: Settings = Depends(get_settings)) -> Rules:
    return load_rules(settings.rules_path)


# --- Repos ---
def get_story_repo(settings: Settings = Depends(get_settings)) -> SQLiteStoryRepo:
    return SQLiteStoryRepo(settings.db_path)


def get_chapter_repo(settings: Settings = Depends(get_settings)) -> SQLiteChapterRepo:
    return SQLiteChapterRepo(settings.db_path)


# --- Adapters ---
@lru_cache
def get_clock() -> SystemClock:
    return SystemClock()


@lru_cache
def get_rate_limiter(settings: Settings = Depends(get_settings)) -> RateLimiter:
    return RateLimiter(store=SQLiteRateLimitStore(settings.db_path))


def build_pass_runner(
    db_path: str,
    rules: Rules,
    clock: SystemClock | None = None,
) -> Callable[[str], ReconcileOutput]:
    """Bind a chapter repo and scheduler rules into a `trigger -> output` callable."""
    repo = SQLiteChapterRepo(db_path)

    def run_pass(trigger: str) -> ReconcileOutput:
        return run_reconcile(
            ReconcileInput(trigger=trigger),
            repo=repo,
            clock=clock,
            rules=rules.scheduler,
        )

    return run_pass


# One throttle per database, so the window spans every request in the process
_auto_publishers: dict[str, ThrottledPublisher] = {}


def get_auto_publisher(
    settings: Settings = Depends(get_settings),
    rules: Rules = Depends(get_rules),
    clock: SystemClock = Depends(get_clock),
) -> ThrottledPublisher | None:
    if not rules.triggers.auto_publish_on_requests:
        return None
    publisher = _auto_publishers.get(settings.db_path)
    if publisher is None:
        publisher = ThrottledPublisher(
            build_pass_runner(settings.db_path, rules, clock),
            rules.triggers.throttle_seconds,
        )
        _auto_publishers[settings.db_path] = publisher
    return publisher


def auto_publish(
    background_tasks: BackgroundTasks,
    publisher: ThrottledPublisher | None = Depends(get_auto_publisher),
) -> None:
    """Router dependency: run a throttled publish pass after the response is sent."""
    if publisher is not None:
        background_tasks.add_task(publisher.run_quietly)


# --- Auth ---
def get_current_author_id(
    x_author_id: Annotated[str | None, Header()] = None,
) -> UUID:
    """
    Resolve the calling author from the gateway-provided X-Author-Id header.
    """
    if not x_author_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    try:
        return UUID(x_author_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid author id",
        ) from None
