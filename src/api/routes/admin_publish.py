"""
Admin Publish API Routes.

Triggers for the reconciliation pass plus an inspection view of what is
scheduled.

- POST /publish-scheduled: cron trigger, bearer-token protected
- GET /publish-scheduled: manual trigger, rate limited per client
- GET /scheduled-chapters: every scheduled chapter and whether it is due
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from src.adapters.clock import SystemClock
from src.adapters.sqlite.repos import SQLiteChapterRepo, SQLiteStoryRepo
from src.api.deps import (
    Settings,
    get_chapter_repo,
    get_clock,
    get_rate_limiter,
    get_rules,
    get_settings,
    get_story_repo,
)
from src.app_shell.rate_limit import RateLimiter
from src.components.reconciler import (
    AuthorizationError,
    ReconcileInput,
    ReconcileOutput,
    StoreUnavailableError,
    run_reconcile,
)
from src.components.scheduler import ListScheduledInput, run_list_scheduled
from src.rules.models import Rules

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Response Models ---


class ItemErrorResponse(BaseModel):
    chapter_id: UUID
    reason: str


class PublishSummaryResponse(BaseModel):
    """Summary of one reconciliation pass."""

    success: bool = True
    published: int
    skipped: int
    failed: int
    has_more: bool
    timed_out: bool
    errors: list[ItemErrorResponse]
    message: str


class ManualPublishResponse(PublishSummaryResponse):
    timestamp: datetime


class ScheduledChapterResponse(BaseModel):
    chapter_id: UUID
    title: str
    chapter_number: int
    story_id: UUID
    story_title: str | None
    scheduled_publish_at: datetime | None
    timezone: str | None
    should_publish: bool
    seconds_overdue: float | None


class ScheduledChaptersResponse(BaseModel):
    current_time: datetime
    total_scheduled_chapters: int
    ready_to_publish: int
    scheduled_chapters: list[ScheduledChapterResponse]


# --- Helpers ---


def check_bearer(authorization: str | None, secret: str) -> None:
    """
    Compare an Authorization header against the configured secret.

    Raises:
        AuthorizationError: header missing, not a bearer token, or wrong token.
    """
    if not authorization:
        raise AuthorizationError("Missing bearer token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthorizationError("Malformed authorization header")
    if not secrets.compare_digest(token.strip().encode(), secret.encode()):
        raise AuthorizationError("Invalid bearer token")


def require_cron_token(
    authorization: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Dependency guarding the cron trigger."""
    if not settings.cron_api_key:
        raise HTTPException(status_code=503, detail="Cron trigger is not configured")
    try:
        check_bearer(authorization, settings.cron_api_key)
    except AuthorizationError as e:
        logger.warning("Rejected cron trigger: %s", e)
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None


def summary_to_response(out: ReconcileOutput) -> PublishSummaryResponse:
    return PublishSummaryResponse(
        published=out.published_count,
        skipped=out.skipped_count,
        failed=out.failed_count,
        has_more=out.has_more,
        timed_out=out.timed_out,
        errors=[ItemErrorResponse(chapter_id=e.chapter_id, reason=e.reason) for e in out.errors],
        message=out.message,
    )


def _store_failure(e: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"success": False, "error": str(e)})


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# --- Routes ---


@router.post("/publish-scheduled", response_model=PublishSummaryResponse)
def publish_scheduled(
    _: None = Depends(require_cron_token),
    repo: SQLiteChapterRepo = Depends(get_chapter_repo),
    clock: SystemClock = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> Any:
    """Run a reconciliation pass for the external cron."""
    try:
        out = run_reconcile(
            ReconcileInput(trigger="cron"), repo=repo, clock=clock, rules=rules.scheduler
        )
    except StoreUnavailableError as e:
        logger.exception("Publish pass failed")
        return _store_failure(e)
    return summary_to_response(out)


@router.get("/publish-scheduled", response_model=ManualPublishResponse)
def publish_scheduled_manual(
    request: Request,
    repo: SQLiteChapterRepo = Depends(get_chapter_repo),
    clock: SystemClock = Depends(get_clock),
    rules: Rules = Depends(get_rules),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Any:
    """Run a reconciliation pass on demand."""
    decision = limiter.check_manual_trigger(_client_key(request), rules.triggers.manual_trigger)
    if not decision.allowed:
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": "Too many requests",
                "retry_after": decision.retry_after_seconds,
            },
            headers={"Retry-After": str(decision.retry_after_seconds)},
        )

    try:
        out = run_reconcile(
            ReconcileInput(trigger="manual"), repo=repo, clock=clock, rules=rules.scheduler
        )
    except StoreUnavailableError as e:
        logger.exception("Manual publish pass failed")
        return _store_failure(e)

    summary = summary_to_response(out)
    return ManualPublishResponse(
        **summary.model_dump(),
        timestamp=out.finished_at or clock.now_utc(),
    )


@router.get("/scheduled-chapters", response_model=ScheduledChaptersResponse)
def scheduled_chapters(
    repo: SQLiteChapterRepo = Depends(get_chapter_repo),
    stories: SQLiteStoryRepo = Depends(get_story_repo),
    clock: SystemClock = Depends(get_clock),
) -> Any:
    """List every scheduled chapter and whether it is due."""
    result = run_list_scheduled(ListScheduledInput(), repo=repo, stories=stories, time_port=clock)
    return ScheduledChaptersResponse(
        current_time=result.current_time,
        total_scheduled_chapters=result.total_scheduled,
        ready_to_publish=result.ready_to_publish,
        scheduled_chapters=[
            ScheduledChapterResponse(
                chapter_id=v.chapter_id,
                title=v.title,
                chapter_number=v.chapter_number,
                story_id=v.story_id,
                story_title=v.story_title,
                scheduled_publish_at=v.scheduled_publish_at,
                timezone=v.timezone,
                should_publish=v.should_publish,
                seconds_overdue=v.seconds_overdue,
            )
            for v in result.chapters
        ],
    )
