"""
Reconciler component input/output models and error types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

# --- Errors ---


class AuthorizationError(Exception):
    """Trigger caller presented a missing or wrong bearer token."""


class StoreUnavailableError(Exception):
    """The due-chapter selection query could not be executed."""


@dataclass(frozen=True)
class ItemError:
    """A single chapter that failed to publish during a pass."""

    chapter_id: UUID
    reason: str


# --- Configuration ---


@dataclass(frozen=True)
class ReconcileConfig:
    """Reconciler configuration from rules."""

    batch_size: int = 500
    pass_timeout_seconds: float = 30.0
    max_workers: int = 1


DEFAULT_CONFIG = ReconcileConfig()


# --- Input Models ---


@dataclass(frozen=True)
class ReconcileInput:
    """Input for one reconciliation pass."""

    # Label of the trigger source, used for logging only
    trigger: str = "manual"


# --- Output Models ---


@dataclass(frozen=True)
class ReconcileOutput:
    """Summary of one reconciliation pass."""

    published_count: int
    errors: list[ItemError] = field(default_factory=list)
    skipped_count: int = 0
    published_ids: tuple[UUID, ...] = ()
    has_more: bool = False
    timed_out: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def failed_count(self) -> int:
        return len(self.errors)

    @property
    def message(self) -> str:
        msg = f"Successfully published {self.published_count} scheduled chapters"
        if self.errors:
            msg += f", {self.failed_count} failed"
        if self.timed_out:
            msg += " (pass timed out)"
        elif self.has_more:
            msg += " (more due chapters remain)"
        return msg
