"""
Reconciler component - Publishes due scheduled chapters.
"""

from .component import (
    PublishReconciler,
    config_from_rules,
    group_by_story,
    run,
    run_reconcile,
)
from .models import (
    AuthorizationError,
    ItemError,
    ReconcileConfig,
    ReconcileInput,
    ReconcileOutput,
    StoreUnavailableError,
)
from .ports import ChapterRepoPort, ClockPort

__all__ = [
    # Entry points
    "run",
    "run_reconcile",
    "PublishReconciler",
    "config_from_rules",
    "group_by_story",
    # Models
    "ItemError",
    "ReconcileConfig",
    "ReconcileInput",
    "ReconcileOutput",
    # Errors
    "AuthorizationError",
    "StoreUnavailableError",
    # Ports
    "ChapterRepoPort",
    "ClockPort",
]
