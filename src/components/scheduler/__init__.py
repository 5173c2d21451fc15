"""
Scheduler component - Chapter schedule management.
"""

from .component import (
    as_utc,
    is_valid_timezone,
    run,
    run_list_scheduled,
    run_list_upcoming,
    run_schedule,
    run_unschedule,
)
from .models import (
    CHAPTER_NOT_FOUND,
    FORBIDDEN,
    INVALID_TIMEZONE,
    INVALID_TRANSITION,
    NOT_SCHEDULED,
    PUBLISH_TIME_PAST,
    ListScheduledInput,
    ListUpcomingInput,
    ScheduleChapterInput,
    ScheduledChapterView,
    ScheduledListOutput,
    ScheduleOutput,
    SchedulerValidationError,
    UnscheduleChapterInput,
    UnscheduleOutput,
)
from .ports import ChapterRepoPort, StoryRepoPort, TimePort

__all__ = [
    # Entry points
    "run",
    "run_list_scheduled",
    "run_list_upcoming",
    "run_schedule",
    "run_unschedule",
    # Helpers
    "as_utc",
    "is_valid_timezone",
    # Input models
    "ListScheduledInput",
    "ListUpcomingInput",
    "ScheduleChapterInput",
    "UnscheduleChapterInput",
    # Output models
    "ScheduledChapterView",
    "ScheduledListOutput",
    "ScheduleOutput",
    "SchedulerValidationError",
    "UnscheduleOutput",
    # Error codes
    "CHAPTER_NOT_FOUND",
    "FORBIDDEN",
    "INVALID_TIMEZONE",
    "INVALID_TRANSITION",
    "NOT_SCHEDULED",
    "PUBLISH_TIME_PAST",
    # Ports
    "ChapterRepoPort",
    "StoryRepoPort",
    "TimePort",
]
