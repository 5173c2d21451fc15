from pydantic import BaseModel, ConfigDict, Field


class ProjectRules(BaseModel):
    slug: str
    rules_version: str


class SchedulerRules(BaseModel):
    batch_size: int = Field(default=500, ge=1)
    pass_timeout_seconds: float = Field(default=30.0, gt=0)
    max_workers: int = Field(default=1, ge=1)


class ContentRules(BaseModel):
    words_per_minute: int = Field(default=200, gt=0)


class PollerRules(BaseModel):
    enabled: bool = False
    interval_seconds: float = Field(default=600.0, gt=0)


class RateLimitWindow(BaseModel):
    window_seconds: int = Field(gt=0)
    max_requests: int = Field(ge=0)


class TriggerRules(BaseModel):
    poller: PollerRules = Field(default_factory=PollerRules)
    auto_publish_on_requests: bool = False
    throttle_seconds: float = Field(default=300.0, ge=0)
    manual_trigger: RateLimitWindow


class Rules(BaseModel):
    project: ProjectRules
    scheduler: SchedulerRules = Field(default_factory=SchedulerRules)
    content: ContentRules
    triggers: TriggerRules

    model_config = ConfigDict(extra="forbid")
