import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api import deps
from src.api.routes import admin_publish, author_schedule, chapter_schedule
from src.app_shell.rate_limit import InMemoryHitStore, RateLimiter

CRON_SECRET = "s3cret-cron-token"


@pytest.fixture
def settings(db_path):
    s = deps.Settings()
    s.db_path = db_path
    s.cron_api_key = CRON_SECRET
    return s


@pytest.fixture
def limiter(clock):
    return RateLimiter(InMemoryHitStore(), clock)


@pytest.fixture
def app(settings, rules, clock, limiter) -> FastAPI:
    """Test FastAPI app with publish and scheduling routes."""
    app = FastAPI()
    app.include_router(admin_publish.router, prefix="/api/admin")
    app.include_router(chapter_schedule.router, prefix="/api/chapters")
    app.include_router(author_schedule.router, prefix="/api/user")

    app.dependency_overrides[deps.get_settings] = lambda: settings
    app.dependency_overrides[deps.get_rules] = lambda: rules
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_rate_limiter] = lambda: limiter

    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)
