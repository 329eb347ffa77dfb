"""Shared pytest configuration and fixtures."""

from collections.abc import Callable, Generator
from datetime import UTC, datetime
from itertools import count
from typing import Any
from unittest.mock import patch

import pytest

from incident_insights.ai.client import Completion
from incident_insights.config import EngineConfig, Settings, get_settings
from incident_insights.errors import AIServiceError
from incident_insights.models import Category, IncidentRecord

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit real services (requires .env with valid credentials)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so tests never pick up a developer's local configuration.

    Sets Settings.model_config['env_file'] = None before each test (except e2e).
    """
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def db_path(tmp_path: Any) -> str:
    """A fresh SQLite file per test (per-operation connections cannot share :memory:)."""
    return str(tmp_path / "insights.db")


@pytest.fixture
def mock_settings(db_path: str) -> Generator[Settings]:
    """Provide deterministic settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = Settings(
        llm_provider="openai",
        openai_api_key="sk-proj-test-fake",
        openai_model="gpt-4o-mini",
        database_path=db_path,
        incident_api_url="",
        reference_timezone="UTC",
        report_daily_cron="",
        report_weekly_cron="",
        report_monthly_cron="",
        ai_retry_delay_seconds=0.0,
    )
    with (
        patch("incident_insights.config.get_settings", return_value=fake_settings),
        patch("incident_insights.api.main.get_settings", return_value=fake_settings),
        patch("incident_insights.report.scheduler.get_settings", return_value=fake_settings),
        patch("incident_insights.storage.store.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig.from_settings(Settings(openai_model="gpt-4o-mini", reference_timezone="UTC"))


# ---------------------------------------------------------------------------
# Incident records
# ---------------------------------------------------------------------------


@pytest.fixture
def make_record() -> Callable[..., IncidentRecord]:
    """Factory for IncidentRecord dicts with sequential ids."""
    ids = count(1)

    def _make(
        area: str = "Centro",
        severity: int = 5,
        category: Category = Category.POTHOLE,
        created_at: datetime = NOW,
        description: str = "",
    ) -> IncidentRecord:
        return IncidentRecord(
            id=f"inc-{next(ids)}",
            category=category,
            description=description,
            area=area,
            severity=severity,
            created_at=created_at,
        )

    return _make


class StaticSource:
    """In-memory incident source honoring the inclusive period contract."""

    def __init__(self, records: list[IncidentRecord]) -> None:
        self.records = records
        self.calls: list[tuple[datetime, datetime]] = []

    async def find_by_period(self, start: datetime, end: datetime) -> list[IncidentRecord]:
        self.calls.append((start, end))
        return [r for r in self.records if start <= r["created_at"] <= end]


@pytest.fixture
def static_source() -> Callable[[list[IncidentRecord]], StaticSource]:
    return StaticSource


# ---------------------------------------------------------------------------
# Fake AI backend
# ---------------------------------------------------------------------------


class FakeGenerator:
    """Stands in for LangChainGenerator: returns canned text or raises, and records prompts."""

    model_name = "test-model"

    def __init__(self, responses: list[str | Exception] | None = None) -> None:
        self.responses: list[str | Exception] = list(responses or [])
        self.calls: list[tuple[str, str]] = []

    async def generate(self, system_prompt: str, user_prompt: str, *, purpose: str = "insight") -> Completion:
        self.calls.append((system_prompt, user_prompt))
        response = self.responses.pop(0) if self.responses else '{"insight": "ok", "confidence": 0.9, "relevance": 8}'
        if isinstance(response, Exception):
            raise response
        return Completion(text=response, prompt_tokens=120, completion_tokens=40, estimated_cost=0.0001)


@pytest.fixture
def fake_generator() -> Callable[..., FakeGenerator]:
    return FakeGenerator


@pytest.fixture
def failing_generator() -> FakeGenerator:
    return FakeGenerator([AIServiceError("backend exploded")])
