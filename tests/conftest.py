"""Shared pytest fixtures for instaflow tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from instaflow.domain.matcher import RuleSource  # noqa: E402
from instaflow.tasks.client import TasksClient  # noqa: E402
from tests.fakes import FakeClock, InMemoryJobQueue, InMemoryStore  # noqa: E402
from tests.helpers import ACCOUNT_ID, T0  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Tests never pick up real credentials or backends from the environment."""
    for name in (
        "DATABASE_URL",
        "REDIS_URL",
        "INTAKE_MODE",
        "TASKS_BACKEND",
        "TASKS_OIDC_AUDIENCE",
        "TASKS_OIDC_SERVICE_ACCOUNT",
        "INTERNAL_TASK_SECRET",
        "INSTAGRAM_APP_SECRET",
        "INSTAGRAM_VERIFY_TOKEN",
        "INSTAGRAM_PAGE_ID",
        "INSTAGRAM_ACCESS_TOKEN",
        "AI_PROVIDER",
        "AI_API_KEY",
        "AI_MODEL",
        "AI_FALLBACK_MESSAGE",
        "SEND_RATE_LIMIT_PER_MINUTE",
        "APP_ROLE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def store(clock):
    s = InMemoryStore(clock)
    s.add_account(ACCOUNT_ID)
    return s


@pytest.fixture
def queue(store):
    return InMemoryJobQueue(store)


@pytest.fixture
def tasks_client():
    return TasksClient(backend="inline")


@pytest.fixture
def rules_source(store):
    return RuleSource(store)
