"""Tests for the Cloud Tasks backend.

The OIDC audience must come from TASKS_OIDC_AUDIENCE (falling back to
WORKER_BASE_URL) and enqueue fails closed when required env is missing.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from google.api_core import exceptions as gcp_exceptions

from instaflow.tasks import cloud_tasks_backend
from instaflow.tasks.cloud_tasks_backend import (
    CloudTasksConfig,
    build_task,
    enqueue_cloud_task,
    task_name_for,
)

PARENT = "projects/my-project/locations/us-central1/queues/instaflow-jobs"

_REQUIRED_ENV = {
    "GOOGLE_CLOUD_PROJECT": "my-project",
    "WORKER_BASE_URL": "https://worker.example.com/",
    "TASKS_OIDC_SERVICE_ACCOUNT": "tasks@my-project.iam.gserviceaccount.com",
}


@pytest.fixture
def env(monkeypatch):
    for key in ("GCP_PROJECT_ID", "GCP_LOCATION", "GCP_TASKS_QUEUE", "TASKS_DISPATCH_DEADLINE_SECONDS"):
        monkeypatch.delenv(key, raising=False)
    for key, value in _REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)
    return monkeypatch


@pytest.fixture
def mock_client(monkeypatch):
    client = MagicMock()
    client.queue_path.return_value = PARENT
    client.create_task.return_value.name = f"{PARENT}/tasks/t-1"
    monkeypatch.setattr(cloud_tasks_backend, "_client", client)
    return client


class TestConfig:
    def test_defaults(self, env):
        config = CloudTasksConfig.from_env()

        assert config.queue == "instaflow-jobs"
        assert config.location == "us-central1"
        assert config.worker_url == "https://worker.example.com"
        assert config.audience == "https://worker.example.com/"
        assert config.dispatch_deadline_s == 300

    def test_audience_from_env(self, env):
        env.setenv("TASKS_OIDC_AUDIENCE", "https://custom-audience.example.com")

        assert CloudTasksConfig.from_env().audience == "https://custom-audience.example.com"

    def test_project_fallback(self, env):
        env.delenv("GOOGLE_CLOUD_PROJECT")
        env.setenv("GCP_PROJECT_ID", "other-project")

        assert CloudTasksConfig.from_env().project == "other-project"

    @pytest.mark.parametrize(
        ("missing", "message"),
        [
            ("GOOGLE_CLOUD_PROJECT", "GOOGLE_CLOUD_PROJECT or GCP_PROJECT_ID required"),
            ("WORKER_BASE_URL", "WORKER_BASE_URL required"),
            ("TASKS_OIDC_SERVICE_ACCOUNT", "TASKS_OIDC_SERVICE_ACCOUNT required"),
        ],
    )
    def test_missing_env_fails_closed(self, env, mock_client, missing, message):
        env.delenv(missing)

        with pytest.raises(RuntimeError, match=message):
            enqueue_cloud_task("t-1", "/tasks/jobs/send-message/drain", {})
        mock_client.create_task.assert_not_called()


class TestBuildTask:
    def test_task_body(self, env):
        config = CloudTasksConfig.from_env()

        task = build_task(config, PARENT, "send-message:acct:mid.1", "/tasks/jobs/send-message/drain",
                          {"kind": "send-message"}, correlation_id="cid-1")

        assert task["name"] == f"{PARENT}/tasks/send-message-acct-mid-1"
        request = task["http_request"]
        assert request["url"] == "https://worker.example.com/tasks/jobs/send-message/drain"
        assert request["headers"]["X-Task-Id"] == "send-message:acct:mid.1"
        assert request["headers"]["X-Correlation-Id"] == "cid-1"
        assert request["body"] == b'{"kind": "send-message"}'
        assert request["oidc_token"] == {
            "service_account_email": "tasks@my-project.iam.gserviceaccount.com",
            "audience": "https://worker.example.com/",
        }
        assert task["dispatch_deadline"].seconds == 300
        assert "schedule_time" not in task

    def test_schedule_time(self, env):
        when = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

        task = build_task(CloudTasksConfig.from_env(), PARENT, "t", "/p", {}, schedule_time=when)

        assert task["schedule_time"].ToDatetime(tzinfo=timezone.utc) == when

    def test_task_name_sanitized_and_bounded(self):
        name = task_name_for(PARENT, "a:b/c" + "x" * 600)

        safe_id = name.rsplit("/", 1)[1]
        assert safe_id.startswith("a-b-c")
        assert len(safe_id) == 500


class TestEnqueue:
    def test_creates_task(self, env, mock_client):
        assert enqueue_cloud_task("t-1", "/tasks/jobs/send-message/drain", {"kind": "send-message"}) is True

        mock_client.queue_path.assert_called_once_with("my-project", "us-central1", "instaflow-jobs")
        kwargs = mock_client.create_task.call_args.kwargs
        assert kwargs["parent"] == PARENT
        assert kwargs["task"]["name"] == f"{PARENT}/tasks/t-1"

    def test_already_exists_is_success(self, env, mock_client):
        mock_client.create_task.side_effect = gcp_exceptions.AlreadyExists("task exists")

        assert enqueue_cloud_task("t-1", "/p", {}) is True

    def test_other_errors_propagate(self, env, mock_client):
        mock_client.create_task.side_effect = gcp_exceptions.ServiceUnavailable("down")

        with pytest.raises(gcp_exceptions.ServiceUnavailable):
            enqueue_cloud_task("t-1", "/p", {})

    def test_client_created_once(self, monkeypatch):
        monkeypatch.setattr(cloud_tasks_backend, "_client", None)

        with patch("instaflow.tasks.cloud_tasks_backend.tasks_v2.CloudTasksClient") as factory:
            first = cloud_tasks_backend._get_client()
            second = cloud_tasks_backend._get_client()

        assert first is second
        factory.assert_called_once()
