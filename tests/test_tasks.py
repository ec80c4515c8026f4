"""Tests for the tasks client, nudges and job contracts."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from instaflow.observability.correlation import correlation_scope
from instaflow.tasks.client import TasksClient, nudge_worker
from instaflow.tasks.contracts import (
    JOB_KINDS,
    JOB_PRIORITIES,
    MESSAGE_PROCESSING,
    SEND_MESSAGE,
    EventJobV1,
    drain_path,
    intake_dedupe_key,
    process_dedupe_key,
    send_dedupe_key,
)


class TestTasksClient:
    def test_inline_records_nudge(self):
        client = TasksClient(backend="inline")

        assert client.enqueue_http("t-1", "/tasks/jobs/send-message/drain", {"kind": "send-message"}) is True

        [task] = client.get_scheduled_tasks()
        assert task["task_id"] == "t-1"
        assert task["schedule_time"] is None

    def test_same_task_id_is_noop(self):
        client = TasksClient(backend="inline")
        client.enqueue_http("t-1", "/a", {})

        assert client.enqueue_http("t-1", "/a", {"x": 2}) is False
        assert len(client.get_scheduled_tasks()) == 1
        assert client.seen("t-1")
        assert not client.seen("t-2")

    def test_backend_from_env(self, monkeypatch):
        monkeypatch.setenv("TASKS_BACKEND", "cloud_tasks")

        assert TasksClient().backend == "cloud_tasks"

    def test_unknown_backend_raises(self):
        client = TasksClient(backend="carrier-pigeon")

        with pytest.raises(ValueError, match="Unknown TASKS_BACKEND"):
            client.enqueue_http("t-1", "/a", {})
        assert not client.seen("t-1")

    def test_http_backend_delegates(self):
        client = TasksClient(backend="http")
        when = datetime(2025, 6, 1, tzinfo=timezone.utc)

        with patch("instaflow.tasks.http_backend.enqueue_http", return_value=True) as send:
            assert client.enqueue_http("t-1", "/a", {"kind": "k"}, "cid", when) is True

        send.assert_called_once_with("t-1", "/a", {"kind": "k"}, "cid", when)
        assert client.get_scheduled_tasks() == []

    def test_cloud_tasks_backend_delegates(self):
        client = TasksClient(backend="cloud_tasks")

        with patch("instaflow.tasks.cloud_tasks_backend.enqueue_cloud_task", return_value=True) as send:
            client.enqueue_http("t-1", "/a", {})

        send.assert_called_once()


class TestNudgeWorker:
    def test_targets_drain_endpoint_with_correlation(self, tasks_client):
        with correlation_scope("cid-7"):
            assert nudge_worker(tasks_client, SEND_MESSAGE, "acct:mid.1") is True

        [task] = tasks_client.get_scheduled_tasks()
        assert task["task_id"] == "send-message:acct:mid.1"
        assert task["url_path"] == "/tasks/jobs/send-message/drain"
        assert task["payload"] == {"kind": SEND_MESSAGE}
        assert task["correlation_id"] == "cid-7"

    def test_no_client_is_noop(self):
        assert nudge_worker(None, SEND_MESSAGE, "k") is False

    def test_backend_failure_swallowed(self):
        client = MagicMock()
        client.enqueue_http.side_effect = RuntimeError("queue unavailable")

        assert nudge_worker(client, MESSAGE_PROCESSING, "k") is False


class TestContracts:
    def test_drain_path(self):
        assert drain_path(MESSAGE_PROCESSING) == "/tasks/jobs/message-processing/drain"
        with pytest.raises(ValueError):
            drain_path("unknown")

    def test_priorities_order_intake_first(self):
        assert sorted(JOB_KINDS, key=JOB_PRIORITIES.get) == [
            "webhook-intake",
            "message-processing",
            "send-message",
        ]

    def test_dedupe_keys(self):
        assert process_dedupe_key("a", "m") == "process:a:m"
        assert send_dedupe_key("a", "m") == "send:a:m"
        assert intake_dedupe_key(b"{}") == intake_dedupe_key(b"{}")
        assert intake_dedupe_key(b"{}") != intake_dedupe_key(b"[]")
        assert intake_dedupe_key(b"{}").startswith("intake:")

    def test_event_job_round_trip(self):
        job = EventJobV1(account_id="acct", event_id="mid.1", correlation_id="cid")

        assert EventJobV1.from_dict(job.to_dict()) == job

    @pytest.mark.parametrize(
        "data",
        [
            {"version": "v2", "account_id": "a", "event_id": "m"},
            {"version": "v1", "account_id": "a"},
            {"version": "v1", "event_id": "m"},
        ],
    )
    def test_event_job_rejects_bad_payload(self, data):
        with pytest.raises(ValueError):
            EventJobV1.from_dict(data)

    def test_missing_correlation_defaults_empty(self):
        job = EventJobV1.from_dict({"version": "v1", "account_id": "a", "event_id": "m"})

        assert job.correlation_id == ""
