"""Tests for drain endpoint authentication (OIDC + local-dev internal secret)."""

from __future__ import annotations

import base64
import json
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from instaflow.api.factory import create_app
from instaflow.api.task_auth import LOCAL_DEV_AUDIENCE, _unverified_audience, verify_task_oidc

DRAIN = "/tasks/jobs/message-processing/drain"
AUDIENCE = "https://worker.example.com"
SERVICE_ACCOUNT = "tasks@my-project.iam.gserviceaccount.com"
VERIFY = "instaflow.api.task_auth.id_token.verify_oauth2_token"


@pytest.fixture
def worker_client():
    fake_worker = MagicMock()
    fake_worker.drain.return_value = []
    with patch("instaflow.api.routes.tasks_jobs._get_worker", return_value=fake_worker):
        yield TestClient(create_app(role="worker"))


def _jwt_with_aud(aud: str) -> str:
    claims = base64.urlsafe_b64encode(json.dumps({"aud": aud}).encode()).decode().rstrip("=")
    return f"eyJhbGciOiJSUzI1NiJ9.{claims}.sig"


class TestOidc:
    def test_no_auth_returns_401(self, worker_client, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", AUDIENCE)

        assert worker_client.post(DRAIN).status_code == 401

    def test_valid_token_succeeds(self, worker_client, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", AUDIENCE)
        monkeypatch.setenv("TASKS_OIDC_SERVICE_ACCOUNT", SERVICE_ACCOUNT)

        with patch(VERIFY, return_value={"email": SERVICE_ACCOUNT}) as verify:
            response = worker_client.post(DRAIN, headers={"Authorization": "Bearer good-token"})

        assert response.status_code == 200
        assert verify.call_args.kwargs["audience"] == AUDIENCE

    def test_wrong_service_account_rejected(self, worker_client, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", AUDIENCE)
        monkeypatch.setenv("TASKS_OIDC_SERVICE_ACCOUNT", SERVICE_ACCOUNT)

        with patch(VERIFY, return_value={"email": "intruder@example.com"}):
            response = worker_client.post(DRAIN, headers={"Authorization": "Bearer token"})

        assert response.status_code == 401

    def test_invalid_token_rejected(self, worker_client, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", AUDIENCE)

        with patch(VERIFY, side_effect=ValueError("Token has wrong audience")):
            response = worker_client.post(DRAIN, headers={"Authorization": f"Bearer {_jwt_with_aud('x')}"})

        assert response.status_code == 401

    def test_missing_audience_fails_closed(self):
        with patch(VERIFY) as verify:
            assert verify_task_oidc("some-token") is False
        verify.assert_not_called()


class TestLocalDevSecret:
    def test_secret_accepted_with_local_audience(self, worker_client, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", LOCAL_DEV_AUDIENCE)
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "s3cret")

        response = worker_client.post(DRAIN, headers={"X-Internal-Task-Secret": "s3cret"})

        assert response.status_code == 200

    def test_wrong_secret_rejected(self, worker_client, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", LOCAL_DEV_AUDIENCE)
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "s3cret")

        response = worker_client.post(DRAIN, headers={"X-Internal-Task-Secret": "guess"})

        assert response.status_code == 401

    def test_secret_ignored_outside_local_dev(self, worker_client, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", AUDIENCE)
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "s3cret")

        response = worker_client.post(DRAIN, headers={"X-Internal-Task-Secret": "s3cret"})

        assert response.status_code == 401


def test_unverified_audience_reads_claim():
    assert _unverified_audience(_jwt_with_aud("https://a.example.com")) == "https://a.example.com"
    assert _unverified_audience("not-a-jwt") is None
