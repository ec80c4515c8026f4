"""Tests for the Instagram webhook routes (GET handshake, POST intake).

Uses in-memory storage; no DATABASE_URL needed.
"""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from instaflow.api.factory import create_app
from instaflow.observability.logging import JsonFormatter
from instaflow.tasks.contracts import MESSAGE_PROCESSING, WEBHOOK_INTAKE
from tests.helpers import ACCOUNT_ID, APP_SECRET, dm, dm_envelope, encode, sign

ROUTES = "instaflow.api.routes.webhooks_instagram"


@pytest.fixture
def client():
    return TestClient(create_app(role="public"))


@pytest.fixture
def wired(store, tasks_client, monkeypatch):
    """Route the webhook at the in-memory store and inline tasks client."""
    monkeypatch.setenv("INSTAGRAM_APP_SECRET", APP_SECRET)
    with patch(f"{ROUTES}._get_store", return_value=store), \
         patch(f"{ROUTES}._get_tasks_client", return_value=tasks_client):
        yield store


def _post(client, payload=None, *, body=None, signature=None):
    raw = body if body is not None else encode(payload)
    headers = {"Content-Type": "application/json", "X-Hub-Signature-256": signature or sign(raw)}
    return client.post("/webhook", content=raw, headers=headers)


class TestVerificationHandshake:
    def test_echoes_challenge(self, client, monkeypatch):
        monkeypatch.setenv("INSTAGRAM_VERIFY_TOKEN", "verify-me")

        response = client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444"},
        )

        assert response.status_code == 200
        assert response.text == "1158201444"

    @pytest.mark.parametrize(
        "params",
        [
            {"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "1"},
            {"hub.mode": "unsubscribe", "hub.verify_token": "verify-me", "hub.challenge": "1"},
            {"hub.challenge": "1"},
        ],
    )
    def test_rejects_bad_handshake(self, client, monkeypatch, params):
        monkeypatch.setenv("INSTAGRAM_VERIFY_TOKEN", "verify-me")

        assert client.get("/webhook", params=params).status_code == 403

    def test_rejects_when_token_not_configured(self, client):
        response = client.get(
            "/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "", "hub.challenge": "1"}
        )

        assert response.status_code == 403


class TestSignature:
    def test_bad_signature_rejected_before_storage(self, client, wired):
        response = _post(client, dm_envelope(dm("mid.1")), signature="sha256=" + "0" * 64)

        assert response.status_code == 403
        assert wired.jobs() == []

    def test_missing_secret_fails_closed(self, client, store, monkeypatch):
        with patch(f"{ROUTES}._get_store", return_value=store):
            response = _post(client, dm_envelope(dm("mid.1")))

        assert response.status_code == 403
        assert store.jobs() == []


class TestIntake:
    def test_accepts_and_enqueues(self, client, wired):
        response = _post(client, dm_envelope(dm("mid.1"), dm("mid.2", offset_ms=5)))

        assert response.status_code == 200
        assert response.text == "ok"
        assert [j.payload["event_id"] for j in wired.jobs(MESSAGE_PROCESSING)] == ["mid.1", "mid.2"]

    def test_redelivery_is_duplicate(self, client, wired):
        payload = dm_envelope(dm("mid.1"))
        _post(client, payload)

        response = _post(client, payload)

        assert response.status_code == 200
        assert response.text == "duplicate"
        assert len(wired.jobs()) == 1

    def test_job_keeps_request_correlation_id(self, client, wired):
        raw = encode(dm_envelope(dm("mid.1")))
        client.post(
            "/webhook",
            content=raw,
            headers={"X-Hub-Signature-256": sign(raw), "X-Correlation-ID": "cid-abc"},
        )

        assert wired.jobs()[0].payload["correlation_id"] == "cid-abc"

    def test_non_instagram_object_ignored(self, client, wired):
        response = _post(client, {"object": "page", "entry": []})

        assert response.status_code == 200
        assert response.text == "ignored"
        assert wired.jobs() == []

    def test_invalid_json(self, client, wired):
        response = _post(client, body=b"{not json")

        assert response.status_code == 400

    def test_non_object_json(self, client, wired):
        assert _post(client, body=b"[1, 2]").status_code == 400

    def test_malformed_envelope(self, client, wired):
        response = _post(client, {"object": "instagram", "entry": {"id": ACCOUNT_ID}})

        assert response.status_code == 400
        assert response.text == "invalid envelope"

    def test_storage_failure_returns_500(self, client, wired):
        wired.fail_writes = RuntimeError("db down")

        response = _post(client, dm_envelope(dm("mid.1")))

        assert response.status_code == 500
        wired.fail_writes = None
        # Redelivery after recovery is accepted
        assert _post(client, dm_envelope(dm("mid.1"))).text == "ok"

    def test_deferred_mode_stores_raw_envelope(self, client, wired, monkeypatch):
        monkeypatch.setenv("INTAKE_MODE", "deferred")

        response = _post(client, dm_envelope(dm("mid.1")))

        assert response.status_code == 200
        assert len(wired.jobs(WEBHOOK_INTAKE)) == 1
        assert wired.jobs(MESSAGE_PROCESSING) == []


class _Collect(logging.Handler):
    def __init__(self):
        super().__init__()
        self.setFormatter(JsonFormatter())
        self.lines = []

    def emit(self, record):
        self.lines.append(self.format(record))


def test_logs_contain_no_message_text(client, wired):
    collector = _Collect()
    names = (ROUTES, "instaflow.domain.intake", "instaflow.instagram.adapter", "instaflow.tasks.client")
    for name in names:
        logging.getLogger(name).addHandler(collector)
    try:
        _post(client, dm_envelope(dm("mid.1", "call me at +55 11 99999-8888", username="secret.handle")))
    finally:
        for name in names:
            logging.getLogger(name).removeHandler(collector)

    assert collector.lines
    out = "\n".join(collector.lines)
    assert "99999-8888" not in out
    assert "secret.handle" not in out
