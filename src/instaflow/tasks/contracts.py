"""Job contracts v1 - queue payload definitions.

Payloads carry identifiers only. Message text and sender handles stay in
`inbound_events`; the worker loads them by (account_id, event_id).
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Literal

WEBHOOK_INTAKE = "webhook-intake"
MESSAGE_PROCESSING = "message-processing"
SEND_MESSAGE = "send-message"

JOB_KINDS: tuple[str, ...] = (WEBHOOK_INTAKE, MESSAGE_PROCESSING, SEND_MESSAGE)

# Lower runs first
JOB_PRIORITIES: dict[str, int] = {
    WEBHOOK_INTAKE: 1,
    MESSAGE_PROCESSING: 2,
    SEND_MESSAGE: 3,
}


def drain_path(kind: str) -> str:
    """Worker endpoint that drains jobs of `kind`."""
    if kind not in JOB_KINDS:
        raise ValueError(f"Unknown job kind: {kind}")
    return f"/tasks/jobs/{kind}/drain"


def process_dedupe_key(account_id: str, event_id: str) -> str:
    return f"process:{account_id}:{event_id}"


def send_dedupe_key(account_id: str, event_id: str) -> str:
    return f"send:{account_id}:{event_id}"


def intake_dedupe_key(raw_body: bytes) -> str:
    return f"intake:{hashlib.sha256(raw_body).hexdigest()}"


@dataclass(frozen=True)
class EventJobV1:
    """Payload of message-processing and send-message jobs.

    Attributes:
        version: Contract version (always "v1").
        account_id: Connected business account id.
        event_id: Platform message id.
        correlation_id: Correlation ID of the request that produced the job.
    """

    version: Literal["v1"] = field(default="v1", init=False)
    account_id: str = ""
    event_id: str = ""
    correlation_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "version": self.version,
            "account_id": self.account_id,
            "event_id": self.event_id,
            "correlation_id": self.correlation_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EventJobV1":
        """Create from dict."""
        if data.get("version") != "v1":
            raise ValueError(f"Unsupported version: {data.get('version')}")
        if not data.get("account_id") or not data.get("event_id"):
            raise ValueError("account_id and event_id are required")
        return cls(
            account_id=str(data["account_id"]),
            event_id=str(data["event_id"]),
            correlation_id=str(data.get("correlation_id") or ""),
        )
