"""Automation rule configuration as discriminated unions.

A rule row stores `trigger_type`/`conditions` and `action_type`/`action_config`
separately; here they are folded into tagged variants so an invalid pairing
(e.g. a keyword trigger without a keyword) cannot be constructed. Stored
configs written by the dashboard use camelCase keys, so every field accepts
both spellings.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

MatchType = Literal["contains", "equals", "starts_with", "ends_with", "regex"]

TonePreset = Literal["professional", "friendly", "casual", "enthusiastic", "formal"]

TONE_PRESETS: tuple[str, ...] = ("professional", "friendly", "casual", "enthusiastic", "formal")

DEFAULT_TONE = "friendly"

FunnelStage = Literal["new", "engaged", "qualified", "converted"]


class _Config(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------

class KeywordTrigger(_Config):
    type: Literal["keyword"] = "keyword"
    keyword: str = Field(min_length=1)
    match_type: MatchType = Field("contains", alias="matchType")
    case_sensitive: bool = Field(False, alias="caseSensitive")


class FirstMessageTrigger(_Config):
    type: Literal["first_message"] = "first_message"


class ReactionTrigger(_Config):
    type: Literal["reaction"] = "reaction"
    reaction: str | None = None


class StoryReplyTrigger(_Config):
    type: Literal["story_reply"] = "story_reply"


class CommentTrigger(_Config):
    type: Literal["comment"] = "comment"
    keyword: str | None = None


Trigger = Annotated[
    Union[KeywordTrigger, FirstMessageTrigger, ReactionTrigger, StoryReplyTrigger, CommentTrigger],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class AIReplyAction(_Config):
    type: Literal["ai_reply"] = "ai_reply"
    business_context: str = Field(min_length=10, alias="businessContext")
    tone: str = DEFAULT_TONE
    max_length: int | None = Field(None, ge=50, le=1000, alias="maxLength")
    include_emojis: bool = Field(True, alias="includeEmojis")
    custom_instructions: str | None = Field(None, max_length=500, alias="customInstructions")
    temperature: float = Field(0.7, ge=0, le=1)
    max_tokens: int = Field(500, ge=50, le=4000, alias="maxTokens")
    fallback_message: str | None = Field(None, alias="fallbackMessage")

    @field_validator("tone", mode="before")
    @classmethod
    def _known_tone(cls, value: Any) -> str:
        if isinstance(value, str) and value in TONE_PRESETS:
            return value
        return DEFAULT_TONE


class PredefinedMessageAction(_Config):
    type: Literal["predefined_message"] = "predefined_message"
    message: str = Field(min_length=1, max_length=1000)
    variables: dict[str, str] = Field(default_factory=dict)


class SaveLeadAction(_Config):
    type: Literal["save_lead"] = "save_lead"
    tags: list[str] = Field(default_factory=list)
    lead_score: int | None = Field(None, ge=0, le=100, alias="leadScore")
    funnel_stage: FunnelStage = Field("new", alias="funnelStage")
    custom_fields: dict[str, Any] = Field(default_factory=dict, alias="customFields")


class TagUserAction(_Config):
    type: Literal["tag_user"] = "tag_user"
    tags: list[str] = Field(min_length=1)


class WebhookAction(_Config):
    type: Literal["webhook"] = "webhook"
    url: str
    method: Literal["POST", "GET"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    retry_attempts: int = Field(3, ge=0, le=5, alias="retryAttempts")

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("webhook url must be http(s)")
        return value


Action = Annotated[
    Union[AIReplyAction, PredefinedMessageAction, SaveLeadAction, TagUserAction, WebhookAction],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Rule
# ---------------------------------------------------------------------------

class AutomationRule(_Config):
    """A validated trigger -> action mapping for one account."""

    id: str
    account_id: str
    name: str
    is_active: bool = True
    priority: int = 100
    trigger: Trigger
    action: Action

    @property
    def trigger_type(self) -> str:
        return self.trigger.type

    @property
    def action_type(self) -> str:
        return self.action.type


def _error_summary(exc: PydanticValidationError) -> str:
    """Field paths and messages only - never the offending input values."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def parse_rule(row: dict[str, Any]) -> AutomationRule:
    """Build an AutomationRule from a stored row.

    Args:
        row: Dict with id, account_id, name, is_active, priority,
             trigger_type, conditions, action_type, action_config.

    Returns:
        Validated AutomationRule.

    Raises:
        ValidationError: If conditions/action_config do not match the schema
            selected by trigger_type/action_type.
    """
    data = {
        "id": str(row.get("id", "")),
        "account_id": str(row.get("account_id", "")),
        "name": row.get("name") or "",
        "is_active": row.get("is_active", True),
        "priority": row.get("priority", 100),
        "trigger": {**(row.get("conditions") or {}), "type": row.get("trigger_type")},
        "action": {**(row.get("action_config") or {}), "type": row.get("action_type")},
    }
    try:
        return AutomationRule.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"invalid rule config: {_error_summary(exc)}") from exc


def rule_to_dict(rule: AutomationRule) -> dict[str, Any]:
    """Serialize a rule back to its stored row shape (used by the rule cache)."""
    trigger = rule.trigger.model_dump(mode="json", exclude={"type"})
    action = rule.action.model_dump(mode="json", exclude={"type"})
    return {
        "id": rule.id,
        "account_id": rule.account_id,
        "name": rule.name,
        "is_active": rule.is_active,
        "priority": rule.priority,
        "trigger_type": rule.trigger_type,
        "conditions": trigger,
        "action_type": rule.action_type,
        "action_config": action,
    }
