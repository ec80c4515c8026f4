"""Rule matching - first active rule (by priority) whose trigger fits wins.

Rules are read cache-first. A rule row whose config fails validation is
logged and dropped; it never aborts matching for the other rules.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Protocol

from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import hash_identifier, safe_log_context

from .errors import ValidationError
from .rules import (
    AutomationRule,
    CommentTrigger,
    FirstMessageTrigger,
    KeywordTrigger,
    ReactionTrigger,
    StoryReplyTrigger,
    parse_rule,
    rule_to_dict,
)
from .store import Store

logger = get_logger(__name__)


@dataclass(frozen=True)
class MatchInput:
    """What the matcher sees of an inbound event. PII: text is NEVER logged."""

    text: str | None
    event_type: str = "message"
    is_first_message: bool = False
    reaction: str | None = None


class RuleCache(Protocol):
    """Cache of an account's active rule rows."""

    def get(self, account_id: str) -> list[dict[str, Any]] | None: ...

    def set(self, account_id: str, rows: list[dict[str, Any]]) -> None: ...

    def invalidate(self, account_id: str) -> None: ...


class NullRuleCache:
    """Cache that never hits (REDIS_URL unset)."""

    def get(self, account_id: str) -> list[dict[str, Any]] | None:
        return None

    def set(self, account_id: str, rows: list[dict[str, Any]]) -> None:
        return None

    def invalidate(self, account_id: str) -> None:
        return None


def matches_keyword(
    text: str,
    keyword: str,
    match_type: str = "contains",
    case_sensitive: bool = False,
) -> bool:
    """Check text against a keyword condition.

    Args:
        text: Message text.
        keyword: Keyword, or a pattern when match_type is "regex".
        match_type: contains | equals | starts_with | ends_with | regex.
        case_sensitive: Compare case-sensitively (default False).

    Returns:
        True on match. An invalid regex or unknown match_type is no match.
    """
    if match_type == "regex":
        try:
            pattern = re.compile(keyword, 0 if case_sensitive else re.IGNORECASE)
        except re.error:
            return False
        return pattern.search(text) is not None

    msg = text if case_sensitive else text.lower()
    kw = keyword if case_sensitive else keyword.lower()

    if match_type == "contains":
        return kw in msg
    if match_type == "equals":
        return msg == kw
    if match_type == "starts_with":
        return msg.startswith(kw)
    if match_type == "ends_with":
        return msg.endswith(kw)
    return False


def trigger_matches(rule: AutomationRule, message: MatchInput) -> bool:
    trigger = rule.trigger
    if isinstance(trigger, KeywordTrigger):
        return (
            message.event_type == "message"
            and bool(message.text)
            and matches_keyword(
                message.text or "", trigger.keyword, trigger.match_type, trigger.case_sensitive
            )
        )
    if isinstance(trigger, FirstMessageTrigger):
        return message.event_type == "message" and message.is_first_message
    if isinstance(trigger, ReactionTrigger):
        if message.event_type != "reaction":
            return False
        return trigger.reaction is None or trigger.reaction == message.reaction
    if isinstance(trigger, StoryReplyTrigger):
        return message.event_type == "story_reply"
    if isinstance(trigger, CommentTrigger):
        if message.event_type != "comment":
            return False
        if not trigger.keyword:
            return True
        return matches_keyword(message.text or "", trigger.keyword, "contains", False)
    return False


class RuleSource:
    """Active rules for an account, cache-first with store fallback."""

    def __init__(self, store: Store, cache: RuleCache | None = None) -> None:
        self._store = store
        self._cache = cache or NullRuleCache()

    def active_rules(self, account_id: str) -> list[AutomationRule]:
        rows = self._cache.get(account_id)
        from_cache = rows is not None
        if rows is None:
            with self._store.session() as session:
                rows = session.list_active_rules(account_id)

        rules: list[AutomationRule] = []
        for row in rows:
            try:
                rules.append(parse_rule(row))
            except ValidationError as exc:
                logger.warning(
                    "invalid rule config dropped",
                    extra={
                        "extra_fields": safe_log_context(
                            account_hash=hash_identifier(account_id),
                            rule_id=str(row.get("id", "")),
                            error=exc.message,
                        )
                    },
                )

        if not from_cache:
            self._cache.set(account_id, [rule_to_dict(r) for r in rules])

        return [r for r in rules if r.is_active]

    def invalidate(self, account_id: str) -> None:
        self._cache.invalidate(account_id)


def match(
    account_id: str,
    message: MatchInput,
    *,
    rules_source: RuleSource,
) -> AutomationRule | None:
    """Return the first matching active rule, ordered by (priority, id)."""
    rules = sorted(rules_source.active_rules(account_id), key=lambda r: (r.priority, r.id))
    for rule in rules:
        if trigger_matches(rule, message):
            logger.info(
                "rule matched",
                extra={
                    "extra_fields": safe_log_context(
                        account_hash=hash_identifier(account_id),
                        rule_id=rule.id,
                        trigger_type=rule.trigger_type,
                        action_type=rule.action_type,
                    )
                },
            )
            return rule
    return None
