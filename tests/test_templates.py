"""Tests for reply templates, system prompts and keyword sentiment."""

import pytest

from instaflow.domain.prompts import TONE_INSTRUCTIONS, build_system_prompt
from instaflow.domain.rules import AIReplyAction
from instaflow.domain.sentiment import keyword_sentiment, normalize_sentiment
from instaflow.domain.templates import render_template, truncate


class TestRenderTemplate:
    def test_substitutes_known_variable(self):
        assert render_template("Hi {{name}}", {"name": "Ana"}) == "Hi Ana"

    def test_missing_variable_left_verbatim(self):
        assert render_template("Hi {{name}}", {}) == "Hi {{name}}"

    def test_empty_value_left_verbatim(self):
        assert render_template("Hi {{name}}", {"name": ""}) == "Hi {{name}}"

    def test_repeated_and_multiple_placeholders(self):
        result = render_template(
            "{{greeting}} {{name}}! {{greeting}} again", {"greeting": "Hello", "name": "Bo"}
        )
        assert result == "Hello Bo! Hello again"

    def test_single_braces_untouched(self):
        assert render_template("price: {amount}", {"amount": "10"}) == "price: {amount}"


class TestTruncate:
    def test_short_text_unchanged(self):
        assert truncate("hello", 10) == "hello"

    def test_long_text_cut_with_suffix(self):
        result = truncate("a" * 100, 50)
        assert len(result) == 50
        assert result.endswith("...")


class TestSystemPrompt:
    def _action(self, **overrides):
        config = {"businessContext": "We sell handmade candles in Lisbon.", **overrides}
        return AIReplyAction.model_validate(config)

    def test_includes_context_and_tone(self):
        prompt = build_system_prompt(self._action(tone="formal"))

        assert "We sell handmade candles in Lisbon." in prompt
        assert TONE_INSTRUCTIONS["formal"] in prompt

    def test_emoji_rule_follows_config(self):
        assert "Do not use emojis" in build_system_prompt(self._action(includeEmojis=False))
        assert "Use emojis sparingly" in build_system_prompt(self._action())

    def test_optional_sections(self):
        prompt = build_system_prompt(self._action(maxLength=120, customInstructions="Always sign as Rita."))

        assert "under 120 characters" in prompt
        assert "ADDITIONAL INSTRUCTIONS:" in prompt
        assert "Always sign as Rita." in prompt

    def test_no_optional_sections_by_default(self):
        prompt = build_system_prompt(self._action())

        assert "ADDITIONAL INSTRUCTIONS:" not in prompt
        assert "characters" not in prompt


class TestSentiment:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("This is great, thanks!", "positive"),
            ("Worst service, I hate it", "negative"),
            ("What time do you open?", "neutral"),
            ("good but bad", "neutral"),
        ],
    )
    def test_keyword_sentiment(self, text, expected):
        assert keyword_sentiment(text) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [("Positive.", "positive"), (" negative\n", "negative"), ("mixed", None), (None, None)],
    )
    def test_normalize_sentiment(self, value, expected):
        assert normalize_sentiment(value) == expected
