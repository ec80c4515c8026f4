"""Keyword sentiment heuristic, used when the AI provider cannot classify."""

from typing import Literal

Sentiment = Literal["positive", "neutral", "negative"]

POSITIVE_WORDS = ("great", "awesome", "excellent", "love", "thanks", "perfect", "amazing", "good")
NEGATIVE_WORDS = ("bad", "terrible", "awful", "hate", "worst", "poor", "disappointed", "angry")


def keyword_sentiment(text: str) -> Sentiment:
    """Count positive vs negative words present; majority wins, tie is neutral."""
    lowered = (text or "").lower()
    positive = sum(1 for word in POSITIVE_WORDS if word in lowered)
    negative = sum(1 for word in NEGATIVE_WORDS if word in lowered)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def normalize_sentiment(value: str | None) -> Sentiment | None:
    """Map a provider answer onto the three labels (None if unrecognised)."""
    if not value:
        return None
    word = value.strip().lower().strip(".!\"'")
    if word in ("positive", "neutral", "negative"):
        return word  # type: ignore[return-value]
    return None
