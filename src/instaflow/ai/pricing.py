"""Per-model pricing (USD per 1K tokens)."""

PRICING: dict[str, dict[str, float]] = {
    # OpenAI
    "gpt-4": {"input": 0.03, "output": 0.06},
    "gpt-4-turbo": {"input": 0.01, "output": 0.03},
    "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
    "gpt-3.5-turbo-16k": {"input": 0.003, "output": 0.004},
    # Anthropic
    "claude-sonnet-4-5": {"input": 0.003, "output": 0.015},
    "claude-opus-4-1": {"input": 0.015, "output": 0.075},
    "claude-haiku-4-5": {"input": 0.001, "output": 0.005},
    "claude-3-5-haiku-latest": {"input": 0.0008, "output": 0.004},
}

DEFAULT_OPENAI_MODEL = "gpt-3.5-turbo"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-5"


def _pricing_for(model: str) -> dict[str, float]:
    if model in PRICING:
        return PRICING[model]
    if model.startswith("claude"):
        return PRICING[DEFAULT_ANTHROPIC_MODEL]
    return PRICING[DEFAULT_OPENAI_MODEL]


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Cost for a call with known input/output split."""
    pricing = _pricing_for(model)
    cost = (input_tokens / 1000) * pricing["input"] + (output_tokens / 1000) * pricing["output"]
    return round(cost, 6)


def calculate_total_cost(model: str, tokens_used: int) -> float:
    """Cost when only the total is known (assumes a 50/50 input/output split)."""
    pricing = _pricing_for(model)
    avg_per_1k = (pricing["input"] + pricing["output"]) / 2
    return round((tokens_used / 1000) * avg_per_1k, 6)
