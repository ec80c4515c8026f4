"""Provider selection from environment."""

import os

from .anthropic_provider import AnthropicProvider
from .base import AIProvider
from .openai_provider import OpenAIProvider

SUPPORTED_PROVIDERS = ("anthropic", "openai")


def provider_from_env() -> AIProvider:
    """Create the configured AI provider.

    Env vars:
    - AI_PROVIDER: anthropic (default) | openai
    - AI_API_KEY: required
    - AI_MODEL: optional model override
    - AI_TIMEOUT_SECONDS: request timeout (default 30)

    Raises:
        RuntimeError: If AI_API_KEY is missing or AI_PROVIDER is unknown.
    """
    provider = os.environ.get("AI_PROVIDER", "anthropic").strip().lower()
    api_key = os.environ.get("AI_API_KEY", "")
    model = os.environ.get("AI_MODEL") or None
    timeout = float(os.environ.get("AI_TIMEOUT_SECONDS", "30"))

    if not api_key:
        raise RuntimeError("AI_API_KEY environment variable is required")

    if provider == "anthropic":
        return AnthropicProvider(api_key=api_key, model=model, timeout=timeout)
    if provider == "openai":
        return OpenAIProvider(api_key=api_key, model=model, timeout=timeout)
    raise RuntimeError(f"Unknown AI_PROVIDER: {provider} (expected one of {SUPPORTED_PROVIDERS})")
