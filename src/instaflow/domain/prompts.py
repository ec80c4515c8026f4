"""System prompt construction for AI replies."""

from .rules import DEFAULT_TONE, AIReplyAction

TONE_INSTRUCTIONS: dict[str, str] = {
    "professional": (
        "Use professional, polished language. Be respectful and formal. "
        "Avoid slang and excessive emojis."
    ),
    "friendly": (
        "Be warm and approachable. Use a conversational tone with occasional emojis. "
        "Sound like a helpful friend."
    ),
    "casual": (
        "Keep it relaxed and informal. Use everyday language and emojis. "
        "Be personable and easy-going."
    ),
    "enthusiastic": (
        "Show excitement and energy! Use exclamation points and emojis. "
        "Be upbeat and positive."
    ),
    "formal": (
        "Maintain strict formality. Use proper grammar and professional vocabulary. "
        "No emojis or casual language."
    ),
}


def tone_instructions(tone: str) -> str:
    return TONE_INSTRUCTIONS.get(tone) or TONE_INSTRUCTIONS[DEFAULT_TONE]


def build_system_prompt(action: AIReplyAction) -> str:
    """Build the system prompt for an ai_reply action."""
    emoji_rule = (
        "Use emojis sparingly and appropriately"
        if action.include_emojis
        else "Do not use emojis"
    )
    lines = [
        "You are an AI assistant helping with Instagram direct messages for a business.",
        "",
        "BUSINESS CONTEXT:",
        action.business_context,
        "",
        "TONE & STYLE:",
        tone_instructions(action.tone),
        "",
        "INSTRUCTIONS:",
        "1. Respond naturally and conversationally",
        "2. Keep responses concise (1-3 sentences max)",
        "3. Be helpful and address the user's question or concern",
        "4. Use the business context to provide relevant information",
        "5. Don't mention that you're an AI unless asked",
        f"6. {emoji_rule}",
        "7. If you don't know something, be honest and offer to help in another way",
    ]
    if action.max_length:
        lines.append(f"8. Keep the reply under {action.max_length} characters")
    if action.custom_instructions:
        lines += ["", "ADDITIONAL INSTRUCTIONS:", action.custom_instructions]
    lines += [
        "",
        "Generate a response to the user's latest message following these guidelines.",
    ]
    return "\n".join(lines)
