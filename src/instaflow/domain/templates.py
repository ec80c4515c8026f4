"""Template rendering for predefined replies."""

import re
from typing import Mapping

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def render_template(template: str, variables: Mapping[str, str]) -> str:
    """Replace {{name}} placeholders with values from `variables`.

    Placeholders with no (or an empty) value are left verbatim.

    Example:
        render_template("Hi {{name}}", {"name": "Ana"}) -> "Hi Ana"
        render_template("Hi {{name}}", {}) -> "Hi {{name}}"
    """

    def _sub(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        return str(value) if value else match.group(0)

    return _PLACEHOLDER.sub(_sub, template)


def truncate(text: str, max_length: int, suffix: str = "...") -> str:
    """Cut text to max_length characters, ending with suffix when cut."""
    if len(text) <= max_length:
        return text
    return text[: max(0, max_length - len(suffix))] + suffix
