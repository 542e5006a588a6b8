from __future__ import annotations

import math
from typing import Any

VALID_ROLES = ("system", "user", "assistant")
VALID_PROVIDERS = ("openai", "gemini", "claude")


def _is_number(value: Any) -> bool:
    # bool is an int subclass but is not a numeric JSON value; JSON has no NaN or Infinity.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def is_chat_message(value: Any) -> bool:
    """Return True when value has a known role and a string content."""
    if not isinstance(value, dict):
        return False
    return value.get("role") in VALID_ROLES and isinstance(value.get("content"), str)


def is_chat_request(value: Any) -> bool:
    """Structural check for a decoded chat request body. Never raises."""
    if not isinstance(value, dict):
        return False

    if value.get("provider") not in VALID_PROVIDERS:
        return False

    model = value.get("model")
    if not isinstance(model, str) or not model:
        return False

    messages = value.get("messages")
    if not isinstance(messages, list) or not all(is_chat_message(m) for m in messages):
        return False

    for key in ("temperature", "maxTokens"):
        if key in value and not _is_number(value[key]):
            return False

    return True
