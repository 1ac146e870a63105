"""Turn raw assistant output into the reply string handed back to callers."""

import json
from typing import Any

from relaybot.core.errors import ErrorKind, ReplyError
from relaybot.services.conversations import ReplyMode


def _text_value(part: Any) -> str | None:
    """Return the text of a ``{"type": "text", "text": {"value": ...}}`` part, else None."""
    if not isinstance(part, dict) or part.get("type") != "text":
        return None
    text = part.get("text")
    if isinstance(text, dict) and isinstance(text.get("value"), str):
        return text["value"]
    if isinstance(text, str):
        return text
    return None


def normalize(raw_content: Any, reply_mode: ReplyMode) -> str:
    if reply_mode == ReplyMode.STRUCTURED:
        if isinstance(raw_content, (list, tuple)) and raw_content:
            value = _text_value(raw_content[0])
            if value is not None:
                return value
        raise ReplyError(ErrorKind.MALFORMED_REPLY, "Structured reply must start with a text part")

    if isinstance(raw_content, str):
        return raw_content
    if isinstance(raw_content, (list, tuple)):
        texts = [_text_value(part) for part in raw_content]
        return "".join(t for t in texts if t is not None)
    raise ReplyError(
        ErrorKind.MALFORMED_REPLY, f"Unexpected reply content type: {type(raw_content).__name__}"
    )


def parse_structured(text: str) -> Any:
    """Parse a structured reply. Raises STRUCTURED_PARSE_ERROR on invalid JSON."""
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ReplyError(ErrorKind.STRUCTURED_PARSE_ERROR, f"Reply is not valid JSON: {e}") from e
