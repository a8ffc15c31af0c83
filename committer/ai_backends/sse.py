"""
Server-sent event decoding for chat-completion streams.
"""

import json
from typing import Any, Dict, Optional, Union
from loguru import logger

from .base import Delta, Done, StreamError, StreamEvent


DONE_SENTINEL = "[DONE]"


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        message = error.get("message") or error.get("code") or "unknown error"
        return str(message)
    return str(error)


def decode_chunk(data: Union[str, Dict]) -> Optional[StreamEvent]:
    """Turn one ``data:`` payload into an event.

    Returns None for payloads that carry no text (role announcements,
    finish markers, usage blocks) and for malformed chunks, which are skipped.
    """
    if isinstance(data, str):
        if data.strip() == DONE_SENTINEL:
            return Done()
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed chunk: {data[:100]!r}")
            return None

    if not isinstance(data, dict):
        logger.debug(f"Skipping non-object chunk: {str(data)[:100]!r}")
        return None

    if data.get("error"):
        return StreamError(_error_message(data["error"]))

    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None

    choice = choices[0] if isinstance(choices[0], dict) else {}
    delta = choice.get("delta")
    content = delta.get("content") if isinstance(delta, dict) else None
    if isinstance(content, str) and content:
        return Delta(content)
    return None


def decode_line(raw: Union[bytes, str]) -> Optional[StreamEvent]:
    """Decode a single SSE line; comments, blank lines and non-data fields yield None."""
    line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    line = line.strip()

    # Blank lines separate events; ":" lines are keep-alive comments
    if not line or line.startswith(":"):
        return None
    if not line.startswith("data:"):
        return None

    return decode_chunk(line[len("data:"):].strip())


def parse_completion_body(body: Union[str, Dict]) -> str:
    """Extract the message text from a non-streaming completion response.

    Raises ValueError when the body is not a completion.
    """
    data = json.loads(body) if isinstance(body, str) else body
    if not isinstance(data, dict):
        raise ValueError("Completion body is not a JSON object")
    if data.get("error"):
        raise ValueError(_error_message(data["error"]))

    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ValueError("Completion body has no choices")

    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise ValueError("Completion choice has no message content")
    return content
