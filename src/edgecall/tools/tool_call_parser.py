"""
Extracts a tool call embedded in free-form model output.

Two encodings are recognised, tried in this order:

1. A tagged block::

       <tool_call>{"name": "<tool>", "arguments": { ... }}</tool_call>

2. A bare inline object that starts with a ``name`` key followed by an ``arguments`` key::

       {"name": "<tool>", "arguments": { ... }}

The first match of the first tier that matches wins; a turn yields at most one call.  A match whose
payload is not a JSON object is treated as plain text: a malformed embedded call never fails the
turn.
"""

import json
import logging
import re
from functools import lru_cache
from typing import (
    Any,
    Dict,
    NamedTuple,
    Optional,
    Pattern,
    Tuple,
)

from edgecall.core.schema import ToolCall

logger = logging.getLogger(__name__)

DEFAULT_TAG = "tool_call"


class ToolCallParseError(RuntimeError):
    """Raised when a recognised call span does not hold a usable JSON object."""


class ParsedResponse(NamedTuple):
    """Narrative text and, when present, the call it contained."""

    text: str
    tool_call: Optional[ToolCall] = None


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------
_BARE_CALL_START = re.compile(r'\{\s*"name"\s*:\s*"[^"]+"\s*,\s*"arguments"\s*:')


@lru_cache(maxsize=8)
def _tagged_block(tag: str) -> Pattern[str]:
    t = re.escape(tag)
    return re.compile(rf"<{t}>\s*(\{{.*?\}})\s*</{t}>", re.DOTALL)


def _skip_string(s: str, i: int) -> int:
    """Given s[i] == '"', return the index just past the closing quote."""
    i += 1
    while i < len(s):
        ch = s[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            return i + 1
        i += 1
    raise ToolCallParseError("unterminated string literal")


def _find_matching_brace(s: str, i: int) -> int:
    """Given s[i] == '{', return index just past its matching '}'."""
    depth = 0
    while i < len(s):
        ch = s[i]
        if ch == '"':
            i = _skip_string(s, i)  # braces inside strings don't count
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    raise ToolCallParseError("unbalanced braces")


def _load_call(payload: str) -> ToolCall:
    try:
        obj: Any = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ToolCallParseError(f"payload is not valid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise ToolCallParseError("payload is not a JSON object")
    if "name" not in obj:
        raise ToolCallParseError("payload has no 'name' key")
    fields: Dict[str, Any] = {"name": obj["name"] if isinstance(obj["name"], str) else ""}
    if "arguments" in obj and obj["arguments"] is not None:
        fields["arguments"] = obj["arguments"]
    return ToolCall(**fields)


def _cut(text: str, span: Tuple[int, int]) -> str:
    start, end = span
    return (text[:start] + text[end:]).strip()


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------
def parse_response(text: str, tag: str = DEFAULT_TAG) -> ParsedResponse:
    """
    Split raw model output into narrative text and an optional tool call.

    Parameters
    ----------
    text:
        Generated text, as returned by the engine.
    tag:
        Name of the delimiter tag for the tagged encoding (``tool_call`` by default).

    Returns
    -------
    ParsedResponse
        ``(text, None)`` with *text* verbatim when no call is present, otherwise the text with the
        call span removed and trimmed, plus the extracted :class:`ToolCall`.
    """
    if not text:
        return ParsedResponse(text)

    tagged = _tagged_block(tag).search(text)
    if tagged is not None:
        try:
            call = _load_call(tagged.group(1))
        except ToolCallParseError as exc:
            logger.debug("Ignoring malformed <%s> block: %s", tag, exc)
            return ParsedResponse(text)
        return ParsedResponse(_cut(text, tagged.span()), call)

    bare = _BARE_CALL_START.search(text)
    if bare is not None:
        start = bare.start()
        try:
            end = _find_matching_brace(text, start)
            call = _load_call(text[start:end])
        except ToolCallParseError as exc:
            logger.debug("Ignoring malformed inline call: %s", exc)
            return ParsedResponse(text)
        return ParsedResponse(_cut(text, (start, end)), call)

    return ParsedResponse(text)
