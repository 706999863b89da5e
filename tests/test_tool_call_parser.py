"""Tests for extracting embedded tool calls from generated text."""

import pytest

from edgecall.core.schema import ToolCall
from edgecall.tools.tool_call_parser import (
    ParsedResponse,
    parse_response,
)


@pytest.mark.parametrize(
    "text",
    [
        "",
        "Just a friendly answer.",
        "  padded text with a {brace} and {\"json\": true}  ",
        '{"name": "camera_snap"}',
    ],
)
def test_plain_text_is_returned_verbatim(text: str) -> None:
    parsed = parse_response(text)
    assert parsed == ParsedResponse(text, None)
    assert parse_response(parsed.text) == parsed


def test_tagged_block_is_extracted() -> None:
    text = (
        "Let me take a picture.\n"
        '<tool_call>\n{"name": "camera_snap", "arguments": {"facing": "back"}}\n</tool_call>\n'
    )
    parsed = parse_response(text)
    assert parsed.tool_call == ToolCall(name="camera_snap", arguments={"facing": "back"})
    assert parsed.text == "Let me take a picture."
    assert "tool_call" not in parsed.text


def test_tagged_block_without_arguments() -> None:
    parsed = parse_response('<tool_call>{"name": "location_get"}</tool_call>')
    assert parsed.tool_call == ToolCall(name="location_get", arguments={})
    assert parsed.text == ""


def test_tagged_block_with_string_arguments() -> None:
    text = '<tool_call>{"name": "sms_send", "arguments": "{\\"to\\": \\"+100\\"}"}</tool_call>'
    parsed = parse_response(text)
    assert parsed.tool_call is not None
    assert parsed.tool_call.arguments == '{"to": "+100"}'


def test_malformed_tagged_block_is_plain_text() -> None:
    text = 'Oops <tool_call>{"name": "camera_snap", "arguments": {facing}}</tool_call>'
    assert parse_response(text) == ParsedResponse(text, None)


def test_tagged_block_without_name_is_plain_text() -> None:
    text = '<tool_call>{"arguments": {}}</tool_call>'
    assert parse_response(text) == ParsedResponse(text, None)


def test_bare_inline_object_is_extracted() -> None:
    text = 'Sure. {"name": "echo", "arguments": {"text": "a } b", "opts": {"x": 1}}} Done'
    parsed = parse_response(text)
    assert parsed.tool_call == ToolCall(
        name="echo", arguments={"text": "a } b", "opts": {"x": 1}}
    )
    assert parsed.text == "Sure.  Done"


def test_unbalanced_bare_object_is_plain_text() -> None:
    text = 'Calling {"name": "echo", "arguments": {"text": "hi"}'
    assert parse_response(text) == ParsedResponse(text, None)


def test_tagged_block_wins_over_bare_object() -> None:
    text = (
        '{"name": "echo", "arguments": {"text": "bare"}}\n'
        '<tool_call>{"name": "mirror", "arguments": {"input": "tagged"}}</tool_call>'
    )
    parsed = parse_response(text)
    assert parsed.tool_call is not None
    assert parsed.tool_call.name == "mirror"
    assert parsed.text == '{"name": "echo", "arguments": {"text": "bare"}}'


def test_only_first_tagged_block_is_used() -> None:
    second = '<tool_call>{"name": "b", "arguments": {}}</tool_call>'
    text = '<tool_call>{"name": "a", "arguments": {}}</tool_call> then ' + second
    parsed = parse_response(text)
    assert parsed.tool_call is not None
    assert parsed.tool_call.name == "a"
    assert parsed.text == "then " + second


def test_custom_tag() -> None:
    text = 'x <call>{"name": "clock", "arguments": {}}</call>'
    # with the default tag the object is still found, but only as a bare call
    assert parse_response(text).text == "x <call></call>"
    parsed = parse_response(text, tag="call")
    assert parsed.tool_call == ToolCall(name="clock", arguments={})
    assert parsed.text == "x"
