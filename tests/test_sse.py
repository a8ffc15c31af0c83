"""Tests for committer.ai_backends.sse module."""

import json

import pytest

from committer.ai_backends.base import Delta, Done, StreamError
from committer.ai_backends.sse import decode_chunk, decode_line, parse_completion_body


def _chunk(content):
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]})


class TestDecodeLine:
    """Tests for decode_line function."""

    def test_delta(self):
        """Test a content chunk."""
        assert decode_line(_chunk("feat: ")) == Delta("feat: ")

    def test_bytes_line(self):
        """Test raw bytes with a trailing newline, as read from the socket."""
        assert decode_line((_chunk("añadir") + "\n").encode()) == Delta("añadir")

    def test_done(self):
        """Test the [DONE] sentinel."""
        assert decode_line(b"data: [DONE]\n") == Done()

    @pytest.mark.parametrize("line", [
        "",
        "\n",
        ": OPENROUTER PROCESSING",
        "event: ping",
        "data: {not json",
        "data: []",
        'data: {"choices": []}',
        'data: {"choices": [{"delta": {"role": "assistant"}}]}',
        'data: {"choices": [{"delta": {"content": ""}, "finish_reason": "stop"}]}',
    ])
    def test_skipped(self, line):
        """Test that comments, blanks and malformed or empty chunks are skipped."""
        assert decode_line(line) is None

    def test_error_chunk(self):
        """Test an error object mid-stream."""
        event = decode_line('data: {"error": {"message": "upstream overloaded", "code": 502}}')
        assert event == StreamError("upstream overloaded")


class TestDecodeChunk:
    """Tests for decode_chunk function."""

    def test_dict_input(self):
        """Test an already parsed chunk."""
        assert decode_chunk({"choices": [{"delta": {"content": "x"}}]}) == Delta("x")

    def test_error_string(self):
        """Test an error given as a plain string."""
        assert decode_chunk({"error": "boom"}) == StreamError("boom")


class TestParseCompletionBody:
    """Tests for parse_completion_body function."""

    def test_message_content(self):
        """Test extracting the message text."""
        body = json.dumps({"choices": [{"message": {"role": "assistant", "content": "fix: typo"}}]})
        assert parse_completion_body(body) == "fix: typo"

    @pytest.mark.parametrize("body", [
        "[]",
        '{"choices": []}',
        '{"choices": [{"message": {}}]}',
        '{"error": {"message": "bad model"}}',
    ])
    def test_not_a_completion(self, body):
        """Test that choice-less bodies raise ValueError."""
        with pytest.raises(ValueError):
            parse_completion_body(body)

    def test_invalid_json(self):
        """Test that invalid JSON raises ValueError."""
        with pytest.raises(ValueError):
            parse_completion_body("<html>")
