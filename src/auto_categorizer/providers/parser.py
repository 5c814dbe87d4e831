"""
Extract structured JSON from free-form LLM output.

Models wrap JSON in prose, code fences (sometimes never closed) or reasoning
blocks, and the format drifts between providers and versions. `parse_json`
tries each strategy in turn and only gives up when every one fails.
"""
import json
import re
from typing import Any

from auto_categorizer.errors import ResponseParseError

EXCERPT_LENGTH = 200

_THINKING_OPENERS = ("<thinking>", "<think>")
_THINKING_CLOSERS = ("</thinking>", "</think>")

_CLOSED_ARRAY_BLOCK = re.compile(r"```(?:json)?\s*(\[[\s\S]*?\])\s*```")
_CLOSED_OBJECT_BLOCK = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
_UNCLOSED_ARRAY_BLOCK = re.compile(r"```(?:json)?\s*(\[[\s\S]*\])\s*\Z")
_UNCLOSED_OBJECT_BLOCK = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*\Z")
_ANY_OBJECT = re.compile(r"\{[\s\S]*\}")


def truncate(text: str, length: int = EXCERPT_LENGTH) -> str:
    if len(text) <= length:
        return text
    return text[: length - 3] + "..."


def _loads(candidate: str) -> Any | None:
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None


def strip_thinking(raw: str) -> str:
    opener = next((tag for tag in _THINKING_OPENERS if tag in raw), None)
    if opener is None:
        return raw

    for closer in _THINKING_CLOSERS:
        index = raw.rfind(closer)
        if index != -1:
            after = raw[index + len(closer):].strip()
            if after:
                return after

    # No answer after the block (or the output was cut off mid-thought):
    # the JSON may be the last thing inside it.
    inside = raw.split(opener, 1)[1]
    for closer in _THINKING_CLOSERS:
        inside = inside.replace(closer, "")
    return inside


def extract_from_closed_code_blocks(text: str) -> Any | None:
    for pattern in (_CLOSED_ARRAY_BLOCK, _CLOSED_OBJECT_BLOCK):
        # Later blocks are usually the model's final answer.
        for match in reversed(pattern.findall(text)):
            parsed = _loads(match)
            if parsed is not None:
                return parsed
    return None


def extract_from_unclosed_code_blocks(text: str) -> Any | None:
    for pattern in (_UNCLOSED_ARRAY_BLOCK, _UNCLOSED_OBJECT_BLOCK):
        match = pattern.search(text)
        if match:
            parsed = _loads(match.group(1))
            if parsed is not None:
                return parsed
    return None


def extract_json_with_key(text: str, key: str) -> Any | None:
    quoted = re.escape(json.dumps(key))
    non_greedy = re.compile(r"\{\s*" + quoted + r"\s*:\s*\[[\s\S]*?\]\s*\}")
    for match in reversed(non_greedy.findall(text)):
        parsed = _loads(match)
        if isinstance(parsed, dict) and key in parsed:
            return parsed

    greedy = re.compile(r"\{\s*" + quoted + r"\s*:[\s\S]*\}")
    match = greedy.search(text)
    if match:
        parsed = _loads(match.group(0))
        if isinstance(parsed, dict) and key in parsed:
            return parsed
    return None


def _balanced_spans(text: str):
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and depth > 0:
            in_string = True
        elif char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start:index + 1]


def extract_any_json_object(text: str) -> Any | None:
    for span in _balanced_spans(text):
        parsed = _loads(span)
        if parsed is not None:
            return parsed

    match = _ANY_OBJECT.search(text)
    if match:
        return _loads(match.group(0))
    return None


def parse_json(raw: str | None, expected_key: str | None = None) -> Any:
    """
    Parse `raw` model output into a JSON value.

    Raises ResponseParseError with a truncated excerpt when nothing parses.
    """
    if raw is None or not raw.strip():
        raise ResponseParseError("Empty response from model", excerpt="")

    cleaned = strip_thinking(raw).strip()

    parsed = _loads(cleaned)
    if parsed is not None:
        return parsed

    parsed = extract_from_closed_code_blocks(cleaned)
    if parsed is not None:
        return parsed

    parsed = extract_from_unclosed_code_blocks(cleaned)
    if parsed is not None:
        return parsed

    if expected_key:
        parsed = extract_json_with_key(cleaned, expected_key)
        if parsed is not None:
            return parsed

    parsed = extract_any_json_object(cleaned)
    if parsed is not None:
        return parsed

    excerpt = truncate(raw)
    raise ResponseParseError(f"Could not parse JSON from response: {excerpt}", excerpt=excerpt)
