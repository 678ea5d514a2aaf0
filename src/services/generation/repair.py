"""Best-effort recovery of JSON cut off by an output token limit.

Outlines come back as a JSON array. When the model runs out of budget the
array simply stops, often mid-string. The functions here extract the JSON
payload from the raw model text, drop the incomplete trailing element, and
close whatever structures are still open so that everything that *was*
complete survives.

All functions are pure and do a bounded number of linear passes; there is no
retry loop and no backtracking.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from pydantic import TypeAdapter, ValidationError

from schemas.generation import ChapterNode
from services.generation.exceptions import TruncatedPayload


logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_TRAILING_SEPARATORS = " \t\r\n,"

_outline_adapter = TypeAdapter(list[ChapterNode])


@dataclass(slots=True)
class RepairState:
    """Scanner state for one repair pass."""

    bracket_depth: int = 0
    brace_depth: int = 0
    in_string: bool = False
    pending_escape: bool = False


def extract_json_payload(text: str) -> str:
    """Return the JSON-looking part of a model response.

    Preference order: the body of the first fenced code block, then
    everything from the first ``[`` on, then the stripped text.
    """
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    start = text.find("[")
    if start != -1:
        return text[start:].strip()
    return text.strip()


def _drop_incomplete_tail(text: str) -> str:
    last_brace = text.rfind("}")
    last_quote = text.rfind('"')
    last_colon = text.rfind(":")

    if last_colon <= last_brace:
        return text

    # Ends inside a value: fall back to the last complete element.
    last_element_end = text.rfind("},")
    if last_element_end != -1:
        return text[: last_element_end + 1]
    if last_quote > last_colon:
        if last_brace != -1:
            return text[: last_brace + 1]
        opening = text.find("[")
        if opening != -1:
            return text[: opening + 1]
    return text


def _scan(text: str) -> RepairState:
    state = RepairState()
    for char in text:
        if state.pending_escape:
            state.pending_escape = False
        elif state.in_string:
            if char == "\\":
                state.pending_escape = True
            elif char == '"':
                state.in_string = False
        elif char == '"':
            state.in_string = True
        elif char == "{":
            state.brace_depth += 1
        elif char == "}":
            state.brace_depth -= 1
        elif char == "[":
            state.bracket_depth += 1
        elif char == "]":
            state.bracket_depth -= 1
    return state


def repair_truncated_json(text: str) -> str:
    """Cut ``text`` back to its last complete element and close it.

    Open objects are closed before open arrays, which is the shape of a
    truncated top-level array of objects.
    """
    repaired = _drop_incomplete_tail(text).rstrip(_TRAILING_SEPARATORS)
    if repaired.endswith("{"):
        repaired = repaired[:-1].rstrip(_TRAILING_SEPARATORS)

    state = _scan(repaired)
    return (
        repaired
        + "}" * max(state.brace_depth, 0)
        + "]" * max(state.bracket_depth, 0)
    )


def _parses(text: str) -> bool:
    try:
        json.loads(text)
    except json.JSONDecodeError:
        return False
    return True


def repair(text: str) -> str:
    """Return ``text`` unchanged if it parses, else the repaired payload."""
    if _parses(text):
        return text
    payload = extract_json_payload(text)
    if _parses(payload):
        return payload
    return repair_truncated_json(payload)


def parse_json_with_repair(text: str) -> Any:
    """Parse model output as JSON, repairing a truncated payload once.

    Raises:
        TruncatedPayload: the payload does not parse even after repair.
    """
    payload = extract_json_payload(text)
    try:
        return json.loads(payload)
    except json.JSONDecodeError:
        pass

    repaired = repair_truncated_json(payload)
    try:
        result = json.loads(repaired)
    except json.JSONDecodeError as exc:
        logger.warning(
            "Could not repair truncated JSON (%d chars, error at %d)",
            len(payload),
            exc.pos,
        )
        raise TruncatedPayload() from exc

    logger.info("Repaired truncated JSON (%d chars in, %d out)", len(payload), len(repaired))
    return result


def parse_outline(text: str) -> list[ChapterNode]:
    """Parse a generated table of contents into chapter nodes."""
    data = parse_json_with_repair(text)
    if not isinstance(data, list):
        raise TruncatedPayload()
    try:
        return _outline_adapter.validate_python(data)
    except ValidationError as exc:
        logger.warning("Outline failed validation: %d errors", exc.error_count())
        raise TruncatedPayload() from exc
