"""Classify worker stream lines and pull out question requests.

Decoding is progressive: ``classify`` only looks at the top-level
``type``; ``extract_question_request`` digs into assistant turns. Neither
raises on malformed input. Whatever happens here, the caller has
already forwarded the raw line.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from .errors import DecodeError
from .models import (
    EnvelopeKind,
    Option,
    Question,
    QuestionRequest,
    StreamEnvelope,
)

logger = logging.getLogger(__name__)

DEFAULT_QUESTION_TOOL = "AskUserQuestion"
TOOL_USE_ITEM_TYPE = "tool_use"

_KNOWN_KINDS = {
    "assistant": EnvelopeKind.ASSISTANT,
    "user": EnvelopeKind.USER,
    "system": EnvelopeKind.SYSTEM,
    "result": EnvelopeKind.RESULT,
}


def classify(line: bytes) -> StreamEnvelope:
    """Parse a framed line into a StreamEnvelope. Never raises."""
    try:
        record = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, ValueError, RecursionError):
        # RecursionError: nesting deeper than the interpreter stack.
        return StreamEnvelope(kind=EnvelopeKind.OPAQUE, raw=line)

    if not isinstance(record, dict):
        return StreamEnvelope(kind=EnvelopeKind.OPAQUE, raw=line)

    type_name = record.get("type")
    if not isinstance(type_name, str) or not type_name:
        return StreamEnvelope(kind=EnvelopeKind.OPAQUE, raw=line)

    kind = _KNOWN_KINDS.get(type_name, EnvelopeKind.OTHER)
    return StreamEnvelope(
        kind=kind, raw=line, type_name=type_name, record=record,
    )


def extract_question_request(
    envelope: StreamEnvelope,
    tool_name: str = DEFAULT_QUESTION_TOOL,
    on_decode_error: Callable[[DecodeError], None] | None = None,
) -> QuestionRequest | None:
    """Return the first question-tool invocation in an assistant turn.

    Returns None for non-assistant envelopes, turns without a matching
    invocation, and invocations whose input does not decode. The last
    case is logged and, when given, passed to *on_decode_error*.
    """
    invocation = find_question_invocation(envelope, tool_name)
    if invocation is None:
        return None

    try:
        return decode_question_request(invocation)
    except DecodeError as exc:
        logger.warning(
            "%s invocation id=%s could not be decoded: %s",
            tool_name,
            invocation.get("id"),
            exc.reason,
        )
        if on_decode_error is not None:
            on_decode_error(exc)
        return None


def find_question_invocation(
    envelope: StreamEnvelope,
    tool_name: str = DEFAULT_QUESTION_TOOL,
) -> dict[str, Any] | None:
    """Return the first ``{id, name, input}`` invocation of *tool_name*.

    Later invocations in the same turn are logged and ignored.
    """
    if envelope.kind is not EnvelopeKind.ASSISTANT or envelope.record is None:
        return None

    try:
        items = _content_items(envelope.record)
    except DecodeError as exc:
        logger.debug("Assistant turn skipped: %s", exc.reason)
        return None

    invocations = [
        inv for inv in (_as_tool_invocation(item) for item in items)
        if inv is not None and inv.get("name") == tool_name
    ]
    if not invocations:
        return None
    if len(invocations) > 1:
        logger.warning(
            "Assistant turn carries %d %s invocations; only the first "
            "is answered (ignored ids=%s)",
            len(invocations),
            tool_name,
            [inv.get("id") for inv in invocations[1:]],
        )
    return invocations[0]


def decode_question_request(invocation: dict[str, Any]) -> QuestionRequest:
    """Decode ``{id, name, input}`` into a QuestionRequest.

    Raises DecodeError on any structural problem.
    """
    request_id = invocation.get("id")
    if not isinstance(request_id, str) or not request_id:
        raise DecodeError("tool invocation has no id")

    tool_input = invocation.get("input")
    if isinstance(tool_input, str):
        # Some revisions ship input as a JSON string.
        try:
            tool_input = json.loads(tool_input)
        except (json.JSONDecodeError, ValueError, RecursionError) as exc:
            raise DecodeError(
                f"input is not valid JSON: {exc}", request_id=request_id,
            ) from exc
    if not isinstance(tool_input, dict):
        raise DecodeError("input is not an object", request_id=request_id)

    raw_questions = tool_input.get("questions")
    if not isinstance(raw_questions, list) or not raw_questions:
        raise DecodeError("input has no questions", request_id=request_id)

    try:
        questions = tuple(
            _decode_question(raw, position)
            for position, raw in enumerate(raw_questions)
        )
    except DecodeError as exc:
        raise DecodeError(exc.reason, request_id=request_id) from None
    return QuestionRequest(request_id=request_id, questions=questions)


def _content_items(record: dict[str, Any]) -> list[Any]:
    message = record.get("message")
    if not isinstance(message, dict):
        raise DecodeError("assistant record has no message object")
    content = message.get("content")
    if not isinstance(content, list):
        raise DecodeError("assistant message content is not a list")
    return content


def _as_tool_invocation(item: Any) -> dict[str, Any] | None:
    """Normalise a content item into ``{id, name, input}`` if it is one.

    Accepts the flat layout ``{"type": "tool_use", "id", "name", "input"}``
    and the nested ``{"type": "tool_use", "tool_use": {...}}`` layout.
    """
    if not isinstance(item, dict) or item.get("type") != TOOL_USE_ITEM_TYPE:
        return None
    nested = item.get("tool_use")
    if isinstance(nested, dict) and nested.get("name"):
        return nested
    return item


def _decode_question(raw: Any, position: int) -> Question:
    if not isinstance(raw, dict):
        raise DecodeError(f"question {position} is not an object")

    text = raw.get("question")
    if not isinstance(text, str) or not text.strip():
        raise DecodeError(f"question {position} has no text")

    header = raw.get("header")
    if header is not None and not isinstance(header, str):
        raise DecodeError(f"question {position} header is not a string")

    raw_options = raw.get("options")
    if not isinstance(raw_options, list) or not raw_options:
        raise DecodeError(f"question {position} has no options")

    options: list[Option] = []
    for index, opt in enumerate(raw_options):
        if not isinstance(opt, dict):
            raise DecodeError(
                f"question {position} option {index} is not an object"
            )
        label = opt.get("label")
        if not isinstance(label, str) or not label:
            raise DecodeError(
                f"question {position} option {index} has no label"
            )
        description = opt.get("description", "")
        if description is None:
            description = ""
        if not isinstance(description, str):
            raise DecodeError(
                f"question {position} option {index} description "
                f"is not a string"
            )
        options.append(Option(label=label, description=description))

    multi_select = raw.get("multiSelect", False)
    if not isinstance(multi_select, bool):
        logger.debug(
            "question %d multiSelect=%r is not a boolean; treating as false",
            position, multi_select,
        )
        multi_select = False

    return Question(
        text=text,
        options=tuple(options),
        header=header or None,
        multi_select=multi_select,
    )
