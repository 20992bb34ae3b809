"""Answer envelopes written back to the worker.

Which layout a worker accepts depends on its protocol revision and is
not visible in the stream, so the shape is chosen by configuration.
A record of the wrong shape is silently ignored by the worker, which
then stays blocked on its question.
"""
from __future__ import annotations

import json
from typing import Any

from .framing import LINE_TERMINATOR
from .models import AnswerSet, AnswerShape, QuestionRequest


def build_answer_envelope(
    request: QuestionRequest,
    answers: AnswerSet,
    shape: AnswerShape = AnswerShape.USER_INPUT_RESULT,
) -> dict[str, Any]:
    """Build the answer record addressed to ``request.request_id``."""
    if len(answers.selections) != len(request.questions):
        raise ValueError(
            f"AnswerSet has {len(answers.selections)} selections for "
            f"{len(request.questions)} questions"
        )

    if shape is AnswerShape.USER_INPUT_RESULT:
        return {
            "type": "user_input_result",
            "answer": {
                "tool_use_id": request.request_id,
                "answers": answers.as_index_map(),
            },
        }

    if shape is AnswerShape.TOOL_RESULT:
        payload = {
            "questions": [_question_payload(q) for q in request.questions],
            "answers": answers.as_label_map(request),
        }
        return {
            "type": "user",
            "message": {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": request.request_id,
                        "content": json.dumps(payload, ensure_ascii=False),
                    },
                ],
            },
            "parent_tool_use_id": None,
        }

    raise ValueError(f"Unsupported answer shape: {shape!r}")


def build_user_message(text: str) -> dict[str, Any]:
    """Initial stream-json user turn carrying the task."""
    return {
        "type": "user",
        "message": {"role": "user", "content": text},
    }


def encode_envelope(record: dict[str, Any]) -> bytes:
    """Serialize one record as a single terminated line.

    Compact separators keep the line identical to what the worker
    would write itself, and to the echo marker.
    """
    line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
    return line.encode("utf-8") + LINE_TERMINATOR


def _question_payload(question) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "question": question.text,
        "options": [
            {"label": o.label, "description": o.description}
            for o in question.options
        ],
        "multiSelect": question.multi_select,
    }
    if question.header:
        payload["header"] = question.header
    return payload
