"""Core data models for the interposer.

All dataclasses and enums live here so the framer, classifier,
resolver and interposer can share them without circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ResolverError


class EnvelopeKind(str, Enum):
    """Top-level kind of a worker stream line."""
    ASSISTANT = "assistant"
    USER = "user"
    SYSTEM = "system"
    RESULT = "result"
    OTHER = "other"  # well-formed record with an unrecognised type
    OPAQUE = "opaque"  # not a JSON object with a string type


class AnswerShape(str, Enum):
    """Answer record layouts accepted by different worker protocol revisions."""
    USER_INPUT_RESULT = "user_input_result"
    TOOL_RESULT = "tool_result"


class InterposerState(str, Enum):
    """Interposer lifecycle states. See lifecycle.py for transition rules."""
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_ANSWER = "awaiting_answer"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class StreamEnvelope:
    """One framed worker line.

    ``raw`` is exactly the bytes the framer produced and is what gets
    forwarded to the transcript, whatever ``kind`` turns out to be.
    """
    kind: EnvelopeKind
    raw: bytes
    type_name: str = ""
    record: dict[str, Any] | None = field(default=None, compare=False)

    @property
    def is_opaque(self) -> bool:
        return self.kind is EnvelopeKind.OPAQUE


@dataclass(frozen=True)
class Option:
    label: str
    description: str = ""


@dataclass(frozen=True)
class Question:
    text: str
    options: tuple[Option, ...]
    header: str | None = None
    multi_select: bool = False


@dataclass(frozen=True)
class QuestionRequest:
    """A question-tool invocation awaiting an answer.

    ``request_id`` is the invocation's own id; the answer envelope is
    addressed to it.
    """
    request_id: str
    questions: tuple[Question, ...]


@dataclass(frozen=True)
class AnswerSet:
    """One selected option index per question, in question order."""
    selections: tuple[int, ...]

    @classmethod
    def default_for(cls, request: QuestionRequest) -> AnswerSet:
        """Every question answered with its first option."""
        return cls(selections=tuple(0 for _ in request.questions))

    def as_index_map(self) -> dict[str, str]:
        """``{"q0": "1", ...}`` as carried by user_input_result records."""
        return {f"q{i}": str(index) for i, index in enumerate(self.selections)}

    def as_label_map(self, request: QuestionRequest) -> dict[str, str]:
        """Question text -> selected option label."""
        return {
            question.text: question.options[index].label
            for question, index in zip(request.questions, self.selections)
        }


@dataclass
class Resolution:
    """Outcome of one resolver round trip."""
    answers: AnswerSet
    error: ResolverError | None = None
    output: str = ""

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class RunResult:
    """Final outcome of an interposed worker run."""
    exit_code: int
    questions_seen: int = 0
    questions_answered: int = 0
    resolver_failures: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and self.error is None
