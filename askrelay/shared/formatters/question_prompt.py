"""Render a question request as a prompt for the resolver.

Pure string building; no I/O. The resolver only ever sees what this
returns.
"""

from __future__ import annotations

from askrelay.engine.models import Question, QuestionRequest


PROMPT_PREAMBLE = (
    "You are a reviewer for another coding agent's work.\n"
    "Answer the following questions by selecting the best option.\n"
    "Return ONLY the option number (1, 2, 3...) for each question.\n"
)


def render_resolver_prompt(request: QuestionRequest) -> str:
    """Preamble, then every question with its numbered options.

    Questions and options are numbered from 1, which is the digit the
    resolver is expected to answer with.
    """
    parts = [PROMPT_PREAMBLE, "\n"]
    for number, question in enumerate(request.questions, start=1):
        parts.append(_render_question(number, question))
        parts.append("\n")
    return "".join(parts)


def _render_question(number: int, question: Question) -> str:
    heading = f"Question {number}"
    if question.header:
        heading += f" [{question.header}]"
    lines = [f"{heading}: {question.text}"]
    if question.multi_select:
        lines.append("(Several options may apply; pick the single best one.)")
    if question.options:
        lines.append("Options:")
        for index, option in enumerate(question.options, start=1):
            lines.append(f"  {index}. {option.label}: {option.description}")
    return "\n".join(lines) + "\n"
