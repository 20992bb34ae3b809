from __future__ import annotations

from askrelay.engine.models import Option, Question, QuestionRequest
from askrelay.shared.formatters.question_prompt import (
    PROMPT_PREAMBLE,
    render_resolver_prompt,
)


def _request() -> QuestionRequest:
    return QuestionRequest(
        request_id="t1",
        questions=(
            Question(
                text="Which approach?",
                header="Approach",
                options=(Option("A", "first"), Option("B", "second")),
            ),
            Question(
                text="Add tests?",
                options=(Option("Yes"), Option("No")),
                multi_select=True,
            ),
        ),
    )


def test_prompt_starts_with_preamble() -> None:
    assert render_resolver_prompt(_request()).startswith(PROMPT_PREAMBLE + "\n")


def test_questions_and_options_are_numbered_from_one() -> None:
    prompt = render_resolver_prompt(_request())
    assert "Question 1 [Approach]: Which approach?\nOptions:\n" in prompt
    assert "  1. A: first\n  2. B: second\n" in prompt
    assert "Question 2: Add tests?\n" in prompt
    assert "  1. Yes: \n  2. No: \n" in prompt


def test_multi_select_questions_ask_for_one_option() -> None:
    prompt = render_resolver_prompt(_request())
    assert "(Several options may apply; pick the single best one.)" in prompt


def test_prompt_is_deterministic() -> None:
    assert render_resolver_prompt(_request()) == render_resolver_prompt(_request())


def test_prompt_does_not_mention_request_id() -> None:
    assert "t1" not in render_resolver_prompt(_request())
