"""Tests for the resolver bridge and selection parsing."""
from __future__ import annotations

import time

import pytest

from askrelay.engine.config import MUTATING_TOOLS, RelayConfig
from askrelay.engine.errors import ConfigError
from askrelay.engine.models import Option, Question, QuestionRequest
from askrelay.engine.resolver import ResolverBridge, parse_selection


def _request(*option_counts: int) -> QuestionRequest:
    return QuestionRequest(
        request_id="t1",
        questions=tuple(
            Question(
                text=f"Question {i}?",
                options=tuple(Option(f"opt{j}") for j in range(count)),
            )
            for i, count in enumerate(option_counts)
        ),
    )


# ── parse_selection ──


def test_first_digit_selects_first_question() -> None:
    answers, problem = parse_selection("2", _request(3))
    assert answers.selections == (1,)
    assert problem is None


def test_digit_is_found_inside_prose() -> None:
    answers, problem = parse_selection("  I would pick option 3 here.\n", _request(3))
    assert answers.selections == (2,)
    assert problem is None


def test_later_questions_keep_default() -> None:
    answers, _ = parse_selection("2\n2\n", _request(2, 2, 2))
    assert answers.selections == (1, 0, 0)


def test_zero_is_not_an_option_digit() -> None:
    answers, problem = parse_selection("0 then 2", _request(3))
    assert answers.selections == (1,)
    assert problem is None


def test_no_digit_falls_back_to_defaults() -> None:
    answers, problem = parse_selection("no idea", _request(2, 4))
    assert answers.selections == (0, 0)
    assert problem is not None


def test_out_of_range_digit_falls_back_to_defaults() -> None:
    answers, problem = parse_selection("7", _request(2))
    assert answers.selections == (0,)
    assert "7" in problem


@pytest.mark.parametrize("output", ["", "9", "x", "5", "1", "abc 4"])
@pytest.mark.parametrize("counts", [(1,), (2, 3), (4, 1, 2), (9,)])
def test_selection_is_always_in_range(output: str, counts: tuple[int, ...]) -> None:
    request = _request(*counts)
    answers, _ = parse_selection(output, request)
    assert len(answers.selections) == len(request.questions)
    for index, question in zip(answers.selections, request.questions):
        assert 0 <= index < len(question.options)


# ── ResolverBridge ──


def test_refuses_mutating_tools() -> None:
    with pytest.raises(ConfigError):
        ResolverBridge("claude", allowed_tools=["Read", "Bash"])


def test_build_command_is_read_only() -> None:
    bridge = ResolverBridge("claude", extra_args=["--model", "sonnet"])
    cmd = bridge.build_command("the prompt")

    assert cmd[:5] == ["claude", "--model", "sonnet", "-p", "the prompt"]
    assert cmd[cmd.index("--allowedTools") + 1] == "Read,Glob,Grep"
    assert cmd[cmd.index("--disallowedTools") + 1] == ",".join(MUTATING_TOOLS)


def test_from_config_uses_resolver_settings() -> None:
    config = RelayConfig(
        resolver_command="my-claude",
        resolver_args=["--model", "haiku"],
        resolver_timeout_seconds=12.5,
    )
    bridge = ResolverBridge.from_config(config)
    assert bridge.timeout_seconds == 12.5
    assert bridge.build_command("p")[:3] == ["my-claude", "--model", "haiku"]


@pytest.mark.asyncio
async def test_resolve_uses_resolver_digit(make_script) -> None:
    script = make_script("resolver", """
        import sys
        assert "-p" in sys.argv
        print("2")
    """)
    resolution = await ResolverBridge(script).resolve(_request(3))

    assert not resolution.failed
    assert resolution.answers.selections == (1,)
    assert resolution.output.strip() == "2"


@pytest.mark.asyncio
async def test_resolver_receives_rendered_prompt(make_script, tmp_path) -> None:
    captured = tmp_path / "prompt.txt"
    script = make_script("resolver", f"""
        import sys
        prompt = sys.argv[sys.argv.index("-p") + 1]
        open({str(captured)!r}, "w").write(prompt)
        print("1")
    """)
    await ResolverBridge(script).resolve(_request(2))

    prompt = captured.read_text()
    assert "Question 1: Question 0?" in prompt
    assert "  2. opt1: " in prompt


@pytest.mark.asyncio
async def test_non_zero_exit_gives_defaults(make_script) -> None:
    script = make_script("resolver", """
        import sys
        print("2")
        print("model overloaded", file=sys.stderr)
        sys.exit(3)
    """)
    resolution = await ResolverBridge(script).resolve(_request(3, 2))

    assert resolution.failed
    assert resolution.answers.selections == (0, 0)
    assert "exit status 3" in resolution.error.reason
    assert "model overloaded" in resolution.error.reason


@pytest.mark.asyncio
async def test_missing_resolver_gives_defaults(tmp_path) -> None:
    bridge = ResolverBridge(str(tmp_path / "does-not-exist"))
    resolution = await bridge.resolve(_request(2))

    assert resolution.failed
    assert resolution.answers.selections == (0,)
    assert resolution.error.request_id == "t1"


@pytest.mark.asyncio
async def test_timeout_is_bounded(make_script) -> None:
    script = make_script("resolver", """
        import time
        time.sleep(30)
        print("2")
    """)
    bridge = ResolverBridge(script, timeout_seconds=0.5)

    started = time.monotonic()
    resolution = await bridge.resolve(_request(2))
    elapsed = time.monotonic() - started

    assert resolution.failed
    assert "timed out" in resolution.error.reason
    assert resolution.answers.selections == (0,)
    assert elapsed < 10


@pytest.mark.asyncio
async def test_unparseable_output_is_a_failure(make_script) -> None:
    script = make_script("resolver", """
        print("I cannot decide")
    """)
    resolution = await ResolverBridge(script).resolve(_request(2))

    assert resolution.failed
    assert resolution.output.strip() == "I cannot decide"
    assert resolution.answers.selections == (0,)
