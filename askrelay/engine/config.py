"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via RELAY_* env vars or a
YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import ConfigError
from .framing import DEFAULT_MAX_FRAME_BYTES, MIN_MAX_FRAME_BYTES
from .models import AnswerShape

logger = logging.getLogger(__name__)


# Optional async callback for diagnostics.
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]

# Tools the resolver may be granted. Anything outside this set can
# change state and is refused at validation time.
READ_ONLY_TOOLS: frozenset[str] = frozenset({"Read", "Glob", "Grep", "LS"})

# Passed to the resolver as an explicit deny list.
MUTATING_TOOLS: tuple[str, ...] = (
    "Bash", "Edit", "MultiEdit", "Write", "NotebookEdit", "Task",
)

DEFAULT_RESOLVER_TOOLS: tuple[str, ...] = ("Read", "Glob", "Grep")

DEFAULT_WORKER_ARGS: tuple[str, ...] = (
    "--output-format", "stream-json",
    "--input-format", "stream-json",
    "--verbose",
    "--dangerously-skip-permissions",
)

TRANSPORTS: tuple[str, ...] = ("pipe", "pty")

# Line prefix of our own user_input_result records, used to drop their
# echo on shared channels.
USER_INPUT_RESULT_MARKER = '{"type":"user_input_result"'


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set. Callback errors never break the run."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.debug("Diagnostic callback failed for %s", event.get("event"), exc_info=True)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: tuple[str, ...]) -> list[str]:
    value = os.getenv(name)
    if value is None:
        return list(default)
    return [part.strip() for part in value.split(",") if part.strip()]


def _env_args(name: str, default: tuple[str, ...]) -> list[str]:
    value = os.getenv(name)
    if value is None:
        return list(default)
    return shlex.split(value)


@dataclass
class RelayConfig:
    """Interposer configuration."""

    # Worker
    worker_command: str = "claude"
    worker_args: list[str] = field(
        default_factory=lambda: list(DEFAULT_WORKER_ARGS)
    )
    worker_cwd: str | None = None
    # "pipe" (separate stdin/stdout/stderr) or "pty" (one shared channel)
    transport: str = "pipe"
    # Send the task as an initial stream-json user message instead of -p.
    prompt_via_stdin: bool = False
    # Close the worker's input after its result record so it can exit.
    close_input_on_result: bool = True

    # Resolver
    resolver_command: str = "claude"
    resolver_args: list[str] = field(default_factory=list)
    resolver_tools: list[str] = field(
        default_factory=lambda: list(DEFAULT_RESOLVER_TOOLS)
    )
    # Max wall-clock for one resolver invocation.
    resolver_timeout_seconds: float = 60.0

    # Protocol
    question_tool_name: str = "AskUserQuestion"
    answer_shape: AnswerShape = AnswerShape.USER_INPUT_RESULT
    # None derives the marker from answer_shape; "" disables marker matching.
    echo_marker: str | None = None
    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES

    # Logging
    log_level: str = "INFO"

    # Optional async callback for diagnostics events.
    # Receives dicts like {"event": "resolver_failure", "request_id": ...}
    event_callback: EventCallback | None = field(default=None, repr=False)

    @property
    def effective_echo_marker(self) -> str | None:
        """Marker used by the echo guard, or None for exact matching only."""
        if self.echo_marker is not None:
            return self.echo_marker or None
        if self.answer_shape is AnswerShape.USER_INPUT_RESULT:
            return USER_INPUT_RESULT_MARKER
        # tool_result answers look like genuine worker "user" records,
        # so only exact echoes are dropped.
        return None

    def validate(self) -> RelayConfig:
        """Check invariants. Raises ConfigError, returns self otherwise."""
        if not self.worker_command:
            raise ConfigError("worker_command", "must not be empty")
        if not self.resolver_command:
            raise ConfigError("resolver_command", "must not be empty")
        if self.transport not in TRANSPORTS:
            raise ConfigError(
                "transport",
                f"unknown transport '{self.transport}' "
                f"(expected one of: {', '.join(TRANSPORTS)})",
            )
        if not isinstance(self.answer_shape, AnswerShape):
            self.answer_shape = parse_answer_shape(self.answer_shape)
        if self.resolver_timeout_seconds <= 0:
            raise ConfigError(
                "resolver_timeout_seconds", "must be greater than zero",
            )
        if self.max_frame_bytes < MIN_MAX_FRAME_BYTES:
            raise ConfigError(
                "max_frame_bytes",
                f"must be at least {MIN_MAX_FRAME_BYTES} bytes",
            )
        if not self.resolver_tools:
            raise ConfigError("resolver_tools", "must grant at least one tool")
        unsafe = sorted(set(self.resolver_tools) - READ_ONLY_TOOLS)
        if unsafe:
            raise ConfigError(
                "resolver_tools",
                f"resolver may only use read-only tools "
                f"({', '.join(sorted(READ_ONLY_TOOLS))}); "
                f"refusing {', '.join(unsafe)}",
            )
        if not self.question_tool_name:
            raise ConfigError("question_tool_name", "must not be empty")
        if not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            raise ConfigError(
                "log_level",
                f"unknown level {self.log_level!r} "
                f"(expected DEBUG, INFO, WARNING, ERROR or CRITICAL)",
            )
        return self

    @classmethod
    def from_env(cls) -> RelayConfig:
        """Load configuration from RELAY_* environment variables."""
        relay_vars = {
            k: v for k, v in os.environ.items() if k.startswith("RELAY_")
        }
        if relay_vars:
            logger.info(
                "RelayConfig.from_env: RELAY_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(relay_vars.items())),
            )
        else:
            logger.debug("RelayConfig.from_env: no RELAY_* env vars set, using defaults")

        config = cls(
            worker_command=os.getenv(
                "RELAY_WORKER_COMMAND", cls.worker_command
            ),
            worker_args=_env_args("RELAY_WORKER_ARGS", DEFAULT_WORKER_ARGS),
            worker_cwd=os.getenv("RELAY_WORKER_CWD") or None,
            transport=os.getenv("RELAY_TRANSPORT", cls.transport),
            prompt_via_stdin=_env_bool(
                "RELAY_PROMPT_VIA_STDIN", cls.prompt_via_stdin
            ),
            close_input_on_result=_env_bool(
                "RELAY_CLOSE_INPUT_ON_RESULT", cls.close_input_on_result
            ),
            resolver_command=os.getenv(
                "RELAY_RESOLVER_COMMAND", cls.resolver_command
            ),
            resolver_args=_env_args("RELAY_RESOLVER_ARGS", ()),
            resolver_tools=_env_list(
                "RELAY_RESOLVER_TOOLS", DEFAULT_RESOLVER_TOOLS
            ),
            resolver_timeout_seconds=float(os.getenv(
                "RELAY_RESOLVER_TIMEOUT", str(cls.resolver_timeout_seconds)
            )),
            question_tool_name=os.getenv(
                "RELAY_QUESTION_TOOL", cls.question_tool_name
            ),
            answer_shape=parse_answer_shape(os.getenv(
                "RELAY_ANSWER_SHAPE", cls.answer_shape.value
            )),
            echo_marker=os.getenv("RELAY_ECHO_MARKER"),
            max_frame_bytes=int(os.getenv(
                "RELAY_MAX_FRAME_BYTES", str(cls.max_frame_bytes)
            )),
            log_level=os.getenv("RELAY_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "RelayConfig.from_env: worker=%s resolver=%s transport=%s shape=%s",
            config.worker_command, config.resolver_command,
            config.transport, config.answer_shape.value,
        )
        return config


def parse_answer_shape(value: str | AnswerShape) -> AnswerShape:
    """Parse an answer shape name. Raises ConfigError if unknown."""
    if isinstance(value, AnswerShape):
        return value
    try:
        return AnswerShape(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(s.value for s in AnswerShape)
        raise ConfigError(
            "answer_shape", f"unknown shape '{value}' (expected one of: {valid})",
        ) from None
