"""Resolver bridge: answer a question request with a second CLI agent.

The resolver is launched once per request with the rendered prompt and
a read-only tool set. Its stdout is scanned for the first digit 1-9,
which selects an option of the first question. Every failure mode
(launch error, timeout, non-zero exit, no usable digit) degrades to
the default answers; nothing here is fatal to the run.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import time

from askrelay.shared.formatters.question_prompt import render_resolver_prompt

from .config import (
    DEFAULT_RESOLVER_TOOLS,
    MUTATING_TOOLS,
    READ_ONLY_TOOLS,
    RelayConfig,
)
from .errors import ConfigError, ResolverError
from .models import AnswerSet, QuestionRequest, Resolution

logger = logging.getLogger(__name__)


def parse_selection(
    output: str, request: QuestionRequest,
) -> tuple[AnswerSet, str | None]:
    """Map resolver output to an AnswerSet.

    Only the first question is driven by the output; the rest keep
    option 0. Returns ``(answers, problem)`` where ``problem`` is None
    when a valid option was selected.
    """
    default = AnswerSet.default_for(request)
    text = output.strip()

    digit = next((ch for ch in text if "1" <= ch <= "9"), None)
    if digit is None:
        return default, "no option digit in resolver output"

    index = int(digit) - 1
    option_count = len(request.questions[0].options)
    if index >= option_count:
        return default, (
            f"resolver picked option {digit} but question 1 has "
            f"{option_count} option(s)"
        )

    selections = list(default.selections)
    selections[0] = index
    return AnswerSet(selections=tuple(selections)), None


class ResolverBridge:
    """Runs the resolver CLI for one question request at a time."""

    def __init__(
        self,
        command: str = "claude",
        *,
        allowed_tools: list[str] | tuple[str, ...] = DEFAULT_RESOLVER_TOOLS,
        extra_args: list[str] | None = None,
        timeout_seconds: float = 60.0,
        cwd: str | None = None,
    ) -> None:
        unsafe = sorted(set(allowed_tools) - READ_ONLY_TOOLS)
        if unsafe:
            raise ConfigError(
                "resolver_tools",
                f"refusing non read-only tools: {', '.join(unsafe)}",
            )
        self._command = command
        self._allowed_tools = list(allowed_tools)
        self._extra_args = list(extra_args or [])
        self._timeout = timeout_seconds
        self._cwd = cwd

    @classmethod
    def from_config(cls, config: RelayConfig) -> ResolverBridge:
        return cls(
            config.resolver_command,
            allowed_tools=config.resolver_tools,
            extra_args=config.resolver_args,
            timeout_seconds=config.resolver_timeout_seconds,
            cwd=config.worker_cwd,
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def is_available(self) -> bool:
        """Check if the resolver CLI is installed."""
        return shutil.which(self._command) is not None

    def build_command(self, prompt: str) -> list[str]:
        """Array-based argv; the prompt never goes through a shell."""
        return [
            self._command,
            *self._extra_args,
            "-p", prompt,
            "--allowedTools", ",".join(self._allowed_tools),
            "--disallowedTools", ",".join(MUTATING_TOOLS),
        ]

    async def resolve(self, request: QuestionRequest) -> Resolution:
        """Ask the resolver and return one valid selection per question."""
        prompt = render_resolver_prompt(request)
        logger.info(
            "Resolving request=%s questions=%d via %s",
            request.request_id, len(request.questions), self._command,
        )
        logger.debug("Resolver prompt:\n%s", prompt)

        started = time.monotonic()
        try:
            output = await self._invoke(request.request_id, prompt)
        except ResolverError as exc:
            logger.warning("%s; using first option for every question", exc)
            return Resolution(
                answers=AnswerSet.default_for(request), error=exc,
            )

        logger.info(
            "Resolver answered request=%s in %.1fs: %r",
            request.request_id,
            time.monotonic() - started,
            output.strip()[:80],
        )
        answers, problem = parse_selection(output, request)
        if problem is not None:
            error = ResolverError(request.request_id, problem)
            logger.warning("%s; using first option for every question", error)
            return Resolution(answers=answers, error=error, output=output)
        return Resolution(answers=answers, output=output)

    async def _invoke(self, request_id: str, prompt: str) -> str:
        """Run the resolver once. Raises ResolverError on any failure."""
        cmd = self.build_command(prompt)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                start_new_session=True,
            )
        except FileNotFoundError:
            raise ResolverError(
                request_id, f"'{self._command}' CLI not found",
            ) from None
        except OSError as exc:
            raise ResolverError(request_id, f"launch failed: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            await _kill_process_group(proc)
            raise ResolverError(
                request_id, f"timed out after {self._timeout:.1f}s",
            ) from None
        except asyncio.CancelledError:
            # Worker went away mid-cycle; don't leave the resolver behind.
            await _kill_process_group(proc)
            raise
        except OSError as exc:
            await _kill_process_group(proc)
            raise ResolverError(request_id, f"I/O error: {exc}") from exc

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise ResolverError(
                request_id,
                f"exit status {proc.returncode}: "
                f"{detail[-500:] or 'no stderr'}",
            )
        return stdout.decode("utf-8", errors="replace")


async def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
