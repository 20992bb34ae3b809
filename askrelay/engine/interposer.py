"""Interposer: runs a worker and answers its questions on its behalf.

The read loop forwards every worker line to the transcript before
looking at it. Question requests are handed to a separate resolve
task so the worker's output keeps flowing while the resolver thinks.
Answers are written under a single-writer lock.
"""
from __future__ import annotations

import asyncio
import logging
import sys
from collections import deque
from typing import Any, BinaryIO

from .answers import build_answer_envelope, build_user_message, encode_envelope
from .classifier import classify, extract_question_request
from .config import EventCallback, RelayConfig, fire_event
from .errors import (
    AnswerWriteError,
    ConfigError,
    DecodeError,
    FrameTooLargeError,
    WorkerExitError,
    WorkerLaunchError,
)
from .framing import LINE_TERMINATOR, LineFramer
from .lifecycle import validate_transition
from .models import (
    EnvelopeKind,
    InterposerState,
    QuestionRequest,
    Resolution,
    RunResult,
    StreamEnvelope,
)
from .resolver import ResolverBridge
from .transports import WorkerTransport, build_transport

logger = logging.getLogger(__name__)

_DIAGNOSTICS_CHUNK = 65536


class EchoGuard:
    """Drops lines on a shared channel that are our own writes coming back.

    A line is an echo if it equals a line we wrote and have not seen
    again yet, or if it starts with ``marker``.
    """

    def __init__(self, marker: str | None = None) -> None:
        self._marker = marker.encode("utf-8") if marker else None
        self._pending: deque[bytes] = deque()

    def expect(self, line: bytes) -> None:
        self._pending.append(line.rstrip(b"\r\n"))

    def forget(self, line: bytes) -> None:
        try:
            self._pending.remove(line.rstrip(b"\r\n"))
        except ValueError:
            pass

    def is_echo(self, line: bytes) -> bool:
        if line in self._pending:
            self._pending.remove(line)
            return True
        return self._marker is not None and line.startswith(self._marker)


class Interposer:
    """Owns one worker run from launch to exit."""

    def __init__(
        self,
        config: RelayConfig,
        resolver: ResolverBridge | None = None,
        transport: WorkerTransport | None = None,
        transcript: BinaryIO | None = None,
        diagnostics_stream: BinaryIO | None = None,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._config = config.validate()
        self._resolver = resolver or ResolverBridge.from_config(config)
        self._transport = transport or build_transport(
            config.transport, config.max_frame_bytes,
        )
        self._transcript = transcript if transcript is not None else sys.stdout.buffer
        self._diagnostics_stream = (
            diagnostics_stream if diagnostics_stream is not None
            else sys.stderr.buffer
        )
        self._event_callback = event_callback or config.event_callback

        self._state = InterposerState.IDLE
        self._write_lock = asyncio.Lock()
        self._echo_guard: EchoGuard | None = None
        if self._transport.shared_channel:
            self._echo_guard = EchoGuard(config.effective_echo_marker)

        self._cycle_task: asyncio.Task | None = None
        self._pending_request: QuestionRequest | None = None
        self._result_seen = False

        self._questions_seen = 0
        self._questions_answered = 0
        self._resolver_failures = 0

    @property
    def state(self) -> InterposerState:
        return self._state

    @property
    def transport(self) -> WorkerTransport:
        return self._transport

    def build_worker_argv(self, task: str) -> list[str]:
        command = self._transport.resolve_command(self._config.worker_command)
        if self._config.prompt_via_stdin:
            return [command, *self._config.worker_args]
        return [command, "-p", task, *self._config.worker_args]

    async def run(self, task: str) -> RunResult:
        """Launch the worker and interpose until it exits.

        Raises WorkerLaunchError if the worker cannot be started, and
        ConfigError if the task message cannot be delivered whole over
        the configured transport. Every other failure is reported in the
        returned RunResult.
        """
        if self._state is not InterposerState.IDLE:
            raise RuntimeError("Interposer.run() can only be called once")

        task_line: bytes | None = None
        if self._config.prompt_via_stdin:
            task_line = encode_envelope(build_user_message(task))
            limit = self._transport.max_input_line
            if limit is not None and len(task_line) > limit:
                self._transition(InterposerState.TERMINATED)
                raise ConfigError(
                    "prompt_via_stdin",
                    f"task message is {len(task_line)} bytes; the "
                    f"{self._transport.name} transport accepts at most "
                    f"{limit} per line",
                )

        argv = self.build_worker_argv(task)
        logger.info(
            "Starting worker via %s transport: %s (%d args)",
            self._transport.name, argv[0], len(argv) - 1,
        )
        try:
            await self._transport.start(argv, cwd=self._config.worker_cwd)
        except WorkerLaunchError:
            self._transition(InterposerState.TERMINATED)
            raise
        self._transition(InterposerState.RUNNING)
        if not self._resolver.is_available():
            logger.warning(
                "Resolver command is not on PATH; questions will get default answers",
            )

        drain_task: asyncio.Task | None = None
        diagnostics = self._transport.diagnostics
        if diagnostics is not None:
            drain_task = asyncio.create_task(self._drain_diagnostics(diagnostics))

        error: str | None = None
        cancelled = False
        try:
            try:
                if task_line is not None:
                    await self._send_task_message(task_line)
                await self._read_loop()
            except FrameTooLargeError as exc:
                error = str(exc)
                logger.error("%s; terminating worker", exc)
                await self._transport.terminate()
            except OSError as exc:
                error = f"Worker stream failed: {exc}"
                logger.error("%s; terminating worker", error)
                await self._transport.terminate()
            except asyncio.CancelledError:
                cancelled = True
                logger.warning("Interposer cancelled; terminating worker")
                await self._transport.terminate()
                raise
            except Exception as exc:
                error = f"Interposer failed: {type(exc).__name__}: {exc}"
                logger.exception("Read loop failed; terminating worker")
                await self._transport.terminate()
        finally:
            status = await self._shutdown(drain_task, cancelled=cancelled)

        exit_code = _exit_code(status)
        if error is not None and exit_code == 0:
            exit_code = 1
        if exit_code != 0:
            logger.warning("%s", WorkerExitError(exit_code))

        result = RunResult(
            exit_code=exit_code,
            questions_seen=self._questions_seen,
            questions_answered=self._questions_answered,
            resolver_failures=self._resolver_failures,
            error=error,
        )
        logger.info(
            "Worker finished: exit=%d questions=%d answered=%d resolver_failures=%d",
            result.exit_code, result.questions_seen,
            result.questions_answered, result.resolver_failures,
        )
        await self._fire("worker_exited", exit_code=exit_code, error=error)
        return result

    # ── Read path ──

    async def _read_loop(self) -> None:
        framer = LineFramer(self._transport.output, self._config.max_frame_bytes)
        async for line in framer:
            if self._echo_guard is not None and self._echo_guard.is_echo(line):
                logger.debug("Discarded echo of our own write (%d bytes)", len(line))
                await self._fire("echo_discarded", size=len(line))
                continue

            self._forward(line)
            if not line.strip():
                continue

            envelope = classify(line)
            if envelope.is_opaque:
                logger.debug("Passed through non-JSON worker line (%d bytes)", len(line))
            if envelope.kind is EnvelopeKind.ASSISTANT:
                await self._on_assistant(envelope)
            elif envelope.kind is EnvelopeKind.RESULT:
                await self._on_result()
        logger.debug("Worker output reached EOF after %d lines", framer.lines_read)

    def _forward(self, line: bytes) -> None:
        self._transcript.write(line + LINE_TERMINATOR)
        self._transcript.flush()

    async def _on_assistant(self, envelope: StreamEnvelope) -> None:
        failures: list[DecodeError] = []
        request = extract_question_request(
            envelope, self._config.question_tool_name,
            on_decode_error=failures.append,
        )
        for exc in failures:
            await self._fire(
                "decode_failure",
                request_id=exc.request_id,
                reason=exc.reason,
            )
        if request is None:
            return

        self._questions_seen += 1
        if self._state is InterposerState.AWAITING_ANSWER:
            pending = self._pending_request
            logger.warning(
                "Question %s arrived while %s is still being answered; rejecting it",
                request.request_id, pending.request_id if pending else "?",
            )
            await self._fire(
                "question_rejected",
                request_id=request.request_id,
                pending_request_id=pending.request_id if pending else None,
            )
            return

        self._transition(InterposerState.AWAITING_ANSWER)
        self._pending_request = request
        logger.info(
            "Question detected: request=%s questions=%d",
            request.request_id, len(request.questions),
        )
        await self._fire(
            "question_detected",
            request_id=request.request_id,
            questions=[q.text for q in request.questions],
        )
        self._cycle_task = asyncio.create_task(
            self._resolve_and_answer(request),
            name=f"resolve-{request.request_id}",
        )

    async def _on_result(self) -> None:
        self._result_seen = True
        if not self._config.close_input_on_result:
            return
        if self._state is InterposerState.AWAITING_ANSWER:
            logger.debug("Result seen with a question outstanding; input stays open")
            return
        await self._close_input()

    # ── Resolve cycle ──

    async def _resolve_and_answer(self, request: QuestionRequest) -> None:
        try:
            resolution = await self._resolver.resolve(request)
            if resolution.failed:
                self._resolver_failures += 1
                await self._fire(
                    "resolver_failure",
                    request_id=request.request_id,
                    reason=resolution.error.reason,
                )
            line = encode_envelope(build_answer_envelope(
                request, resolution.answers, self._config.answer_shape,
            ))
            await self._send_answer(request, resolution, line)
        finally:
            self._pending_request = None
            if self._state is InterposerState.AWAITING_ANSWER:
                self._transition(InterposerState.RUNNING)

        if self._result_seen and self._config.close_input_on_result:
            await self._close_input()

    async def _send_answer(
        self, request: QuestionRequest, resolution: Resolution, line: bytes,
    ) -> None:
        async with self._write_lock:
            if self._transport.input_closed:
                error = AnswerWriteError(request.request_id, "worker input is closed")
                logger.warning("%s", error)
                await self._fire(
                    "answer_write_failure",
                    request_id=request.request_id,
                    reason=error.reason,
                )
                return

            if self._echo_guard is not None:
                self._echo_guard.expect(line)
            try:
                await self._transport.write(line)
            except OSError as exc:
                if self._echo_guard is not None:
                    self._echo_guard.forget(line)
                error = AnswerWriteError(
                    request.request_id, str(exc) or type(exc).__name__,
                )
                logger.warning("%s", error)
                await self._fire(
                    "answer_write_failure",
                    request_id=request.request_id,
                    reason=error.reason,
                )
                return

        self._questions_answered += 1
        logger.info(
            "Answer sent: request=%s selections=%s%s",
            request.request_id,
            list(resolution.answers.selections),
            " (defaults)" if resolution.failed else "",
        )
        await self._fire(
            "answer_sent",
            request_id=request.request_id,
            selections=list(resolution.answers.selections),
            shape=self._config.answer_shape.value,
            defaulted=resolution.failed,
        )

    async def _shutdown(
        self, drain_task: asyncio.Task | None, *, cancelled: bool,
    ) -> int:
        """Settle the cycle, release the worker and return its exit status."""
        await self._abandon_cycle()
        if cancelled:
            if drain_task is not None:
                drain_task.cancel()
        else:
            await self._close_input()
            if drain_task is not None:
                await drain_task
        status = await self._transport.wait()
        await self._transport.close()
        self._transition(InterposerState.TERMINATED)
        return status

    async def _abandon_cycle(self) -> None:
        task = self._cycle_task
        self._cycle_task = None
        if task is None:
            return
        if not task.done():
            logger.info(
                "Worker output ended with request %s unanswered; abandoning it",
                self._pending_request.request_id if self._pending_request else "?",
            )
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.error("Resolve cycle failed", exc_info=True)

    # ── Worker input ──

    async def _send_task_message(self, line: bytes) -> None:
        async with self._write_lock:
            if self._echo_guard is not None:
                self._echo_guard.expect(line)
            try:
                await self._transport.write(line)
            except OSError as exc:
                if self._echo_guard is not None:
                    self._echo_guard.forget(line)
                logger.warning("Could not send task to worker: %s", exc)

    async def _close_input(self) -> None:
        async with self._write_lock:
            if not self._transport.input_closed:
                logger.debug("Closing worker input")
                await self._transport.close_input()

    # ── Diagnostics ──

    async def _drain_diagnostics(self, reader: asyncio.StreamReader) -> None:
        """Copy worker stderr to the diagnostics stream until EOF."""
        while True:
            chunk = await reader.read(_DIAGNOSTICS_CHUNK)
            if not chunk:
                return
            try:
                self._diagnostics_stream.write(chunk)
                self._diagnostics_stream.flush()
            except (OSError, ValueError) as exc:
                # Keep reading so the worker never blocks on a full stderr pipe.
                logger.debug("Diagnostics stream write failed: %s", exc)

    async def _fire(self, event: str, **fields: Any) -> None:
        await fire_event(self._event_callback, {"event": event, **fields})

    def _transition(self, target: InterposerState) -> None:
        validate_transition(self._state, target)
        logger.debug("Interposer state %s -> %s", self._state.value, target.value)
        self._state = target


def _exit_code(status: int) -> int:
    """Map a signal death (negative returncode) to the shell's 128+N."""
    if status < 0:
        return 128 - status
    return status
