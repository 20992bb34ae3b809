"""Worker over three independent pipes."""
from __future__ import annotations

import asyncio
import logging

from ..errors import WorkerLaunchError
from .base import WorkerTransport

logger = logging.getLogger(__name__)


class PipeTransport(WorkerTransport):
    """stdin, stdout and stderr are separate pipes.

    stdout is the stream-json channel; stderr is drained separately as
    diagnostics so a chatty worker never blocks on it.
    """

    @property
    def name(self) -> str:
        return "pipe"

    async def start(
        self,
        argv: list[str],
        *,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> None:
        if not argv:
            raise WorkerLaunchError("", "empty command")
        try:
            # Array argv; no shell involved.
            self._proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=cwd,
                limit=self.reader_limit,
                start_new_session=True,
            )
        except FileNotFoundError:
            raise WorkerLaunchError(argv[0], "command not found") from None
        except OSError as exc:
            raise WorkerLaunchError(argv[0], str(exc)) from exc
        logger.info("Worker started over pipes (pid=%d): %s", self._proc.pid, argv[0])

    @property
    def output(self) -> asyncio.StreamReader:
        if self._proc is None or self._proc.stdout is None:
            raise RuntimeError("pipe transport is not started")
        return self._proc.stdout

    @property
    def diagnostics(self) -> asyncio.StreamReader | None:
        if self._proc is None:
            return None
        return self._proc.stderr

    async def write(self, data: bytes) -> None:
        if self._proc is None or self._proc.stdin is None:
            raise RuntimeError("pipe transport is not started")
        stdin = self._proc.stdin
        if self._input_closed or stdin.is_closing():
            raise BrokenPipeError("worker input is closed")
        stdin.write(data)
        await stdin.drain()

    async def close_input(self) -> None:
        if self._input_closed or self._proc is None or self._proc.stdin is None:
            self._input_closed = True
            return
        self._input_closed = True
        stdin = self._proc.stdin
        stdin.close()
        try:
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            # Worker already closed its end; nothing left to flush.
            logger.debug("Worker stdin was already closed by the worker")
