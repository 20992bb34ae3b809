"""Abstract base for worker transports.

A transport owns the worker subprocess and the byte channels to it.
The interposer reads ``output`` through a LineFramer, drains
``diagnostics`` when the transport has one, and writes answers with
``write()``.
"""
from __future__ import annotations

import abc
import asyncio
import logging
import os
import shutil
import signal

from ..framing import DEFAULT_MAX_FRAME_BYTES, LINE_TERMINATOR

logger = logging.getLogger(__name__)


class WorkerTransport(abc.ABC):
    """Abstract transport interface.

    Implementations:
    - PipeTransport: independent stdin/stdout/stderr pipes
    - PtyTransport: one pseudo-terminal shared by input and output
    """

    def __init__(self, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES) -> None:
        self._max_frame_bytes = max_frame_bytes
        self._proc: asyncio.subprocess.Process | None = None
        self._input_closed = False

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short transport name (e.g. 'pipe', 'pty')."""

    @property
    def shared_channel(self) -> bool:
        """True when bytes written to the worker can come back on output."""
        return False

    @property
    def max_input_line(self) -> int | None:
        """Longest line, terminator included, ``write()`` accepts; None if unbounded."""
        return None

    @property
    def reader_limit(self) -> int:
        return self._max_frame_bytes + len(LINE_TERMINATOR)

    @abc.abstractmethod
    async def start(
        self,
        argv: list[str],
        *,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> None:
        """Launch the worker. Raises WorkerLaunchError."""

    @property
    @abc.abstractmethod
    def output(self) -> asyncio.StreamReader:
        """Primary output stream of the worker."""

    @property
    def diagnostics(self) -> asyncio.StreamReader | None:
        """Separate diagnostics (stderr) stream, if the transport has one."""
        return None

    @abc.abstractmethod
    async def write(self, data: bytes) -> None:
        """Write bytes to the worker's input.

        Raises BrokenPipeError when the input is closed, or another
        OSError when the write fails.
        """

    @abc.abstractmethod
    async def close_input(self) -> None:
        """Signal end of input to the worker. Idempotent."""

    @property
    def input_closed(self) -> bool:
        return self._input_closed

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc is not None else None

    async def wait(self) -> int:
        """Wait for the worker to exit and return its status."""
        if self._proc is None:
            raise RuntimeError(f"{self.name} transport was never started")
        return await self._proc.wait()

    async def terminate(self, grace_seconds: float = 5.0) -> None:
        """SIGTERM the worker's process group, SIGKILL after the grace period."""
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        _signal_group(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Worker pid=%d ignored SIGTERM for %.1fs; killing",
                proc.pid, grace_seconds,
            )
            _signal_group(proc, signal.SIGKILL)
            await proc.wait()

    async def close(self) -> None:
        """Release transport resources after the worker has exited.

        Default no-op. Override in transports holding descriptors.
        """
        return None

    @staticmethod
    def resolve_command(command: str) -> str:
        """Resolve a bare command name to its absolute path on PATH.

        Keeps the raw value when it is not on PATH so launch errors
        name what was configured.
        """
        resolved = shutil.which(command) if command else None
        if resolved is None:
            logger.debug("Command %s not found on PATH", command)
            return command
        return resolved


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
    """Signal the worker's whole session (it runs with start_new_session)."""
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        try:
            proc.send_signal(sig)
        except ProcessLookupError:
            pass
