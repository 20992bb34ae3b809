"""Worker attached to a single pseudo-terminal.

stdin, stdout and stderr of the worker all point at the slave side, so
input and output share one channel. The terminal echoes what we write,
which is why the interposer runs an echo guard for this transport.

The slave stays in canonical mode so VEOF can end the worker's input.
A canonical-mode terminal silently drops input past its line buffer
(4096 bytes on Linux), so ``write()`` refuses any line that would not
fit instead of delivering a truncated one.
"""
from __future__ import annotations

import asyncio
import errno
import logging
import os
import pty

from ..errors import WorkerLaunchError
from ..framing import make_stream_reader
from .base import WorkerTransport

logger = logging.getLogger(__name__)

_READ_SIZE = 65536
# VEOF at the start of a line ends input for a canonical-mode reader.
_EOF_CHAR = b"\x04"
# N_TTY_BUF_SIZE minus one: the longest line, newline included, that a
# canonical-mode reader is guaranteed to receive whole.
MAX_INPUT_LINE = 4095


class _MasterReadControl:
    """Lets the StreamReader pause and resume reads from the master fd."""

    def __init__(self, transport: PtyTransport) -> None:
        self._transport = transport

    def pause_reading(self) -> None:
        self._transport._remove_reader()

    def resume_reading(self) -> None:
        self._transport._add_reader()


class PtyTransport(WorkerTransport):
    """One shared pseudo-terminal channel for input and output."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._master_fd: int | None = None
        self._reader: asyncio.StreamReader | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reading = False
        self._read_done = False

    @property
    def name(self) -> str:
        return "pty"

    @property
    def shared_channel(self) -> bool:
        return True

    @property
    def max_input_line(self) -> int:
        return MAX_INPUT_LINE

    async def start(
        self,
        argv: list[str],
        *,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> None:
        if not argv:
            raise WorkerLaunchError("", "empty command")
        master_fd, slave_fd = pty.openpty()
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                env=env,
                cwd=cwd,
                start_new_session=True,
            )
        except FileNotFoundError:
            os.close(master_fd)
            raise WorkerLaunchError(argv[0], "command not found") from None
        except OSError as exc:
            os.close(master_fd)
            raise WorkerLaunchError(argv[0], str(exc)) from exc
        finally:
            # The child holds its own copy; EIO on the master once it
            # exits depends on ours being closed.
            os.close(slave_fd)

        os.set_blocking(master_fd, False)
        self._master_fd = master_fd
        self._loop = asyncio.get_running_loop()
        self._reader = make_stream_reader(self._max_frame_bytes)
        self._reader.set_transport(_MasterReadControl(self))
        self._add_reader()
        logger.info("Worker started on a pty (pid=%d): %s", self._proc.pid, argv[0])

    @property
    def output(self) -> asyncio.StreamReader:
        if self._reader is None:
            raise RuntimeError("pty transport is not started")
        return self._reader

    async def write(self, data: bytes) -> None:
        if self._master_fd is None:
            raise RuntimeError("pty transport is not started")
        if self._input_closed:
            raise BrokenPipeError("worker input is closed")
        longest = max(len(part) + 1 for part in data.split(b"\n"))
        if longest > MAX_INPUT_LINE:
            raise OSError(
                errno.EMSGSIZE,
                f"line of {longest} bytes exceeds the pty input limit "
                f"of {MAX_INPUT_LINE} bytes",
            )
        await self._write_all(data)

    async def close_input(self) -> None:
        if self._input_closed:
            return
        self._input_closed = True
        if self._master_fd is None or self._read_done:
            return
        try:
            await self._write_all(_EOF_CHAR)
        except OSError as exc:
            logger.debug("Could not send EOF to worker pty: %s", exc)

    async def close(self) -> None:
        self._remove_reader()
        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError:
                logger.debug("pty master was already closed")
            self._master_fd = None
        if self._reader is not None and not self._reader.at_eof():
            self._reader.feed_eof()

    async def _write_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            try:
                written = os.write(self._master_fd, view)
            except BlockingIOError:
                # Terminal input queue is full until the worker reads.
                await asyncio.sleep(0.01)
                continue
            view = view[written:]

    def _add_reader(self) -> None:
        if self._reading or self._read_done or self._master_fd is None:
            return
        self._loop.add_reader(self._master_fd, self._on_readable)
        self._reading = True

    def _remove_reader(self) -> None:
        if not self._reading or self._master_fd is None:
            return
        self._loop.remove_reader(self._master_fd)
        self._reading = False

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, _READ_SIZE)
        except BlockingIOError:
            return
        except OSError as exc:
            if exc.errno == errno.EIO:
                # Every slave descriptor is closed: the worker is gone.
                self._finish_reading()
            else:
                self._finish_reading(exc)
            return
        if not data:
            self._finish_reading()
            return
        self._reader.feed_data(data)

    def _finish_reading(self, exc: Exception | None = None) -> None:
        self._remove_reader()
        self._read_done = True
        if exc is not None:
            logger.error("Reading worker pty failed: %s", exc)
            self._reader.set_exception(exc)
        else:
            self._reader.feed_eof()
