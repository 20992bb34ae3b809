from __future__ import annotations

import asyncio
import errno
import sys

import pytest

from askrelay.engine.errors import ConfigError, WorkerLaunchError
from askrelay.engine.framing import LineFramer
from askrelay.engine.transports import PipeTransport, PtyTransport, build_transport
from askrelay.engine.transports.pty_transport import MAX_INPUT_LINE


def test_registry_builds_known_transports() -> None:
    assert isinstance(build_transport("pipe"), PipeTransport)
    pty = build_transport("pty", 2 * 1024 * 1024)
    assert isinstance(pty, PtyTransport)
    assert pty.shared_channel
    assert pty.reader_limit == 2 * 1024 * 1024 + 1


def test_registry_rejects_unknown_transport() -> None:
    with pytest.raises(ConfigError) as exc_info:
        build_transport("carrier-pigeon")
    assert exc_info.value.field_name == "transport"


@pytest.mark.asyncio
@pytest.mark.parametrize("cls", [PipeTransport, PtyTransport])
async def test_missing_command_is_a_launch_error(cls, tmp_path) -> None:
    with pytest.raises(WorkerLaunchError) as exc_info:
        await cls().start([str(tmp_path / "nope")])
    assert exc_info.value.reason == "command not found"


@pytest.mark.asyncio
async def test_pipe_round_trip(make_script) -> None:
    script = make_script("echo-worker", """
        import sys
        line = sys.stdin.readline()
        print("got " + line.strip(), flush=True)
        print("to stderr", file=sys.stderr, flush=True)
    """)
    transport = PipeTransport()
    await transport.start([script])
    assert not transport.shared_channel
    assert transport.pid is not None

    await transport.write(b"hello\n")
    await transport.close_input()
    await transport.close_input()
    with pytest.raises(BrokenPipeError):
        await transport.write(b"late\n")

    lines = [line async for line in LineFramer(transport.output)]
    stderr = await transport.diagnostics.read()
    assert await transport.wait() == 0
    assert lines == [b"got hello"]
    assert stderr == b"to stderr\n"


@pytest.mark.asyncio
async def test_terminate_stops_a_stuck_worker(make_script) -> None:
    script = make_script("stuck-worker", """
        import time
        time.sleep(60)
    """)
    transport = PipeTransport()
    await transport.start([script])
    await asyncio.wait_for(transport.terminate(grace_seconds=2.0), timeout=10)
    assert transport.returncode is not None
    assert transport.returncode != 0


@pytest.mark.asyncio
@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="pty semantics are Linux-specific")
async def test_pty_echoes_input_and_ends_on_exit(make_script) -> None:
    script = make_script("tty-worker", """
        import sys
        print("ready", flush=True)
        line = sys.stdin.readline()
        print("got " + line.strip(), flush=True)
    """)
    transport = PtyTransport()
    await transport.start([script])
    framer = LineFramer(transport.output)

    assert await framer.next_line() == b"ready"
    await transport.write(b"ping\n")
    rest = [line async for line in framer]
    assert await transport.wait() == 0
    await transport.close()

    # Terminal echo of our write, then the worker's reply.
    assert rest == [b"ping", b"got ping"]


def test_only_pty_limits_input_lines() -> None:
    assert PipeTransport().max_input_line is None
    assert PtyTransport().max_input_line == MAX_INPUT_LINE


@pytest.mark.asyncio
@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="pty semantics are Linux-specific")
async def test_pty_refuses_lines_the_terminal_would_truncate(make_script) -> None:
    script = make_script("tty-length-worker", """
        import sys
        print("ready", flush=True)
        line = sys.stdin.readline()
        print("len %d" % len(line.rstrip("\\n")), flush=True)
    """)
    transport = PtyTransport()
    await transport.start([script])
    framer = LineFramer(transport.output)
    assert await framer.next_line() == b"ready"

    with pytest.raises(OSError) as exc_info:
        await transport.write(b"b" * 5000 + b"\n")
    assert exc_info.value.errno == errno.EMSGSIZE
    with pytest.raises(OSError):
        await transport.write(b"b" * MAX_INPUT_LINE + b"\n")

    await transport.write(b"a" * (MAX_INPUT_LINE - 1) + b"\n")
    rest = [line async for line in framer]
    assert await transport.wait() == 0
    await transport.close()

    assert rest[-1] == b"len %d" % (MAX_INPUT_LINE - 1)
