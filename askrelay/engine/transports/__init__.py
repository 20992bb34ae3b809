"""Worker transports: how the interposer attaches to the worker process."""
from .base import WorkerTransport
from .pipe_transport import PipeTransport
from .pty_transport import PtyTransport
from .registry import build_transport

__all__ = [
    "WorkerTransport",
    "PipeTransport",
    "PtyTransport",
    "build_transport",
]
