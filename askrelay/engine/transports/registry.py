"""Transport registry: maps transport names to WorkerTransport classes."""
from __future__ import annotations

import logging

from ..errors import ConfigError
from ..framing import DEFAULT_MAX_FRAME_BYTES
from .base import WorkerTransport
from .pipe_transport import PipeTransport
from .pty_transport import PtyTransport

logger = logging.getLogger(__name__)

_TRANSPORTS: dict[str, type[WorkerTransport]] = {
    "pipe": PipeTransport,
    "pty": PtyTransport,
}


def build_transport(
    name: str, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
) -> WorkerTransport:
    """Instantiate the transport registered under ``name``."""
    cls = _TRANSPORTS.get(name)
    if cls is None:
        available = ", ".join(_TRANSPORTS.keys())
        raise ConfigError(
            "transport", f"unknown transport '{name}' (available: {available})",
        )
    logger.debug("Using %s transport", name)
    return cls(max_frame_bytes)
