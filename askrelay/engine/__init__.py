"""askrelay engine: interpose on a stream-json worker and answer its questions."""
from .models import (
    AnswerSet,
    AnswerShape,
    EnvelopeKind,
    InterposerState,
    Option,
    Question,
    QuestionRequest,
    Resolution,
    RunResult,
    StreamEnvelope,
)
from .config import RelayConfig
from .errors import (
    AnswerWriteError,
    ConfigError,
    DecodeError,
    FrameTooLargeError,
    RelayError,
    ResolverError,
    WorkerExitError,
    WorkerLaunchError,
)

__all__ = [
    # Orchestrator (lazy import to avoid pulling in subprocess code)
    "Interposer",
    "ResolverBridge",
    # Models
    "AnswerSet",
    "AnswerShape",
    "EnvelopeKind",
    "InterposerState",
    "Option",
    "Question",
    "QuestionRequest",
    "Resolution",
    "RunResult",
    "StreamEnvelope",
    # Config
    "RelayConfig",
    # YAML config (lazy import)
    "load_yaml_config",
    # Transports (lazy import)
    "WorkerTransport",
    "build_transport",
    # Errors
    "AnswerWriteError",
    "ConfigError",
    "DecodeError",
    "FrameTooLargeError",
    "RelayError",
    "ResolverError",
    "WorkerExitError",
    "WorkerLaunchError",
]


def __getattr__(name: str):
    if name == "Interposer":
        from .interposer import Interposer
        return Interposer
    if name == "ResolverBridge":
        from .resolver import ResolverBridge
        return ResolverBridge
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "WorkerTransport":
        from .transports.base import WorkerTransport
        return WorkerTransport
    if name == "build_transport":
        from .transports.registry import build_transport
        return build_transport
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
