"""YAML configuration loader.

Loads a single YAML file as an alternative to RELAY_* env vars. Keys
that are absent keep the value of the base config (defaults, or the
env-derived config the CLI passes in).

Example YAML:
    worker:
      command: claude
      args: [--output-format, stream-json, --input-format, stream-json, --verbose]
      cwd: /path/to/project
      transport: pipe
      prompt_via_stdin: false
      close_input_on_result: true

    resolver:
      command: claude
      args: [--model, sonnet]
      tools: [Read, Glob, Grep]
      timeout_seconds: 60

    protocol:
      question_tool: AskUserQuestion
      answer_shape: user_input_result
      echo_marker: '{"type":"user_input_result"'
      max_frame_bytes: 1048576

    logging:
      level: INFO
"""
from __future__ import annotations

import dataclasses
import logging
import shlex
from pathlib import Path
from typing import Any

import yaml

from .config import RelayConfig, parse_answer_shape
from .errors import ConfigError

logger = logging.getLogger(__name__)

_SECTIONS = ("worker", "resolver", "protocol", "logging")


def load_yaml_config(
    path: str | Path, base: RelayConfig | None = None,
) -> RelayConfig:
    """Load and validate a YAML config file.

    Raises FileNotFoundError, yaml.YAMLError, or ConfigError.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")

    unknown = sorted(set(raw) - set(_SECTIONS))
    if unknown:
        logger.warning(
            "load_yaml_config: ignoring unknown sections in %s: %s",
            path.name, ", ".join(unknown),
        )
    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(sorted(raw)) if raw else "(empty)",
    )

    worker = _section(raw, "worker")
    resolver = _section(raw, "resolver")
    protocol = _section(raw, "protocol")
    logging_raw = _section(raw, "logging")

    config = dataclasses.replace(base) if base is not None else RelayConfig()

    # ── Worker ──
    if "command" in worker:
        config.worker_command = str(worker["command"])
    if "args" in worker:
        config.worker_args = _as_args(worker["args"], "worker.args")
    if "cwd" in worker:
        config.worker_cwd = str(worker["cwd"]) if worker["cwd"] else None
    if "transport" in worker:
        config.transport = str(worker["transport"])
    if "prompt_via_stdin" in worker:
        config.prompt_via_stdin = bool(worker["prompt_via_stdin"])
    if "close_input_on_result" in worker:
        config.close_input_on_result = bool(worker["close_input_on_result"])

    # ── Resolver ──
    if "command" in resolver:
        config.resolver_command = str(resolver["command"])
    if "args" in resolver:
        config.resolver_args = _as_args(resolver["args"], "resolver.args")
    if "tools" in resolver:
        config.resolver_tools = _as_list(resolver["tools"], "resolver.tools")
    if "timeout_seconds" in resolver:
        config.resolver_timeout_seconds = _as_number(
            resolver["timeout_seconds"], "resolver.timeout_seconds", float,
        )

    # ── Protocol ──
    if "question_tool" in protocol:
        config.question_tool_name = str(protocol["question_tool"])
    if "answer_shape" in protocol:
        config.answer_shape = parse_answer_shape(protocol["answer_shape"])
    if "echo_marker" in protocol:
        marker = protocol["echo_marker"]
        config.echo_marker = None if marker is None else str(marker)
    if "max_frame_bytes" in protocol:
        config.max_frame_bytes = _as_number(
            protocol["max_frame_bytes"], "protocol.max_frame_bytes", int,
        )

    # ── Logging ──
    if "level" in logging_raw:
        config.log_level = str(logging_raw["level"]).upper()

    config.validate()
    logger.info(
        "load_yaml_config: worker=%s resolver=%s transport=%s shape=%s",
        config.worker_command, config.resolver_command,
        config.transport, config.answer_shape.value,
    )
    return config


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(name, "section must be a mapping")
    return value


def _as_args(value: Any, field_name: str) -> list[str]:
    """Accept either a YAML list or a shell-style string."""
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list):
        return [str(v) for v in value]
    raise ConfigError(field_name, "must be a list or a string")


def _as_list(value: Any, field_name: str) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [str(v) for v in value]
    raise ConfigError(field_name, "must be a list or a comma-separated string")


def _as_number(value: Any, field_name: str, kind: type) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(field_name, f"expected a number, got {value!r}") from None
