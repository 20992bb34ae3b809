"""CLI entry point for the interposer.

Usage:
    askrelay "Refactor the parser and add tests"
    askrelay --task-file tasks/feature.md --transport pty
    askrelay --config relay.yaml --answer-shape tool_result "Fix the build"

stdout carries the worker transcript and nothing else; logs go to
stderr (and to --log-file when given).
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml

from .config import TRANSPORTS, RelayConfig, parse_answer_shape
from .errors import ConfigError, WorkerLaunchError
from .interposer import Interposer
from .models import AnswerShape

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="askrelay",
        description=(
            "Run a stream-json worker agent and answer its interactive "
            "questions with a read-only resolver agent"
        ),
    )
    parser.add_argument(
        "task",
        nargs="?",
        default=None,
        help="The task for the worker (inline string)",
    )
    parser.add_argument(
        "--task-file", "-f",
        default=None,
        help="Read task from a file (.md, .txt, etc.)",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file (overrides RELAY_* env vars)",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        default=None,
        help="How to attach to the worker (default: pipe)",
    )
    parser.add_argument(
        "--answer-shape",
        choices=[s.value for s in AnswerShape],
        default=None,
        help="Answer record layout the worker accepts (default: user_input_result)",
    )
    parser.add_argument(
        "--resolver-timeout",
        type=float,
        default=None,
        help="Seconds to wait for the resolver (default: 60)",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Working directory for the worker and resolver (default: current dir)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (rotated at 2 MB, 5 backups)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    task = _resolve_task(args.task, args.task_file)

    try:
        config = _build_config(args)
    except (ConfigError, FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    level = "DEBUG" if args.verbose else config.log_level
    _configure_logging(level, args.log_file)
    logger.debug("Effective config: %s", config)

    try:
        interposer = Interposer(config)
        result = asyncio.run(interposer.run(task))
    except (WorkerLaunchError, ConfigError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)

    if result.error:
        print(f"Error: {result.error}", file=sys.stderr)
    sys.exit(result.exit_code)


def _configure_logging(level: str, log_file: str | None) -> None:
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    if log_file:
        file_handler = RotatingFileHandler(
            log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
        ))
        logging.getLogger().addHandler(file_handler)


def _build_config(args: argparse.Namespace) -> RelayConfig:
    """Env vars, then the YAML file, then command-line flags."""
    config = RelayConfig.from_env()
    if args.config:
        from .yaml_config import load_yaml_config
        config = load_yaml_config(args.config, base=config)

    if args.transport is not None:
        config.transport = args.transport
    if args.answer_shape is not None:
        config.answer_shape = parse_answer_shape(args.answer_shape)
    if args.resolver_timeout is not None:
        config.resolver_timeout_seconds = args.resolver_timeout
    if args.cwd is not None:
        config.worker_cwd = args.cwd
    return config.validate()


def _resolve_task(inline: str | None, file_path: str | None) -> str:
    """Get task from inline arg or file. Exactly one must be provided."""
    if inline and file_path:
        print(
            "Error: Provide either a task string or --task-file, not both.",
            file=sys.stderr,
        )
        sys.exit(1)

    if file_path:
        p = Path(file_path)
        if not p.is_file():
            print(f"Error: Task file not found: {file_path}", file=sys.stderr)
            sys.exit(1)
        return p.read_text(encoding="utf-8").strip()

    if inline:
        return inline

    print("Error: Provide a task string or --task-file.", file=sys.stderr)
    sys.exit(1)


if __name__ == "__main__":
    main()
