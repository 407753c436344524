"""Subcommand dispatch for the pipeline tools."""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from utils.config import DEFAULT_CONFIG_PATH, Config
from utils.error_tracker import ErrorTracker
from utils.logger import Logger

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR")


@dataclass
class Command:
    """One subcommand: ``handler(ns)`` plus a hook adding its arguments."""

    name: str
    handler: Callable[[argparse.Namespace], None]
    add_arguments: Optional[Callable[[argparse.ArgumentParser], None]] = None
    help: str | None = None


@dataclass
class CommandDispatcher:
    """
    Parses the shared options and one subcommand, loads the configuration
    file, then runs the subcommand handler.

    Shared options: ``--config`` (YAML file, default ``conf/app.yaml``) and
    ``--log-level`` (overrides ``logging.level`` of that file).
    """

    description: str
    commands: Sequence[Command] = field(default_factory=list)

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(description=self.description)
        parser.add_argument(
            "--config",
            type=Path,
            default=DEFAULT_CONFIG_PATH,
            help="YAML configuration file",
        )
        parser.add_argument(
            "--log-level",
            choices=LOG_LEVELS,
            default=None,
            help="Override logging.level from the configuration",
        )
        subparsers = parser.add_subparsers(dest="command", required=True)
        for cmd in self.commands:
            sp = subparsers.add_parser(cmd.name, help=cmd.help)
            if cmd.add_arguments:
                cmd.add_arguments(sp)
            sp.set_defaults(func=cmd.handler)
        return parser

    def run(
        self, argv: Optional[list[str]] = None, *, track_exceptions: bool = True
    ) -> None:
        """
        Dispatch ``argv`` (``sys.argv`` when ``None``).

        With ``track_exceptions`` the :class:`ErrorTracker` hooks are installed
        first, so registered device cleanups run on uncaught errors and on
        SIGINT/SIGTERM.
        """
        ns = self.build_parser().parse_args(argv)
        if track_exceptions:
            ErrorTracker.install_excepthook()
            ErrorTracker.install_signal_handlers()
        Config.load(ns.config, force_reload=True, log_level=ns.log_level)
        Logger.get_logger("utils.cli").debug(
            f"Running '{ns.command}' with {Config.source()}"
        )
        ns.func(ns)
