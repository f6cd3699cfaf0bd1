"""
Orchestrator-facing nobadfuncs checker.

An orchestrator builds checkers from their YAML configuration through a
CheckerRegistry and calls ``check`` with the packages to scan. The scan
itself runs in a child process (``python -m nobadfuncs``) whose output is
streamed back as issues.
"""

import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import IO, NamedTuple

from .amalgamated import (
    check_cmd,
    issue_from_line,
    run_command_and_stream_output,
    run_raw_check,
    write_error_as_issue,
)
from .config import CheckerConfig, ExcludeRules, SignatureTable, decode_checker_config
from .runner import Invocation, SubprocessEngine
from .scanner_types import PRIORITY, TYPE_NAME

logger = logging.getLogger(__name__)


@dataclass
class Checker:
    """A configured nobadfuncs check."""

    bad_funcs: SignatureTable = field(default_factory=SignatureTable)
    exclude: ExcludeRules = field(default_factory=ExcludeRules)

    def type(self) -> str:
        return TYPE_NAME

    def priority(self) -> int:
        return PRIORITY

    def command(self, pkg_paths: Sequence[str], pkg_dir: str, cwd: str | None = None) -> list[str]:
        """Child command line for scanning *pkg_paths* (relative to *pkg_dir*).

        Targets are re-expressed relative to *cwd*, where the child runs, so
        reported paths are relative to the caller's working directory.
        """
        cwd = cwd or os.getcwd()
        targets = [
            os.path.relpath(os.path.join(pkg_dir, path), cwd) for path in pkg_paths
        ] or [os.path.relpath(pkg_dir, cwd)]
        invocation = Invocation(targets=targets, cwd=cwd)
        config = CheckerConfig(bad_funcs=self.bad_funcs, exclude=self.exclude)
        return check_cmd(SubprocessEngine().child_args(invocation, config))

    def check(self, pkg_paths: Sequence[str], pkg_dir: str, stdout: IO[str]) -> int:
        """Scan the packages and stream issues to *stdout*; returns the child's exit code."""
        try:
            cmd = self.command(pkg_paths, pkg_dir)
            return run_command_and_stream_output(cmd, issue_from_line, stdout)
        except OSError as e:
            logger.error("failed to run %s: %s", TYPE_NAME, e)
            write_error_as_issue(e, stdout)
            return 1

    def run_check_cmd(self, args: Sequence[str], stdout: IO[str]) -> int:
        return run_raw_check(args, stdout)


def create_checker(cfg_yml: str) -> Checker:
    """Build a Checker from its YAML configuration.

    Raises:
        ConfigDecodeError: if the document is not a valid checker configuration.
    """
    config = decode_checker_config(cfg_yml)
    return Checker(bad_funcs=config.bad_funcs, exclude=config.exclude)


class CheckerCreator(NamedTuple):
    type_name: str
    priority: int
    create: Callable[[str], Checker]


def creator() -> CheckerCreator:
    return CheckerCreator(TYPE_NAME, PRIORITY, create_checker)


class CheckerRegistry:
    """Checker creators keyed by type name."""

    def __init__(self, creators: Sequence[CheckerCreator] = ()):
        self._creators: dict[str, CheckerCreator] = {}
        for c in creators:
            self.register(c)

    def register(self, checker_creator: CheckerCreator) -> None:
        if checker_creator.type_name in self._creators:
            raise ValueError(f"checker type {checker_creator.type_name!r} is already registered")
        self._creators[checker_creator.type_name] = checker_creator

    def types(self) -> list[str]:
        """Registered type names, highest priority first."""
        return [
            c.type_name
            for c in sorted(self._creators.values(), key=lambda c: (-c.priority, c.type_name))
        ]

    def create(self, type_name: str, cfg_yml: str) -> Checker:
        try:
            checker_creator = self._creators[type_name]
        except KeyError:
            raise KeyError(f"no checker registered for type {type_name!r}") from None
        return checker_creator.create(cfg_yml)


def default_registry() -> CheckerRegistry:
    return CheckerRegistry([creator()])
