"""
nobadfuncs runner - drives one invocation from configuration to output lines.

    IDLE -> CONFIG_DECODED -> SCANNING -> EMITTING -> DONE
                       (any state) -> FAILED

Every diagnostic is written as ``<path>:<line>:<column>: <message>`` and
flushed as soon as it is produced. Configuration errors and internal
failures are written as one line of the same shape, so a caller parsing
stdout never has to handle a crash.
"""

import logging
import os
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, Protocol

from .amalgamated import (
    ISSUE_LINE,
    STDERR,
    CheckProcessError,
    check_cmd,
    spawn,
    stream_process_lines,
)
from .config import (
    DEFAULT_EXCLUDE_NAMES,
    CheckerConfig,
    ConfigDecodeError,
    ExcludeRules,
    decode_config_json,
    load_config_file,
)
from .logger import log_event, scan_timer
from .scanner import SourceScanner
from .scanner_types import Diagnostic

logger = logging.getLogger(__name__)

CONFIG_JSON_PATH = "<config-json>"
CONFIG_PATH = "<config>"
INTERNAL_PATH = "<nobadfuncs>"


class State(Enum):
    IDLE = "idle"
    CONFIG_DECODED = "config_decoded"
    SCANNING = "scanning"
    EMITTING = "emitting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class Invocation:
    """Everything one run needs; not persisted."""

    targets: list[str] = field(default_factory=lambda: ["."])
    config_json: str | None = None
    config_file: str | None = None
    exclude_names: tuple[str, ...] = ()
    exclude_paths: tuple[str, ...] = ()
    cwd: str = field(default_factory=os.getcwd)
    print_all: bool = False

    @property
    def config_path(self) -> str:
        """Path rendered in configuration error lines."""
        if self.config_file:
            return self.config_file
        if self.config_json is not None:
            return CONFIG_JSON_PATH
        return CONFIG_PATH


def format_diagnostic(diagnostic: Diagnostic) -> str:
    return f"{diagnostic.path}:{diagnostic.line}:{diagnostic.column}: {diagnostic.message}"


def resolve_config(invocation: Invocation) -> CheckerConfig:
    """Decode the invocation's configuration and fold in command line excludes."""
    if invocation.config_file:
        config = load_config_file(os.path.join(invocation.cwd, invocation.config_file))
    elif invocation.config_json is not None:
        config = CheckerConfig(bad_funcs=decode_config_json(invocation.config_json))
    else:
        config = CheckerConfig()

    for name in invocation.exclude_names:
        try:
            re.compile(name)
        except re.error as e:
            raise ConfigDecodeError(f"invalid --exclude-name regex {name!r}: {e}", name) from e

    if not invocation.exclude_names and not invocation.exclude_paths:
        return config
    exclude = ExcludeRules(
        names=config.exclude.names + tuple(invocation.exclude_names),
        paths=config.exclude.paths + tuple(invocation.exclude_paths),
    )
    return CheckerConfig(bad_funcs=config.bad_funcs, exclude=exclude)


class CheckEngine(Protocol):
    """The capability contract a runner drives."""

    def decode_config(self, invocation: Invocation) -> CheckerConfig:
        ...

    def scan(self, invocation: Invocation, config: CheckerConfig) -> Iterator[Diagnostic]:
        ...

    def emit(self, diagnostic: Diagnostic, stdout: IO[str]) -> None:
        ...


class InProcessEngine:
    """Scans and matches in the current process."""

    def decode_config(self, invocation: Invocation) -> CheckerConfig:
        return resolve_config(invocation)

    def scan(self, invocation: Invocation, config: CheckerConfig) -> Iterator[Diagnostic]:
        scanner = SourceScanner(cwd=invocation.cwd, exclude=config.exclude)
        if not invocation.print_all:
            yield from scanner.check(invocation.targets, config.bad_funcs)
            return
        for parsed, calls in scanner.scan(invocation.targets):
            if parsed.error is not None:
                yield parsed.error
                continue
            for site in calls:
                yield Diagnostic(site.path, site.line, site.column, site.signature)

    def emit(self, diagnostic: Diagnostic, stdout: IO[str]) -> None:
        stdout.write(format_diagnostic(diagnostic) + "\n")
        stdout.flush()


class SubprocessEngine(InProcessEngine):
    """Runs the scan in ``python -m nobadfuncs`` and reads its output over a pipe.

    The configuration is decoded here as well, so that invalid input is
    reported the same way by both engines.
    """

    def child_args(self, invocation: Invocation, config: CheckerConfig) -> list[str]:
        # Values are joined to their flags so one starting with "-" is not read as an option.
        args = [f"--config-json={config.bad_funcs.to_json()}"]
        for name in config.exclude.names:
            if name not in DEFAULT_EXCLUDE_NAMES:
                args.append(f"--exclude-name={name}")
        for path in config.exclude.paths:
            args.append(f"--exclude-path={path}")
        if invocation.print_all:
            args.append("--print-all")
        return args + ["--", *invocation.targets]

    def scan(self, invocation: Invocation, config: CheckerConfig) -> Iterator[Diagnostic]:
        cmd = check_cmd(self.child_args(invocation, config))
        wrote_output = False
        with spawn(cmd, cwd=invocation.cwd) as proc:
            for name, line in stream_process_lines(proc):
                line = line.rstrip("\r\n")
                if name == STDERR:
                    logger.debug("child stderr: %s", line)
                    continue
                wrote_output = True
                match = ISSUE_LINE.match(line)
                if match is None:
                    yield Diagnostic(INTERNAL_PATH, 1, 1, line)
                    continue
                yield Diagnostic(
                    match["path"], int(match["line"]), int(match["column"]), match["message"],
                )
            returncode = proc.wait()
        logger.debug("child exited with %d", returncode)
        if returncode != 0 and not wrote_output:
            yield Diagnostic(INTERNAL_PATH, 1, 1, str(CheckProcessError(cmd, returncode)))


class CheckRun:
    """One pass through the runner state machine."""

    def __init__(self, engine: CheckEngine, stdout: IO[str]):
        self.engine = engine
        self.stdout = stdout
        self.state = State.IDLE
        self.emitted = 0

    def _fail(self, diagnostic: Diagnostic) -> int:
        self.state = State.FAILED
        self.engine.emit(diagnostic, self.stdout)
        return 1

    def execute(self, invocation: Invocation) -> int:
        """Run the invocation; returns the process exit code."""
        try:
            config = self.engine.decode_config(invocation)
        except ConfigDecodeError as e:
            return self._fail(Diagnostic(
                invocation.config_path, e.line or 1, e.column or 1, str(e),
            ))
        except OSError as e:
            return self._fail(Diagnostic(invocation.config_path, 1, 1, str(e)))
        self.state = State.CONFIG_DECODED
        log_event(logger, logging.DEBUG, "config_decoded", {
            "signatures": len(config.bad_funcs), "targets": list(invocation.targets),
        })

        self.state = State.SCANNING
        with scan_timer() as timer:
            try:
                for diagnostic in self.engine.scan(invocation, config):
                    self.state = State.EMITTING
                    self.engine.emit(diagnostic, self.stdout)
                    self.emitted += 1
            except Exception as e:  # reported to the caller as a diagnostic line
                logger.exception("scan failed")
                return self._fail(Diagnostic(INTERNAL_PATH, 1, 1, f"internal error: {e}"))
        log_event(logger, logging.DEBUG, "scan_complete", {
            "diagnostics": self.emitted, "duration_ms": round(timer.ms, 1),
        })

        self.state = State.DONE
        if invocation.print_all:
            return 0
        return 1 if self.emitted else 0


def run(invocation: Invocation, stdout: IO[str], engine: CheckEngine | None = None) -> int:
    return CheckRun(engine or InProcessEngine(), stdout).execute(invocation)
