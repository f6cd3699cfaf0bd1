"""
Caller side of the nobadfuncs process boundary.

Builds the child command line, spawns ``python -m nobadfuncs``, reads
stdout and stderr on dedicated reader threads, and turns diagnostic lines
into issues. Lines that do not match the diagnostic grammar are kept as
raw output.
"""

import logging
import os
import queue
import re
import subprocess
import sys
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional

from .scanner_types import TYPE_NAME

logger = logging.getLogger(__name__)

# <path>:<line>:<column>: <message>
ISSUE_LINE = re.compile(r"^(?P<path>.+?):(?P<line>\d+):(?P<column>\d+): (?P<message>.*)$")

STDOUT = "stdout"
STDERR = "stderr"


class CheckProcessError(RuntimeError):
    """The child exited non-zero without writing any output."""

    def __init__(self, cmd: Sequence[str], returncode: int):
        self.cmd = list(cmd)
        self.returncode = returncode
        super().__init__(f"{TYPE_NAME} failed with exit code {returncode} and no output")


@dataclass
class Issue:
    """One line of check output.

    path/line/column are empty for raw lines that are not diagnostics.
    """
    message: str
    path: str = ""
    line: int = 0
    column: int = 0
    check: str = TYPE_NAME

    @property
    def is_raw(self) -> bool:
        return not self.path


def issue_from_line(line: str) -> Issue:
    """Parse one output line.

    The child runs in the caller's working directory, so paths are kept as
    written.
    """
    line = line.rstrip("\r\n")
    match = ISSUE_LINE.match(line)
    if match is None:
        return Issue(message=line)
    return Issue(
        message=match["message"],
        path=match["path"],
        line=int(match["line"]),
        column=int(match["column"]),
    )


def format_issue(issue: Issue) -> str:
    if issue.is_raw:
        return issue.message
    return f"{issue.path}:{issue.line}:{issue.column}: {issue.message}"


def write_error_as_issue(err: BaseException, stdout: IO[str]) -> None:
    """Report a caller-side failure as a single issue line."""
    stdout.write(format_issue(Issue(message=str(err))) + "\n")
    stdout.flush()


# ── Command line ──────────────────────────────────────────────────────


def check_cmd(args: Sequence[str]) -> list[str]:
    """The child command: the engine run by the current interpreter."""
    return [sys.executable, "-m", TYPE_NAME, *args]


def amalgamated_env() -> dict[str, str]:
    """Child environment; the package's parent is put on PYTHONPATH."""
    env = dict(os.environ)
    package_root = str(Path(__file__).resolve().parent.parent)
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = package_root if not existing else os.pathsep.join([package_root, existing])
    return env


# ── Process streaming ─────────────────────────────────────────────────


def _pump(name: str, pipe: IO[str], lines: "queue.Queue[tuple[str, Optional[str]]]") -> None:
    try:
        for line in iter(pipe.readline, ""):
            lines.put((name, line))
    finally:
        pipe.close()
        lines.put((name, None))


def stream_process_lines(proc: subprocess.Popen) -> Iterator[tuple[str, str]]:
    """Yield (stream name, line) from both pipes as the child writes them.

    Each pipe has its own reader thread so that neither can fill up and
    block the child. Returns once both pipes reach EOF.
    """
    lines: "queue.Queue[tuple[str, Optional[str]]]" = queue.Queue()
    readers = []
    for name, pipe in ((STDOUT, proc.stdout), (STDERR, proc.stderr)):
        if pipe is None:
            continue
        reader = threading.Thread(target=_pump, args=(name, pipe, lines), daemon=True)
        reader.start()
        readers.append(reader)

    open_pipes = len(readers)
    while open_pipes:
        name, line = lines.get()
        if line is None:
            open_pipes -= 1
            continue
        yield name, line

    for reader in readers:
        reader.join()


@contextmanager
def spawn(cmd: Sequence[str], cwd: Optional[str] = None, merge_stderr: bool = False):
    """Start *cmd* with text pipes; the child is killed if the caller fails."""
    logger.debug("spawning %s", cmd[:3])
    proc = subprocess.Popen(
        list(cmd),
        cwd=cwd,
        env=amalgamated_env(),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        bufsize=1,
    )
    try:
        yield proc
    except BaseException:
        proc.kill()
        proc.wait()
        raise


def run_command_and_stream_output(
    cmd: Sequence[str],
    line_parser: Callable[[str], Issue],
    stdout: IO[str],
    cwd: Optional[str] = None,
) -> int:
    """Run the child and write every stdout line to *stdout* as an issue.

    The child's stderr is forwarded to our stderr. Returns the exit code.
    """
    wrote_output = False
    with spawn(cmd, cwd=cwd) as proc:
        for name, line in stream_process_lines(proc):
            if name == STDERR:
                sys.stderr.write(line)
                continue
            stdout.write(format_issue(line_parser(line)) + "\n")
            stdout.flush()
            wrote_output = True
        returncode = proc.wait()

    if returncode != 0 and not wrote_output:
        write_error_as_issue(CheckProcessError(cmd, returncode), stdout)
    return returncode


def run_raw_check(args: Sequence[str], stdout: IO[str]) -> int:
    """Run the engine's native CLI and copy its combined output unmodified."""
    with spawn(check_cmd(args), merge_stderr=True) as proc:
        for _, line in stream_process_lines(proc):
            stdout.write(line)
            stdout.flush()
        return proc.wait()
