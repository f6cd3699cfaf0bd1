"""Shared test fixtures for nobadfuncs tests."""

import logging
import sys
import textwrap

import pytest

from nobadfuncs import logger as nobadfuncs_logger


class _StderrHandler(logging.Handler):
    """A handler that always writes to the *current* sys.stderr.

    Unlike StreamHandler(sys.stderr), this resolves sys.stderr at emit-time
    so it works with pytest's capsys fixture.
    """

    def emit(self, record):
        try:
            msg = self.format(record)
            sys.stderr.write(msg + "\n")
            sys.stderr.flush()
        except Exception:
            self.handleError(record)


@pytest.fixture(autouse=True)
def _setup_logging(monkeypatch):
    """Route all nobadfuncs loggers to stderr so capsys can capture them."""
    monkeypatch.setattr(nobadfuncs_logger, "_CONFIGURED", True)
    handler = _StderrHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    handler.setLevel(logging.DEBUG)

    root_logger = logging.getLogger("nobadfuncs")
    saved = root_logger.handlers[:]
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)
    root_logger.propagate = False

    yield

    root_logger.removeHandler(handler)
    root_logger.handlers[:] = saved


@pytest.fixture
def write_tree(tmp_path):
    """Write {relative path: source} into tmp_path and return tmp_path."""

    def write(files: dict, root=None):
        root = root or tmp_path
        for rel, source in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(source), encoding="utf-8")
        return root

    return write


@pytest.fixture
def scan_signatures(tmp_path, write_tree):
    """Write a tree, scan it, and return [(relative path, line, column, signature)]."""
    from nobadfuncs.scanner import SourceScanner

    def scan(files: dict, targets=(".",)):
        write_tree(files)
        scanner = SourceScanner(cwd=tmp_path)
        found = []
        for parsed, calls in scanner.scan(list(targets)):
            assert parsed.error is None, parsed.error
            found.extend(calls)
        return [(c.path, c.line, c.column, c.signature) for c in found]

    return scan
