"""Type definitions and constants for the nobadfuncs scanner."""

from typing import NamedTuple

TYPE_NAME = "nobadfuncs"
PRIORITY = 0

# Parameter list used when a callee's declaration cannot be located
UNKNOWN_PARAMS = "..."


class CallSite(NamedTuple):
    """A direct call expression with its resolved canonical signature."""

    path: str
    line: int
    column: int
    signature: str


class Diagnostic(NamedTuple):
    """A located report of one disallowed call."""

    path: str
    line: int
    column: int
    message: str
