"""
nobadfuncs - report calls to denied functions and methods.

A deny-list of canonical signatures is matched against every direct call
in a set of Python source trees.
"""

__version__ = "1.0.0"

from .config import CheckerConfig, ConfigDecodeError, SignatureTable, decode_config_json
from .scanner import SourceScanner, match_calls
from .scanner_types import CallSite, Diagnostic

__all__ = [
    "CallSite",
    "CheckerConfig",
    "ConfigDecodeError",
    "Diagnostic",
    "SignatureTable",
    "SourceScanner",
    "decode_config_json",
    "match_calls",
    "__version__",
]
