"""
nobadfuncs engine CLI.

    python -m nobadfuncs --config-json '{"func os._exit(...)": "do not call os._exit directly"}' .

Writes one ``<path>:<line>:<column>: <message>`` line per denied call and
exits 1 if any were found.
"""

import argparse
import sys

from . import __version__
from .logger import configure_logging
from .runner import Invocation, run


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nobadfuncs",
        description="nobadfuncs - report calls to denied functions and methods",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  nobadfuncs --config-json '{"func builtins.eval(...)": "no eval"}' .
  nobadfuncs --config check.yml src tests
  nobadfuncs --print-all src      List every call with its signature
        """,
    )
    parser.add_argument("--version", "-v", action="version", version=f"nobadfuncs {__version__}")
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--config-json", metavar="JSON",
        help="JSON map from signature to the message reported for it",
    )
    source.add_argument(
        "--config", metavar="FILE",
        help="YAML file with bad-funcs and exclude settings",
    )
    parser.add_argument(
        "--exclude-name", action="append", default=[], metavar="REGEX",
        help="Skip path components matching REGEX (repeatable)",
    )
    parser.add_argument(
        "--exclude-path", action="append", default=[], metavar="PATH",
        help="Skip this path below each target (repeatable)",
    )
    parser.add_argument(
        "--print-all", action="store_true",
        help="Print every resolved call with its signature",
    )
    parser.add_argument("targets", nargs="*", help="Python files or directories (default: .)")
    return parser


def main(argv=None, stdout=None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    invocation = Invocation(
        targets=args.targets or ["."],
        config_json=args.config_json,
        config_file=args.config,
        exclude_names=tuple(args.exclude_name),
        exclude_paths=tuple(args.exclude_path),
        print_all=args.print_all,
    )
    return run(invocation, stdout or sys.stdout)


if __name__ == "__main__":
    sys.exit(main())
