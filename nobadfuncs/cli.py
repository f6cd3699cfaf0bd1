#!/usr/bin/env python3
"""
nobadfuncs-asset CLI - the commands an orchestrator runs against the checker.

    nobadfuncs-asset type
    nobadfuncs-asset priority
    nobadfuncs-asset verify-config --config FILE
    nobadfuncs-asset check --config FILE [--pkg-dir DIR] [PKG ...]
    nobadfuncs-asset run-check-cmd [ARG ...]
    nobadfuncs-asset upgrade-config [--config-dir DIR]
"""

import argparse
import sys

from . import __version__
from .checker import default_registry
from .config import ConfigDecodeError, read_config_text
from .logger import configure_logging
from .scanner_types import PRIORITY, TYPE_NAME
from .upgrade import upgrade_config_dir


def read_config_yml(args: argparse.Namespace) -> str:
    """Checker YAML from --config-yml or --config FILE; empty when neither is given."""
    if args.config_yml is not None:
        return args.config_yml
    if args.config is None:
        return ""
    return read_config_text(args.config)


def cmd_type(args, stdout) -> int:
    stdout.write(f"{TYPE_NAME}\n")
    return 0


def cmd_priority(args, stdout) -> int:
    stdout.write(f"{PRIORITY}\n")
    return 0


def cmd_verify_config(args, stdout) -> int:
    try:
        default_registry().create(TYPE_NAME, read_config_yml(args))
    except (ConfigDecodeError, OSError) as e:
        stdout.write(f"invalid {TYPE_NAME} configuration: {e}\n")
        return 1
    return 0


def cmd_check(args, stdout) -> int:
    try:
        checker = default_registry().create(TYPE_NAME, read_config_yml(args))
    except (ConfigDecodeError, OSError) as e:
        stdout.write(f"invalid {TYPE_NAME} configuration: {e}\n")
        return 1
    return checker.check(args.packages, args.pkg_dir, stdout)


def run_check_cmd(engine_args, stdout) -> int:
    checker = default_registry().create(TYPE_NAME, "")
    return checker.run_check_cmd(engine_args, stdout)


def cmd_run_check_cmd(args, stdout) -> int:
    return run_check_cmd(args.args, stdout)


def cmd_upgrade_config(args, stdout) -> int:
    return upgrade_config_dir(args.config_dir, stdout)


def _add_config_flags(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--config", metavar="FILE", help="Checker YAML configuration file")
    source.add_argument("--config-yml", metavar="YAML", help="Checker YAML configuration")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=f"{TYPE_NAME}-asset",
        description=f"{TYPE_NAME} checker asset",
    )
    parser.add_argument("--version", "-v", action="version", version=f"{TYPE_NAME} {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("type", help="Print the checker type").set_defaults(func=cmd_type)
    sub.add_parser("priority", help="Print the checker priority").set_defaults(func=cmd_priority)

    verify = sub.add_parser("verify-config", help="Validate a checker configuration")
    _add_config_flags(verify)
    verify.set_defaults(func=cmd_verify_config)

    check = sub.add_parser("check", help="Run the check on packages")
    _add_config_flags(check)
    check.add_argument("--pkg-dir", default=".", help="Directory the packages are relative to")
    check.add_argument("packages", nargs="*", help="Packages (files or directories) to scan")
    check.set_defaults(func=cmd_check)

    raw = sub.add_parser("run-check-cmd", help="Run the engine CLI directly")
    raw.add_argument("args", nargs=argparse.REMAINDER, help="Arguments for the engine")
    raw.set_defaults(func=cmd_run_check_cmd)

    upgrade = sub.add_parser("upgrade-config", help="Upgrade legacy check configuration")
    upgrade.add_argument("--config-dir", default=".", help="Directory holding check.yml")
    upgrade.set_defaults(func=cmd_upgrade_config)
    return parser


def main(argv=None, stdout=None) -> int:
    configure_logging()
    argv = sys.argv[1:] if argv is None else list(argv)
    if argv and argv[0] == "run-check-cmd":
        # engine flags would be taken for our own options
        return run_check_cmd(argv[1:], stdout or sys.stdout)
    args = build_parser().parse_args(argv)
    return args.func(args, stdout or sys.stdout)


if __name__ == "__main__":
    sys.exit(main())
