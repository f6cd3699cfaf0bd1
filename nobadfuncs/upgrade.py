"""Configuration upgrades for nobadfuncs.

Legacy check configuration passed the signature table as engine arguments:

    checks:
      nobadfuncs:
        args: ["--config", '{"<signature>": "<message>"}']
        filters:
          - type: name
            value: ".*.pb.go"

The current schema carries it as structured configuration:

    checks:
      nobadfuncs:
        config:
          bad-funcs:
            <signature>: <message>
        exclude:
          names: [".*.pb.go"]

Each legacy version has one total conversion in CONVERTERS. Documents that
are already current are returned byte-for-byte. Nothing is written unless
the whole upgrade succeeds.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO

import yaml

from .scanner_types import TYPE_NAME
from .scanner_utils import relative_path
from .yaml_safety import dump_yaml, safe_yaml_load

logger = logging.getLogger(__name__)

LEGACY_CONFIG_FILE = "check.yml"
CURRENT_CONFIG_FILE = "check-plugin.yml"
UPGRADED_NOTICE = f"Upgraded configuration for {CURRENT_CONFIG_FILE}"

ASSET_NAME = f"{TYPE_NAME}-asset"
CONFIG_FLAG = "--config"

# Legacy filter types that map onto exclude rules
_FILTER_EXCLUDE_KEYS = {"name": "names", "path": "paths"}


class ConfigVersion(Enum):
    LEGACY = "legacy"
    V0 = "0"


class UpgradeErrorKind(Enum):
    UNSUPPORTED_ARGS = "unsupported_args"
    WRONG_ARGS_LENGTH = "wrong_args_length"
    MALFORMED_JSON_MAP = "malformed_json_map"
    INVALID_DOCUMENT = "invalid_document"


class UpgradeError(ValueError):
    """A legacy check configuration that cannot be converted."""

    def __init__(self, kind: UpgradeErrorKind, cause: str, check: str = TYPE_NAME):
        self.kind = kind
        self.check = check
        self.cause = cause
        super().__init__(
            f'failed to upgrade check "{check}" legacy configuration: '
            f"failed to upgrade asset configuration: {cause}"
        )


@dataclass(frozen=True)
class LegacyCheckConfig:
    """A ``checks.nobadfuncs`` entry in the legacy schema."""

    args: tuple | None = None
    filters: tuple = ()
    rest: dict = field(default_factory=dict)
    version: ConfigVersion = ConfigVersion.LEGACY

    @classmethod
    def from_node(cls, node: object) -> LegacyCheckConfig:
        if node is None:
            return cls()
        if not isinstance(node, dict):
            raise UpgradeError(
                UpgradeErrorKind.INVALID_DOCUMENT,
                f"expected a map, got {type(node).__name__}",
            )
        args = node.get("args")
        filters = node.get("filters") or []
        if not isinstance(filters, list):
            raise UpgradeError(UpgradeErrorKind.INVALID_DOCUMENT, '"filters" must be a list')
        rest = {k: v for k, v in node.items() if k not in ("args", "filters")}
        return cls(
            args=tuple(args) if isinstance(args, list) else args,
            filters=tuple(filters),
            rest=rest,
        )


@dataclass(frozen=True)
class CurrentCheckConfig:
    """A ``checks.nobadfuncs`` entry in the current schema."""

    node: dict = field(default_factory=dict)
    version: ConfigVersion = ConfigVersion.V0


@dataclass
class UpgradeResult:
    text: str
    upgraded: bool
    notice: str | None = None


def _json_error_cause(text: str, err: json.JSONDecodeError) -> str:
    if err.pos >= len(text):
        return f"unexpected end of JSON input: {err}"
    return f"invalid character {text[err.pos]!r}: {err}"


def upgrade_asset_args(args: object) -> dict[str, str]:
    """Decode the legacy ``["--config", "<json map>"]`` engine arguments."""
    if not isinstance(args, (list, tuple)) or not args or args[0] != CONFIG_FLAG:
        raise UpgradeError(
            UpgradeErrorKind.UNSUPPORTED_ARGS,
            f'{ASSET_NAME} only supports legacy configuration if the first element '
            f'in "args" is "{CONFIG_FLAG}"',
        )
    if len(args) != 2:
        raise UpgradeError(
            UpgradeErrorKind.WRONG_ARGS_LENGTH,
            f'{ASSET_NAME} only supports legacy configuration if "args" has exactly '
            f'one element after "{CONFIG_FLAG}"',
        )

    prefix = f'failed to unmarshal second element of "args" in {ASSET_NAME} legacy configuration as JSON map'
    raw = args[1]
    if not isinstance(raw, str):
        raise UpgradeError(
            UpgradeErrorKind.MALFORMED_JSON_MAP,
            f"{prefix}: expected a string, got {type(raw).__name__}",
        )
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise UpgradeError(
            UpgradeErrorKind.MALFORMED_JSON_MAP, f"{prefix}: {_json_error_cause(raw, e)}",
        ) from e
    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in data.items()
    ):
        raise UpgradeError(
            UpgradeErrorKind.MALFORMED_JSON_MAP,
            f"{prefix}: cannot unmarshal {type(data).__name__} into a map of string to string",
        )
    return data


def _migrate_filters(filters: tuple, exclude: dict) -> list:
    """Move name and path filters into *exclude*; return the filters left over."""
    remaining = []
    for item in filters:
        kind = item.get("type") if isinstance(item, dict) else None
        value = item.get("value") if isinstance(item, dict) else None
        key = _FILTER_EXCLUDE_KEYS.get(kind)
        if key is None or not isinstance(value, str):
            remaining.append(item)
            continue
        exclude.setdefault(key, [])
        if value not in exclude[key]:
            exclude[key].append(value)
    return remaining


def convert_legacy(legacy: LegacyCheckConfig) -> CurrentCheckConfig:
    node = dict(legacy.rest)

    bad_funcs = upgrade_asset_args(legacy.args) if legacy.args else None

    existing = node.pop("exclude", None)
    exclude = {k: list(v) for k, v in existing.items()} if isinstance(existing, dict) else {}
    remaining = _migrate_filters(legacy.filters, exclude)
    if remaining:
        node["filters"] = remaining
    if exclude:
        node["exclude"] = exclude
    elif existing is not None:
        node["exclude"] = existing

    if bad_funcs is not None:
        config = node.get("config")
        config = dict(config) if isinstance(config, dict) else {}
        config["bad-funcs"] = bad_funcs
        node["config"] = config
    return CurrentCheckConfig(node=node)


CONVERTERS: dict[ConfigVersion, Callable[[LegacyCheckConfig], CurrentCheckConfig]] = {
    ConfigVersion.LEGACY: convert_legacy,
}


def upgrade_config_document(text: str, legacy: bool) -> UpgradeResult:
    """Upgrade a ``checks:`` document.

    Raises:
        UpgradeError: if the nobadfuncs entry cannot be converted.
        yaml.YAMLError: if the document is not valid YAML.
    """
    if not legacy:
        return UpgradeResult(text=text, upgraded=False)

    document = safe_yaml_load(text) or {}
    if not isinstance(document, dict):
        raise UpgradeError(UpgradeErrorKind.INVALID_DOCUMENT, "configuration must be a map")
    checks = document.get("checks") or {}
    if not isinstance(checks, dict):
        raise UpgradeError(UpgradeErrorKind.INVALID_DOCUMENT, '"checks" must be a map')

    if TYPE_NAME in checks:
        legacy_config = LegacyCheckConfig.from_node(checks[TYPE_NAME])
        current = CONVERTERS[legacy_config.version](legacy_config)
        checks = {**checks, TYPE_NAME: current.node}
        document = {**document, "checks": checks}

    return UpgradeResult(text=dump_yaml(document), upgraded=True, notice=UPGRADED_NOTICE)


def _atomic_write(path: Path, content: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def _report_failure(stdout: IO[str], current_path: Path, err: object) -> int:
    stdout.write(
        "Failed to upgrade configuration:\n"
        f"\t{relative_path(current_path, Path.cwd())}: failed to upgrade configuration: {err}\n"
    )
    stdout.flush()
    return 1


def upgrade_config_dir(config_dir: Path | str, stdout: IO[str]) -> int:
    """Upgrade the check configuration in *config_dir*.

    A legacy ``check.yml`` is converted into ``check-plugin.yml``. A current
    ``check-plugin.yml`` is left untouched, and having both files is an
    error. Returns the exit code.
    """
    config_dir = Path(config_dir)
    legacy_path = config_dir / LEGACY_CONFIG_FILE
    current_path = config_dir / CURRENT_CONFIG_FILE

    if legacy_path.is_file() and current_path.is_file():
        return _report_failure(
            stdout, current_path,
            f"{LEGACY_CONFIG_FILE} and {CURRENT_CONFIG_FILE} both exist; remove one of them",
        )
    if legacy_path.is_file():
        text, legacy = legacy_path.read_text(encoding="utf-8"), True
    elif current_path.is_file():
        text, legacy = current_path.read_text(encoding="utf-8"), False
    else:
        logger.info("no check configuration found in %s", config_dir)
        return 0

    try:
        result = upgrade_config_document(text, legacy)
    except (UpgradeError, yaml.YAMLError) as e:
        return _report_failure(stdout, current_path, e)

    if not result.upgraded:
        return 0

    try:
        _atomic_write(current_path, result.text)
    except OSError as e:
        logger.error("cannot write %s: %s", current_path, e)
        return _report_failure(stdout, current_path, e)
    legacy_path.unlink()
    logger.info("upgraded %s to %s", legacy_path, current_path)
    stdout.write(result.notice + "\n")
    stdout.flush()
    return 0
