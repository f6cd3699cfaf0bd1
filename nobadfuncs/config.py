"""
nobadfuncs configuration: the signature table and checker settings.

Supports:
- Flat JSON map passed on the command line: {"<signature>": "<message>"}
- Checker YAML document: {bad-funcs: {<signature>: <message>}, exclude: {...}}

Signatures are opaque keys. Nothing here checks that a signature is
well-formed; an entry that never matches a call site is simply never used.
"""

import json
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

import yaml

from .yaml_safety import error_position, safe_yaml_load

# YAML bomb protection - limit config file size
MAX_CONFIG_BYTES = 1_000_000

# Path components skipped below every scan target
DEFAULT_EXCLUDE_NAMES = (r"\..+", "vendor", "__pycache__")


class ConfigDecodeError(ValueError):
    """Configuration payload is not valid structured data of the expected shape."""

    def __init__(
        self,
        message: str,
        document: str,
        line: int | None = None,
        column: int | None = None,
    ):
        super().__init__(message)
        self.document = document
        self.line = line
        self.column = column


class SignatureTable(Mapping):
    """Immutable mapping from canonical signature to message."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, str] | None = None):
        self._entries = MappingProxyType(dict(entries or {}))

    def __getitem__(self, signature: str) -> str:
        return self._entries[signature]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"SignatureTable({dict(self._entries)!r})"

    def to_json(self) -> str:
        """Serialize as the flat JSON map accepted by --config-json."""
        return json.dumps(dict(self._entries), ensure_ascii=False)


@dataclass(frozen=True)
class ExcludeRules:
    """Which files below a scan target are skipped.

    names: regexes matched in full against each path component
    paths: path prefixes relative to the scan target
    """

    names: tuple[str, ...] = DEFAULT_EXCLUDE_NAMES
    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class CheckerConfig:
    """Decoded checker YAML configuration."""

    bad_funcs: SignatureTable = field(default_factory=SignatureTable)
    exclude: ExcludeRules = field(default_factory=ExcludeRules)


def _quote(document: str) -> str:
    return json.dumps(document, ensure_ascii=False)


def _string_map(value: object, document: str, what: str) -> dict[str, str]:
    """Check that *value* maps strings to strings."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigDecodeError(
            f"failed to unmarshal {what} {_quote(document)}: "
            f"expected a map of signatures to messages, got {type(value).__name__}",
            document,
        )
    for key, message in value.items():
        if not isinstance(key, str) or not isinstance(message, str):
            raise ConfigDecodeError(
                f"failed to unmarshal {what} {_quote(document)}: "
                f"entry {key!r}: {message!r} is not a string to string mapping",
                document,
            )
    return dict(value)


def _string_list(value: object, document: str, what: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigDecodeError(
            f"failed to unmarshal configuration YAML {_quote(document)}: "
            f"{what} must be a list of strings",
            document,
        )
    return tuple(value)


def decode_config_json(text: str) -> SignatureTable:
    """Decode the flat ``{"<signature>": "<message>"}`` JSON map."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigDecodeError(
            f"failed to unmarshal configuration JSON {_quote(text)}: {e}",
            text, e.lineno, e.colno,
        ) from e
    return SignatureTable(_string_map(data, text, "configuration JSON"))


def decode_exclude(value: object, document: str) -> ExcludeRules:
    """Decode an ``exclude: {names: [...], paths: [...]}`` block.

    Configured names are added to the defaults.
    """
    if value is None:
        return ExcludeRules()
    if not isinstance(value, dict):
        raise ConfigDecodeError(
            f"failed to unmarshal configuration YAML {_quote(document)}: "
            "exclude must be a map",
            document,
        )
    names = _string_list(value.get("names"), document, "exclude.names")
    for name in names:
        try:
            re.compile(name)
        except re.error as e:
            raise ConfigDecodeError(
                f"failed to unmarshal configuration YAML {_quote(document)}: "
                f"invalid exclude name regex {name!r}: {e}",
                document,
            ) from e
    paths = _string_list(value.get("paths"), document, "exclude.paths")
    return ExcludeRules(names=DEFAULT_EXCLUDE_NAMES + names, paths=paths)


def decode_checker_config(text: str) -> CheckerConfig:
    """Decode the checker YAML document (``bad-funcs`` and ``exclude``)."""
    try:
        data = safe_yaml_load(text)
    except yaml.YAMLError as e:
        position = error_position(e) or (None, None)
        raise ConfigDecodeError(
            f"failed to unmarshal configuration YAML {_quote(text)}: {e}",
            text, *position,
        ) from e

    if data is None:
        return CheckerConfig()
    if not isinstance(data, dict):
        raise ConfigDecodeError(
            f"failed to unmarshal configuration YAML {_quote(text)}: "
            f"expected a map, got {type(data).__name__}",
            text,
        )

    bad_funcs = _string_map(data.get("bad-funcs"), text, "configuration YAML")
    return CheckerConfig(
        bad_funcs=SignatureTable(bad_funcs),
        exclude=decode_exclude(data.get("exclude"), text),
    )


def read_config_text(config_path: Path | str) -> str:
    """Text of a checker YAML configuration file, after the existence and size checks."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    if config_path.stat().st_size > MAX_CONFIG_BYTES:
        raise ConfigDecodeError(f"Config file too large: {config_path}", "")

    return config_path.read_text(encoding="utf-8")


def load_config_file(config_path: Path | str) -> CheckerConfig:
    """Load a checker YAML configuration file."""
    return decode_checker_config(read_config_text(config_path))
