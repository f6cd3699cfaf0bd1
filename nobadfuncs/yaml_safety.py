"""Safe YAML loading and deterministic dumping for nobadfuncs configuration.

Loading limits alias references to 100 to prevent exponential expansion
(billion laughs). Dumping keeps key order so upgraded documents read like
the documents they came from.
"""

from __future__ import annotations

import yaml

MAX_ALIASES = 100


def safe_yaml_load(stream):
    """yaml.safe_load replacement with alias bomb protection."""
    class _Loader(yaml.SafeLoader):
        def compose_node(self, parent, index):
            if self.check_event(yaml.AliasEvent):
                count = getattr(self, '_alias_count', 0) + 1
                if count > MAX_ALIASES:
                    raise yaml.YAMLError(f"YAML alias limit exceeded (max {MAX_ALIASES})")
                self._alias_count = count
            return super().compose_node(parent, index)
    return yaml.load(stream, Loader=_Loader)


def dump_yaml(document: dict) -> str:
    """Render *document* as block-style YAML, preserving key order."""
    return yaml.safe_dump(
        document,
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )


def error_position(err: yaml.YAMLError) -> tuple[int, int] | None:
    """Return the 1-based (line, column) of a YAML error, if PyYAML knows it."""
    mark = getattr(err, "problem_mark", None)
    if mark is None:
        return None
    return mark.line + 1, mark.column + 1
