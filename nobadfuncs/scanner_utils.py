"""Utility functions for the nobadfuncs scanner."""

import os
import re
from pathlib import Path

from .config import ExcludeRules

PY_SUFFIX = ".py"


def is_excluded(rel_path: Path, rules: ExcludeRules) -> bool:
    """Check if a path relative to a scan target matches the exclusion rules."""
    for part in rel_path.parts:
        if any(re.fullmatch(name, part) for name in rules.names):
            return True
    for prefix in rules.paths:
        prefix_parts = Path(prefix).parts
        if prefix_parts and rel_path.parts[:len(prefix_parts)] == prefix_parts:
            return True
    return False


def iter_target_files(target: Path, rules: ExcludeRules) -> list[Path]:
    """List the Python files of one scan target in lexical order.

    A file target is returned as-is. A directory target is walked
    recursively; exclusion rules only apply below the target itself.
    """
    if target.is_file():
        return [target] if target.suffix == PY_SUFFIX else []
    if not target.is_dir():
        return []

    files = []
    for dirpath, dirnames, filenames in os.walk(target):
        rel_dir = Path(dirpath).relative_to(target)
        dirnames[:] = sorted(
            d for d in dirnames if not is_excluded(rel_dir / d, rules)
        )
        for name in filenames:
            if name.endswith(PY_SUFFIX) and not is_excluded(rel_dir / name, rules):
                files.append(Path(dirpath) / name)
    return sorted(files, key=lambda p: p.relative_to(target).as_posix())


def relative_path(path: Path | str, cwd: Path | str) -> str:
    """Render *path* relative to *cwd*, using '..' segments for ancestors."""
    return os.path.relpath(os.path.abspath(path), os.path.abspath(cwd))


def module_name_for(path: Path) -> tuple[str, Path, bool]:
    """Derive the dotted module name of a source file.

    Walks up through directories carrying an ``__init__.py``.

    Returns:
        (module name, import root directory, whether the file is a package __init__)
    """
    path = Path(os.path.abspath(path))
    is_package = path.name == "__init__.py"
    parts = [] if is_package else [path.stem]
    directory = path.parent
    while (directory / "__init__.py").exists() and directory.parent != directory:
        parts.insert(0, directory.name)
        directory = directory.parent
    if not parts:
        # stray __init__.py outside any package directory
        parts = [path.parent.name or "__init__"]
    return ".".join(parts), directory, is_package
