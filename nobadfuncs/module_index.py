"""Per-invocation index of module summaries and dotted-name resolution.

Scanned modules are added up front. Any other module is located on the
search path (scan roots first, then sys.path) with PathFinder, which finds
the source file without importing the module, and is summarized on first
use. Modules without Python source (builtins, extensions, packages that
are not installed) are opaque: names inside them resolve to OPAQUE
targets whose declarations are unknown.
"""

import ast
import logging
import sys
from importlib.machinery import ModuleSpec, PathFinder
from pathlib import Path
from typing import NamedTuple

from .declarations import (
    AMBIGUOUS,
    CLASS,
    FUNCTION,
    IMPORT,
    VARIABLE,
    Binding,
    ClassSummary,
    FunctionDecl,
    ModuleSummary,
    summarize_module,
)

logger = logging.getLogger(__name__)

# Target kinds
MODULE = "module"
INSTANCE = "instance"
METHOD = "method"
OPAQUE = "opaque"

# Re-export chains longer than this are treated as cycles
MAX_ALIAS_DEPTH = 32

_OBJECT = "builtins.object"


class Target(NamedTuple):
    """What an expression refers to.

    FUNCTION: decl is a FunctionDecl
    CLASS / INSTANCE: decl is a ClassSummary, or None when the class source is unknown
    METHOD: decl is a FunctionDecl or None; receiver is the declaring class
    MODULE: decl is a ModuleSummary, or None when the module has no source
    OPAQUE: something exists under qualname but its declaration is unknown
    """

    kind: str
    qualname: str
    decl: object = None
    receiver: str = ""
    via_instance: bool = False


class ModuleIndex:
    """Module summaries for one invocation.

    Scanned summaries are keyed by the root they were found under, so two
    roots may each hold a module of the same name. Use ``for_root`` to get
    the view an importer under a given root resolves through.
    """

    def __init__(self, roots=()):
        self._roots: list[str] = []
        self._scanned: dict[tuple[str, str], ModuleSummary] = {}
        self._primary: str | None = None
        self._views: dict[str, ModuleIndex] = {}
        self._specs: dict[str, ModuleSpec | None] = {}
        self._summaries: dict[str, ModuleSummary | None] = {}
        for root in roots:
            self.add_root(root)

    def add_root(self, root: Path | str) -> None:
        root = str(root)
        if root not in self._roots:
            self._roots.append(root)

    def add(self, summary: ModuleSummary, root: Path | str | None = None) -> None:
        """Register a scanned module found under *root*; it takes precedence over the search path."""
        self._scanned[(str(root) if root is not None else "", summary.name)] = summary

    def for_root(self, root: Path | str) -> "ModuleIndex":
        """The view for files under *root*: absolute imports try *root* first, like sys.path[0]."""
        root = str(root)
        view = self._views.get(root)
        if view is None:
            view = ModuleIndex()
            view._roots = self._roots
            view._scanned = self._scanned
            view._primary = root
            self._views[root] = view
        return view

    @property
    def search_roots(self) -> list[str]:
        if self._primary is None:
            return self._roots
        return [self._primary] + [r for r in self._roots if r != self._primary]

    @property
    def search_path(self) -> list[str]:
        roots = self.search_roots
        return roots + [p for p in sys.path if p and p not in roots]

    # ------------------------------------------------------------------
    # Module lookup
    # ------------------------------------------------------------------

    def _scanned_summary(self, name: str) -> ModuleSummary | None:
        for root in [*self.search_roots, ""]:
            summary = self._scanned.get((root, name))
            if summary is not None:
                return summary
        return None

    def _locate(self, name: str) -> ModuleSpec | None:
        if name in self._specs:
            return self._specs[name]
        head, _, tail = name.rpartition(".")
        spec = None
        try:
            if not head:
                spec = PathFinder.find_spec(name, self.search_path)
            else:
                parent = self._locate(head)
                locations = parent.submodule_search_locations if parent else None
                if locations:
                    spec = PathFinder.find_spec(name, list(locations))
        except (ImportError, ValueError) as e:
            logger.debug("cannot locate module %s: %s", name, e)
        self._specs[name] = spec
        return spec

    def is_module(self, name: str) -> bool:
        if self._scanned_summary(name) is not None:
            return True
        return self._locate(name) is not None

    def summary(self, name: str) -> ModuleSummary | None:
        if name not in self._summaries:
            self._summaries[name] = self._scanned_summary(name) or self._load(name)
        return self._summaries[name]

    def _load(self, name: str) -> ModuleSummary | None:
        spec = self._locate(name)
        origin = spec.origin if spec else None
        if not origin or not origin.endswith(".py"):
            return None
        try:
            tree = ast.parse(Path(origin).read_bytes(), filename=origin)
        except (OSError, SyntaxError, ValueError, RecursionError) as e:
            logger.debug("cannot summarize module %s from %s: %s", name, origin, e)
            return None
        is_package = spec.submodule_search_locations is not None
        return summarize_module(tree, name, is_package)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_dotted(self, dotted: str, depth: int = 0) -> Target | None:
        """Resolve an absolute dotted name such as 'os.path.join'."""
        if depth > MAX_ALIAS_DEPTH:
            return None
        parts = dotted.split(".")
        target = None
        for i in range(len(parts), 0, -1):
            prefix = ".".join(parts[:i])
            if self.is_module(prefix):
                target = Target(MODULE, prefix, self.summary(prefix))
                break
        if target is None:
            # top-level name not found anywhere: keep it as written
            return Target(OPAQUE, dotted)
        for attr in parts[i:]:
            target = self.member(target, attr, depth)
            if target is None:
                return None
        return target

    def member(self, target: Target, attr: str, depth: int = 0) -> Target | None:
        """Resolve ``<target>.<attr>``."""
        if target.kind == MODULE:
            return self._module_member(target, attr, depth)
        if target.kind == OPAQUE:
            return Target(OPAQUE, f"{target.qualname}.{attr}")
        if target.kind in (CLASS, INSTANCE):
            return self._class_member(target, attr, depth)
        # attributes of functions and methods are values
        return None

    def _module_member(self, target: Target, attr: str, depth: int) -> Target | None:
        summary = target.decl
        qualname = f"{target.qualname}.{attr}"
        if summary is not None:
            binding = summary.bindings.get(attr)
            if binding is not None:
                return self.from_binding(binding, qualname, depth)

        if self.is_module(qualname):
            return Target(MODULE, qualname, self.summary(qualname))
        if summary is None:
            return Target(OPAQUE, qualname)

        for source in summary.star_imports:
            star = self.resolve_dotted(source, depth + 1)
            if star is None or star.kind not in (MODULE, OPAQUE):
                continue
            if star.kind == OPAQUE or star.decl is None:
                return Target(OPAQUE, qualname)
            found = self._module_member(star, attr, depth + 1)
            if found is not None:
                return found
        return None

    def from_binding(self, binding: Binding, qualname: str, depth: int = 0) -> Target | None:
        """Turn a name binding into a target; *qualname* is the name as referenced."""
        if binding.kind == IMPORT:
            return self.resolve_dotted(binding.target, depth + 1)
        if binding.kind == FUNCTION:
            return Target(FUNCTION, binding.decl.qualname, binding.decl)
        if binding.kind == CLASS:
            return Target(CLASS, binding.decl.qualname, binding.decl)
        if binding.kind == AMBIGUOUS:
            return Target(OPAQUE, qualname)
        if binding.kind == VARIABLE and binding.target:
            return self.instance_of(binding.target, binding.annotated, depth + 1)
        return None

    def instance_of(self, type_name: str, annotated: bool, depth: int = 0) -> Target | None:
        """An instance of the class named *type_name*.

        A constructor call only types its result when the callee is a class
        with visible source. An annotation is trusted even when the class
        source is unknown.
        """
        cls = self.resolve_dotted(type_name, depth)
        if cls is None:
            return None
        if cls.kind == CLASS:
            return Target(INSTANCE, cls.qualname, cls.decl)
        if cls.kind == OPAQUE and annotated:
            return Target(INSTANCE, cls.qualname, None)
        return None

    def lookup_member(
        self, cls: ClassSummary, attr: str, depth: int = 0,
    ) -> tuple[ClassSummary | None, FunctionDecl | Binding | None, bool]:
        """Find *attr* on *cls* or its bases.

        Returns:
            (declaring class, method or field, whether every base could be searched)
        """
        seen: set[str] = set()
        complete = True

        def walk(current: ClassSummary):
            nonlocal complete
            if current.qualname in seen:
                return None
            seen.add(current.qualname)
            if attr in current.methods:
                return current, current.methods[attr]
            if attr in current.fields:
                return current, current.fields[attr]
            for base in current.bases:
                if base is None:
                    complete = False
                    continue
                resolved = self.resolve_dotted(base, depth + 1)
                if resolved is None or resolved.kind != CLASS or resolved.decl is None:
                    if not (resolved and resolved.qualname == _OBJECT):
                        complete = False
                    continue
                found = walk(resolved.decl)
                if found is not None:
                    return found
            return None

        found = walk(cls)
        if found is None:
            return None, None, complete
        return found[0], found[1], complete

    def _class_member(self, target: Target, attr: str, depth: int) -> Target | None:
        via_instance = target.kind == INSTANCE
        cls = target.decl
        unknown = Target(
            METHOD, f"{target.qualname}.{attr}",
            receiver=target.qualname, via_instance=via_instance,
        )
        if cls is None:
            return unknown

        owner, found, complete = self.lookup_member(cls, attr, depth)
        if isinstance(found, FunctionDecl):
            return Target(METHOD, found.qualname, found, owner.qualname, via_instance)
        if isinstance(found, Binding):
            return self.from_binding(found, f"{owner.qualname}.{attr}", depth)
        return None if complete else unknown
