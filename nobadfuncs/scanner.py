"""
nobadfuncs scanner - finds calls to denied functions and methods.

For every scan:
1. Collects the Python files of each target (a file or a directory tree)
2. Parses all of them and registers their module summaries
3. Walks each file and resolves the canonical signature of every direct call
4. Matches signatures against the configured table

Files are visited target by target, in lexical path order within a target.
Diagnostics within a file are ordered by line, then column.
"""

import ast
import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .config import ExcludeRules, SignatureTable
from .declarations import (
    BUILTIN_NAMES,
    CLASS,
    FUNCTION,
    ModuleSummary,
    Qualifier,
    resolve_relative,
    summarize_class,
    summarize_function,
    summarize_module,
    type_expression,
)
from .module_index import INSTANCE, MODULE, OPAQUE, ModuleIndex, Target
from .scanner_types import CallSite, Diagnostic
from .scanner_utils import iter_target_files, module_name_for, relative_path
from .signatures import format_signature

logger = logging.getLogger(__name__)

_COMPREHENSIONS = (ast.ListComp, ast.SetComp, ast.GeneratorExp, ast.DictComp)
_NESTED_SCOPES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda) + _COMPREHENSIONS


def callee_position(func: ast.expr) -> tuple[int, int]:
    """1-based (line, column) of the callee token.

    For ``x.f(...)`` that is the attribute name. Columns count UTF-8 bytes,
    as ast offsets do.
    """
    if isinstance(func, ast.Attribute):
        return func.end_lineno, func.end_col_offset - len(func.attr.encode("utf-8")) + 1
    return func.lineno, func.col_offset + 1


def _local_names(body: list[ast.stmt]) -> tuple[set[str], set[str]]:
    """Names bound in a function body, and names it declares global/nonlocal."""
    bound: set[str] = set()
    declared: set[str] = set()
    stack: list[ast.AST] = list(body)
    while stack:
        node = stack.pop()
        if isinstance(node, (ast.Global, ast.Nonlocal)):
            declared.update(node.names)
            continue
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            bound.add(node.name)
        elif isinstance(node, ast.Name) and isinstance(node.ctx, (ast.Store, ast.Del)):
            bound.add(node.id)
        elif isinstance(node, (ast.Import, ast.ImportFrom)):
            for alias in node.names:
                if alias.name != "*":
                    bound.add(alias.asname or alias.name.split(".")[0])
        elif isinstance(node, ast.ExceptHandler) and node.name:
            bound.add(node.name)
        if isinstance(node, _NESTED_SCOPES):
            # decorators, defaults and bases still run in this scope
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                stack.extend(node.decorator_list)
            continue
        stack.extend(ast.iter_child_nodes(node))
    return bound - declared, declared


@dataclass
class _Scope:
    kind: str  # function | class | comprehension
    qualname: str
    names: dict[str, Target | None] = field(default_factory=dict)
    declared: set[str] = field(default_factory=set)
    target: Target | None = None


class CallCollector(ast.NodeVisitor):
    """Walks one module and resolves the signature of every direct call."""

    def __init__(self, summary: ModuleSummary, index: ModuleIndex, path: str):
        self.summary = summary
        self.index = index
        self.path = path
        self.module = Target(MODULE, summary.name, summary)
        self.qualify = Qualifier(summary.name, summary.bindings)
        self.scopes: list[_Scope] = []
        self.calls: list[CallSite] = []

    # ------------------------------------------------------------------
    # Name resolution
    # ------------------------------------------------------------------

    def lookup(self, name: str) -> Target | None:
        for depth, scope in enumerate(reversed(self.scopes)):
            # class bodies are not visible from the functions they contain
            if scope.kind == "class" and depth > 0:
                continue
            if name in scope.declared:
                break
            if name in scope.names:
                return scope.names[name]
        if name in self.summary.bindings:
            return self.index.member(self.module, name)
        if name in BUILTIN_NAMES:
            return Target(OPAQUE, f"builtins.{name}")
        return None

    def resolve(self, expr: ast.expr) -> Target | None:
        if isinstance(expr, ast.Name):
            return self.lookup(expr.id)
        if isinstance(expr, ast.Attribute):
            base = self.resolve(expr.value)
            return None if base is None else self.index.member(base, expr.attr)
        return None

    def annotation_instance(self, annotation: ast.expr | None) -> Target | None:
        """The instance type an annotation declares, if it names a class."""
        expr = type_expression(annotation)
        if expr is None:
            return None
        cls = self.resolve(expr)
        if cls is None:
            return None
        if cls.kind == CLASS:
            return Target(INSTANCE, cls.qualname, cls.decl)
        if cls.kind == OPAQUE:
            return Target(INSTANCE, cls.qualname, None)
        return None

    def constructed_instance(self, value: ast.expr | None) -> Target | None:
        if not isinstance(value, ast.Call):
            return None
        cls = self.resolve(value.func)
        if cls is not None and cls.kind == CLASS:
            return Target(INSTANCE, cls.qualname, cls.decl)
        return None

    def _bind(self, name: str, target: Target | None) -> None:
        if self.scopes and name not in self.scopes[-1].declared:
            self.scopes[-1].names[name] = target

    def _qualname(self, name: str) -> str:
        if not self.scopes:
            return f"{self.summary.name}.{name}"
        scope = self.scopes[-1]
        if scope.kind == "class":
            return f"{scope.qualname}.{name}"
        return f"{scope.qualname}.<locals>.{name}"

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def visit_Call(self, node: ast.Call) -> None:
        target = self.resolve(node.func)
        if target is not None:
            signature = format_signature(target, self.index)
            if signature is not None:
                line, column = callee_position(node.func)
                self.calls.append(CallSite(self.path, line, column, signature))
        self.generic_visit(node)

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------

    def _visit_signature_parts(self, args: ast.arguments, returns: ast.expr | None) -> None:
        for default in list(args.defaults) + [d for d in args.kw_defaults if d is not None]:
            self.visit(default)
        every = list(args.posonlyargs) + list(args.args) + list(args.kwonlyargs)
        every += [a for a in (args.vararg, args.kwarg) if a is not None]
        for arg in every:
            if arg.annotation is not None:
                self.visit(arg.annotation)
        if returns is not None:
            self.visit(returns)

    def _function(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        for decorator in node.decorator_list:
            self.visit(decorator)
        self._visit_signature_parts(node.args, node.returns)

        qualname = self._qualname(node.name)
        enclosing = self.scopes[-1] if self.scopes else None
        in_class = enclosing is not None and enclosing.kind == "class"
        decl = summarize_function(node, qualname, self.qualify, in_class=in_class)
        if enclosing is not None and not in_class:
            self._bind(node.name, Target(FUNCTION, qualname, decl))

        bound, declared = _local_names(node.body)
        scope = _Scope("function", qualname, declared=declared)
        scope.names = dict.fromkeys(bound)

        args = node.args
        positional = list(args.posonlyargs) + list(args.args)
        every = positional + list(args.kwonlyargs)
        for arg in every + [a for a in (args.vararg, args.kwarg) if a is not None]:
            scope.names[arg.arg] = None
        for arg in every:
            if arg.annotation is not None:
                scope.names[arg.arg] = self.annotation_instance(arg.annotation)
        if in_class and enclosing.target is not None and positional:
            cls = enclosing.target
            if decl.kind in ("method", "property"):
                scope.names[positional[0].arg] = Target(INSTANCE, cls.qualname, cls.decl)
            elif decl.kind == "classmethod":
                scope.names[positional[0].arg] = cls

        self.scopes.append(scope)
        for stmt in node.body:
            self.visit(stmt)
        self.scopes.pop()

    visit_FunctionDef = _function
    visit_AsyncFunctionDef = _function

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        for expr in node.decorator_list + node.bases + [k.value for k in node.keywords]:
            self.visit(expr)
        qualname = self._qualname(node.name)
        cls = Target(CLASS, qualname, summarize_class(node, qualname, self.qualify))
        if self.scopes and self.scopes[-1].kind != "class":
            self._bind(node.name, cls)
        self.scopes.append(_Scope("class", qualname, target=cls))
        for stmt in node.body:
            self.visit(stmt)
        self.scopes.pop()

    def visit_Lambda(self, node: ast.Lambda) -> None:
        self._visit_signature_parts(node.args, None)
        args = node.args
        every = list(args.posonlyargs) + list(args.args) + list(args.kwonlyargs)
        every += [a for a in (args.vararg, args.kwarg) if a is not None]
        scope = _Scope("function", self._qualname("<lambda>"))
        scope.names = dict.fromkeys(a.arg for a in every)
        self.scopes.append(scope)
        self.visit(node.body)
        self.scopes.pop()

    def _comprehension(self, node) -> None:
        generators = node.generators
        self.visit(generators[0].iter)
        self.scopes.append(_Scope("comprehension", self._qualname("<comprehension>")))
        for i, generator in enumerate(generators):
            if i:
                self.visit(generator.iter)
            self.visit(generator.target)
            for condition in generator.ifs:
                self.visit(condition)
        if isinstance(node, ast.DictComp):
            self.visit(node.key)
            self.visit(node.value)
        else:
            self.visit(node.elt)
        self.scopes.pop()

    visit_ListComp = _comprehension
    visit_SetComp = _comprehension
    visit_GeneratorExp = _comprehension
    visit_DictComp = _comprehension

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, (ast.Store, ast.Del)):
            self._bind(node.id, None)

    def visit_Assign(self, node: ast.Assign) -> None:
        self.visit(node.value)
        for target in node.targets:
            self.visit(target)
        instance = self.constructed_instance(node.value)
        if instance is not None:
            for target in node.targets:
                if isinstance(target, ast.Name):
                    self._bind(target.id, instance)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        self.visit(node.annotation)
        if node.value is not None:
            self.visit(node.value)
        self.visit(node.target)
        if isinstance(node.target, ast.Name):
            self._bind(node.target.id, self.annotation_instance(node.annotation))

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            if alias.asname:
                local, dotted = alias.asname, alias.name
            else:
                local = dotted = alias.name.split(".")[0]
            self._bind(local, self.index.resolve_dotted(dotted) or Target(OPAQUE, dotted))

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        source = resolve_relative(
            self.summary.name, self.summary.is_package, node.level, node.module,
        )
        for alias in node.names:
            if alias.name == "*":
                continue
            dotted = f"{source}.{alias.name}" if source else alias.name
            self._bind(
                alias.asname or alias.name,
                self.index.resolve_dotted(dotted) or Target(OPAQUE, dotted),
            )


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------


def _syntax_error_column(e: SyntaxError) -> int:
    """Byte column of a syntax error; SyntaxError.offset counts characters."""
    if not e.offset:
        return 1
    if not e.text:
        return e.offset
    return len(e.text[:e.offset - 1].encode("utf-8")) + 1


@dataclass
class ParsedFile:
    """One source file: its rendered path and either a tree or a parse failure."""

    path: Path
    display_path: str
    tree: ast.Module | None = None
    summary: ModuleSummary | None = None
    root: Path | None = None
    error: Diagnostic | None = None


class SourceScanner:
    """Discovers, parses and walks the files of a set of scan targets."""

    def __init__(self, cwd: Path | str | None = None, exclude: ExcludeRules | None = None):
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self.exclude = exclude if exclude is not None else ExcludeRules()

    def discover(self, targets: Sequence[str]) -> list[Path]:
        """Files of every target, in scan order, without duplicates."""
        files: list[Path] = []
        seen: set[Path] = set()
        for target in targets:
            target_path = self.cwd / target
            found = iter_target_files(target_path, self.exclude)
            if not found:
                logger.warning("no Python files found for target %s", target)
            for path in found:
                key = path.resolve()
                if key not in seen:
                    seen.add(key)
                    files.append(path)
        return files

    def parse(self, path: Path) -> ParsedFile:
        display = relative_path(path, self.cwd)
        parsed = ParsedFile(path=path, display_path=display)
        try:
            source = path.read_bytes()
            parsed.tree = ast.parse(source, filename=display)
        except SyntaxError as e:
            parsed.error = Diagnostic(
                display, e.lineno or 1, _syntax_error_column(e), f"failed to parse file: {e.msg}",
            )
        except (OSError, ValueError, RecursionError) as e:
            parsed.error = Diagnostic(display, 1, 1, f"failed to parse file: {e}")
        return parsed

    def scan(self, targets: Sequence[str]) -> Iterator[tuple[ParsedFile, list[CallSite]]]:
        """Yield each file with its resolved call sites, in scan order."""
        parsed_files = [self.parse(path) for path in self.discover(targets)]

        index = ModuleIndex()
        for parsed in parsed_files:
            if parsed.tree is None:
                continue
            name, parsed.root, is_package = module_name_for(parsed.path)
            index.add_root(parsed.root)
            parsed.summary = summarize_module(parsed.tree, name, is_package)
            index.add(parsed.summary, parsed.root)

        for parsed in parsed_files:
            if parsed.tree is None:
                yield parsed, []
                continue
            collector = CallCollector(parsed.summary, index.for_root(parsed.root), parsed.display_path)
            try:
                collector.visit(parsed.tree)
            except RecursionError:
                parsed.error = Diagnostic(
                    parsed.display_path, 1, 1,
                    "failed to analyze file: maximum recursion depth exceeded",
                )
                yield parsed, []
                continue
            yield parsed, sorted(collector.calls, key=lambda c: (c.line, c.column))

    def check(self, targets: Sequence[str], table: SignatureTable) -> Iterator[Diagnostic]:
        """Yield the diagnostics for every denied call in *targets*."""
        for parsed, calls in self.scan(targets):
            if parsed.error is not None:
                yield parsed.error
                continue
            yield from match_calls(calls, table)


def match_calls(call_sites: Iterable[CallSite], table: SignatureTable) -> Iterator[Diagnostic]:
    """Emit a Diagnostic for every call site whose signature is in *table*."""
    for site in call_sites:
        message = table.get(site.signature)
        if message is not None:
            yield Diagnostic(site.path, site.line, site.column, message)
