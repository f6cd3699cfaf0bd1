"""Module summaries: what a Python module declares, imports and binds.

A summary is built from the module's AST without executing it. It records
every module-level name with the kind of thing bound to it, and renders
function declarations into the parameter/result text used by canonical
signatures. Names in annotations are qualified through the declaring
module's imports, so ``req: Request`` after ``from requests import Request``
renders as ``requests.Request``.
"""

import ast
import builtins
import copy
from dataclasses import dataclass, field
from typing import Callable, NamedTuple

# Binding kinds
IMPORT = "import"
FUNCTION = "function"
CLASS = "class"
VARIABLE = "variable"
AMBIGUOUS = "ambiguous"

# Rendered type of an unannotated parameter
UNTYPED = "Any"

BUILTIN_NAMES = frozenset(dir(builtins))

_TRY_NODES = tuple({ast.Try, getattr(ast, "TryStar", ast.Try)})
_BLOCK_NODES = (ast.If, ast.For, ast.AsyncFor, ast.While, ast.With, ast.AsyncWith)
_PROPERTY_DECORATORS = {"property", "cached_property"}


class FunctionDecl(NamedTuple):
    """A declared function or method, rendered for signatures."""

    qualname: str
    params: tuple[str, ...]
    returns: str | None
    kind: str = "function"  # function | method | staticmethod | classmethod | property


class Binding(NamedTuple):
    """What a name is bound to.

    target: dotted import target (IMPORT) or qualified type name (VARIABLE)
    decl: FunctionDecl (FUNCTION) or ClassSummary (CLASS)
    annotated: the VARIABLE type comes from an annotation, not a constructor call
    """

    kind: str
    target: str = ""
    decl: object = None
    annotated: bool = False


@dataclass
class ClassSummary:
    """A class body: its bases, methods and typed instance attributes."""

    qualname: str
    bases: tuple[str | None, ...] = ()
    methods: dict[str, FunctionDecl] = field(default_factory=dict)
    fields: dict[str, Binding] = field(default_factory=dict)
    decorated: bool = False


@dataclass
class ModuleSummary:
    """Module-level bindings of one module."""

    name: str
    is_package: bool = False
    bindings: dict[str, Binding] = field(default_factory=dict)
    star_imports: list[str] = field(default_factory=list)


def dotted_name(node: ast.AST) -> str | None:
    """Return 'a.b.c' for a Name/Attribute chain, None for anything else."""
    parts = []
    while isinstance(node, ast.Attribute):
        parts.append(node.attr)
        node = node.value
    if not isinstance(node, ast.Name):
        return None
    parts.append(node.id)
    return ".".join(reversed(parts))


def resolve_relative(module: str, is_package: bool, level: int, target: str | None) -> str:
    """Turn a relative import of *module* into an absolute dotted name."""
    if level == 0:
        return target or ""
    parts = module.split(".")
    if not is_package:
        parts = parts[:-1]
    if level > 1:
        parts = parts[:max(len(parts) - (level - 1), 0)]
    base = ".".join(parts)
    if not target:
        return base
    return f"{base}.{target}" if base else target


class Qualifier:
    """Qualifies dotted names through a module's bindings."""

    def __init__(self, module: str, bindings: dict[str, Binding]):
        self.module = module
        self.bindings = bindings

    def __call__(self, dotted: str) -> str:
        head, _, rest = dotted.partition(".")
        binding = self.bindings.get(head)
        if binding is None:
            return dotted
        base = binding.target if binding.kind == IMPORT else f"{self.module}.{head}"
        return f"{base}.{rest}" if rest else base


class _AnnotationQualifier(ast.NodeTransformer):
    def __init__(self, qualify: Callable[[str], str]):
        self.qualify = qualify

    def visit_Name(self, node):
        return ast.copy_location(ast.Name(id=self.qualify(node.id), ctx=node.ctx), node)

    def visit_Attribute(self, node):
        dotted = dotted_name(node)
        if dotted is None:
            return self.generic_visit(node)
        return ast.copy_location(ast.Name(id=self.qualify(dotted), ctx=node.ctx), node)

    def visit_Subscript(self, node):
        node.value = self.visit(node.value)
        value = dotted_name(node.value)
        # Literal[...] arguments are values, not type names
        if not (value and value.rsplit(".", 1)[-1] == "Literal"):
            node.slice = self.visit(node.slice)
        return node

    def visit_Constant(self, node):
        if not isinstance(node.value, str):
            return node
        try:
            expr = ast.parse(node.value.strip(), mode="eval").body
        except SyntaxError:
            return node
        return self.visit(expr)


def annotation_text(annotation: ast.expr | None, qualify: Callable[[str], str]) -> str:
    """Render a parameter annotation with names qualified."""
    if annotation is None:
        return UNTYPED
    qualified = _AnnotationQualifier(qualify).visit(copy.deepcopy(annotation))
    if isinstance(qualified, ast.Constant) and isinstance(qualified.value, str):
        return qualified.value
    return ast.unparse(qualified)


def _returns_text(annotation: ast.expr | None, qualify: Callable[[str], str]) -> str | None:
    if annotation is None:
        return None
    if isinstance(annotation, ast.Constant) and annotation.value in (None, "None"):
        return None
    return annotation_text(annotation, qualify)


def type_expression(annotation: ast.expr | None) -> ast.expr | None:
    """Strip string quoting and Optional wrappers off a type annotation."""
    if isinstance(annotation, ast.Constant) and isinstance(annotation.value, str):
        try:
            annotation = ast.parse(annotation.value.strip(), mode="eval").body
        except SyntaxError:
            return None
    if isinstance(annotation, ast.BinOp) and isinstance(annotation.op, ast.BitOr):
        sides = [s for s in (annotation.left, annotation.right)
                 if not (isinstance(s, ast.Constant) and s.value is None)]
        return type_expression(sides[0]) if len(sides) == 1 else None
    if isinstance(annotation, ast.Subscript):
        value = dotted_name(annotation.value)
        if value and value.rsplit(".", 1)[-1] == "Optional":
            return type_expression(annotation.slice)
        return None
    return annotation


def _type_ref(annotation: ast.expr | None, qualify: Callable[[str], str]) -> str | None:
    expr = type_expression(annotation)
    dotted = dotted_name(expr) if expr is not None else None
    return qualify(dotted) if dotted else None


def _decorator_names(node) -> set[str]:
    names = set()
    for decorator in node.decorator_list:
        dotted = dotted_name(decorator)
        if dotted:
            names.add(dotted.rsplit(".", 1)[-1])
            if dotted.endswith((".setter", ".getter", ".deleter")):
                names.add("property")
    return names


def summarize_function(
    node: ast.FunctionDef | ast.AsyncFunctionDef,
    qualname: str,
    qualify: Callable[[str], str],
    in_class: bool = False,
) -> FunctionDecl:
    """Render a def into a FunctionDecl.

    Type parameters of generic functions are not substituted: annotations
    are rendered exactly as declared.
    """
    kind = "function"
    if in_class:
        decorators = _decorator_names(node)
        if decorators & _PROPERTY_DECORATORS:
            kind = "property"
        elif "staticmethod" in decorators:
            kind = "staticmethod"
        elif "classmethod" in decorators:
            kind = "classmethod"
        else:
            kind = "method"

    args = node.args
    positional = list(args.posonlyargs) + list(args.args)
    if kind in ("method", "classmethod", "property") and positional:
        positional = positional[1:]

    params = [annotation_text(a.annotation, qualify) for a in positional]
    if args.vararg is not None:
        params.append("*" + annotation_text(args.vararg.annotation, qualify))
    params.extend(annotation_text(a.annotation, qualify) for a in args.kwonlyargs)
    if args.kwarg is not None:
        params.append("**" + annotation_text(args.kwarg.annotation, qualify))

    return FunctionDecl(
        qualname=qualname,
        params=tuple(params),
        returns=_returns_text(node.returns, qualify),
        kind=kind,
    )


def _merge_field(fields: dict[str, Binding], name: str, binding: Binding) -> None:
    existing = fields.get(name)
    if existing is None or (binding.annotated and not existing.annotated):
        fields[name] = binding
    elif existing.target != binding.target and not existing.annotated:
        fields[name] = Binding(VARIABLE)


def _collect_self_fields(
    method: ast.FunctionDef | ast.AsyncFunctionDef,
    qualify: Callable[[str], str],
    fields: dict[str, Binding],
) -> None:
    """Record ``self.x: T`` and ``self.x = T(...)`` assignments of a method."""
    positional = list(method.args.posonlyargs) + list(method.args.args)
    if not positional:
        return
    receiver = positional[0].arg

    def is_self_attr(target):
        return (isinstance(target, ast.Attribute)
                and isinstance(target.value, ast.Name)
                and target.value.id == receiver)

    for node in ast.walk(method):
        if isinstance(node, ast.AnnAssign) and is_self_attr(node.target):
            ref = _type_ref(node.annotation, qualify)
            _merge_field(fields, node.target.attr, Binding(VARIABLE, ref or "", annotated=True))
        elif isinstance(node, ast.Assign):
            ref = None
            if isinstance(node.value, ast.Call):
                callee = dotted_name(node.value.func)
                ref = qualify(callee) if callee else None
            for target in node.targets:
                if is_self_attr(target):
                    _merge_field(fields, target.attr, Binding(VARIABLE, ref or ""))


def _qualify_base(base: ast.expr, qualify: Callable[[str], str]) -> str | None:
    if isinstance(base, ast.Subscript):
        base = base.value
    dotted = dotted_name(base)
    if dotted is None:
        return None
    qualified = qualify(dotted)
    if qualified == dotted and dotted in BUILTIN_NAMES:
        return f"builtins.{dotted}"
    return qualified


def summarize_class(
    node: ast.ClassDef, qualname: str, qualify: Callable[[str], str],
) -> ClassSummary:
    """Summarize a class body."""
    summary = ClassSummary(
        qualname=qualname,
        bases=tuple(_qualify_base(b, qualify) for b in node.bases),
        decorated=bool(node.decorator_list),
    )
    for stmt in node.body:
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
            decl = summarize_function(stmt, f"{qualname}.{stmt.name}", qualify, in_class=True)
            if decl.kind == "property":
                ref = _type_ref(stmt.returns, qualify)
                summary.fields[stmt.name] = Binding(VARIABLE, ref or "", annotated=True)
                continue
            summary.methods[stmt.name] = decl
            if decl.kind == "method":
                _collect_self_fields(stmt, qualify, summary.fields)
        elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
            ref = _type_ref(stmt.annotation, qualify)
            summary.fields[stmt.target.id] = Binding(VARIABLE, ref or "", annotated=True)
    return summary


def _module_statements(body: list[ast.stmt]):
    """Yield statements executed at module level, including nested blocks."""
    for stmt in body:
        yield stmt
        if isinstance(stmt, _BLOCK_NODES):
            yield from _module_statements(stmt.body)
            yield from _module_statements(getattr(stmt, "orelse", []))
        elif isinstance(stmt, _TRY_NODES):
            yield from _module_statements(stmt.body)
            for handler in stmt.handlers:
                yield from _module_statements(handler.body)
            yield from _module_statements(stmt.orelse)
            yield from _module_statements(stmt.finalbody)


def _target_names(target: ast.expr):
    if isinstance(target, ast.Name):
        yield target.id
    elif isinstance(target, (ast.Tuple, ast.List)):
        for elt in target.elts:
            yield from _target_names(elt)
    elif isinstance(target, ast.Starred):
        yield from _target_names(target.value)


def _merge_binding(old: Binding | None, new: Binding) -> Binding:
    """Combine two module-level bindings of the same name.

    Redefining a function or class keeps the last one. Any other rebinding
    to something different makes the name ambiguous.
    """
    if old is None or old == new:
        return new
    if old.kind == new.kind and old.kind in (FUNCTION, CLASS):
        return new
    if old.kind == new.kind == VARIABLE:
        return Binding(VARIABLE)
    return Binding(AMBIGUOUS)


def summarize_module(tree: ast.Module, name: str, is_package: bool = False) -> ModuleSummary:
    """Build the summary of a parsed module."""
    summary = ModuleSummary(name=name, is_package=is_package)
    statements = list(_module_statements(tree.body))

    # First pass: kinds and import targets, so annotations can be qualified
    # even when they refer to names bound later in the file.
    light: dict[str, Binding] = {}
    pending: list[tuple[str, ast.AST | None]] = []

    def bind(local: str, binding: Binding, node: ast.AST | None = None):
        light[local] = _merge_binding(light.get(local), binding)
        if node is not None or binding.kind == VARIABLE:
            pending.append((local, node))

    for stmt in statements:
        if isinstance(stmt, ast.Import):
            for alias in stmt.names:
                if alias.asname:
                    bind(alias.asname, Binding(IMPORT, alias.name))
                else:
                    head = alias.name.split(".")[0]
                    bind(head, Binding(IMPORT, head))
        elif isinstance(stmt, ast.ImportFrom):
            source = resolve_relative(name, is_package, stmt.level, stmt.module)
            for alias in stmt.names:
                if alias.name == "*":
                    summary.star_imports.append(source)
                    continue
                target = f"{source}.{alias.name}" if source else alias.name
                bind(alias.asname or alias.name, Binding(IMPORT, target))
        elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
            bind(stmt.name, Binding(FUNCTION), stmt)
        elif isinstance(stmt, ast.ClassDef):
            bind(stmt.name, Binding(CLASS), stmt)
        elif isinstance(stmt, ast.Assign):
            for target in stmt.targets:
                for local in _target_names(target):
                    bind(local, Binding(VARIABLE), stmt if isinstance(target, ast.Name) else None)
        elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
            bind(stmt.target.id, Binding(VARIABLE), stmt)
        elif isinstance(stmt, ast.AugAssign) and isinstance(stmt.target, ast.Name):
            bind(stmt.target.id, Binding(VARIABLE))
        elif isinstance(stmt, (ast.For, ast.AsyncFor)):
            for local in _target_names(stmt.target):
                bind(local, Binding(VARIABLE))
        elif isinstance(stmt, (ast.With, ast.AsyncWith)):
            for item in stmt.items:
                if item.optional_vars is not None:
                    for local in _target_names(item.optional_vars):
                        bind(local, Binding(VARIABLE))
        elif isinstance(stmt, _TRY_NODES):
            for handler in stmt.handlers:
                if handler.name:
                    bind(handler.name, Binding(VARIABLE))

    qualify = Qualifier(name, light)

    # Second pass: declarations and variable types
    variable_types: dict[str, list[Binding]] = {}
    for local, node in pending:
        kind = light[local].kind
        if kind == FUNCTION and isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            decl = summarize_function(node, f"{name}.{local}", qualify)
            light[local] = Binding(FUNCTION, decl=decl)
        elif kind == CLASS and isinstance(node, ast.ClassDef):
            decl = summarize_class(node, f"{name}.{local}", qualify)
            light[local] = Binding(CLASS, decl=decl)
        elif kind == VARIABLE:
            variable_types.setdefault(local, []).append(_variable_type(node, qualify))

    for local, binding in light.items():
        if binding.kind == VARIABLE:
            types = variable_types.get(local, [])
            if types and all(t == types[0] for t in types):
                binding = types[0]
            else:
                binding = Binding(VARIABLE)
        summary.bindings[local] = binding
    return summary


def _variable_type(node: ast.AST | None, qualify: Callable[[str], str]) -> Binding:
    if isinstance(node, ast.AnnAssign):
        ref = _type_ref(node.annotation, qualify)
        return Binding(VARIABLE, ref or "", annotated=bool(ref))
    if isinstance(node, ast.Assign) and isinstance(node.value, ast.Call):
        callee = dotted_name(node.value.func)
        if callee:
            return Binding(VARIABLE, qualify(callee))
    return Binding(VARIABLE)
