"""Canonical signature strings for resolved call targets.

    func pkg.mod.name(int, *str) bool         free function
    func (*pkg.mod.Client).do(Request) Reply  method called on an instance
    func (pkg.mod.Client).create(str)         method called on the class object
    func pkg.mod.Client(str, int)             class instantiation (__init__ params)
    func os._exit(...)                        declaration not available
"""

from .declarations import CLASS, FUNCTION, FunctionDecl
from .module_index import METHOD, OPAQUE, ModuleIndex, Target
from .scanner_types import UNKNOWN_PARAMS


def _param_list(decl: FunctionDecl | None) -> str:
    if decl is None:
        return UNKNOWN_PARAMS
    return ", ".join(decl.params)


def _with_result(head: str, decl: FunctionDecl | None) -> str:
    if decl is not None and decl.returns:
        return f"{head} {decl.returns}"
    return head


def _constructor_params(target: Target, index: ModuleIndex) -> str:
    cls = target.decl
    if cls is None:
        return UNKNOWN_PARAMS
    _, init, complete = index.lookup_member(cls, "__init__")
    if isinstance(init, FunctionDecl):
        return _param_list(init)
    if init is None and complete and not cls.decorated:
        return ""
    return UNKNOWN_PARAMS


def format_signature(target: Target, index: ModuleIndex) -> str | None:
    """Render the canonical signature of a call target.

    Returns None for targets that are not declared callables: modules,
    instances and other values.
    """
    if target.kind == FUNCTION:
        return _with_result(f"func {target.qualname}({_param_list(target.decl)})", target.decl)
    if target.kind == OPAQUE:
        return f"func {target.qualname}({UNKNOWN_PARAMS})"
    if target.kind == CLASS:
        return f"func {target.qualname}({_constructor_params(target, index)})"
    if target.kind == METHOD:
        receiver = f"*{target.receiver}" if target.via_instance else target.receiver
        name = target.qualname.rsplit(".", 1)[-1]
        head = f"func ({receiver}).{name}({_param_list(target.decl)})"
        return _with_result(head, target.decl)
    return None
