"""Tests for the nobadfuncs scanner.

Tests cover:
- Canonical signatures of free functions, methods and constructors
- Instance versus class-object receivers
- Calls through values that never resolve
- Call positions, ordering, parse failures and exclusions
- End-to-end matching against a signature table
"""

import os

import pytest

from nobadfuncs.config import ExcludeRules, SignatureTable
from nobadfuncs.scanner import SourceScanner, match_calls
from nobadfuncs.scanner_types import CallSite, Diagnostic

FOO_SOURCE = "import os\n\n\ndef foo():\n    os._exit(1)\n"
EXIT_TABLE = SignatureTable({"func os._exit(...)": "do not call os._exit directly"})


def signatures(found, prefix=""):
    return [sig for _, _, _, sig in found if prefix in sig]


# ============================================
# End-to-end scenarios
# ============================================

class TestScenarios:

    def test_denied_call_reported_at_callee(self, tmp_path):
        (tmp_path / "foo.py").write_text(FOO_SOURCE)
        scanner = SourceScanner(cwd=tmp_path)
        result = list(scanner.check(["."], EXIT_TABLE))
        assert result == [Diagnostic("foo.py", 5, 8, "do not call os._exit directly")]

    def test_path_relative_to_inner_working_directory(self, tmp_path):
        (tmp_path / "foo.py").write_text(FOO_SOURCE)
        inner = tmp_path / "inner"
        inner.mkdir()
        (inner / "bar").write_text("")
        scanner = SourceScanner(cwd=inner)
        result = list(scanner.check([".."], EXIT_TABLE))
        assert result == [Diagnostic("../foo.py", 5, 8, "do not call os._exit directly")]

    def test_unrelated_signatures_never_match(self, tmp_path):
        (tmp_path / "foo.py").write_text(FOO_SOURCE)
        table = SignatureTable({"func os.exit(...)": "x", "func (*os._exit).call()": "y"})
        assert list(SourceScanner(cwd=tmp_path).check(["."], table)) == []

    def test_output_is_deterministic(self, tmp_path, write_tree):
        write_tree({
            "b.py": "import os\nos._exit(0)\n",
            "a.py": FOO_SOURCE,
            "sub/c.py": "import os\nos._exit(2)\n",
        })
        first = list(SourceScanner(cwd=tmp_path).check(["."], EXIT_TABLE))
        second = list(SourceScanner(cwd=tmp_path).check(["."], EXIT_TABLE))
        assert first == second
        assert [d.path for d in first] == ["a.py", "b.py", os.path.join("sub", "c.py")]


# ============================================
# Free functions
# ============================================

class TestFunctionSignatures:

    def test_parameter_and_result_types(self, scan_signatures):
        found = scan_signatures({
            "app/__init__.py": "",
            "app/util.py": """\
                def danger(x: int, *args: str, **kw) -> bool:
                    return True
                """,
            "main.py": """\
                from app.util import danger

                danger(1)
                """,
        })
        assert signatures(found, "danger") == ["func app.util.danger(int, *str, **Any) bool"]

    def test_none_result_and_unannotated_params(self, scan_signatures):
        found = scan_signatures({
            "resets.py": """\
                def reset(a, b=1) -> None:
                    pass


                reset(1)
                """,
        })
        assert signatures(found) == ["func resets.reset(Any, Any)"]

    def test_annotations_qualified_through_imports(self, scan_signatures):
        found = scan_signatures({
            "net.py": """\
                from typing import Optional
                import collections.abc as cabc


                def send(payload: Optional[int], items: cabc.Sequence) -> "cabc.Mapping":
                    pass


                send(None, [])
                """,
        })
        assert signatures(found, "net.send") == [
            "func net.send(typing.Optional[int], collections.abc.Sequence) collections.abc.Mapping"
        ]

    def test_generic_parameters_not_substituted(self, scan_signatures):
        found = scan_signatures({
            "gen.py": """\
                from typing import TypeVar

                T = TypeVar("T")


                def first(items: list[T]) -> T:
                    return items[0]


                first([1])
                """,
        })
        assert signatures(found, "gen.first") == ["func gen.first(list[gen.T]) gen.T"]

    def test_relative_import(self, scan_signatures):
        found = scan_signatures({
            "pkg/__init__.py": "",
            "pkg/a.py": """\
                from .b import helper

                helper()
                """,
            "pkg/b.py": "def helper():\n    pass\n",
        })
        assert signatures(found) == ["func pkg.b.helper()"]

    def test_reexport_followed_to_declaration(self, scan_signatures):
        found = scan_signatures({
            "pkg/__init__.py": "from .impl import run\n",
            "pkg/impl.py": "def run(n: int):\n    pass\n",
            "main.py": "import pkg\n\npkg.run(1)\n",
        })
        assert signatures(found) == ["func pkg.impl.run(int)"]

    def test_module_alias(self, scan_signatures):
        found = scan_signatures({
            "util.py": "def go():\n    pass\n",
            "main.py": "import util as u\n\nu.go()\n",
        })
        assert signatures(found) == ["func util.go()"]

    def test_unlocatable_module_renders_unknown_params(self, scan_signatures):
        found = scan_signatures({
            "main.py": "import not_installed_anywhere_xyz\n\nnot_installed_anywhere_xyz.call(1)\n",
        })
        assert signatures(found) == ["func not_installed_anywhere_xyz.call(...)"]

    def test_builtins(self, scan_signatures):
        found = scan_signatures({"main.py": "eval('1')\n"})
        assert signatures(found) == ["func builtins.eval(...)"]

    def test_local_function(self, scan_signatures):
        found = scan_signatures({
            "mod.py": """\
                def outer():
                    def inner(x: int):
                        pass
                    inner(1)
                """,
        })
        assert signatures(found) == ["func mod.outer.<locals>.inner(int)"]


# ============================================
# Methods and constructors
# ============================================

SHAPES = """\
class Client:
    def do(self, n: int) -> None:
        pass

    @classmethod
    def create(cls, name: str):
        pass

    @staticmethod
    def helper(x):
        pass


class Service:
    def __init__(self, retries: int):
        self.client = Client()

    def go(self):
        self.client.do(1)
        self.go()
"""


class TestMethodSignatures:

    def test_instance_and_class_receivers_differ(self, scan_signatures):
        found = scan_signatures({
            "shapes.py": SHAPES,
            "main.py": """\
                from shapes import Client


                def use(c: Client):
                    c.do(1)
                    Client.do(c, 1)
                    Client.create("x")
                    Client.helper(2)
                """,
        })
        by_file = [sig for path, _, _, sig in found if path == "main.py"]
        assert by_file == [
            "func (*shapes.Client).do(int)",
            "func (shapes.Client).do(int)",
            "func (shapes.Client).create(str)",
            "func (shapes.Client).helper(Any)",
        ]

    def test_self_and_typed_attributes(self, scan_signatures):
        found = scan_signatures({"shapes.py": SHAPES})
        assert signatures(found) == [
            "func shapes.Client()",
            "func (*shapes.Client).do(int)",
            "func (*shapes.Service).go()",
        ]

    def test_constructor_uses_init_params(self, scan_signatures):
        found = scan_signatures({
            "shapes.py": SHAPES,
            "main.py": "from shapes import Service\n\nsvc = Service(3)\nsvc.go()\n",
        })
        assert [sig for path, _, _, sig in found if path == "main.py"] == [
            "func shapes.Service(int)",
            "func (*shapes.Service).go()",
        ]

    def test_inherited_method_names_declaring_class(self, scan_signatures):
        found = scan_signatures({
            "base.py": """\
                class A:
                    def run(self, x: str):
                        pass


                class B(A):
                    pass


                def main():
                    b = B()
                    b.run("x")
                """,
        })
        assert signatures(found) == ["func base.B()", "func (*base.A).run(str)"]

    def test_unknown_base_makes_members_unknown(self, scan_signatures):
        found = scan_signatures({
            "m.py": """\
                from somewhere_missing_xyz import Base


                class C(Base):
                    pass


                c = C()
                c.run()
                """,
        })
        assert signatures(found) == ["func m.C(...)", "func (*m.C).run(...)"]

    def test_missing_member_on_complete_class_is_unresolved(self, scan_signatures):
        found = scan_signatures({
            "m.py": """\
                class C(object):
                    pass


                def f(c: C):
                    c.nothing()
                """,
        })
        assert signatures(found) == []


# ============================================
# Calls that never resolve
# ============================================

class TestUnresolvedCalls:

    def test_function_values(self, scan_signatures):
        found = scan_signatures({
            "m.py": """\
                def danger():
                    pass


                handlers = {"a": danger}
                alias = danger


                def f(danger_param):
                    g = danger
                    g()
                    alias()
                    handlers["a"]()
                    (lambda: 1)()
                    danger_param()
                """,
        })
        assert signatures(found) == []

    def test_parameter_shadows_module_function(self, scan_signatures):
        found = scan_signatures({
            "m.py": """\
                def danger():
                    pass


                def f(danger):
                    danger()
                """,
        })
        assert signatures(found) == []

    def test_call_results(self, scan_signatures):
        found = scan_signatures({
            "m.py": """\
                def make():
                    pass


                make()()
                """,
        })
        assert signatures(found) == ["func m.make()"]


# ============================================
# Positions, ordering and failures
# ============================================

class TestPositions:

    def test_columns_count_utf8_bytes(self, scan_signatures):
        found = scan_signatures({"m.py": 's = "é"; eval("1")\n'})
        assert found == [("m.py", 1, 11, "func builtins.eval(...)")]

    def test_attribute_call_points_at_attribute_name(self, scan_signatures):
        found = scan_signatures({
            "m.py": "import os\n\nx = (os\n     .getcwd())\n",
        })
        assert [(line, col) for _, line, col, _ in found] == [(4, 7)]

    def test_calls_ordered_by_line_then_column(self, scan_signatures):
        found = scan_signatures({"m.py": "print(len('a')); print(2)\nabs(1)\n"})
        assert [(line, col) for _, line, col, _ in found] == [(1, 1), (1, 7), (1, 18), (2, 1)]


class TestScanRoots:

    def test_same_named_modules_resolve_within_their_own_root(self, scan_signatures):
        found = scan_signatures({
            "a/util.py": "def helper(x: int) -> int:\n    return x\n",
            "a/main.py": "import util\n\nutil.helper(1)\n",
            "b/util.py": "def helper(s: str, t: str) -> str:\n    return s\n",
            "b/main.py": "import util\n\nutil.helper('x', 'y')\n",
        })
        assert found == [
            (os.path.join("a", "main.py"), 3, 6, "func util.helper(int) int"),
            (os.path.join("b", "main.py"), 3, 6, "func util.helper(str, str) str"),
        ]


class TestParseFailures:

    def test_parse_error_reported_and_scan_continues(self, tmp_path, write_tree):
        write_tree({"a_bad.py": "def broken(:\n", "b_good.py": FOO_SOURCE})
        result = list(SourceScanner(cwd=tmp_path).check(["."], EXIT_TABLE))
        assert len(result) == 2
        assert result[0].path == "a_bad.py"
        assert result[0].message.startswith("failed to parse file:")
        assert result[1] == Diagnostic("b_good.py", 5, 8, "do not call os._exit directly")

    def test_parse_error_column_counts_utf8_bytes(self, tmp_path, write_tree):
        write_tree({"ascii.py": 's = "e"; 1 +* 2\n', "wide.py": 's = "é"; 1 +* 2\n'})
        ascii_error, wide_error = SourceScanner(cwd=tmp_path).check(["."], EXIT_TABLE)
        assert ascii_error.message == wide_error.message
        assert wide_error.column == ascii_error.column + 1


class TestTargets:

    def test_default_exclusions(self, tmp_path, write_tree):
        write_tree({
            "vendor/v.py": FOO_SOURCE,
            ".hidden/h.py": FOO_SOURCE,
            "__pycache__/c.py": FOO_SOURCE,
            "src/s.py": FOO_SOURCE,
        })
        result = list(SourceScanner(cwd=tmp_path).check(["."], EXIT_TABLE))
        assert [d.path for d in result] == [os.path.join("src", "s.py")]

    def test_exclude_paths(self, tmp_path, write_tree):
        write_tree({"generated/g.py": FOO_SOURCE, "src/s.py": FOO_SOURCE})
        rules = ExcludeRules(paths=("generated",))
        result = list(SourceScanner(cwd=tmp_path, exclude=rules).check(["."], EXIT_TABLE))
        assert [d.path for d in result] == [os.path.join("src", "s.py")]

    def test_excluded_name_as_explicit_target_is_scanned(self, tmp_path, write_tree):
        write_tree({"vendor/v.py": FOO_SOURCE})
        result = list(SourceScanner(cwd=tmp_path).check(["vendor"], EXIT_TABLE))
        assert [d.path for d in result] == [os.path.join("vendor", "v.py")]

    def test_file_reached_twice_scanned_once(self, tmp_path, write_tree):
        write_tree({"foo.py": FOO_SOURCE})
        result = list(SourceScanner(cwd=tmp_path).check(["foo.py", "."], EXIT_TABLE))
        assert len(result) == 1

    def test_missing_target_logs_warning(self, tmp_path, capsys):
        result = list(SourceScanner(cwd=tmp_path).check(["nope"], EXIT_TABLE))
        assert result == []
        assert "no Python files found for target nope" in capsys.readouterr().err


# ============================================
# match_calls Tests
# ============================================

class TestMatchCalls:

    def test_exact_match_only(self):
        sites = [
            CallSite("a.py", 1, 1, "func os._exit(...)"),
            CallSite("a.py", 2, 1, "func os._exit(int)"),
        ]
        assert list(match_calls(sites, EXIT_TABLE)) == [
            Diagnostic("a.py", 1, 1, "do not call os._exit directly"),
        ]

    @pytest.mark.parametrize("table", [SignatureTable(), SignatureTable({"x": "y"})])
    def test_unused_entries_are_fine(self, table):
        assert list(match_calls([CallSite("a.py", 1, 1, "func a.b()")], table)) == []
