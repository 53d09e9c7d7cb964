"""
Unit tests for the Shrimpl gradual type checker.
"""

import textwrap

import pytest
from shrimpl import (
    parse, check, TypeChecker, FunctionAnnotation, Severity,
    NUMBER, STRING, BOOL, ANY, resolve_type_name,
)
from shrimpl.checker import annotations_from_config
from shrimpl.types import is_assignable, common_type


def check_source(source, annotations):
    """Parse and type check, returning the result."""
    program = parse("server 1\n" + textwrap.dedent(source))
    return check(program, annotations)


def ann(params, result=None):
    return FunctionAnnotation(params, result)


class TestTypes:
    """Test type names and assignability."""

    @pytest.mark.parametrize("name, expected", [
        ("number", NUMBER), ("Int", NUMBER), ("integer", NUMBER), ("float", NUMBER),
        ("STRING", STRING), ("str", STRING),
        ("bool", BOOL), ("Boolean", BOOL),
        ("any", ANY), ("widget", ANY),
    ])
    def test_resolve_type_name(self, name, expected):
        assert resolve_type_name(name) == expected

    def test_any_is_compatible_both_ways(self):
        assert is_assignable(ANY, NUMBER)
        assert is_assignable(STRING, ANY)

    def test_exact_match_otherwise(self):
        assert is_assignable(NUMBER, NUMBER)
        assert not is_assignable(STRING, NUMBER)
        assert NUMBER.is_assignable_from(NUMBER)
        assert not BOOL.is_assignable_from(NUMBER)

    def test_common_type(self):
        assert common_type([NUMBER, NUMBER]) == NUMBER
        assert common_type([NUMBER, STRING]) == ANY
        assert common_type([]) == ANY


class TestFunctionChecks:
    """Test per-function checks."""

    def test_clean_function(self):
        result = check_source("func add(a, b): a + b", {"add": ann(["number", "number"], "number")})
        assert result.diagnostics == []
        assert not result.has_errors
        assert not result.has_warnings

    def test_param_count_mismatch(self):
        result = check_source("func inc(x): x + 1", {"inc": ann(["number", "number"])})
        assert result.has_errors
        diag = result.diagnostics[0]
        assert diag.kind == Severity.ERROR
        assert diag.scope == "function"
        assert diag.name == "inc"
        assert diag.message == "Type annotation has 2 params but function 'inc' has 1 params"

    def test_return_type_mismatch(self):
        result = check_source("func is_big(x): x > 10", {"is_big": ann(["number"], "string")})
        assert [d.message for d in result.diagnostics] == [
            "Return type mismatch: expected string, got bool",
        ]

    def test_string_concatenation_warns(self):
        result = check_source(
            'func greet(name): "Hello " + name', {"greet": ann(["string"], "string")},
        )
        kinds = [(d.kind, d.scope, d.message) for d in result.diagnostics]
        assert kinds == [
            (Severity.WARNING, "expression", "Numeric operator used with non-number operand(s)"),
            (Severity.ERROR, "function", "Return type mismatch: expected string, got number"),
        ]

    def test_unannotated_functions_are_skipped(self):
        result = check_source('func f(x): "a" - x', {})
        assert result.diagnostics == []

    def test_unknown_param_type_is_any(self):
        result = check_source('func f(x): x * 2', {"f": ann(["widget"], "number")})
        assert result.diagnostics == []

    def test_no_result_annotation(self):
        result = check_source('func f(x): x > 1', {"f": ann(["number"])})
        assert result.diagnostics == []


class TestInference:
    """Test expression type inference."""

    def test_if_branches_agree(self):
        result = check_source('func f(b): if b: 1 else: 2', {"f": ann(["bool"], "string")})
        assert result.diagnostics[0].message == "Return type mismatch: expected string, got number"

    def test_if_branches_differ(self):
        result = check_source('func f(b): if b: 1 else: "x"', {"f": ann(["bool"], "string")})
        assert result.diagnostics == []

    def test_repeat_takes_body_type(self):
        result = check_source('func f(n): repeat n times: "x"', {"f": ann(["number"], "number")})
        assert result.diagnostics[0].message == "Return type mismatch: expected number, got string"

    def test_try_same_types(self):
        result = check_source('func f(x): try: 1 catch: 2', {"f": ann(["any"], "string")})
        assert result.has_errors

    def test_try_different_types(self):
        result = check_source('func f(x): try: 1 catch: "no"', {"f": ann(["any"], "string")})
        assert not result.has_errors

    def test_collections_are_any(self):
        result = check_source('func f(): [1, 2]', {"f": ann([], "number")})
        assert result.diagnostics == []

    def test_logic_is_bool(self):
        result = check_source('func f(a): a and true', {"f": ann(["any"], "number")})
        assert result.diagnostics[0].message == "Return type mismatch: expected number, got bool"


class TestCallChecks:
    """Test calls between annotated functions."""

    SOURCE = """
        func double(x): x * 2
        func quad(x): double(double(x))
        func bad(s): double(s)
        func extra(): double(1, 2)
        func loose(v): double(v)
    """

    ANNOTATIONS = {
        "double": ann(["number"], "number"),
        "quad": ann(["number"], "number"),
        "bad": ann(["string"]),
        "extra": ann([]),
        "loose": ann(["any"], "number"),
    }

    def test_nested_calls_typecheck(self):
        result = check_source(self.SOURCE, {"quad": self.ANNOTATIONS["quad"],
                                            "double": self.ANNOTATIONS["double"]})
        assert result.diagnostics == []

    def test_argument_type_mismatch(self):
        result = check_source(self.SOURCE, self.ANNOTATIONS)
        calls = [d for d in result.diagnostics if d.scope == "call"]
        assert [(d.name, d.message) for d in calls] == [
            ("double", "Argument 1 to 'double' has type string but annotation expects number"),
            ("double", "Call to 'double' expected 1 arguments but got 2"),
        ]
        assert all(d.is_error for d in calls)

    def test_unannotated_callee_is_any(self):
        result = check_source('func f(): g(1)\nfunc g(x): x', {"f": ann([], "number")})
        assert result.diagnostics == []

    def test_method_calls_are_any(self):
        source = 'func f(): Math.double(1)\nclass Math:\n  double(x): x * 2'
        result = check_source(source, {"f": ann([], "string")})
        assert result.diagnostics == []


class TestCheckResult:
    """Test result serialization and the checker class."""

    def test_to_json(self):
        result = check_source("func inc(x): x + 1", {"inc": ann([])})
        assert result.to_json() == [{
            "kind": "error",
            "scope": "function",
            "name": "inc",
            "message": "Type annotation has 0 params but function 'inc' has 1 params",
        }]

    def test_checker_is_reusable(self):
        program = parse("server 1\nfunc inc(x): x + 1")
        checker = TypeChecker({"inc": ann([])})
        assert len(checker.check(program).diagnostics) == 1
        assert len(checker.check(program).diagnostics) == 1

    def test_annotations_from_config(self):
        annotations = annotations_from_config({
            "add": {"params": ["number", "number"], "result": "number"},
            "noop": {},
        })
        assert annotations["add"].param_types == [NUMBER, NUMBER]
        assert annotations["add"].result_type == NUMBER
        assert annotations["noop"].params == []
        assert annotations["noop"].result is None
        assert annotations["noop"].result_type == ANY
