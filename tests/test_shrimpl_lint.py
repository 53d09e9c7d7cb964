"""
Tests for structural diagnostics, source lints and schema export.
"""

import textwrap

from shrimpl import parse, parse_expression, build_diagnostics, lint_source, build_schema
from shrimpl.lint import used_variables


def parse_source(source):
    return parse(textwrap.dedent(source))


class TestUsedVariables:
    """Test variable collection."""

    def test_collects_nested_names(self):
        expr = parse_expression('if a: f(b, [c]) else: {k: d} + Cls.m(e)')
        assert used_variables(expr) == {"a", "b", "c", "d", "e"}

    def test_try_clauses(self):
        expr = parse_expression("try: a catch err: b finally: c")
        assert used_variables(expr) == {"a", "b", "c"}

    def test_literals_only(self):
        assert used_variables(parse_expression('1 + "x"')) == set()


class TestBuildDiagnostics:
    """Test structural warnings."""

    def test_clean_program(self):
        program = parse_source("""
            server 1
            func add(a, b): a + b
            endpoint GET "/hello/:name": "Hello " + name
        """)
        assert build_diagnostics(program) == []

    def test_duplicate_endpoint(self):
        program = parse_source("""
            server 1
            endpoint GET "/x": 1
            endpoint POST "/x": 2
            endpoint GET "/x": 3
        """)
        diags = build_diagnostics(program)
        assert [(d.scope, d.name, d.message) for d in diags] == [
            ("endpoint", "/x", "Duplicate endpoint for GET /x"),
        ]
        assert not diags[0].is_error

    def test_unused_path_param(self):
        program = parse('server 1\nendpoint GET "/users/:id/:tab": "user " + id')
        diags = build_diagnostics(program)
        assert [d.message for d in diags] == [
            "Path parameter :tab is never used in this endpoint body",
        ]

    def test_json_body_uses_no_params(self):
        program = parse('server 1\nendpoint GET "/users/:id": json {"ok": true}')
        assert len(build_diagnostics(program)) == 1

    def test_unused_function_param(self):
        program = parse("server 1\nfunc f(a, b): a")
        diag = build_diagnostics(program)[0]
        assert diag.scope == "function"
        assert diag.name == "f"
        assert diag.message == "Parameter 'b' is never used in function body"

    def test_unused_method_param(self):
        program = parse("server 1\nclass Math:\n  pick(a, b): b")
        diag = build_diagnostics(program)[0]
        assert diag.scope == "method"
        assert diag.name == "Math.pick"
        assert diag.message == "Parameter 'a' is never used in method body"

    def test_to_json(self):
        program = parse("server 1\nfunc f(a): 1")
        assert build_diagnostics(program)[0].to_json() == {
            "kind": "warning",
            "scope": "function",
            "name": "f",
            "message": "Parameter 'a' is never used in function body",
        }


class TestLintSource:
    """Test formatting lints on raw text."""

    def test_clean_source(self):
        assert lint_source("server 1\nfunc f(): 1\n") == []

    def test_tab_and_trailing_whitespace(self):
        diags = lint_source("server 1 \nclass C:\n\tm(): 1")
        assert [(d.line, d.message) for d in diags] == [
            (1, "trailing whitespace"),
            (3, "tab character found (use spaces for indentation)"),
        ]
        assert diags[0].scope == "format"
        assert diags[0].to_json()["line"] == 1

    def test_format(self):
        diag = lint_source("x ")[0]
        assert diag.format() == "warning: line 1, format: trailing whitespace"


class TestBuildSchema:
    """Test schema export."""

    def test_schema(self):
        program = parse_source("""
            server 8443 tls
            @rate_limit(10, 60)
            endpoint GET "/hello/:name": "Hello " + name
            endpoint POST "/config": json {"a": 1}
        """)
        assert build_schema(program) == {
            "server": {"port": 8443, "tls": True},
            "endpoints": [
                {
                    "method": "GET",
                    "path": "/hello/:name",
                    "bodyKind": "text",
                    "rateLimit": {"maxRequests": 10, "windowSecs": 60},
                },
                {"method": "POST", "path": "/config", "bodyKind": "json"},
            ],
        }
