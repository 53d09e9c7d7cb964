"""
Tests for the command line interface.
"""

import json
import textwrap

import pytest

from shrimpl.__main__ import main, parse_param


APP = """
    server 3000

    func add(a, b): a + b
    func greet(name): "Hello " + name

    endpoint GET "/hello/:name": greet(name)
    endpoint GET "/sum": add(2, 3)
    endpoint GET "/boom": 1 / 0
    endpoint GET "/search": "q=" + q

    test "adds":
      assert add(2, 3) == 5
"""


@pytest.fixture
def app(tmp_path):
    path = tmp_path / "app.shr"
    path.write_text(textwrap.dedent(APP))
    return path


@pytest.fixture
def config_dir(tmp_path):
    directory = tmp_path / "config"
    directory.mkdir()
    (directory / "config.dev.yaml").write_text(textwrap.dedent("""
        server:
          port: 8080
        types:
          functions:
            greet:
              params: [string]
              result: string
    """))
    return directory


def cli(*args, config_dir=None):
    argv = ["--config-dir", str(config_dir or "no-such-config"), "--env", "dev"]
    return main(argv + [str(a) for a in args])


class TestParseParam:
    """Test NAME=VALUE parsing."""

    def test_parse_param(self):
        assert parse_param("name=Ada") == ("name", "Ada")
        assert parse_param("q=a=b") == ("q", "a=b")

    def test_invalid(self):
        with pytest.raises(ValueError, match="expected name=value"):
            parse_param("oops")


class TestCheck:
    """Test the check command."""

    def test_ok(self, app, capsys):
        assert cli("check", app) == 0
        out = capsys.readouterr().out
        assert out.startswith(f"OK: {app} (server 3000, 4 endpoints, 2 functions")

    def test_type_errors(self, app, config_dir, capsys):
        assert cli("check", app, config_dir=config_dir) == 1
        out = capsys.readouterr().out
        assert "Return type mismatch: expected string, got number" in out
        assert "Type checking failed with 1 error(s)" in out

    def test_missing_file(self, tmp_path, capsys):
        assert cli("check", tmp_path / "nope.shr") == 1
        assert "Error: File not found:" in capsys.readouterr().err

    def test_parse_error(self, tmp_path, capsys):
        path = tmp_path / "bad.shr"
        path.write_text("server 1\nendpoint GET \"/x\":\n")
        assert cli("check", path) == 1
        assert "missing body expression" in capsys.readouterr().err


class TestDiagnosticsAndSchema:
    """Test the diagnostics and schema commands."""

    def test_diagnostics(self, app, config_dir, capsys):
        assert cli("diagnostics", app, config_dir=config_dir) == 1
        report = json.loads(capsys.readouterr().out)
        assert [d["scope"] for d in report["errors"]] == ["function"]
        assert "expression" in [d["scope"] for d in report["warnings"]]

    def test_schema_applies_config(self, app, config_dir, capsys):
        assert cli("schema", app, config_dir=config_dir) == 0
        schema = json.loads(capsys.readouterr().out)
        assert schema["server"] == {"port": 8080, "tls": False}
        assert [e["path"] for e in schema["endpoints"]] == [
            "/hello/:name", "/sum", "/boom", "/search",
        ]


class TestRun:
    """Test the test, call and eval commands."""

    def test_test_command(self, app, capsys):
        assert cli("test", app) == 0
        out = capsys.readouterr().out
        assert "[PASS] adds (1 assertions)" in out
        assert "1 passed, 0 failed" in out

    def test_call(self, app, capsys):
        assert cli("call", app, "GET", "/hello/World") == 0
        assert capsys.readouterr().out == "Hello World\n"

    def test_call_with_params(self, app, capsys):
        assert cli("call", app, "get", "/search", "-p", "q=shrimp") == 0
        assert capsys.readouterr().out == "q=shrimp\n"

    def test_call_error(self, app, capsys):
        assert cli("call", app, "GET", "/boom") == 1
        assert capsys.readouterr().err == "Error: Division by zero\n"

    def test_call_bad_method(self, app, capsys):
        assert cli("call", app, "PUT", "/sum") == 1
        assert "Error:" in capsys.readouterr().err

    def test_eval(self, capsys):
        assert cli("eval", "2 + 3 * 4") == 0
        assert capsys.readouterr().out == "14\n"

    def test_eval_with_program(self, app, capsys):
        assert cli("eval", "add(x, 1)", "--file", app, "-p", "x=41") == 0
        assert capsys.readouterr().out == "411\n"

    def test_eval_error(self, capsys):
        assert cli("eval", "missing") == 1
        assert capsys.readouterr().err == "Error: Unknown variable 'missing'\n"

    def test_eval_syntax_error(self, capsys):
        assert cli("eval", "1 +") == 1
        assert "Error:" in capsys.readouterr().err
