"""
Line-oriented statement parser for Shrimpl programs.

A program is a sequence of top-level statements, one per line, with
indented blocks for classes, models and tests:

    server 3000

    func greet(name): "Hello " + name

    class Math:
      double(x): x * 2

    model User:
      id: int pk
      email: string
      age?: int

    secret API_TOKEN = "SERVICE_TOKEN"

    @rate_limit(10, 60)
    endpoint GET "/hello/:name": greet(name)

    endpoint POST "/echo":
      body

    test "math doubles":
      assert Math.double(2) == 4

Blank lines and lines starting with '#' are ignored everywhere. The first
error aborts parsing with a ``ParseError`` naming the 1-based line.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from .ast import (
    Program, ServerDecl, EndpointDecl, EndpointBody, HttpMethod, JsonBody,
    RateLimit, FunctionDef, ClassDef, ModelDef, ModelField, SecretDecl,
    TestCase, Expression,
)
from .errors import ExpressionError, ParseError
from .parser import parse_expression

logger = logging.getLogger(__name__)


_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Trailing words on a model field that mark it as the primary key
PRIMARY_KEY_MARKERS = ("pk", "primary", "primary_key")

UNRECOGNIZED_STATEMENT = (
    "unrecognized statement (expected 'server', 'endpoint', 'func', 'class', "
    "'model', 'secret', 'test', or '@rate_limit')"
)


def _is_identifier(text: str) -> bool:
    return bool(_IDENTIFIER_RE.match(text))


def _is_skippable(stripped: str) -> bool:
    """Blank and comment lines carry no statements."""
    return not stripped or stripped.startswith("#")


def _is_indented(raw: str) -> bool:
    return raw[:1] in (" ", "\t")


def _split_lines(source: str) -> List[str]:
    """Split on '\\n', dropping a trailing '\\r' from each line."""
    lines = source.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def _extract_quoted(text: str, line_no: int, what: str) -> Tuple[str, str]:
    """
    Extract the first double-quoted substring of ``text``.

    Returns the quoted content and the text after the closing quote.
    """
    start = text.find('"')
    if start < 0:
        raise ParseError(line_no, f"expected opening '\"' for {what}")
    end = text.find('"', start + 1)
    if end < 0:
        raise ParseError(line_no, f"expected closing '\"' for {what}")
    return text[start + 1:end], text[end + 1:]


class ProgramParser:
    """
    Parser for a whole Shrimpl source file.

    Usage:
        parser = ProgramParser(source)
        program = parser.parse()

    Parsing is a single forward pass over the lines. Block statements
    (class, model, test) consume their indented member lines; the block ends
    at the first non-blank, non-comment line with no leading whitespace.
    """

    def __init__(self, source: str):
        self.lines = _split_lines(source)
        self.index = 0                              # Index of the next unread line

        self.server: Optional[ServerDecl] = None
        self.endpoints: List[EndpointDecl] = []
        self.functions: Dict[str, FunctionDef] = {}
        self.classes: Dict[str, ClassDef] = {}
        self.models: Dict[str, ModelDef] = {}
        self.secrets: List[SecretDecl] = []
        self.tests: List[TestCase] = []
        self.pending_rate_limit: Optional[RateLimit] = None

    # =========================================================================
    # Line Navigation
    # =========================================================================

    def _next_content_index(self, start: int) -> Optional[int]:
        """Index of the first non-blank, non-comment line at or after start."""
        for idx in range(start, len(self.lines)):
            if not _is_skippable(self.lines[idx].strip()):
                return idx
        return None

    def _block_lines(self) -> List[Tuple[int, str]]:
        """
        Consume the indented member lines following a block header.

        Returns (line number, stripped text) pairs.
        """
        members: List[Tuple[int, str]] = []
        while self.index < len(self.lines):
            raw = self.lines[self.index]
            stripped = raw.strip()
            if _is_skippable(stripped):
                self.index += 1
                continue
            if not _is_indented(raw):
                break
            members.append((self.index + 1, stripped))
            self.index += 1
        return members

    def _expression(self, text: str, line_no: int, context: str) -> Expression:
        """Parse an embedded expression, attributing errors to the line."""
        try:
            return parse_expression(text)
        except ExpressionError as e:
            raise ParseError(line_no, str(e), context) from e

    # =========================================================================
    # Top Level
    # =========================================================================

    def parse(self) -> Program:
        while self.index < len(self.lines):
            line_no = self.index + 1
            stripped = self.lines[self.index].strip()
            self.index += 1

            if _is_skippable(stripped):
                continue

            if self.pending_rate_limit is not None and not stripped.startswith("endpoint"):
                raise ParseError(
                    line_no, "'@rate_limit' must be followed by an endpoint declaration"
                )

            if stripped.startswith("server"):
                self._parse_server(stripped, line_no)
            elif stripped.startswith("@rate_limit"):
                self._parse_rate_limit(stripped, line_no)
            elif stripped.startswith("endpoint"):
                self._parse_endpoint(stripped, line_no)
            elif stripped.startswith("func "):
                self._parse_function(stripped, line_no)
            elif stripped.startswith("class "):
                self._parse_class(stripped, line_no)
            elif stripped.startswith("model "):
                self._parse_model(stripped, line_no)
            elif stripped.startswith("secret "):
                self._parse_secret(stripped, line_no)
            elif stripped.startswith("test "):
                self._parse_test(stripped, line_no)
            else:
                raise ParseError(line_no, UNRECOGNIZED_STATEMENT)

        if self.pending_rate_limit is not None:
            raise ParseError(
                self.pending_rate_limit.line,
                "'@rate_limit' is not attached to any endpoint",
            )
        if self.server is None:
            raise ParseError(0, "Program must have a 'server' declaration")

        logger.debug(
            "Parsed program: %d endpoints, %d functions, %d classes, %d models, %d tests",
            len(self.endpoints), len(self.functions), len(self.classes),
            len(self.models), len(self.tests),
        )
        return Program(
            server=self.server,
            endpoints=self.endpoints,
            functions=self.functions,
            classes=self.classes,
            secrets=self.secrets,
            tests=self.tests,
            models=self.models,
        )

    # =========================================================================
    # Statements
    # =========================================================================

    def _parse_server(self, stripped: str, line_no: int) -> None:
        """server <port> [tls]"""
        if self.server is not None:
            raise ParseError(line_no, "only one 'server' declaration is allowed")

        parts = stripped.split()
        if len(parts) not in (2, 3) or (len(parts) == 3 and parts[2] != "tls"):
            raise ParseError(
                line_no, "invalid server declaration; expected 'server <port> [tls]'"
            )

        port_text = parts[1]
        if not (port_text.isascii() and port_text.isdigit()) or int(port_text) > 65535:
            raise ParseError(
                line_no,
                f"invalid port number '{port_text}'; expected an integer between 0 and 65535",
            )
        self.server = ServerDecl(int(port_text), len(parts) == 3, line=line_no)

    def _parse_rate_limit(self, stripped: str, line_no: int) -> None:
        """@rate_limit(max, window) or @rate_limit max window"""
        if self.pending_rate_limit is not None:
            raise ParseError(
                line_no, "'@rate_limit' must be followed by an endpoint declaration"
            )

        rest = stripped[len("@rate_limit"):].strip()
        if rest.startswith("(") and rest.endswith(")"):
            parts = [p.strip() for p in rest[1:-1].split(",")]
        else:
            parts = rest.split()

        if len(parts) != 2 or not all(p.isascii() and p.isdigit() for p in parts):
            raise ParseError(
                line_no,
                "invalid rate limit; expected '@rate_limit(max_requests, window_secs)'",
            )
        self.pending_rate_limit = RateLimit(int(parts[0]), int(parts[1]), line=line_no)

    def _parse_endpoint(self, stripped: str, line_no: int) -> None:
        """endpoint METHOD "path": body"""
        rest = stripped[len("endpoint"):].strip()
        if not rest:
            raise ParseError(line_no, "missing HTTP method (GET/POST)")

        words = rest.split(None, 1)
        method_text = words[0]
        after_method = words[1].strip() if len(words) > 1 else ""
        if not after_method:
            raise ParseError(line_no, "missing path after method")

        try:
            method = HttpMethod(method_text)
        except ValueError:
            raise ParseError(
                line_no,
                f"unsupported method '{method_text}'; only GET and POST are supported for now",
            )

        path, after_path = _extract_quoted(after_method, line_no, "path string")
        after_path = after_path.strip()
        if not after_path.startswith(":"):
            raise ParseError(line_no, "expected ':' after path in endpoint declaration")

        body_text = after_path[1:].strip()
        body_line = line_no
        if not body_text:
            body_index = self._next_content_index(self.index)
            if body_index is None:
                raise ParseError(
                    line_no, "endpoint declaration missing body expression after ':'"
                )
            body_text = self.lines[body_index].strip()
            body_line = body_index + 1
            self.index = body_index + 1

        body = self._parse_endpoint_body(body_text, body_line)
        self.endpoints.append(EndpointDecl(
            method, path, body, rate_limit=self.pending_rate_limit, line=line_no,
        ))
        self.pending_rate_limit = None

    def _parse_endpoint_body(self, text: str, line_no: int) -> EndpointBody:
        """
        A 'json' body stays raw; anything else is an expression.

        The word must be followed by whitespace or the opening '{' or '['.
        """
        if text.startswith("json") and (len(text) == 4 or text[4].isspace() or text[4] in "{["):
            raw = text[4:].strip()
            if not raw:
                raise ParseError(line_no, "expected JSON expression after 'json'")
            return JsonBody(raw)
        return self._expression(text, line_no, "body expression")

    def _parse_callable(self, text: str, line_no: int, kind: str) -> FunctionDef:
        """
        Parse ``name(a, b): body``.

        Shared by 'func' statements (kind "function") and class members
        (kind "method"); only the error wording differs.
        """
        param_list = "parameter list" if kind == "function" else "method parameter list"

        open_paren = text.find("(")
        if open_paren < 0:
            raise ParseError(line_no, f"expected '(' in {kind} definition")
        close_paren = text.find(")", open_paren)
        if close_paren < 0:
            raise ParseError(line_no, f"expected ')' in {param_list}")

        name = text[:open_paren].strip()
        if not _is_identifier(name):
            raise ParseError(line_no, f"invalid {kind} name '{name}'")

        after = text[close_paren + 1:].strip()
        if not after.startswith(":"):
            raise ParseError(line_no, f"expected ':' after {param_list}")

        params: List[str] = []
        inner = text[open_paren + 1:close_paren]
        if inner.strip():
            for param in (p.strip() for p in inner.split(",")):
                if not param:
                    raise ParseError(line_no, f"empty parameter in {param_list}")
                if not _is_identifier(param):
                    raise ParseError(line_no, f"invalid parameter name '{param}'")
                if param in params:
                    raise ParseError(line_no, f"duplicate parameter '{param}' in {kind} '{name}'")
                params.append(param)
        body = self._expression(after[1:].strip(), line_no, f"{kind} body")
        return FunctionDef(name, params, body, line=line_no)

    def _parse_function(self, stripped: str, line_no: int) -> None:
        """func name(params): body"""
        func = self._parse_callable(stripped[len("func "):].strip(), line_no, "function")
        if func.name in self.functions:
            raise ParseError(line_no, f"function '{func.name}' already defined")
        self.functions[func.name] = func

    def _parse_class(self, stripped: str, line_no: int) -> None:
        """class Name: followed by indented method lines."""
        rest = stripped[len("class "):]
        colon = rest.find(":")
        if colon < 0:
            raise ParseError(line_no, "expected ':' in class declaration")
        name = rest[:colon].strip()
        if not _is_identifier(name):
            raise ParseError(line_no, f"invalid class name '{name}'")
        if name in self.classes:
            raise ParseError(line_no, f"class '{name}' already defined")

        cls = ClassDef(name, line=line_no)
        for member_line, text in self._block_lines():
            method = self._parse_callable(text, member_line, "method")
            if method.name in cls.methods:
                raise ParseError(
                    member_line, f"method '{method.name}' already defined in class '{name}'"
                )
            cls.methods[method.name] = method
        self.classes[name] = cls

    def _parse_model(self, stripped: str, line_no: int) -> None:
        """model Name: followed by indented 'field[?]: type [pk]' lines."""
        rest = stripped[len("model "):]
        colon = rest.find(":")
        if colon < 0:
            raise ParseError(line_no, "expected ':' in model declaration")
        name = rest[:colon].strip()
        if not _is_identifier(name):
            raise ParseError(line_no, f"invalid model name '{name}'")
        if name in self.models:
            raise ParseError(line_no, f"model '{name}' already defined")

        model = ModelDef(name, table_name=name, line=line_no)
        for member_line, text in self._block_lines():
            model_field = self._parse_model_field(text, member_line, name)
            if any(f.name == model_field.name for f in model.fields):
                raise ParseError(
                    member_line,
                    f"field '{model_field.name}' already defined in model '{name}'",
                )
            model.fields.append(model_field)

        if not model.fields:
            raise ParseError(line_no, f"model '{name}' must declare at least one field")
        self.models[name] = model

    def _parse_model_field(self, text: str, line_no: int, model: str) -> ModelField:
        name_part, colon, type_part = text.partition(":")
        if not colon:
            raise ParseError(line_no, f"expected 'name: type' in model '{model}'")

        name = name_part.strip()
        optional = name.endswith("?")
        if optional:
            name = name[:-1].strip()
        if not _is_identifier(name):
            raise ParseError(line_no, f"invalid field name '{name}' in model '{model}'")

        words = type_part.split()
        if not words:
            raise ParseError(line_no, f"missing type for field '{name}' in model '{model}'")

        primary_key = False
        for word in words[1:]:
            if word.lower() in PRIMARY_KEY_MARKERS:
                primary_key = True
            else:
                raise ParseError(
                    line_no,
                    f"unexpected '{word}' after type of field '{name}' in model '{model}'",
                )
        return ModelField(name, words[0], is_primary_key=primary_key, is_optional=optional)

    def _parse_secret(self, stripped: str, line_no: int) -> None:
        """secret NAME = "ENV_KEY" """
        usage = "invalid secret declaration; expected 'secret NAME = \"ENV_KEY\"'"
        name_part, equals, value_part = stripped[len("secret "):].partition("=")
        name = name_part.strip()
        if not equals or not _is_identifier(name):
            raise ParseError(line_no, usage)

        key, trailing = _extract_quoted(value_part, line_no, "secret key")
        if value_part[:value_part.find('"')].strip() or trailing.strip() or not key:
            raise ParseError(line_no, usage)
        if self._find_secret(name) is not None:
            raise ParseError(line_no, f"secret '{name}' already defined")
        self.secrets.append(SecretDecl(name, key, line=line_no))

    def _find_secret(self, name: str) -> Optional[SecretDecl]:
        for secret in self.secrets:
            if secret.name == name:
                return secret
        return None

    def _parse_test(self, stripped: str, line_no: int) -> None:
        """test "name": followed by indented 'assert <expr>' lines."""
        name, after = _extract_quoted(stripped[len("test "):], line_no, "test name")
        if after.strip() != ":":
            raise ParseError(line_no, "expected ':' after test name")

        case = TestCase(name, line=line_no)
        for member_line, text in self._block_lines():
            words = text.split(None, 1)
            keyword = words[0]
            expr_text = words[1] if len(words) > 1 else ""
            if keyword != "assert" or not expr_text.strip():
                raise ParseError(member_line, "expected 'assert <expression>' in test block")
            case.assertions.append(
                self._expression(expr_text.strip(), member_line, "assert expression")
            )

        if not case.assertions:
            raise ParseError(line_no, f"test '{name}' must contain at least one assertion")
        self.tests.append(case)


def parse(source: str) -> Program:
    """
    Parse Shrimpl source text into a Program.

    Args:
        source: Full program text

    Returns:
        Parsed Program

    Raises:
        ParseError: On the first malformed statement, or when the program
            has no 'server' declaration
    """
    return ProgramParser(source).parse()
