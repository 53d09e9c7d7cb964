"""
Built-in function registry for the Shrimpl interpreter.

Each built-in receives the runtime context and its already-evaluated
arguments, checks its own arity, and returns a runtime value. Collections
travel between built-ins as JSON text, e.g. ``vec(1, 2)`` returns
``"[1.0,2.0]"`` which ``tensor_dot`` parses back.

Categories:
- String/basic: len, upper, lower, number, string
- Numeric: sum, avg, min, max
- Config/env: config_set, config_get, config_has, env
- HTTP: http_get, http_get_json
- Tensor: vec, tensor_add, tensor_dot
- DataFrame: df_from_csv, df_head, df_select
- Regression: linreg_fit, linreg_predict
- OpenAI: openai_set_api_key, openai_set_system_prompt, openai_chat,
  openai_chat_json, openai_mcp_call
"""

import csv
import io
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import numpy as np

from .values import (
    Value, number_val, string_val, bool_val, OK, EMPTY,
    parse_number, loads_json, dump_json,
)
from .context import RuntimeContext
from .openai import (
    openai_post, build_chat_payload, build_mcp_payload, extract_chat_content,
)
from ..errors import (
    BuiltinArgumentError, CoercionError, ExternalIOError,
    error_builtin_arity,
)

logger = logging.getLogger(__name__)


BuiltinImpl = Callable[[RuntimeContext, List[Value]], Value]


@dataclass
class BuiltinFunction:
    """
    A built-in function and its call shape (e.g. ``"len(x)"``).
    """
    name: str
    usage: str
    implementation: BuiltinImpl
    doc: str = ""

    def __call__(self, ctx: RuntimeContext, args: List[Value]) -> Value:
        return self.implementation(ctx, args)


def _expect_args(args: List[Value], count: int, message: str) -> None:
    if len(args) != count:
        raise error_builtin_arity(message)


def _expect_some_args(args: List[Value], message: str) -> None:
    if not args:
        raise error_builtin_arity(message)


def _http_error_text(error: Exception) -> str:
    # httpx status errors carry a help URL on a second line
    lines = str(error).splitlines()
    return lines[0] if lines else error.__class__.__name__


def fetch_text(ctx: RuntimeContext, url: str, label: str) -> str:
    """
    GET ``url`` and return the body text.

    Raises:
        ExternalIOError: ``label(url): reason`` on malformed URLs, transport
            errors and non-2xx responses
    """
    logger.debug("%s: GET %s", label, url)
    try:
        response = ctx.client().get(url)
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise ExternalIOError(f"{label}({url}): {_http_error_text(e)}") from e
    return response.text


def parse_number_array(label: str, text: str) -> List[float]:
    """
    Parse a JSON array of numbers.

    String elements are accepted when they parse as numbers, so the output
    of ``vec`` and JSON produced by other services both work.
    """
    try:
        data = loads_json(text)
    except ValueError:
        data = text
    if not isinstance(data, list):
        raise BuiltinArgumentError(f"{label}: JSON value is not an array")

    numbers: List[float] = []
    for item in data:
        if isinstance(item, bool):
            raise BuiltinArgumentError(f"{label}: element is not a number")
        if isinstance(item, (int, float)):
            numbers.append(float(item))
        elif isinstance(item, str):
            n = parse_number(item)
            if n is None:
                raise BuiltinArgumentError(f"{label}: element '{item}' is not a number")
            numbers.append(n)
        else:
            raise BuiltinArgumentError(f"{label}: element is not a number")
    return numbers


def parse_dataframe(text: str) -> Tuple[List[str], List[Any]]:
    """
    Parse a ``{"columns": [...], "rows": [[...], ...]}`` table.

    Non-string column names become "". Rows are returned as-is.
    """
    try:
        table = loads_json(text)
    except ValueError as e:
        raise BuiltinArgumentError(f"df: not valid JSON table: {e}") from e
    if not isinstance(table, dict) or "columns" not in table:
        raise BuiltinArgumentError("df: missing 'columns' field")
    if "rows" not in table:
        raise BuiltinArgumentError("df: missing 'rows' field")
    if not isinstance(table["columns"], list):
        raise BuiltinArgumentError("df: 'columns' is not an array")
    if not isinstance(table["rows"], list):
        raise BuiltinArgumentError("df: 'rows' is not an array")
    columns = [c if isinstance(c, str) else "" for c in table["columns"]]
    return columns, list(table["rows"])


def _csv_field(field: str) -> Any:
    number = parse_number(field)
    return field if number is None else number


class BuiltinRegistry:
    """
    Registry of all built-in functions.

    Functions are registered by name and looked up by the interpreter after
    user-defined functions, so a user function may shadow a built-in.
    """

    def __init__(self):
        self._functions: Dict[str, BuiltinFunction] = {}
        self._register_all()

    def get_function(self, name: str) -> Optional[BuiltinFunction]:
        return self._functions.get(name)

    def has_function(self, name: str) -> bool:
        return name in self._functions

    def register(self, func: BuiltinFunction) -> None:
        self._functions[func.name] = func

    def names(self) -> List[str]:
        return sorted(self._functions)

    def _register_all(self) -> None:
        self._register_string_functions()
        self._register_numeric_functions()
        self._register_config_functions()
        self._register_http_functions()
        self._register_tensor_functions()
        self._register_dataframe_functions()
        self._register_regression_functions()
        self._register_openai_functions()

    # --- String Functions ---

    def _register_string_functions(self) -> None:
        def _len(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "len(x) expects exactly 1 argument")
            return number_val(len(args[0].display()))

        def _upper(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "upper(x) expects exactly 1 argument")
            return string_val(args[0].display().upper())

        def _lower(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "lower(x) expects exactly 1 argument")
            return string_val(args[0].display().lower())

        def _number(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "number(x) expects exactly 1 argument")
            return number_val(args[0].as_number())

        def _string(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "string(x) expects exactly 1 argument")
            return string_val(args[0].display())

        self.register(BuiltinFunction("len", "len(x)", _len, "Character count of x"))
        self.register(BuiltinFunction("upper", "upper(x)", _upper, "Uppercase text"))
        self.register(BuiltinFunction("lower", "lower(x)", _lower, "Lowercase text"))
        self.register(BuiltinFunction("number", "number(x)", _number, "Coerce to a number"))
        self.register(BuiltinFunction("string", "string(x)", _string, "Display form of x"))

    # --- Numeric Functions ---

    def _register_numeric_functions(self) -> None:
        def _sum(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_some_args(args, "sum(...) expects at least 1 argument")
            total = 0.0
            for arg in args:
                total += arg.as_number()
            return number_val(total)

        def _avg(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_some_args(args, "avg(...) expects at least 1 argument")
            total = 0.0
            for arg in args:
                total += arg.as_number()
            return number_val(total / len(args))

        def _min(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_some_args(args, "min(...) expects at least 1 argument")
            best = args[0].as_number()
            for arg in args[1:]:
                n = arg.as_number()
                if n < best:
                    best = n
            return number_val(best)

        def _max(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_some_args(args, "max(...) expects at least 1 argument")
            best = args[0].as_number()
            for arg in args[1:]:
                n = arg.as_number()
                if n > best:
                    best = n
            return number_val(best)

        self.register(BuiltinFunction("sum", "sum(...)", _sum))
        self.register(BuiltinFunction("avg", "avg(...)", _avg))
        self.register(BuiltinFunction("min", "min(...)", _min))
        self.register(BuiltinFunction("max", "max(...)", _max))

    # --- Config and Environment Functions ---

    def _register_config_functions(self) -> None:
        def _config_set(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 2, "config_set(key, value) expects 2 arguments")
            ctx.config.set(args[0].display(), args[1])
            return OK

        def _config_get(ctx: RuntimeContext, args: List[Value]) -> Value:
            if len(args) not in (1, 2):
                raise error_builtin_arity("config_get(key, [default]) expects 1 or 2 arguments")
            stored = ctx.config.get(args[0].display())
            if stored is not None:
                return stored
            return args[1] if len(args) == 2 else EMPTY

        def _config_has(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "config_has(key) expects exactly 1 argument")
            return bool_val(ctx.config.has(args[0].display()))

        def _env(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "env(name) expects exactly 1 argument")
            return string_val(ctx.getenv(args[0].display()) or "")

        self.register(BuiltinFunction("config_set", "config_set(key, value)", _config_set))
        self.register(BuiltinFunction("config_get", "config_get(key, [default])", _config_get))
        self.register(BuiltinFunction("config_has", "config_has(key)", _config_has))
        self.register(BuiltinFunction("env", "env(name)", _env))

    # --- HTTP Functions ---

    def _register_http_functions(self) -> None:
        def _http_get(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "http_get(url) expects exactly 1 argument")
            return string_val(fetch_text(ctx, args[0].display(), "http_get"))

        def _http_get_json(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "http_get_json(url) expects exactly 1 argument")
            url = args[0].display()
            text = fetch_text(ctx, url, "http_get_json")
            try:
                data = loads_json(text)
            except ValueError as e:
                raise ExternalIOError(
                    f"http_get_json({url}): response was not valid JSON: {e}"
                ) from e
            return string_val(dump_json(data, pretty=True))

        self.register(BuiltinFunction("http_get", "http_get(url)", _http_get,
                                      "Raw response body"))
        self.register(BuiltinFunction("http_get_json", "http_get_json(url)", _http_get_json,
                                      "Pretty-printed JSON response"))

    # --- Tensor Functions ---

    def _register_tensor_functions(self) -> None:
        def _vec(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_some_args(args, "vec(...) expects at least 1 argument")
            items: List[Any] = []
            for arg in args:
                try:
                    items.append(arg.as_number())
                except CoercionError:
                    items.append(arg.display())
            return string_val(dump_json(items))

        def _tensor_add(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 2, "tensor_add(a, b) expects 2 arguments")
            a = parse_number_array("tensor_add a", args[0].display())
            b = parse_number_array("tensor_add b", args[1].display())
            if len(a) != len(b):
                raise BuiltinArgumentError("tensor_add: arrays must have the same length")
            summed = np.asarray(a, dtype=float) + np.asarray(b, dtype=float)
            return string_val(dump_json(summed.tolist()))

        def _tensor_dot(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 2, "tensor_dot(a, b) expects 2 arguments")
            a = parse_number_array("tensor_dot a", args[0].display())
            b = parse_number_array("tensor_dot b", args[1].display())
            if len(a) != len(b):
                raise BuiltinArgumentError("tensor_dot: arrays must have the same length")
            return number_val(float(np.dot(np.asarray(a, dtype=float), np.asarray(b, dtype=float))))

        self.register(BuiltinFunction("vec", "vec(...)", _vec, "JSON array of the arguments"))
        self.register(BuiltinFunction("tensor_add", "tensor_add(a, b)", _tensor_add,
                                      "Element-wise sum of two JSON arrays"))
        self.register(BuiltinFunction("tensor_dot", "tensor_dot(a, b)", _tensor_dot,
                                      "Dot product of two JSON arrays"))

    # --- DataFrame Functions ---

    def _register_dataframe_functions(self) -> None:
        def _df_from_csv(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "df_from_csv(url) expects exactly 1 argument")
            url = args[0].display()
            text = fetch_text(ctx, url, "df_from_csv")

            reader = csv.reader(io.StringIO(text))
            try:
                records = [record for record in reader if record]
            except csv.Error as e:
                raise ExternalIOError(f"df_from_csv({url}): failed to read record: {e}") from e

            columns = records[0] if records else []
            rows = []
            for number, record in enumerate(records[1:], start=2):
                if len(record) != len(columns):
                    raise ExternalIOError(
                        f"df_from_csv({url}): failed to read record: record {number} has "
                        f"{len(record)} fields, but the header has {len(columns)} fields"
                    )
                rows.append([_csv_field(field) for field in record])
            return string_val(dump_json({"columns": columns, "rows": rows}))

        def _df_head(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 2, "df_head(df_json, n) expects 2 arguments")
            n = args[1].as_number()
            # Negative and NaN counts select nothing
            columns, rows = parse_dataframe(args[0].display())
            limit = int(min(n, len(rows))) if n > 0 else 0
            return string_val(dump_json({"columns": columns, "rows": rows[:limit]}, pretty=True))

        def _df_select(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 2, "df_select(df_json, columns) expects 2 arguments")
            wanted = [c.strip() for c in args[1].display().split(",")]
            wanted = [c for c in wanted if c]
            if not wanted:
                raise BuiltinArgumentError("df_select: columns string must not be empty")

            columns, rows = parse_dataframe(args[0].display())
            indices = []
            for name in wanted:
                if name not in columns:
                    raise BuiltinArgumentError(
                        f"df_select: column '{name}' not found in dataframe"
                    )
                indices.append(columns.index(name))

            selected = []
            for row in rows:
                if not isinstance(row, list):
                    raise BuiltinArgumentError("df_select: row is not an array")
                if any(idx >= len(row) for idx in indices):
                    raise BuiltinArgumentError("df_select: row shorter than expected")
                selected.append([row[idx] for idx in indices])
            return string_val(dump_json({"columns": wanted, "rows": selected}, pretty=True))

        self.register(BuiltinFunction("df_from_csv", "df_from_csv(url)", _df_from_csv,
                                      "Load a CSV file into a JSON table"))
        self.register(BuiltinFunction("df_head", "df_head(df_json, n)", _df_head,
                                      "First n rows of a table"))
        self.register(BuiltinFunction("df_select", "df_select(df_json, columns)", _df_select,
                                      "Project a table onto comma-separated columns"))

    # --- Regression Functions ---

    def _register_regression_functions(self) -> None:
        def _linreg_fit(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 2, "linreg_fit(xs_json, ys_json) expects 2 arguments")
            xs = np.asarray(parse_number_array("linreg_fit xs", args[0].display()), dtype=float)
            ys = np.asarray(parse_number_array("linreg_fit ys", args[1].display()), dtype=float)
            if len(xs) != len(ys):
                raise BuiltinArgumentError("linreg_fit: xs and ys must have the same length")
            if len(xs) < 2:
                raise BuiltinArgumentError("linreg_fit: need at least 2 points")

            mean_x = float(xs.mean())
            mean_y = float(ys.mean())
            dx = xs - mean_x
            dy = ys - mean_y
            den = float(np.dot(dx, dx))
            if den == 0.0:
                raise BuiltinArgumentError("linreg_fit: variance of x is zero")
            a = float(np.dot(dx, dy)) / den
            b = mean_y - a * mean_x
            return string_val(dump_json({"kind": "linreg", "a": a, "b": b}))

        def _linreg_predict(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 2, "linreg_predict(model_json, x) expects 2 arguments")
            x = args[1].as_number()
            try:
                model = loads_json(args[0].display())
            except ValueError as e:
                raise BuiltinArgumentError(
                    f"linreg_predict: model_json is not valid JSON: {e}"
                ) from e
            coefficients = []
            for name in ("a", "b"):
                coef = model.get(name) if isinstance(model, dict) else None
                if isinstance(coef, bool) or not isinstance(coef, (int, float)):
                    raise BuiltinArgumentError(f"linreg_predict: model missing numeric '{name}'")
                coefficients.append(float(coef))
            a, b = coefficients
            return number_val(a * x + b)

        self.register(BuiltinFunction("linreg_fit", "linreg_fit(xs_json, ys_json)", _linreg_fit,
                                      "Least-squares fit of y = a*x + b"))
        self.register(BuiltinFunction("linreg_predict", "linreg_predict(model_json, x)",
                                      _linreg_predict, "Evaluate a fitted model at x"))

    # --- OpenAI Functions ---

    def _register_openai_functions(self) -> None:
        def _set_api_key(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "openai_set_api_key(key) expects exactly 1 argument")
            ctx.openai.set_api_key(args[0].display())
            return OK

        def _set_system_prompt(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "openai_set_system_prompt(prompt) expects 1 argument")
            ctx.openai.set_system_prompt(args[0].display())
            return OK

        def _chat(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "openai_chat(user_message) expects 1 argument")
            settings = ctx.openai.snapshot()
            payload = build_chat_payload(settings, args[0].display())
            response = openai_post(ctx.client(), settings, "chat/completions", payload)
            return string_val(extract_chat_content(response))

        def _chat_json(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(args, 1, "openai_chat_json(user_message) expects 1 argument")
            settings = ctx.openai.snapshot()
            payload = build_chat_payload(settings, args[0].display())
            response = openai_post(ctx.client(), settings, "chat/completions", payload)
            return string_val(dump_json(response, pretty=True))

        def _mcp_call(ctx: RuntimeContext, args: List[Value]) -> Value:
            _expect_args(
                args, 3, "openai_mcp_call(server_id, tool_name, args_json) expects 3 arguments"
            )
            settings = ctx.openai.snapshot()
            server_id, tool_name, args_json = (a.display() for a in args)
            payload = build_mcp_payload(settings, server_id, tool_name, args_json)
            response = openai_post(ctx.client(), settings, "responses", payload)
            return string_val(dump_json(response, pretty=True))

        self.register(BuiltinFunction("openai_set_api_key", "openai_set_api_key(key)",
                                      _set_api_key))
        self.register(BuiltinFunction("openai_set_system_prompt",
                                      "openai_set_system_prompt(prompt)", _set_system_prompt))
        self.register(BuiltinFunction("openai_chat", "openai_chat(user_message)", _chat,
                                      "Assistant reply text"))
        self.register(BuiltinFunction("openai_chat_json", "openai_chat_json(user_message)",
                                      _chat_json, "Full chat completion response"))
        self.register(BuiltinFunction("openai_mcp_call",
                                      "openai_mcp_call(server_id, tool_name, args_json)",
                                      _mcp_call, "Ask the model to call an MCP tool"))


# Global registry instance
_registry: Optional[BuiltinRegistry] = None


def get_builtin_registry() -> BuiltinRegistry:
    """Get the global built-in registry."""
    global _registry
    if _registry is None:
        _registry = BuiltinRegistry()
    return _registry

