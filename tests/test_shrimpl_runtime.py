"""
Tests for the Shrimpl runtime (interpreter, values, environments).
"""

import textwrap
from concurrent.futures import ThreadPoolExecutor

import pytest

from shrimpl import (
    parse, parse_expression, Interpreter, evaluate, compile_and_evaluate,
    RuntimeContext, Program, ServerDecl, HttpMethod,
    EvaluationError, ArityError, UnknownIdentifierError, CoercionError,
    DivisionByZeroError, LoopBoundError,
)
from shrimpl.runtime import (
    Value, ValueKind, number_val, string_val, bool_val,
    format_number, parse_number, value_to_json, dump_json,
    Environment, ConfigStore, create_environment, match_path, MAX_CALL_DEPTH,
)


@pytest.fixture
def context():
    ctx = RuntimeContext.from_environment(environ={})
    yield ctx
    ctx.close()


def run(expression, bindings=None, source="server 1", context=None):
    """Evaluate an expression against a small program."""
    program = parse(textwrap.dedent(source))
    ctx = context or RuntimeContext.from_environment(environ={})
    return evaluate(parse_expression(expression), program, bindings, ctx)


# --- Value Tests ---

class TestValues:
    """Test runtime values and their display form."""

    def test_constructors(self):
        assert number_val(2).kind == ValueKind.NUMBER
        assert number_val(2).data == 2.0
        assert string_val("x").kind == ValueKind.STRING
        assert bool_val(1).data is True

    @pytest.mark.parametrize("n, expected", [
        (3.0, "3"),
        (-2.0, "-2"),
        (0.0, "0"),
        (2.5, "2.5"),
        (0.1 + 0.2, "0.30000000000000004"),
        (1e-7, "0.0000001"),
        (1e15, "1000000000000000"),
        (1e300, "9223372036854775807"),
    ])
    def test_format_number(self, n, expected):
        assert format_number(n) == expected

    def test_boolean_display(self):
        assert bool_val(True).display() == "true"
        assert str(bool_val(False)) == "false"

    def test_truthiness(self):
        assert number_val(2).is_truthy()
        assert not number_val(0).is_truthy()
        assert string_val("a").is_truthy()
        assert not string_val("").is_truthy()
        assert not bool_val(False).is_truthy()

    def test_as_number(self):
        assert string_val("2.5").as_number() == 2.5
        with pytest.raises(CoercionError) as exc_info:
            bool_val(True).as_number()
        assert str(exc_info.value) == "Value 'true' is not a number"

    @pytest.mark.parametrize("text", ["", " 1", "1 ", "1_000", "abc", "1.2.3"])
    def test_parse_number_is_strict(self, text):
        assert parse_number(text) is None

    def test_parse_number(self):
        assert parse_number("1e3") == 1000.0
        assert parse_number("-4") == -4.0


class TestJsonCoercion:
    """Test conversion of runtime values to JSON."""

    def test_scalars(self):
        assert value_to_json(number_val(2)) == 2.0
        assert value_to_json(bool_val(False)) is False

    def test_numeric_string_becomes_number(self):
        assert value_to_json(string_val("2")) == 2

    def test_json_string_is_embedded(self):
        assert value_to_json(string_val('{"a": [1]}')) == {"a": [1]}

    def test_plain_string_stays_string(self):
        assert value_to_json(string_val("hello")) == "hello"

    def test_nan_constant_not_accepted(self):
        assert value_to_json(string_val("NaN")) == "NaN"

    def test_non_finite_number_is_null(self):
        assert value_to_json(number_val(float("inf"))) is None

    def test_out_of_range_number_stays_string(self):
        assert value_to_json(string_val("1e999")) == "1e999"
        assert value_to_json(string_val("[1e999]")) == "[1e999]"

    def test_dump_json_writes_non_finite_as_null(self):
        assert dump_json([float("inf"), {"a": float("nan")}, 1.5]) == '[null,{"a":null},1.5]'

    def test_dump_json_sorts_keys(self):
        assert dump_json({"b": 1, "a": 2}) == '{"a":2,"b":1}'
        assert dump_json({"a": 1}, pretty=True) == '{\n  "a": 1\n}'


class TestEnvironment:
    """Test environment chains and the config store."""

    def test_bindings_are_strings(self):
        env = create_environment({"n": "5"})
        assert env.get("n") == string_val("5")

    def test_child_shadows_parent(self):
        root = create_environment({"x": "outer", "y": "kept"})
        child = root.child({"x": number_val(1)})
        assert child.get("x") == number_val(1)
        assert child.get("y") == string_val("kept")
        assert root.get("x") == string_val("outer")
        assert (root.depth, child.depth) == (0, 1)

    def test_missing_name(self):
        env = Environment()
        assert env.get("nope") is None
        assert not env.contains("nope")

    def test_config_store_load(self):
        store = ConfigStore({"port": 8080, "debug": True, "name": "svc",
                             "empty": None, "tags": ["a"]})
        assert store.get("port") == number_val(8080)
        assert store.get("debug") == bool_val(True)
        assert store.get("name") == string_val("svc")
        assert store.get("empty") == string_val("")
        assert store.get("tags") == string_val('["a"]')
        assert store.has("port")
        assert not store.has("missing")


# --- Expression Evaluation ---

class TestArithmetic:
    """Test operators."""

    def test_precedence(self):
        assert run("2 + 3 * 4") == "14"

    def test_integer_display(self):
        assert run("1 + 2") == "3"

    def test_fraction_display(self):
        assert run("7 / 2") == "3.5"

    def test_string_concatenation(self):
        assert run('"a" + 1') == "a1"
        assert run('1 + "a"') == "1a"
        assert run('"x" + true') == "xtrue"

    def test_numeric_strings_add_as_text(self):
        """'+' only adds when both operands are numbers."""
        assert run("a + b", {"a": "1", "b": "2"}) == "12"

    def test_numeric_strings_coerce_for_other_operators(self):
        assert run("a * b", {"a": "3", "b": "2"}) == "6"
        assert run('"10" - 4') == "6"

    def test_boolean_is_not_a_number(self):
        with pytest.raises(CoercionError, match="Value 'true' is not a number"):
            run("true * 2")

    def test_non_numeric_string(self):
        with pytest.raises(CoercionError, match="Value 'abc' is not a number"):
            run('"abc" - 1')

    def test_division_by_zero(self):
        with pytest.raises(DivisionByZeroError, match="Division by zero"):
            run("1 / 0")

    def test_no_short_circuit(self):
        """Both operands of 'and' are always evaluated."""
        with pytest.raises(DivisionByZeroError):
            run("false and (1 / 0 == 0)")
        with pytest.raises(DivisionByZeroError):
            run("true or (1 / 0 == 0)")


class TestComparison:
    """Test equality, ordering and logic."""

    def test_mixed_equality_uses_display(self):
        assert run('1 == "1"') == "true"
        assert run('true == "true"') == "true"

    def test_numeric_equality(self):
        assert run("2 == 2.0") == "true"
        assert run("2 != 3") == "true"

    def test_ordering_is_numeric(self):
        assert run('3 < "10"') == "true"
        assert run("2 >= 2") == "true"
        assert run("2 > 2") == "false"

    def test_ordering_needs_numbers(self):
        with pytest.raises(CoercionError):
            run('"b" < "c"')

    def test_logic_uses_truthiness(self):
        assert run('1 and "x"') == "true"
        assert run('0 or ""') == "false"


class TestVariables:
    """Test variable lookup."""

    def test_binding(self):
        assert run('"Hello " + name', {"name": "World"}) == "Hello World"

    def test_unknown_variable(self):
        with pytest.raises(UnknownIdentifierError) as exc_info:
            run("missing")
        assert str(exc_info.value) == "Unknown variable 'missing'"


class TestCollections:
    """Test list and map literals."""

    def test_list_coerces_json_strings(self):
        assert run('["2", "x"]') == '[2,"x"]'

    def test_list_of_numbers(self):
        assert run("[1, 2.5, true]") == "[1.0,2.5,true]"

    def test_empty_collections(self):
        assert run("[]") == "[]"
        assert run("{}") == "{}"

    def test_map(self):
        assert run('{name: n, "id": 7}', {"n": "Ada"}) == '{"id":7.0,"name":"Ada"}'

    def test_nested_map_embeds_json(self):
        assert run("{items: [1]}") == '{"items":[1.0]}'

    def test_out_of_range_number_stays_string(self):
        assert run("[x]", {"x": "1e999"}) == '["1e999"]'

    def test_duplicate_keys_last_wins(self):
        assert run('{a: "first", a: "second"}') == '{"a":"second"}'


class TestIfExpr:
    """Test if/elif/else."""

    def test_first_match_wins(self):
        expr = 'if n > 10: "big" elif n > 5: "medium" elif n > 0: "small" else: "none"'
        assert run(expr, {"n": "7"}) == "medium"
        assert run(expr, {"n": "20"}) == "big"
        assert run(expr, {"n": "0"}) == "none"

    def test_later_conditions_not_evaluated(self):
        assert run("if true: 1 elif 1 / 0: 2") == "1"

    def test_no_match_no_else(self):
        assert run("if false: 1") == ""


class TestRepeat:
    """Test bounded repetition."""

    def test_zero_times(self):
        assert run("repeat 0 times: 5") == ""

    def test_last_value(self):
        assert run('repeat 3 times: "x"') == "x"

    def test_fractional_count_floors(self):
        assert run("repeat 2.9 times: 1") == "1"
        assert run("repeat 0.5 times: 1") == ""

    def test_count_from_binding(self):
        assert run("repeat n times: 7", {"n": "2"}) == "7"

    def test_upper_bound(self):
        assert run("repeat 10000 times: 1") == "1"
        with pytest.raises(LoopBoundError) as exc_info:
            run("repeat 10001 times: 1")
        assert str(exc_info.value) == "repeat N times: N is too large (max 10_000)"

    def test_negative_count(self):
        with pytest.raises(LoopBoundError) as exc_info:
            run("repeat 0 - 1 times: 1")
        assert str(exc_info.value) == "repeat N times: N must be non-negative"


class TestTryExpr:
    """Test try/catch/finally."""

    def test_success_passes_through(self):
        assert run('try: 1 + 1 catch: "no"') == "2"

    def test_catch_binds_message(self):
        assert run('try: 1 / 0 catch err: "caught " + err') == "caught Division by zero"

    def test_catch_without_name(self):
        assert run('try: missing catch: "fallback"') == "fallback"

    def test_catch_variable_scoped_to_handler(self):
        with pytest.raises(UnknownIdentifierError, match="Unknown variable 'err'"):
            run('try: 1 / 0 catch err: err finally: err')

    def test_finally_replaces_result(self):
        assert run('try: 1 finally: "cleanup"') == "cleanup"
        assert run('try: 1 / 0 catch: "c" finally: "f"') == "f"

    def test_error_without_catch_is_reraised(self):
        with pytest.raises(DivisionByZeroError):
            run('try: 1 / 0 finally: "f"')

    def test_finally_error_overrides(self):
        with pytest.raises(UnknownIdentifierError, match="Unknown variable 'oops'"):
            run('try: 1 / 0 catch: "c" finally: oops')

    def test_handler_error_propagates(self):
        with pytest.raises(UnknownIdentifierError, match="Unknown variable 'nope'"):
            run('try: 1 / 0 catch: nope finally: "f"')

    def test_nested_try(self):
        assert run('try: (try: 1 / 0 catch e: missing) catch outer: outer') == (
            "Unknown variable 'missing'"
        )


SOURCE = """
    server 3000
    func add(a, b): a + b
    func show(): x
    func outer(x): inner()
    func inner(): x
    func len(s): "mine"
    func forever(n): forever(n)
    func down(n): if n == 0: 0 else: down(n - 1) + 1
    class Math:
      double(x): x * 2
      twice_add(a, b): add(a, b) * 2
"""


class TestCalls:
    """Test user functions, methods and built-ins."""

    def test_function_call(self):
        assert run("add(2, 3)", source=SOURCE) == "5"

    def test_free_variable_sees_call_site(self):
        assert run("show()", {"x": "first"}, source=SOURCE) == "first"
        assert run("show()", {"x": "second"}, source=SOURCE) == "second"

    def test_callee_sees_caller_parameters(self):
        assert run("outer(42)", source=SOURCE) == "42"

    def test_arity_mismatch(self):
        with pytest.raises(ArityError) as exc_info:
            run("add(1)", source=SOURCE)
        assert str(exc_info.value) == "Function 'add' expected 2 arguments, got 1"

    def test_method_call(self):
        assert run("Math.double(4)", source=SOURCE) == "8"
        assert run("Math.twice_add(1, 2)", source=SOURCE) == "6"

    def test_undefined_class(self):
        with pytest.raises(UnknownIdentifierError, match="Undefined class 'Nope'"):
            run("Nope.x()", source=SOURCE)

    def test_undefined_method(self):
        with pytest.raises(UnknownIdentifierError) as exc_info:
            run("Math.triple(1)", source=SOURCE)
        assert str(exc_info.value) == "Class 'Math' has no method 'triple'"

    def test_user_function_shadows_builtin(self):
        assert run('len("abc")', source=SOURCE) == "mine"

    def test_builtin_call(self):
        assert run('upper("abc")') == "ABC"

    def test_undefined_function(self):
        with pytest.raises(UnknownIdentifierError, match="Undefined function 'nope'"):
            run("nope(1)")

    def test_arguments_evaluated_before_lookup(self):
        with pytest.raises(DivisionByZeroError):
            run("nope(1 / 0)")

    def test_runaway_recursion(self):
        with pytest.raises(EvaluationError, match="Maximum call depth exceeded"):
            run("forever(1)", source=SOURCE)

    def test_deep_recursion(self):
        assert run("down(1000)", source=SOURCE) == "1000"
        assert run("down(n)", {"n": str(MAX_CALL_DEPTH - 1)}, source=SOURCE) == str(MAX_CALL_DEPTH - 1)

    def test_call_depth_limit(self):
        with pytest.raises(EvaluationError, match="Maximum call depth exceeded"):
            run("down(n)", {"n": str(MAX_CALL_DEPTH)}, source=SOURCE)

    def test_call_depth_error_is_catchable(self):
        assert run("try: forever(1) catch e: e", source=SOURCE) == "Maximum call depth exceeded"


# --- Endpoints ---

ENDPOINTS = """
    server 3000
    func greet(name): "Hello " + name
    endpoint GET "/hello": "Hello " + name
    endpoint GET "/hello/:name": greet(name)
    endpoint POST "/echo": body
    endpoint GET "/config": json {"b": 1, "a": [1, 2]}
    endpoint GET "/broken": json {nope}
    endpoint GET "/proxy": http_get(u)
"""


class TestEndpoints:
    """Test endpoint rendering and dispatch."""

    @pytest.fixture
    def interpreter(self, context):
        return Interpreter(parse(textwrap.dedent(ENDPOINTS)), context)

    def test_render_text_body(self, interpreter):
        endpoint = interpreter.program.endpoints[0]
        assert interpreter.render_endpoint(endpoint, {"name": "World"}) == "Hello World"

    def test_render_json_body(self, interpreter):
        endpoint = interpreter.program.endpoints[3]
        assert interpreter.render_endpoint(endpoint) == '{"a":[1,2],"b":1}'

    def test_invalid_json_body(self, interpreter):
        endpoint = interpreter.program.endpoints[4]
        with pytest.raises(EvaluationError) as exc_info:
            interpreter.render_endpoint(endpoint)
        assert str(exc_info.value).startswith("Invalid JSON in Shrimpl endpoint '/broken': ")

    def test_call_endpoint_with_path_param(self, interpreter):
        result = interpreter.call_endpoint(HttpMethod.GET, "/hello/Ada")
        assert result.success
        assert result.output == "Hello Ada"
        assert result.bindings == {"name": "Ada"}

    def test_path_binding_wins_over_query(self, interpreter):
        result = interpreter.call_endpoint(HttpMethod.GET, "/hello/Ada", {"name": "Query"})
        assert result.output == "Hello Ada"

    def test_post_body(self, interpreter):
        result = interpreter.call_endpoint(HttpMethod.POST, "/echo", {"body": '{"a":1}'})
        assert result.output == '{"a":1}'

    def test_method_must_match(self, interpreter):
        result = interpreter.call_endpoint(HttpMethod.POST, "/hello")
        assert not result.success
        assert result.error_message == "No endpoint for POST /hello"

    def test_evaluation_error_is_reported(self, interpreter):
        result = interpreter.call_endpoint(HttpMethod.GET, "/hello")
        assert not result.success
        assert result.error_message == "Unknown variable 'name'"

    def test_malformed_url_is_reported(self, interpreter):
        result = interpreter.call_endpoint(HttpMethod.GET, "/proxy", {"u": "http://[::1"})
        assert not result.success
        assert result.error_message.startswith("http_get(http://[::1): ")

    def test_match_path(self):
        assert match_path("/users/:id", "/users/7") == {"id": "7"}
        assert match_path("/users/:id", "/users/7/posts") is None
        assert match_path("/a/b", "/a/c") is None
        assert match_path("/", "/") == {}


class TestConvenience:
    """Test module-level helpers."""

    def test_compile_and_evaluate(self, context):
        source = "server 8080\nfunc add(a, b): a + b"
        assert compile_and_evaluate(source, "add(2, 3) * 10", context=context) == "50"

    def test_evaluate_with_empty_program(self, context):
        program = Program(server=ServerDecl(0))
        assert evaluate(parse_expression("1 + 1"), program, {}, context) == "2"

    def test_evaluate_value(self, context):
        interpreter = Interpreter(Program(server=ServerDecl(0)), context)
        value = interpreter.evaluate_value(parse_expression("1 < 2"))
        assert value == Value(True, ValueKind.BOOLEAN)


class TestSharedContext:
    """Test concurrent evaluations sharing one runtime context."""

    TASKS = 200

    def test_config_and_openai_settings(self, context):
        program = parse("server 1")

        def run_task(i):
            bindings = {"key": f"k{i}", "value": f"v{i}", "prompt": f"prompt {i}"}

            def ev(expression):
                return evaluate(parse_expression(expression), program, bindings, context)

            assert ev("config_set(key, value)") == "ok"
            assert ev('config_set("shared", value)') == "ok"
            assert ev("openai_set_api_key(value)") == "ok"
            assert ev("openai_set_system_prompt(prompt)") == "ok"
            return ev("config_get(key)"), ev('config_get("shared")'), context.openai.snapshot()

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(run_task, range(self.TASKS)))

        written = {f"v{i}" for i in range(self.TASKS)}
        prompts = {f"prompt {i}" for i in range(self.TASKS)}
        for i, (own, shared, settings) in enumerate(results):
            assert own == f"v{i}"
            assert shared in written
            assert settings.api_key in written
            assert settings.system_prompt in prompts

        stored = context.config.snapshot()
        assert len(stored) == self.TASKS + 1
        assert all(stored[f"k{i}"] == string_val(f"v{i}") for i in range(self.TASKS))
        assert stored["shared"].display() in written
        final = context.openai.snapshot()
        assert final.api_key in written
        assert final.system_prompt in prompts
