"""
Tree-walking interpreter for Shrimpl expressions.

Evaluation is synchronous and keeps no state between calls apart from what
built-ins store in the shared ``RuntimeContext``. Any error aborts the whole
evaluation with an ``EvaluationError`` whose message is the user-facing
text.
"""

import logging
import math
import sys
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

from ..ast import (
    Program, EndpointDecl, FunctionDef, HttpMethod, JsonBody,
    Expression, Literal, LiteralKind, Identifier, BinaryOp, BinaryOperator,
    FunctionCall, MethodCall, ListLiteral, DictLiteral,
    IfExpr, RepeatExpr, TryExpr,
)
from ..errors import (
    EvaluationError, LoopBoundError,
    error_unknown_variable, error_undefined_function, error_undefined_class,
    error_undefined_method, error_arity, error_division_by_zero,
)
from .values import (
    Value, ValueKind, number_val, string_val, bool_val, EMPTY,
    value_to_json, dump_json, loads_json,
)
from .context import Environment, RuntimeContext, create_environment, get_default_context
from .builtins import BuiltinRegistry, get_builtin_registry

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Hard ceiling on repeat iterations
MAX_REPEAT_STEPS = 10_000

# Nested user function calls (and catch scopes) allowed in one evaluation
MAX_CALL_DEPTH = 5_000

# Evaluations run on a worker thread with room for MAX_CALL_DEPTH levels
EVAL_STACK_SIZE = 256 * 1024 * 1024
EVAL_RECURSION_LIMIT = 200_000

_stack_lock = threading.Lock()
_stack_users = 0
_saved_recursion_limit = 0
_eval_thread = threading.local()


def _raise_recursion_limit() -> None:
    global _stack_users, _saved_recursion_limit
    with _stack_lock:
        if _stack_users == 0:
            _saved_recursion_limit = sys.getrecursionlimit()
            sys.setrecursionlimit(max(_saved_recursion_limit, EVAL_RECURSION_LIMIT))
        _stack_users += 1


def _restore_recursion_limit() -> None:
    global _stack_users
    with _stack_lock:
        _stack_users -= 1
        if _stack_users == 0:
            sys.setrecursionlimit(_saved_recursion_limit)


def run_on_eval_stack(func: Callable[[], T]) -> T:
    """
    Call ``func`` on a thread with a large stack and a raised recursion limit.

    The recursion limit is process-wide; it is raised while any evaluation
    is running and restored when the last one finishes. Calls made from an
    evaluation thread run directly.
    """
    if getattr(_eval_thread, "active", False):
        return func()

    future: Future = Future()

    def target() -> None:
        _eval_thread.active = True
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(func())
        except BaseException as e:  # re-raised by future.result()
            future.set_exception(e)

    _raise_recursion_limit()
    try:
        with _stack_lock:
            previous = threading.stack_size(EVAL_STACK_SIZE)
            try:
                worker = threading.Thread(target=target, name="shrimpl-eval", daemon=True)
                worker.start()
            finally:
                threading.stack_size(previous)
        worker.join()
        return future.result()
    finally:
        _restore_recursion_limit()


@dataclass
class EvaluationResult:
    """Outcome of rendering an endpoint."""
    success: bool
    output: str = ""
    error_message: Optional[str] = None
    endpoint: Optional[EndpointDecl] = None
    bindings: Dict[str, str] = field(default_factory=dict)


def match_path(pattern: str, path: str) -> Optional[Dict[str, str]]:
    """
    Match a concrete path against an endpoint pattern.

    ``:name`` segments capture the corresponding path segment. Returns the
    captured values, or None when the path does not match.
    """
    pattern_parts = pattern.strip("/").split("/")
    path_parts = path.strip("/").split("/")
    if len(pattern_parts) != len(path_parts):
        return None
    captured: Dict[str, str] = {}
    for expected, actual in zip(pattern_parts, path_parts):
        if expected.startswith(":") and len(expected) > 1:
            captured[expected[1:]] = actual
        elif expected != actual:
            return None
    return captured


class Interpreter:
    """
    Evaluates expressions against a parsed program.

    Usage:
        interpreter = Interpreter(program)
        text = interpreter.evaluate(endpoint.body, {"name": "World"})

    User functions are looked up before built-ins. A call does not create a
    lexical scope: the callee sees the caller's whole environment plus its
    own parameters.
    """

    def __init__(self, program: Program, context: Optional[RuntimeContext] = None,
                 registry: Optional[BuiltinRegistry] = None):
        self.program = program
        self.context = context or get_default_context()
        self.registry = registry or get_builtin_registry()

    # =========================================================================
    # Public API
    # =========================================================================

    def evaluate(self, expr: Expression, bindings: Optional[Mapping[str, str]] = None) -> str:
        """Evaluate ``expr`` with string bindings and return its display form."""
        return self.evaluate_value(expr, bindings).display()

    def evaluate_value(self, expr: Expression,
                       bindings: Optional[Mapping[str, str]] = None) -> Value:
        """Evaluate ``expr`` and return the runtime value."""
        env = create_environment(bindings)
        logger.debug("Evaluating %s with bindings %s", type(expr).__name__, sorted(env.variables))
        return run_on_eval_stack(lambda: self._evaluate_root(expr, env))

    def _evaluate_root(self, expr: Expression, env: Environment) -> Value:
        try:
            return self._evaluate(expr, env)
        except RecursionError:
            raise EvaluationError("Maximum call depth exceeded") from None

    def render_endpoint(self, endpoint: EndpointDecl,
                        bindings: Optional[Mapping[str, str]] = None) -> str:
        """
        Produce the response text for an endpoint.

        JSON bodies are not evaluated; they are validated and re-emitted in
        compact form.
        """
        if isinstance(endpoint.body, JsonBody):
            try:
                data = loads_json(endpoint.body.raw)
            except ValueError as e:
                raise EvaluationError(
                    f"Invalid JSON in Shrimpl endpoint '{endpoint.path}': {e}"
                ) from e
            return dump_json(data)
        return self.evaluate(endpoint.body, bindings)

    def find_endpoint(self, method: HttpMethod,
                      path: str) -> Optional[Tuple[EndpointDecl, Dict[str, str]]]:
        """First endpoint whose method and path pattern match, with its captures."""
        for endpoint in self.program.endpoints:
            if endpoint.method != method:
                continue
            captured = match_path(endpoint.path, path)
            if captured is not None:
                return endpoint, captured
        return None

    def call_endpoint(self, method: HttpMethod, path: str,
                      bindings: Optional[Mapping[str, str]] = None) -> EvaluationResult:
        """
        Dispatch a request the way the HTTP layer does.

        Path captures override same-named ``bindings`` (query values, body).
        """
        found = self.find_endpoint(method, path)
        if found is None:
            return EvaluationResult(
                success=False,
                error_message=f"No endpoint for {method.value} {path}",
            )
        endpoint, captured = found
        merged = dict(bindings or {})
        merged.update(captured)
        try:
            output = self.render_endpoint(endpoint, merged)
        except EvaluationError as e:
            return EvaluationResult(
                success=False, error_message=str(e), endpoint=endpoint, bindings=merged,
            )
        return EvaluationResult(success=True, output=output, endpoint=endpoint, bindings=merged)

    # =========================================================================
    # Expression Evaluation
    # =========================================================================

    def _evaluate(self, expr: Expression, env: Environment) -> Value:
        """Evaluate an expression to produce a Value."""
        if isinstance(expr, Literal):
            return self._eval_literal(expr)
        elif isinstance(expr, Identifier):
            return self._eval_identifier(expr, env)
        elif isinstance(expr, BinaryOp):
            return self._eval_binary_op(expr, env)
        elif isinstance(expr, FunctionCall):
            return self._eval_function_call(expr, env)
        elif isinstance(expr, MethodCall):
            return self._eval_method_call(expr, env)
        elif isinstance(expr, ListLiteral):
            return self._eval_list_literal(expr, env)
        elif isinstance(expr, DictLiteral):
            return self._eval_dict_literal(expr, env)
        elif isinstance(expr, IfExpr):
            return self._eval_if_expr(expr, env)
        elif isinstance(expr, RepeatExpr):
            return self._eval_repeat_expr(expr, env)
        elif isinstance(expr, TryExpr):
            return self._eval_try_expr(expr, env)
        else:
            raise EvaluationError(f"Unknown expression type: {type(expr).__name__}")

    def _eval_literal(self, lit: Literal) -> Value:
        if lit.kind == LiteralKind.NUMBER:
            return number_val(lit.value)
        elif lit.kind == LiteralKind.BOOL:
            return bool_val(lit.value)
        return string_val(lit.value)

    def _eval_identifier(self, ident: Identifier, env: Environment) -> Value:
        value = env.get(ident.name)
        if value is None:
            raise error_unknown_variable(ident.name)
        return value

    def _eval_binary_op(self, op: BinaryOp, env: Environment) -> Value:
        """Evaluate a binary operation; both sides are always evaluated."""
        left = self._evaluate(op.left, env)
        right = self._evaluate(op.right, env)
        operator = op.operator

        if operator == BinaryOperator.ADD:
            if left.is_number and right.is_number:
                return number_val(left.data + right.data)
            return string_val(left.display() + right.display())

        if operator in (BinaryOperator.SUB, BinaryOperator.MUL, BinaryOperator.DIV):
            a = left.as_number()
            b = right.as_number()
            if operator == BinaryOperator.SUB:
                return number_val(a - b)
            if operator == BinaryOperator.MUL:
                return number_val(a * b)
            if b == 0.0:
                raise error_division_by_zero()
            return number_val(a / b)

        if operator == BinaryOperator.EQ:
            return bool_val(_values_equal(left, right))
        if operator == BinaryOperator.NE:
            return bool_val(not _values_equal(left, right))

        if operator.is_comparison:
            a = left.as_number()
            b = right.as_number()
            if operator == BinaryOperator.LT:
                return bool_val(a < b)
            if operator == BinaryOperator.LE:
                return bool_val(a <= b)
            if operator == BinaryOperator.GT:
                return bool_val(a > b)
            return bool_val(a >= b)

        if operator == BinaryOperator.AND:
            return bool_val(left.is_truthy() and right.is_truthy())
        if operator == BinaryOperator.OR:
            return bool_val(left.is_truthy() or right.is_truthy())

        raise EvaluationError(f"Unknown binary operator: {operator}")

    def _eval_arguments(self, arguments: List[Expression], env: Environment) -> List[Value]:
        return [self._evaluate(arg, env) for arg in arguments]

    def _eval_function_call(self, call: FunctionCall, env: Environment) -> Value:
        func = self.program.functions.get(call.name)
        if func is not None:
            return self._call_user_function(func, self._eval_arguments(call.arguments, env), env)

        args = self._eval_arguments(call.arguments, env)
        builtin = self.registry.get_function(call.name)
        if builtin is None:
            raise error_undefined_function(call.name)
        return builtin(self.context, args)

    def _eval_method_call(self, call: MethodCall, env: Environment) -> Value:
        cls = self.program.classes.get(call.class_name)
        if cls is None:
            raise error_undefined_class(call.class_name)
        method = cls.methods.get(call.method_name)
        if method is None:
            raise error_undefined_method(call.class_name, call.method_name)
        return self._call_user_function(method, self._eval_arguments(call.arguments, env), env)

    def _call_user_function(self, func: FunctionDef, args: List[Value],
                            caller_env: Environment) -> Value:
        if len(args) != len(func.params):
            raise error_arity(func.name, len(func.params), len(args))
        if caller_env.depth >= MAX_CALL_DEPTH:
            raise EvaluationError("Maximum call depth exceeded")
        call_env = caller_env.child(dict(zip(func.params, args)), name=func.name)
        return self._evaluate(func.body, call_env)

    def _eval_list_literal(self, lst: ListLiteral, env: Environment) -> Value:
        items = [value_to_json(self._evaluate(item, env)) for item in lst.elements]
        return string_val(dump_json(items))

    def _eval_dict_literal(self, dct: DictLiteral, env: Environment) -> Value:
        obj = {}
        for key, value_expr in dct.entries:
            obj[key] = value_to_json(self._evaluate(value_expr, env))
        return string_val(dump_json(obj))

    def _eval_if_expr(self, if_expr: IfExpr, env: Environment) -> Value:
        for branch in if_expr.branches:
            if self._evaluate(branch.condition, env).is_truthy():
                return self._evaluate(branch.body, env)
        if if_expr.else_branch is not None:
            return self._evaluate(if_expr.else_branch, env)
        return EMPTY

    def _eval_repeat_expr(self, repeat: RepeatExpr, env: Environment) -> Value:
        n = self._evaluate(repeat.count, env).as_number()
        if n < 0:
            raise LoopBoundError("repeat N times: N must be non-negative")
        if math.isnan(n):
            steps = 0
        elif n >= MAX_REPEAT_STEPS + 1:
            raise LoopBoundError("repeat N times: N is too large (max 10_000)")
        else:
            steps = int(n)

        last = EMPTY
        for _ in range(steps):
            last = self._evaluate(repeat.body, env)
        return last

    def _eval_try_expr(self, try_expr: TryExpr, env: Environment) -> Value:
        """
        try/catch/finally.

        A finally clause always runs, in the original environment. Its value
        replaces the result; its error replaces everything. An error with no
        catch clause is re-raised once finally has completed.
        """
        pending: Optional[EvaluationError] = None
        result = EMPTY
        try:
            result = self._eval_try_catch(try_expr, env)
        except EvaluationError as e:
            pending = e

        if try_expr.finally_body is not None:
            result = self._evaluate(try_expr.finally_body, env)
        if pending is not None:
            raise pending
        return result

    def _eval_try_catch(self, try_expr: TryExpr, env: Environment) -> Value:
        try:
            return self._evaluate(try_expr.body, env)
        except EvaluationError as e:
            if try_expr.catch_body is None:
                raise
            logger.debug("try caught: %s", e)
            catch_env = env
            if try_expr.catch_var:
                catch_env = env.child({try_expr.catch_var: string_val(str(e))}, name="catch")
            return self._evaluate(try_expr.catch_body, catch_env)


def _values_equal(left: Value, right: Value) -> bool:
    """Same-kind numbers and booleans compare natively; anything else by display form."""
    if left.kind == right.kind and left.kind in (ValueKind.NUMBER, ValueKind.BOOLEAN):
        return left.data == right.data
    return left.display() == right.display()


# Convenience function for simple evaluation
def evaluate(
    expr: Expression,
    program: Program,
    bindings: Optional[Mapping[str, str]] = None,
    context: Optional[RuntimeContext] = None,
) -> str:
    """
    Evaluate an expression against a program.

    This is a convenience wrapper around Interpreter.evaluate().

    Raises:
        EvaluationError: On any runtime failure
    """
    return Interpreter(program, context).evaluate(expr, bindings)


def compile_and_evaluate(
    source: str,
    expression: str,
    bindings: Optional[Mapping[str, str]] = None,
    context: Optional[RuntimeContext] = None,
) -> str:
    """
    Parse a program and an expression, then evaluate the expression.

    This is the simplest way to try Shrimpl code:

        from shrimpl import compile_and_evaluate

        text = compile_and_evaluate('''
            server 8080
            func add(a, b): a + b
        ''', 'add(2, 3)')
        assert text == "5"

    Args:
        source: Program text providing functions and classes
        expression: Expression text to evaluate
        bindings: Variables visible to the expression
        context: Runtime context (defaults to the process-wide one)

    Returns:
        Display form of the result

    Raises:
        ParseError: If the program does not parse
        ExpressionError: If the expression does not parse
        EvaluationError: On any runtime failure
    """
    from ..statements import parse
    from ..parser import parse_expression

    program = parse(source)
    expr = parse_expression(expression)
    return evaluate(expr, program, bindings, context)
