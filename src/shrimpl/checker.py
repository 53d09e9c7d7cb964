"""
Gradual type checker for Shrimpl.

Shrimpl source carries no type annotations. Annotations for top-level
functions come from configuration (see ``shrimpl.config``), and the checker
cross-checks them against function bodies:

1. the annotation's parameter count must match the function's;
2. body types are inferred bottom-up from the annotated parameter types;
3. calls to other annotated functions are checked argument by argument;
4. the inferred body type must be assignable to the declared result.

All findings are collected as diagnostics; nothing is raised, and the
checker never blocks evaluation.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .ast import (
    Program, FunctionDef, Expression, Literal, LiteralKind, Identifier,
    BinaryOp, FunctionCall, MethodCall, ListLiteral, DictLiteral,
    IfExpr, RepeatExpr, TryExpr,
)
from .errors import Diagnostic, DiagnosticCollector
from .types import Type, NUMBER, STRING, BOOL, ANY, resolve_type_name, is_assignable, common_type


@dataclass
class FunctionAnnotation:
    """Declared parameter types and optional result type for one function."""
    params: List[str] = field(default_factory=list)
    result: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FunctionAnnotation":
        """Build from a config entry like ``{"params": ["number"], "result": "number"}``."""
        params = data.get("params") or []
        result = data.get("result")
        return cls(
            params=[str(p) for p in params],
            result=None if result is None else str(result),
        )

    @property
    def param_types(self) -> List[Type]:
        return [resolve_type_name(p) for p in self.params]

    @property
    def result_type(self) -> Type:
        return resolve_type_name(self.result) if self.result is not None else ANY


@dataclass
class CheckResult:
    """Result of type checking."""
    diagnostics: List[Diagnostic]
    has_errors: bool
    has_warnings: bool

    def to_json(self) -> List[Dict[str, Any]]:
        """``[{kind, scope, name, message}, ...]`` in reporting order."""
        return [d.to_json() for d in self.diagnostics]


class TypeChecker:
    """
    Checks annotated functions of a program.

    Usage:
        checker = TypeChecker(annotations)
        result = checker.check(program)
        for diag in result.diagnostics:
            print(diag.format())
    """

    def __init__(self, annotations: Optional[Mapping[str, FunctionAnnotation]] = None):
        self.annotations: Dict[str, FunctionAnnotation] = dict(annotations or {})
        self.diagnostics = DiagnosticCollector()

    def check(self, program: Program) -> CheckResult:
        """Type check every annotated function of ``program``."""
        self.diagnostics = DiagnosticCollector()
        for name, func in program.functions.items():
            annotation = self.annotations.get(name)
            if annotation is not None:
                self._check_function(func, annotation)

        return CheckResult(
            diagnostics=self.diagnostics.diagnostics,
            has_errors=self.diagnostics.has_errors,
            has_warnings=self.diagnostics.has_warnings,
        )

    def _check_function(self, func: FunctionDef, annotation: FunctionAnnotation) -> None:
        if len(annotation.params) != len(func.params):
            self.diagnostics.error(
                "function", func.name,
                f"Type annotation has {len(annotation.params)} params but function "
                f"'{func.name}' has {len(func.params)} params",
            )
            return

        env = dict(zip(func.params, annotation.param_types))
        body_type = self._infer(func.body, env)

        if annotation.result is not None:
            expected = annotation.result_type
            if not is_assignable(body_type, expected):
                self.diagnostics.error(
                    "function", func.name,
                    f"Return type mismatch: expected {expected}, got {body_type}",
                )

    # =========================================================================
    # Inference
    # =========================================================================

    def _infer(self, expr: Expression, env: Dict[str, Type]) -> Type:
        """Infer the type of an expression, reporting problems on the way."""
        if isinstance(expr, Literal):
            return self._infer_literal(expr)
        elif isinstance(expr, Identifier):
            return env.get(expr.name, ANY)
        elif isinstance(expr, BinaryOp):
            return self._infer_binary_op(expr, env)
        elif isinstance(expr, FunctionCall):
            return self._infer_call(expr, env)
        elif isinstance(expr, MethodCall):
            # Methods are not annotated
            return ANY
        elif isinstance(expr, (ListLiteral, DictLiteral)):
            return ANY
        elif isinstance(expr, IfExpr):
            return self._infer_if_expr(expr, env)
        elif isinstance(expr, RepeatExpr):
            return self._infer(expr.body, env)
        elif isinstance(expr, TryExpr):
            return self._infer_try_expr(expr, env)
        return ANY

    def _infer_literal(self, lit: Literal) -> Type:
        if lit.kind == LiteralKind.NUMBER:
            return NUMBER
        if lit.kind == LiteralKind.BOOL:
            return BOOL
        return STRING

    def _infer_binary_op(self, op: BinaryOp, env: Dict[str, Type]) -> Type:
        if op.operator.is_arithmetic:
            left = self._infer(op.left, env)
            right = self._infer(op.right, env)
            if not is_assignable(left, NUMBER) or not is_assignable(right, NUMBER):
                self.diagnostics.warning(
                    "expression", "", "Numeric operator used with non-number operand(s)"
                )
            return NUMBER
        return BOOL

    def _infer_call(self, call: FunctionCall, env: Dict[str, Type]) -> Type:
        annotation = self.annotations.get(call.name)
        if annotation is None:
            return ANY

        if len(annotation.params) != len(call.arguments):
            self.diagnostics.error(
                "call", call.name,
                f"Call to '{call.name}' expected {len(annotation.params)} arguments "
                f"but got {len(call.arguments)}",
            )
        else:
            for idx, (arg, expected) in enumerate(zip(call.arguments, annotation.param_types), 1):
                actual = self._infer(arg, env)
                if not is_assignable(actual, expected):
                    self.diagnostics.error(
                        "call", call.name,
                        f"Argument {idx} to '{call.name}' has type {actual} "
                        f"but annotation expects {expected}",
                    )
        return annotation.result_type

    def _infer_if_expr(self, if_expr: IfExpr, env: Dict[str, Type]) -> Type:
        branch_types = []
        for branch in if_expr.branches:
            self._infer(branch.condition, env)
            branch_types.append(self._infer(branch.body, env))
        if if_expr.else_branch is not None:
            branch_types.append(self._infer(if_expr.else_branch, env))
        return common_type(branch_types)

    def _infer_try_expr(self, try_expr: TryExpr, env: Dict[str, Type]) -> Type:
        try_type = self._infer(try_expr.body, env)
        catch_type = ANY
        if try_expr.catch_body is not None:
            catch_type = self._infer(try_expr.catch_body, env)
        if try_expr.finally_body is not None:
            self._infer(try_expr.finally_body, env)
        return try_type if try_type == catch_type else ANY


def check(program: Program,
          annotations: Optional[Mapping[str, FunctionAnnotation]] = None) -> CheckResult:
    """
    Type check a Shrimpl program.

    Args:
        program: Parsed program
        annotations: Function name -> annotation; functions without one are
            skipped

    Returns:
        CheckResult with diagnostics in reporting order
    """
    return TypeChecker(annotations).check(program)


def annotations_from_config(functions: Mapping[str, Mapping[str, Any]]) -> Dict[str, FunctionAnnotation]:
    """Convert the ``types.functions`` config section into annotations."""
    return {name: FunctionAnnotation.from_dict(entry or {}) for name, entry in functions.items()}
