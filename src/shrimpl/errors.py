"""
Shrimpl exceptions and diagnostics.

Three families:
- ExpressionError / ParseError: syntax errors, fatal on the first one found
- EvaluationError and subclasses: runtime failures that abort an evaluation
- Diagnostic records: type and lint findings, collected and never raised

Runtime error classes only classify; the message text is what callers
(HTTP layer, test runner, CLI) report.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class ShrimplError(Exception):
    """Base exception for all Shrimpl errors."""
    pass


# =============================================================================
# Syntax errors
# =============================================================================

class ExpressionError(ShrimplError):
    """Error while tokenizing or parsing a single expression."""
    pass


class ParseError(ShrimplError):
    """
    Error while parsing a program.

    Rendered as ``Line N: message`` or, when the failure came from an
    embedded expression, ``Line N (context): message``.
    """

    def __init__(self, line: int, message: str, context: Optional[str] = None):
        self.line = line
        self.message = message
        self.context = context
        super().__init__(self._render())

    def _render(self) -> str:
        if self.line <= 0:
            return self.message
        if self.context:
            return f"Line {self.line} ({self.context}): {self.message}"
        return f"Line {self.line}: {self.message}"


# =============================================================================
# Runtime errors
# =============================================================================

class EvaluationError(ShrimplError, RuntimeError):
    """Error during expression evaluation."""
    pass


class ArityError(EvaluationError):
    """Wrong number of arguments to a function, method or built-in."""
    pass


class UnknownIdentifierError(EvaluationError):
    """Unknown variable, function, class or method."""
    pass


class CoercionError(EvaluationError):
    """A value could not be used as the required kind."""
    pass


class DivisionByZeroError(EvaluationError):
    """Division by zero."""
    pass


class LoopBoundError(EvaluationError):
    """Repeat count is negative or above the iteration ceiling."""
    pass


class BuiltinArgumentError(EvaluationError):
    """A built-in received arguments it cannot work with."""
    pass


class ExternalIOError(EvaluationError):
    """Network, CSV or remote API failure inside a built-in."""
    pass


# --- Runtime error factories ---

def error_unknown_variable(name: str) -> UnknownIdentifierError:
    return UnknownIdentifierError(f"Unknown variable '{name}'")


def error_undefined_function(name: str) -> UnknownIdentifierError:
    return UnknownIdentifierError(f"Undefined function '{name}'")


def error_undefined_class(name: str) -> UnknownIdentifierError:
    return UnknownIdentifierError(f"Undefined class '{name}'")


def error_undefined_method(class_name: str, method_name: str) -> UnknownIdentifierError:
    return UnknownIdentifierError(f"Class '{class_name}' has no method '{method_name}'")


def error_arity(name: str, expected: int, got: int) -> ArityError:
    """Arity error for user-defined functions and methods."""
    return ArityError(f"Function '{name}' expected {expected} arguments, got {got}")


def error_builtin_arity(usage: str) -> ArityError:
    """
    Arity error for built-ins.

    ``usage`` already contains the call shape and the expectation, e.g.
    ``"len(x) expects exactly 1 argument"``.
    """
    return ArityError(usage)


def error_not_a_number(display: str) -> CoercionError:
    return CoercionError(f"Value '{display}' is not a number")


def error_division_by_zero() -> DivisionByZeroError:
    return DivisionByZeroError("Division by zero")


# =============================================================================
# Diagnostics
# =============================================================================

class Severity(Enum):
    """Severity levels for diagnostics."""
    ERROR = "error"
    WARNING = "warning"


@dataclass
class Diagnostic:
    """A single type-check or lint finding."""
    kind: Severity
    scope: str                      # function, call, expression, endpoint, method, format
    name: str                       # Function name, path, "Class.method", or ""
    message: str
    line: Optional[int] = None      # Only set by source-text lints

    @property
    def is_error(self) -> bool:
        return self.kind == Severity.ERROR

    def format(self) -> str:
        """Format the diagnostic for display."""
        where = f"{self.scope} '{self.name}'" if self.name else self.scope
        if self.line is not None:
            where = f"line {self.line}, {where}"
        return f"{self.kind.value}: {where}: {self.message}"

    def to_json(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict for tooling integration."""
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "scope": self.scope,
            "name": self.name,
            "message": self.message,
        }
        if self.line is not None:
            data["line"] = self.line
        return data


class DiagnosticCollector:
    """Collects diagnostics in the order they are reported."""

    def __init__(self):
        self.diagnostics: List[Diagnostic] = []

    def add(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)

    def error(self, scope: str, name: str, message: str, line: Optional[int] = None) -> None:
        self.add(Diagnostic(Severity.ERROR, scope, name, message, line))

    def warning(self, scope: str, name: str, message: str, line: Optional[int] = None) -> None:
        self.add(Diagnostic(Severity.WARNING, scope, name, message, line))

    def extend(self, diagnostics: List[Diagnostic]) -> None:
        self.diagnostics.extend(diagnostics)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.kind == Severity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.kind == Severity.WARNING]

    @property
    def has_errors(self) -> bool:
        return any(d.kind == Severity.ERROR for d in self.diagnostics)

    @property
    def has_warnings(self) -> bool:
        return any(d.kind == Severity.WARNING for d in self.diagnostics)

    def format_all(self) -> str:
        """Format all diagnostics, one per line."""
        return "\n".join(d.format() for d in self.diagnostics)

    def to_json(self) -> Dict[str, List[Dict[str, Any]]]:
        """Group diagnostics into ``{"errors": [...], "warnings": [...]}``."""
        return {
            "errors": [d.to_json() for d in self.errors],
            "warnings": [d.to_json() for d in self.warnings],
        }
