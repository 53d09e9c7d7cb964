"""
Runtime values for the Shrimpl interpreter.

Every expression evaluates to one of three kinds: Number (a float), String
or Boolean. Lists and maps have no runtime kind of their own; they evaluate
to a String holding serialized JSON, produced by ``value_to_json`` and
``dump_json``.
"""

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import numpy as np

from ..errors import error_not_a_number


class ValueKind(Enum):
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "bool"


@dataclass(frozen=True)
class Value:
    """
    A runtime value.

    ``data`` is a float, str or bool matching ``kind``.
    """
    data: Any
    kind: ValueKind

    def __repr__(self) -> str:
        return f"Value({self.data!r}, {self.kind.value})"

    def __str__(self) -> str:
        return self.display()

    @property
    def is_number(self) -> bool:
        return self.kind == ValueKind.NUMBER

    @property
    def is_bool(self) -> bool:
        return self.kind == ValueKind.BOOLEAN

    def display(self) -> str:
        """The textual form used for responses, concatenation and comparison."""
        if self.kind == ValueKind.NUMBER:
            return format_number(self.data)
        if self.kind == ValueKind.BOOLEAN:
            return "true" if self.data else "false"
        return self.data

    def is_truthy(self) -> bool:
        """Booleans as-is, numbers when non-zero, strings when non-empty."""
        if self.kind == ValueKind.BOOLEAN:
            return self.data
        if self.kind == ValueKind.NUMBER:
            return self.data != 0.0
        return self.data != ""

    def as_number(self) -> float:
        """
        Coerce to a number.

        Strings must parse completely as a float; booleans never coerce.

        Raises:
            CoercionError: If the value is not numeric
        """
        if self.kind == ValueKind.NUMBER:
            return self.data
        if self.kind == ValueKind.STRING:
            number = parse_number(self.data)
            if number is not None:
                return number
        raise error_not_a_number(self.display())


# Convenience constructors

def number_val(n: float) -> Value:
    """Create a number value."""
    return Value(float(n), ValueKind.NUMBER)


def string_val(s: str) -> Value:
    """Create a string value."""
    return Value(str(s), ValueKind.STRING)


def bool_val(b: bool) -> Value:
    """Create a boolean value."""
    return Value(bool(b), ValueKind.BOOLEAN)


EMPTY = string_val("")
OK = string_val("ok")

_INT64_MAX = 2 ** 63 - 1
_INT64_MIN = -2 ** 63


# =============================================================================
# Number Formatting and Parsing
# =============================================================================

def format_number(n: float) -> str:
    """
    Render a number the way responses show it.

    Integral values drop the fractional part (``3.0`` -> ``"3"``); other
    values use the shortest round-tripping positional notation, never an
    exponent (``1e-07`` -> ``"0.0000001"``).
    """
    if math.isnan(n):
        return "NaN"
    if math.isinf(n):
        return "inf" if n > 0 else "-inf"
    if n == math.floor(n):
        # Saturates to the 64-bit integer range
        return str(max(_INT64_MIN, min(_INT64_MAX, int(n))))
    return np.format_float_positional(n, trim='-')


def parse_number(text: str) -> Optional[float]:
    """
    Strictly parse ``text`` as a float.

    Unlike ``float()``, surrounding whitespace and '_' digit separators are
    rejected. Returns None when the text is not a number.
    """
    if not text or text != text.strip() or "_" in text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


# =============================================================================
# JSON Coercion
# =============================================================================

def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _parse_finite_float(text: str) -> float:
    number = float(text)
    if not math.isfinite(number):
        raise ValueError(f"number out of range: {text}")
    return number


def loads_json(text: str) -> Any:
    """
    Parse strict JSON.

    ``NaN``, ``Infinity`` and ``-Infinity`` are rejected, as are numbers too
    large for a float (``1e999``).

    Raises:
        ValueError: If the text is not valid JSON
    """
    return json.loads(text, parse_constant=_reject_constant, parse_float=_parse_finite_float)


def value_to_json(value: Value) -> Any:
    """
    Convert a runtime value to a JSON-compatible Python object.

    Numbers and booleans become JSON scalars (non-finite numbers become
    null). A string that parses as JSON is embedded as that JSON value, so
    ``"2"`` becomes the number 2 and ``"[1,2]"`` a nested array; any other
    string stays a JSON string.
    """
    if value.kind == ValueKind.NUMBER:
        return value.data if math.isfinite(value.data) else None
    if value.kind == ValueKind.BOOLEAN:
        return value.data
    try:
        return loads_json(value.data)
    except ValueError:
        return value.data


def _finite_or_null(obj: Any) -> Any:
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, dict):
        return {key: _finite_or_null(item) for key, item in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_finite_or_null(item) for item in obj]
    return obj


def dump_json(obj: Any, pretty: bool = False) -> str:
    """
    Serialize with sorted keys; compact by default, 2-space indent when pretty.

    Non-finite floats are written as null, so the output is always valid JSON.
    """
    obj = _finite_or_null(obj)
    if pretty:
        return json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=True, allow_nan=False)
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False, sort_keys=True,
                      allow_nan=False)
