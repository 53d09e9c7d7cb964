"""
Type system for the Shrimpl gradual type checker.

Only four types exist: number, string, bool and any. ``any`` is the
gradual escape hatch; it is compatible with every type in both directions.
Annotations come from configuration, never from source, so any type name
that is not recognized quietly becomes ``any``.
"""

from dataclasses import dataclass
from typing import Dict, Iterable


@dataclass(frozen=True)
class Type:
    """A Shrimpl type."""
    name: str

    def __str__(self) -> str:
        return self.name

    def is_assignable_from(self, other: "Type") -> bool:
        """Check if a value of type ``other`` can be used where ``self`` is expected."""
        return is_assignable(other, self)


NUMBER = Type("number")
STRING = Type("string")
BOOL = Type("bool")
ANY = Type("any")


# Accepted spellings in annotations (case-insensitive)
TYPE_NAMES: Dict[str, Type] = {
    "number": NUMBER,
    "float": NUMBER,
    "int": NUMBER,
    "integer": NUMBER,
    "string": STRING,
    "str": STRING,
    "bool": BOOL,
    "boolean": BOOL,
    "any": ANY,
}


def resolve_type_name(name: str) -> Type:
    """Resolve an annotation type name; unknown names resolve to ``any``."""
    return TYPE_NAMES.get(name.strip().lower(), ANY)


def is_assignable(actual: Type, expected: Type) -> bool:
    """``any`` on either side is compatible; otherwise types must match exactly."""
    return expected == ANY or actual == ANY or actual == expected


def common_type(types: Iterable[Type]) -> Type:
    """The single type shared by all ``types``, or ``any`` if they differ or are empty."""
    result = None
    for t in types:
        if result is None:
            result = t
        elif result != t:
            return ANY
    return result if result is not None else ANY
