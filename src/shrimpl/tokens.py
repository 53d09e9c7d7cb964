"""
Token definitions for Shrimpl expressions.

Expressions are tokenized one at a time (a statement line never spans more
than one expression), so tokens carry only a column offset into the
expression text rather than a full source span.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import FrozenSet, Optional, Union


class TokenType(Enum):
    """All token types in Shrimpl expressions."""

    # --- Literals ---
    NUMBER = auto()             # 42, 3.14
    STRING = auto()             # "hello"
    IDENTIFIER = auto()         # name, and, if, repeat ...

    # --- Arithmetic ---
    PLUS = auto()               # +
    MINUS = auto()              # -
    STAR = auto()               # *
    SLASH = auto()              # /

    # --- Comparison ---
    EQ = auto()                 # ==
    NE = auto()                 # !=
    LT = auto()                 # <
    LE = auto()                 # <=
    GT = auto()                 # >
    GE = auto()                 # >=

    # --- Delimiters ---
    LPAREN = auto()             # (
    RPAREN = auto()             # )
    LBRACKET = auto()           # [
    RBRACKET = auto()           # ]
    LBRACE = auto()             # {
    RBRACE = auto()             # }
    COMMA = auto()              # ,
    DOT = auto()                # .
    COLON = auto()              # :

    # --- Special ---
    EOF = auto()


# Single-character tokens that never start a longer token
SINGLE_CHAR_TOKENS = {
    '+': TokenType.PLUS,
    '-': TokenType.MINUS,
    '*': TokenType.STAR,
    '/': TokenType.SLASH,
    '(': TokenType.LPAREN,
    ')': TokenType.RPAREN,
    '[': TokenType.LBRACKET,
    ']': TokenType.RBRACKET,
    '{': TokenType.LBRACE,
    '}': TokenType.RBRACE,
    ',': TokenType.COMMA,
    '.': TokenType.DOT,
    ':': TokenType.COLON,
}


# Words with grammatical meaning. They are still lexed as identifiers; the
# parser recognizes them by position, so e.g. a variable may be called 'times'
# outside a repeat expression.
KEYWORDS: FrozenSet[str] = frozenset({
    "and", "or",
    "true", "false",
    "if", "elif", "else",
    "repeat", "times",
    "try", "catch", "finally",
})


@dataclass(frozen=True)
class Token:
    """A single token from an expression."""
    type: TokenType
    value: Optional[Union[float, str]]     # Parsed value for literals and identifiers
    lexeme: str                            # Original source text
    column: int = 0                        # 0-based offset into the expression

    def is_word(self, word: str) -> bool:
        """True if this token is the identifier ``word``."""
        return self.type == TokenType.IDENTIFIER and self.value == word

    def __str__(self) -> str:
        if self.type == TokenType.EOF:
            return "end of expression"
        if self.type == TokenType.NUMBER:
            return f"number {self.lexeme}"
        if self.type == TokenType.STRING:
            return f"string {self.lexeme}"
        if self.type == TokenType.IDENTIFIER:
            return f"identifier '{self.value}'"
        return f"'{self.lexeme}'"
