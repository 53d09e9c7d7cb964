"""
Lexer for Shrimpl expressions.

Converts a single expression string into a list of tokens. Supports:
- Numeric literals (digits with optional '.' parts, no exponent or sign)
- Double-quoted string literals (no escape sequences)
- Identifiers and keyword-like words
- Arithmetic, comparison and delimiter operators

Whitespace is insignificant. There are no comments inside expressions;
'#' lines are dropped by the statement parser before expressions are seen.
"""

from typing import Iterator, List

from .tokens import Token, TokenType, SINGLE_CHAR_TOKENS
from .errors import ExpressionError


class Lexer:
    """
    Tokenizer for one Shrimpl expression.

    Usage:
        lexer = Lexer('add(1, 2) * 3')
        tokens = lexer.tokenize()

    The token list always ends with an EOF token.
    """

    def __init__(self, text: str):
        self.text = text
        self.pos = 0            # Current offset into text
        self.start = 0          # Offset where the current token began

    # =========================================================================
    # Character Navigation
    # =========================================================================

    def _is_at_end(self) -> bool:
        return self.pos >= len(self.text)

    def _peek(self, offset: int = 0) -> str:
        """Look ahead without consuming; returns '\\0' past the end."""
        idx = self.pos + offset
        if idx >= len(self.text):
            return '\0'
        return self.text[idx]

    def _advance(self) -> str:
        char = self.text[self.pos]
        self.pos += 1
        return char

    def _match(self, expected: str) -> bool:
        """Consume the next character if it equals ``expected``."""
        if self._is_at_end() or self.text[self.pos] != expected:
            return False
        self.pos += 1
        return True

    def _make_token(self, token_type: TokenType, value=None) -> Token:
        lexeme = self.text[self.start:self.pos]
        return Token(token_type, value, lexeme, self.start)

    # =========================================================================
    # Scanners
    # =========================================================================

    def _scan_string(self) -> Token:
        """Scan a string literal; the opening quote is already consumed."""
        while not self._is_at_end() and self._peek() != '"':
            self._advance()
        if self._is_at_end():
            raise ExpressionError("Unterminated string literal")
        self._advance()  # closing quote
        value = self.text[self.start + 1:self.pos - 1]
        return self._make_token(TokenType.STRING, value)

    def _scan_number(self) -> Token:
        """
        Scan a numeric literal.

        Digits and dots are consumed greedily and only then converted, so a
        malformed literal such as ``1.2.3`` is reported as a whole.
        """
        while _is_digit(self._peek()) or self._peek() == '.':
            self._advance()
        lexeme = self.text[self.start:self.pos]
        try:
            value = float(lexeme)
        except ValueError:
            raise ExpressionError(f"Invalid number literal '{lexeme}'")
        return self._make_token(TokenType.NUMBER, value)

    def _scan_identifier(self) -> Token:
        while _is_ident_char(self._peek()):
            self._advance()
        return self._make_token(TokenType.IDENTIFIER, self.text[self.start:self.pos])

    def _scan_token(self) -> Token:
        """Scan the next token; whitespace has already been skipped."""
        char = self._advance()

        if char in SINGLE_CHAR_TOKENS:
            return self._make_token(SINGLE_CHAR_TOKENS[char])

        if char == '"':
            return self._scan_string()

        if char == '=':
            if self._match('='):
                return self._make_token(TokenType.EQ)
            raise ExpressionError(
                "Unexpected '=' in expression; use '==' for equality comparisons"
            )

        if char == '!':
            if self._match('='):
                return self._make_token(TokenType.NE)
            raise ExpressionError(
                "Unexpected '!' in expression; use '!=' for inequality comparisons"
            )

        if char == '<':
            return self._make_token(TokenType.LE if self._match('=') else TokenType.LT)

        if char == '>':
            return self._make_token(TokenType.GE if self._match('=') else TokenType.GT)

        if _is_digit(char):
            return self._scan_number()

        if _is_ident_start(char):
            return self._scan_identifier()

        raise ExpressionError(f"Unexpected character '{char}' in expression")

    # =========================================================================
    # Public API
    # =========================================================================

    def tokenize(self) -> List[Token]:
        """Tokenize the whole expression, ending with an EOF token."""
        tokens: List[Token] = []
        while True:
            while not self._is_at_end() and self._peek().isspace():
                self._advance()
            self.start = self.pos
            if self._is_at_end():
                tokens.append(Token(TokenType.EOF, None, "", self.pos))
                return tokens
            tokens.append(self._scan_token())

    def __iter__(self) -> Iterator[Token]:
        return iter(self.tokenize())


def _is_digit(char: str) -> bool:
    return '0' <= char <= '9'


def _is_ident_start(char: str) -> bool:
    return ('a' <= char <= 'z') or ('A' <= char <= 'Z') or char == '_'


def _is_ident_char(char: str) -> bool:
    return _is_ident_start(char) or _is_digit(char)


def tokenize(text: str) -> List[Token]:
    """
    Tokenize a Shrimpl expression.

    Args:
        text: Expression text

    Returns:
        List of tokens ending with EOF

    Raises:
        ExpressionError: On malformed input
    """
    return Lexer(text).tokenize()
