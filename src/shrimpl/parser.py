"""
Recursive descent parser for Shrimpl expressions.

Converts the token list of a single expression into an expression tree.
Statement-level parsing (server, endpoint, func, ...) lives in
``shrimpl.statements`` and calls into this module for every embedded
expression.
"""

from typing import List, Optional, Tuple

from .tokens import Token, TokenType
from .lexer import tokenize
from .errors import ExpressionError
from .ast import (
    Expression, Literal, LiteralKind, Identifier, BinaryOp, BinaryOperator,
    FunctionCall, MethodCall, ListLiteral, DictLiteral,
    IfBranch, IfExpr, RepeatExpr, TryExpr,
)


class ExpressionParser:
    """
    Recursive descent parser for one Shrimpl expression.

    Usage:
        parser = ExpressionParser(tokenize('1 + 2 * 3'))
        expr = parser.parse()

    Precedence, lowest to highest (all binary levels are left-associative):
        Leading forms: if/elif/else, repeat N times, try/catch/finally
                 or
                 and
                 == != < <= > >=
                 + -
                 * /
        Highest: literals, calls, Class.method(...), (...), [...], {...}

    There is no unary minus; '-5' is a syntax error.
    """

    _COMPARISON_OPS = {
        TokenType.EQ: BinaryOperator.EQ,
        TokenType.NE: BinaryOperator.NE,
        TokenType.LT: BinaryOperator.LT,
        TokenType.LE: BinaryOperator.LE,
        TokenType.GT: BinaryOperator.GT,
        TokenType.GE: BinaryOperator.GE,
    }

    _ADDITIVE_OPS = {
        TokenType.PLUS: BinaryOperator.ADD,
        TokenType.MINUS: BinaryOperator.SUB,
    }

    _MULTIPLICATIVE_OPS = {
        TokenType.STAR: BinaryOperator.MUL,
        TokenType.SLASH: BinaryOperator.DIV,
    }

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    # =========================================================================
    # Token Navigation
    # =========================================================================

    def _current(self) -> Token:
        """Get current token."""
        if self.pos >= len(self.tokens):
            return self.tokens[-1]  # EOF
        return self.tokens[self.pos]

    def _peek(self, offset: int = 1) -> Token:
        """Peek at token at current position + offset."""
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return self.tokens[-1]  # EOF
        return self.tokens[idx]

    def _is_at_end(self) -> bool:
        return self._current().type == TokenType.EOF

    def _check(self, token_type: TokenType) -> bool:
        return self._current().type == token_type

    def _check_word(self, word: str) -> bool:
        return self._current().is_word(word)

    def _advance(self) -> Token:
        """Consume and return current token."""
        token = self._current()
        if not self._is_at_end():
            self.pos += 1
        return token

    def _consume(self, token_type: TokenType, message: str) -> Token:
        """Consume a token of the given type or raise ``message, found X``."""
        if self._check(token_type):
            return self._advance()
        raise ExpressionError(f"{message}, found {self._current()}")

    def _consume_colon(self, clause: str) -> None:
        self._consume(TokenType.COLON, f"Expected ':' after {clause} condition")

    # =========================================================================
    # Entry Points
    # =========================================================================

    def parse(self) -> Expression:
        """Parse a complete expression; trailing tokens are an error."""
        expr = self.parse_expr()
        if not self._is_at_end():
            raise ExpressionError("Unexpected tokens after end of expression")
        return expr

    def parse_expr(self) -> Expression:
        """Parse an expression, including the leading if/repeat/try forms."""
        if self._check_word("if"):
            return self._parse_if_expr()
        if self._check_word("repeat"):
            return self._parse_repeat_expr()
        if self._check_word("try"):
            return self._parse_try_expr()
        return self._parse_or()

    # =========================================================================
    # Leading Forms
    # =========================================================================

    def _parse_if_expr(self) -> IfExpr:
        """if c: e (elif c: e)* (else: e)?"""
        self._advance()  # consume 'if'
        condition = self._parse_or()
        self._consume_colon("if")
        branches = [IfBranch(condition, self.parse_expr())]

        while self._check_word("elif"):
            self._advance()
            condition = self._parse_or()
            self._consume_colon("elif")
            branches.append(IfBranch(condition, self.parse_expr()))

        else_branch = None
        if self._check_word("else"):
            self._advance()
            self._consume_colon("else")
            else_branch = self.parse_expr()

        return IfExpr(branches, else_branch)

    def _parse_repeat_expr(self) -> RepeatExpr:
        """repeat N times: body"""
        self._advance()  # consume 'repeat'
        count = self._parse_or()
        if not self._check_word("times"):
            raise ExpressionError(
                f"Expected 'times' after repeat-count expression, found {self._current()}"
            )
        self._advance()
        self._consume_colon("repeat")
        return RepeatExpr(count, self.parse_expr())

    def _parse_try_expr(self) -> TryExpr:
        """try: body (catch [name]: handler)? (finally: cleanup)?"""
        self._advance()  # consume 'try'
        self._consume(TokenType.COLON, "Expected ':' after 'try'")
        body = self.parse_expr()

        catch_var: Optional[str] = None
        catch_body: Optional[Expression] = None
        if self._check_word("catch"):
            self._advance()
            if self._check(TokenType.IDENTIFIER):
                catch_var = self._advance().value
            self._consume(TokenType.COLON, "Expected ':' after 'catch'")
            catch_body = self.parse_expr()

        finally_body: Optional[Expression] = None
        if self._check_word("finally"):
            self._advance()
            self._consume(TokenType.COLON, "Expected ':' after 'finally'")
            finally_body = self.parse_expr()

        return TryExpr(body, catch_var, catch_body, finally_body)

    # =========================================================================
    # Binary Operators
    # =========================================================================

    def _parse_or(self) -> Expression:
        left = self._parse_and()
        while self._check_word("or"):
            self._advance()
            left = BinaryOp(left, BinaryOperator.OR, self._parse_and())
        return left

    def _parse_and(self) -> Expression:
        left = self._parse_comparison()
        while self._check_word("and"):
            self._advance()
            left = BinaryOp(left, BinaryOperator.AND, self._parse_comparison())
        return left

    def _parse_comparison(self) -> Expression:
        left = self._parse_additive()
        while self._current().type in self._COMPARISON_OPS:
            op = self._COMPARISON_OPS[self._advance().type]
            left = BinaryOp(left, op, self._parse_additive())
        return left

    def _parse_additive(self) -> Expression:
        left = self._parse_multiplicative()
        while self._current().type in self._ADDITIVE_OPS:
            op = self._ADDITIVE_OPS[self._advance().type]
            left = BinaryOp(left, op, self._parse_multiplicative())
        return left

    def _parse_multiplicative(self) -> Expression:
        left = self._parse_primary()
        while self._current().type in self._MULTIPLICATIVE_OPS:
            op = self._MULTIPLICATIVE_OPS[self._advance().type]
            left = BinaryOp(left, op, self._parse_primary())
        return left

    # =========================================================================
    # Primary Expressions
    # =========================================================================

    def _parse_primary(self) -> Expression:
        token = self._current()

        if token.type == TokenType.NUMBER:
            self._advance()
            return Literal(token.value, LiteralKind.NUMBER)

        if token.type == TokenType.STRING:
            self._advance()
            return Literal(token.value, LiteralKind.STRING)

        if token.type == TokenType.IDENTIFIER:
            return self._parse_identifier_expr()

        if token.type == TokenType.LPAREN:
            self._advance()
            expr = self.parse_expr()
            self._consume(TokenType.RPAREN, "Expected ')'")
            return expr

        if token.type == TokenType.LBRACKET:
            return self._parse_list_literal()

        if token.type == TokenType.LBRACE:
            return self._parse_dict_literal()

        raise ExpressionError(f"Unexpected token in expression: {token}")

    def _parse_identifier_expr(self) -> Expression:
        """Boolean literal, variable, call or Class.method(...) call."""
        name = self._advance().value

        if name == "true":
            return Literal(True, LiteralKind.BOOL)
        if name == "false":
            return Literal(False, LiteralKind.BOOL)

        if self._check(TokenType.DOT):
            self._advance()
            method = self._current()
            if method.type != TokenType.IDENTIFIER:
                raise ExpressionError(f"Expected method name after '.', found {method}")
            self._advance()
            if not self._check(TokenType.LPAREN):
                raise ExpressionError("Expected '(' after method name")
            self._advance()
            return MethodCall(name, method.value, self._parse_arguments())

        if self._check(TokenType.LPAREN):
            self._advance()
            return FunctionCall(name, self._parse_arguments())

        return Identifier(name)

    def _parse_arguments(self) -> List[Expression]:
        """Parse call arguments; the opening '(' is already consumed."""
        args: List[Expression] = []
        if self._check(TokenType.RPAREN):
            self._advance()
            return args
        while True:
            args.append(self.parse_expr())
            if self._check(TokenType.COMMA):
                self._advance()
            elif self._check(TokenType.RPAREN):
                self._advance()
                return args
            else:
                raise ExpressionError(
                    f"Expected ',' or ')' in argument list, found {self._current()}"
                )

    def _parse_list_literal(self) -> ListLiteral:
        self._advance()  # consume '['
        elements: List[Expression] = []
        if self._check(TokenType.RBRACKET):
            self._advance()
            return ListLiteral(elements)
        while True:
            elements.append(self.parse_expr())
            if self._check(TokenType.COMMA):
                self._advance()
            elif self._check(TokenType.RBRACKET):
                self._advance()
                return ListLiteral(elements)
            else:
                raise ExpressionError(
                    f"Expected ',' or ']' in list literal, found {self._current()}"
                )

    def _parse_dict_literal(self) -> DictLiteral:
        self._advance()  # consume '{'
        entries: List[Tuple[str, Expression]] = []
        if self._check(TokenType.RBRACE):
            self._advance()
            return DictLiteral(entries)
        while True:
            key_token = self._current()
            if key_token.type not in (TokenType.IDENTIFIER, TokenType.STRING):
                raise ExpressionError(
                    f"Expected identifier or string as map key, found {key_token}"
                )
            self._advance()
            self._consume(TokenType.COLON, "Expected ':' after map key")
            entries.append((key_token.value, self.parse_expr()))
            if self._check(TokenType.COMMA):
                self._advance()
            elif self._check(TokenType.RBRACE):
                self._advance()
                return DictLiteral(entries)
            else:
                raise ExpressionError(
                    f"Expected ',' or '}}' in map literal, found {self._current()}"
                )


def parse_expression(text: str) -> Expression:
    """
    Parse a Shrimpl expression.

    Args:
        text: Expression text, e.g. ``'"Hello " + name'``

    Returns:
        Root expression node

    Raises:
        ExpressionError: On any tokenizer or syntax error
    """
    return ExpressionParser(tokenize(text)).parse()
