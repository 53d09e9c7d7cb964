"""
Abstract Syntax Tree (AST) node definitions for Shrimpl.

A parsed program is a ``Program`` holding declarations (server, endpoints,
functions, classes, models, secrets, tests). Declarations embed expression
trees, which the interpreter evaluates and the type checker inspects.

Declarations record the source line they started on. The line is excluded
from equality so trees can be compared structurally in tests.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
from abc import ABC


# =============================================================================
# Base Classes
# =============================================================================

@dataclass
class AstNode(ABC):
    """Base class for all AST nodes."""

    def accept(self, visitor: "AstVisitor") -> Any:
        """Accept a visitor for traversal."""
        method_name = f"visit_{self.__class__.__name__}"
        method = getattr(visitor, method_name, visitor.generic_visit)
        return method(self)


class AstVisitor(ABC):
    """Base class for AST visitors."""

    def generic_visit(self, node: AstNode) -> Any:
        """Default visit method."""
        raise NotImplementedError(f"No visitor for {node.__class__.__name__}")


# =============================================================================
# Expression Nodes
# =============================================================================

@dataclass
class Expression(AstNode):
    """Base class for all expressions."""
    pass


class LiteralKind(Enum):
    NUMBER = "number"
    STRING = "string"
    BOOL = "bool"


@dataclass
class Literal(Expression):
    """A literal value: 42, "hello", true."""
    value: Union[float, str, bool]
    kind: LiteralKind


@dataclass
class Identifier(Expression):
    """A variable reference."""
    name: str


class BinaryOperator(Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    EQ = "=="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    AND = "and"
    OR = "or"

    @property
    def is_arithmetic(self) -> bool:
        return self in (BinaryOperator.ADD, BinaryOperator.SUB,
                        BinaryOperator.MUL, BinaryOperator.DIV)

    @property
    def is_comparison(self) -> bool:
        return self in (BinaryOperator.EQ, BinaryOperator.NE,
                        BinaryOperator.LT, BinaryOperator.LE,
                        BinaryOperator.GT, BinaryOperator.GE)

    @property
    def is_logical(self) -> bool:
        return self in (BinaryOperator.AND, BinaryOperator.OR)


@dataclass
class BinaryOp(Expression):
    """A binary operation: a + b, x == y, p and q."""
    left: Expression
    operator: BinaryOperator
    right: Expression


@dataclass
class FunctionCall(Expression):
    """A call to a user function or built-in: name(args)."""
    name: str
    arguments: List[Expression] = field(default_factory=list)


@dataclass
class MethodCall(Expression):
    """A class method call: Class.method(args)."""
    class_name: str
    method_name: str
    arguments: List[Expression] = field(default_factory=list)


@dataclass
class ListLiteral(Expression):
    """A list literal: [a, b, c]."""
    elements: List[Expression] = field(default_factory=list)


@dataclass
class DictLiteral(Expression):
    """A map literal: {key: value, "other": value}."""
    entries: List[Tuple[str, Expression]] = field(default_factory=list)


@dataclass
class IfBranch:
    """One 'if' or 'elif' arm."""
    condition: Expression
    body: Expression


@dataclass
class IfExpr(Expression):
    """if c1: e1 elif c2: e2 else: e3"""
    branches: List[IfBranch]
    else_branch: Optional[Expression] = None


@dataclass
class RepeatExpr(Expression):
    """repeat N times: body"""
    count: Expression
    body: Expression


@dataclass
class TryExpr(Expression):
    """try: body catch err: handler finally: cleanup"""
    body: Expression
    catch_var: Optional[str] = None
    catch_body: Optional[Expression] = None
    finally_body: Optional[Expression] = None


def iter_child_expressions(expr: Expression) -> Iterator[Expression]:
    """Yield the direct sub-expressions of ``expr`` in source order."""
    if isinstance(expr, BinaryOp):
        yield expr.left
        yield expr.right
    elif isinstance(expr, (FunctionCall, MethodCall)):
        yield from expr.arguments
    elif isinstance(expr, ListLiteral):
        yield from expr.elements
    elif isinstance(expr, DictLiteral):
        for _, value in expr.entries:
            yield value
    elif isinstance(expr, IfExpr):
        for branch in expr.branches:
            yield branch.condition
            yield branch.body
        if expr.else_branch is not None:
            yield expr.else_branch
    elif isinstance(expr, RepeatExpr):
        yield expr.count
        yield expr.body
    elif isinstance(expr, TryExpr):
        yield expr.body
        if expr.catch_body is not None:
            yield expr.catch_body
        if expr.finally_body is not None:
            yield expr.finally_body


# =============================================================================
# Declaration Nodes
# =============================================================================

@dataclass
class ServerDecl(AstNode):
    """server <port> [tls]"""
    port: int
    tls: bool = False
    line: int = field(default=0, compare=False)


class HttpMethod(Enum):
    GET = "GET"
    POST = "POST"


@dataclass
class RateLimit(AstNode):
    """@rate_limit(max_requests, window_secs)"""
    max_requests: int
    window_secs: int
    line: int = field(default=0, compare=False)


@dataclass
class JsonBody(AstNode):
    """Raw JSON endpoint body, passed through without evaluation."""
    raw: str


EndpointBody = Union[Expression, JsonBody]


@dataclass
class EndpointDecl(AstNode):
    """endpoint GET "/path/:param": body"""
    method: HttpMethod
    path: str
    body: EndpointBody
    rate_limit: Optional[RateLimit] = None
    line: int = field(default=0, compare=False)

    @property
    def path_params(self) -> List[str]:
        """Names of the ':name' segments in the path."""
        return [seg[1:] for seg in self.path.split("/") if seg.startswith(":") and len(seg) > 1]


@dataclass
class FunctionDef(AstNode):
    """func name(a, b): expr (also used for class methods)"""
    name: str
    params: List[str]
    body: Expression
    line: int = field(default=0, compare=False)


@dataclass
class ClassDef(AstNode):
    """class Name: with indented method definitions."""
    name: str
    methods: Dict[str, FunctionDef] = field(default_factory=dict)
    line: int = field(default=0, compare=False)


@dataclass
class ModelField(AstNode):
    """name[?]: type [pk]"""
    name: str
    type: str
    is_primary_key: bool = False
    is_optional: bool = False


@dataclass
class ModelDef(AstNode):
    """model Name: with indented field lines."""
    name: str
    table_name: str
    fields: List[ModelField] = field(default_factory=list)
    line: int = field(default=0, compare=False)

    @property
    def primary_keys(self) -> List[ModelField]:
        return [f for f in self.fields if f.is_primary_key]


@dataclass
class SecretDecl(AstNode):
    """secret NAME = "ENV_KEY" """
    name: str
    key: str
    line: int = field(default=0, compare=False)


@dataclass
class TestCase(AstNode):
    """test "name": with indented assert lines."""
    name: str
    assertions: List[Expression] = field(default_factory=list)
    line: int = field(default=0, compare=False)

    __test__ = False  # not a pytest class


@dataclass
class Program(AstNode):
    """A complete parsed Shrimpl program."""
    server: ServerDecl
    endpoints: List[EndpointDecl] = field(default_factory=list)
    functions: Dict[str, FunctionDef] = field(default_factory=dict)
    classes: Dict[str, ClassDef] = field(default_factory=dict)
    secrets: List[SecretDecl] = field(default_factory=list)
    tests: List[TestCase] = field(default_factory=list)
    models: Dict[str, ModelDef] = field(default_factory=dict)

    def find_secret(self, name: str) -> Optional[SecretDecl]:
        for secret in self.secrets:
            if secret.name == name:
                return secret
        return None
