"""
Shrimpl language core.

This module provides:
- Lexer / expression parser: Turns one expression into an expression tree
- Statement parser: Turns a whole source file into a Program
- Interpreter: Evaluates endpoint bodies and tests against string bindings
- Type checker: Cross-checks config-supplied annotations against functions
- Lint and schema: Structural warnings and an endpoint summary
- Config: Per-environment settings, secrets and type annotations

Usage:
    from shrimpl import parse, Interpreter, check, FunctionAnnotation

    source = '''
    server 3000

    func add(a, b): a + b

    endpoint GET "/hello/:name": "Hello " + name
    endpoint GET "/sum": add(2, 3)
    '''
    program = parse(source)

    interpreter = Interpreter(program)
    endpoint = program.endpoints[0]
    print(interpreter.render_endpoint(endpoint, {"name": "World"}))   # Hello World

    result = check(program, {"add": FunctionAnnotation(["number", "number"], "number")})
    for diag in result.diagnostics:
        print(diag.format())
"""

from .tokens import (
    Token,
    TokenType,
    KEYWORDS,
)

from .lexer import (
    Lexer,
    tokenize,
)

from .parser import (
    ExpressionParser,
    parse_expression,
)

from .statements import (
    ProgramParser,
    parse,
)

from .ast import (
    # Base
    AstNode,
    AstVisitor,
    # Expressions
    Expression,
    Literal,
    LiteralKind,
    Identifier,
    BinaryOp,
    BinaryOperator,
    FunctionCall,
    MethodCall,
    ListLiteral,
    DictLiteral,
    IfBranch,
    IfExpr,
    RepeatExpr,
    TryExpr,
    # Declarations
    Program,
    ServerDecl,
    HttpMethod,
    RateLimit,
    JsonBody,
    EndpointDecl,
    FunctionDef,
    ClassDef,
    ModelField,
    ModelDef,
    SecretDecl,
    TestCase,
)

from .errors import (
    ShrimplError,
    ExpressionError,
    ParseError,
    EvaluationError,
    ArityError,
    UnknownIdentifierError,
    CoercionError,
    DivisionByZeroError,
    LoopBoundError,
    BuiltinArgumentError,
    ExternalIOError,
    Severity,
    Diagnostic,
    DiagnosticCollector,
)

from .types import (
    Type,
    NUMBER,
    STRING,
    BOOL,
    ANY,
    resolve_type_name,
)

from .checker import (
    FunctionAnnotation,
    TypeChecker,
    CheckResult,
    check,
)

from .runtime import (
    Interpreter,
    EvaluationResult,
    RuntimeContext,
    Value,
    evaluate,
    compile_and_evaluate,
)

from .lint import (
    build_diagnostics,
    lint_source,
    build_schema,
)

from .config import (
    ShrimplConfig,
    load_config,
    apply_server_overrides,
    resolve_secret,
)

from .testing import (
    TestOutcome,
    run_tests,
)

__version__ = "0.1.0"

__all__ = [
    # Tokens and lexer
    'Token',
    'TokenType',
    'KEYWORDS',
    'Lexer',
    'tokenize',

    # Parsers
    'ExpressionParser',
    'parse_expression',
    'ProgramParser',
    'parse',

    # AST
    'AstNode',
    'AstVisitor',
    'Expression',
    'Literal',
    'LiteralKind',
    'Identifier',
    'BinaryOp',
    'BinaryOperator',
    'FunctionCall',
    'MethodCall',
    'ListLiteral',
    'DictLiteral',
    'IfBranch',
    'IfExpr',
    'RepeatExpr',
    'TryExpr',
    'Program',
    'ServerDecl',
    'HttpMethod',
    'RateLimit',
    'JsonBody',
    'EndpointDecl',
    'FunctionDef',
    'ClassDef',
    'ModelField',
    'ModelDef',
    'SecretDecl',
    'TestCase',

    # Errors and diagnostics
    'ShrimplError',
    'ExpressionError',
    'ParseError',
    'EvaluationError',
    'ArityError',
    'UnknownIdentifierError',
    'CoercionError',
    'DivisionByZeroError',
    'LoopBoundError',
    'BuiltinArgumentError',
    'ExternalIOError',
    'Severity',
    'Diagnostic',
    'DiagnosticCollector',

    # Types and checker
    'Type',
    'NUMBER', 'STRING', 'BOOL', 'ANY',
    'resolve_type_name',
    'FunctionAnnotation',
    'TypeChecker',
    'CheckResult',
    'check',

    # Runtime
    'Interpreter',
    'EvaluationResult',
    'RuntimeContext',
    'Value',
    'evaluate',
    'compile_and_evaluate',

    # Lint, config, tests
    'build_diagnostics',
    'lint_source',
    'build_schema',
    'ShrimplConfig',
    'load_config',
    'apply_server_overrides',
    'resolve_secret',
    'TestOutcome',
    'run_tests',

    '__version__',
]
