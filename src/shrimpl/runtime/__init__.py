"""
Shrimpl Runtime - Tree-walking interpreter for endpoint bodies and tests.

This module provides:
- Interpreter: Evaluates expressions against a parsed program
- Value: Number / String / Boolean runtime values and JSON coercion
- Environment: Per-evaluation variable bindings
- RuntimeContext: Shared state for built-ins (config store, OpenAI, HTTP)
- BuiltinRegistry: Built-in function implementations
"""

from .values import (
    Value,
    ValueKind,
    number_val,
    string_val,
    bool_val,
    format_number,
    parse_number,
    value_to_json,
    dump_json,
)

from .context import (
    Environment,
    ConfigStore,
    RuntimeContext,
    create_environment,
    get_default_context,
)

from .openai import (
    OpenAIConfig,
    OpenAISettings,
)

from .builtins import (
    BuiltinFunction,
    BuiltinRegistry,
    get_builtin_registry,
)

from .interpreter import (
    Interpreter,
    EvaluationResult,
    MAX_REPEAT_STEPS,
    MAX_CALL_DEPTH,
    match_path,
    evaluate,
    compile_and_evaluate,
)

__all__ = [
    # Values
    "Value",
    "ValueKind",
    "number_val",
    "string_val",
    "bool_val",
    "format_number",
    "parse_number",
    "value_to_json",
    "dump_json",
    # Context
    "Environment",
    "ConfigStore",
    "RuntimeContext",
    "create_environment",
    "get_default_context",
    "OpenAIConfig",
    "OpenAISettings",
    # Builtins
    "BuiltinFunction",
    "BuiltinRegistry",
    "get_builtin_registry",
    # Interpreter
    "Interpreter",
    "EvaluationResult",
    "MAX_REPEAT_STEPS",
    "MAX_CALL_DEPTH",
    "match_path",
    "evaluate",
    "compile_and_evaluate",
]
