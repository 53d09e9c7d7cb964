#!/usr/bin/env python3
"""
CLI for the Shrimpl language tools.

Usage:
    python -m shrimpl check FILE.shr
    python -m shrimpl diagnostics FILE.shr
    python -m shrimpl schema FILE.shr
    python -m shrimpl test FILE.shr
    python -m shrimpl call FILE.shr METHOD PATH [--param NAME=VALUE ...]
    python -m shrimpl eval EXPRESSION [--file FILE.shr] [--param NAME=VALUE ...]

Global options (before the subcommand):
    --config-dir DIR   Directory holding config.<env>.yaml (default: config)
    --env NAME         Environment name (default: $SHRIMPL_ENV or dev)
    -v, --verbose      Debug logging

Examples:
    # Parse and type check against config/config.dev.yaml annotations
    python -m shrimpl check app.shr

    # Run the program's test blocks
    python -m shrimpl test app.shr

    # Render an endpoint without starting a server
    python -m shrimpl call app.shr GET /hello/World

    # Evaluate a one-off expression using the program's functions
    python -m shrimpl eval 'add(2, 3) * 10' --file app.shr
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional


def parse_param(param_str: str) -> tuple:
    """Parse a parameter string like 'name=value' into (name, value)."""
    if '=' not in param_str:
        raise ValueError(f"Invalid parameter format: {param_str} (expected name=value)")
    name, value = param_str.split('=', 1)
    return (name.strip(), value)


def parse_params(params: Optional[List[str]]) -> Dict[str, str]:
    return dict(parse_param(p) for p in (params or []))


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load(args):
    """Read, parse and configure the program named by ``args.file``.

    Returns (program, config, source), or None after printing an error.
    """
    from .config import load_config, apply_server_overrides
    from .errors import ParseError
    from .statements import parse

    source_path = Path(args.file)
    if not source_path.exists():
        print(f"Error: File not found: {source_path}", file=sys.stderr)
        return None

    source = source_path.read_text(encoding="utf-8")
    try:
        program = parse(source)
    except ParseError as e:
        print(f"Parse error: {e}", file=sys.stderr)
        return None

    config = load_config(args.config_dir, args.env)
    apply_server_overrides(program, config)
    return program, config, source


def cmd_check(args):
    """Parse a program and type check its annotated functions."""
    from .checker import check

    loaded = _load(args)
    if loaded is None:
        return 1
    program, config, _ = loaded

    result = check(program, config.types)
    for diag in result.diagnostics:
        print(f"  {diag.format()}")
    if result.has_errors:
        errors = sum(1 for d in result.diagnostics if d.is_error)
        print(f"Type checking failed with {errors} error(s)")
        return 1

    print(f"OK: {args.file} (server {program.server.port}, "
          f"{len(program.endpoints)} endpoints, {len(program.functions)} functions, "
          f"{len(program.classes)} classes, {len(program.models)} models, "
          f"{len(program.tests)} tests)")
    return 0


def cmd_diagnostics(args):
    """Print structural, formatting and type diagnostics as JSON."""
    from .checker import check
    from .errors import DiagnosticCollector
    from .lint import build_diagnostics, lint_source

    loaded = _load(args)
    if loaded is None:
        return 1
    program, config, source = loaded

    collector = DiagnosticCollector()
    collector.extend(build_diagnostics(program))
    collector.extend(lint_source(source))
    collector.extend(check(program, config.types).diagnostics)
    print(json.dumps(collector.to_json(), indent=2))
    return 1 if collector.has_errors else 0


def cmd_schema(args):
    """Print the endpoint schema as JSON."""
    from .lint import build_schema

    loaded = _load(args)
    if loaded is None:
        return 1
    program, _, _ = loaded
    print(json.dumps(build_schema(program), indent=2))
    return 0


def cmd_test(args):
    """Run the program's test blocks."""
    from .testing import run_tests

    loaded = _load(args)
    if loaded is None:
        return 1
    program, config, _ = loaded

    if not program.tests:
        print("No tests found")
        return 0

    with config.create_context() as context:
        outcomes = run_tests(program, context)
    for outcome in outcomes:
        print(outcome.format())

    failed = sum(1 for o in outcomes if not o.passed)
    print(f"{len(outcomes) - failed} passed, {failed} failed")
    return 1 if failed else 0


def cmd_call(args):
    """Render one endpoint for a method and concrete path."""
    from .ast import HttpMethod
    from .runtime.interpreter import Interpreter

    try:
        method = HttpMethod(args.method.upper())
        bindings = parse_params(args.param)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    loaded = _load(args)
    if loaded is None:
        return 1
    program, config, _ = loaded

    with config.create_context() as context:
        result = Interpreter(program, context).call_endpoint(method, args.path, bindings)
    if not result.success:
        print(f"Error: {result.error_message}", file=sys.stderr)
        return 1
    print(result.output)
    return 0


def cmd_eval(args):
    """Evaluate a single expression, optionally against a program."""
    from .ast import Program, ServerDecl
    from .config import load_config
    from .errors import ExpressionError, EvaluationError
    from .parser import parse_expression
    from .runtime.interpreter import Interpreter

    try:
        bindings = parse_params(args.param)
        expr = parse_expression(args.expression)
    except (ValueError, ExpressionError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.file:
        loaded = _load(args)
        if loaded is None:
            return 1
        program, config, _ = loaded
    else:
        program = Program(server=ServerDecl(0))
        config = load_config(args.config_dir, args.env)

    with config.create_context() as context:
        try:
            print(Interpreter(program, context).evaluate(expr, bindings))
        except EvaluationError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    return 0


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        prog='python -m shrimpl',
        description='Shrimpl parser, checker and evaluator',
    )
    parser.add_argument('--config-dir', default='config', metavar='DIR',
                        help='Directory holding config.<env>.yaml (default: config)')
    parser.add_argument('--env', metavar='NAME',
                        help='Environment name (default: $SHRIMPL_ENV or dev)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(dest='action', required=True)

    check_parser = subparsers.add_parser('check', help='Parse and type check a program')
    check_parser.add_argument('file', help='Shrimpl source file')

    diag_parser = subparsers.add_parser('diagnostics', help='Print diagnostics as JSON')
    diag_parser.add_argument('file', help='Shrimpl source file')

    schema_parser = subparsers.add_parser('schema', help='Print the endpoint schema as JSON')
    schema_parser.add_argument('file', help='Shrimpl source file')

    test_parser = subparsers.add_parser('test', help='Run test blocks')
    test_parser.add_argument('file', help='Shrimpl source file')

    call_parser = subparsers.add_parser('call', help='Render an endpoint')
    call_parser.add_argument('file', help='Shrimpl source file')
    call_parser.add_argument('method', help='HTTP method (GET or POST)')
    call_parser.add_argument('path', help='Request path, e.g. /hello/World')
    call_parser.add_argument('-p', '--param', action='append', metavar='NAME=VALUE',
                             help='Query or body binding (can be repeated)')

    eval_parser = subparsers.add_parser('eval', help='Evaluate an expression')
    eval_parser.add_argument('expression', help='Expression text')
    eval_parser.add_argument('-f', '--file', help='Program providing functions and classes')
    eval_parser.add_argument('-p', '--param', action='append', metavar='NAME=VALUE',
                             help='Variable binding (can be repeated)')

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if args.action == 'check':
        return cmd_check(args)
    elif args.action == 'diagnostics':
        return cmd_diagnostics(args)
    elif args.action == 'schema':
        return cmd_schema(args)
    elif args.action == 'test':
        return cmd_test(args)
    elif args.action == 'call':
        return cmd_call(args)
    elif args.action == 'eval':
        return cmd_eval(args)
    else:
        parser.print_help()
        return 1


if __name__ == '__main__':
    sys.exit(main())
