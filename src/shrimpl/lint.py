"""
Static diagnostics and schema export for Shrimpl programs.

Structural checks on the parsed program:
- duplicate (method, path) endpoints
- path parameters never used by the endpoint body
- function and method parameters never used by their bodies

Text checks on the raw source:
- tab characters
- trailing whitespace

All findings are warnings; none of them prevents a program from running.
"""

from typing import Any, Dict, List, Set

from .ast import AstVisitor, Expression, Identifier, JsonBody, Program, iter_child_expressions
from .errors import Diagnostic, DiagnosticCollector


class VariableCollector(AstVisitor):
    """Collects every variable name an expression reads."""

    def __init__(self):
        self.names: Set[str] = set()

    def visit_Identifier(self, node: Identifier) -> None:
        self.names.add(node.name)

    def generic_visit(self, node: Expression) -> None:
        for child in iter_child_expressions(node):
            child.accept(self)


def used_variables(expr: Expression) -> Set[str]:
    """Names of all variables read anywhere inside ``expr``."""
    collector = VariableCollector()
    expr.accept(collector)
    return collector.names


def build_diagnostics(program: Program) -> List[Diagnostic]:
    """
    Structural warnings for a program.

    Args:
        program: Parsed program

    Returns:
        Warnings in check order: duplicates, path parameters, functions,
        methods
    """
    diagnostics = DiagnosticCollector()

    # Duplicate endpoints
    seen = set()
    for endpoint in program.endpoints:
        key = (endpoint.method, endpoint.path)
        if key in seen:
            diagnostics.warning(
                "endpoint", endpoint.path,
                f"Duplicate endpoint for {endpoint.method.value} {endpoint.path}",
            )
        seen.add(key)

    # Unused path parameters; JSON bodies read no variables
    for endpoint in program.endpoints:
        params = endpoint.path_params
        if not params:
            continue
        used = set() if isinstance(endpoint.body, JsonBody) else used_variables(endpoint.body)
        for param in params:
            if param not in used:
                diagnostics.warning(
                    "endpoint", endpoint.path,
                    f"Path parameter :{param} is never used in this endpoint body",
                )

    for func in program.functions.values():
        used = used_variables(func.body)
        for param in func.params:
            if param not in used:
                diagnostics.warning(
                    "function", func.name,
                    f"Parameter '{param}' is never used in function body",
                )

    for cls in program.classes.values():
        for method in cls.methods.values():
            used = used_variables(method.body)
            for param in method.params:
                if param not in used:
                    diagnostics.warning(
                        "method", f"{cls.name}.{method.name}",
                        f"Parameter '{param}' is never used in method body",
                    )

    return diagnostics.diagnostics


def lint_source(source: str) -> List[Diagnostic]:
    """Formatting warnings for raw source text, with 1-based line numbers."""
    diagnostics = DiagnosticCollector()
    for line_no, line in enumerate(source.splitlines(), 1):
        if "\t" in line:
            diagnostics.warning(
                "format", "", "tab character found (use spaces for indentation)", line=line_no
            )
        if line.endswith(" "):
            diagnostics.warning("format", "", "trailing whitespace", line=line_no)
    return diagnostics.diagnostics


def build_schema(program: Program) -> Dict[str, Any]:
    """
    Machine-readable summary of the server and its endpoints.

    Returns:
        ``{"server": {"port", "tls"}, "endpoints": [{"method", "path",
        "bodyKind", "rateLimit"?}, ...]}``
    """
    endpoints = []
    for endpoint in program.endpoints:
        entry: Dict[str, Any] = {
            "method": endpoint.method.value,
            "path": endpoint.path,
            "bodyKind": "json" if isinstance(endpoint.body, JsonBody) else "text",
        }
        if endpoint.rate_limit is not None:
            entry["rateLimit"] = {
                "maxRequests": endpoint.rate_limit.max_requests,
                "windowSecs": endpoint.rate_limit.window_secs,
            }
        endpoints.append(entry)

    return {
        "server": {"port": program.server.port, "tls": program.server.tls},
        "endpoints": endpoints,
    }
