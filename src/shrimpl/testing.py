"""
Runner for in-language ``test`` blocks.

    test "greeting works":
      assert greet("Ada") == "Hello Ada"
      assert len(greet("")) == 6

Each assertion is evaluated with no request bindings. It passes only when
its display form, trimmed, is exactly ``true``; a value such as ``1`` or
``"yes"`` fails. Evaluation errors fail the assertion without stopping the
rest of the test.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .ast import Program, TestCase
from .errors import EvaluationError
from .runtime.context import RuntimeContext
from .runtime.interpreter import Interpreter


@dataclass
class TestOutcome:
    """Result of one test block."""
    name: str
    passed: bool
    assertions: int
    failures: List[str] = field(default_factory=list)

    __test__ = False  # not a pytest class

    def format(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        lines = [f"[{status}] {self.name} ({self.assertions} assertions)"]
        lines.extend(f"    - {failure}" for failure in self.failures)
        return "\n".join(lines)


def run_test_case(interpreter: Interpreter, case: TestCase) -> TestOutcome:
    """Evaluate every assertion of one test block."""
    failures: List[str] = []
    for idx, assertion in enumerate(case.assertions, 1):
        try:
            result = interpreter.evaluate(assertion, {})
        except EvaluationError as e:
            failures.append(f"assertion {idx} raised error: {e}")
            continue
        if result.strip() != "true":
            failures.append(f"assertion {idx} evaluated to '{result}' (expected true)")

    return TestOutcome(
        name=case.name,
        passed=not failures,
        assertions=len(case.assertions),
        failures=failures,
    )


def run_tests(program: Program, context: Optional[RuntimeContext] = None) -> List[TestOutcome]:
    """
    Run all test blocks of a program, in source order.

    Args:
        program: Parsed program
        context: Runtime context for built-ins (defaults to the process-wide one)

    Returns:
        One TestOutcome per test block
    """
    interpreter = Interpreter(program, context)
    return [run_test_case(interpreter, case) for case in program.tests]
