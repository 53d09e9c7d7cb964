"""
Execution context for the Shrimpl interpreter.

Two kinds of state:
- Environment: per-evaluation variable bindings, immutable once built
- RuntimeContext: process-wide mutable state shared by concurrent
  evaluations (config store, OpenAI settings, HTTP client, environment
  variables)

Every mutation of shared state is a single update under a
``threading.Lock``; no lock is held while network I/O is in progress.
"""

import os
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import httpx

from .values import Value, number_val, string_val, bool_val, dump_json
from .openai import OpenAIConfig


# =============================================================================
# Environment
# =============================================================================

@dataclass
class Environment:
    """
    Variable bindings visible to an expression.

    Environments form a chain via ``parent``. A function call does not get
    a lexical scope: its environment is the *caller's* whole environment
    with the parameters bound on top, which ``child`` builds without
    copying the parent. ``depth`` counts the scopes above the request
    environment.
    """
    variables: Dict[str, Value] = field(default_factory=dict)
    parent: Optional["Environment"] = None
    name: str = "request"  # For debugging
    depth: int = 0

    def get(self, name: str) -> Optional[Value]:
        """Look up a variable in this environment or its parents."""
        env: Optional[Environment] = self
        while env is not None:
            if name in env.variables:
                return env.variables[name]
            env = env.parent
        return None

    def contains(self, name: str) -> bool:
        return self.get(name) is not None

    def child(self, bindings: Dict[str, Value], name: str = "call") -> "Environment":
        """A new environment with ``bindings`` shadowing this one."""
        return Environment(dict(bindings), parent=self, name=name, depth=self.depth + 1)


def create_environment(bindings: Optional[Mapping[str, str]] = None) -> Environment:
    """
    Seed an environment from request bindings.

    Args:
        bindings: Path/query/body values; every value becomes a String

    Returns:
        Root environment for one evaluation
    """
    variables = {k: string_val(v) for k, v in (bindings or {}).items()}
    return Environment(variables, name="request")


# =============================================================================
# Config Store
# =============================================================================

def config_value(raw: Any) -> Value:
    """Convert a value loaded from a config file into a runtime value."""
    if isinstance(raw, bool):
        return bool_val(raw)
    if isinstance(raw, (int, float)):
        return number_val(raw)
    if isinstance(raw, str):
        return string_val(raw)
    if raw is None:
        return string_val("")
    return string_val(dump_json(raw))


class ConfigStore:
    """
    Thread-safe key/value store behind config_set / config_get / config_has.
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._lock = threading.Lock()
        self._values: Dict[str, Value] = {}
        if values:
            self.load(values)

    def set(self, key: str, value: Value) -> None:
        with self._lock:
            self._values[key] = value

    def get(self, key: str) -> Optional[Value]:
        with self._lock:
            return self._values.get(key)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._values

    def load(self, values: Mapping[str, Any]) -> None:
        """Merge plain Python values (e.g. a config file section) into the store."""
        converted = {str(k): config_value(v) for k, v in values.items()}
        with self._lock:
            self._values.update(converted)

    def snapshot(self) -> Dict[str, Value]:
        with self._lock:
            return dict(self._values)


# =============================================================================
# Runtime Context
# =============================================================================

DEFAULT_HTTP_TIMEOUT = 30.0


@dataclass
class RuntimeContext:
    """
    Shared state for built-in functions.

    One context may serve many concurrent evaluations. Tests build their own
    context with a fake ``environ`` and an ``httpx.Client`` wired to a
    ``MockTransport``.
    """
    config: ConfigStore = field(default_factory=ConfigStore)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)
    http_client: Optional[httpx.Client] = None
    timeout: float = DEFAULT_HTTP_TIMEOUT

    def __post_init__(self):
        self._client_lock = threading.Lock()
        self._owns_client = self.http_client is None

    @classmethod
    def from_environment(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        config_values: Optional[Mapping[str, Any]] = None,
        **kwargs,
    ) -> "RuntimeContext":
        """
        Build a context from environment variables.

        Args:
            environ: Variables to read (defaults to ``os.environ``)
            config_values: Initial config store contents

        Returns:
            RuntimeContext with the OpenAI key picked up from
            SHRIMPL_OPENAI_API_KEY or OPENAI_API_KEY
        """
        environ = os.environ if environ is None else environ
        return cls(
            config=ConfigStore(config_values),
            openai=OpenAIConfig.from_environment(environ),
            environ=environ,
            **kwargs,
        )

    def client(self) -> httpx.Client:
        """The shared HTTP client, created on first use."""
        with self._client_lock:
            if self.http_client is None:
                self.http_client = httpx.Client(timeout=self.timeout, follow_redirects=True)
            return self.http_client

    def getenv(self, name: str) -> Optional[str]:
        return self.environ.get(name)

    def close(self) -> None:
        """Close the HTTP client if this context created it."""
        with self._client_lock:
            if self.http_client is not None and self._owns_client:
                self.http_client.close()
                self.http_client = None

    def __enter__(self) -> "RuntimeContext":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


_default_context: Optional[RuntimeContext] = None
_default_lock = threading.Lock()


def get_default_context() -> RuntimeContext:
    """Process-wide context used when callers do not pass their own."""
    global _default_context
    with _default_lock:
        if _default_context is None:
            _default_context = RuntimeContext.from_environment()
        return _default_context
