"""
Environment-specific configuration for Shrimpl programs.

Configuration lives next to the program in ``config/config.<env>.yaml``
(``.yml`` and ``.json`` are accepted too), where ``<env>`` is taken from
the SHRIMPL_ENV environment variable and defaults to ``dev``:

    server:
      port: 8080
      tls: false
    secrets:
      env:
        API_TOKEN: SERVICE_TOKEN_PROD
    types:
      functions:
        add:
          params: [number, number]
          result: number
    values:
      greeting: Hello

A missing file means defaults. A file that cannot be read or parsed is
logged and also falls back to defaults.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .ast import Program
from .checker import FunctionAnnotation, annotations_from_config
from .runtime.context import RuntimeContext

logger = logging.getLogger(__name__)


ENV_VARIABLE = "SHRIMPL_ENV"
DEFAULT_ENV = "dev"
CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")


@dataclass
class ServerOverrides:
    """Values that replace the program's 'server' declaration."""
    port: Optional[int] = None
    tls: Optional[bool] = None


@dataclass
class ShrimplConfig:
    """Parsed configuration file (or defaults)."""
    env_name: str = DEFAULT_ENV
    path: Optional[Path] = None
    server: ServerOverrides = field(default_factory=ServerOverrides)
    secrets: Dict[str, str] = field(default_factory=dict)          # logical name -> env var
    types: Dict[str, FunctionAnnotation] = field(default_factory=dict)
    values: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], env_name: str = DEFAULT_ENV,
                  path: Optional[Path] = None) -> "ShrimplConfig":
        """
        Build a config from loaded YAML/JSON data.

        Malformed sections are skipped with a warning rather than rejected.
        """
        config = cls(env_name=env_name, path=path)

        server = _section(data, "server")
        port = server.get("port")
        if port is not None:
            if isinstance(port, int) and not isinstance(port, bool) and 0 <= port <= 65535:
                config.server.port = port
            else:
                logger.warning("Ignoring invalid server.port %r in %s", port, path)
        tls = server.get("tls")
        if tls is not None:
            if isinstance(tls, bool):
                config.server.tls = tls
            else:
                logger.warning("Ignoring invalid server.tls %r in %s", tls, path)

        secret_env = _section(_section(data, "secrets"), "env")
        config.secrets = {str(k): str(v) for k, v in secret_env.items()}

        functions = _section(_section(data, "types"), "functions")
        config.types = annotations_from_config(
            {name: entry for name, entry in functions.items() if isinstance(entry, Mapping)}
        )

        config.values = dict(_section(data, "values"))
        return config

    def create_context(self, environ: Optional[Mapping[str, str]] = None) -> RuntimeContext:
        """A runtime context whose config store is seeded from ``values``."""
        return RuntimeContext.from_environment(environ, config_values=self.values)


def _section(data: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        return {}
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        logger.warning("Ignoring config section '%s': expected a mapping", name)
        return {}
    return section


def current_env_name(environ: Optional[Mapping[str, str]] = None) -> str:
    """The active environment name: SHRIMPL_ENV, or 'dev'."""
    environ = os.environ if environ is None else environ
    return environ.get(ENV_VARIABLE) or DEFAULT_ENV


def find_config_file(config_dir: Union[str, Path], env_name: str) -> Optional[Path]:
    """First existing ``config.<env>`` file in ``config_dir``, by extension preference."""
    base = Path(config_dir)
    for ext in CONFIG_EXTENSIONS:
        candidate = base / f"config.{env_name}{ext}"
        if candidate.is_file():
            return candidate
    return None


def load_config(
    config_dir: Union[str, Path] = "config",
    env_name: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ShrimplConfig:
    """
    Load the configuration for the active environment.

    Args:
        config_dir: Directory holding ``config.<env>.*`` files
        env_name: Environment name (defaults to SHRIMPL_ENV or 'dev')
        environ: Variables to read SHRIMPL_ENV from

    Returns:
        ShrimplConfig, with defaults when no usable file exists
    """
    env_name = env_name or current_env_name(environ)
    path = find_config_file(config_dir, env_name)
    if path is None:
        logger.debug("No config file for env '%s' in %s; using defaults", env_name, config_dir)
        return ShrimplConfig(env_name=env_name)

    try:
        with open(path, encoding="utf-8") as fp:
            if path.suffix == ".json":
                data = json.load(fp)
            else:
                data = yaml.safe_load(fp) or {}
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.warning("Failed to load config %s: %s; using defaults", path, e)
        return ShrimplConfig(env_name=env_name)

    if not isinstance(data, Mapping):
        logger.warning("Config %s is not a mapping; using defaults", path)
        return ShrimplConfig(env_name=env_name)

    logger.debug("Loaded config for env '%s' from %s", env_name, path)
    return ShrimplConfig.from_dict(data, env_name=env_name, path=path)


def apply_server_overrides(program: Program, config: ShrimplConfig) -> Program:
    """Apply configured port/TLS to the program's server declaration, in place."""
    if config.server.port is not None:
        program.server.port = config.server.port
    if config.server.tls is not None:
        program.server.tls = config.server.tls
    return program


def resolve_secret(
    program: Program,
    config: ShrimplConfig,
    name: str,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """
    Look up the value of a declared secret.

    The config file's ``secrets.env`` mapping takes precedence over the
    variable named in the program's ``secret`` declaration. Returns None
    when the secret is unknown or the variable is unset.
    """
    environ = os.environ if environ is None else environ
    variable = config.secrets.get(name)
    if variable is None:
        decl = program.find_secret(name)
        if decl is None:
            return None
        variable = decl.key
    return environ.get(variable)
