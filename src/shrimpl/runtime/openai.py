"""
OpenAI helpers behind the openai_* built-ins.

Settings (API key, system prompt, model, base URL) live in an
``OpenAIConfig`` owned by the runtime context. Requests take a snapshot of
the settings and release the lock before any network I/O.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..errors import BuiltinArgumentError, ExternalIOError
from .values import dump_json, loads_json

logger = logging.getLogger(__name__)


DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_BASE_URL = "https://api.openai.com/v1"

# Checked in order when building settings from the environment
API_KEY_VARIABLES = ("SHRIMPL_OPENAI_API_KEY", "OPENAI_API_KEY")

MISSING_KEY_MESSAGE = (
    "OpenAI API key is not set. Set SHRIMPL_OPENAI_API_KEY / OPENAI_API_KEY "
    "in the environment or call openai_set_api_key(key) from Shrimpl."
)


@dataclass(frozen=True)
class OpenAISettings:
    """An immutable snapshot of the OpenAI configuration."""
    api_key: Optional[str] = None
    system_prompt: Optional[str] = None
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL


class OpenAIConfig:
    """Thread-safe holder for the current OpenAI settings."""

    def __init__(self, settings: Optional[OpenAISettings] = None):
        self._lock = threading.Lock()
        self._settings = settings or OpenAISettings()

    @classmethod
    def from_environment(cls, environ: Mapping[str, str]) -> "OpenAIConfig":
        api_key = None
        for name in API_KEY_VARIABLES:
            if environ.get(name):
                api_key = environ[name]
                break
        return cls(OpenAISettings(api_key=api_key))

    def set_api_key(self, key: str) -> None:
        with self._lock:
            self._settings = replace(self._settings, api_key=key)

    def set_system_prompt(self, prompt: str) -> None:
        with self._lock:
            self._settings = replace(self._settings, system_prompt=prompt)

    def snapshot(self) -> OpenAISettings:
        with self._lock:
            return self._settings


def build_chat_payload(settings: OpenAISettings, user_message: str) -> Dict[str, Any]:
    """Chat Completions request body, with the system prompt first if one is set."""
    messages: List[Dict[str, str]] = []
    if settings.system_prompt is not None:
        messages.append({"role": "system", "content": settings.system_prompt})
    messages.append({"role": "user", "content": user_message})
    return {"model": settings.model, "messages": messages}


def build_mcp_payload(settings: OpenAISettings, server_id: str, tool_name: str,
                      args_json: str) -> Dict[str, Any]:
    """
    Responses API request body asking the model to call an MCP tool.

    ``args_json`` that is not valid JSON is forwarded as ``{"raw": args_json}``.
    """
    try:
        args = loads_json(args_json)
    except ValueError:
        args = {"raw": args_json}
    prompt = (
        f"Call MCP tool '{tool_name}' on server '{server_id}' "
        f"with args: {dump_json(args)}"
    )
    return {"model": settings.model, "input": prompt}


def openai_post(client: httpx.Client, settings: OpenAISettings, path: str,
                payload: Dict[str, Any]) -> Any:
    """
    POST a JSON payload to the OpenAI API.

    Args:
        client: HTTP client to send with
        settings: Snapshot taken before the call
        path: Path relative to the base URL (or an absolute URL)
        payload: Request body

    Returns:
        Decoded JSON response

    Raises:
        BuiltinArgumentError: If no API key is configured
        ExternalIOError: On transport errors, non-2xx status or invalid JSON
    """
    if not settings.api_key:
        raise BuiltinArgumentError(MISSING_KEY_MESSAGE)

    if path.startswith(("http://", "https://")):
        url = path
    else:
        url = f"{settings.base_url.rstrip('/')}/{path.lstrip('/')}"

    logger.debug("OpenAI request: POST %s (model=%s)", url, payload.get("model"))
    try:
        response = client.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {settings.api_key}"},
        )
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise ExternalIOError(f"OpenAI HTTP error: {e}") from e

    try:
        return response.json()
    except ValueError as e:
        raise ExternalIOError(f"OpenAI: response not valid JSON: {e}") from e


def extract_chat_content(response: Any) -> str:
    """choices[0].message.content, or "" when the response lacks it."""
    try:
        content = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content if isinstance(content, str) else ""
