"""
Server connection settings.

Resolution order for the HTTP base URL mirrors how the server is usually
reached: an explicit URL, then a host/port pair, then the local default
(`python main.py` listens on 127.0.0.1:8188). The push-channel URL is derived
from the base URL unless given explicitly.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import urlencode, urlparse, urlunparse

from comfylink.utils.errors import ConfigurationError
from comfylink.utils.logging import LoggerFactory

logger = LoggerFactory.get_logger("client.config")

DEFAULT_SERVER_URL = "http://127.0.0.1:8188"
DEFAULT_WS_PATH = "/ws"
DEFAULT_REGISTRY_MAX_ENTRIES = 1000
SERVER_URL_ENV_VAR = "COMFYLINK_SERVER_URL"
HOST_ENV_VAR = "COMFYLINK_HOST"
PORT_ENV_VAR = "COMFYLINK_PORT"
SCHEME_ENV_VAR = "COMFYLINK_SCHEME"
WS_URL_ENV_VAR = "COMFYLINK_WS_URL"
WS_PATH_ENV_VAR = "COMFYLINK_WS_PATH"
TIMEOUT_ENV_VAR = "COMFYLINK_REQUEST_TIMEOUT"
CLIENT_ID_ENV_VAR = "COMFYLINK_CLIENT_ID"
REGISTRY_SIZE_ENV_VAR = "COMFYLINK_REGISTRY_MAX_ENTRIES"


def _new_client_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class ServerConfig:
    """Resolved connection details for one workflow server."""

    base_url: str = DEFAULT_SERVER_URL
    websocket_url: str = ""
    client_id: str = field(default_factory=_new_client_id)
    request_timeout: Optional[float] = None
    registry_max_entries: int = DEFAULT_REGISTRY_MAX_ENTRIES

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_url", _normalize_base_url(self.base_url))
        if not self.websocket_url:
            object.__setattr__(
                self, "websocket_url", _build_websocket_url(self.base_url, DEFAULT_WS_PATH)
            )

    @property
    def session_websocket_url(self) -> str:
        """Push-channel URL tagged with this client's session id."""
        return f"{self.websocket_url}?{urlencode({'clientId': self.client_id})}"


def _normalize_base_url(value: str) -> str:
    """Normalize host inputs into an http(s) URL."""
    candidate = value.strip()
    if not candidate:
        raise ConfigurationError("Server base URL is empty", config_key=SERVER_URL_ENV_VAR)
    if "://" not in candidate:
        candidate = f"http://{candidate}"
    return candidate.rstrip("/")


def _format_host_port(host: str, port: Optional[int]) -> str:
    """Format a host[:port] string, handling IPv6 literals."""
    host_part = host
    if ":" in host and not host.startswith("["):
        host_part = f"[{host}]"
    if port:
        return f"{host_part}:{port}"
    return host_part


def _build_websocket_url(base_url: str, path: str) -> str:
    """Derive a ws:// URL from the HTTP base."""
    parsed = urlparse(base_url)
    ws_scheme = "wss" if parsed.scheme == "https" else "ws"
    host = parsed.hostname or ""
    if not host:
        raise ConfigurationError(
            "Unable to parse host from server base URL",
            config_key=SERVER_URL_ENV_VAR,
            value=base_url,
        )
    prefix = parsed.path.rstrip("/")
    normalized_path = path if path.startswith("/") else f"/{path}"
    netloc = _format_host_port(host, parsed.port)
    return urlunparse((ws_scheme, netloc, f"{prefix}{normalized_path}", "", "", ""))


def _normalize_ws_url(value: str) -> str:
    candidate = value.strip()
    if not (candidate.startswith("ws://") or candidate.startswith("wss://")):
        raise ConfigurationError(
            "WebSocket URL must start with ws:// or wss://",
            config_key=WS_URL_ENV_VAR,
            value=value,
        )
    return candidate.rstrip("/")


def _parse_timeout(raw: Optional[str]) -> Optional[float]:
    if raw is None or not raw.strip() or raw.strip().lower() == "none":
        return None
    try:
        timeout = float(raw)
    except ValueError:
        raise ConfigurationError(
            "Request timeout must be a number of seconds",
            config_key=TIMEOUT_ENV_VAR,
            value=raw,
        ) from None
    if timeout <= 0:
        raise ConfigurationError(
            "Request timeout must be positive", config_key=TIMEOUT_ENV_VAR, value=raw
        )
    return timeout


def _parse_positive_int(raw: Optional[str], env_var: str, default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(
            "Expected a positive integer", config_key=env_var, value=raw
        ) from None
    if value <= 0:
        raise ConfigurationError("Expected a positive integer", config_key=env_var, value=raw)
    return value


def resolve_server_config(environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
    """Resolve server connectivity details from the environment."""
    env = os.environ if environ is None else environ

    raw_url = env.get(SERVER_URL_ENV_VAR)
    if raw_url:
        base_url = _normalize_base_url(raw_url)
        logger.info(
            "Using server URL from environment",
            extra_context={"variable": SERVER_URL_ENV_VAR, "url": base_url},
        )
    elif env.get(HOST_ENV_VAR):
        scheme = (env.get(SCHEME_ENV_VAR) or "http").strip() or "http"
        port = (env.get(PORT_ENV_VAR) or "").strip()
        host = env[HOST_ENV_VAR].strip()
        base_url = _normalize_base_url(f"{scheme}://{host}:{port}" if port else f"{scheme}://{host}")
        logger.info("Using server host/port configuration", extra_context={"url": base_url})
    else:
        base_url = DEFAULT_SERVER_URL
        logger.debug("Server URL not provided; using local default", extra_context={"url": base_url})

    ws_override = env.get(WS_URL_ENV_VAR)
    if ws_override:
        websocket_url = _normalize_ws_url(ws_override)
    else:
        websocket_url = _build_websocket_url(base_url, env.get(WS_PATH_ENV_VAR, DEFAULT_WS_PATH))

    client_id = (env.get(CLIENT_ID_ENV_VAR) or "").strip() or _new_client_id()

    return ServerConfig(
        base_url=base_url,
        websocket_url=websocket_url,
        client_id=client_id,
        request_timeout=_parse_timeout(env.get(TIMEOUT_ENV_VAR)),
        registry_max_entries=_parse_positive_int(
            env.get(REGISTRY_SIZE_ENV_VAR), REGISTRY_SIZE_ENV_VAR, DEFAULT_REGISTRY_MAX_ENTRIES
        ),
    )
