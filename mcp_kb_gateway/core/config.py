"""Глобальные константы и настройки MCP-шлюза базы знаний."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

logger = logging.getLogger("mcp_kb_gateway.core.config")

SERVICE_NAME = "mcp-base-conhecimento"
SERVER_INFO: Dict[str, str] = {
    "name": SERVICE_NAME,
    "version": os.getenv("APP_VERSION", "1.0.0"),
}
SERVER_CAPABILITIES: Dict[str, Dict[str, object]] = {
    "tools": {
        "listChanged": True,
    },
}

LATEST_PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS: Tuple[str, ...] = (
    LATEST_PROTOCOL_VERSION,
    "2025-03-26",
    "2024-11-05",
    "2024-10-07",
)

# Единый путь MCP: GET открывает SSE-поток, POST доставляет сообщения.
MCP_PATH = "/mcp"
HEALTH_PATH = "/health"
SESSION_ID_QUERY = "sessionId"
SESSION_ID_HEADER = "mcp-session-id"
MAX_BODY_BYTES = 4 * 1024 * 1024

KNOWLEDGE_FILE = "regras.md"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_IDLE_TIMEOUT_MS = 5 * 60 * 1000
DEFAULT_PING_INTERVAL_S = 15

CORS_EXPOSED_HEADERS = ["Content-Type", "Cache-Control", "Connection"]


def _get_positive_int(name: str, default: int) -> int:
    # Пустое, нечисловое или нулевое значение означает значение по умолчанию.
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(float(raw))
    except ValueError:
        logger.warning("Invalid %s=%r, falling back to %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Non-positive %s=%r, falling back to %s", name, raw, default)
        return default
    return value


@dataclass(slots=True)
class GatewaySettings:
    """Настройки шлюза, получаемые из окружения."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS
    ping_interval_s: int = DEFAULT_PING_INTERVAL_S

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        return cls(
            host=os.getenv("HOST", DEFAULT_HOST) or DEFAULT_HOST,
            port=_get_positive_int("PORT", DEFAULT_PORT),
            idle_timeout_ms=_get_positive_int("MCP_SSE_IDLE_TIMEOUT_MS", DEFAULT_IDLE_TIMEOUT_MS),
            ping_interval_s=_get_positive_int("MCP_SSE_PING_INTERVAL_S", DEFAULT_PING_INTERVAL_S),
        )


_SETTINGS: Optional[GatewaySettings] = None


def get_settings() -> GatewaySettings:
    """Ленивая загрузка настроек: окружение читается один раз на процесс."""
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = GatewaySettings.from_env()
    return _SETTINGS


__all__ = [
    "CORS_EXPOSED_HEADERS",
    "DEFAULT_IDLE_TIMEOUT_MS",
    "DEFAULT_PORT",
    "GatewaySettings",
    "HEALTH_PATH",
    "KNOWLEDGE_FILE",
    "LATEST_PROTOCOL_VERSION",
    "MAX_BODY_BYTES",
    "MCP_PATH",
    "SERVER_CAPABILITIES",
    "SERVER_INFO",
    "SERVICE_NAME",
    "SESSION_ID_HEADER",
    "SESSION_ID_QUERY",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "get_settings",
]
