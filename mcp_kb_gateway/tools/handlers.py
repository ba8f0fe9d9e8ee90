"""Обработчики MCP-инструментов."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp_kb_gateway.core.config import KNOWLEDGE_FILE
from mcp_kb_gateway.tools.registry import ToolResponse

logger = logging.getLogger("mcp_kb_gateway.tools.handlers")


def _tool_ok(*, content: Optional[List[Dict[str, Any]]] = None) -> ToolResponse:
    return {
        "content": content or [],
        "isError": False,
    }


def _tool_error(message: str) -> ToolResponse:
    return {
        "content": [{"type": "text", "text": message}],
        "isError": True,
    }


def _knowledge_file_path() -> Path:
    # Рабочий каталог берётся в момент вызова, а не при импорте.
    return Path.cwd() / KNOWLEDGE_FILE


async def _handle_read_knowledge_base(arguments: Dict[str, Any]) -> ToolResponse:
    """Читает `regras.md` целиком.

    Ошибка чтения не является ошибкой транспорта: клиент получает обычный
    результат с текстом диагностики, включающим исходную ошибку и путь.
    """
    file_path = _knowledge_file_path()
    try:
        text = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Knowledge base read failed: %s (path=%s)", exc, file_path)
        message = f"Erro ao ler {KNOWLEDGE_FILE}: {exc}. Verifique se o arquivo existe em {file_path}."
        return _tool_ok(content=[{"type": "text", "text": message}])
    return _tool_ok(content=[{"type": "text", "text": text}])


__all__ = [
    "_handle_read_knowledge_base",
    "_tool_error",
    "_tool_ok",
]
