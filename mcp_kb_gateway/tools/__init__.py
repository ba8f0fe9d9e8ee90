"""Реестр инструментов MCP и его наполнение по умолчанию."""

from __future__ import annotations

from .handlers import _handle_read_knowledge_base
from .registry import KNOWLEDGE_BASE_TOOL, ToolRegistry


def create_tool_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(KNOWLEDGE_BASE_TOOL, _handle_read_knowledge_base)
    return registry


__all__ = ["ToolRegistry", "create_tool_registry"]
