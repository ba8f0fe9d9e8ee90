"""Описание схем и реестра MCP-инструментов приложения."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

ToolResponse = Dict[str, Any]
ToolHandler = Callable[[Dict[str, Any]], Awaitable[ToolResponse]]


class ToolSchema(BaseModel):
    """JSON-схема аргументов/результатов инструмента MCP."""

    type: str = "object"
    properties: Dict[str, Any] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)
    additionalProperties: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump()


class ToolSpec(BaseModel):
    """Спецификация инструмента MCP, публикуемая в `tools/list`."""

    name: str
    description: str
    input_schema: ToolSchema = Field(default_factory=ToolSchema)

    def as_mcp_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema.as_dict(),
        }


@dataclass(slots=True)
class RegisteredTool:
    spec: ToolSpec
    handler: ToolHandler


class ToolRegistry:
    """Именованные возможности: тройка имя/описание/схема плюс обработчик.

    Реестр ничего не знает о сессиях и транспорте, поэтому новые инструменты
    добавляются без изменений в слое SSE.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    def register(self, spec: ToolSpec, handler: ToolHandler) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool '{spec.name}' is already registered")
        self._tools[spec.name] = RegisteredTool(spec=spec, handler=handler)

    def get(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def specs(self) -> List[ToolSpec]:
        return [tool.spec for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


KNOWLEDGE_BASE_TOOL = ToolSpec(
    name="consultar_base_conhecimento",
    description="Lê o arquivo regras.md na raiz do projeto e retorna o conteúdo em texto.",
    input_schema=ToolSchema(),
)

__all__ = [
    "KNOWLEDGE_BASE_TOOL",
    "RegisteredTool",
    "ToolHandler",
    "ToolRegistry",
    "ToolResponse",
    "ToolSchema",
    "ToolSpec",
]
