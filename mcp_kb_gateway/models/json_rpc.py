"""Pydantic-модели для JSON-RPC сообщений и протокольного состояния канала MCP."""

from __future__ import annotations

from typing import Any, Dict, Optional, Literal

from pydantic import BaseModel, Field, model_validator


class JsonRpcMessage(BaseModel):
    """Любое входящее JSON-RPC 2.0 сообщение: запрос, уведомление или ответ клиента."""

    jsonrpc: Literal["2.0"]
    method: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    id: Optional[Any] = None
    result: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _require_kind(self) -> "JsonRpcMessage":
        if self.method is None and self.result is None and self.error is None:
            raise ValueError("message must carry a method, a result or an error")
        return self

    def is_notification(self) -> bool:
        return self.method is not None and self.id is None


class JsonRpcResponse(BaseModel):
    """Успешный JSON-RPC 2.0 ответ."""

    jsonrpc: Literal["2.0"] = "2.0"
    result: Any = None
    id: Optional[Any] = None


class JsonRpcErrorObj(BaseModel):
    """Структура ошибки JSON-RPC 2.0."""

    code: int
    message: str
    data: Optional[Any] = None


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 ответ с ошибкой."""

    jsonrpc: Literal["2.0"] = "2.0"
    error: JsonRpcErrorObj
    id: Optional[Any] = None


class InitializeParams(BaseModel):
    """Параметры метода `initialize` MCP."""

    protocolVersion: Optional[str] = None
    clientInfo: Dict[str, Any] = Field(default_factory=dict)
    capabilities: Dict[str, Any] = Field(default_factory=dict)


class ClientSessionInfo(BaseModel):
    """Протокольное состояние клиента одного SSE-канала."""

    initialized: bool = False
    protocol_version: Optional[str] = None
    client_info: Dict[str, Any] = Field(default_factory=dict)
    capabilities: Dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "ClientSessionInfo",
    "InitializeParams",
    "JsonRpcError",
    "JsonRpcErrorObj",
    "JsonRpcMessage",
    "JsonRpcResponse",
]
