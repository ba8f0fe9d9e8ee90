"""Обработчик MCP-протокола для одного SSE-канала.

Каждый канал получает собственный экземпляр: состояние `initialize`
(версия протокола, сведения о клиенте) не разделяется между сессиями.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from mcp_kb_gateway.core.config import (
    LATEST_PROTOCOL_VERSION,
    SERVER_CAPABILITIES,
    SERVER_INFO,
    SUPPORTED_PROTOCOL_VERSIONS,
)
from mcp_kb_gateway.models.json_rpc import (
    ClientSessionInfo,
    InitializeParams,
    JsonRpcError,
    JsonRpcErrorObj,
    JsonRpcMessage,
    JsonRpcResponse,
)
from mcp_kb_gateway.tools.handlers import _tool_error
from mcp_kb_gateway.tools.registry import ToolRegistry

logger = logging.getLogger("mcp_kb_gateway.services.protocol")

METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

Reply = Dict[str, Any]


def _json_rpc_error(code: int, message: str, *, data: Any = None, request_id: Any = None) -> Reply:
    error = JsonRpcError(
        error=JsonRpcErrorObj(code=code, message=message, data=data),
        id=request_id,
    )
    return error.model_dump(exclude_none=True)


def _json_rpc_result(result: Any, request_id: Any) -> Reply:
    return JsonRpcResponse(result=result, id=request_id).model_dump()


class McpProtocolHandler:
    def __init__(self, tools: ToolRegistry) -> None:
        self.tools = tools
        self.state = ClientSessionInfo()

    async def handle(self, message: JsonRpcMessage) -> Optional[Reply]:
        """Обрабатывает одно сообщение; `None` означает, что ответ не нужен."""
        if message.method is None:
            # Ответы клиента на серверные запросы: сервер их не инициирует.
            logger.debug("Ignoring client response id=%s", message.id)
            return None
        if message.is_notification():
            self._handle_notification(message.method)
            return None

        params = message.params or {}
        request_id = message.id
        try:
            if message.method == "initialize":
                return self._handle_initialize(params, request_id)
            if message.method == "ping":
                return _json_rpc_result({}, request_id)
            if message.method == "tools/list":
                return self._handle_tools_list(request_id)
            if message.method == "tools/call":
                return await self._handle_tools_call(params, request_id)
        except Exception as exc:  # pragma: no cover - guardrail
            logger.exception("Unhandled MCP error")
            return _json_rpc_error(INTERNAL_ERROR, "Internal error", data=str(exc), request_id=request_id)

        return _json_rpc_error(
            METHOD_NOT_FOUND,
            "Method not found",
            data={"method": message.method},
            request_id=request_id,
        )

    def _handle_notification(self, method: str) -> None:
        if method == "notifications/initialized":
            self.state.initialized = True
            return
        logger.debug("Ignoring notification %s", method)

    def _handle_initialize(self, params: Dict[str, Any], request_id: Any) -> Reply:
        try:
            parsed = InitializeParams.model_validate(params)
        except ValidationError as exc:
            return _json_rpc_error(
                INVALID_PARAMS,
                "Invalid initialize params",
                data=exc.errors(include_url=False),
                request_id=request_id,
            )

        requested = parsed.protocolVersion
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            protocol_version = requested
        else:
            protocol_version = LATEST_PROTOCOL_VERSION
        self.state.protocol_version = protocol_version
        self.state.client_info = parsed.clientInfo
        self.state.capabilities = parsed.capabilities

        result = {
            "protocolVersion": protocol_version,
            "capabilities": SERVER_CAPABILITIES,
            "serverInfo": SERVER_INFO,
        }
        return _json_rpc_result(result, request_id)

    def _handle_tools_list(self, request_id: Any) -> Reply:
        result = {"tools": [spec.as_mcp_dict() for spec in self.tools.specs()]}
        return _json_rpc_result(result, request_id)

    async def _handle_tools_call(self, params: Dict[str, Any], request_id: Any) -> Reply:
        name = params.get("name")
        arguments = params.get("arguments") or {}
        tool = self.tools.get(name) if isinstance(name, str) else None
        if tool is None:
            return _json_rpc_error(
                INVALID_PARAMS,
                f"Tool {name} not found",
                data={"available": self.tools.names()},
                request_id=request_id,
            )
        if not isinstance(arguments, dict):
            return _json_rpc_error(
                INVALID_PARAMS,
                "Invalid params: 'arguments' must be an object",
                request_id=request_id,
            )
        try:
            result = await tool.handler(arguments)
        except Exception as exc:
            logger.exception("Tool %s failed", name)
            result = _tool_error(f"Tool {name} failed: {exc}")
        return _json_rpc_result(result, request_id)


__all__ = ["McpProtocolHandler", "Reply"]
