# mcp_kb_gateway/main.py
"""Точка входа FastAPI: MCP-шлюз базы знаний поверх SSE.

GET /mcp открывает SSE-поток, POST /mcp доставляет JSON-RPC сообщения в
поток по идентификатору сессии, GET /health отвечает для проверок живости.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import router as api_router
from .core.channel import SseChannel
from .core.config import CORS_EXPOSED_HEADERS, MCP_PATH, SERVER_INFO, GatewaySettings, get_settings
from .core.router import MessageRouter
from .core.session import CloseReason, SessionRegistry
from .services.protocol import McpProtocolHandler
from .tools import ToolRegistry, create_tool_registry


logger = logging.getLogger("mcp_kb_gateway")
if not logger.handlers:
    logging.basicConfig(level=logging.INFO)


def create_app(
    settings: Optional[GatewaySettings] = None,
    *,
    tools: Optional[ToolRegistry] = None,
) -> FastAPI:
    settings = settings or get_settings()
    if tools is None:
        tools = create_tool_registry()

    # Каждый канал получает собственный протокольный обработчик.
    def channel_factory() -> SseChannel:
        return SseChannel(MCP_PATH, McpProtocolHandler(tools))

    registry = SessionRegistry(channel_factory, idle_timeout_ms=settings.idle_timeout_ms)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if len(registry):
            logger.info("Shutting down, closing %d SSE session(s)", len(registry))
        await registry.close_all(CloseReason.SHUTDOWN)

    app = FastAPI(title="MCP - Base de Conhecimento", version=SERVER_INFO["version"], lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=CORS_EXPOSED_HEADERS,
    )
    app.state.settings = settings
    app.state.tools = tools
    app.state.session_registry = registry
    app.state.message_router = MessageRouter(registry)
    app.include_router(api_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    logger.info("Server running on port %s", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
