"""FastAPI-маршруты MCP API."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from sse_starlette.sse import EventSourceResponse

from mcp_kb_gateway.core.config import (
    HEALTH_PATH,
    MAX_BODY_BYTES,
    MCP_PATH,
    SERVICE_NAME,
    SESSION_ID_HEADER,
    SESSION_ID_QUERY,
)
from mcp_kb_gateway.core.identity import client_key_from_request
from mcp_kb_gateway.core.router import MessageRouter, RoutingError
from mcp_kb_gateway.core.session import SessionRegistry

logger = logging.getLogger("mcp_kb_gateway.api.routes")

router = APIRouter()

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.session_registry


def _message_router(request: Request) -> MessageRouter:
    return request.app.state.message_router


@router.get(HEALTH_PATH)
def health() -> Dict[str, str]:
    return {"status": "ok", "service": SERVICE_NAME}


@router.get(MCP_PATH)
async def open_stream(request: Request) -> EventSourceResponse:
    client_key = client_key_from_request(request)
    session = await _registry(request).open_session(client_key)
    logger.info(
        "SSE connection opened (session_id=%s, client_key=%s, ip=%s, user_agent=%s)",
        session.session_id,
        client_key,
        request.client.host if request.client else None,
        request.headers.get("user-agent"),
    )
    return EventSourceResponse(
        session.channel.events(),
        headers=_SSE_HEADERS,
        ping=request.app.state.settings.ping_interval_s,
    )


class _BodyTooLarge(Exception):
    pass


async def _read_limited_body(request: Request) -> bytes:
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > MAX_BODY_BYTES:
        raise _BodyTooLarge()
    # Лимит проверяется и по фактическому потоку: Content-Length необязателен.
    chunks = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > MAX_BODY_BYTES:
            raise _BodyTooLarge()
        chunks.append(chunk)
    return b"".join(chunks)


@router.post(MCP_PATH)
async def post_message(request: Request):
    # Query имеет приоритет над заголовком.
    session_id = request.query_params.get(SESSION_ID_QUERY) or request.headers.get(SESSION_ID_HEADER)

    try:
        body = await _read_limited_body(request)
    except _BodyTooLarge:
        logger.info("POST %s rejected: payload larger than %s bytes (session_id=%s)", MCP_PATH, MAX_BODY_BYTES, session_id)
        return PlainTextResponse("Payload too large", status_code=413)
    payload: Any = None
    if body:
        try:
            payload = json.loads(body)
        except ValueError:
            return PlainTextResponse("Invalid JSON body", status_code=400)

    try:
        ack = await _message_router(request).route(session_id, payload)
    except RoutingError as exc:
        logger.info("POST %s rejected: %s (session_id=%s)", MCP_PATH, exc.message, session_id)
        return PlainTextResponse(exc.message, status_code=exc.status_code)
    return PlainTextResponse(ack.body, status_code=ack.status_code)


__all__ = ["router"]
