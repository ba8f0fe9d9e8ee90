"""Вычисление ключа клиента для обнаружения повторных подключений."""

from __future__ import annotations

from typing import Optional

from fastapi import Request

CLIENT_ID_QUERY = "clientId"
CLIENT_ID_HEADER = "x-client-id"
ORCHESTRATOR_SESSION_HEADER = "x-n8n-session-id"

UNKNOWN_PEER = "unknown-ip"
UNKNOWN_USER_AGENT = "unknown-ua"
KEY_SEPARATOR = "__"


def resolve_client_key(
    *,
    query_client_id: Optional[str] = None,
    header_client_id: Optional[str] = None,
    orchestrator_session_id: Optional[str] = None,
    peer_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> str:
    """Возвращает стабильный ключ «того же логического клиента».

    Побеждает первый непустой источник: query `clientId`, заголовок
    `x-client-id`, заголовок `x-n8n-session-id`. Если явного идентификатора
    нет, ключ строится из адреса пира и user-agent.
    """
    for candidate in (query_client_id, header_client_id, orchestrator_session_id):
        if candidate:
            return str(candidate)
    peer = peer_address or UNKNOWN_PEER
    agent = user_agent or UNKNOWN_USER_AGENT
    return f"{peer}{KEY_SEPARATOR}{agent}"


def client_key_from_request(request: Request) -> str:
    client = request.client
    return resolve_client_key(
        query_client_id=request.query_params.get(CLIENT_ID_QUERY),
        header_client_id=request.headers.get(CLIENT_ID_HEADER),
        orchestrator_session_id=request.headers.get(ORCHESTRATOR_SESSION_HEADER),
        peer_address=client.host if client else None,
        user_agent=request.headers.get("user-agent"),
    )


__all__ = [
    "CLIENT_ID_HEADER",
    "CLIENT_ID_QUERY",
    "ORCHESTRATOR_SESSION_HEADER",
    "client_key_from_request",
    "resolve_client_key",
]
