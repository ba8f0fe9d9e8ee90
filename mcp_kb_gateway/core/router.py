"""Маршрутизация POST-сообщений в живой SSE-канал по идентификатору сессии."""

from __future__ import annotations

import logging
from typing import Any, Optional

from mcp_kb_gateway.core.channel import ChannelClosed, DeliveryAck
from mcp_kb_gateway.core.session import SessionRegistry

logger = logging.getLogger("mcp_kb_gateway.core.router")


class RoutingError(Exception):
    status_code = 500

    def __init__(self, message: str, *, session_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.session_id = session_id


class MissingSessionId(RoutingError):
    """Ошибка вызывающей стороны: идентификатор сессии не передан вовсе."""

    status_code = 400

    def __init__(self) -> None:
        super().__init__("Missing sessionId (query or header mcp-session-id)")


class UnknownSession(RoutingError):
    """Сессии нет среди открытых: не существовала, истекла или вытеснена."""

    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__("Unknown session. Connect via GET /mcp first.", session_id=session_id)


class MessageRouter:
    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    async def route(self, session_id: Optional[str], payload: Any) -> DeliveryAck:
        if not session_id:
            raise MissingSessionId()

        session = self.registry.lookup(session_id)
        if session is None or not session.is_open:
            raise UnknownSession(session_id)

        session.messages_routed += 1
        try:
            return await session.channel.deliver(payload)
        except ChannelClosed:
            # Канал закрылся между поиском и доставкой.
            logger.info("Session %s closed before delivery", session_id)
            raise UnknownSession(session_id) from None


__all__ = [
    "MessageRouter",
    "MissingSessionId",
    "RoutingError",
    "UnknownSession",
]
