"""Реестр живых SSE-сессий: два индекса над одним множеством сессий.

Индекс по `session_id` нужен для маршрутизации POST, индекс по ключу клиента
для вытеснения старого подключения того же клиента. Оба индекса меняются
только методами `SessionRegistry` и только в участках без `await`, поэтому
конкурентное событие никогда не видит наполовину вытесненную запись.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from mcp_kb_gateway.core.channel import ChannelFactory, SseChannel
from mcp_kb_gateway.core.config import DEFAULT_IDLE_TIMEOUT_MS

logger = logging.getLogger("mcp_kb_gateway.core.session")


class SessionState(str, enum.Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class CloseReason(str, enum.Enum):
    HANDOVER = "handover"
    TIMEOUT = "timeout"
    PEER_CLOSED = "peer-closed"
    SHUTDOWN = "shutdown"


@dataclass(eq=False)
class Session:
    """Живой канал одного логического клиента; единственный владелец канала."""

    session_id: str
    client_key: str
    channel: SseChannel
    state: SessionState = SessionState.OPEN
    close_reason: Optional[CloseReason] = None
    messages_routed: int = 0
    idle_task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN


class SessionRegistry:
    def __init__(self, channel_factory: ChannelFactory, *, idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS) -> None:
        self._channel_factory = channel_factory
        self.idle_timeout_ms = idle_timeout_ms
        self._by_session: Dict[str, Session] = {}
        self._by_client: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._by_session)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._by_session

    def lookup(self, session_id: str) -> Optional[Session]:
        return self._by_session.get(session_id)

    def lookup_by_client(self, client_key: str) -> Optional[Session]:
        return self._by_client.get(client_key)

    def sessions(self) -> List[Session]:
        return list(self._by_session.values())

    async def open_session(self, client_key: str) -> Session:
        """Открывает новую сессию, вытесняя прежнюю сессию того же клиента.

        Вытеснение и вставка выполняются одним шагом без точек приостановки;
        закрытие старого канала ожидается уже после обновления индексов.
        """
        channel = self._channel_factory()
        await channel.open()

        previous = self._by_client.get(client_key)
        if previous is not None:
            logger.info(
                "New SSE connection for known client, evicting previous session "
                "(client_key=%s, old_session_id=%s)",
                client_key,
                previous.session_id,
            )
            self._detach(previous, CloseReason.HANDOVER)

        session = Session(session_id=channel.session_id, client_key=client_key, channel=channel)
        self._by_session[session.session_id] = session
        self._by_client[client_key] = session
        session.idle_task = asyncio.create_task(
            self._expire_after_idle_timeout(session),
            name=f"sse-idle-timeout-{session.session_id}",
        )
        channel.on_close(lambda: self._on_channel_closed(session))

        if previous is not None:
            await self._close_channel(previous)
        return session

    async def close_session(self, session: Session, reason: CloseReason) -> bool:
        """Идемпотентное закрытие: эффект имеет только первый вызов."""
        if not self._detach(session, reason):
            return False
        await self._close_channel(session)
        return True

    async def close_all(self, reason: CloseReason = CloseReason.SHUTDOWN) -> None:
        for session in self.sessions():
            await self.close_session(session, reason)

    def _detach(self, session: Session, reason: CloseReason) -> bool:
        if session.state is not SessionState.OPEN:
            return False
        session.state = SessionState.CLOSING
        session.close_reason = reason

        task = session.idle_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        session.idle_task = None

        # Удаляем только записи, которые всё ещё указывают на эту сессию.
        if self._by_session.get(session.session_id) is session:
            del self._by_session[session.session_id]
        if self._by_client.get(session.client_key) is session:
            del self._by_client[session.client_key]
        return True

    async def _close_channel(self, session: Session) -> None:
        try:
            await session.channel.close()
        except Exception as exc:
            logger.warning(
                "Error while closing SSE channel (session_id=%s, reason=%s): %s",
                session.session_id,
                session.close_reason.value if session.close_reason else None,
                exc,
            )
        session.state = SessionState.CLOSED

    def _on_channel_closed(self, session: Session) -> None:
        if self._detach(session, CloseReason.PEER_CLOSED):
            logger.info(
                "SSE connection closed by peer (session_id=%s, client_key=%s)",
                session.session_id,
                session.client_key,
            )
        session.state = SessionState.CLOSED

    async def _expire_after_idle_timeout(self, session: Session) -> None:
        # Отсчёт от открытия канала; входящие сообщения таймер не сбрасывают.
        await asyncio.sleep(self.idle_timeout_ms / 1000)
        logger.info(
            "SSE idle timeout reached, closing connection (session_id=%s, client_key=%s, timeout_ms=%s, messages=%s)",
            session.session_id,
            session.client_key,
            self.idle_timeout_ms,
            session.messages_routed,
        )
        await self.close_session(session, CloseReason.TIMEOUT)


__all__ = [
    "CloseReason",
    "Session",
    "SessionRegistry",
    "SessionState",
]
