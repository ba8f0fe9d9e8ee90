"""SSE-канал: односторонний push-поток, привязанный к одному GET-запросу."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, List, Optional
from uuid import uuid4

from pydantic import ValidationError
from sse_starlette.sse import ServerSentEvent

from mcp_kb_gateway.models.json_rpc import JsonRpcMessage
from mcp_kb_gateway.services.protocol import McpProtocolHandler

logger = logging.getLogger("mcp_kb_gateway.core.channel")

CloseCallback = Callable[[], None]

_END_OF_STREAM = object()


def _summarize(exc: ValidationError) -> str:
    # В тело ответа попадает только первая ошибка, не сама нагрузка.
    first = exc.errors(include_url=False)[0]
    location = ".".join(str(part) for part in first["loc"]) or "message"
    return f"{location}: {first['msg']} ({exc.error_count()} error(s))"


class ChannelClosed(Exception):
    """Операция над каналом, который уже закрыт."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Channel {session_id} is closed")
        self.session_id = session_id


@dataclass(slots=True)
class DeliveryAck:
    """Ответ канала на POST: именно он пишется в HTTP-ответ."""

    status_code: int = 202
    body: str = "Accepted"


class SseChannel:
    """Один SSE-поток и протокольный обработчик, который через него отвечает.

    `session_id` выдаётся при создании и не переиспользуется. Уведомление о
    закрытии срабатывает ровно один раз, независимо от того, закрыли канал
    локально (`close`) или со стороны пира (генератор `events` завершился).
    """

    def __init__(self, endpoint: str, handler: McpProtocolHandler) -> None:
        self.session_id = str(uuid4())
        self.endpoint = endpoint
        self.handler = handler
        self._outbox: "asyncio.Queue[Any]" = asyncio.Queue()
        self._opened = False
        self._closed = False
        self._closed_event = asyncio.Event()
        self._close_callbacks: List[CloseCallback] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def message_url(self) -> str:
        return f"{self.endpoint}?sessionId={self.session_id}"

    async def open(self) -> None:
        """Handshake: первым событием клиент получает URL для POST-сообщений."""
        if self._closed:
            raise ChannelClosed(self.session_id)
        if self._opened:
            raise RuntimeError(f"Channel {self.session_id} already opened")
        self._opened = True
        self._outbox.put_nowait(ServerSentEvent(event="endpoint", data=self.message_url))

    async def send(self, message: Any) -> None:
        if self._closed:
            raise ChannelClosed(self.session_id)
        data = json.dumps(message, ensure_ascii=False, separators=(",", ":"))
        self._outbox.put_nowait(ServerSentEvent(event="message", data=data))

    async def close(self) -> None:
        self._mark_closed()

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    def on_close(self, callback: CloseCallback) -> None:
        """Одноразовая подписка на закрытие; после закрытия вызывается сразу."""
        if self._closed:
            self._run_callback(callback)
            return
        self._close_callbacks.append(callback)

    async def deliver(self, payload: Any) -> DeliveryAck:
        if self._closed:
            raise ChannelClosed(self.session_id)
        try:
            message = JsonRpcMessage.model_validate(payload)
        except ValidationError as exc:
            logger.info("Rejected invalid message for session %s: %s", self.session_id, exc.error_count())
            return DeliveryAck(status_code=400, body=f"Invalid message: {_summarize(exc)}")

        reply = await self.handler.handle(message)
        if reply is not None:
            try:
                await self.send(reply)
            except ChannelClosed:
                logger.warning(
                    "Dropping reply for closed session %s (method=%s)",
                    self.session_id,
                    message.method,
                )
        return DeliveryAck()

    async def events(self) -> AsyncIterator[ServerSentEvent]:
        """Поток событий для `EventSourceResponse`.

        Завершение генератора по любой причине (локальное закрытие, разрыв
        соединения клиентом, ошибка транспорта) закрывает канал.
        """
        try:
            while True:
                item = await self._outbox.get()
                if item is _END_OF_STREAM:
                    break
                yield item
        finally:
            self._mark_closed()

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._outbox.put_nowait(_END_OF_STREAM)
        self._closed_event.set()
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            self._run_callback(callback)

    def _run_callback(self, callback: CloseCallback) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Close callback failed for session %s", self.session_id)


ChannelFactory = Callable[[], SseChannel]


__all__ = [
    "ChannelClosed",
    "ChannelFactory",
    "CloseCallback",
    "DeliveryAck",
    "SseChannel",
]
