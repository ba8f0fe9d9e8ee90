from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import pytest

from mcp_kb_gateway.core.channel import ChannelClosed, SseChannel
from mcp_kb_gateway.services.protocol import McpProtocolHandler
from mcp_kb_gateway.tools import create_tool_registry
from mcp_kb_gateway.tools.handlers import _handle_read_knowledge_base
from mcp_kb_gateway.tools.registry import ToolRegistry, ToolSpec


def _make_channel(tools: ToolRegistry | None = None) -> SseChannel:
    return SseChannel("/mcp", McpProtocolHandler(create_tool_registry() if tools is None else tools))


async def _drain(channel: SseChannel) -> List[Any]:
    """Закрывает канал и возвращает все события, ушедшие в поток."""
    await channel.close()
    return [event async for event in channel.events()]


def _messages(events: List[Any]) -> List[Dict[str, Any]]:
    return [json.loads(event.data) for event in events if event.event == "message"]


@pytest.mark.asyncio
async def test_open_emits_endpoint_event_with_session_id() -> None:
    channel = _make_channel()
    await channel.open()

    events = await _drain(channel)

    assert events[0].event == "endpoint"
    assert events[0].data == f"/mcp?sessionId={channel.session_id}"


@pytest.mark.asyncio
async def test_open_twice_or_after_close_fails() -> None:
    channel = _make_channel()
    await channel.open()
    with pytest.raises(RuntimeError):
        await channel.open()

    closed = _make_channel()
    await closed.close()
    with pytest.raises(ChannelClosed):
        await closed.open()


@pytest.mark.asyncio
async def test_close_notifies_exactly_once() -> None:
    channel = _make_channel()
    calls: List[str] = []
    channel.on_close(lambda: calls.append("first"))

    await channel.close()
    await channel.close()
    await channel.close()

    assert calls == ["first"]
    assert channel.closed is True

    channel.on_close(lambda: calls.append("late"))
    assert calls == ["first", "late"]


@pytest.mark.asyncio
async def test_failing_close_callback_does_not_propagate() -> None:
    channel = _make_channel()
    calls: List[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    channel.on_close(broken)
    channel.on_close(lambda: calls.append("after"))

    await channel.close()

    assert calls == ["after"]


@pytest.mark.asyncio
async def test_stream_end_counts_as_peer_close() -> None:
    channel = _make_channel()
    calls: List[str] = []
    channel.on_close(lambda: calls.append("closed"))
    await channel.open()

    stream = channel.events()
    first = await stream.__anext__()
    assert first.event == "endpoint"
    # Так sse-starlette останавливает генератор при разрыве соединения.
    await stream.aclose()

    assert channel.closed is True
    assert calls == ["closed"]
    await channel.wait_closed()


@pytest.mark.asyncio
async def test_send_after_close_raises() -> None:
    channel = _make_channel()
    await channel.close()

    with pytest.raises(ChannelClosed):
        await channel.send({"jsonrpc": "2.0", "result": {}, "id": 1})
    with pytest.raises(ChannelClosed):
        await channel.deliver({"jsonrpc": "2.0", "method": "ping", "id": 1})


@pytest.mark.asyncio
async def test_deliver_pushes_reply_over_stream() -> None:
    channel = _make_channel()
    await channel.open()

    ack = await channel.deliver({"jsonrpc": "2.0", "method": "ping", "id": 3})
    events = await _drain(channel)

    assert (ack.status_code, ack.body) == (202, "Accepted")
    assert _messages(events) == [{"jsonrpc": "2.0", "result": {}, "id": 3}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [None, [], {"method": "ping", "id": 1}, {"jsonrpc": "2.0"}, {"jsonrpc": "1.0", "method": "ping"}],
)
async def test_deliver_rejects_invalid_messages(payload: Any) -> None:
    channel = _make_channel()

    ack = await channel.deliver(payload)

    assert ack.status_code == 400
    assert ack.body.startswith("Invalid message:")
    assert _messages(await _drain(channel)) == []


@pytest.mark.asyncio
async def test_deliver_rejection_does_not_echo_payload() -> None:
    channel = _make_channel()
    secret = "x" * 10_000

    ack = await channel.deliver({"jsonrpc": "2.0", "params": {"token": secret}})

    assert ack.status_code == 400
    assert secret not in ack.body
    assert len(ack.body) < 300
    assert "1 error(s)" in ack.body


@pytest.mark.asyncio
async def test_initialize_list_and_call_over_channel(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "regras.md").write_text("# Regras\n\nSeja cordial.", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    channel = _make_channel()
    await channel.open()

    await channel.deliver(
        {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "initialize",
            "params": {
                "protocolVersion": "2024-11-05",
                "clientInfo": {"name": "pytest", "version": "1.0"},
                "capabilities": {},
            },
        }
    )
    await channel.deliver({"jsonrpc": "2.0", "method": "notifications/initialized"})
    await channel.deliver({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
    await channel.deliver(
        {
            "jsonrpc": "2.0",
            "id": 3,
            "method": "tools/call",
            "params": {"name": "consultar_base_conhecimento", "arguments": {}},
        }
    )

    init_reply, list_reply, call_reply = _messages(await _drain(channel))

    assert init_reply["result"]["protocolVersion"] == "2024-11-05"
    assert init_reply["result"]["serverInfo"]["name"] == "mcp-base-conhecimento"
    assert "tools" in init_reply["result"]["capabilities"]
    assert channel.handler.state.initialized is True
    assert channel.handler.state.client_info == {"name": "pytest", "version": "1.0"}

    tools = list_reply["result"]["tools"]
    assert [tool["name"] for tool in tools] == ["consultar_base_conhecimento"]
    assert tools[0]["inputSchema"]["type"] == "object"
    assert set(tools[0]) == {"name", "description", "inputSchema"}

    assert call_reply["id"] == 3
    assert call_reply["result"]["isError"] is False
    assert call_reply["result"]["content"] == [{"type": "text", "text": "# Regras\n\nSeja cordial."}]


@pytest.mark.asyncio
async def test_initialize_with_unknown_version_gets_latest() -> None:
    channel = _make_channel()

    await channel.deliver({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "1999-01-01"}})
    (reply,) = _messages(await _drain(channel))

    assert reply["result"]["protocolVersion"] == "2025-06-18"


@pytest.mark.asyncio
async def test_protocol_errors() -> None:
    channel = _make_channel()

    await channel.deliver({"jsonrpc": "2.0", "id": 1, "method": "resources/list"})
    await channel.deliver({"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "missing"}})
    await channel.deliver(
        {
            "jsonrpc": "2.0",
            "id": 3,
            "method": "tools/call",
            "params": {"name": "consultar_base_conhecimento", "arguments": ["x"]},
        }
    )
    not_found, unknown_tool, bad_arguments = _messages(await _drain(channel))

    assert not_found["error"]["code"] == -32601
    assert unknown_tool["error"]["code"] == -32602
    assert unknown_tool["error"]["data"] == {"available": ["consultar_base_conhecimento"]}
    assert bad_arguments["error"]["code"] == -32602


@pytest.mark.asyncio
async def test_tool_exception_becomes_error_result() -> None:
    tools = ToolRegistry()

    async def explode(arguments: Dict[str, Any]) -> Dict[str, Any]:
        raise RuntimeError("kaboom")

    tools.register(ToolSpec(name="explode", description="Always fails."), explode)
    channel = _make_channel(tools)

    await channel.deliver({"jsonrpc": "2.0", "id": 9, "method": "tools/call", "params": {"name": "explode"}})
    (reply,) = _messages(await _drain(channel))

    assert reply["result"]["isError"] is True
    assert "kaboom" in reply["result"]["content"][0]["text"]


def test_tool_registry_rejects_duplicates() -> None:
    tools = create_tool_registry()

    with pytest.raises(ValueError):
        tools.register(ToolSpec(name="consultar_base_conhecimento", description="dup"), _handle_read_knowledge_base)


@pytest.mark.asyncio
async def test_missing_knowledge_file_is_reported_as_result(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    result = await _handle_read_knowledge_base({})

    assert result["isError"] is False
    text = result["content"][0]["text"]
    assert text.startswith("Erro ao ler regras.md:")
    assert "No such file or directory" in text
    assert str(tmp_path / "regras.md") in text
