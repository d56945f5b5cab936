"""
Unit tests for propfx/ipc.py — mpv JSON IPC against an in-process unix socket server.
"""
import asyncio
import json
import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
from propfx.errors import IpcCommandError, IpcError, SocketTimeout
from propfx.ipc import IpcChannel, LineBuffer


async def _serve(path: str, lines: list[bytes], close_after: bool = False):
    """Unix server that answers every request line with `lines`, then idles."""
    received: list[dict] = []

    async def handler(reader, writer):
        request = await reader.readline()
        if request:
            received.append(json.loads(request))
            for line in lines:
                writer.write(line)
                await writer.drain()
        if not close_after:
            await reader.read()  # until the client hangs up
        writer.close()

    server = await asyncio.start_unix_server(handler, path)
    return server, received


async def _close(server) -> None:
    server.close()
    await server.wait_closed()


# ---------------------------------------------------------------------------
# LineBuffer
# ---------------------------------------------------------------------------

def test_line_buffer_reassembles_partial_lines():
    buf = LineBuffer()
    assert buf.feed(b'{"a": 1}\n{"b"') == [{"a": 1}]
    assert buf.feed(b': 2}\n') == [{"b": 2}]


def test_line_buffer_drops_junk_and_non_objects():
    buf = LineBuffer()
    assert buf.feed(b'garbage\n\n[1, 2]\n{"ok": true}\n') == [{"ok": True}]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def test_command_returns_data_and_skips_events(sock_dir):
    path = os.path.join(sock_dir, "mpv.sock")

    async def scenario():
        server, received = await _serve(path, [
            b'{"event": "idle"}\n',
            b'not json\n',
            b'{"error": "success", "data": 42, "request_id": 0}\n',
        ])
        try:
            data = await IpcChannel().command(path, "get_property", "volume")
        finally:
            await _close(server)
        return data, received

    data, received = asyncio.run(scenario())
    assert data == 42
    assert received == [{"command": ["get_property", "volume"]}]


def test_set_property_sends_set_property_command(sock_dir):
    path = os.path.join(sock_dir, "mpv.sock")

    async def scenario():
        server, received = await _serve(path, [b'{"error": "success"}\n'])
        try:
            await IpcChannel().set_property(path, "volume", 30)
        finally:
            await _close(server)
        return received

    assert asyncio.run(scenario()) == [{"command": ["set_property", "volume", 30]}]


def test_error_reply_raises_ipc_command_error(sock_dir):
    path = os.path.join(sock_dir, "mpv.sock")

    async def scenario():
        server, _ = await _serve(path, [b'{"error": "property unavailable"}\n'])
        try:
            await IpcChannel().get_property(path, "nope")
        finally:
            await _close(server)

    with pytest.raises(IpcCommandError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.error == "property unavailable"


def test_missing_reply_raises_socket_timeout(sock_dir):
    path = os.path.join(sock_dir, "mpv.sock")

    async def scenario():
        server, _ = await _serve(path, [b'{"event": "idle"}\n'])
        try:
            await IpcChannel(command_timeout=0.2).command(path, "stop")
        finally:
            await _close(server)

    with pytest.raises(SocketTimeout):
        asyncio.run(scenario())


def test_missing_socket_raises_ipc_error(sock_dir):
    path = os.path.join(sock_dir, "absent.sock")
    with pytest.raises(IpcError) as exc_info:
        asyncio.run(IpcChannel().command(path, "stop"))
    assert not isinstance(exc_info.value, SocketTimeout)


def test_connection_closed_before_reply_raises_ipc_error(sock_dir):
    path = os.path.join(sock_dir, "mpv.sock")

    async def scenario():
        server, _ = await _serve(path, [], close_after=True)
        try:
            await IpcChannel().command(path, "stop")
        finally:
            await _close(server)

    with pytest.raises(IpcError, match="closed"):
        asyncio.run(scenario())


# ---------------------------------------------------------------------------
# observe_property
# ---------------------------------------------------------------------------

def test_observe_property_waits_for_target_value(sock_dir):
    path = os.path.join(sock_dir, "mpv.sock")

    async def scenario():
        server, received = await _serve(path, [
            b'{"error": "success"}\n',
            b'{"event": "property-change", "id": 1, "name": "eof-reached", "data": false}\n',
            b'{"event": "property-change", "id": 1, "name": "volume", "data": true}\n',
            b'{"event": "property-change", "id": 1, "name": "eof-reached", "data": true}\n',
        ])
        try:
            await IpcChannel().observe_property(path, "eof-reached", True)
        finally:
            await _close(server)
        return received

    assert asyncio.run(scenario()) == [{"command": ["observe_property", 1, "eof-reached"]}]


def test_observe_property_times_out(sock_dir):
    path = os.path.join(sock_dir, "mpv.sock")

    async def scenario():
        server, _ = await _serve(path, [
            b'{"error": "success"}\n',
            b'{"event": "property-change", "id": 1, "name": "eof-reached", "data": false}\n',
        ])
        try:
            await IpcChannel(observe_timeout=0.2).observe_property(path, "eof-reached", True)
        finally:
            await _close(server)

    with pytest.raises(SocketTimeout) as exc_info:
        asyncio.run(scenario())
    assert "eof-reached" in str(exc_info.value)


def test_observe_property_error_reply(sock_dir):
    path = os.path.join(sock_dir, "mpv.sock")

    async def scenario():
        server, _ = await _serve(path, [b'{"error": "invalid parameter"}\n'])
        try:
            await IpcChannel().observe_property(path, "bogus", True)
        finally:
            await _close(server)

    with pytest.raises(IpcCommandError):
        asyncio.run(scenario())


def test_observe_property_without_deadline_can_be_cancelled(sock_dir):
    path = os.path.join(sock_dir, "mpv.sock")

    async def scenario():
        server, _ = await _serve(path, [b'{"error": "success"}\n'])
        try:
            task = asyncio.create_task(
                IpcChannel(observe_timeout=0.05).observe_property(path, "eof-reached", True, timeout=None)
            )
            await asyncio.sleep(0.2)
            assert not task.done()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        finally:
            await _close(server)

    asyncio.run(scenario())


# ---------------------------------------------------------------------------
# wait_for_socket
# ---------------------------------------------------------------------------

def test_wait_for_socket(sock_dir):
    path = os.path.join(sock_dir, "later.sock")
    ipc = IpcChannel()
    assert asyncio.run(ipc.wait_for_socket(path, retries=2, interval=0.01)) is False

    Path(path).write_text("", encoding="utf-8")
    assert asyncio.run(ipc.wait_for_socket(path, retries=2, interval=0.01)) is True
