"""
mpv JSON IPC client.

mpv's --input-ipc-server socket speaks newline-delimited JSON. Requests are
``{"command": [...]}``; replies carry an ``error`` field ("success" or a
message) and optional ``data``. Unsolicited event lines (``{"event": ...}``)
are interleaved with replies on the same connection and are never taken as
a command result.

Each call opens its own short-lived connection to the socket, so concurrent
commands and long-running property observations never share a stream.
"""
import asyncio
import json
import logging
import os

from propfx.errors import IpcCommandError, IpcError, SocketTimeout

COMMAND_TIMEOUT = 5.0
OBSERVE_TIMEOUT = 30.0

_DEFAULT = object()


class LineBuffer:
    """Accumulates socket bytes and yields complete JSON objects.

    Blank and malformed lines are dropped silently: mpv may log or emit
    partial data during shutdown, and a bad line must not wedge the reader.
    """

    def __init__(self) -> None:
        self._buf = b""

    def feed(self, data: bytes) -> list[dict]:
        self._buf += data
        *lines, self._buf = self._buf.split(b"\n")
        messages = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                msg = json.loads(line)
            except ValueError:
                logging.debug("IPC: discarding malformed line %r", line[:80])
                continue
            if isinstance(msg, dict):
                messages.append(msg)
        return messages


class IpcChannel:
    """Request/response and event client for engine IPC sockets."""

    def __init__(self, command_timeout: float = COMMAND_TIMEOUT, observe_timeout: float = OBSERVE_TIMEOUT):
        self.command_timeout = command_timeout
        self.observe_timeout = observe_timeout

    async def _connect(self, socket_path: str):
        try:
            return await asyncio.wait_for(
                asyncio.open_unix_connection(socket_path), self.command_timeout
            )
        except asyncio.TimeoutError:
            raise SocketTimeout(socket_path, self.command_timeout, "connection") from None
        except OSError as exc:
            raise IpcError(socket_path, f"connect failed: {exc}") from exc

    @staticmethod
    async def _close(writer) -> None:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass  # peer already gone

    @staticmethod
    async def _write(writer, payload: dict) -> None:
        writer.write(json.dumps(payload).encode("utf-8") + b"\n")
        await writer.drain()

    async def _read_messages(self, socket_path: str, reader, buf: LineBuffer) -> list[dict]:
        data = await reader.read(4096)
        if not data:
            raise IpcError(socket_path, "connection closed by engine")
        return buf.feed(data)

    async def _exchange(self, socket_path: str, reader, writer, payload: dict) -> dict:
        await self._write(writer, payload)
        buf = LineBuffer()
        while True:
            for msg in await self._read_messages(socket_path, reader, buf):
                if "error" in msg and "event" not in msg:
                    return msg

    async def send(self, socket_path: str, command_obj: dict) -> dict:
        """
        Send one command object and return the first reply line.

        Raises:
            IpcError: Socket missing, refused or closed before a reply.
            SocketTimeout: No reply within command_timeout. The connection is
                closed; the command is not retried.
        """
        reader, writer = await self._connect(socket_path)
        try:
            return await asyncio.wait_for(
                self._exchange(socket_path, reader, writer, command_obj),
                self.command_timeout,
            )
        except asyncio.TimeoutError:
            logging.warning("IPC: no reply on %s for %s", socket_path, command_obj)
            raise SocketTimeout(socket_path, self.command_timeout) from None
        except OSError as exc:
            raise IpcError(socket_path, f"connection lost: {exc}") from exc
        finally:
            await self._close(writer)

    async def command(self, socket_path: str, *args):
        """Run an engine command. Returns the reply data; raises IpcCommandError on failure."""
        cmd = list(args)
        reply = await self.send(socket_path, {"command": cmd})
        if reply.get("error") != "success":
            raise IpcCommandError(socket_path, cmd, str(reply.get("error")))
        return reply.get("data")

    async def set_property(self, socket_path: str, name: str, value):
        return await self.command(socket_path, "set_property", name, value)

    async def get_property(self, socket_path: str, name: str):
        return await self.command(socket_path, "get_property", name)

    async def _watch(self, socket_path: str, reader, writer, name: str, target) -> None:
        await self._write(writer, {"command": ["observe_property", 1, name]})
        buf = LineBuffer()
        while True:
            for msg in await self._read_messages(socket_path, reader, buf):
                if "event" not in msg:
                    if msg.get("error", "success") != "success":
                        raise IpcCommandError(
                            socket_path, ["observe_property", 1, name], str(msg["error"])
                        )
                    continue
                if (
                    msg.get("event") == "property-change"
                    and msg.get("name") == name
                    and msg.get("data") == target
                ):
                    return

    async def observe_property(self, socket_path: str, name: str, target, timeout=_DEFAULT) -> None:
        """
        Wait until property ``name`` changes to ``target``.

        mpv reports the current value right after observe_property is issued,
        so a condition that already holds resolves immediately.

        Args:
            timeout: Seconds to wait. Defaults to observe_timeout; None waits
                without a deadline (the caller cancels instead).

        Raises:
            SocketTimeout: The deadline expired first.
            IpcError: The engine closed the socket (usually: it exited).
        """
        if timeout is _DEFAULT:
            timeout = self.observe_timeout
        reader, writer = await self._connect(socket_path)
        try:
            watch = self._watch(socket_path, reader, writer, name, target)
            if timeout is None:
                await watch
            else:
                await asyncio.wait_for(watch, timeout)
        except asyncio.TimeoutError:
            raise SocketTimeout(socket_path, timeout, f"{name} == {target!r}") from None
        except OSError as exc:
            raise IpcError(socket_path, f"connection lost: {exc}") from exc
        finally:
            await self._close(writer)

    async def wait_for_socket(self, path: str, retries: int = 20, interval: float = 0.25) -> bool:
        """Poll for the engine's socket file. True once it exists."""
        for _ in range(retries):
            if os.path.exists(path):
                return True
            await asyncio.sleep(interval)
        return os.path.exists(path)
