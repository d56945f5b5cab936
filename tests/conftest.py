"""
Shared test doubles for propfx.

FakeIpc records every command and property write per socket and lets tests
end playback explicitly with eof(socket). FakeSupervisor hands out engine
instances without spawning processes; exit(instance) simulates a process exit.
"""
import asyncio
import os
import shutil
import stat
import sys
import tempfile
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
from propfx.engine import EngineInstance, EngineState
from propfx.errors import SocketTimeout

FAKE_MPV = Path(__file__).parent / "fake_mpv.py"


class FakeIpc:
    def __init__(self):
        self.calls: list[tuple[str, list]] = []
        self.props: dict[str, dict] = {}
        self.failures: dict[tuple, BaseException] = {}
        self._observers: list = []

    def fail(self, command: str, exc: BaseException, socket_path: str | None = None) -> None:
        """Make every `command` (optionally only on one socket) raise exc."""
        self.failures[(socket_path, command)] = exc

    async def command(self, socket_path, *args):
        self.calls.append((socket_path, list(args)))
        for key in ((socket_path, args[0]), (None, args[0])):
            if key in self.failures:
                raise self.failures[key]
        return None

    async def set_property(self, socket_path, name, value):
        await self.command(socket_path, "set_property", name, value)
        self.props.setdefault(socket_path, {})[name] = value

    async def get_property(self, socket_path, name):
        await self.command(socket_path, "get_property", name)
        return self.props.get(socket_path, {}).get(name)

    async def observe_property(self, socket_path, name, target, timeout=None):
        fut = asyncio.get_running_loop().create_future()
        entry = (socket_path, name, fut)
        self._observers.append(entry)
        try:
            if timeout is None:
                await fut
            else:
                await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError:
            raise SocketTimeout(socket_path, timeout, name) from None
        finally:
            self._observers.remove(entry)

    async def wait_for_socket(self, path, retries=20, interval=0.25):
        return True

    # -- test helpers ------------------------------------------------------

    def observing(self, socket_path, name="eof-reached") -> bool:
        return any(s == socket_path and n == name for s, n, _f in self._observers)

    def eof(self, socket_path) -> None:
        for s, n, fut in list(self._observers):
            if s == socket_path and n == "eof-reached" and not fut.done():
                fut.set_result(None)

    def sent(self, socket_path, command) -> list[list]:
        return [args for s, args in self.calls if s == socket_path and args[0] == command]

    def loaded(self, socket_path) -> list[str]:
        return [args[1] for args in self.sent(socket_path, "loadfile")]

    def volumes(self, socket_path) -> list:
        return [args[2] for args in self.sent(socket_path, "set_property") if args[1] == "volume"]


class FakeSupervisor:
    def __init__(self):
        self.started: list[EngineInstance] = []
        self.stopped: list[EngineInstance] = []
        self.fail_start: BaseException | None = None
        self.shutdown_called = False

    async def start(self, purpose, args, socket_path=None, reload_media=False):
        await asyncio.sleep(0)
        if self.fail_start is not None:
            raise self.fail_start
        instance = EngineInstance(purpose, socket_path, list(args), reload_media=reload_media)
        instance.state = EngineState.READY if socket_path else EngineState.PLAYING
        self.started.append(instance)
        return instance

    async def ensure(self, existing, purpose, args, socket_path=None, reload_media=False):
        if existing is not None and existing.alive and existing.args == list(args):
            return existing
        if existing is not None:
            self.stop(existing)
        return await self.start(purpose, args, socket_path, reload_media)

    def on_exit(self, instance, callback):
        instance._exit_callbacks.append(callback)

    def stop(self, instance):
        instance.state = EngineState.TERMINATED
        self.stopped.append(instance)
        if not instance.exited:
            self.exit(instance, -15)

    def exit(self, instance, returncode=0):
        """Simulate the engine process exiting."""
        instance._exited.set()
        if instance.state in (EngineState.READY, EngineState.PLAYING):
            instance.state = EngineState.TERMINATED if instance.socket_path is None else EngineState.CRASHED
        for callback in list(instance._exit_callbacks):
            callback(instance, returncode)

    async def shutdown(self, timeout=5.0):
        self.shutdown_called = True
        for instance in list(self.started):
            if instance.state is not EngineState.TERMINATED:
                self.stop(instance)


async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def fake_ipc():
    return FakeIpc()


@pytest.fixture
def fake_supervisor():
    return FakeSupervisor()


@pytest.fixture
def wait_until():
    """Async helper: await wait_until(lambda: ...) polls until the predicate holds."""
    return _wait_until


@pytest.fixture
def sock_dir():
    """Short directory for unix sockets (AF_UNIX paths are limited to ~107 bytes)."""
    path = tempfile.mkdtemp(prefix="pfx", dir="/tmp")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def fake_mpv_bin(tmp_path):
    """Executable wrapper that runs tests/fake_mpv.py with this interpreter."""
    script = tmp_path / "mpv"
    script.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_MPV}" "$@"\n', encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


@pytest.fixture
def media_dir(tmp_path):
    path = tmp_path / "media"
    path.mkdir()
    for name in ("music.mp3", "other.mp3", "hello.mp3", "bye.mp3", "ding.wav", "clip.mp4"):
        (path / name).write_bytes(b"")
    return str(path)


@pytest.fixture(autouse=True)
def _isolated_config_dir(tmp_path, monkeypatch):
    """Never read or write the real ~/.config/propfx."""
    monkeypatch.setenv("PROPFX_CONFIG_DIR", os.path.join(str(tmp_path), "config"))
