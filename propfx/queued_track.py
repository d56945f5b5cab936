"""
Queued track — one playing item plus a small pending queue on one engine.

Semantics:
  - play() while idle starts immediately (loadfile ... replace).
  - play() while something plays queues the request, unless the resolved
    media path is already playing or pending (de-duplication) or the track
    does not queue at all (max_queued <= 0). Those requests are dropped.
  - At capacity, the oldest pending entries are dropped to make room.
  - When the playing entry ends (eof-reached) or fails, the next pending
    entry is promoted.
  - stop() drops the playing entry and everything pending, and sends
    "stop" to the engine. The next play() waits for that stop to land.
    The engine forgets its media, so a crash restart comes back idle.
  - skip() drops only the playing entry and promotes the next pending one.
  - pause()/resume() toggle the engine's pause flag; a new entry always
    starts unpaused. A still (image) entry ends once it is on screen.

Every request gets a PlaybackHandle that resolves exactly once with a
PlaybackResult tagged ended / dropped / error.
"""
import asyncio
import logging
import os
from collections import deque
from dataclasses import dataclass
from enum import Enum

from propfx.channels import substitute_args
from propfx.engine import EngineInstance, EngineState, EngineSupervisor
from propfx.errors import ConfigParseError, EngineCrash, IpcError, PropFxError, UnknownChannel
from propfx.ipc import IpcChannel

DEFAULT_MAX_QUEUED = 1
EXIT_GRACE = 1.0


class PlaybackOutcome(str, Enum):
    ENDED = "ended"
    DROPPED = "dropped"
    ERROR = "error"


@dataclass(frozen=True)
class PlaybackResult:
    outcome: PlaybackOutcome
    media_path: str
    channel: str
    error: BaseException | None = None


class PlaybackHandle:
    """Completion handle for one play request."""

    def __init__(self, media_path: str, channel: str, media_name: str):
        self.media_path = media_path
        self.channel = channel
        self.media_name = media_name
        self.result: PlaybackResult | None = None
        self._was_started = False
        self._started = asyncio.Event()
        self._finished = asyncio.Event()
        self._callbacks: list = []

    @property
    def started(self) -> bool:
        return self._was_started

    @property
    def done(self) -> bool:
        return self.result is not None

    def add_done_callback(self, callback) -> None:
        """callback(result) runs once, synchronously, when the handle finishes."""
        if self.result is not None:
            self._run_callback(callback)
        else:
            self._callbacks.append(callback)

    async def wait_started(self) -> bool:
        """Wait until playback started or the handle finished. True if it started."""
        await self._started.wait()
        return self._was_started

    async def wait(self) -> PlaybackResult:
        await self._finished.wait()
        return self.result

    def _mark_started(self) -> None:
        if self.result is None:
            self._was_started = True
            self._started.set()

    def _finish(self, outcome: PlaybackOutcome, error: BaseException | None = None) -> bool:
        if self.result is not None:
            return False
        self.result = PlaybackResult(outcome, self.media_path, self.channel, error)
        self._started.set()
        self._finished.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._run_callback(callback)
        return True

    def _run_callback(self, callback) -> None:
        try:
            callback(self.result)
        except Exception:
            logging.exception("Playback done-callback failed for %s.", self.media_name)


@dataclass(eq=False)
class _Entry:
    media_path: str
    channel: str
    handle: PlaybackHandle
    volume: int | None = None
    loop: bool = False
    still: bool = False
    task: asyncio.Task | None = None


class QueuedTrack:
    """Serial playback on one supervised engine with a bounded pending queue."""

    def __init__(
        self,
        name: str,
        supervisor: EngineSupervisor,
        ipc: IpcChannel,
        purpose: str,
        arg_template: list[str],
        channel_map: dict[str, dict[str, str]],
        media_dir: str,
        socket_path: str,
        max_queued: int = DEFAULT_MAX_QUEUED,
        reload_media: bool = False,
    ):
        if not channel_map:
            raise ConfigParseError(f"{name}: no audio channels configured")
        self.name = name
        self.supervisor = supervisor
        self.ipc = ipc
        self.purpose = purpose
        self.arg_template = list(arg_template)
        self.channel_map = channel_map
        self.default_channel = next(iter(channel_map))
        self.media_dir = media_dir
        self.socket_path = socket_path
        self.max_queued = max_queued
        self.reload_media = reload_media
        self.engine: EngineInstance | None = None
        self.playing: _Entry | None = None
        self._queue: deque[_Entry] = deque()
        self._pending: set[str] = set()
        self._stop_task: asyncio.Task | None = None
        self.paused = False

    # -----------------------------------------------------------------------
    # Paths
    # -----------------------------------------------------------------------

    def media_path(self, media: str) -> str:
        return os.path.abspath(os.path.join(self.media_dir, media))

    def media_name(self, media_path: str) -> str:
        return os.path.relpath(media_path, self.media_dir)

    # -----------------------------------------------------------------------
    # Queue operations
    # -----------------------------------------------------------------------

    @property
    def is_playing(self) -> bool:
        return self.playing is not None

    def queued(self) -> list[str]:
        """Media names of the playing entry followed by pending entries."""
        if self.playing is None:
            return []
        return [self.playing.handle.media_name] + [e.handle.media_name for e in self._queue]

    def set_queue_max(self, max_queued) -> None:
        try:
            value = int(float(max_queued))
        except (TypeError, ValueError):
            value = DEFAULT_MAX_QUEUED
        self.max_queued = DEFAULT_MAX_QUEUED if value < 0 else value

    def play(
        self,
        media: str,
        channel: str | None = None,
        *,
        volume: int | None = None,
        loop: bool = False,
        still: bool = False,
    ) -> PlaybackHandle:
        """
        Request playback of ``media`` on ``channel`` (default: first channel).

        A ``still`` (an image) finishes as soon as it is on screen; the engine
        keeps showing it until the next entry loads.

        Returns immediately with the request's PlaybackHandle.

        Raises:
            UnknownChannel: ``channel`` is not in the channel map.
        """
        channel = channel or self.default_channel
        if channel not in self.channel_map:
            raise UnknownChannel(channel, list(self.channel_map))
        path = self.media_path(media)
        handle = PlaybackHandle(path, channel, self.media_name(path))
        entry = _Entry(path, channel, handle, volume=volume, loop=loop, still=still)

        if self.playing is not None:
            if path in self._pending or self.max_queued <= 0:
                logging.info("%s: dropping %s (already queued or queue disabled).", self.name, handle.media_name)
                handle._finish(PlaybackOutcome.DROPPED)
                return handle
            self._register(path, handle)
            while self._queue and len(self._queue) >= self.max_queued:
                oldest = self._queue.popleft()
                logging.info("%s: queue full, dropping %s.", self.name, oldest.handle.media_name)
                oldest.handle._finish(PlaybackOutcome.DROPPED)
            self._queue.append(entry)
            logging.debug("%s: queued %s (%d pending).", self.name, handle.media_name, len(self._queue))
        else:
            self._pending.clear()
            self._register(path, handle)
            self._start(entry)
        return handle

    def replace(self, media: str, channel: str | None = None, *, volume: int | None = None, loop: bool = False) -> PlaybackHandle:
        """Stop everything, then play ``media`` right away."""
        self.stop()
        return self.play(media, channel, volume=volume, loop=loop)

    def stop(self) -> None:
        """Drop the playing entry and all pending entries; stop the engine's playback."""
        entry, self.playing = self.playing, None
        dropped, self._queue = list(self._queue), deque()
        self._pending.clear()
        for pending in dropped:
            pending.handle._finish(PlaybackOutcome.DROPPED)
        if entry is None:
            return
        if self.engine is not None:
            self.engine.forget()
        entry.handle._finish(PlaybackOutcome.DROPPED)
        if entry.task is not None:
            entry.task.cancel()
        if self.engine is not None and self.engine.alive:
            self._stop_task = asyncio.create_task(self._send_stop(self.engine))

    def skip(self) -> bool:
        """Drop the playing entry and promote the next one; stop if nothing is pending."""
        entry = self.playing
        if entry is None:
            return False
        if not self._queue:
            self.stop()
            return True
        self.playing = None
        entry.handle._finish(PlaybackOutcome.DROPPED)
        if entry.task is not None:
            entry.task.cancel()
        logging.info("%s: skipped %s.", self.name, entry.handle.media_name)
        self._advance()
        return True

    async def pause(self) -> bool:
        """Pause the playing entry. False if nothing is playing yet."""
        return await self._set_pause(True)

    async def resume(self) -> bool:
        return await self._set_pause(False)

    async def _set_pause(self, paused: bool) -> bool:
        engine = self.engine
        if self.playing is None or not self.playing.handle.started or engine is None or not engine.alive:
            return False
        await self.ipc.set_property(engine.socket_path, "pause", paused)
        self.paused = paused
        logging.info("%s: %s.", self.name, "paused" if paused else "resumed")
        return True

    async def set_volume(self, volume: int) -> None:
        """Change the volume of the playing entry (and what a restart restores)."""
        if self.playing is not None:
            self.playing.volume = volume
        engine = self.engine
        if engine is None or not engine.alive:
            return
        await self.ipc.set_property(engine.socket_path, "volume", volume)
        engine.properties["volume"] = volume

    async def shutdown(self) -> None:
        entry, self.playing = self.playing, None
        for pending in self._queue:
            pending.handle._finish(PlaybackOutcome.DROPPED)
        self._queue.clear()
        self._pending.clear()
        if entry is not None:
            entry.handle._finish(PlaybackOutcome.DROPPED)
            if entry.task is not None:
                entry.task.cancel()
                await asyncio.gather(entry.task, return_exceptions=True)
        if self._stop_task is not None:
            self._stop_task.cancel()
            await asyncio.gather(self._stop_task, return_exceptions=True)
            self._stop_task = None
        if self.engine is not None:
            self.supervisor.stop(self.engine)
            self.engine = None

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _register(self, path: str, handle: PlaybackHandle) -> None:
        self._pending.add(path)
        handle.add_done_callback(lambda _result: self._pending.discard(path))

    def _start(self, entry: _Entry) -> None:
        self.playing = entry
        entry.task = asyncio.create_task(self._run(entry))

    def _advance(self) -> None:
        if self._queue:
            self._start(self._queue.popleft())

    async def _send_stop(self, engine: EngineInstance) -> None:
        try:
            await self.ipc.command(engine.socket_path, "stop")
        except PropFxError:
            logging.warning("%s: stop command failed.", self.name, exc_info=True)
        if engine.state is EngineState.PLAYING:
            engine.state = EngineState.READY

    async def _run(self, entry: _Entry) -> None:
        handle = entry.handle
        try:
            if self._stop_task is not None:
                await self._stop_task
            args = substitute_args(self.arg_template, self.channel_map[entry.channel])
            self.engine = engine = await self.supervisor.ensure(
                self.engine, self.purpose, args, self.socket_path, reload_media=self.reload_media
            )
            sock = engine.socket_path
            # the engine keeps its pause flag across loads
            if self.paused:
                await self.ipc.set_property(sock, "pause", False)
                self.paused = False
            await self.ipc.command(sock, "loadfile", entry.media_path, "replace")
            properties = {"loop-file": "inf" if entry.loop else "no"}
            if entry.volume is not None:
                properties["volume"] = entry.volume
            for name, value in properties.items():
                await self.ipc.set_property(sock, name, value)
            if entry.still:
                engine.forget()
                handle._mark_started()
                logging.info("%s: showing %s on %s.", self.name, handle.media_name, entry.channel)
                handle._finish(PlaybackOutcome.ENDED)
                return
            engine.remember(entry.media_path, properties)
            engine.state = EngineState.PLAYING
            handle._mark_started()
            logging.info("%s: playing %s on %s.", self.name, handle.media_name, entry.channel)

            await self._await_end(engine)
            logging.info("%s: finished %s.", self.name, handle.media_name)
            engine.forget()
            if engine.state is EngineState.PLAYING:
                engine.state = EngineState.READY
            handle._finish(PlaybackOutcome.ENDED)
        except asyncio.CancelledError:
            handle._finish(PlaybackOutcome.DROPPED)
            raise
        except Exception as exc:
            logging.error("%s: playback of %s failed: %s", self.name, handle.media_name, exc)
            handle._finish(PlaybackOutcome.ERROR, exc)
        finally:
            if self.playing is entry:
                self.playing = None
                self._advance()

    async def _await_end(self, engine: EngineInstance) -> None:
        """Return at end of file. Raise EngineCrash if the engine died for good."""
        while True:
            eof = asyncio.create_task(
                self.ipc.observe_property(engine.socket_path, "eof-reached", True, timeout=None)
            )
            exited = asyncio.create_task(engine.wait_exit())
            try:
                done, _pending = await asyncio.wait({eof, exited}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (eof, exited):
                    if not task.done():
                        task.cancel()
                await asyncio.gather(eof, exited, return_exceptions=True)

            if exited not in done:
                exc = eof.exception()
                if exc is None:
                    return
                if not isinstance(exc, IpcError) or not await self._exited_soon(engine):
                    raise exc

            if not self.reload_media:
                raise EngineCrash(engine.purpose, engine.returncode)
            logging.warning("%s: engine crashed, waiting for restart.", self.name)
            if not await engine.wait_revived():
                raise EngineCrash(engine.purpose, engine.returncode)
            self.paused = False
            logging.info("%s: engine restarted, playback resumed.", self.name)

    @staticmethod
    async def _exited_soon(engine: EngineInstance) -> bool:
        try:
            await asyncio.wait_for(engine.wait_exit(), EXIT_GRACE)
        except asyncio.TimeoutError:
            return False
        return True
