"""
Zone audio orchestrator — background music, speech, effects and video for one zone.

Layers:
  background  QueuedTrack (no queue: every play replaces), loops, reloaded
              after an engine crash, can be paused
  speech      FIFO drained one item at a time on its own engine. While an
              item plays, background music is ducked and afterwards restored.
              The current item can be paused, skipped or stopped
  effects     shared EffectPool, fire-and-forget, never ducks anything
  video       optional QueuedTrack with a small pending queue. Still images
              share it and stay on screen until the next load

Speech sequence per item:
  1. Add a duck trigger, duck background to duck_volume (or the resolver's
     ducked level) and record the volume it had before
  2. Wait for a pending speech stop to land, then loadfile + volume
  3. Wait for eof-reached (speech_timeout, extended while paused)
  4. finally: remove the trigger, restore background. If different music
     started meanwhile, its own pre-duck level is restored instead. If a
     manual duck is still active the resolver's ducked level is applied
  5. Settle 100 ms (1 s after a failure) before the next item

Manual duck/unduck add and remove "manual" triggers on the same lifecycle,
so speech ending never lifts a manual duck.

handle_command() is the zone boundary: every failure is logged, published
as an error message and returned as an error reply. Nothing propagates.
"""
import asyncio
import copy
import itertools
import logging
import os
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import ValidationError

from propfx.channels import substitute_args
from propfx.commands import command_name, parse_command
from propfx.config_loader import ZoneConfig
from propfx.effects import EffectPool
from propfx.engine import EngineInstance, EngineState, EngineSupervisor, build_engine_args, socket_path_for
from propfx.errors import PropFxError, SocketTimeout, VolumeOutOfRange
from propfx.ipc import OBSERVE_TIMEOUT, IpcChannel
from propfx.queued_track import PlaybackHandle, PlaybackOutcome, QueuedTrack
from propfx.volume import CLAMP_ABS_MIN, VOLUME_TYPES, as_number, clamp, normalize_ducking_adjust, resolve_volume

SPEECH_SETTLE = 0.1
SPEECH_RETRY_DELAY = 1.0


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DuckLifecycle:
    """Active duck triggers (speech, video, manual). Ducking is active while any exist."""

    def __init__(self) -> None:
        self._triggers: dict[str, str] = {}

    def add_trigger(self, trigger_id: str, kind: str = "speech") -> None:
        if trigger_id:
            self._triggers[trigger_id] = kind

    def remove_trigger(self, trigger_id: str) -> None:
        self._triggers.pop(trigger_id, None)

    def clear(self) -> None:
        self._triggers.clear()

    def count(self) -> int:
        return len(self._triggers)

    def ids(self, kind: str | None = None) -> list[str]:
        return [tid for tid, k in self._triggers.items() if kind is None or k == kind]

    @property
    def active(self) -> bool:
        return bool(self._triggers)

    def snapshot(self) -> dict:
        kinds = {"speech": 0, "video": 0, "manual": 0, "other": 0}
        for kind in self._triggers.values():
            kinds[kind if kind in kinds else "other"] += 1
        return {"active": self.active, "count": self.count(), "kinds": kinds}


@dataclass
class SpeechItem:
    file: str
    file_path: str
    volume: float | None = None
    duck_volume: float | None = None


class ZoneAudio:
    """All playback for one physical zone."""

    def __init__(
        self,
        config: ZoneConfig,
        supervisor: EngineSupervisor,
        ipc: IpcChannel,
        effects: EffectPool,
        publish=None,
        socket_dir: str = "/tmp",
        speech_timeout: float = OBSERVE_TIMEOUT,
        speech_settle: float = SPEECH_SETTLE,
        speech_retry_delay: float = SPEECH_RETRY_DELAY,
    ):
        self.name = config.name
        self.config = config
        self.supervisor = supervisor
        self.ipc = ipc
        self.effects = effects
        self.publish = publish
        self.speech_timeout = speech_timeout
        self.speech_settle = speech_settle
        self.speech_retry_delay = speech_retry_delay
        self.volume_model = copy.deepcopy(config.volume_model)
        self.duck = DuckLifecycle()
        self.is_ready = False

        channels = config.channel_map
        self.default_channel = next(iter(channels))
        self.background: QueuedTrack | None = None
        self.video: QueuedTrack | None = None

        if config.background_music:
            sock = socket_path_for("background", self.name, socket_dir)
            self.background = QueuedTrack(
                f"{self.name}/background", supervisor, ipc, "background",
                build_engine_args("background", sock, audio_device="$DEVICE") + config.engine_args,
                channels, config.media_dir, sock, max_queued=0, reload_media=True,
            )
        if config.video:
            sock = socket_path_for("video", self.name, socket_dir)
            self.video = QueuedTrack(
                f"{self.name}/video", supervisor, ipc, "video",
                build_engine_args("video", sock, audio_device="$DEVICE", display=config.display) + config.engine_args,
                channels, config.media_dir, sock, max_queued=config.video_queue_max,
            )

        self._speech_socket = socket_path_for("speech", self.name, socket_dir)
        self._speech_args = substitute_args(
            build_engine_args("speech", self._speech_socket, audio_device="$DEVICE") + config.engine_args,
            channels[self.default_channel],
        )
        self._speech_engine: EngineInstance | None = None
        self._speech_queue: deque[SpeechItem] = deque()
        self._speech_task: asyncio.Task | None = None
        self._speech_item: asyncio.Task | None = None
        self._speech_stop: asyncio.Task | None = None
        self._speech_paused = False
        self._duck_ids = itertools.count(1)
        self._tasks: set[asyncio.Task] = set()

        self._bg_handle: PlaybackHandle | None = None
        self._bg_params: dict = {}
        self._bg_pre_duck: int | None = None
        self.state = {
            "backgroundMusic": {
                "playing": False,
                "file": None,
                "volume": self.volume_model.base_volumes["background"],
                "isDucked": False,
            },
            "lastSpeech": None,
            "lastSoundEffect": None,
            "lastImage": None,
        }

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def start(self) -> None:
        """Mark the zone ready. Engines start lazily on first use."""
        if not os.path.isdir(self.config.media_dir):
            logging.warning("Zone %s: media dir %s does not exist.", self.name, self.config.media_dir)
        self.is_ready = True
        logging.info(
            "Zone %s ready (channels: %s, video: %s).",
            self.name, ", ".join(self.config.channel_map), "yes" if self.video else "no",
        )
        self.publish_status()

    async def shutdown(self) -> None:
        self.is_ready = False
        self._speech_queue.clear()
        for task in (self._speech_task, self._speech_item):
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._speech_task = self._speech_item = None
        for track in (self.background, self.video):
            if track is not None:
                await track.shutdown()
        if self._speech_engine is not None:
            self.supervisor.stop(self._speech_engine)
            self._speech_engine = None
        self.effects.stop_all(self.name)
        logging.info("Zone %s shut down.", self.name)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -----------------------------------------------------------------------
    # Background music
    # -----------------------------------------------------------------------

    def _require(self, track: QueuedTrack | None, what: str) -> QueuedTrack:
        if track is None:
            raise PropFxError(f"{what} is not enabled in zone {self.name}")
        return track

    async def play_background_music(
        self,
        file: str,
        volume=None,
        adjust_volume=None,
        loop: bool = True,
        skip_ducking: bool = False,
    ):
        """Replace the current music and wait until the engine accepted the new file."""
        track = self._require(self.background, "background music")
        params = {"volume": volume, "adjust_volume": adjust_volume, "skip_ducking": skip_ducking}
        resolved = resolve_volume("background", self.volume_model, params, duck_active=self.duck.active)

        handle = track.replace(file, volume=resolved.final, loop=loop)
        self._bg_handle = handle
        self._bg_params = params
        self._bg_pre_duck = resolved.pre_duck
        handle.add_done_callback(lambda result, h=handle: self._on_background_done(h))

        if not await handle.wait_started():
            if handle.result.error is not None:
                raise handle.result.error
            logging.info("Zone %s: background %s superseded before it started.", self.name, file)
            return resolved

        self.state["backgroundMusic"] = {
            "playing": True,
            "file": file,
            "volume": resolved.final,
            "isDucked": resolved.ducked,
        }
        logging.info("Zone %s: background music %s at volume %d.", self.name, file, resolved.final)
        return resolved

    def _on_background_done(self, handle: PlaybackHandle) -> None:
        if self._bg_handle is not handle:
            return
        self._bg_handle = None
        music = self.state["backgroundMusic"]
        self.state["backgroundMusic"] = {
            "playing": False, "file": None, "volume": music["volume"], "isDucked": False,
        }

    def _background_playing(self) -> bool:
        handle = self._bg_handle
        return handle is not None and handle.started and not handle.done

    def stop_background_music(self) -> None:
        track = self._require(self.background, "background music")
        track.stop()
        logging.info("Zone %s: background music stopped.", self.name)

    async def pause_background_music(self) -> bool:
        return await self._require(self.background, "background music").pause()

    async def resume_background_music(self) -> bool:
        return await self._require(self.background, "background music").resume()

    async def set_background_music_volume(self, volume: int) -> None:
        track = self._require(self.background, "background music")
        await track.set_volume(volume)
        self.state["backgroundMusic"]["volume"] = volume

    async def _recompute_background(self) -> None:
        """Move playing music to the resolver's level for the current duck state."""
        if not self._background_playing():
            return
        resolved = resolve_volume("background", self.volume_model, self._bg_params, duck_active=self.duck.active)
        await self.background.set_volume(resolved.final)
        self._bg_pre_duck = resolved.pre_duck
        self.state["backgroundMusic"].update(volume=resolved.final, isDucked=resolved.ducked)

    # -----------------------------------------------------------------------
    # Speech
    # -----------------------------------------------------------------------

    def play_speech(self, file: str, volume=None, duck_volume=None) -> int:
        """Queue a speech file. Returns the number of items waiting (including this one)."""
        if not self.config.speech:
            raise PropFxError(f"speech is not enabled in zone {self.name}")
        path = os.path.abspath(os.path.join(self.config.media_dir, file))
        self._speech_queue.append(SpeechItem(file, path, volume, duck_volume))
        if self._speech_task is None or self._speech_task.done():
            self._speech_task = asyncio.create_task(self._drain_speech())
        return len(self._speech_queue)

    @property
    def speech_active(self) -> bool:
        return self._speech_task is not None and not self._speech_task.done()

    @property
    def speaking(self) -> bool:
        return self._speech_item is not None and not self._speech_item.done()

    async def _drain_speech(self) -> None:
        while self._speech_queue:
            item = self._speech_queue.popleft()
            self._speech_item = task = asyncio.create_task(self._speak(item))
            try:
                await asyncio.wait({task})
            finally:
                if not task.done():
                    task.cancel()
            ok = task.cancelled() or task.result()
            await asyncio.sleep(self.speech_settle if ok else self.speech_retry_delay)

    async def _speak(self, item: SpeechItem) -> bool:
        duck_id = f"speech-{next(self._duck_ids)}"
        self.duck.add_trigger(duck_id, "speech")
        ducked = None
        try:
            ducked = await self._duck_background(item.duck_volume)
            resolved = resolve_volume("speech", self.volume_model, {"volume": item.volume})
            if self._speech_stop is not None:
                await asyncio.wait({self._speech_stop})
            self._speech_engine = engine = await self.supervisor.ensure(
                self._speech_engine, "speech", self._speech_args, self._speech_socket
            )
            sock = engine.socket_path
            if self._speech_paused:
                await self.ipc.set_property(sock, "pause", False)
                self._speech_paused = False
            await self.ipc.command(sock, "loadfile", item.file_path, "replace")
            await self.ipc.set_property(sock, "volume", resolved.final)
            engine.state = EngineState.PLAYING
            self.state["lastSpeech"] = {"file": item.file, "timestamp": _now(), "volume": resolved.final}
            logging.info("Zone %s: speaking %s at volume %d.", self.name, item.file, resolved.final)
            await self._await_speech_end(sock)
            if engine.state is EngineState.PLAYING:
                engine.state = EngineState.READY
            return True
        except Exception as exc:
            logging.error("Zone %s: speech %s failed: %s", self.name, item.file, exc)
            self._publish_error("play_speech", str(exc))
            return False
        finally:
            self.duck.remove_trigger(duck_id)
            await self._restore_background(ducked)

    async def _await_speech_end(self, sock: str) -> None:
        while True:
            try:
                await self.ipc.observe_property(sock, "eof-reached", True, timeout=self.speech_timeout)
                return
            except SocketTimeout:
                if not self._speech_paused:
                    raise

    async def pause_speech(self) -> bool:
        """Pause the item being spoken. False if nothing is playing."""
        return await self._set_speech_pause(True)

    async def resume_speech(self) -> bool:
        return await self._set_speech_pause(False)

    async def _set_speech_pause(self, paused: bool) -> bool:
        engine = self._speech_engine
        if not self.speaking or engine is None or engine.state is not EngineState.PLAYING:
            return False
        await self.ipc.set_property(engine.socket_path, "pause", paused)
        self._speech_paused = paused
        logging.info("Zone %s: speech %s.", self.name, "paused" if paused else "resumed")
        return True

    def skip_speech(self) -> bool:
        """End the current item; the queue moves on to the next one."""
        if not self.speaking:
            return False
        self._speech_item.cancel()
        self._halt_speech_engine()
        logging.info("Zone %s: speech skipped.", self.name)
        return True

    def clear_speech_queue(self) -> int:
        """Drop pending items. The current item keeps playing."""
        cleared = len(self._speech_queue)
        self._speech_queue.clear()
        if cleared:
            logging.info("Zone %s: cleared %d queued speech item(s).", self.name, cleared)
        return cleared

    def stop_speech(self) -> tuple[int, bool]:
        return self.clear_speech_queue(), self.skip_speech()

    def _halt_speech_engine(self) -> None:
        engine = self._speech_engine
        if engine is not None and engine.alive:
            self._speech_stop = self._spawn(self._stop_speech_engine(engine))

    async def _stop_speech_engine(self, engine: EngineInstance) -> None:
        try:
            await self.ipc.command(engine.socket_path, "stop")
        except PropFxError:
            logging.warning("Zone %s: speech stop failed.", self.name, exc_info=True)
        if engine.state is EngineState.PLAYING:
            engine.state = EngineState.READY

    # -----------------------------------------------------------------------
    # Ducking
    # -----------------------------------------------------------------------

    async def _duck_background(self, duck_volume):
        """Lower playing background music. Returns (handle, prior volume) or None."""
        if self.background is None or not self._background_playing():
            return None
        handle = self._bg_handle
        music = self.state["backgroundMusic"]
        prior = self._bg_pre_duck if music["isDucked"] else music["volume"]
        if duck_volume is not None:
            target = clamp(duck_volume, CLAMP_ABS_MIN, self.volume_model.max_volume)
            target = int(prior if target is None else target)
        else:
            target = resolve_volume("background", self.volume_model, self._bg_params, duck_active=True).final
        await self.background.set_volume(target)
        music.update(volume=target, isDucked=True)
        logging.debug("Zone %s: ducked background %s -> %s.", self.name, prior, target)
        return handle, prior

    async def _restore_background(self, ducked) -> None:
        if ducked is None:
            return
        if self.duck.active:
            # another trigger (a manual duck) still holds the music down
            try:
                await self._recompute_background()
            except PropFxError:
                logging.warning("Zone %s: could not re-duck background.", self.name, exc_info=True)
            return
        handle, prior = ducked
        if not self._background_playing():
            return
        # different music started while ducked: restore that music's own level
        level = prior if self._bg_handle is handle else self._bg_pre_duck
        try:
            await self.background.set_volume(level)
        except PropFxError:
            logging.warning("Zone %s: could not restore background volume.", self.name, exc_info=True)
            return
        self.state["backgroundMusic"].update(volume=level, isDucked=False)
        logging.debug("Zone %s: restored background volume %s.", self.name, level)

    async def duck_background(self, ducking=None) -> str | None:
        """
        Add a manual duck trigger. Returns its id, or None when ``ducking`` is
        zero or positive (a request for no ducking, which is ignored).

        The ducked level comes from the zone's ducking adjustment, the same
        as for speech without a duck_volume.
        """
        level = as_number(ducking)
        if ducking is not None and (level is None or level >= 0):
            logging.info("Zone %s: manual duck %r ignored (not negative).", self.name, ducking)
            return None
        first = not self.duck.active
        duck_id = f"manual-{next(self._duck_ids)}"
        self.duck.add_trigger(duck_id, "manual")
        if first:
            await self._recompute_background()
        logging.info("Zone %s: manual duck %s.", self.name, duck_id)
        return duck_id

    async def unduck_background(self, duck_id: str | None = None) -> list[str]:
        """Remove one manual trigger, or all of them. Returns the removed ids."""
        manual = self.duck.ids("manual")
        removed = [duck_id] if duck_id in manual else ([] if duck_id else manual)
        for trigger_id in removed:
            self.duck.remove_trigger(trigger_id)
        if removed and not self.duck.active:
            await self._recompute_background()
        logging.info("Zone %s: unducked %s.", self.name, ", ".join(removed) or "nothing")
        return removed

    async def set_ducking_adjustment(self, adjust_value) -> int:
        """
        Set the zone's ducking percentage (-100..0; positive means no ducking).

        Raises:
            PropFxError: adjust_value is not a number.
        """
        n = as_number(adjust_value)
        if n is None:
            raise PropFxError(f"ducking adjustment {adjust_value!r} is not a number")
        self.volume_model.ducking_adjust = normalize_ducking_adjust(n)
        if self.duck.active:
            await self._recompute_background()
        logging.info("Zone %s: ducking adjustment set to %d.", self.name, self.volume_model.ducking_adjust)
        return self.volume_model.ducking_adjust

    # -----------------------------------------------------------------------
    # Effects and video
    # -----------------------------------------------------------------------

    async def play_sound_effect(self, file: str, volume=None):
        if not self.config.sound_effects:
            raise PropFxError(f"sound effects are not enabled in zone {self.name}")
        resolved = resolve_volume("effects", self.volume_model, {"volume": volume})
        path = os.path.abspath(os.path.join(self.config.media_dir, file))
        device = self.config.channel_map[self.default_channel].get("DEVICE")
        played = await self.effects.play(self.name, path, resolved.final, device)
        if played:
            self.state["lastSoundEffect"] = {"file": file, "timestamp": _now(), "volume": resolved.final}
        return played, resolved

    def play_video(self, file: str, channel: str | None = None, volume=None, adjust_volume=None):
        track = self._require(self.video, "video")
        params = {"volume": volume, "adjust_volume": adjust_volume}
        resolved = resolve_volume("video", self.volume_model, params)
        handle = track.play(file, channel, volume=resolved.final)
        return handle, resolved

    def stop_video(self) -> None:
        self._require(self.video, "video").stop()

    async def pause_video(self) -> bool:
        return await self._require(self.video, "video").pause()

    async def resume_video(self) -> bool:
        return await self._require(self.video, "video").resume()

    def skip_video(self) -> bool:
        return self._require(self.video, "video").skip()

    def set_image(self, file: str, channel: str | None = None) -> PlaybackHandle:
        """Show a still image on the video engine (queued behind a playing video)."""
        handle = self._require(self.video, "video").play(file, channel, still=True)
        handle.add_done_callback(lambda result: self._on_image_done(file, result))
        return handle

    def _on_image_done(self, file: str, result) -> None:
        if result.outcome is PlaybackOutcome.ENDED:
            self.state["lastImage"] = {"file": file, "timestamp": _now()}

    # -----------------------------------------------------------------------
    # Whole zone
    # -----------------------------------------------------------------------

    def stop_all(self) -> None:
        """Stop every layer: music, video, queued and current speech, this zone's effects."""
        for track in (self.background, self.video):
            if track is not None:
                track.stop()
        self.stop_speech()
        self.effects.stop_all(self.name)
        logging.info("Zone %s: all playback stopped.", self.name)

    async def pause_all(self) -> list[str]:
        """Pause every layer that is playing. Returns the paused layers."""
        layers = []
        if self.background is not None and await self.background.pause():
            layers.append("background")
        if await self.pause_speech():
            layers.append("speech")
        if self.video is not None and await self.video.pause():
            layers.append("video")
        return layers

    async def resume_all(self) -> list[str]:
        layers = []
        if self.background is not None and self.background.paused and await self.background.resume():
            layers.append("background")
        if self._speech_paused and await self.resume_speech():
            layers.append("speech")
        if self.video is not None and self.video.paused and await self.video.resume():
            layers.append("video")
        return layers

    # -----------------------------------------------------------------------
    # Volume
    # -----------------------------------------------------------------------

    async def set_volume(self, volume, type: str = "background") -> int:
        """
        Set the base volume of one media type (0..100).

        Playing background music is moved to the new level right away (ducked
        if a duck trigger is active).

        Raises:
            VolumeOutOfRange: volume is not a number in 0..100.
        """
        level = as_number(volume)
        if level is None or level < 0 or level > 100:
            raise VolumeOutOfRange(volume)
        if type not in VOLUME_TYPES:
            raise PropFxError(f"unknown volume type {type!r}")
        level = int(level)
        self.volume_model.base_volumes[type] = level

        if type == "background" and self._background_playing():
            self._bg_params = {}
            await self._recompute_background()
        elif type == "background":
            self.state["backgroundMusic"]["volume"] = level
        logging.info("Zone %s: %s volume set to %d.", self.name, type, level)
        return level

    # -----------------------------------------------------------------------
    # Status and publishing
    # -----------------------------------------------------------------------

    @staticmethod
    def _track_paused(track: QueuedTrack | None) -> bool:
        return track is not None and track.is_playing and track.paused

    def status(self) -> dict:
        return {
            "backgroundMusic": dict(self.state["backgroundMusic"]),
            "lastSpeech": self.state["lastSpeech"],
            "lastSoundEffect": self.state["lastSoundEffect"],
            "lastImage": self.state["lastImage"],
            "isReady": self.is_ready,
            "speechQueue": {"length": len(self._speech_queue), "isProcessing": self.speech_active},
            "video": {"playing": self.video.is_playing, "queue": self.video.queued()} if self.video else None,
            "paused": {
                "background": self._track_paused(self.background),
                "speech": self._speech_paused and self.speaking,
                "video": self._track_paused(self.video),
            },
            "activeEffects": self.effects.active_count,
            "ducking": self.duck.snapshot(),
            "volumes": {
                **self.volume_model.base_volumes,
                "duckingAdjust": self.volume_model.ducking_adjust,
                "maxVolume": self.volume_model.max_volume,
            },
        }

    def _emit(self, message: dict) -> None:
        if self.publish is None:
            return
        try:
            self.publish(message)
        except Exception:
            logging.exception("Zone %s: publishing %s message failed.", self.name, message.get("type"))

    def publish_status(self) -> None:
        self._emit({"timestamp": _now(), "device": self.name, "type": "audio_status", "status": self.status()})

    def _publish_error(self, command: str, message: str) -> None:
        self._emit({"timestamp": _now(), "device": self.name, "type": "error", "command": command, "message": message})

    # -----------------------------------------------------------------------
    # Command boundary
    # -----------------------------------------------------------------------

    async def handle_command(self, message) -> dict:
        """Run one command message. Always returns a reply dict; never raises."""
        name = command_name(message)
        try:
            cmd = parse_command(message)
            name = cmd.name
            if not self.is_ready:
                raise PropFxError(f"zone {self.name} is not ready")
            reply = await getattr(self, f"_cmd_{cmd.name}")(cmd)
        except (PropFxError, ValidationError) as exc:
            logging.error("Zone %s: %s failed: %s", self.name, name, exc)
            self._publish_error(name, str(exc))
            return {"status": "error", "command": name, "message": str(exc)}
        except Exception as exc:
            logging.exception("Zone %s: %s failed.", self.name, name)
            self._publish_error(name, str(exc))
            return {"status": "error", "command": name, "message": str(exc)}
        self.publish_status()
        return {"status": "ok", "command": name, **reply}

    @staticmethod
    def _volume_reply(resolved) -> dict:
        return {
            "volume": resolved.final,
            "preDuck": resolved.pre_duck,
            "ducked": resolved.ducked,
            "warnings": resolved.warning_codes,
        }

    async def _cmd_play_background_music(self, cmd) -> dict:
        resolved = await self.play_background_music(
            cmd.file, cmd.volume, cmd.adjust_volume, cmd.loop, cmd.skip_ducking
        )
        return self._volume_reply(resolved)

    async def _cmd_stop_background_music(self, cmd) -> dict:
        self.stop_background_music()
        return {}

    async def _cmd_pause_background_music(self, cmd) -> dict:
        return {"paused": await self.pause_background_music()}

    async def _cmd_resume_background_music(self, cmd) -> dict:
        return {"resumed": await self.resume_background_music()}

    async def _cmd_set_volume(self, cmd) -> dict:
        level = await self.set_volume(cmd.volume, cmd.type)
        return {"type": cmd.type, "volume": level}

    async def _cmd_set_ducking_adjustment(self, cmd) -> dict:
        level = await self.set_ducking_adjustment(cmd.adjust_value)
        return {"duckingAdjust": level, "requested": cmd.adjust_value}

    async def _cmd_duck(self, cmd) -> dict:
        duck_id = await self.duck_background(cmd.ducking)
        return {"ducked": duck_id is not None, "duckId": duck_id}

    async def _cmd_unduck(self, cmd) -> dict:
        return {"unducked": await self.unduck_background(cmd.duck_id)}

    async def _cmd_play_speech(self, cmd) -> dict:
        return {"queued": self.play_speech(cmd.file, cmd.volume, cmd.duck_volume)}

    async def _cmd_pause_speech(self, cmd) -> dict:
        return {"paused": await self.pause_speech()}

    async def _cmd_resume_speech(self, cmd) -> dict:
        return {"resumed": await self.resume_speech()}

    async def _cmd_skip_speech(self, cmd) -> dict:
        return {"skipped": self.skip_speech()}

    async def _cmd_stop_speech(self, cmd) -> dict:
        cleared, skipped = self.stop_speech()
        return {"cleared": cleared, "skipped": skipped}

    async def _cmd_clear_speech_queue(self, cmd) -> dict:
        return {"cleared": self.clear_speech_queue()}

    async def _cmd_play_sound_effect(self, cmd) -> dict:
        played, resolved = await self.play_sound_effect(cmd.file, cmd.volume)
        return {"played": played, **self._volume_reply(resolved)}

    async def _cmd_get_status(self, cmd) -> dict:
        return {"state": self.status()}

    async def _cmd_play_video(self, cmd) -> dict:
        handle, resolved = self.play_video(cmd.file, cmd.channel, cmd.volume, cmd.adjust_volume)
        return {"dropped": handle.done, "queue": self.video.queued(), **self._volume_reply(resolved)}

    async def _cmd_stop_video(self, cmd) -> dict:
        self.stop_video()
        return {}

    async def _cmd_pause_video(self, cmd) -> dict:
        return {"paused": await self.pause_video()}

    async def _cmd_resume_video(self, cmd) -> dict:
        return {"resumed": await self.resume_video()}

    async def _cmd_skip_video(self, cmd) -> dict:
        return {"skipped": self.skip_video()}

    async def _cmd_set_image(self, cmd) -> dict:
        handle = self.set_image(cmd.file, cmd.channel)
        dropped = handle.done and handle.result.outcome is PlaybackOutcome.DROPPED
        return {"dropped": dropped, "queue": self.video.queued()}

    async def _cmd_stop_all(self, cmd) -> dict:
        self.stop_all()
        return {}

    async def _cmd_pause_all(self, cmd) -> dict:
        return {"paused": await self.pause_all()}

    async def _cmd_resume_all(self, cmd) -> dict:
        return {"resumed": await self.resume_all()}
