"""
Engine process supervisor — spawns and babysits mpv processes.

Each logical track (a zone's background music, speech or video) owns one
long-lived mpv process started with --idle=yes and an IPC socket. The
supervisor:

  1. Removes any stale socket file, spawns mpv, and polls for the socket
     (20 x 250 ms by default). An engine whose socket never appears is
     terminated and never reported ready.
  2. Watches every process. An exit while the engine is ready or playing is
     a crash: exit callbacks fire, and after a fixed delay (15 s) the same
     EngineInstance is respawned in place. With reload_media set, media that
     was playing at the crash is reloaded with its properties (volume, loop).
     One restart loop per engine: a death during the restart is retried by it.
  3. Stops engines with SIGTERM only. A stopped engine is never restarted.

Sound effects use the socket-less "sound-effect-spawn" variant: mpv plays a
single file and exits. Those exits are normal and never restarted.
"""
import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum

from propfx.errors import EngineCrash, PropFxError, SocketNotReady
from propfx.ipc import IpcChannel

DEFAULT_RESTART_DELAY = 15.0
DEFAULT_SOCKET_DIR = "/tmp"
STOP_GRACE = 2.0


class EngineState(str, Enum):
    SPAWNING = "spawning"
    READY = "ready"
    PLAYING = "playing"
    CRASHED = "crashed"
    RESTARTING = "restarting"
    TERMINATED = "terminated"


# ---------------------------------------------------------------------------
# Engine arguments
# ---------------------------------------------------------------------------

# Purpose-specific mpv flags. keep-open=yes keeps eof-reached observable
# after the last frame instead of unloading the file. Images stay on screen
# until the next load.
PURPOSE_ARGS = {
    "background": ["--no-video", "--volume=70", "--loop-file=inf", "--cache=yes", "--keep-open=yes"],
    "effects": ["--no-video", "--volume=100", "--keep-open=yes", "--audio-buffer=0.05", "--cache=no"],
    "speech": ["--no-video", "--volume=90", "--keep-open=yes", "--cache=yes"],
    "video": [
        "--volume=80", "--cache=yes", "--hwdec=auto", "--vo=gpu", "--keep-open=yes",
        "--image-display-duration=inf",
    ],
}

EFFECT_SPAWN = "sound-effect-spawn"


def socket_path_for(purpose: str, zone: str, socket_dir: str = DEFAULT_SOCKET_DIR) -> str:
    """Return the IPC socket path for a zone's engine: <dir>/mpv-<purpose>-<zone>.sock"""
    safe_zone = re.sub(r"[^A-Za-z0-9_.-]", "_", zone)
    return os.path.join(socket_dir, f"mpv-{purpose}-{safe_zone}.sock")


def build_engine_args(
    purpose: str,
    socket_path: str | None = None,
    audio_device: str | None = None,
    display: str | None = None,
    volume: int | None = None,
) -> list[str]:
    """
    Build mpv arguments (without the binary) for an engine purpose.

    Args:
        purpose: "background", "effects", "speech", "video" or
            "sound-effect-spawn".
        socket_path: IPC socket. Required for every purpose except the
            effect spawn variant, which never has one.
        audio_device: mpv --audio-device value, may contain $VAR templates.
        display: X display for video engines.
        volume: Overrides the purpose's default start volume.

    Raises:
        ValueError: Unknown purpose, or a socketed purpose without socket_path.
    """
    if purpose == EFFECT_SPAWN:
        args = [
            "--no-terminal",
            "--no-video",
            f"--volume={100 if volume is None else volume}",
            "--audio-buffer=0.02",
            "--cache=no",
        ]
        if audio_device:
            args.append(f"--audio-device={audio_device}")
        return args

    if purpose not in PURPOSE_ARGS:
        raise ValueError(f"unknown engine purpose: {purpose!r}")
    if not socket_path:
        raise ValueError(f"{purpose} engine requires an IPC socket path")

    args = [
        "--idle=yes",
        f"--input-ipc-server={socket_path}",
        "--no-terminal",
        "--msg-level=all=info",
    ]
    if audio_device:
        args.append(f"--audio-device={audio_device}")
    if display:
        args.append(f"--display={display}")
    for arg in PURPOSE_ARGS[purpose]:
        if volume is not None and arg.startswith("--volume="):
            arg = f"--volume={volume}"
        args.append(arg)
    return args


# ---------------------------------------------------------------------------
# Engine instances
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class EngineInstance:
    """One supervised engine process. Restarts replace the process in place."""

    purpose: str
    socket_path: str | None
    args: list
    process: asyncio.subprocess.Process | None = None
    state: EngineState = EngineState.SPAWNING
    restarts: int = 0
    reload_media: bool = False
    last_media: str | None = None
    properties: dict = field(default_factory=dict)
    _exited: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _exit_callbacks: list = field(default_factory=list, repr=False)

    @property
    def alive(self) -> bool:
        return self.state in (EngineState.READY, EngineState.PLAYING)

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    @property
    def returncode(self) -> int | None:
        return self.process.returncode if self.process is not None else None

    def remember(self, media: str, properties: dict | None = None) -> None:
        """Record what is loaded so a restart can restore it."""
        self.last_media = media
        self.properties = dict(properties or {})

    def forget(self) -> None:
        """Nothing is loaded any more; a restart comes back idle."""
        self.last_media = None
        self.properties = {}

    async def wait_exit(self) -> None:
        """Wait until the current process exits."""
        await self._exited.wait()

    async def wait_revived(self, interval: float = 0.25) -> bool:
        """After a crash, wait until the restart reloaded the media. False if stopped instead."""
        while self.state is not EngineState.TERMINATED:
            if self.state is EngineState.PLAYING and not self._exited.is_set():
                return True
            await asyncio.sleep(interval)
        return False


class EngineSupervisor:
    """Starts, watches, restarts and stops engine processes."""

    def __init__(
        self,
        binary: str = "mpv",
        ipc: IpcChannel | None = None,
        restart_delay: float = DEFAULT_RESTART_DELAY,
        socket_retries: int = 20,
        socket_interval: float = 0.25,
    ):
        self.binary = binary
        self.ipc = ipc or IpcChannel()
        self.restart_delay = restart_delay
        self.socket_retries = socket_retries
        self.socket_interval = socket_interval
        self._instances: set[EngineInstance] = set()
        self._watchers: set[asyncio.Task] = set()
        self._restarts: dict[EngineInstance, asyncio.Task] = {}

    @property
    def instances(self) -> list[EngineInstance]:
        return list(self._instances)

    async def start(
        self,
        purpose: str,
        args: list[str],
        socket_path: str | None = None,
        reload_media: bool = False,
    ) -> EngineInstance:
        """
        Spawn an engine and wait until it is usable.

        Socketed engines are READY once their socket exists. The socket-less
        effect variant is PLAYING as soon as it spawned.

        Raises:
            SocketNotReady: The socket never appeared (process terminated).
            OSError: The binary could not be executed.
        """
        instance = EngineInstance(purpose, socket_path, list(args), reload_media=reload_media)
        try:
            await self._spawn(instance)
        except BaseException:
            instance.state = EngineState.TERMINATED
            raise
        self._instances.add(instance)
        return instance

    async def ensure(
        self,
        existing: EngineInstance | None,
        purpose: str,
        args: list[str],
        socket_path: str | None = None,
        reload_media: bool = False,
    ) -> EngineInstance:
        """
        Return a live engine for these arguments, reusing ``existing`` when it
        is alive with the same arguments and replacing it otherwise.

        Raises:
            EngineCrash: ``existing`` crashed and is waiting to be restarted.
        """
        if existing is not None:
            if existing.state in (EngineState.CRASHED, EngineState.RESTARTING, EngineState.SPAWNING):
                raise EngineCrash(existing.purpose, existing.returncode)
            if existing.alive and existing.args == list(args):
                return existing
            logging.info("Replacing %s engine (pid %s).", existing.purpose, existing.pid)
            self.stop(existing)
            if existing.process is not None:
                try:
                    await asyncio.wait_for(existing.wait_exit(), STOP_GRACE)
                except asyncio.TimeoutError:
                    logging.warning("%s engine (pid %s) still running after SIGTERM.", existing.purpose, existing.pid)
        return await self.start(purpose, args, socket_path=socket_path, reload_media=reload_media)

    def on_exit(self, instance: EngineInstance, callback) -> None:
        """Register callback(instance, returncode), run on every process exit."""
        instance._exit_callbacks.append(callback)

    def stop(self, instance: EngineInstance) -> None:
        """Terminate an engine and cancel any pending restart. SIGTERM only."""
        instance.state = EngineState.TERMINATED
        self._instances.discard(instance)
        task = self._restarts.pop(instance, None)
        if task is not None:
            task.cancel()
        proc = instance.process
        if proc is not None and proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            logging.debug("Sent SIGTERM to %s engine (pid %s).", instance.purpose, proc.pid)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop every engine and wait (bounded) for their exit watchers."""
        for instance in list(self._instances):
            self.stop(instance)
        for task in list(self._restarts.values()):
            task.cancel()
        self._restarts.clear()
        watchers = [t for t in self._watchers if not t.done()]
        if watchers:
            _done, pending = await asyncio.wait(watchers, timeout=timeout)
            for task in pending:
                logging.warning("Engine watcher still pending at shutdown — cancelling.")
                task.cancel()
        logging.info("Engine supervisor shut down.")

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _spawn(self, instance: EngineInstance) -> None:
        instance.state = EngineState.SPAWNING
        instance._exited.clear()
        if instance.socket_path:
            _remove_stale_socket(instance.socket_path)

        process = await asyncio.create_subprocess_exec(
            self.binary,
            *instance.args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        instance.process = process
        watcher = asyncio.create_task(self._watch(instance, process))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        logging.info("Spawned %s engine (pid %d).", instance.purpose, process.pid)

        if instance.socket_path is None:
            instance.state = EngineState.PLAYING
            return

        ready = await self.ipc.wait_for_socket(
            instance.socket_path, self.socket_retries, self.socket_interval
        )
        if not ready or process.returncode is not None:
            if process.returncode is None:
                process.terminate()
            logging.error(
                "%s engine (pid %d) never created %s.",
                instance.purpose, process.pid, instance.socket_path,
            )
            raise SocketNotReady(instance.purpose, instance.socket_path)
        instance.state = EngineState.READY
        logging.info("%s engine ready on %s.", instance.purpose, instance.socket_path)

    async def _watch(self, instance: EngineInstance, process) -> None:
        returncode = await process.wait()
        if instance.process is not process:
            return  # replaced by a restart
        instance._exited.set()

        if instance.state in (EngineState.READY, EngineState.PLAYING):
            if instance.socket_path is None:
                instance.state = EngineState.TERMINATED
                self._instances.discard(instance)
            else:
                was_playing = instance.state is EngineState.PLAYING
                instance.state = EngineState.CRASHED
                logging.warning(
                    "%s engine (pid %d) exited unexpectedly with code %s.",
                    instance.purpose, process.pid, returncode,
                )
                if instance in self._restarts:
                    # died during a restart; the running restart loop retries
                    logging.warning("%s engine died while being restarted.", instance.purpose)
                else:
                    self._restarts[instance] = asyncio.create_task(
                        self._restart_loop(instance, reload=was_playing)
                    )

        for callback in list(instance._exit_callbacks):
            try:
                callback(instance, returncode)
            except Exception:
                logging.exception("Engine exit callback failed for %s.", instance.purpose)

    async def _restart_loop(self, instance: EngineInstance, reload: bool = True) -> None:
        """Respawn until it works or the engine is stopped. Media is reloaded only
        if the engine was playing when it crashed."""
        try:
            while instance.state is not EngineState.TERMINATED:
                instance.state = EngineState.RESTARTING
                logging.info(
                    "Restarting %s engine in %gs (restart %d).",
                    instance.purpose, self.restart_delay, instance.restarts + 1,
                )
                await asyncio.sleep(self.restart_delay)
                if instance.state is EngineState.TERMINATED:
                    return
                instance.restarts += 1
                try:
                    await self._spawn(instance)
                    if reload and instance.reload_media and instance.last_media:
                        await self._reload(instance)
                except (PropFxError, OSError):
                    logging.error("Restart of %s engine failed.", instance.purpose, exc_info=True)
                    proc = instance.process
                    if proc is not None and proc.returncode is None:
                        try:
                            proc.terminate()
                        except ProcessLookupError:
                            pass
                    continue
                logging.info("%s engine restarted (pid %s).", instance.purpose, instance.pid)
                return
        finally:
            if self._restarts.get(instance) is asyncio.current_task():
                del self._restarts[instance]

    async def _reload(self, instance: EngineInstance) -> None:
        sock = instance.socket_path
        await self.ipc.command(sock, "loadfile", instance.last_media, "replace")
        for name, value in instance.properties.items():
            await self.ipc.set_property(sock, name, value)
        instance.state = EngineState.PLAYING
        logging.info("Reloaded %s into restarted %s engine.", instance.last_media, instance.purpose)


def _remove_stale_socket(path: str) -> None:
    try:
        os.unlink(path)
        logging.debug("Removed stale socket %s.", path)
    except FileNotFoundError:
        pass
