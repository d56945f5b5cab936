"""
One-shot sound effect pool.

Effects are fire-and-forget: every request spawns its own short-lived mpv
("sound-effect-spawn" variant: no socket, low-latency buffers) that plays
the file once and exits. There is no queue. Concurrency is bounded by a
ceiling derived from the host CPU; requests beyond it are logged and skipped.

A single pool is shared by every zone because the ceiling is a property of
the machine, not of a zone.
"""
import logging

from propfx.engine import EFFECT_SPAWN, EngineInstance, EngineSupervisor, build_engine_args
from propfx.errors import ConcurrencyLimitExceeded

DEFAULT_CEILING = 10

# /proc/cpuinfo SoC marker -> max concurrent effect processes
CPU_CEILINGS = (
    ("BCM2835", 3),   # Pi Zero / Pi 1
    ("BCM2711", 15),  # Pi 4
    ("BCM2712", 25),  # Pi 5
)


def detect_effect_ceiling(cpuinfo_path: str = "/proc/cpuinfo") -> int:
    """Pick the effect ceiling from the CPU model. Unknown or unreadable -> 10."""
    try:
        with open(cpuinfo_path, encoding="utf-8", errors="replace") as f:
            cpuinfo = f.read()
    except OSError:
        logging.debug("Could not read %s — using default effect ceiling.", cpuinfo_path)
        return DEFAULT_CEILING
    for marker, ceiling in CPU_CEILINGS:
        if marker in cpuinfo:
            return ceiling
    return DEFAULT_CEILING


class EffectPool:
    """Bounded set of concurrently running effect processes."""

    def __init__(self, supervisor: EngineSupervisor, ceiling: int | None = None):
        self.supervisor = supervisor
        self.ceiling = detect_effect_ceiling() if ceiling is None else ceiling
        self._active = 0
        self._engines: dict[EngineInstance, str] = {}
        logging.info("Effect pool ceiling: %d concurrent effects.", self.ceiling)

    @property
    def active_count(self) -> int:
        return self._active

    def reserve(self) -> None:
        """
        Take one slot.

        Raises:
            ConcurrencyLimitExceeded: The pool is at its ceiling.
        """
        if self._active >= self.ceiling:
            raise ConcurrencyLimitExceeded(self.ceiling)
        self._active += 1

    async def play(self, zone: str, media_path: str, volume: int, audio_device: str | None = None) -> bool:
        """
        Spawn one effect. Returns False (no-op) when the pool is at its ceiling.

        The slot is reserved before the spawn is awaited and is released only
        when the process exits, or immediately if the spawn itself fails.

        Raises:
            OSError: The engine binary could not be started.
        """
        try:
            self.reserve()
        except ConcurrencyLimitExceeded as exc:
            logging.warning("Skipping effect %s in zone %s: %s.", media_path, zone, exc)
            return False

        args = build_engine_args(EFFECT_SPAWN, audio_device=audio_device, volume=volume)
        args.append(media_path)
        try:
            engine = await self.supervisor.start(EFFECT_SPAWN, args)
        except BaseException:
            self._active -= 1
            raise

        self._engines[engine] = zone
        released = False

        def _release(instance: EngineInstance, returncode) -> None:
            nonlocal released
            if released:
                return
            released = True
            self._active -= 1
            self._engines.pop(instance, None)
            if returncode:
                logging.warning("Effect %s in zone %s exited with code %s.", media_path, zone, returncode)

        self.supervisor.on_exit(engine, _release)
        if engine.exited:
            # exited before the callback was registered
            _release(engine, engine.returncode)
        logging.debug("Effect %s started in zone %s (%d active).", media_path, zone, self._active)
        return True

    def stop_all(self, zone: str | None = None) -> None:
        """Terminate running effects (of one zone, or all). Exit callbacks release the slots."""
        for engine, owner in list(self._engines.items()):
            if zone is None or owner == zone:
                self.supervisor.stop(engine)
