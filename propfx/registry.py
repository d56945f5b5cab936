"""
Zone registry — the per-zone object table.

Owns the shared pieces (IPC channel, engine supervisor, effect pool) and one
ZoneAudio per configured zone. Commands are routed by zone name.
"""
import logging

from propfx.config_loader import ServiceConfig
from propfx.effects import EffectPool
from propfx.engine import EngineSupervisor
from propfx.ipc import IpcChannel
from propfx.zone import ZoneAudio


class UnknownZone(KeyError):
    """No zone with that name is configured."""


class ZoneRegistry:
    def __init__(self, zones: dict[str, ZoneAudio], supervisor: EngineSupervisor, effects: EffectPool):
        self.zones = zones
        self.supervisor = supervisor
        self.effects = effects

    @classmethod
    def from_config(cls, config: ServiceConfig, publish=None) -> "ZoneRegistry":
        ipc = IpcChannel(observe_timeout=config.speech_timeout)
        supervisor = EngineSupervisor(
            binary=config.engine_binary, ipc=ipc, restart_delay=config.restart_delay
        )
        effects = EffectPool(supervisor, ceiling=config.effects_ceiling)
        zones = {
            zc.name: ZoneAudio(
                zc, supervisor, ipc, effects,
                publish=publish,
                socket_dir=config.socket_dir,
                speech_timeout=config.speech_timeout,
            )
            for zc in config.zones
        }
        return cls(zones, supervisor, effects)

    def get(self, name: str) -> ZoneAudio:
        try:
            return self.zones[name]
        except KeyError:
            raise UnknownZone(name) from None

    async def start(self) -> None:
        """Start every zone. A failing zone is logged; the others still start."""
        for name, zone in self.zones.items():
            try:
                await zone.start()
            except Exception:
                logging.exception("Zone %s failed to start — it will reject commands.", name)
        logging.info("Zone registry started (%d zones).", len(self.zones))

    async def dispatch(self, zone_name: str, message) -> dict:
        """Route one command message. Raises UnknownZone; otherwise never raises."""
        return await self.get(zone_name).handle_command(message)

    def status(self) -> dict:
        return {name: zone.status() for name, zone in self.zones.items()}

    async def shutdown(self) -> None:
        for name, zone in self.zones.items():
            try:
                await zone.shutdown()
            except Exception:
                logging.exception("Zone %s shutdown failed.", name)
        await self.supervisor.shutdown()
