"""
config_loader.py — Read ~/.config/propfx/config.json into service settings.

load_config() returns the raw settings dict: {} if the file is absent or
malformed, never raises.

build_service_config() turns that dict into typed ServiceConfig/ZoneConfig
objects. Invalid zone definitions (bad channel maps, missing media dir)
raise ConfigParseError: configuration errors are fatal at startup.

Example:
    {
      "media_dir": "/opt/propfx/media",
      "http": {"host": "127.0.0.1", "port": 5060},
      "zones": {
        "lobby": {
          "audio_device": "alsa/hdmi:CARD=vc4hdmi0,DEV=0",
          "audio_channel_map": "main; rear; DEVICE='alsa/plughw:1,0';",
          "base_volumes": {"background": 80, "speech": 100},
          "ducking_adjust": -40,
          "video": true,
          "display": ":0"
        }
      }
    }
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from propfx.channels import CHANNEL_VARIABLES, parse_channel_map
from propfx.engine import DEFAULT_RESTART_DELAY, DEFAULT_SOCKET_DIR
from propfx.errors import ConfigParseError
from propfx.ipc import OBSERVE_TIMEOUT
from propfx.queued_track import DEFAULT_MAX_QUEUED
from propfx.volume import ZoneVolumeModel, init_zone_volume_model

DEFAULT_MEDIA_DIR = "/opt/propfx/media"
DEFAULT_CHANNEL_MAP = "default"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5060


def _config_dir() -> Path:
    """Return the propfx config directory ($PROPFX_CONFIG_DIR overrides)."""
    override = os.environ.get("PROPFX_CONFIG_DIR")
    if override:
        return Path(override)
    xdg = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))
    return Path(xdg) / "propfx"


def _config_path() -> Path:
    return _config_dir() / "config.json"


def load_config(path: str | Path | None = None) -> dict:
    """
    Read config.json and return its contents as a dict.

    Returns {} if:
    - The file does not exist (first run, no config yet).
    - The file contains invalid JSON or no JSON object.

    Never raises — logs a warning on parse error.
    """
    path = Path(path) if path is not None else _config_path()
    if not path.exists():
        logging.debug("No config file found at %s — using defaults.", path)
        return {}
    try:
        cfg = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(cfg, dict):
            logging.warning("%s does not contain a JSON object — ignoring.", path)
            return {}
        logging.debug("Loaded config from %s: %s", path, list(cfg.keys()))
        return cfg
    except Exception:
        logging.warning("Failed to load config from %s — using defaults.", path, exc_info=True)
        return {}


@dataclass
class ZoneConfig:
    name: str
    media_dir: str
    channel_map: dict
    audio_device: str | None = None
    display: str | None = None
    volume_model: ZoneVolumeModel = field(default_factory=ZoneVolumeModel)
    video_queue_max: int = DEFAULT_MAX_QUEUED
    background_music: bool = True
    speech: bool = True
    sound_effects: bool = True
    video: bool = False
    engine_args: list = field(default_factory=list)


@dataclass
class ServiceConfig:
    zones: list = field(default_factory=list)
    socket_dir: str = DEFAULT_SOCKET_DIR
    engine_binary: str = "mpv"
    restart_delay: float = DEFAULT_RESTART_DELAY
    effects_ceiling: int | None = None
    speech_timeout: float = OBSERVE_TIMEOUT
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


def _number(cfg: dict, key: str, default, kind=float):
    value = cfg.get(key, default)
    if value is None:
        return None
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigParseError(f"{key}: expected a number, got {value!r}") from None


def build_zone_config(name: str, raw: dict, defaults: dict) -> ZoneConfig:
    """Build one zone. Raises ConfigParseError on invalid settings."""
    if not isinstance(raw, dict):
        raise ConfigParseError(f"zone {name!r}: expected an object")
    media_dir = raw.get("media_dir") or defaults.get("media_dir") or DEFAULT_MEDIA_DIR
    audio_device = raw.get("audio_device")

    variables = dict(CHANNEL_VARIABLES)
    if audio_device:
        variables["DEVICE"] = audio_device
    try:
        channel_map = parse_channel_map(raw.get("audio_channel_map") or DEFAULT_CHANNEL_MAP, variables)
    except ConfigParseError as exc:
        raise ConfigParseError(f"zone {name!r}: audio_channel_map: {exc}") from exc
    if not channel_map:
        raise ConfigParseError(f"zone {name!r}: audio_channel_map defines no channels")

    engine_args = raw.get("engine_args", [])
    if not isinstance(engine_args, list) or not all(isinstance(a, str) for a in engine_args):
        raise ConfigParseError(f"zone {name!r}: engine_args must be a list of strings")

    try:
        video_queue_max = _number(raw, "video_queue_max", DEFAULT_MAX_QUEUED, int)
    except ConfigParseError as exc:
        raise ConfigParseError(f"zone {name!r}: {exc}") from exc

    return ZoneConfig(
        name=name,
        media_dir=str(media_dir),
        channel_map=channel_map,
        audio_device=audio_device,
        display=raw.get("display"),
        volume_model=init_zone_volume_model(raw),
        video_queue_max=DEFAULT_MAX_QUEUED if video_queue_max < 0 else video_queue_max,
        background_music=bool(raw.get("background_music", True)),
        speech=bool(raw.get("speech", True)),
        sound_effects=bool(raw.get("sound_effects", True)),
        video=bool(raw.get("video", False)),
        engine_args=engine_args,
    )


def build_service_config(cfg: dict) -> ServiceConfig:
    """
    Turn a raw config dict into a ServiceConfig.

    Raises:
        ConfigParseError: Any zone or top-level setting is invalid.
    """
    zones_raw = cfg.get("zones") or {}
    if not isinstance(zones_raw, dict):
        raise ConfigParseError("zones: expected an object mapping zone name -> settings")
    zones = [build_zone_config(str(name), raw, cfg) for name, raw in zones_raw.items()]
    if not zones:
        logging.warning("No zones configured — the service will accept no commands.")

    http = cfg.get("http") or {}
    if not isinstance(http, dict):
        raise ConfigParseError("http: expected an object")

    return ServiceConfig(
        zones=zones,
        socket_dir=str(cfg.get("socket_dir") or DEFAULT_SOCKET_DIR),
        engine_binary=str(cfg.get("engine_binary") or "mpv"),
        restart_delay=_number(cfg, "restart_delay", DEFAULT_RESTART_DELAY),
        effects_ceiling=_number(cfg, "effects_ceiling", None, int),
        speech_timeout=_number(cfg, "speech_timeout", OBSERVE_TIMEOUT),
        host=str(http.get("host") or DEFAULT_HOST),
        port=_number(http, "port", DEFAULT_PORT, int),
    )
