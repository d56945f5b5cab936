"""
Zone volume model and the effective-volume resolver.

Every play request resolves its engine volume through resolve_volume(), a
pure function of the zone's volume model, the command parameters and
whether ducking is currently active:

    absolute per-play volume  >  adjustVolume percent  >  base volume

Ducking is applied to background music only, while a duck trigger (speech)
is active and the command did not set skipDucking. All results are clamped
to 0..max_volume and rounded half-up to an int. Clamping produces
structured warnings rather than errors.
"""
import logging
import math
from dataclasses import dataclass, field

VOLUME_TYPES = ("background", "speech", "effects", "video")

DEFAULT_BASE = 100
DEFAULT_MAX_VOLUME = 150
CLAMP_ABS_MIN = 0
CLAMP_ABS_MAX = 200
CLAMP_DUCK_MIN = -100
CLAMP_DUCK_MAX = 0


def as_number(value) -> float | None:
    """Coerce a config/command value to float; None for missing or non-numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(n):
        return None
    return n


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value, low: float, high: float) -> float | None:
    """Clamp value into [low, high]. Returns None for missing/NaN input."""
    n = as_number(value)
    if n is None:
        return None
    return min(high, max(low, n))


def normalize_base_volumes(raw: dict | None = None) -> dict:
    """Fill every volume type with a clamped level, defaulting to 100."""
    raw = raw or {}
    volumes = {}
    for kind in VOLUME_TYPES:
        level = clamp(raw.get(kind), CLAMP_ABS_MIN, CLAMP_ABS_MAX)
        volumes[kind] = DEFAULT_BASE if level is None else level
    return volumes


def normalize_ducking_adjust(value) -> int:
    """Ducking adjust is a percentage in -100..0. Positive values mean no ducking."""
    n = as_number(value)
    if n is None:
        return 0
    adjust = int(n)
    if adjust > CLAMP_DUCK_MAX:
        adjust = 0
    if adjust < CLAMP_DUCK_MIN:
        adjust = CLAMP_DUCK_MIN
    return adjust


@dataclass
class ZoneVolumeModel:
    base_volumes: dict = field(default_factory=normalize_base_volumes)
    ducking_adjust: int = 0
    max_volume: float = DEFAULT_MAX_VOLUME


def init_zone_volume_model(raw: dict | None = None) -> ZoneVolumeModel:
    """Build a normalised volume model from a zone's config section."""
    raw = raw or {}
    max_volume = clamp(raw.get("max_volume"), CLAMP_ABS_MIN, CLAMP_ABS_MAX)
    return ZoneVolumeModel(
        base_volumes=normalize_base_volumes(raw.get("base_volumes")),
        ducking_adjust=normalize_ducking_adjust(raw.get("ducking_adjust")),
        max_volume=DEFAULT_MAX_VOLUME if max_volume is None else max_volume,
    )


@dataclass(frozen=True)
class VolumeWarning:
    code: str
    detail: str


@dataclass(frozen=True)
class EffectiveVolumeResult:
    final: int
    pre_duck: int
    ducked: bool
    warnings: tuple = ()
    used: dict = field(default_factory=dict)
    clamped: bool = False

    @property
    def warning_codes(self) -> list[str]:
        return [w.code for w in self.warnings]


def resolve_volume(
    type: str,
    zone_model: ZoneVolumeModel,
    command_params: dict | None = None,
    duck_active: bool = False,
) -> EffectiveVolumeResult:
    """
    Compute the engine volume for one play request.

    Args:
        type: "background", "speech", "effects" or "video".
        zone_model: The zone's ZoneVolumeModel. Never mutated.
        command_params: Optional mapping with volume, adjust_volume and
            skip_ducking (missing keys and None values are ignored).
        duck_active: True while a duck trigger is active in the zone.

    Returns:
        An immutable EffectiveVolumeResult.
    """
    params = command_params or {}
    warnings: list[VolumeWarning] = []
    clamped = False

    max_volume = clamp(zone_model.max_volume, CLAMP_ABS_MIN, CLAMP_ABS_MAX)
    if max_volume is None:
        max_volume = CLAMP_ABS_MAX
    base = zone_model.base_volumes.get(type)
    if base is None:
        base = DEFAULT_BASE
    used: dict = {"base": base}

    volume = params.get("volume")
    adjust = params.get("adjust_volume")

    if volume is not None and adjust is not None:
        warnings.append(VolumeWarning(
            "both_volume_and_adjust",
            "Both volume and adjust_volume supplied; using volume.",
        ))

    if volume is not None:
        n = as_number(volume)
        level = base if n is None else int(n)
        if level < 0:
            warnings.append(VolumeWarning("clamp_abs_low", f"Requested volume {level} < 0; clamped to 0."))
            level = 0
            clamped = True
        if level > max_volume:
            warnings.append(VolumeWarning("clamp_abs_high", f"Requested volume {level} > max {max_volume:g}; clamped."))
            level = max_volume
            clamped = True
        pre_duck = level
        used["volume"] = level
    elif adjust is not None:
        pct = as_number(adjust)
        if pct is None:
            pct = 0.0
        if pct < -100:
            warnings.append(VolumeWarning("clamp_adjust_low", f"adjust_volume {pct:g} < -100; clamped to -100."))
            pct = -100.0
            clamped = True
        if pct > 100:
            warnings.append(VolumeWarning("clamp_adjust_high", f"adjust_volume {pct:g} > 100; clamped to 100."))
            pct = 100.0
            clamped = True
        adjusted = base * (1 + pct / 100)
        if adjusted < 0:
            warnings.append(VolumeWarning("clamp_adjust_result_low", f"Adjusted volume {adjusted:g} < 0; clamped to 0."))
            adjusted = 0
            clamped = True
        if adjusted > max_volume:
            warnings.append(VolumeWarning("clamp_adjust_result_high", f"Adjusted volume {adjusted:g} > max {max_volume:g}; clamped."))
            adjusted = max_volume
            clamped = True
        pre_duck = adjusted
        used["adjust_volume"] = pct
    else:
        pre_duck = base
        if pre_duck > max_volume:
            warnings.append(VolumeWarning("clamp_base_high", f"Base volume {base:g} > max {max_volume:g}; clamped."))
            pre_duck = max_volume
            clamped = True

    final = pre_duck
    ducked = False
    if type == "background" and duck_active and not params.get("skip_ducking"):
        ducked = True
        duck_adjust = normalize_ducking_adjust(zone_model.ducking_adjust)
        used["ducking_adjust"] = duck_adjust
        ducked_level = pre_duck * (1 + duck_adjust / 100)
        if ducked_level < 0:
            warnings.append(VolumeWarning("clamp_duck_low", f"Ducked volume {ducked_level:g} < 0; clamped to 0."))
            ducked_level = 0
            clamped = True
        if ducked_level > max_volume:
            warnings.append(VolumeWarning("clamp_duck_high", f"Ducked volume {ducked_level:g} > max {max_volume:g}; clamped."))
            ducked_level = max_volume
            clamped = True
        final = ducked_level

    result = EffectiveVolumeResult(
        final=_round_half_up(final),
        pre_duck=_round_half_up(pre_duck),
        ducked=ducked,
        warnings=tuple(warnings),
        used=used,
        clamped=clamped,
    )
    if warnings:
        logging.debug("Volume %s resolved with warnings: %s", type, result.warning_codes)
    return result
