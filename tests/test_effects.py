"""
Unit tests for propfx/effects.py — CPU-derived ceiling and the one-shot effect pool.
"""
import asyncio
import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
from propfx.effects import DEFAULT_CEILING, EffectPool, detect_effect_ceiling
from propfx.engine import EFFECT_SPAWN
from propfx.errors import ConcurrencyLimitExceeded


# ---------------------------------------------------------------------------
# detect_effect_ceiling
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("hardware, expected", [
    ("BCM2835", 3),
    ("BCM2711", 15),
    ("BCM2712", 25),
    ("GenuineIntel", DEFAULT_CEILING),
])
def test_ceiling_from_cpuinfo(tmp_path, hardware, expected):
    cpuinfo = tmp_path / "cpuinfo"
    cpuinfo.write_text(f"processor\t: 0\nHardware\t: {hardware}\n", encoding="utf-8")
    assert detect_effect_ceiling(str(cpuinfo)) == expected


def test_unreadable_cpuinfo_uses_default(tmp_path):
    assert detect_effect_ceiling(str(tmp_path / "missing")) == DEFAULT_CEILING


# ---------------------------------------------------------------------------
# EffectPool
# ---------------------------------------------------------------------------

def test_spawn_args_carry_volume_device_and_file(fake_supervisor):
    async def scenario():
        pool = EffectPool(fake_supervisor, ceiling=2)
        assert await pool.play("lobby", "/media/ding.wav", 80, "hw:1") is True

    asyncio.run(scenario())
    engine = fake_supervisor.started[0]
    assert engine.purpose == EFFECT_SPAWN
    assert engine.socket_path is None
    assert "--volume=80" in engine.args
    assert "--audio-device=hw:1" in engine.args
    assert engine.args[-1] == "/media/ding.wav"


def test_ceiling_skips_and_exit_releases_slot(fake_supervisor):
    async def scenario():
        pool = EffectPool(fake_supervisor, ceiling=2)
        results = [await pool.play("lobby", f"/media/{i}.wav", 100) for i in range(3)]
        assert pool.active_count == 2

        fake_supervisor.exit(fake_supervisor.started[0], 0)
        fake_supervisor.exit(fake_supervisor.started[0], 0)  # a second exit must not double-release
        assert pool.active_count == 1
        results.append(await pool.play("lobby", "/media/again.wav", 100))
        return pool, results

    pool, results = asyncio.run(scenario())
    assert results == [True, True, False, True]
    assert pool.active_count == 2


def test_concurrent_requests_never_exceed_ceiling(fake_supervisor):
    async def scenario():
        pool = EffectPool(fake_supervisor, ceiling=1)
        return await asyncio.gather(
            pool.play("lobby", "/media/a.wav", 100),
            pool.play("lobby", "/media/b.wav", 100),
        )

    assert asyncio.run(scenario()) == [True, False]
    assert len(fake_supervisor.started) == 1


def test_spawn_failure_releases_slot(fake_supervisor):
    async def scenario():
        pool = EffectPool(fake_supervisor, ceiling=1)
        fake_supervisor.fail_start = FileNotFoundError("mpv")
        with pytest.raises(FileNotFoundError):
            await pool.play("lobby", "/media/a.wav", 100)
        fake_supervisor.fail_start = None
        assert pool.active_count == 0
        return await pool.play("lobby", "/media/a.wav", 100)

    assert asyncio.run(scenario()) is True


def test_stop_all_only_stops_one_zone(fake_supervisor):
    async def scenario():
        pool = EffectPool(fake_supervisor, ceiling=5)
        await pool.play("lobby", "/media/a.wav", 100)
        await pool.play("cellar", "/media/b.wav", 100)
        pool.stop_all("lobby")
        return pool

    pool = asyncio.run(scenario())
    assert [e.args[-1] for e in fake_supervisor.stopped] == ["/media/a.wav"]
    assert pool.active_count == 1


def test_reserve_raises_at_ceiling_and_play_logs_the_skip(fake_supervisor, caplog):
    async def scenario():
        pool = EffectPool(fake_supervisor, ceiling=1)
        pool.reserve()
        with pytest.raises(ConcurrencyLimitExceeded) as exc_info:
            pool.reserve()
        assert exc_info.value.limit == 1
        return await pool.play("lobby", "/media/a.wav", 100)

    with caplog.at_level(logging.WARNING):
        assert asyncio.run(scenario()) is False
    assert fake_supervisor.started == []
    assert "concurrency limit of 1 reached" in caplog.text
