"""
Tests for propfx/service.py and propfx/registry.py — HTTP API, PID lock, zone registry.

The HTTP tests drive the FastAPI app through TestClient with a registry built
on FakeIpc / FakeSupervisor, so no engine process is ever spawned.
"""
import asyncio
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))
from propfx.config_loader import ServiceConfig, build_service_config, build_zone_config
from propfx.effects import EffectPool
from propfx.registry import UnknownZone, ZoneRegistry
from propfx.service import StatusBoard, acquire_pid_lock, create_app, run
from propfx.zone import ZoneAudio


@pytest.fixture
def board():
    return StatusBoard()


@pytest.fixture
def registry(fake_ipc, fake_supervisor, media_dir, board):
    effects = EffectPool(fake_supervisor, ceiling=2)
    zones = {}
    for name in ("lobby", "cellar"):
        config = build_zone_config(name, {"base_volumes": {"background": 80}}, {"media_dir": media_dir})
        zones[name] = ZoneAudio(config, fake_supervisor, fake_ipc, effects, publish=board.publish)
    return ZoneRegistry(zones, fake_supervisor, effects)


@pytest.fixture
def app(registry, board):
    app = create_app(ServiceConfig(), registry=registry)
    app.state.board = board
    return app


# ---------------------------------------------------------------------------
# StatusBoard
# ---------------------------------------------------------------------------

def test_status_board_filters_and_is_bounded():
    board = StatusBoard(maxlen=3)
    for i in range(4):
        board.publish({"device": "lobby" if i % 2 else "cellar", "type": "audio_status", "n": i})
    assert [m["n"] for m in board.recent()] == [1, 2, 3]
    assert [m["n"] for m in board.recent("lobby")] == [1, 3]
    assert [m["n"] for m in board.recent(limit=1)] == [3]


# ---------------------------------------------------------------------------
# HTTP endpoints
# ---------------------------------------------------------------------------

def test_health_is_503_before_startup(app):
    client = TestClient(app)
    resp = client.get("/health")
    assert resp.status_code == 503
    assert resp.json() == {"status": "initializing"}


def test_health_after_startup_and_shutdown(app, fake_supervisor):
    with TestClient(app) as client:
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "zones": ["lobby", "cellar"]}
    assert fake_supervisor.shutdown_called is True


def test_command_endpoint(app):
    with TestClient(app) as client:
        ok = client.post("/zones/lobby/commands", json={"command": "setVolume", "volume": 40})
        bad = client.post("/zones/lobby/commands", json={"command": "setVolume", "volume": 140})
        unknown_zone = client.post("/zones/attic/commands", json={"command": "getStatus"})
        not_json = client.post("/zones/lobby/commands", content=b"{nope",
                               headers={"Content-Type": "application/json"})

    assert ok.status_code == 200
    assert ok.json() == {"status": "ok", "command": "set_volume", "type": "background", "volume": 40}
    assert bad.status_code == 400
    assert bad.json()["status"] == "error"
    assert unknown_zone.status_code == 404
    assert not_json.status_code == 400


def test_background_music_over_http(app, fake_ipc):
    with TestClient(app) as client:
        resp = client.post("/zones/cellar/commands", json={"command": "playBackground", "file": "music.mp3"})
        status = client.get("/zones/cellar/status").json()

    assert resp.status_code == 200
    assert resp.json()["volume"] == 80
    assert status["device"] == "cellar"
    assert status["status"]["backgroundMusic"]["playing"] is True
    assert len(fake_ipc.loaded("/tmp/mpv-background-cellar.sock")) == 1


def test_zone_status_unknown_zone(app):
    with TestClient(app) as client:
        assert client.get("/zones/attic/status").status_code == 404


def test_messages_endpoint(app):
    with TestClient(app) as client:
        client.post("/zones/lobby/commands", json={"command": "setVolume", "volume": 300})
        lobby = client.get("/messages", params={"zone": "lobby"}).json()["messages"]

    assert {m["device"] for m in lobby} == {"lobby"}
    assert lobby[-1]["type"] == "error"
    assert lobby[-1]["command"] == "set_volume"


# ---------------------------------------------------------------------------
# ZoneRegistry
# ---------------------------------------------------------------------------

def test_registry_from_config(media_dir):
    config = build_service_config({
        "media_dir": media_dir,
        "effects_ceiling": 4,
        "speech_timeout": 12,
        "socket_dir": "/run/propfx",
        "zones": {"lobby": {}, "cellar": {"video": True}},
    })
    registry = ZoneRegistry.from_config(config)
    assert list(registry.zones) == ["lobby", "cellar"]
    assert registry.effects.ceiling == 4
    assert registry.supervisor.ipc.observe_timeout == 12
    assert registry.get("cellar").video.socket_path == "/run/propfx/mpv-video-cellar.sock"
    with pytest.raises(UnknownZone):
        registry.get("attic")


def test_registry_start_isolates_failing_zone(registry):
    registry.zones["lobby"].start = AsyncMock(side_effect=RuntimeError("no media"))

    async def scenario():
        await registry.start()
        return await registry.dispatch("lobby", {"command": "getStatus"})

    reply = asyncio.run(scenario())
    assert reply["status"] == "error"
    assert registry.zones["cellar"].is_ready is True


def test_registry_dispatch_unknown_zone(registry):
    with pytest.raises(UnknownZone):
        asyncio.run(registry.dispatch("attic", {"command": "getStatus"}))


# ---------------------------------------------------------------------------
# PID lock and startup
# ---------------------------------------------------------------------------

def test_pid_lock_replaces_stale_file(tmp_path):
    pid_file = tmp_path / "service.pid"
    pid_file.write_text("999999", encoding="utf-8")
    with patch("propfx.service.psutil.pid_exists", return_value=False), \
         patch("propfx.service.atexit.register") as register:
        acquire_pid_lock(pid_file)
    assert pid_file.read_text(encoding="utf-8") == str(os.getpid())
    register.assert_called_once()


def test_pid_lock_overwrites_corrupt_file(tmp_path):
    pid_file = tmp_path / "service.pid"
    pid_file.write_text("not-a-pid", encoding="utf-8")
    with patch("propfx.service.atexit.register"):
        acquire_pid_lock(pid_file)
    assert pid_file.read_text(encoding="utf-8").isdigit()


def test_pid_lock_exits_when_service_running(tmp_path):
    pid_file = tmp_path / "service.pid"
    pid_file.write_text("4242", encoding="utf-8")
    proc = MagicMock()
    proc.name.return_value = "python3"
    with patch("propfx.service.psutil.pid_exists", return_value=True), \
         patch("propfx.service.psutil.Process", return_value=proc), \
         patch("propfx.service.atexit.register"):
        with pytest.raises(SystemExit) as exc_info:
            acquire_pid_lock(pid_file)
    assert exc_info.value.code == 0
    assert pid_file.read_text(encoding="utf-8") == "4242"


def test_run_exits_on_config_error(tmp_path):
    config = tmp_path / "config.json"
    config.write_text('{"zones": {"lobby": {"audio_channel_map": "; broken"}}}', encoding="utf-8")
    with patch("propfx.service.setup_logging"), \
         patch("propfx.service.acquire_pid_lock"), \
         patch("propfx.service.uvicorn.run") as uvicorn_run:
        with pytest.raises(SystemExit) as exc_info:
            run(str(config))
    assert exc_info.value.code == 1
    uvicorn_run.assert_not_called()


def test_run_passes_host_and_port_overrides(tmp_path):
    with patch("propfx.service.setup_logging"), \
         patch("propfx.service.acquire_pid_lock"), \
         patch("propfx.service.uvicorn.run") as uvicorn_run:
        run(str(tmp_path / "missing.json"), host="0.0.0.0", port=7000)
    kwargs = uvicorn_run.call_args.kwargs
    assert (kwargs["host"], kwargs["port"], kwargs["log_config"]) == ("0.0.0.0", 7000, None)
