"""
Tests for propfx/cli.py and propfx/sendcmd.py.
"""
import io
import json
import sys
import urllib.error
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
from propfx.cli import main
from propfx.sendcmd import main as sendcmd_main
from propfx.sendcmd import send_lines


# ---------------------------------------------------------------------------
# propfx check-config
# ---------------------------------------------------------------------------

def test_check_config_lists_zones(tmp_path, capsys):
    config = tmp_path / "config.json"
    config.write_text(json.dumps({
        "media_dir": "/srv/media",
        "zones": {"lobby": {"audio_channel_map": "main; rear;", "video": True}},
    }), encoding="utf-8")
    main(["check-config", "--config", str(config)])
    out = capsys.readouterr().out
    assert "HTTP: 127.0.0.1:5060" in out
    assert "lobby: media=/srv/media channels=main,rear features=background,speech,effects,video" in out


def test_check_config_reports_errors(tmp_path, capsys):
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"zones": {"lobby": {"engine_args": 5}}}), encoding="utf-8")
    with pytest.raises(SystemExit) as exc_info:
        main(["check-config", "--config", str(config)])
    assert exc_info.value.code == 1
    assert "engine_args" in capsys.readouterr().err


def test_serve_passes_options():
    with patch("propfx.service.run") as run:
        main(["serve", "--config", "/etc/propfx.json", "--port", "7000"])
    run.assert_called_once_with(config_path="/etc/propfx.json", host=None, port=7000)


# ---------------------------------------------------------------------------
# sendcmd
# ---------------------------------------------------------------------------

def test_send_single_command(capsys):
    with patch("propfx.sendcmd.post_command", return_value={"status": "ok", "command": "get_status"}) as post:
        assert send_lines("lobby", '{"command": "getStatus"}') is True
    post.assert_called_once_with("lobby", {"command": "getStatus"}, host="127.0.0.1", port=5060)
    assert json.loads(capsys.readouterr().out)["status"] == "ok"


def test_send_stdin_lines_reports_failures(monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO(
        '{"command": "playSpeech", "file": "a.mp3"}\n\nnot json\n{"command": "setVolume", "volume": 500}\n'
    ))
    replies = [{"status": "ok"}, {"status": "error", "message": "volume 500 outside 0..100"}]
    with patch("propfx.sendcmd.post_command", side_effect=replies) as post:
        assert send_lines("lobby", None, quiet=True) is False
    assert post.call_count == 2


def test_send_unreachable_service(capsys):
    with patch("propfx.sendcmd.post_command", side_effect=urllib.error.URLError("refused")):
        assert send_lines("lobby", '{"command": "stopAll"}') is False
    assert "not reachable" in capsys.readouterr().err


@pytest.mark.parametrize("entry, argv", [
    (main, ["send", "lobby", '{"command": "stopAll"}', "--port", "7000", "--quiet"]),
    (sendcmd_main, ["lobby", '{"command": "stopAll"}', "--port", "7000", "--quiet"]),
])
def test_send_entry_points_share_options(entry, argv):
    with patch("propfx.sendcmd.send_lines", return_value=False) as send:
        with pytest.raises(SystemExit) as exc_info:
            entry(argv)
    assert exc_info.value.code == 1
    send.assert_called_once_with("lobby", '{"command": "stopAll"}', host="127.0.0.1", port=7000, quiet=True)
