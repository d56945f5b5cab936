"""
propfx background service.

Launch via: propfx serve  (or python -m propfx.service)

Loads config.json, builds one ZoneAudio per configured zone and exposes a
small local HTTP API for commands:

    GET  /health                    503 until zones are started, then 200
    POST /zones/{zone}/commands     run one command, returns its reply
    GET  /zones/{zone}/status       zone status snapshot
    GET  /messages                  recently published status/error messages

uvicorn runs in the main thread; all playback work happens on its event loop.
"""
import atexit
import logging
import os
import sys
import threading
from collections import deque
from contextlib import asynccontextmanager
from pathlib import Path

import psutil
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from propfx.config_loader import ServiceConfig, _config_dir, build_service_config, load_config
from propfx.registry import UnknownZone, ZoneRegistry

# ---------------------------------------------------------------------------
# Runtime paths
# ---------------------------------------------------------------------------

def _runtime_dir() -> Path:
    return _config_dir()


LOG_NAME = "propfx.log"
PID_NAME = "service.pid"

# ---------------------------------------------------------------------------
# Logging: must be initialised before anything else runs in run()
# ---------------------------------------------------------------------------

def setup_logging(log_dir: Path | None = None, level: int = logging.INFO) -> None:
    """Configure file + stderr logging and log uncaught exceptions."""
    log_dir = log_dir or _runtime_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_dir / LOG_NAME, encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )

    def _log_uncaught(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logging.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))

    sys.excepthook = _log_uncaught

    def _thread_excepthook(args):
        if args.exc_type is SystemExit:
            return
        logging.critical(
            "Unhandled exception in thread '%s'",
            args.thread.name if args.thread else "unknown",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )

    threading.excepthook = _thread_excepthook


# ---------------------------------------------------------------------------
# PID lock: one service per host
# ---------------------------------------------------------------------------

def acquire_pid_lock(pid_file: Path | None = None) -> None:
    """
    Prevent duplicate service instances.
    - If PID file exists and PID is alive (verified as a python process): log and exit.
    - If PID file exists but PID is stale/dead: remove stale file and continue.
    - If no PID file: write current PID and register atexit cleanup.
    """
    pid_file = pid_file or (_runtime_dir() / PID_NAME)
    if pid_file.exists():
        try:
            pid = int(pid_file.read_text(encoding="utf-8").strip())
            if pid != os.getpid() and psutil.pid_exists(pid):
                try:
                    proc = psutil.Process(pid)
                    if "python" in proc.name().lower() or "propfx" in proc.name().lower():
                        logging.warning("propfx service already running (PID %d). Exiting.", pid)
                        sys.exit(0)
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    pass  # PID reuse or access denied, treat as stale
        except (ValueError, OSError):
            pass  # corrupt PID file, overwrite it

        logging.info("Removing stale PID file.")
        pid_file.unlink(missing_ok=True)

    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(os.getpid()), encoding="utf-8")
    logging.info("PID lock acquired: %s (PID %d)", pid_file, os.getpid())
    atexit.register(_release_pid_lock, pid_file)


def _release_pid_lock(pid_file: Path) -> None:
    pid_file.unlink(missing_ok=True)
    logging.info("PID lock released.")


# ---------------------------------------------------------------------------
# Published messages
# ---------------------------------------------------------------------------

class StatusBoard:
    """Keeps the most recent published zone messages for GET /messages."""

    def __init__(self, maxlen: int = 100):
        self.messages: deque = deque(maxlen=maxlen)

    def publish(self, message: dict) -> None:
        self.messages.append(message)
        if message.get("type") == "error":
            logging.debug("Published error for %s: %s", message.get("device"), message.get("message"))

    def recent(self, zone: str | None = None, limit: int | None = None) -> list[dict]:
        items = [m for m in self.messages if zone is None or m.get("device") == zone]
        return items[-limit:] if limit else items


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

def create_app(service_config: ServiceConfig, registry: ZoneRegistry | None = None) -> FastAPI:
    """Build the HTTP app. The lifespan starts zones and shuts them down."""
    board = StatusBoard()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        app.state.is_ready = False
        app.state.registry = registry or ZoneRegistry.from_config(service_config, publish=board.publish)
        try:
            await app.state.registry.start()
            app.state.is_ready = True
            logging.info("Service ready. /health will return 200.")
        except Exception:
            logging.exception("Error during zone startup — service degraded; /health returns 503.")

        yield  # Service runs here

        app.state.is_ready = False
        await app.state.registry.shutdown()
        logging.info("FastAPI shutdown complete.")

    app = FastAPI(lifespan=_lifespan)
    app.state.board = board
    app.state.is_ready = False

    @app.get("/health")
    def health(request: Request):
        """Returns 503 until zones are started; 200 when ready."""
        if not request.app.state.is_ready:
            return JSONResponse({"status": "initializing"}, status_code=503)
        return JSONResponse({"status": "ok", "zones": list(request.app.state.registry.zones)})

    @app.post("/zones/{zone}/commands")
    async def zone_command(zone: str, request: Request):
        """
        Run one command in a zone.

        Returns:
            200 + {"status": "ok", ...}     — command accepted/executed
            400 + {"status": "error", ...}  — invalid command or execution failure
            404 + {"status": "error", ...}  — unknown zone
        """
        try:
            message = await request.json()
        except ValueError:
            return JSONResponse({"status": "error", "message": "body is not valid JSON"}, status_code=400)
        try:
            reply = await request.app.state.registry.dispatch(zone, message)
        except UnknownZone:
            return JSONResponse({"status": "error", "message": f"unknown zone {zone!r}"}, status_code=404)
        status_code = 200 if reply.get("status") == "ok" else 400
        return JSONResponse(reply, status_code=status_code)

    @app.get("/zones/{zone}/status")
    def zone_status(zone: str, request: Request):
        try:
            zone_audio = request.app.state.registry.get(zone)
        except UnknownZone:
            return JSONResponse({"status": "error", "message": f"unknown zone {zone!r}"}, status_code=404)
        return JSONResponse({"device": zone, "status": zone_audio.status()})

    @app.get("/messages")
    def messages(request: Request, zone: str | None = None, limit: int | None = None):
        return JSONResponse({"messages": request.app.state.board.recent(zone, limit)})

    return app


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def run(config_path: str | None = None, host: str | None = None, port: int | None = None) -> None:
    """Load config, then serve until interrupted. Config errors exit with status 1."""
    setup_logging()  # MUST be first
    logging.info("=== propfx service starting ===")
    try:
        acquire_pid_lock()
        service_config = build_service_config(load_config(config_path))
        if host:
            service_config.host = host
        if port:
            service_config.port = port
        app = create_app(service_config)
        logging.info("Starting HTTP server on %s:%d.", service_config.host, service_config.port)
        uvicorn.run(app, host=service_config.host, port=service_config.port, log_config=None)
    except Exception:
        logging.exception("Fatal error during startup")
        sys.exit(1)


def main() -> None:
    run()


if __name__ == "__main__":
    main()
