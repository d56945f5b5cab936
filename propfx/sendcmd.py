"""
propfx.sendcmd — Send zone commands to a running propfx service.

Usage:
    python -m propfx.sendcmd lobby '{"command": "playSpeech", "file": "welcome.mp3"}'
    cat cues.jsonl | python -m propfx.sendcmd lobby

Options:
    --host HOST     Service address (default: 127.0.0.1)
    --port PORT     Service port (default: 5060)
    --quiet         Suppress reply output

Each reply is printed as one JSON line. Exit status is 1 if any command failed.
"""
import argparse
import json
import sys
import urllib.error
import urllib.request


def post_command(zone: str, message: dict, host: str = "127.0.0.1", port: int = 5060) -> dict:
    """POST one command to the service and return its JSON reply."""
    url = f"http://{host}:{port}/zones/{zone}/commands"
    body = json.dumps(message).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=body,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=10) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        # 400/404 carry a JSON error reply
        try:
            return json.loads(exc.read().decode("utf-8"))
        except ValueError:
            return {"status": "error", "message": f"HTTP {exc.code}"}


def send_lines(zone: str, message: str | None, host: str = "127.0.0.1", port: int = 5060,
               quiet: bool = False) -> bool:
    """Send one command, or every non-empty stdin line when message is None. True if all succeeded."""
    lines = [message] if message is not None else (line for line in sys.stdin)
    ok = True
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except ValueError as exc:
            print(f"[propfx] Invalid JSON: {exc}", file=sys.stderr)
            ok = False
            continue
        try:
            reply = post_command(zone, payload, host=host, port=port)
        except urllib.error.URLError:
            print(
                f"[propfx] Service not reachable on {host}:{port}. "
                "Is it running? Start with: propfx serve",
                file=sys.stderr,
            )
            return False
        if reply.get("status") != "ok":
            ok = False
        if not quiet:
            print(json.dumps(reply), flush=True)
    return ok


def add_send_arguments(parser: argparse.ArgumentParser) -> None:
    """Arguments shared by `propfx send` and `python -m propfx.sendcmd`."""
    parser.add_argument("zone", help="Target zone name")
    parser.add_argument("message", nargs="?", help="JSON command; reads JSON lines from stdin if omitted")
    parser.add_argument("--host", default="127.0.0.1", help="Service address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=5060, help="Service port (default: 5060)")
    parser.add_argument("--quiet", action="store_true", help="Suppress reply output")


def run_send(args: argparse.Namespace) -> None:
    """Send what the parsed arguments describe; exit 1 if any command failed."""
    if not send_lines(args.zone, args.message, host=args.host, port=args.port, quiet=args.quiet):
        sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="propfx.sendcmd",
        description="Send JSON commands to a propfx zone",
    )
    add_send_arguments(parser)
    run_send(parser.parse_args(argv))


if __name__ == "__main__":
    main()
