"""
propfx CLI entry point.

Registered as a console_scripts entry point in pyproject.toml:
    propfx = "propfx.cli:main"

Subcommands:
    propfx serve                 — Run the playback service (HTTP API + engines)
    propfx check-config          — Validate config.json and list the zones
    propfx send ZONE [COMMAND]   — Send a JSON command to a running service
"""
import argparse
import sys

from propfx.sendcmd import add_send_arguments, run_send


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the `propfx` CLI command."""
    parser = argparse.ArgumentParser(
        prog="propfx",
        description="propfx — mpv-based media zone controller",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # propfx serve
    serve_parser = subparsers.add_parser("serve", help="Run the playback service")
    serve_parser.add_argument("--config", help="Path to config.json (default: ~/.config/propfx/config.json)")
    serve_parser.add_argument("--host", help="HTTP bind address (overrides config)")
    serve_parser.add_argument("--port", type=int, help="HTTP port (overrides config)")
    serve_parser.set_defaults(func=_cmd_serve)

    # propfx check-config
    check_parser = subparsers.add_parser("check-config", help="Validate config.json and list zones")
    check_parser.add_argument("--config", help="Path to config.json")
    check_parser.set_defaults(func=_cmd_check_config)

    # propfx send
    send_parser = subparsers.add_parser("send", help="Send a command to a running service")
    add_send_arguments(send_parser)
    send_parser.set_defaults(func=run_send)

    args = parser.parse_args(argv)
    args.func(args)


def _cmd_serve(args: argparse.Namespace) -> None:
    from propfx.service import run
    run(config_path=args.config, host=args.host, port=args.port)


def _cmd_check_config(args: argparse.Namespace) -> None:
    """Parse the config the same way the service does and print a zone summary."""
    from propfx.config_loader import build_service_config, load_config
    from propfx.errors import ConfigParseError

    try:
        service_config = build_service_config(load_config(args.config))
    except ConfigParseError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    print(f"HTTP: {service_config.host}:{service_config.port}")
    print(f"Engine: {service_config.engine_binary} (sockets in {service_config.socket_dir})")
    for zone in service_config.zones:
        features = [
            name for name, enabled in (
                ("background", zone.background_music),
                ("speech", zone.speech),
                ("effects", zone.sound_effects),
                ("video", zone.video),
            ) if enabled
        ]
        print(f"  {zone.name}: media={zone.media_dir} channels={','.join(zone.channel_map)} "
              f"features={','.join(features)}")
    if not service_config.zones:
        print("  (no zones configured)")


if __name__ == "__main__":
    main()
