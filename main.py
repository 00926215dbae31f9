"""Command-line interface for the MyFinance web front end."""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from myfinance.config import Settings, load_settings, resolve_config_path

logger = logging.getLogger("myfinance.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="MyFinance web front end")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML configuration file (default: $MYFINANCE_CONFIG or config/myfinance.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP front end")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the web server")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the web server (default: 8000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    subparsers.add_parser("check-config", help="Print the effective configuration and exit")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "check-config"}

    global_args: list[str] = []
    if len(args_list) >= 2 and args_list[0] == "--config":
        global_args, args_list = args_list[:2], args_list[2:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*global_args, *args_list])
        if first not in known_commands:
            args_list = ["serve", *args_list]

    return parser.parse_args([*global_args, *args_list])


def _load(config: str | None) -> Settings:
    config_path = resolve_config_path(config) if config else None
    try:
        return load_settings(config_path)
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc


def _serve(
    settings: Settings,
    *,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from myfinance.web import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting MyFinance on %s://%s:%s (upstream %s)", protocol, host, port, settings.api_base_url)

    app = create_app(settings)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _print_settings(settings: Settings, config: str | None) -> None:
    source = Path(config).expanduser() if config else resolve_config_path(None)
    print(f"Configuration file: {source}")
    for key, value in vars(settings.masked()).items():
        print(f"  {key}: {value}")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    settings = _load(args.config)

    if args.command == "serve":
        _serve(
            settings,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "check-config":
        _print_settings(settings, args.config)


if __name__ == "__main__":
    main()
