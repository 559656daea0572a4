"""medlink command line interface.

Operator tooling for checking the link to the backend from a field terminal.

Usage:
    medlink status                      Probe backend health and show status
    medlink request GET /patients       Send one resilient request
    medlink listen wss://host/chat      Print duplex channel messages
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path

import requests
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from medlink import __version__
from medlink.config import ResilienceConfig, load_config
from medlink.errors import ConfigurationError, MedlinkError
from medlink.reliability.context import ResilienceContext
from medlink.reliability.duplex import DuplexState, Message
from medlink.reliability.transport import RequestDescriptor
from medlink.utils.logging import setup_logging

console = Console()
logger = logging.getLogger(__name__)


def _load(args: argparse.Namespace) -> ResilienceConfig:
    config = load_config(Path(args.config).expanduser() if args.config else None)
    if args.base_url:
        try:
            config = ResilienceConfig.model_validate({**config.model_dump(), "base_url": args.base_url})
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid --base-url {args.base_url!r}: must be an http(s) URL",
                field="base_url",
                cause=e,
            ) from e
    return config


def _flag(value: bool, yes: str = "yes", no: str = "no") -> Text:
    return Text(yes, style="green") if value else Text(no, style="red")


def cmd_status(args: argparse.Namespace) -> int:
    """Run one immediate health probe and print the connection status.

    Returns:
        0 if the backend is healthy, 1 otherwise.
    """
    config = _load(args)
    ctx = ResilienceContext(config)
    try:
        healthy = ctx.health_monitor.check_now()
        status = ctx.get_status()

        table = Table(title="Connection Status")
        table.add_column("Metric", style="bold")
        table.add_column("Value")
        table.add_row("Backend", config.base_url)
        table.add_row("Online", _flag(status.is_online))
        table.add_row("Backend healthy", _flag(status.is_backend_healthy))
        latency = ctx.health_monitor.last_latency_ms
        table.add_row("Probe latency", f"{latency:.0f} ms" if latency is not None else "-")
        table.add_row("Queued requests", str(status.queued_request_count))
        console.print(table)

        settings = Table(title="Retry Policy")
        settings.add_column("Setting", style="bold")
        settings.add_column("Value")
        settings.add_row("Max retries", str(config.max_retries))
        settings.add_row("Retry base delay", f"{config.retry_base_delay:g}s")
        settings.add_row("Health interval", f"{config.health_check_interval:g}s")
        settings.add_row("Reconnect window", f"{config.ws_reconnect_base:g}s - {config.ws_reconnect_max:g}s")
        settings.add_row("Reconnect attempts", str(config.ws_max_retries))
        console.print(settings)
        return 0 if healthy else 1
    finally:
        ctx.close()


def cmd_request(args: argparse.Namespace) -> int:
    """Send one request through the resilient client and print the response."""
    config = _load(args)
    body = None
    if args.data:
        try:
            body = json.loads(args.data)
        except json.JSONDecodeError as e:
            console.print(f"[red]--data is not valid JSON: {e}[/red]")
            return 2

    ctx = ResilienceContext(config)
    if args.token:
        ctx.set_tokens(args.token, args.refresh_token)
    try:
        descriptor = RequestDescriptor(args.method, args.path, json=body)
        try:
            response = ctx.client.request(descriptor)
        except requests.RequestException as e:
            status = e.response.status_code if e.response is not None else None
            label = f"HTTP {status}" if status is not None else "network error"
            console.print(f"[red]{descriptor.describe()} failed ({label}): {e}[/red]")
            return 1

        console.print(f"[green]{response.status_code}[/green] {descriptor.describe()}")
        content_type = response.headers.get("Content-Type", "")
        if "application/json" in content_type:
            console.print_json(response.text)
        elif response.text:
            console.print(response.text)
        return 0
    finally:
        ctx.close()


def cmd_listen(args: argparse.Namespace) -> int:
    """Open a duplex channel and print inbound messages until interrupted."""
    config = _load(args)
    ctx = ResilienceContext(config)
    if args.token:
        ctx.set_tokens(args.token, args.refresh_token)

    stopped = threading.Event()

    def on_message(message: Message) -> None:
        text = message.decode("utf-8", "replace") if isinstance(message, bytes) else message
        console.print(text)

    channel = ctx.create_duplex(
        args.url,
        protocols=args.protocol or None,
        on_message=on_message,
        on_open=lambda: console.print("[green]Connected[/green]"),
        on_close=lambda: console.print("[yellow]Disconnected[/yellow]"),
        authenticated=bool(args.token),
    )

    previous = signal.signal(signal.SIGINT, lambda *_: stopped.set())
    try:
        channel.connect()
        while not stopped.wait(1.0):
            if channel.state is DuplexState.CLOSED_RETRYING and not channel.reconnect_pending:
                console.print("[red]Gave up reconnecting.[/red]")
                return 1
        return 0
    finally:
        signal.signal(signal.SIGINT, previous)
        ctx.close()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="medlink",
        description="medlink - resilient API access for field medical clients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  medlink status                                 Check backend health
  medlink request GET /patients                  Fetch the patient list
  medlink request POST /reports --data '{...}'   Submit a report
  medlink listen wss://host/api/chat --token T   Follow a chat channel
        """,
    )
    parser.add_argument("--version", action="version", version=f"medlink {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="emit JSON log lines")
    parser.add_argument("--config", help="path to config.json (default ~/.medlink/config.json)")
    parser.add_argument("--base-url", help="override the backend base URL")

    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="probe backend health")
    status_parser.set_defaults(func=cmd_status)

    request_parser = subparsers.add_parser("request", help="send one resilient request")
    request_parser.add_argument("method", type=str.upper, help="HTTP method")
    request_parser.add_argument("path", help="path relative to the base URL")
    request_parser.add_argument("--data", help="JSON request body")
    request_parser.add_argument("--token", help="access token")
    request_parser.add_argument("--refresh-token", help="refresh token")
    request_parser.set_defaults(func=cmd_request)

    listen_parser = subparsers.add_parser("listen", help="print duplex channel messages")
    listen_parser.add_argument("url", help="ws:// or wss:// URL")
    listen_parser.add_argument(
        "--protocol", action="append", help="subprotocol (repeatable)"
    )
    listen_parser.add_argument("--token", help="access token for the handshake")
    listen_parser.add_argument("--refresh-token", help="refresh token")
    listen_parser.set_defaults(func=cmd_listen)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        argv: Command-line arguments. Uses sys.argv if None.

    Returns:
        Exit code.
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.json_logs)

    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted.[/dim]")
        return 130
    except MedlinkError as e:
        if args.json_logs:
            console.print_json(data=e.to_dict())
        else:
            console.print(Panel(f"[red]{e.message}[/red]", title=e.code.value))
        logger.debug("medlink error", exc_info=True)
        return 1


def run() -> None:
    """Entry point that exits with the command's status."""
    sys.exit(main())


if __name__ == "__main__":
    run()
