"""
CLI entrypoint for the MtGox stream client.
"""
import asyncio
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.pretty import pprint

from mtgox_stream.client.handshake import negotiate_session
from mtgox_stream.client.stream_client import MtGoxStream
from mtgox_stream.client.visualizer import Visualizer
from mtgox_stream.shared.config import settings
from mtgox_stream.shared.errors import HandshakeError

app = typer.Typer(help="MtGox streaming API client")
console = Console()


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


@app.callback()
def main(log_level: str = typer.Option(settings.LOG_LEVEL, help="Log level for stderr output")):
    configure_logging(log_level)


async def _print_stream(timeout: float, secure: bool) -> int:
    outcome = {"code": 0}

    def on_message(payload):
        pprint(payload, console=console, expand_all=True)

    def on_error(message: str):
        console.print(f"[red bold]Error:[/] {message}")
        outcome["code"] = 1

    def on_disconnect():
        console.print("[yellow bold]Disconnected[/]")
        outcome["code"] = 1

    handle = MtGoxStream(on_message, on_error, on_disconnect, secure=secure).start()
    if not await handle.wait(timeout or None):
        await handle.aclose()
    return outcome["code"]


@app.command()
def stream(
    timeout: float = typer.Option(0.0, help="Stop after this many seconds (0 = run until the server goes away)"),
    secure: bool = typer.Option(settings.SECURE, "--secure/--no-secure", help="Use HTTPS and WSS"),
    dashboard: bool = typer.Option(False, "--dashboard", help="Show the live Rich dashboard instead of printing messages"),
):
    """Stream messages and pretty-print each one."""
    try:
        if dashboard:
            ok = asyncio.run(Visualizer(MtGoxStream(secure=secure)).run(timeout))
            code = 0 if ok else 1
        else:
            code = asyncio.run(_print_stream(timeout, secure))
    except KeyboardInterrupt:
        code = 0
    raise typer.Exit(code)


@app.command()
def session(
    secure: bool = typer.Option(settings.SECURE, "--secure/--no-secure", help="Use HTTPS"),
):
    """Perform only the Socket.IO handshake and print the negotiated session."""
    try:
        result = asyncio.run(negotiate_session(settings.HOST, secure, port=settings.PORT, timeout=settings.HANDSHAKE_TIMEOUT_S))
    except HandshakeError as e:
        console.print(f"[red bold]Error:[/] {e}")
        raise typer.Exit(1)
    console.print_json(result.model_dump_json())


if __name__ == "__main__":
    app()
