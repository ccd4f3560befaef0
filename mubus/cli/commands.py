"""CLI commands for mubus.

`mubus server` owns the bus name and serves requests until quit or signalled;
`mubus send` is a small client that sends one request and prints the reply.
"""

import asyncio
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console

from mubus import __logo__, __version__
from mubus.cli.shared.logging_utils import configure_console_logging, ensure_rotating_log_file
from mubus.protocol.sexp import compose_error, to_string
from mubus.utils.exceptions import MuBusError

app = typer.Typer(
    name="mubus",
    help=f"{__logo__} mubus - mail index command server",
    no_args_is_help=True,
)

console = Console()


def _load_config(config_path: Path | None, suffix: str | None, socket_dir: Path | None):
    from mubus.config.access import get_config

    config = get_config(config_path=config_path).model_copy(deep=True)
    if suffix is not None:
        config.bus.suffix = suffix
    if socket_dir is not None:
        config.bus.socket_dir = str(socket_dir)
    return config


@app.command()
def version():
    """Show the mubus version."""
    console.print(f"{__logo__} mubus v{__version__}")


@app.command()
def server(
    suffix: str = typer.Option(None, "--suffix", "-s", help="Alphanumeric bus name suffix"),
    maildir: Path = typer.Option(None, "--maildir", "-m", help="Maildir root to index"),
    socket_dir: Path = typer.Option(None, "--socket-dir", help="Directory for bus sockets"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to the console"),
):
    """Serve the mail store on the message bus until quit or signalled."""
    from mubus.server.lifecycle import run_server

    config = _load_config(config_path, suffix, socket_dir)
    if maildir is not None:
        config.store.maildir = str(maildir)

    configure_console_logging(verbose)
    log_path = ensure_rotating_log_file("server", level="DEBUG" if verbose else config.logging.level)
    console.print(f"[dim]Logs: {log_path}[/dim]")

    try:
        service = asyncio.run(run_server(config))
    except MuBusError as e:
        logger.error("Server startup failed: {}", e)
        console.print(to_string(compose_error(e.code, e.message)), style="red", markup=False)
        raise typer.Exit(1)
    console.print(f"{__logo__} {service.bus_name} stopped ({service.stop_reason or 'loop exited'})")


@app.command()
def send(
    expression: str = typer.Argument(..., help='Request, e.g. \'(find :query "subject:hello")\''),
    suffix: str = typer.Option(None, "--suffix", "-s", help="Alphanumeric bus name suffix"),
    socket_dir: Path = typer.Option(None, "--socket-dir", help="Directory for bus sockets"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
    timeout: float = typer.Option(30.0, "--timeout", "-t", help="Seconds to wait for the reply"),
):
    """Send one request to a running server and print the reply."""
    from mubus.bus.unix import SocketBusClient
    from mubus.server.lifecycle import construct_bus_name

    logger.disable("mubus")
    config = _load_config(config_path, suffix, socket_dir)

    async def _send() -> str:
        name = construct_bus_name(config.bus.base_name, config.bus.suffix)
        client = SocketBusClient(
            config.socket_dir_path,
            name,
            config.bus.object_path,
            on_notification=lambda payload: console.print(payload, style="dim", markup=False),
        )
        async with client:
            return await client.call(expression, timeout=timeout)

    try:
        reply = asyncio.run(_send())
    except MuBusError as e:
        console.print(to_string(compose_error(e.code, e.message)), style="red", markup=False)
        raise typer.Exit(1)
    except asyncio.TimeoutError:
        console.print(f"[red]No reply within {timeout}s[/red]")
        raise typer.Exit(1)
    console.print(reply, markup=False, highlight=False)


if __name__ == "__main__":
    app()
