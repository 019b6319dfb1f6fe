"""CLI entry point for knock-relay."""

import asyncio
from pathlib import Path

import click

from knockrelay import __version__
from knockrelay.config import load_config
from knockrelay.logging import setup_logging


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """knock-relay - Remote control a desktop from your phone."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


@main.command()
@click.option("--host", default=None, help="Bind address (overrides config).")
@click.option("--port", type=int, default=None, help="Port (overrides config).")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the pairing relay."""
    from knockrelay.server import RelayServer

    config = ctx.obj["config"]
    host = host or config.bind_address
    port = port if port is not None else config.port

    async def _serve():
        server = RelayServer(config.relay)
        try:
            await server.start(host, port)
            click.echo(f"Relay listening on {host}:{server.get_port()}{config.relay.path}")
            click.echo("Press Ctrl+C to stop")
            await asyncio.Event().wait()
        finally:
            await server.close()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo("\nShutting down...")


@main.command()
@click.option("--token", default=None, help="Use this token instead of a random one.")
@click.option(
    "--png",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also save the QR code as PNG.",
)
def pair(token: str | None, png: Path | None) -> None:
    """Show a pairing token and its QR code."""
    from knockrelay.pairing import TokenQr, generate_token

    token = token or generate_token()
    qr = TokenQr(token)
    click.echo(qr.to_terminal())
    click.echo(f"Token: {token}")
    if png is not None:
        qr.to_png(str(png))
        click.echo(f"QR code saved to {png}")


@main.command()
@click.option("--token", required=True, help="Pairing token.")
@click.option("--url", default=None, help="Relay URL (overrides config).")
@click.pass_context
def listen(ctx: click.Context, token: str, url: str | None) -> None:
    """Join as receiver and print incoming signals."""
    from knockrelay.client import RelayClient
    from knockrelay.protocol import Role

    config = ctx.obj["config"]

    async def _listen():
        client = RelayClient(
            url or config.client.url,
            token,
            Role.DESKTOP,
            ping_interval=config.client.ping_interval,
            on_status=lambda s: click.echo(
                f"Controller joined: {'yes' if s.web else 'no'}"
            ),
            on_signal=lambda name: click.echo(f"Received {name}"),
            on_error=lambda message: click.echo(f"Server error: {message}", err=True),
        )
        await client.connect()
        try:
            await client.wait_closed()
        finally:
            await client.disconnect()

    try:
        asyncio.run(_listen())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@main.command()
@click.argument("name")
@click.option("--token", required=True, help="Pairing token.")
@click.option("--url", default=None, help="Relay URL (overrides config).")
@click.option("--wait", type=float, default=0.5, help="Seconds to wait for a relay error.")
@click.pass_context
def send(ctx: click.Context, name: str, token: str, url: str | None, wait: float) -> None:
    """Join as controller and send one signal."""
    from knockrelay.client import RelayClient
    from knockrelay.protocol import Role

    config = ctx.obj["config"]
    errors: list[str] = []

    async def _send() -> bool:
        client = RelayClient(
            url or config.client.url,
            token,
            Role.WEB,
            on_error=errors.append,
        )
        await client.connect()
        try:
            sent = await client.send_signal(name)
            await asyncio.sleep(wait)
            return sent
        finally:
            await client.disconnect()

    try:
        sent = asyncio.run(_send())
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if not sent or errors:
        for message in errors:
            click.echo(f"Server error: {message}", err=True)
        raise SystemExit(1)
    click.echo(f"Sent {name}")


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"knock-relay version {__version__}")


if __name__ == "__main__":
    main()
