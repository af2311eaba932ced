"""Command line entry point: ``solagent-forge stdio`` or ``solagent-forge http``."""

import anyio
import click

from mcp.server.fastmcp.utilities.logging import configure_logging

from . import config

LOG_LEVELS = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False)


@click.group()
@click.option("--log-level", type=LOG_LEVELS, default=config.LOG_LEVEL, show_default=True)
@click.pass_context
def cli(ctx: click.Context, log_level: str) -> None:
    """Solana developer tools over MCP."""
    ctx.obj = {"log_level": log_level.upper()}
    configure_logging(ctx.obj["log_level"])


@cli.command()
def stdio() -> None:
    """Serve line-delimited JSON-RPC on stdin/stdout."""
    from .stdio import serve_stdio

    anyio.run(serve_stdio)


@cli.command()
@click.option("--host", default=config.HOST, show_default=True)
@click.option("--port", default=config.PORT, type=int, show_default=True)
@click.pass_context
def http(ctx: click.Context, host: str, port: int) -> None:
    """Serve the tools over HTTP."""
    from .http_server import run_http

    run_http(host=host, port=port, log_level=ctx.obj["log_level"])


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
