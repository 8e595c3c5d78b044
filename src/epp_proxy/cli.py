"""CLI entry point for epp-proxy."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path

import click
from pydantic import ValidationError

from epp_proxy.config import DEFAULT_REMOTE_PORT, ProxyConfig
from epp_proxy.rewrite import FrameRewriter, load_rewriter
from epp_proxy.server import (
    DEFAULT_LISTEN_HOST,
    DEFAULT_LISTEN_PORT,
    DEFAULT_MAX_CONNECTIONS,
)

_LOG_LEVELS = ["debug", "info", "warning", "error"]


def _remote_options(func):
    """Options shared by every command that talks to the remote server."""
    options = [
        click.option("--remote-server", type=str, required=True, help="Remote EPP server name."),
        click.option(
            "--remote-port",
            type=int,
            default=DEFAULT_REMOTE_PORT,
            show_default=True,
            help="Remote EPP server port.",
        ),
        click.option(
            "--remote-key",
            type=click.Path(exists=True, dir_okay=False),
            help="Private key for the client certificate.",
        ),
        click.option(
            "--remote-cert",
            type=click.Path(exists=True, dir_okay=False),
            help="Client certificate presented to the remote server.",
        ),
        click.option(
            "--ca-file",
            type=click.Path(exists=True, dir_okay=False),
            help="PEM bundle of trusted roots (default: certifi).",
        ),
        click.option("--connect-timeout", type=float, help="Upstream connect deadline (seconds)."),
        click.option("--io-timeout", type=float, help="Per-frame read/write deadline (seconds)."),
        click.option(
            "--rewriter",
            type=str,
            help="Rewrite hooks as 'module:attribute' (default: passthrough).",
        ),
        click.option(
            "--log-level",
            type=click.Choice(_LOG_LEVELS, case_sensitive=False),
            default="info",
            show_default=True,
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_config(
    remote_server: str,
    remote_port: int,
    remote_key: str | None,
    remote_cert: str | None,
    ca_file: str | None,
    connect_timeout: float | None,
    io_timeout: float | None,
) -> ProxyConfig:
    """Validate CLI options into a ProxyConfig.

    Raises:
        click.UsageError: If any option is out of range.
    """
    try:
        return ProxyConfig(
            remote_server=remote_server,
            remote_port=remote_port,
            remote_key=Path(remote_key) if remote_key else None,
            remote_cert=Path(remote_cert) if remote_cert else None,
            ca_file=Path(ca_file) if ca_file else None,
            connect_timeout=connect_timeout,
            io_timeout=io_timeout,
        )
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise click.UsageError(f"Invalid configuration: {errors}") from exc


def _build_rewriter(reference: str | None) -> FrameRewriter:
    if not reference:
        return FrameRewriter()
    try:
        return load_rewriter(reference)
    except ValueError as exc:
        raise click.UsageError(f"--rewriter: {exc}") from exc


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.version_option()
def main() -> None:
    """Machine-in-the-middle relay for EPP with command/response rewriting."""


@main.command()
@click.option(
    "--listen-host", type=str, default=DEFAULT_LISTEN_HOST, show_default=True,
    help="Address to accept clients on.",
)
@click.option(
    "--listen-port", type=int, default=DEFAULT_LISTEN_PORT, show_default=True,
    help="Port to accept clients on.",
)
@click.option(
    "--max-connections", type=click.IntRange(min=1), default=DEFAULT_MAX_CONNECTIONS,
    show_default=True, help="Sessions relayed concurrently.",
)
@_remote_options
def serve(
    listen_host: str,
    listen_port: int,
    max_connections: int,
    remote_server: str,
    remote_port: int,
    remote_key: str | None,
    remote_cert: str | None,
    ca_file: str | None,
    connect_timeout: float | None,
    io_timeout: float | None,
    rewriter: str | None,
    log_level: str,
) -> None:
    """Accept EPP clients and relay them to the remote server."""
    from epp_proxy.server import EPPProxyServer
    from epp_proxy.session import SessionContext

    config = _build_config(
        remote_server, remote_port, remote_key, remote_cert, ca_file, connect_timeout, io_timeout
    )
    hooks = _build_rewriter(rewriter)
    _configure_logging(log_level)

    server = EPPProxyServer(
        SessionContext(config=config, rewriter=hooks),
        host=listen_host,
        port=listen_port,
        max_connections=max_connections,
    )
    try:
        asyncio.run(server.serve_forever())
    except OSError as exc:
        raise click.ClickException(f"Cannot listen on {listen_host}:{listen_port}: {exc}") from exc
    except KeyboardInterrupt:
        click.echo("Shutting down.", err=True)


@main.command()
@_remote_options
def greeting(
    remote_server: str,
    remote_port: int,
    remote_key: str | None,
    remote_cert: str | None,
    ca_file: str | None,
    connect_timeout: float | None,
    io_timeout: float | None,
    rewriter: str | None,
    log_level: str,
) -> None:
    """Connect to the remote server and print its greeting, as a client would see it."""
    config = _build_config(
        remote_server, remote_port, remote_key, remote_cert, ca_file, connect_timeout, io_timeout
    )
    hooks = _build_rewriter(rewriter)
    _configure_logging(log_level)

    from epp_proxy.connector import UpstreamConnectError
    from epp_proxy.framing import FrameReadError
    from epp_proxy.rewrite import HookError

    try:
        frame = asyncio.run(_fetch_greeting(config, hooks))
    except (UpstreamConnectError, FrameReadError, HookError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(frame.decode("utf-8", errors="replace"))


async def _fetch_greeting(config: ProxyConfig, rewriter: FrameRewriter) -> bytes:
    """Open the upstream leg, read the greeting and pass it through the response hook.

    Args:
        config: Relay configuration.
        rewriter: Hooks applied to the greeting.

    Returns:
        The greeting as a relayed client would receive it.
    """
    from epp_proxy.connector import connect_upstream
    from epp_proxy.models import HELLO_FRAME, ClientContext
    from epp_proxy.rewrite import rewrite_response

    async with await connect_upstream(config) as server:
        frame = await server.read()
    client = ClientContext(session_id=str(uuid.uuid4()), peer="cli")
    return await rewrite_response(rewriter, frame, HELLO_FRAME, client)
