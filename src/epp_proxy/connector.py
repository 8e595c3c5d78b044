"""Upstream TLS connector for epp-proxy.

Opens the server-facing leg of a session: a verified TLS connection to
the configured EPP server, optionally presenting a client certificate.
No retries, no pooling. Every session opens a fresh connection.
"""

from __future__ import annotations

import asyncio
import logging
import ssl

import certifi

from epp_proxy.adapters.stream import StreamFrameAdapter
from epp_proxy.config import ProxyConfig

logger = logging.getLogger(__name__)


class UpstreamConnectError(Exception):
    """The upstream TLS connection could not be established.

    Args:
        host: Remote server name.
        port: Remote server port.
        reason: Underlying socket or TLS error text.
    """

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"connection to [{host}]:{port} failed ({reason})")
        self.host = host
        self.port = port
        self.reason = reason


def build_ssl_context(config: ProxyConfig) -> ssl.SSLContext:
    """Build the client-side TLS context for the upstream leg.

    Peer verification and hostname checking are always on. The client
    certificate is loaded only when both key and certificate are set.

    Args:
        config: Relay configuration.

    Returns:
        A verifying client SSLContext.

    Raises:
        UpstreamConnectError: If the trust roots or client certificate
            cannot be loaded.
    """
    ca_file = str(config.ca_file) if config.ca_file else certifi.where()
    try:
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=ca_file)
    except OSError as exc:
        raise UpstreamConnectError(
            config.remote_server,
            config.remote_port,
            f"cannot load trusted certificates from {ca_file}: {exc}",
        ) from exc
    context.verify_mode = ssl.CERT_REQUIRED
    context.check_hostname = True

    if config.mutual_tls:
        try:
            context.load_cert_chain(
                certfile=str(config.remote_cert), keyfile=str(config.remote_key)
            )
        except OSError as exc:
            raise UpstreamConnectError(
                config.remote_server,
                config.remote_port,
                f"cannot load client certificate: {exc}",
            ) from exc
    elif config.remote_key is not None or config.remote_cert is not None:
        logger.warning(
            "Only one of remote_key/remote_cert is set; connecting to %s without "
            "a client certificate",
            config.remote_address,
        )
    return context


async def connect_upstream(config: ProxyConfig) -> StreamFrameAdapter:
    """Open the TLS connection to the real EPP server.

    Args:
        config: Relay configuration.

    Returns:
        A frame adapter for the server-facing leg.

    Raises:
        UpstreamConnectError: On any socket, TLS or timeout failure.
    """
    context = build_ssl_context(config)
    deadline = asyncio.timeout(config.connect_timeout)
    try:
        async with deadline:
            reader, writer = await asyncio.open_connection(
                config.remote_server,
                config.remote_port,
                ssl=context,
                server_hostname=config.remote_server,
            )
    except ssl.SSLError as exc:
        raise UpstreamConnectError(
            config.remote_server, config.remote_port, f"SSL error={exc}"
        ) from exc
    except OSError as exc:
        # A kernel ETIMEDOUT is a TimeoutError too.
        if deadline.expired():
            reason = f"timed out after {config.connect_timeout}s"
        else:
            reason = f"error={exc}"
        raise UpstreamConnectError(config.remote_server, config.remote_port, reason) from exc

    logger.debug("Connected to %s", config.remote_address)
    return StreamFrameAdapter(
        reader,
        writer,
        peer=config.remote_address,
        io_timeout=config.io_timeout,
        max_frame_size=config.max_frame_size,
    )
