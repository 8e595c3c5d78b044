"""Relay configuration for epp-proxy.

A single frozen ProxyConfig is built once at startup and shared,
read-only, by every session and by the upstream connector.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat

from epp_proxy.framing import MAX_FRAME_SIZE, MIN_FRAME_SIZE

DEFAULT_REMOTE_PORT = 700


class ProxyConfig(BaseModel):
    """Upstream endpoint, TLS material and I/O limits.

    Args:
        remote_server: Hostname or address of the real EPP server.
        remote_port: TCP port of the real EPP server.
        remote_key: Private key presented to the server for mutual TLS.
        remote_cert: Certificate presented to the server for mutual TLS.
        ca_file: PEM bundle of trusted roots. None uses certifi's bundle.
        io_timeout: Per-frame read/write deadline in seconds. None waits
            indefinitely.
        connect_timeout: Deadline for the upstream TCP and TLS handshake.
            None waits indefinitely.
        max_frame_size: Largest frame accepted from either peer.
    """

    model_config = ConfigDict(frozen=True)

    remote_server: str = Field(min_length=1)
    remote_port: int = Field(default=DEFAULT_REMOTE_PORT, ge=1, le=65535)
    remote_key: Path | None = None
    remote_cert: Path | None = None
    ca_file: Path | None = None
    io_timeout: PositiveFloat | None = None
    connect_timeout: PositiveFloat | None = None
    max_frame_size: int = Field(default=MAX_FRAME_SIZE, ge=MIN_FRAME_SIZE)

    @property
    def mutual_tls(self) -> bool:
        """True when both a client key and certificate are configured."""
        return self.remote_key is not None and self.remote_cert is not None

    @property
    def remote_address(self) -> str:
        """The upstream endpoint as ``[host]:port``."""
        return f"[{self.remote_server}]:{self.remote_port}"
