"""asyncio stream adapter for epp-proxy.

Wraps an ``asyncio.StreamReader``/``StreamWriter`` pair, plain TCP on the
client side or TLS on the server side, and exposes whole EPP frames
through the FrameAdapter protocol.
"""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType

from epp_proxy.framing import (
    MAX_FRAME_SIZE,
    FrameReadError,
    FrameWriteError,
    read_frame,
    write_frame,
)

logger = logging.getLogger(__name__)


def format_peer(writer: asyncio.StreamWriter) -> str:
    """Render the remote address of a stream as ``host:port``.

    Args:
        writer: The stream whose peer to describe.

    Returns:
        ``"host:port"`` (IPv6 hosts bracketed), or ``"unknown"``.
    """
    peername = writer.get_extra_info("peername")
    if not peername:
        return "unknown"
    host, port = peername[0], peername[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class StreamFrameAdapter:
    """Frame adapter over an asyncio stream pair.

    Args:
        reader: Stream to read frames from.
        writer: Stream to write frames to.
        peer: Printable peer label for log messages. Derived from the
            socket when omitted.
        io_timeout: Optional deadline in seconds for each frame read or
            write. None blocks indefinitely.
        max_frame_size: Largest inbound frame accepted.

    Example:
        async with StreamFrameAdapter(reader, writer) as adapter:
            command = await adapter.read()
            await adapter.write(response)
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        peer: str | None = None,
        io_timeout: float | None = None,
        max_frame_size: int = MAX_FRAME_SIZE,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._peer = peer or format_peer(writer)
        self._io_timeout = io_timeout
        self._max_frame_size = max_frame_size
        self._closed = False

    @property
    def peer(self) -> str:
        """Printable address of the remote end."""
        return self._peer

    async def __aenter__(self) -> StreamFrameAdapter:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def read(self) -> bytes:
        """Read the next frame from the peer.

        Returns:
            The XML payload.

        Raises:
            PeerClosedError: The peer closed cleanly between frames.
            FrameReadError: The adapter is closed, the read timed out,
                or the frame was malformed.
        """
        if self._closed:
            raise FrameReadError(f"adapter for {self._peer} is closed")
        try:
            async with asyncio.timeout(self._io_timeout):
                return await read_frame(self._reader, self._max_frame_size)
        except TimeoutError as exc:
            raise FrameReadError(
                f"timed out after {self._io_timeout}s waiting for a frame"
            ) from exc

    async def write(self, frame: bytes) -> None:
        """Write a frame to the peer.

        Args:
            frame: The XML payload.

        Raises:
            FrameWriteError: The adapter is closed, the write timed out,
                or the connection failed.
        """
        if self._closed:
            raise FrameWriteError(f"adapter for {self._peer} is closed")
        try:
            async with asyncio.timeout(self._io_timeout):
                await write_frame(self._writer, frame)
        except TimeoutError as exc:
            raise FrameWriteError(
                f"timed out after {self._io_timeout}s writing a frame"
            ) from exc

    async def close(self) -> None:
        """Close the underlying stream. Safe to call multiple times."""
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            logger.debug("Error while closing stream to %s (suppressed)", self._peer, exc_info=True)
