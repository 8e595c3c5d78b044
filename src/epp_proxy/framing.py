"""EPP frame encoding over asyncio streams.

Every EPP data unit is a 4-byte big-endian unsigned integer holding the
total frame length (header included), followed by the XML document
(RFC 5734 section 4).
"""

from __future__ import annotations

import asyncio
import struct

HEADER_SIZE = 4
MIN_FRAME_SIZE = HEADER_SIZE + 1
MAX_FRAME_SIZE = 10 * 1024 * 1024

_HEADER = struct.Struct("!I")


class FrameError(Exception):
    """Base class for frame channel errors."""


class FrameReadError(FrameError):
    """A complete frame could not be read from the stream."""


class PeerClosedError(FrameReadError):
    """The peer closed the stream cleanly, before any byte of a new frame."""


class FrameSizeError(FrameReadError):
    """The length header is outside the accepted range."""


class FrameWriteError(FrameError):
    """A frame could not be written to the stream."""


def encode_frame(frame: bytes) -> bytes:
    """Prefix a frame payload with its length header.

    Args:
        frame: The XML payload.

    Returns:
        Header and payload, ready for the wire.
    """
    return _HEADER.pack(HEADER_SIZE + len(frame)) + frame


async def read_frame(
    reader: asyncio.StreamReader,
    max_frame_size: int = MAX_FRAME_SIZE,
) -> bytes:
    """Read one complete frame from the stream.

    Args:
        reader: Stream to read from.
        max_frame_size: Largest total length accepted.

    Returns:
        The XML payload, without the length header.

    Raises:
        PeerClosedError: The stream ended at a frame boundary.
        FrameSizeError: The header announced an invalid length.
        FrameReadError: Short read or I/O error.
    """
    try:
        header = await reader.readexactly(HEADER_SIZE)
    except asyncio.IncompleteReadError as exc:
        if not exc.partial:
            raise PeerClosedError("connection closed by peer") from exc
        raise FrameReadError(
            f"connection closed after {len(exc.partial)} of {HEADER_SIZE} header bytes"
        ) from exc
    except OSError as exc:
        raise FrameReadError(f"error reading frame header: {exc}") from exc

    (total_length,) = _HEADER.unpack(header)
    if total_length < MIN_FRAME_SIZE:
        raise FrameSizeError(f"frame too small: {total_length} bytes")
    if total_length > max_frame_size:
        raise FrameSizeError(
            f"frame too large: {total_length} bytes (maximum {max_frame_size})"
        )

    try:
        return await reader.readexactly(total_length - HEADER_SIZE)
    except asyncio.IncompleteReadError as exc:
        raise FrameReadError(
            f"connection closed after {len(exc.partial)} of "
            f"{total_length - HEADER_SIZE} payload bytes"
        ) from exc
    except OSError as exc:
        raise FrameReadError(f"error reading frame payload: {exc}") from exc


async def write_frame(writer: asyncio.StreamWriter, frame: bytes) -> None:
    """Write one frame and wait until it is flushed.

    Args:
        writer: Stream to write to.
        frame: The XML payload.

    Raises:
        FrameWriteError: The stream is closing or the write failed.
    """
    if writer.is_closing():
        raise FrameWriteError("stream is closed")
    try:
        writer.write(encode_frame(frame))
        await writer.drain()
    except OSError as exc:
        raise FrameWriteError(f"error writing frame: {exc}") from exc
