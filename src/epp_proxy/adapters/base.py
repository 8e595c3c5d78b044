"""Frame adapter protocol for epp-proxy.

Both legs of a session (client-facing and server-facing) implement this
protocol. The session engine interacts only with this interface, it
never sees sockets, TLS objects or the length-prefix encoding.
"""

from typing import Protocol


class FrameAdapter(Protocol):
    """Interface for one leg of a relay session.

    The engine calls read() to receive the next complete frame from one
    side and write() to deliver a frame to it. close() releases the
    underlying connection.
    """

    @property
    def peer(self) -> str:
        """Printable address of the remote end."""
        ...

    async def read(self) -> bytes:
        """Read the next frame from this side of the connection.

        Returns:
            The XML payload of the next frame.

        Raises:
            PeerClosedError: If the peer closed cleanly between frames.
            FrameReadError: If the connection is broken or the frame is malformed.
        """
        ...

    async def write(self, frame: bytes) -> None:
        """Write a frame to this side of the connection.

        Args:
            frame: The XML payload to send.

        Raises:
            FrameWriteError: If the connection is closed or broken.
        """
        ...

    async def close(self) -> None:
        """Shut down this side of the connection. Safe to call multiple times."""
        ...
