"""Connection server for epp-proxy.

Accepts client TCP connections and runs one relay session per
connection as its own asyncio task, with an upper bound on how many
sessions run at once. A failing session never affects the listener or
any other session.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import uuid

from epp_proxy.adapters.stream import StreamFrameAdapter, format_peer
from epp_proxy.session import SessionContext, run_session

logger = logging.getLogger(__name__)

DEFAULT_LISTEN_HOST = "127.0.0.1"
DEFAULT_LISTEN_PORT = 7000
DEFAULT_MAX_CONNECTIONS = 50


class EPPProxyServer:
    """Listening side of the relay.

    Args:
        context: Session dependencies (config, rewriter, connector).
        host: Address to listen on.
        port: Port to listen on (0 picks a free port).
        max_connections: Sessions allowed to run concurrently. Further
            clients are accepted but wait for a free slot.

    Example:
        >>> server = EPPProxyServer(SessionContext(config=config), port=7000)
        >>> await server.serve_forever()
    """

    def __init__(
        self,
        context: SessionContext,
        host: str = DEFAULT_LISTEN_HOST,
        port: int = DEFAULT_LISTEN_PORT,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
    ) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self._context = context
        self._host = host
        self._port = port
        self._slots = asyncio.Semaphore(max_connections)
        self._server: asyncio.Server | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def sockets(self) -> tuple[socket.socket, ...]:
        """Listening sockets (empty before start())."""
        if self._server is None:
            return ()
        return tuple(self._server.sockets)

    @property
    def active_sessions(self) -> int:
        """Number of connections currently being handled."""
        return len(self._tasks)

    async def start(self) -> asyncio.Server:
        """Bind the listening socket and begin accepting connections.

        Returns:
            The underlying listening server.
        """
        if self._server is not None:
            return self._server
        server = await asyncio.start_server(self._on_connect, self._host, self._port)
        self._server = server
        for sock in server.sockets:
            logger.info(
                "Listening on %s, relaying to %s",
                sock.getsockname()[:2],
                self._context.config.remote_address,
            )
        return server

    async def serve_forever(self) -> None:
        """Start (if needed) and accept connections until cancelled."""
        server = await self.start()
        try:
            await server.serve_forever()
        finally:
            await self.close()

    async def close(self) -> None:
        """Stop listening and cancel every running session."""
        server, self._server = self._server, None
        if server is not None:
            server.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        # wait_closed() also waits for open client connections (3.12+).
        if server is not None:
            await server.wait_closed()

    def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.create_task(self._handle(reader, writer))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Run one session, containing any failure to this connection."""
        config = self._context.config
        client = StreamFrameAdapter(
            reader,
            writer,
            peer=format_peer(writer),
            io_timeout=config.io_timeout,
            max_frame_size=config.max_frame_size,
        )
        session_id = str(uuid.uuid4())
        try:
            async with self._slots:
                await run_session(client, self._context, session_id=session_id)
        except Exception:
            logger.exception("Session %s: unexpected failure", session_id)
        finally:
            await client.close()
