"""Session engine for epp-proxy.

Drives one client connection end to end: open the upstream TLS leg,
relay the server greeting, then alternate command/response pairs
through the rewrite hooks until either side fails or the client
disconnects. Every failure ends the whole session. Nothing is retried.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from epp_proxy.adapters.base import FrameAdapter
from epp_proxy.config import ProxyConfig
from epp_proxy.connector import UpstreamConnectError, connect_upstream
from epp_proxy.framing import FrameReadError, FrameWriteError, PeerClosedError
from epp_proxy.inspection import describe_frame
from epp_proxy.models import (
    HELLO_FRAME,
    ClientContext,
    CloseReason,
    Direction,
    SessionResult,
    SessionState,
)
from epp_proxy.rewrite import FrameRewriter, HookError, rewrite_command, rewrite_response

logger = logging.getLogger(__name__)

Connector = Callable[[ProxyConfig], Awaitable[FrameAdapter]]


@dataclass
class SessionContext:
    """Dependencies and callbacks shared by every session.

    Args:
        config: Relay configuration (read-only, shared).
        rewriter: Command/response rewrite hooks.
        connector: Opens the server-facing leg. Must raise
            UpstreamConnectError on failure.
        on_state_change: Called on every state transition.
    """

    config: ProxyConfig
    rewriter: FrameRewriter = field(default_factory=FrameRewriter)
    connector: Connector = connect_upstream
    on_state_change: Callable[[ClientContext, SessionState], None] | None = None


class RelaySession:
    """One client connection and its paired upstream connection.

    Args:
        client: The client-facing frame adapter (already accepted).
        context: Shared session dependencies.
        session_id: Optional ID; a UUID is generated when omitted.

    Example:
        >>> result = await RelaySession(client_adapter, context).run()
        >>> result.reason
        <CloseReason.CLIENT_DISCONNECTED: 'client_disconnected'>
    """

    def __init__(
        self,
        client: FrameAdapter,
        context: SessionContext,
        session_id: str | None = None,
    ) -> None:
        self._client = client
        self._server: FrameAdapter | None = None
        self._context = context
        self._client_ctx = ClientContext(
            session_id=session_id or str(uuid.uuid4()),
            peer=client.peer,
        )
        self._state = SessionState.CONNECTING
        self._exchanges = 0

    @property
    def state(self) -> SessionState:
        """Current state of the session."""
        return self._state

    @property
    def client_context(self) -> ClientContext:
        """The read-only context passed to rewrite hooks."""
        return self._client_ctx

    async def run(self) -> SessionResult:
        """Run the session to completion.

        Returns:
            The session outcome. Both adapters are closed on return.
        """
        sid = self._client_ctx.session_id
        logger.info("Session %s: client %s connected", sid, self._client_ctx.peer)
        try:
            reason = await self._serve()
        except HookError:
            logger.error("Session %s: rewrite hook failed, aborting", sid, exc_info=True)
            reason = CloseReason.HOOK_ERROR
        finally:
            await self._close()

        logger.info(
            "Session %s: closed (%s) after %d exchange(s)", sid, reason.value, self._exchanges
        )
        return SessionResult(
            session_id=sid,
            reason=reason,
            exchanges=self._exchanges,
            state=self._state,
        )

    async def _serve(self) -> CloseReason:
        """Walk CONNECTING, GREETING and RELAYING; return why the session ended."""
        sid = self._client_ctx.session_id
        rewriter = self._context.rewriter
        config = self._context.config

        self._set_state(SessionState.CONNECTING)
        try:
            server = await self._context.connector(config)
        except UpstreamConnectError as exc:
            logger.error("Session %s: %s", sid, exc)
            return CloseReason.CONNECT_FAILED
        self._server = server

        self._set_state(SessionState.GREETING)
        try:
            greeting = await server.read()
        except FrameReadError as exc:
            logger.error("Session %s: error getting <greeting> from remote server: %s", sid, exc)
            return CloseReason.GREETING_FAILED
        self._trace(Direction.SERVER_TO_CLIENT, greeting)

        frame = await rewrite_response(rewriter, greeting, HELLO_FRAME, self._client_ctx)
        try:
            await self._client.write(frame)
        except FrameWriteError as exc:
            logger.error("Session %s: error sending <greeting> to client: %s", sid, exc)
            return CloseReason.GREETING_FAILED

        self._set_state(SessionState.RELAYING)
        while True:
            try:
                command = await self._client.read()
            except PeerClosedError:
                logger.info("Session %s: client closed the connection", sid)
                return CloseReason.CLIENT_DISCONNECTED
            except FrameReadError as exc:
                logger.error("Session %s: error getting command frame from client: %s", sid, exc)
                return CloseReason.CLIENT_ERROR
            self._trace(Direction.CLIENT_TO_SERVER, command)

            frame = await rewrite_command(rewriter, command, self._client_ctx)
            try:
                await server.write(frame)
            except FrameWriteError as exc:
                logger.error("Session %s: error sending command to remote server: %s", sid, exc)
                return CloseReason.UPSTREAM_ERROR

            try:
                response = await server.read()
            except FrameReadError as exc:
                logger.error(
                    "Session %s: error getting response frame from remote server: %s", sid, exc
                )
                return CloseReason.UPSTREAM_ERROR
            self._trace(Direction.SERVER_TO_CLIENT, response)

            # The hook always sees the client's original command.
            frame = await rewrite_response(rewriter, response, command, self._client_ctx)
            try:
                await self._client.write(frame)
            except FrameWriteError as exc:
                logger.error("Session %s: error sending response to client: %s", sid, exc)
                return CloseReason.CLIENT_ERROR
            self._exchanges += 1

    async def _close(self) -> None:
        """Release both legs and enter CLOSED."""
        try:
            if self._server is not None:
                await self._server.close()
        finally:
            await self._client.close()
            self._set_state(SessionState.CLOSED)

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        logger.debug("Session %s: -> %s", self._client_ctx.session_id, state.value)
        if self._context.on_state_change is not None:
            self._context.on_state_change(self._client_ctx, state)

    def _trace(self, direction: Direction, frame: bytes) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            arrow = "->" if direction == Direction.CLIENT_TO_SERVER else "<-"
            logger.debug(
                "Session %s: %s %s", self._client_ctx.session_id, arrow, describe_frame(frame)
            )


async def run_session(
    client: FrameAdapter,
    context: SessionContext,
    session_id: str | None = None,
) -> SessionResult:
    """Relay one client connection until it ends.

    Args:
        client: The client-facing frame adapter.
        context: Shared session dependencies.
        session_id: Optional session ID.

    Returns:
        The session outcome.
    """
    return await RelaySession(client, context, session_id).run()
