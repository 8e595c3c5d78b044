"""Core data models for epp-proxy.

Defines the session state machine, close reasons, the read-only client
context handed to rewrite hooks, and the greeting exchange marker.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

# Stands in for the client's <hello> when rewriting the server greeting.
# Never written to either peer.
HELLO_FRAME = b'<epp xmlns="urn:ietf:params:xml:ns:epp-1.0"><hello/></epp>'


class Direction(StrEnum):
    """Direction of a relayed frame relative to the EPP client.

    Attributes:
        CLIENT_TO_SERVER: Command flowing from the EPP client to the server.
        SERVER_TO_CLIENT: Greeting or response flowing to the client.
    """

    CLIENT_TO_SERVER = "client_to_server"
    SERVER_TO_CLIENT = "server_to_client"


class SessionState(StrEnum):
    """Lifecycle state of a relay session.

    Attributes:
        CONNECTING: Opening the upstream TLS connection.
        GREETING: Relaying the server greeting to the client.
        RELAYING: Alternating command/response relay loop.
        CLOSED: Terminal. Both streams released.
    """

    CONNECTING = "connecting"
    GREETING = "greeting"
    RELAYING = "relaying"
    CLOSED = "closed"


class CloseReason(StrEnum):
    """Why a session reached CLOSED.

    Attributes:
        CLIENT_DISCONNECTED: Client closed cleanly at a frame boundary.
        CONNECT_FAILED: Upstream TLS connection could not be established.
        GREETING_FAILED: Greeting could not be read or delivered.
        CLIENT_ERROR: Reading from or writing to the client failed.
        UPSTREAM_ERROR: Reading from or writing to the server failed.
        HOOK_ERROR: A rewrite hook failed or produced a malformed frame.
    """

    CLIENT_DISCONNECTED = "client_disconnected"
    CONNECT_FAILED = "connect_failed"
    GREETING_FAILED = "greeting_failed"
    CLIENT_ERROR = "client_error"
    UPSTREAM_ERROR = "upstream_error"
    HOOK_ERROR = "hook_error"


@dataclass(frozen=True)
class ClientContext:
    """Read-only description of the client connection a frame came from.

    Args:
        session_id: Unique proxy-assigned session ID (UUID string).
        peer: Printable client address, e.g. ``"192.0.2.1:53211"``.
    """

    session_id: str
    peer: str


@dataclass
class SessionResult:
    """Outcome of one relay session.

    Args:
        session_id: The session's ID.
        reason: Why the session closed.
        exchanges: Number of command/response pairs fully delivered.
        state: Final state (always CLOSED once the engine returns).
    """

    session_id: str
    reason: CloseReason
    exchanges: int = 0
    state: SessionState = SessionState.CLOSED
