"""Rewrite hooks for epp-proxy.

An embedding application customises the relay by passing a
FrameRewriter (or subclass) to the session engine. The default
implementation is an identity passthrough.
"""

from __future__ import annotations

import importlib
import inspect
import logging
from collections.abc import Awaitable

from epp_proxy.inspection import frame_kind, is_epp_document, is_well_formed
from epp_proxy.models import ClientContext

logger = logging.getLogger(__name__)


class HookError(Exception):
    """A rewrite hook failed or produced something that is not a frame."""


class FrameRewriter:
    """Command and response rewrite hooks.

    Override either method to modify frames in flight. Both may be plain
    methods or coroutines. Hooks must not block indefinitely, since the
    session waits for them, and must return a complete XML document as
    ``bytes``.

    Example:
        >>> class StripExtensions(FrameRewriter):
        ...     def rewrite_command(self, command, client):
        ...         return command.replace(b"<extension/>", b"")
    """

    def rewrite_command(
        self, command: bytes, client: ClientContext
    ) -> bytes | Awaitable[bytes]:
        """Rewrite a command before it is sent to the server.

        Args:
            command: The command frame exactly as received from the client.
            client: The originating client connection.

        Returns:
            The frame to send upstream.
        """
        return command

    def rewrite_response(
        self, response: bytes, command: bytes, client: ClientContext
    ) -> bytes | Awaitable[bytes]:
        """Rewrite a response (or the greeting) before it reaches the client.

        Args:
            response: The frame received from the server.
            command: The original, unrewritten command that produced this
                response, or ``HELLO_FRAME`` for the greeting.
            client: The originating client connection.

        Returns:
            The frame to send to the client.
        """
        return response


async def rewrite_command(
    rewriter: FrameRewriter, command: bytes, client: ClientContext
) -> bytes:
    """Run the command hook and validate its result.

    Args:
        rewriter: The embedding application's rewriter.
        command: The command as received from the client.
        client: The originating client connection.

    Returns:
        The frame to send upstream.

    Raises:
        HookError: If the hook raised or returned a malformed frame.
    """
    try:
        result = rewriter.rewrite_command(command, client)
        if inspect.isawaitable(result):
            result = await result
    except Exception as exc:
        raise HookError(f"rewrite_command raised {exc!r}") from exc
    return _check_result("rewrite_command", result, command)


async def rewrite_response(
    rewriter: FrameRewriter, response: bytes, command: bytes, client: ClientContext
) -> bytes:
    """Run the response hook and validate its result.

    Args:
        rewriter: The embedding application's rewriter.
        response: The frame received from the server.
        command: The original, unrewritten command (or ``HELLO_FRAME``).
        client: The originating client connection.

    Returns:
        The frame to send to the client.

    Raises:
        HookError: If the hook raised or returned a malformed frame.
    """
    try:
        result = rewriter.rewrite_response(response, command, client)
        if inspect.isawaitable(result):
            result = await result
    except Exception as exc:
        raise HookError(f"rewrite_response raised {exc!r}") from exc
    return _check_result("rewrite_response", result, response)


def _check_result(hook_name: str, result: object, original: bytes) -> bytes:
    """Validate a hook result.

    A result equal to the input is accepted as-is. Anything else must be
    a non-empty, well-formed <epp> document of the same kind as the
    input (a rewritten command is still a command), unless the input
    itself was not a recognisable EPP frame.
    """
    if not isinstance(result, bytes):
        raise HookError(f"{hook_name} returned {type(result).__name__}, expected bytes")
    if not result:
        raise HookError(f"{hook_name} returned an empty frame")
    if result == original:
        return result
    if not is_well_formed(result):
        raise HookError(f"{hook_name} returned a frame that is not well-formed XML")
    if not is_epp_document(result):
        raise HookError(f"{hook_name} returned a frame without an EPP <epp> root element")
    expected = frame_kind(original)
    actual = frame_kind(result)
    if expected != "unknown" and actual != expected:
        raise HookError(f"{hook_name} turned a {expected} frame into a {actual} frame")
    return result


def load_rewriter(reference: str) -> FrameRewriter:
    """Load a rewriter from a ``module:attribute`` reference.

    The attribute may be a FrameRewriter subclass (instantiated with no
    arguments) or an instance.

    Args:
        reference: Import reference, e.g. ``"myregistry.hooks:Rewriter"``.

    Returns:
        A rewriter instance.

    Raises:
        ValueError: If the reference is malformed or does not resolve
            to a FrameRewriter.
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"expected 'module:attribute', got {reference!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ValueError(f"cannot import {module_name!r}: {exc}") from exc
    try:
        target = getattr(module, attr)
    except AttributeError as exc:
        raise ValueError(f"{module_name!r} has no attribute {attr!r}") from exc

    if isinstance(target, type) and issubclass(target, FrameRewriter):
        target = target()
    if not isinstance(target, FrameRewriter):
        raise ValueError(f"{reference!r} is not a FrameRewriter")
    logger.debug("Loaded rewriter %s", reference)
    return target
