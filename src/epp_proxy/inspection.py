"""EPP frame inspection utilities.

Read-only helpers that classify frames and pull out the few fields the
relay logs (command name, clTRID, result code). Also used to check that
a rewritten frame is still a well-formed XML document. Frames are never
modified here.
"""

from __future__ import annotations

from lxml import etree

EPP_NS = "urn:ietf:params:xml:ns:epp-1.0"

# No DTD loading, entity expansion or network access for untrusted input.
_PARSER = etree.XMLParser(
    resolve_entities=False,
    no_network=True,
    load_dtd=False,
    huge_tree=False,
)

_KINDS = ("greeting", "hello", "command", "response", "extension")


def parse_frame(frame: bytes) -> etree._Element | None:
    """Parse a frame payload into an element tree.

    Args:
        frame: The XML payload.

    Returns:
        The root element, or None if the payload is not well-formed XML.
    """
    try:
        return etree.fromstring(frame, parser=_PARSER)
    except (etree.XMLSyntaxError, ValueError):
        return None


def is_well_formed(frame: bytes) -> bool:
    """Check whether a payload is a well-formed XML document."""
    return parse_frame(frame) is not None


def is_epp_document(frame: bytes) -> bool:
    """Check whether a payload is an XML document rooted at <epp> in the EPP namespace."""
    root = parse_frame(frame)
    return root is not None and root.tag == f"{{{EPP_NS}}}epp"


def _local(element: etree._Element) -> str:
    return etree.QName(element).localname


def _body(root: etree._Element | None) -> etree._Element | None:
    """Return the first element child of <epp>, if any."""
    if root is None or _local(root) != "epp":
        return None
    for child in root:
        if isinstance(child.tag, str):
            return child
    return None


def frame_kind(frame: bytes) -> str:
    """Classify a frame by the element directly under <epp>.

    Args:
        frame: The XML payload.

    Returns:
        One of ``greeting``, ``hello``, ``command``, ``response``,
        ``extension``, or ``unknown``.
    """
    body = _body(parse_frame(frame))
    if body is None:
        return "unknown"
    name = _local(body)
    return name if name in _KINDS else "unknown"


def extract_command(frame: bytes) -> str | None:
    """Extract the EPP command name (``login``, ``info``, ``create``...).

    Args:
        frame: The XML payload.

    Returns:
        The local name of the first element inside <command>, or None
        for frames that are not commands.
    """
    body = _body(parse_frame(frame))
    if body is None or _local(body) != "command":
        return None
    for child in body:
        if isinstance(child.tag, str):
            return _local(child)
    return None


def extract_cltrid(frame: bytes) -> str | None:
    """Extract the client transaction ID from a command or response.

    Args:
        frame: The XML payload.

    Returns:
        The clTRID text, or None if absent.
    """
    root = parse_frame(frame)
    if root is None:
        return None
    for element in root.iter(f"{{{EPP_NS}}}clTRID"):
        return (element.text or "").strip() or None
    return None


def extract_result_code(frame: bytes) -> int | None:
    """Extract the first <result code="..."> of a response.

    Args:
        frame: The XML payload.

    Returns:
        The four-digit result code, or None for non-responses.
    """
    root = parse_frame(frame)
    if root is None:
        return None
    for element in root.iter(f"{{{EPP_NS}}}result"):
        code = element.get("code")
        if code is not None and code.isdigit():
            return int(code)
        return None
    return None


def describe_frame(frame: bytes) -> str:
    """Summarize a frame in one line for debug logging.

    Args:
        frame: The XML payload.

    Returns:
        e.g. ``"command <info> clTRID=ABC-1 (412 bytes)"``.
    """
    kind = frame_kind(frame)
    parts = [kind]
    if kind == "command":
        command = extract_command(frame)
        if command:
            parts.append(f"<{command}>")
    elif kind == "response":
        code = extract_result_code(frame)
        if code is not None:
            parts.append(f"code={code}")
    cltrid = extract_cltrid(frame)
    if cltrid:
        parts.append(f"clTRID={cltrid}")
    parts.append(f"({len(frame)} bytes)")
    return " ".join(parts)
