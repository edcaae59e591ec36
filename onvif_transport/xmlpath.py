"""
Dotted field-path access on parsed SOAP documents.

Devices disagree on namespace prefixes and even on namespace versions
(WS-Addressing 2004/08 vs 2005/08), so paths are matched on local element
names only: ``Envelope.Header.RelatesTo`` finds ``<s:Envelope><s:Header>
<a:RelatesTo>`` whatever ``s`` and ``a`` are bound to.
"""

from __future__ import annotations

import re
from xml.etree.ElementTree import Element

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as ET

from onvif_transport.errors import MalformedResponseError

_BETWEEN_TAGS_RE = re.compile(r">\s+<")
_WHITESPACE_RE = re.compile(r"\s+")


def local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def compact_xml(message: str) -> str:
    """Drop whitespace between tags and collapse the remaining runs to one space."""
    message = _BETWEEN_TAGS_RE.sub("><", message.strip())
    return _WHITESPACE_RE.sub(" ", message)


def parse_xml(payload: bytes | str) -> Element:
    """Parse ``payload`` with defusedxml, wrapping parser errors."""
    if isinstance(payload, bytes):
        # recvfrom() buffers may carry trailing NULs after a short datagram
        payload = payload.rstrip(b"\x00")
    try:
        return ET.fromstring(payload)
    except (ET.ParseError, DefusedXmlException) as exc:
        raise MalformedResponseError(f"response is not well-formed XML: {exc}") from exc


def find_path(root: Element, path: str) -> Element | None:
    """Return the first element at ``path`` (first segment names the root)."""
    segments = [s for s in path.split(".") if s]
    if not segments or local_name(root.tag) != segments[0]:
        return None

    node = root
    for segment in segments[1:]:
        node = next((child for child in node if local_name(child.tag) == segment), None)
        if node is None:
            return None
    return node


def value_for_path(root: Element, path: str) -> str | None:
    """Return the stripped text at ``path``, or None when the element is absent."""
    node = find_path(root, path)
    if node is None:
        return None
    return (node.text or "").strip()
