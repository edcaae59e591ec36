"""
Module: ws_discovery.py
Purpose: Discover ONVIF devices using the WS-Discovery protocol.

One discovery round per local address: a Probe tagged with a fresh
MessageID is multicast from that address, and every ProbeMatch that echoes
the MessageID in its RelatesTo header becomes a Device. Everything else on
the shared multicast group is noise from other probers and is discarded.
"""

from __future__ import annotations

import concurrent.futures
import enum
import ipaddress
import logging
import socket
import time
import uuid
from dataclasses import dataclass
from typing import Iterator, Optional
from urllib.parse import unquote

from onvif_transport.errors import (
    MalformedResponseError,
    NoServiceAddressError,
    OnvifTransportError,
    TransportError,
)
from onvif_transport.netif import interface_addresses
from onvif_transport.xmlpath import compact_xml, find_path, parse_xml, value_for_path

logger = logging.getLogger("onvif_transport")

MULTICAST_GROUP = ("239.255.255.250", 3702)
BUFFER_SIZE = 10 * 1024
NETWORK_VIDEO_TRANSMITTER = "dn:NetworkVideoTransmitter"

NAME_SCOPE_PREFIX = "onvif://www.onvif.org/name/"
UUID_URN_PREFIX = "urn:uuid:"

_PROBE_MATCH = "Envelope.Body.ProbeMatches.ProbeMatch"


@dataclass(frozen=True)
class Device:
    """A device that answered our Probe."""

    id: str
    name: str
    xaddr: str
    xaddrs: tuple[str, ...] = ()
    scopes: tuple[str, ...] = ()
    types: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.xaddr:
            raise NoServiceAddressError(f"device {self.id!r} does not have any XAddr")


class Verdict(enum.Enum):
    MATCH = "match"
    DISCARD = "discard"
    ERROR = "error"


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of parsing one datagram: a Device, a discard, or an error."""

    verdict: Verdict
    device: Optional[Device] = None
    error: Optional[OnvifTransportError] = None

    @classmethod
    def match(cls, device: Device) -> "ProbeOutcome":
        return cls(Verdict.MATCH, device=device)

    @classmethod
    def discard(cls) -> "ProbeOutcome":
        return cls(Verdict.DISCARD)

    @classmethod
    def failed(cls, error: OnvifTransportError) -> "ProbeOutcome":
        return cls(Verdict.ERROR, error=error)


# ---------------------------------------------------------------------------
# Probe construction
# ---------------------------------------------------------------------------

def new_message_id() -> str:
    return f"{UUID_URN_PREFIX}{uuid.uuid4()}"


def build_probe(message_id: str, types: str = NETWORK_VIDEO_TRANSMITTER) -> str:
    """Return the compact WS-Discovery Probe envelope for ``message_id``."""
    probe = f"""<?xml version="1.0" encoding="UTF-8"?>
<e:Envelope xmlns:e="http://www.w3.org/2003/05/soap-envelope"
            xmlns:w="http://schemas.xmlsoap.org/ws/2004/08/addressing"
            xmlns:d="http://schemas.xmlsoap.org/ws/2005/04/discovery"
            xmlns:dn="http://www.onvif.org/ver10/network/wsdl">
  <e:Header>
    <w:MessageID>{message_id}</w:MessageID>
    <w:To e:mustUnderstand="true">urn:schemas-xmlsoap-org:ws:2005:04:discovery</w:To>
    <w:Action e:mustUnderstand="true">http://schemas.xmlsoap.org/ws/2005/04/discovery/Probe</w:Action>
  </e:Header>
  <e:Body>
    <d:Probe>
      <d:Types>{types}</d:Types>
    </d:Probe>
  </e:Body>
</e:Envelope>"""
    return compact_xml(probe)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

def run_round(
    local_addr: str,
    probe: str,
    timeout: float,
    group: tuple[str, int] = MULTICAST_GROUP,
    buffer_size: int = BUFFER_SIZE,
    multicast_ttl: int = 2,
) -> Iterator[bytes]:
    """
    Send ``probe`` from ``local_addr`` and yield raw responses until the deadline.

    :param local_addr: Local IPv4 address to bind to (ephemeral port).
    :param probe: The Probe envelope to send.
    :param timeout: Seconds to listen, measured from the start of the round.
    :param group: Destination of the probe; the WS-Discovery multicast group by default.
    :param buffer_size: Receive buffer size. Longer datagrams are truncated.
    :param multicast_ttl: Multicast Time-to-Live for the probe.
    :raises TransportError: On any socket error other than the deadline expiring.
    """
    deadline = time.monotonic() + timeout
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP) as sock:
        try:
            sock.bind((local_addr, 0))
            if ipaddress.ip_address(group[0]).is_multicast:
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(local_addr))
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, multicast_ttl)
            sock.sendto(probe.encode("utf-8"), group)
        except OSError as exc:
            raise TransportError(f"cannot send probe from {local_addr}: {exc}") from exc

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            sock.settimeout(remaining)
            try:
                data, addr = sock.recvfrom(buffer_size)
            except socket.timeout:
                return
            except OSError as exc:
                raise TransportError(f"receive failed on {local_addr}: {exc}") from exc
            logger.debug("WS-Discovery: %d bytes from %s", len(data), addr[0])
            yield data


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def _split(value: Optional[str]) -> tuple[str, ...]:
    return tuple(value.split()) if value else ()


def _name_from_scopes(scopes: tuple[str, ...]) -> str:
    for scope in scopes:
        if scope.startswith(NAME_SCOPE_PREFIX):
            return unquote(scope[len(NAME_SCOPE_PREFIX):].replace("_", " "))
    return ""


def parse_probe_response(message_id: str, raw: bytes) -> ProbeOutcome:
    """
    Turn one datagram into a ProbeOutcome.

    The RelatesTo header is checked before anything else is read, so
    ProbeMatches answering someone else's Probe are discarded untouched.
    """
    try:
        root = parse_xml(raw)
    except MalformedResponseError as exc:
        return ProbeOutcome.failed(exc)

    relates_to = value_for_path(root, "Envelope.Header.RelatesTo")
    if relates_to is None or relates_to != message_id:
        return ProbeOutcome.discard()

    match = find_path(root, _PROBE_MATCH)
    if match is None:
        return ProbeOutcome.failed(NoServiceAddressError("ProbeMatches carries no ProbeMatch"))

    device_id = value_for_path(root, f"{_PROBE_MATCH}.EndpointReference.Address") or ""
    if device_id.startswith(UUID_URN_PREFIX):
        device_id = device_id[len(UUID_URN_PREFIX):]

    scopes = _split(value_for_path(root, f"{_PROBE_MATCH}.Scopes"))
    xaddrs = _split(value_for_path(root, f"{_PROBE_MATCH}.XAddrs"))
    types = _split(value_for_path(root, f"{_PROBE_MATCH}.Types"))
    if not xaddrs:
        return ProbeOutcome.failed(NoServiceAddressError(f"device {device_id!r} does not have any XAddr"))

    return ProbeOutcome.match(Device(
        id=device_id,
        name=_name_from_scopes(scopes),
        xaddr=xaddrs[0],
        xaddrs=xaddrs,
        scopes=scopes,
        types=types,
    ))


# ---------------------------------------------------------------------------
# Discovery rounds
# ---------------------------------------------------------------------------

class WSDiscovery:
    def __init__(
        self,
        timeout=5,
        multicast_ttl=2,
        buffer_size=BUFFER_SIZE,
        strict=False,
        group=MULTICAST_GROUP,
    ):
        """
        Initialize the WS-Discovery instance.

        :param timeout: How long (in seconds) each round waits for responses.
        :param multicast_ttl: Multicast Time-to-Live for the probe.
        :param buffer_size: Receive buffer size per datagram.
        :param strict: Raise malformed or address-less responses instead of skipping them.
        :param group: Where probes are sent; the WS-Discovery multicast group by default.
        """
        self.timeout = timeout
        self.multicast_ttl = multicast_ttl
        self.buffer_size = buffer_size
        self.strict = strict
        self.group = group

    def discover_on_address(self, address):
        """
        Run one discovery round from ``address``.

        :return: The devices that answered this round's Probe, in arrival order.
        """
        message_id = new_message_id()
        probe = build_probe(message_id)
        devices = []
        discarded = 0

        datagrams = run_round(
            address,
            probe,
            self.timeout,
            group=self.group,
            buffer_size=self.buffer_size,
            multicast_ttl=self.multicast_ttl,
        )
        for raw in datagrams:
            outcome = parse_probe_response(message_id, raw)
            if outcome.verdict is Verdict.MATCH:
                devices.append(outcome.device)
            elif outcome.verdict is Verdict.DISCARD:
                discarded += 1
                logger.debug("WS-Discovery: discarding uncorrelated response on %s", address)
            elif isinstance(outcome.error, NoServiceAddressError):
                logger.warning("WS-Discovery: ProbeMatch without service address on %s: %s", address, outcome.error)
                if self.strict:
                    datagrams.close()
                    raise outcome.error
            else:
                logger.warning("WS-Discovery: skipping malformed response on %s: %s", address, outcome.error)
                if self.strict:
                    datagrams.close()
                    raise outcome.error

        logger.info(
            "WS-Discovery round on %s: %d device(s), %d unrelated response(s) ignored",
            address, len(devices), discarded,
        )
        return devices

    def discover(self, addresses=None, max_workers=None):
        """
        Run one round per local address and concatenate the results.

        Rounds run in parallel and do not cancel each other; once all of them
        are over, the first failure in address order is raised.

        :param addresses: Local addresses to probe from; all active ones by default.
        :param max_workers: Upper bound on concurrently running rounds.
        """
        if addresses is None:
            addresses = interface_addresses()
        if not addresses:
            logger.info("WS-Discovery: no usable local IPv4 address")
            return []

        workers = min(max_workers or len(addresses), len(addresses))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.discover_on_address, address) for address in addresses]
            concurrent.futures.wait(futures)

        discovered = []
        for future in futures:
            discovered.extend(future.result())
        return discovered


def discover(timeout, **kwargs):
    """Probe from every active local IPv4 address. See WSDiscovery."""
    addresses = kwargs.pop("addresses", None)
    max_workers = kwargs.pop("max_workers", None)
    return WSDiscovery(timeout=timeout, **kwargs).discover(addresses, max_workers=max_workers)


def discover_on_address(address, timeout, **kwargs):
    """Probe from a single local address. See WSDiscovery."""
    return WSDiscovery(timeout=timeout, **kwargs).discover_on_address(address)
