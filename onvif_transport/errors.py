"""
Module: errors.py
Purpose: Exception hierarchy shared by discovery and the SOAP transport.
"""

from __future__ import annotations


class OnvifTransportError(Exception):
    """Base class for every error raised by this package."""


class NetworkQueryError(OnvifTransportError):
    """The local interface table could not be read."""


class TransportError(OnvifTransportError):
    """Socket or HTTP failure other than the end of a discovery round."""


class MalformedResponseError(OnvifTransportError):
    """A response payload is not well-formed XML."""


class NoServiceAddressError(OnvifTransportError):
    """A correlated ProbeMatch advertised no XAddrs."""


class RemoteFaultError(OnvifTransportError):
    """The device answered with a SOAP Fault."""

    def __init__(self, reason: str, code: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = code
