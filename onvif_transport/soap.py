"""
Module: soap.py
Purpose: Build and send authenticated SOAP 1.2 requests to ONVIF devices.

Authentication is the WS-Security UsernameToken PasswordDigest profile:

    digest = base64(sha1(nonce + created + password))

where ``nonce`` is the raw random bytes (sent base64-encoded) and ``created``
is the exact timestamp string carried in the token.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence
from urllib.parse import urlparse
from xml.etree.ElementTree import Element
from xml.sax.saxutils import escape

import requests
from requests.auth import HTTPBasicAuth

from onvif_transport.errors import MalformedResponseError, RemoteFaultError, TransportError
from onvif_transport.xmlpath import compact_xml, find_path, local_name, parse_xml, value_for_path

logger = logging.getLogger("onvif_transport")

SOAP_ENV_NS = "http://www.w3.org/2003/05/soap-envelope"
WSSE_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"
WSU_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-utility-1.0.xsd"
PASSWORD_DIGEST = (
    "http://docs.oasis-open.org/wss/2004/01/"
    "oasis-200401-wss-username-token-profile-1.0#PasswordDigest"
)
BASE64_BINARY = (
    "http://docs.oasis-open.org/wss/2004/01/"
    "oasis-200401-wss-soap-message-security-1.0#Base64Binary"
)

CONTENT_TYPE = "application/soap+xml; charset=utf-8"
NONCE_SIZE = 16


# ---------------------------------------------------------------------------
# WS-Security UsernameToken
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SecurityToken:
    username: str
    nonce: bytes
    created: str
    digest: str

    @property
    def nonce_b64(self) -> str:
        return base64.b64encode(self.nonce).decode("ascii")

    def to_xml(self) -> str:
        return (
            f'<Security s:mustUnderstand="1" xmlns="{WSSE_NS}">'
            "<UsernameToken>"
            f"<Username>{escape(self.username)}</Username>"
            f'<Password Type="{PASSWORD_DIGEST}">{self.digest}</Password>'
            f'<Nonce EncodingType="{BASE64_BINARY}">{self.nonce_b64}</Nonce>'
            f'<Created xmlns="{WSU_NS}">{self.created}</Created>'
            "</UsernameToken>"
            "</Security>"
        )


def password_digest(nonce: bytes, created: str, password: str) -> str:
    sha = hashlib.sha1()
    sha.update(nonce)
    sha.update(created.encode("utf-8"))
    sha.update(password.encode("utf-8"))
    return base64.b64encode(sha.digest()).decode("ascii")


def format_created(moment: datetime) -> str:
    """RFC 3339 in UTC, second precision, ``Z`` suffix."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def generate_token(
    user: str,
    password: str,
    token_age: timedelta = timedelta(0),
    now: Optional[datetime] = None,
    nonce: Optional[bytes] = None,
) -> SecurityToken:
    """
    Compute a fresh UsernameToken.

    ``token_age`` shifts the Created timestamp to fit the device's clock.
    ``now`` (naive values are taken as UTC) and ``nonce`` exist for tests;
    by default the current UTC time and ``NONCE_SIZE`` random bytes are used.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if nonce is None:
        nonce = os.urandom(NONCE_SIZE)
    created = format_created(now + token_age)
    return SecurityToken(
        username=user,
        nonce=nonce,
        created=created,
        digest=password_digest(nonce, created, password),
    )


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SOAPRequest:
    """One SOAP call: body fragment, extra namespaces and optional credentials."""

    body: str
    namespaces: tuple[str, ...] = ()
    user: str = ""
    password: str = ""
    token_age: timedelta = timedelta(0)

    def envelope(self, token: Optional[SecurityToken] = None) -> str:
        """
        Render the compact envelope.

        A Header is emitted only when the request has a user; a token is
        generated unless one is given.
        """
        request = '<?xml version="1.0" encoding="UTF-8"?>'
        request += f'<s:Envelope xmlns:s="{SOAP_ENV_NS}"'
        for namespace in self.namespaces:
            request += " " + namespace
        request += ">"

        if self.user:
            if token is None:
                token = generate_token(self.user, self.password, self.token_age)
            request += "<s:Header>" + token.to_xml() + "</s:Header>"

        request += "<s:Body>" + self.body + "</s:Body>"
        request += "</s:Envelope>"
        return compact_xml(request)

    def call(
        self,
        xaddr: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> Element:
        """
        POST the envelope to ``xaddr`` and return the parsed response root.

        :param xaddr: Service URL, as advertised in a ProbeMatch.
        :param session: requests session to reuse; a throwaway one by default.
        :param timeout: Passed to requests. None waits indefinitely.
        :raises TransportError: Bad URL, connection failure, or an HTTP error status without a SOAP Fault.
        :raises MalformedResponseError: The response body is not a SOAP envelope.
        :raises RemoteFaultError: The device returned a SOAP Fault.
        """
        try:
            parsed = urlparse(xaddr)
            hostname = parsed.hostname
        except ValueError as exc:
            raise TransportError(f"invalid service address: {xaddr!r}") from exc
        if parsed.scheme not in ("http", "https") or not hostname:
            raise TransportError(f"invalid service address: {xaddr!r}")

        # URL user-info, if any, is applied by requests itself
        auth = HTTPBasicAuth(self.user, self.password) if self.user else None

        payload = self.envelope().encode("utf-8")
        own_session = session is None
        if own_session:
            session = requests.Session()
        try:
            response = session.post(
                xaddr,
                data=payload,
                headers={"Content-Type": CONTENT_TYPE},
                auth=auth,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"SOAP request to {hostname} failed: {exc}") from exc
        finally:
            if own_session:
                session.close()

        logger.debug("SOAP %s -> HTTP %s (%d bytes)", hostname, response.status_code, len(response.content))
        try:
            root = parse_xml(response.content)
        except MalformedResponseError:
            if not response.ok:
                raise TransportError(
                    f"SOAP request to {hostname} failed: HTTP {response.status_code}"
                ) from None
            raise

        check_fault(root)
        if not response.ok:
            raise TransportError(f"SOAP request to {hostname} failed: HTTP {response.status_code}")
        if local_name(root.tag) != "Envelope":
            raise MalformedResponseError(f"response from {hostname} is not a SOAP envelope")
        return root


def _fault_field(root: Element, path: str) -> Optional[str]:
    node = find_path(root, path)
    return None if node is None else (node.text or "")


def check_fault(root: Element) -> None:
    """Raise RemoteFaultError if ``root`` is a SOAP 1.2 or 1.1 Fault envelope."""
    reason = _fault_field(root, "Envelope.Body.Fault.Reason.Text")
    code = value_for_path(root, "Envelope.Body.Fault.Code.Value")
    if reason is None:
        reason = _fault_field(root, "Envelope.Body.Fault.faultstring")
        code = value_for_path(root, "Envelope.Body.Fault.faultcode")
    if reason is not None:
        logger.debug("SOAP fault %s: %s", code, reason)
        raise RemoteFaultError(reason, code=code)


def build_soap_request(
    body: str,
    namespaces: Sequence[str] = (),
    user: str = "",
    password: str = "",
    token_age: timedelta = timedelta(0),
) -> SOAPRequest:
    return SOAPRequest(
        body=body,
        namespaces=tuple(namespaces),
        user=user,
        password=password,
        token_age=token_age,
    )
