from datetime import timedelta
from xml.etree import ElementTree

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from onvif_transport import soap, ws_discovery
from onvif_transport.errors import (
    MalformedResponseError,
    NetworkQueryError,
    NoServiceAddressError,
    RemoteFaultError,
    TransportError,
)
from schemas import DeviceModel, DiscoverQuery, DiscoverResponse, SOAPCallQuery, SOAPCallResponse
from config import get_settings
from dataclasses import asdict
import logging
import ipaddress

app = FastAPI(
    title="ONVIF Transport API",
    version="1.0",
    description="WS-Discovery of ONVIF devices and authenticated SOAP calls to them."
)

settings = get_settings()

# Configure logging
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger("onvif_transport")

# Enable CORS for configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.get("/api/health", response_model=dict)
def health() -> dict:
    return {"status": "ok"}


@app.get("/api/discover", response_model=DiscoverResponse)
def discover(
    timeout: float = Query(None, description="Timeout seconds per round"),
    interface_ip: str = Query(None, description="Optional interface IP to probe from"),
    strict: bool = Query(False, description="Fail on malformed or address-less responses"),
):
    # Validate and normalize inputs using Pydantic schema
    try:
        effective_timeout = timeout or settings.default_timeout_seconds
        query = DiscoverQuery(
            timeout=min(effective_timeout, settings.max_timeout_seconds),
            interface_ip=interface_ip,
            strict=strict,
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if query.interface_ip:
        try:
            ip = ipaddress.ip_address(query.interface_ip)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid interface_ip")
        if ip.version != 4 or ip.is_loopback:
            raise HTTPException(status_code=400, detail="interface_ip must be a non-loopback IPv4 address")

    discovery = ws_discovery.WSDiscovery(
        timeout=query.timeout,
        multicast_ttl=settings.wsd_multicast_ttl,
        buffer_size=settings.wsd_buffer_size,
        strict=query.strict,
    )
    try:
        if query.interface_ip:
            devices = discovery.discover_on_address(query.interface_ip)
        else:
            devices = discovery.discover()
    except NetworkQueryError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except (TransportError, MalformedResponseError, NoServiceAddressError) as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    return DiscoverResponse(devices=[DeviceModel(**asdict(device)) for device in devices])


@app.post("/api/soap", response_model=SOAPCallResponse)
def soap_call(query: SOAPCallQuery):
    request = soap.build_soap_request(
        query.body,
        query.namespaces,
        user=query.user,
        password=query.password,
        token_age=timedelta(seconds=query.token_age_seconds),
    )
    try:
        root = request.call(query.xaddr, timeout=query.timeout or settings.soap_timeout_seconds)
    except RemoteFaultError as exc:
        raise HTTPException(status_code=422, detail={"fault": exc.reason, "code": exc.code})
    except (TransportError, MalformedResponseError) as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    return SOAPCallResponse(xaddr=query.xaddr, response=ElementTree.tostring(root, encoding="unicode"))

if __name__ == "__main__":
    # Run the API with: uvicorn main:app --reload
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
