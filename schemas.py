from typing import List, Optional

from pydantic import BaseModel, Field, confloat, constr


class DiscoverQuery(BaseModel):
    timeout: confloat(gt=0, le=300) = Field(default=5, description="Timeout in seconds per round")
    interface_ip: Optional[str] = Field(default=None, description="Probe from a single local interface IP")
    strict: bool = Field(default=False, description="Fail on malformed or address-less responses")


class DeviceModel(BaseModel):
    id: str
    name: str
    xaddr: str
    xaddrs: List[str] = Field(default_factory=list)
    scopes: List[str] = Field(default_factory=list)
    types: List[str] = Field(default_factory=list)


class DiscoverResponse(BaseModel):
    devices: List[DeviceModel] = Field(default_factory=list)


class SOAPCallQuery(BaseModel):
    xaddr: constr(strip_whitespace=True, min_length=1) = Field(description="Device service URL")
    body: str = Field(description="SOAP Body content")
    namespaces: List[str] = Field(
        default_factory=list,
        description='Extra namespace declarations, e.g. xmlns:tds="http://www.onvif.org/ver10/device/wsdl"',
    )
    user: str = ""
    password: str = ""
    token_age_seconds: float = Field(default=0, description="Offset applied to the WS-Security Created time")
    timeout: Optional[confloat(gt=0, le=300)] = Field(default=None, description="Request timeout in seconds")


class SOAPCallResponse(BaseModel):
    xaddr: str
    response: str
