import logging
import os
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError


class AppSettings(BaseModel):
    allowed_origins: List[str] = Field(default_factory=lambda: _default_allowed_origins())
    log_level: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))
    default_timeout_seconds: float = Field(default=float(os.getenv("DEFAULT_TIMEOUT", "5")), gt=0)
    max_timeout_seconds: float = Field(default=float(os.getenv("MAX_TIMEOUT", "30")), gt=0)
    wsd_multicast_ttl: int = Field(default=int(os.getenv("WSD_MULTICAST_TTL", "2")), ge=1, le=255)
    wsd_buffer_size: int = Field(default=int(os.getenv("WSD_BUFFER_SIZE", "10240")), ge=1024, le=65507)
    soap_timeout_seconds: Optional[float] = Field(default_factory=lambda: _optional_float("SOAP_TIMEOUT", "10"))


def get_settings() -> AppSettings:
    try:
        return AppSettings()
    except ValidationError as exc:
        logging.getLogger("onvif_transport").error("Invalid application settings: %s", exc)
        raise


def _default_allowed_origins() -> List[str]:
    env_value = os.getenv("ALLOWED_ORIGINS")
    if env_value:
        return [origin.strip() for origin in env_value.split(",") if origin.strip()]
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


def _optional_float(name: str, default: str) -> Optional[float]:
    # SOAP_TIMEOUT=none lets device calls wait indefinitely
    value = os.getenv(name, default).strip()
    if value.lower() in ("", "none", "0"):
        return None
    return float(value)
