# fleet_rollout_service/src/fleet_rollout_service/schemas/health_check_schemas.py
from datetime import datetime
from typing import Dict, Optional
from urllib.parse import urlparse
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.rollout import HttpMethod


def _validate_probe_url(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    parsed = urlparse(v)
    if parsed.scheme not in ("http", "https"):
        raise ValueError("must use http or https")
    if not parsed.hostname:
        raise ValueError("must include a host")
    return v


class HealthCheckEndpointCreate(BaseModel):
    """Schema for registering a custom HTTP health probe."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    url: str = Field(..., description="http(s) URL probed during health gates.")
    method: HttpMethod = HttpMethod.GET
    timeout_ms: int = Field(5000, ge=1, le=60000)
    expected_status: int = Field(200, ge=100, le=599)
    expected_body_contains: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    enabled: bool = True

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        return _validate_probe_url(v)


class HealthCheckEndpointUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    url: Optional[str] = None
    method: Optional[HttpMethod] = None
    timeout_ms: Optional[int] = Field(None, ge=1, le=60000)
    expected_status: Optional[int] = Field(None, ge=100, le=599)
    expected_body_contains: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    enabled: Optional[bool] = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        return _validate_probe_url(v)


class HealthCheckEndpointResponse(BaseModel):
    id: UUID
    project_id: UUID
    name: str
    url: str
    method: HttpMethod
    timeout_ms: int
    expected_status: int
    expected_body_contains: Optional[str] = None
    headers: Dict[str, str]
    enabled: bool
    inserted_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
