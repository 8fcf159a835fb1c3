from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class SignerInfo(WireModel):
    source: Optional[str] = None


class HealthResponse(WireModel):
    success: bool = True
    ready: bool
    signer_info: SignerInfo
    timestamp: int


class ReloadResponse(WireModel):
    success: bool = True
    ready: bool
    signer_info: SignerInfo


class NormalizedSignResponse(WireModel):
    success: bool
    signed_url: Optional[str] = None
    signature: Optional[str] = None
    timestamp: int = 0
    raw: Any = None
    # EmptyResult / UnnormalizableOutput when success is False
    error_kind: Optional[str] = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _success_has_signed_url(self) -> "NormalizedSignResponse":
        if self.success and self.signed_url is None:
            raise ValueError("a successful sign response needs a signed URL")
        return self


class ProxyRelay(BaseModel):
    """Response of the fallback proxy, relayed to the client untouched."""

    status_code: int
    body: Any
