# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Response models for API endpoints, used for the OpenAPI documentation.
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field


class HalLink(BaseModel):
    """HAL link representation."""

    href: str = Field(..., description="Link URL")
    method: Optional[str] = Field(None, description="HTTP method")
    title: Optional[str] = Field(None, description="Link title")


class SubmitApplicationResponse(BaseModel):
    """Response for a successful submission."""

    id: str = Field(..., description="Application ID")
    reference_no: str = Field(..., description="Generated reference number")
    status: str = Field(..., description="Initial status")


class SideEffectResponse(BaseModel):
    """Outcome of a best-effort side effect."""

    kind: str = Field(..., description="Side effect kind, e.g. sms")
    target: Optional[str] = Field(None, description="Recipient of the side effect")
    success: bool = Field(..., description="Whether the attempt succeeded")
    error: Optional[str] = Field(None, description="Failure detail")


class StatusUpdateResponse(BaseModel):
    """Response for a single status transition."""

    ok: bool = Field(True)
    id: str = Field(..., description="Application ID")
    status: str = Field(..., description="New status")
    previous_status: Optional[str] = Field(None, description="Status before the change")
    side_effects: List[SideEffectResponse] = Field(default_factory=list)


class BulkOutcomeResponse(BaseModel):
    """Per-record outcome of a bulk operation."""

    id: str
    outcome: str = Field(..., description="updated or not_found")
    previous_status: Optional[str] = None


class BulkStatusResponse(BaseModel):
    """Response for a bulk status change."""

    updated_count: int
    status: str
    undo_token: Optional[str] = Field(None, description="Token accepted by the undo route")
    outcomes: List[BulkOutcomeResponse] = Field(default_factory=list)


class CheckoutResponse(BaseModel):
    """Response for a checkout request."""

    success: bool
    invoice: Dict[str, Any] = Field(default_factory=dict)
    message: str


class ErrorResponse(BaseModel):
    """Problem details error response."""

    type: str = Field(..., description="Error type URI")
    title: str = Field(..., description="Error title")
    status: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Error detail")
    instance: str = Field(..., description="Request instance URI")


class ValidationErrorDetail(BaseModel):
    """Validation error detail."""

    field: str = Field(..., description="Field name")
    message: str = Field(..., description="Error message")
    type: Optional[str] = Field(None, description="Error type")


class ValidationErrorResponse(ErrorResponse):
    """Validation error response with field details."""

    errors: List[ValidationErrorDetail] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="healthy, degraded or unhealthy")
    checks: Dict[str, bool] = Field(default_factory=dict)
    response_time_ms: Optional[float] = Field(None, description="Time spent running the checks")
    version: Optional[str] = None
    environment: Optional[str] = None
    uptime_seconds: Optional[float] = None
    dependencies: Dict[str, Any] = Field(default_factory=dict)
