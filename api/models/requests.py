# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for API endpoints.
"""

import re
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, ConfigDict
from .entities import EMAIL_PATTERN
from .enums import ApplicationType, UserRole


class SubmitApplicationRequest(BaseModel):
    """Request model for submitting a permit application."""

    model_config = ConfigDict(use_enum_values=True)

    full_name: str = Field(..., description="Applicant full name")
    phone: str = Field(..., description="Applicant mobile number")
    email: str = Field(..., description="Applicant email address")
    type: ApplicationType = Field(..., description="Permit type")
    fee_amount: Optional[float] = Field(None, ge=0, description="Assessed permit fee")

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, v):
        v = v.strip()
        if len(v) < 2:
            raise ValueError('Full name must have at least 2 characters')
        if len(v) > 100:
            raise ValueError('Full name must have at most 100 characters')
        return v

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        """Accept any formatting as long as at least 10 digits are present."""
        digits = re.sub(r'\D', '', v)
        if len(digits) < 10:
            raise ValueError('Phone number must contain at least 10 digits')
        return v.strip()

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if len(v) > 254 or not re.match(EMAIL_PATTERN, v):
            raise ValueError('Invalid email format')
        return v


class StatusUpdateRequest(BaseModel):
    """Request model for a single status transition.

    ``status`` stays a plain string so unknown values reach the workflow
    engine and are rejected there with the same error as every other caller.
    """

    status: str = Field(..., min_length=1, description="Target status")
    notify: bool = Field(default=False, description="Send an SMS to the applicant")


class BulkStatusRequest(BaseModel):
    """Request model for moving a selection of applications to one status."""

    ids: List[str] = Field(..., min_length=1, max_length=100, description="Selected application IDs")
    status: str = Field(..., min_length=1, description="Target status")

    @field_validator('ids')
    @classmethod
    def dedupe_ids(cls, v):
        seen = []
        for item in v:
            if item and item not in seen:
                seen.append(item)
        if not seen:
            raise ValueError('At least one application ID is required')
        return seen


class CheckoutRequest(BaseModel):
    """Request model for creating a payment invoice."""

    application_id: str = Field(..., min_length=1, description="Application being paid for")
    amount: float = Field(..., gt=0, description="Amount in PHP")
    email: Optional[str] = Field(None, description="Payer email")


class PaymentWebhookPayload(BaseModel):
    """Invoice callback sent by the payment provider."""

    model_config = ConfigDict(extra='allow')

    id: Optional[str] = Field(None, description="Provider invoice ID")
    external_id: Optional[str] = Field(None, description="Our reference number")
    status: Optional[str] = Field(None, description="Invoice status")

    @property
    def reference(self) -> Optional[str]:
        return self.id or self.external_id

    @property
    def is_paid(self) -> bool:
        return (self.status or '').lower() == 'paid'


class DocumentUploadRequest(BaseModel):
    """Request model for attaching a document to an application."""

    kind: str = Field(..., min_length=1, max_length=100, description="Document kind")
    file_name: str = Field(..., min_length=1, max_length=255, description="Original file name")
    content_base64: str = Field(..., min_length=1, description="Base64 encoded file content")


class AssignRoleRequest(BaseModel):
    """Request model for assigning a portal role."""

    model_config = ConfigDict(use_enum_values=True)

    email: str = Field(..., description="Email of the user receiving the role")
    role: UserRole = Field(..., description="Role to assign")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if not re.match(EMAIL_PATTERN, v):
            raise ValueError('Invalid email format')
        return v


class SendSmsRequest(BaseModel):
    """Request model for a manual SMS send."""

    to: str = Field(..., min_length=1, description="Recipient number")
    message: str = Field(..., min_length=1, max_length=480, description="Message text")


class TokenRequest(BaseModel):
    """Request model for issuing a development access token."""

    email: str = Field(..., description="Identity to embed in the token")
    user_id: Optional[str] = Field(None, description="User identifier, defaults to the email")


class DashboardViewRequest(BaseModel):
    """Request model for changing the dashboard page or filters."""

    page: Optional[int] = Field(None, ge=1, description="Page number")
    status: Optional[str] = Field(None, description="Status filter, 'all' for none")
    search: Optional[str] = Field(None, max_length=100, description="Search text")


class ApplicationPath(BaseModel):
    """Path parameters for application routes."""

    application_id: str = Field(..., description="Application ID")


class UndoPath(BaseModel):
    """Path parameters for the undo route."""

    token: str = Field(..., description="Undo token returned by a bulk operation")


class UserRolePath(BaseModel):
    """Path parameters for role assignment."""

    user_id: str = Field(..., description="User ID")


class ApplicationListQuery(BaseModel):
    """Query parameters for listing an applicant's applications."""

    email: Optional[str] = Field(None, description="Applicant email")


class AdminListQuery(BaseModel):
    """Filters and pagination for the admin application list."""

    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=10, ge=1, le=100, description="Items per page")
    status: Optional[str] = Field(default="all", description="Status filter, 'all' for none")
    search: Optional[str] = Field(None, max_length=100, description="Search in type, id and reference")

    def to_filters(self) -> Dict[str, Any]:
        return {"status": self.status, "search": self.search}
