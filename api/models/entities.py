# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the permit portal.
"""

import re
from datetime import datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, ConfigDict
from .base import BaseEntity, TimestampedEntity, generate_object_id
from .enums import (
    ApplicationStatus,
    ApplicationType,
    PaymentStatus,
    UserRole,
)

EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


class Applicant(BaseEntity):
    """Citizen who owns one or more applications, keyed by email."""

    full_name: str = Field(..., min_length=2, max_length=100, description="Applicant full name")
    phone: Optional[str] = Field(None, description="Mobile number used for SMS updates")
    email: str = Field(..., max_length=254, description="Unique applicant email")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        """Validate email format."""
        if not re.match(EMAIL_PATTERN, v.strip().lower()):
            raise ValueError('Invalid email format')
        return v.strip().lower()

    @field_validator('full_name')
    @classmethod
    def validate_name(cls, v):
        """Validate applicant name."""
        if len(v.strip()) < 2:
            raise ValueError('Full name must have at least 2 characters')
        return v.strip()


class Application(TimestampedEntity):
    """Permit application owned by an applicant."""

    applicant_id: str = Field(..., description="Owning applicant ID")
    type: ApplicationType = Field(..., description="Permit type")
    status: ApplicationStatus = Field(default=ApplicationStatus.SUBMITTED, description="Workflow status")
    reference_no: str = Field(..., description="Human-facing reference number")
    fee_amount: float = Field(default=0, ge=0, description="Assessed permit fee")

    def short_reference(self) -> str:
        """Reference shown to citizens in notifications."""
        return self.reference_no or self.id[:8]


class Document(BaseEntity):
    """Uploaded supporting document. Documents are never updated."""

    application_id: str = Field(..., description="Owning application ID")
    kind: str = Field(..., min_length=1, max_length=100, description="Document kind, e.g. dti_registration")
    file_path: str = Field(..., description="Storage path of the uploaded file")
    uploaded_by: Optional[str] = Field(None, description="Email of the uploader")


class Payment(BaseEntity):
    """Fee payment recorded at checkout and settled by the provider webhook."""

    application_id: str = Field(..., description="Application the payment settles")
    amount: float = Field(..., gt=0, description="Amount in PHP")
    status: PaymentStatus = Field(default=PaymentStatus.PENDING, description="Payment status")
    external_ref: str = Field(..., description="Provider invoice reference")
    method: str = Field(default="gcash", description="Payment method")


class UserRoleAssignment(BaseModel):
    """Role row, one per user ID."""

    model_config = ConfigDict(use_enum_values=True)

    user_id: str = Field(..., min_length=1, description="User identifier")
    email: str = Field(..., description="User email used for permission lookups")
    role: UserRole = Field(default=UserRole.USER, description="Assigned role")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="Last change timestamp")

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()


class AuditLog(BaseModel):
    """Audit log entry for status changes and role assignments."""

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Action timestamp")
    actor: Optional[str] = Field(None, description="Email of the acting user")
    entity: str = Field(..., description="Entity type")
    entity_id: str = Field(..., description="Entity identifier")
    action: str = Field(..., description="Action performed")
    before: Optional[Dict[str, Any]] = Field(None, description="State before action")
    after: Optional[Dict[str, Any]] = Field(None, description="State after action")
    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace ID")

    model_config = ConfigDict(
        use_enum_values=True
    )

    @field_validator('entity')
    @classmethod
    def validate_entity(cls, v):
        """Validate entity type."""
        valid_entities = ['application', 'payment', 'user_role']
        if v not in valid_entities:
            raise ValueError(f'Invalid entity type: {v}')
        return v


class UserContext(BaseModel):
    """User context for request processing with authentication and authorization data."""

    user_id: str = Field(..., description="Authenticated user ID")
    email: Optional[str] = Field(None, description="User email")
    role: UserRole = Field(default=UserRole.USER, description="Resolved role")
    permissions: List[str] = Field(default_factory=list, description="User's effective permissions")
    token_payload: Optional[Dict[str, Any]] = Field(None, description="Original JWT payload")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")

    model_config = ConfigDict(
        use_enum_values=True
    )

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value)

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN.value

    def has_permission(self, permission: str) -> bool:
        """Check if user has a specific permission."""
        return permission in self.permissions

    def has_any_permission(self, permissions: List[str]) -> bool:
        """Check if user has any of the specified permissions."""
        return any(perm in self.permissions for perm in permissions)

    def has_all_permissions(self, permissions: List[str]) -> bool:
        """Check if user has all of the specified permissions."""
        return all(perm in self.permissions for perm in permissions)
