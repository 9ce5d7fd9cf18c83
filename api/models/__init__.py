# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the permit portal.
"""

# Base models
from .base import BaseEntity, TimestampedEntity, generate_object_id

# Enumerations
from .enums import (
    ApplicationStatus,
    ApplicationType,
    PaymentStatus,
    UserRole,
    Permission,
    ChangeKind
)

# Core entities
from .entities import (
    Applicant,
    Application,
    Document,
    Payment,
    UserRoleAssignment,
    AuditLog,
    UserContext
)

# Request models
from .requests import (
    SubmitApplicationRequest,
    StatusUpdateRequest,
    BulkStatusRequest,
    CheckoutRequest,
    PaymentWebhookPayload,
    DocumentUploadRequest,
    AssignRoleRequest,
    SendSmsRequest,
    TokenRequest,
    DashboardViewRequest,
    ApplicationPath,
    UndoPath,
    UserRolePath,
    ApplicationListQuery,
    AdminListQuery
)

# Response models
from .responses import (
    HalLink,
    SubmitApplicationResponse,
    StatusUpdateResponse,
    BulkStatusResponse,
    CheckoutResponse,
    ErrorResponse,
    ValidationErrorResponse,
    HealthResponse
)

__all__ = [
    # Base
    "BaseEntity",
    "TimestampedEntity",
    "generate_object_id",

    # Enums
    "ApplicationStatus",
    "ApplicationType",
    "PaymentStatus",
    "UserRole",
    "Permission",
    "ChangeKind",

    # Entities
    "Applicant",
    "Application",
    "Document",
    "Payment",
    "UserRoleAssignment",
    "AuditLog",
    "UserContext",

    # Requests
    "SubmitApplicationRequest",
    "StatusUpdateRequest",
    "BulkStatusRequest",
    "CheckoutRequest",
    "PaymentWebhookPayload",
    "DocumentUploadRequest",
    "AssignRoleRequest",
    "SendSmsRequest",
    "TokenRequest",
    "DashboardViewRequest",
    "ApplicationPath",
    "UndoPath",
    "UserRolePath",
    "ApplicationListQuery",
    "AdminListQuery",

    # Responses
    "HalLink",
    "SubmitApplicationResponse",
    "StatusUpdateResponse",
    "BulkStatusResponse",
    "CheckoutResponse",
    "ErrorResponse",
    "ValidationErrorResponse",
    "HealthResponse",
]
