# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the permit portal.
"""

from enum import Enum


class ApplicationStatus(str, Enum):
    """Permit application workflow status enumeration."""
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    READY_FOR_PICKUP = "ready_for_pickup"
    REJECTED = "rejected"


class ApplicationType(str, Enum):
    """Kinds of permits citizens can apply for."""
    BUSINESS = "business"
    BUILDING = "building"
    BARANGAY = "barangay"


class PaymentStatus(str, Enum):
    """Payment lifecycle status."""
    PENDING = "pending"
    PAID = "paid"


class UserRole(str, Enum):
    """Portal roles, each a strict superset of the one before."""
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class Permission(str, Enum):
    """Fine-grained permissions granted through roles."""
    VIEW_OWN_APPLICATIONS = "view_own_applications"
    EDIT_OWN_APPLICATIONS = "edit_own_applications"
    DELETE_OWN_APPLICATIONS = "delete_own_applications"
    VIEW_ALL_APPLICATIONS = "view_all_applications"
    EDIT_ALL_APPLICATIONS = "edit_all_applications"
    DELETE_ALL_APPLICATIONS = "delete_all_applications"
    MANAGE_USERS = "manage_users"
    MANAGE_ADMINS = "manage_admins"
    SYSTEM_SETTINGS = "system_settings"
    AUDIT_LOGS = "audit_logs"
    PERFORMANCE_MONITORING = "performance_monitoring"


class ChangeKind(str, Enum):
    """Change event kinds observed on the applications collection."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
