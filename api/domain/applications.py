# SPDX-License-Identifier: Apache-2.0

"""
Application domain logic for the permit status workflow.

This module contains pure functions and value types for status parsing,
nominal transition checks, reference number generation, citizen messages,
and admin list filtering. Persistence lives in the record store and the
orchestration in the workflow engine.
"""

import re
import secrets
from typing import List, Dict, Any, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime
from models.enums import ApplicationStatus, ApplicationType


class WorkflowError(Exception):
    """Base class for workflow failures surfaced to API callers."""


class InvalidStatusError(WorkflowError, ValueError):
    """Raised when a status value is not one of the known statuses."""

    def __init__(self, value: Any):
        self.value = value
        allowed = ", ".join(s.value for s in ApplicationStatus)
        super().__init__(f"Invalid status '{value}'. Allowed values: {allowed}")


class ApplicationNotFoundError(WorkflowError, LookupError):
    """Raised when an application ID does not match a stored record."""

    def __init__(self, application_id: str):
        self.application_id = application_id
        super().__init__(f"Application {application_id} not found")


class UndoUnavailableError(WorkflowError):
    """Raised when an undo action was already used or has expired."""


# Forward path of the nominal flow; rejection may happen from any
# non-terminal state.
NOMINAL_TRANSITIONS: Dict[str, List[str]] = {
    ApplicationStatus.SUBMITTED.value: [ApplicationStatus.UNDER_REVIEW.value, ApplicationStatus.REJECTED.value],
    ApplicationStatus.UNDER_REVIEW.value: [ApplicationStatus.APPROVED.value, ApplicationStatus.REJECTED.value],
    ApplicationStatus.APPROVED.value: [ApplicationStatus.READY_FOR_PICKUP.value, ApplicationStatus.REJECTED.value],
    ApplicationStatus.READY_FOR_PICKUP.value: [],
    ApplicationStatus.REJECTED.value: [],
}

TERMINAL_STATUSES = frozenset({
    ApplicationStatus.READY_FOR_PICKUP.value,
    ApplicationStatus.REJECTED.value,
})

REFERENCE_PREFIXES = {
    ApplicationType.BUSINESS.value: "BP",
    ApplicationType.BUILDING.value: "BLD",
    ApplicationType.BARANGAY.value: "BRGY",
}

STATUS_FILTER_ALL = "all"


@dataclass
class SideEffectAttempt:
    """Record of one best-effort side effect tried during an operation."""
    kind: str
    target: Optional[str]
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "target": self.target,
            "success": self.success,
            "error": self.error,
        }


@dataclass
class TransitionOutcome:
    """Result of a status transition, kept apart from its side effects."""
    application_id: str
    status: str
    previous_status: Optional[str]
    side_effects: List[SideEffectAttempt] = field(default_factory=list)

    @property
    def nominal(self) -> bool:
        return is_nominal_transition(self.previous_status, self.status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "id": self.application_id,
            "status": self.status,
            "previous_status": self.previous_status,
            "side_effects": [attempt.to_dict() for attempt in self.side_effects],
        }


@dataclass
class ApplicationFilters:
    """Filters for the admin application list."""
    status: Optional[str] = None
    search: Optional[str] = None


def parse_status(value: Union[str, ApplicationStatus, None]) -> ApplicationStatus:
    """
    Parse a status value, rejecting anything outside the closed set.

    Args:
        value: Raw status value from a request or a stored record

    Returns:
        The matching ApplicationStatus

    Raises:
        InvalidStatusError: If the value is not a known status
    """
    if isinstance(value, ApplicationStatus):
        return value
    if not isinstance(value, str):
        raise InvalidStatusError(value)
    try:
        return ApplicationStatus(value.strip().lower())
    except ValueError:
        raise InvalidStatusError(value)


def is_nominal_transition(current: Optional[str], target: str) -> bool:
    """
    Check whether a move follows the nominal forward flow.

    This is informational only. The workflow engine persists any valid
    status regardless of the answer.
    """
    if current is None:
        return target == ApplicationStatus.SUBMITTED.value
    if current == target:
        return True
    return target in NOMINAL_TRANSITIONS.get(current, [])


def generate_reference_no(
    application_type: str,
    now: Optional[datetime] = None,
    suffix: Optional[str] = None
) -> str:
    """
    Generate a human-facing reference number.

    Format is ``<PREFIX>-<YYYYMMDD>-<6 hex>``, e.g. ``BP-20240115-3FA9C2``.

    Args:
        application_type: Permit type value
        now: Timestamp to embed, defaults to the current UTC time
        suffix: Fixed suffix, random when omitted

    Returns:
        Reference number string
    """
    prefix = REFERENCE_PREFIXES.get(application_type, "APP")
    now = now or datetime.utcnow()
    suffix = (suffix or secrets.token_hex(3)).upper()
    return f"{prefix}-{now.strftime('%Y%m%d')}-{suffix}"


def humanize_status(status: str) -> str:
    """Turn ``ready_for_pickup`` into ``ready for pickup``."""
    return str(status).replace("_", " ")


def build_status_message(reference: str, status: str, sender: str = "Dipolog Permits") -> str:
    """Build the SMS text sent when an application changes status."""
    return f"{sender}: Your application {reference} status is now {humanize_status(status)}."


def application_reference(application: Dict[str, Any]) -> str:
    """Reference shown to citizens, falling back to a short ID."""
    return application.get("reference_no") or str(application.get("id", ""))[:8]


def normalize_status_filter(status: Optional[str]) -> Optional[str]:
    """
    Normalize the status filter of the admin list.

    ``None``, empty and ``all`` mean no filter; anything else must be a
    valid status.
    """
    if status is None or status.strip() == "" or status.strip().lower() == STATUS_FILTER_ALL:
        return None
    return parse_status(status).value


def build_application_query(filters: ApplicationFilters) -> Dict[str, Any]:
    """
    Build a MongoDB query for the admin application list.

    Search is a case-insensitive substring match over type, ID and
    reference number.
    """
    query: Dict[str, Any] = {}

    status = normalize_status_filter(filters.status)
    if status:
        query["status"] = status

    search = (filters.search or "").strip()
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [
            {"type": pattern},
            {"_id": pattern},
            {"reference_no": pattern},
        ]

    return query


def summarize_status_counts(counts: Dict[str, int]) -> Dict[str, int]:
    """Fill in zero counts for missing statuses and add the total."""
    stats = {status.value: int(counts.get(status.value, 0)) for status in ApplicationStatus}
    stats["total"] = sum(stats.values())
    return stats

