# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Record stores for applicants, applications, documents, payments and roles.

These classes own the collection names and query shapes; the generic
driver work is delegated to ``MongoDBService``.
"""

import logging
from datetime import datetime
from typing import List, Dict, Optional, Any, Iterable
from pymongo import DESCENDING
from opentelemetry import trace

from models.entities import Application, Document, Payment, UserRoleAssignment
from models.enums import PaymentStatus
from domain.applications import ApplicationFilters, build_application_query
from services.mongodb import MongoDBService, PaginationResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

APPLICANTS = "applicants"
APPLICATIONS = "applications"
DOCUMENTS = "documents"
PAYMENTS = "payments"
USER_ROLES = "user_roles"


class ApplicationRecordStore:
    """Persistence for applicants and everything they own."""

    def __init__(self, mongodb_service: MongoDBService):
        self.mongodb = mongodb_service

    # Applicants

    def upsert_applicant(self, full_name: str, phone: Optional[str], email: str) -> Dict[str, Any]:
        """
        Create the applicant for ``email`` or refresh its name and phone.

        Args:
            full_name: Applicant full name
            phone: Mobile number
            email: Normalized email, the unique key

        Returns:
            Stored applicant document
        """
        with tracer.start_as_current_span("records.upsert_applicant"):
            return self.mongodb.upsert(
                APPLICANTS,
                {"email": email},
                {"full_name": full_name, "phone": phone, "updated_at": datetime.utcnow()},
                on_insert={"created_at": datetime.utcnow()},
            )

    def get_applicant(self, applicant_id: str) -> Optional[Dict[str, Any]]:
        return self.mongodb.find_by_id(APPLICANTS, applicant_id)

    def find_applicant_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.mongodb.find_one(APPLICANTS, {"email": email.strip().lower()})

    # Applications

    def insert_application(self, application: Application) -> str:
        document = application.to_document()
        document["_id"] = application.id
        return self.mongodb.create(APPLICATIONS, document)

    def get_application(self, application_id: str) -> Optional[Dict[str, Any]]:
        return self.mongodb.find_by_id(APPLICATIONS, application_id)

    def get_applications(self, application_ids: List[str]) -> List[Dict[str, Any]]:
        """Fetch several applications in one read."""
        if not application_ids:
            return []
        return self.mongodb.find(APPLICATIONS, {"_id": {"$in": list(application_ids)}})

    def list_for_applicant(self, applicant_id: str) -> List[Dict[str, Any]]:
        """All applications of one applicant, newest first."""
        return self.mongodb.find(
            APPLICATIONS,
            {"applicant_id": applicant_id},
            sort=[("created_at", DESCENDING)],
        )

    def list_recent(self, limit: int = 0) -> List[Dict[str, Any]]:
        """Every application, newest first; ``limit`` 0 means no cap."""
        return self.mongodb.find(APPLICATIONS, {}, sort=[("created_at", DESCENDING)], limit=limit)

    def set_status(self, application_id: str, status: str) -> bool:
        """Overwrite the status of one application; False when it does not exist."""
        return self.mongodb.update_by_id(
            APPLICATIONS,
            application_id,
            {"status": status, "updated_at": datetime.utcnow()},
        )

    def set_status_many(self, application_ids: List[str], status: str) -> int:
        """Set one status on every listed application in a single write."""
        return self.mongodb.update_many(
            APPLICATIONS,
            {"_id": {"$in": list(application_ids)}},
            {"status": status, "updated_at": datetime.utcnow()},
        )

    def restore_statuses(self, statuses: Dict[str, str]) -> int:
        """Write each application's own status back in one bulk write."""
        now = datetime.utcnow()
        return self.mongodb.update_each(
            APPLICATIONS,
            {app_id: {"status": status, "updated_at": now} for app_id, status in statuses.items()},
        )

    def paginate_applications(self, filters: ApplicationFilters, page: int = 1,
                              page_size: int = 10) -> PaginationResult:
        """Admin list, newest first."""
        query = build_application_query(filters)
        return self.mongodb.paginate(APPLICATIONS, query, page=page, page_size=page_size,
                                     sort_by="created_at", sort_order=DESCENDING)

    def count_by_status(self) -> Dict[str, int]:
        """Count applications per status."""
        rows = self.mongodb.aggregate(APPLICATIONS, [
            {"$group": {"_id": "$status", "count": {"$sum": 1}}}
        ])
        return {row["_id"]: row["count"] for row in rows if row.get("_id")}

    def delete_application(self, application_id: str) -> bool:
        return self.mongodb.delete_by_id(APPLICATIONS, application_id)

    def watch_applications(self) -> Iterable[Dict[str, Any]]:
        """Change stream over the applications collection."""
        return self.mongodb.watch(APPLICATIONS, [
            {"$match": {"operationType": {"$in": ["insert", "update", "replace", "delete"]}}}
        ])

    # Documents

    def insert_document(self, document: Document) -> str:
        data = document.to_document()
        data["_id"] = document.id
        return self.mongodb.create(DOCUMENTS, data)

    def list_documents(self, application_id: str) -> List[Dict[str, Any]]:
        return self.mongodb.find(
            DOCUMENTS,
            {"application_id": application_id},
            sort=[("created_at", DESCENDING)],
        )

    # Payments

    def insert_payment(self, payment: Payment) -> str:
        data = payment.to_document()
        data["_id"] = payment.id
        return self.mongodb.create(PAYMENTS, data)

    def find_payment_by_ref(self, external_ref: str) -> Optional[Dict[str, Any]]:
        return self.mongodb.find_one(PAYMENTS, {"external_ref": external_ref})

    def mark_payment_paid(self, external_ref: str) -> Optional[Dict[str, Any]]:
        """
        Mark the payment for ``external_ref`` as paid.

        Idempotent: repeated deliveries leave the same state. Returns the
        payment document or None when the reference is unknown.
        """
        payment = self.find_payment_by_ref(external_ref)
        if payment is None:
            return None
        self.mongodb.update_by_id(PAYMENTS, payment["id"], {
            "status": PaymentStatus.PAID.value,
            "paid_at": payment.get("paid_at") or datetime.utcnow(),
        })
        payment["status"] = PaymentStatus.PAID.value
        return payment

    def has_payment(self, application_id: str) -> bool:
        return self.mongodb.count(PAYMENTS, {"application_id": application_id}) > 0


class RoleStore:
    """Persistence for portal role assignments, one row per user ID."""

    def __init__(self, mongodb_service: MongoDBService):
        self.mongodb = mongodb_service

    def get_role_by_email(self, email: str) -> Optional[str]:
        """Return the stored role for an email, or None when no row exists."""
        row = self.mongodb.find_one(USER_ROLES, {"email": email.strip().lower()})
        return row.get("role") if row else None

    def get_by_user_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.mongodb.find_one(USER_ROLES, {"user_id": user_id})

    def upsert_role(self, assignment: UserRoleAssignment) -> Dict[str, Any]:
        """Insert or replace the role row of ``assignment.user_id``."""
        with tracer.start_as_current_span("records.upsert_role") as span:
            span.set_attributes({"role.user_id": assignment.user_id, "role.value": assignment.role})
            return self.mongodb.upsert(
                USER_ROLES,
                {"user_id": assignment.user_id},
                {"email": assignment.email, "role": assignment.role, "updated_at": assignment.updated_at},
            )

    def list_roles(self) -> List[Dict[str, Any]]:
        return self.mongodb.find(USER_ROLES, {}, sort=[("email", 1)])
