# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for Pydantic models.
"""

import pytest
from pydantic import ValidationError
from bson import ObjectId

from models.entities import Applicant, Application, Payment, UserRoleAssignment, AuditLog, UserContext
from models.enums import ApplicationStatus, PaymentStatus, UserRole
from models.requests import (
    SubmitApplicationRequest, BulkStatusRequest, PaymentWebhookPayload,
    AssignRoleRequest, AdminListQuery, CheckoutRequest
)


class TestApplicantModel:
    """Test Applicant model validation."""

    def test_email_normalization(self):
        applicant = Applicant(full_name="  Jane Dela Cruz ", email=" Jane@Example.COM ")

        assert applicant.email == "jane@example.com"
        assert applicant.full_name == "Jane Dela Cruz"
        assert ObjectId.is_valid(applicant.id)

    def test_invalid_email(self):
        with pytest.raises(ValidationError) as exc_info:
            Applicant(full_name="Jane", email="not-an-email")

        assert "Invalid email format" in str(exc_info.value)


class TestApplicationModel:
    """Test Application model defaults."""

    def test_defaults(self):
        application = Application(applicant_id="a1", type="building", reference_no="BP-20240115-ABC123")

        assert application.status == ApplicationStatus.SUBMITTED.value
        assert application.fee_amount == 0
        assert application.short_reference() == "BP-20240115-ABC123"
        assert "id" not in application.to_document()

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            Application(applicant_id="a1", type="fishing", reference_no="BP-1")

    def test_status_assignment_is_validated(self):
        application = Application(applicant_id="a1", type="business", reference_no="BP-1")

        with pytest.raises(ValidationError):
            application.status = "archived"


class TestPaymentModel:
    """Test Payment model validation."""

    def test_pending_by_default(self):
        payment = Payment(application_id="a1", amount=500, external_ref="inv-1")

        assert payment.status == PaymentStatus.PENDING.value
        assert payment.method == "gcash"

    def test_amount_must_be_positive(self):
        with pytest.raises(ValidationError):
            Payment(application_id="a1", amount=0, external_ref="inv-1")


class TestRoleModels:
    """Test role assignment and user context models."""

    def test_assignment_normalizes_email(self):
        assignment = UserRoleAssignment(user_id="u1", email=" Clerk@Dipolog.gov.ph ", role="admin")

        assert assignment.email == "clerk@dipolog.gov.ph"
        assert assignment.role == "admin"

    def test_assignment_rejects_unknown_role(self):
        with pytest.raises(ValidationError):
            UserRoleAssignment(user_id="u1", email="clerk@dipolog.gov.ph", role="owner")

    @pytest.mark.parametrize("role,is_admin,is_super_admin", [
        (UserRole.USER, False, False),
        (UserRole.ADMIN, True, False),
        (UserRole.SUPER_ADMIN, True, True),
    ])
    def test_user_context_role_helpers(self, role, is_admin, is_super_admin):
        context = UserContext(user_id="u1", role=role)

        assert context.is_admin is is_admin
        assert context.is_super_admin is is_super_admin

    def test_user_context_permissions(self):
        context = UserContext(user_id="u1", permissions=["view_own_applications", "edit_own_applications"])

        assert context.has_permission("view_own_applications")
        assert context.has_any_permission(["manage_users", "edit_own_applications"])
        assert not context.has_all_permissions(["view_own_applications", "manage_users"])


class TestAuditLogModel:
    """Test AuditLog model validation."""

    def test_valid_audit_log(self):
        entry = AuditLog(
            actor="admin@dipolog.gov.ph",
            entity="application",
            entity_id="a1",
            action="status_change",
            before={"status": "submitted"},
            after={"status": "approved"},
        )

        assert entry.entity == "application"
        assert entry.after == {"status": "approved"}
        assert ObjectId.is_valid(entry.id)

    def test_invalid_entity_type(self):
        with pytest.raises(ValidationError) as exc_info:
            AuditLog(entity="organization", entity_id="x", action="create")

        assert "Invalid entity type" in str(exc_info.value)


class TestRequestModels:
    """Test request model validation."""

    def _submit(self, **overrides):
        data = {
            "full_name": "Jane Dela Cruz",
            "phone": "0917 123 4567",
            "email": "Jane@Example.com",
            "type": "business",
        }
        data.update(overrides)
        return SubmitApplicationRequest(**data)

    def test_submit_request(self):
        request = self._submit()

        assert request.email == "jane@example.com"
        assert request.phone == "0917 123 4567"
        assert request.type == "business"
        assert request.fee_amount is None

    @pytest.mark.parametrize("field,value", [
        ("phone", "12345"),
        ("email", "jane@"),
        ("full_name", " J "),
        ("type", "fishing"),
        ("fee_amount", -1),
    ])
    def test_submit_request_rejects(self, field, value):
        with pytest.raises(ValidationError) as exc_info:
            self._submit(**{field: value})

        assert exc_info.value.errors()[0]["loc"][0] == field

    def test_bulk_request_dedupes_ids(self):
        request = BulkStatusRequest(ids=["a", "b", "a", "", "c"], status="approved")

        assert request.ids == ["a", "b", "c"]

    def test_bulk_request_requires_ids(self):
        with pytest.raises(ValidationError):
            BulkStatusRequest(ids=[], status="approved")
        with pytest.raises(ValidationError):
            BulkStatusRequest(ids=[""], status="approved")

    @pytest.mark.parametrize("payload,reference,is_paid", [
        ({"id": "inv-1", "external_id": "BP-1", "status": "PAID"}, "inv-1", True),
        ({"external_id": "BP-1", "status": "paid"}, "BP-1", True),
        ({"id": "inv-1", "status": "EXPIRED"}, "inv-1", False),
        ({}, None, False),
    ])
    def test_webhook_payload(self, payload, reference, is_paid):
        parsed = PaymentWebhookPayload(**payload)

        assert parsed.reference == reference
        assert parsed.is_paid is is_paid

    def test_webhook_payload_keeps_extra_fields(self):
        parsed = PaymentWebhookPayload(id="inv-1", status="PAID", paid_amount=500)

        assert parsed.model_dump()["paid_amount"] == 500

    def test_assign_role_request(self):
        request = AssignRoleRequest(email="Clerk@Dipolog.gov.ph", role="super_admin")

        assert request.email == "clerk@dipolog.gov.ph"
        assert request.role == "super_admin"

        with pytest.raises(ValidationError):
            AssignRoleRequest(email="clerk@dipolog.gov.ph", role="owner")

    def test_admin_list_query_defaults(self):
        query = AdminListQuery()

        assert (query.page, query.page_size, query.status) == (1, 10, "all")
        assert query.to_filters() == {"status": "all", "search": None}

        with pytest.raises(ValidationError):
            AdminListQuery(page_size=500)

    def test_checkout_amount_positive(self):
        with pytest.raises(ValidationError):
            CheckoutRequest(application_id="a1", amount=0)
