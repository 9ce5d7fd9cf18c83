# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Application endpoints: citizen submission, lookup, documents and status changes.
"""

from flask import request, jsonify, current_app, g
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging
from typing import Dict, Any

from models.entities import Document, UserContext
from models.enums import Permission
from models.requests import (
    SubmitApplicationRequest,
    StatusUpdateRequest,
    DocumentUploadRequest,
    ApplicationListQuery,
    ApplicationPath,
)
from models.responses import (
    ErrorResponse,
    StatusUpdateResponse,
    SubmitApplicationResponse,
    ValidationErrorResponse,
)
from middleware.auth import require_auth, require_permission, optional_auth
from middleware.error_handler import (
    AuthorizationException,
    NotFoundException,
    ValidationException,
)
from middleware.rate_limit import rate_limit
from middleware.validation import parse_json_body, parse_query_args
from services.storage import DocumentValidationError, decode_base64_content

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

applications_tag = Tag(name="Applications", description="Permit application submission and tracking")
applications_bp = APIBlueprint(
    'applications',
    __name__,
    url_prefix='/api/applications',
    abp_tags=[applications_tag]
)


def _load_application(application_id: str) -> Dict[str, Any]:
    application = current_app.record_store.get_application(application_id)
    if application is None:
        raise NotFoundException(f"Application {application_id} not found")
    return application


def _ensure_can_view(user_context: UserContext, application: Dict[str, Any]) -> None:
    """Staff see everything; applicants see applications filed under their email."""
    if user_context.has_permission(Permission.VIEW_ALL_APPLICATIONS.value):
        return

    applicant = current_app.record_store.get_applicant(application.get("applicant_id")) or {}
    if (applicant.get("email") or "").lower() != (user_context.email or "").lower():
        raise AuthorizationException("You can only view your own applications")


@applications_bp.post('', responses={201: SubmitApplicationResponse, 422: ValidationErrorResponse})
@rate_limit(per_user=False)
@optional_auth
def submit_application():
    """
    Submit a permit application.

    Citizens do not need an account to apply. The applicant is matched by
    email, and the new application starts in ``submitted``.
    """
    submission = parse_json_body(SubmitApplicationRequest)

    with tracer.start_as_current_span("applications.submit") as span:
        span.set_attribute("application.type", submission.type)
        result = current_app.workflow_engine.submit(submission)

    response = {
        "id": result["id"],
        "reference_no": result["reference_no"],
        "status": result["status"],
        "_links": {
            "self": {"href": f"/api/applications/{result['id']}"},
            "checkout": {"href": "/api/payments/checkout", "method": "POST"},
        }
    }
    return jsonify(response), 201


@applications_bp.get('')
@require_auth
def list_applications():
    """
    List applications, newest first.

    Without ``email`` a caller holding ``view_all_applications`` gets every
    application and anyone else gets their own. Without that permission the
    caller may only list their own email.
    """
    user_context: UserContext = g.user_context
    query = parse_query_args(ApplicationListQuery)
    can_view_all = user_context.has_permission(Permission.VIEW_ALL_APPLICATIONS.value)
    requested = (query.email or "").strip().lower()

    if not requested and can_view_all:
        applications = current_app.workflow_engine.all_applications()
    else:
        email = requested or (user_context.email or "").strip().lower()
        if not email:
            raise ValidationException("An email is required", [
                {"field": "email", "message": "Field required", "type": "missing"}
            ])
        if email != (user_context.email or "").lower() and not can_view_all:
            raise AuthorizationException("You can only list your own applications")
        applications = current_app.workflow_engine.applications_for_email(email)

    formatter = current_app.hal_formatter
    return jsonify({
        "applications": [formatter.format_application(app, user_context.permissions) for app in applications],
        "total": len(applications),
    }), 200


@applications_bp.get('/<application_id>')
@require_auth
def get_application(path: ApplicationPath):
    """Get one application with the links the caller may follow."""
    user_context: UserContext = g.user_context
    application = _load_application(path.application_id)
    _ensure_can_view(user_context, application)

    return jsonify(current_app.hal_formatter.format_application(application, user_context.permissions)), 200


@applications_bp.patch('/<application_id>/status', responses={
    200: StatusUpdateResponse, 404: ErrorResponse, 422: ValidationErrorResponse})
@require_permission(Permission.EDIT_ALL_APPLICATIONS)
def update_application_status(path: ApplicationPath):
    """
    Move an application to a new status.

    Any valid status is accepted regardless of the current one. With
    ``notify`` set the applicant gets an SMS; its outcome is reported in
    ``side_effects`` and never fails the request.
    """
    user_context: UserContext = g.user_context
    update = parse_json_body(StatusUpdateRequest)

    outcome = current_app.workflow_engine.transition(
        path.application_id,
        update.status,
        notify=update.notify,
        actor=user_context.email,
    )
    return jsonify(outcome.to_dict()), 200


@applications_bp.post('/<application_id>/documents')
@require_auth
def upload_document(path: ApplicationPath):
    """Attach a supporting document (pdf, images or Word files, up to 10 MB)."""
    user_context: UserContext = g.user_context
    application = _load_application(path.application_id)
    _ensure_can_view(user_context, application)

    upload = parse_json_body(DocumentUploadRequest)
    try:
        content = decode_base64_content(upload.content_base64)
        file_path = current_app.document_storage.save(application["id"], upload.file_name, content)
    except DocumentValidationError as e:
        raise ValidationException(str(e), [{"field": "file", "message": str(e), "type": "value_error"}])

    document = Document(
        application_id=application["id"],
        kind=upload.kind,
        file_path=file_path,
        uploaded_by=user_context.email,
    )
    document_id = current_app.record_store.insert_document(document)

    logger.info(
        "Document uploaded",
        extra={"application_id": application["id"], "document_id": document_id, "kind": upload.kind}
    )
    return jsonify({
        "id": document_id,
        "application_id": application["id"],
        "kind": document.kind,
        "file_path": file_path,
        "_links": {
            "self": {"href": f"/api/applications/{application['id']}/documents"},
            "application": {"href": f"/api/applications/{application['id']}"},
        }
    }), 201


@applications_bp.get('/<application_id>/documents')
@require_auth
def list_documents(path: ApplicationPath):
    """List the documents attached to an application."""
    user_context: UserContext = g.user_context
    application = _load_application(path.application_id)
    _ensure_can_view(user_context, application)

    documents = current_app.record_store.list_documents(application["id"])
    return jsonify({"documents": documents, "total": len(documents)}), 200
