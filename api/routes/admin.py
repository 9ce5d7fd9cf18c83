# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Staff endpoints: application list and statistics, bulk status changes with
undo, the live dashboard view, role management, the audit trail and
performance monitoring.
"""

from flask import jsonify, current_app, g
from flask_openapi3 import APIBlueprint, Tag
from pydantic import BaseModel, Field
from opentelemetry import trace
import logging
from typing import List, Optional

from models.entities import UserContext, UserRoleAssignment
from models.enums import Permission
from models.requests import (
    AdminListQuery,
    ApplicationPath,
    AssignRoleRequest,
    BulkStatusRequest,
    DashboardViewRequest,
    UndoPath,
    UserRolePath,
)
from models.responses import BulkStatusResponse, ErrorResponse
from domain.applications import ApplicationFilters, normalize_status_filter, summarize_status_counts
from domain.authorization import can_assign_role, role_display_name
from middleware.auth import require_permission, require_any_permission, require_admin, current_permissions
from middleware.error_handler import (
    AuthorizationException,
    BadRequestException,
    ConflictException,
    NotFoundException,
    ServiceUnavailableException,
    ValidationException,
)
from middleware.validation import parse_json_body, parse_query_args
from services.monitoring import DEFAULT_LIMIT, REPORT_TYPES, MonitoringExportError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

admin_tag = Tag(name="Administration", description="Staff application management")
admin_bp = APIBlueprint(
    'admin',
    __name__,
    url_prefix='/api/admin',
    abp_tags=[admin_tag]
)


class SelectionRequest(BaseModel):
    """Change the dashboard selection."""

    toggle: Optional[str] = Field(None, description="Application ID to flip")
    toggle_all: bool = Field(default=False, description="Select or clear the whole page")
    clear: bool = Field(default=False, description="Clear the selection")


class SelectionActionRequest(BaseModel):
    """Apply a status to the current dashboard selection."""

    status: str = Field(..., min_length=1, description="Target status")


class AuditQuery(BaseModel):
    entity: Optional[str] = Field(None, description="Entity type")
    entity_id: Optional[str] = Field(None, description="Entity ID")
    limit: int = Field(default=50, ge=1, le=200)


class MonitoringQuery(BaseModel):
    type: str = Field(default="summary", description="summary, interactions, errors or all")
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, le=1000)


class MonitoringActionQuery(BaseModel):
    action: str = Field(default="send", description="Only send is supported")


def _realtime():
    realtime = getattr(current_app, 'realtime_sync', None)
    if realtime is None:
        raise ServiceUnavailableException("Dashboard sync is not running")
    return realtime


@admin_bp.get('/applications')
@require_permission(Permission.VIEW_ALL_APPLICATIONS)
def list_applications():
    """
    List applications newest first with status statistics.

    Supports ``status`` (``all`` for no filter), ``search`` over type, ID
    and reference number, and page/page_size pagination.
    """
    query = parse_query_args(AdminListQuery)
    status_filter = normalize_status_filter(query.status)
    store = current_app.record_store

    with tracer.start_as_current_span("admin.list_applications") as span:
        span.set_attributes({
            "query.page": query.page,
            "query.page_size": query.page_size,
            "query.status": status_filter or "all"
        })
        result = store.paginate_applications(
            ApplicationFilters(status=status_filter, search=query.search),
            page=query.page,
            page_size=query.page_size,
        )
        stats = summarize_status_counts(store.count_by_status())

    response = current_app.hal_formatter.format_application_collection(
        result.items,
        result.total,
        result.page,
        result.page_size,
        current_permissions(),
        {k: v for k, v in query.to_filters().items() if v and v != "all"}
    )
    response["stats"] = stats
    return jsonify(response), 200


@admin_bp.delete('/applications/<application_id>')
@require_permission(Permission.DELETE_ALL_APPLICATIONS)
def delete_application(path: ApplicationPath):
    """Delete an application. Applications with a payment cannot be deleted."""
    user_context: UserContext = g.user_context
    store = current_app.record_store

    application = store.get_application(path.application_id)
    if application is None:
        raise NotFoundException(f"Application {path.application_id} not found")

    if store.has_payment(path.application_id):
        raise ConflictException("Applications with a recorded payment cannot be deleted")

    store.delete_application(path.application_id)
    current_app.audit_service.log_action(
        user_context.email, "application", path.application_id, "delete",
        before={"status": application.get("status"), "reference_no": application.get("reference_no")}
    )
    return '', 204


@admin_bp.post('/applications/bulk-status', responses={200: BulkStatusResponse})
@require_permission(Permission.EDIT_ALL_APPLICATIONS)
def bulk_update_status():
    """
    Move several applications to one status.

    Returns per-record outcomes and an ``undo_token`` for the undo route.
    """
    user_context: UserContext = g.user_context
    bulk_request = parse_json_body(BulkStatusRequest)

    result = current_app.bulk_coordinator.bulk_transition(
        bulk_request.ids, bulk_request.status, actor=user_context.email
    )
    response = result.to_dict()
    if result.token:
        response["_links"] = {
            "undo": {
                "href": f"/api/admin/applications/bulk-status/{result.token}/undo",
                "method": "POST",
                "title": "Undo this change"
            }
        }
    return jsonify(response), 200


@admin_bp.post('/applications/bulk-status/<token>/undo', responses={409: ErrorResponse})
@require_permission(Permission.EDIT_ALL_APPLICATIONS)
def undo_bulk_status(path: UndoPath):
    """Restore every record of a bulk change to its own prior status. Works once."""
    restored = current_app.bulk_coordinator.undo(path.token)
    return jsonify({"ok": True, "restored_count": restored}), 200


@admin_bp.get('/dashboard')
@require_admin
def get_dashboard():
    """Current dashboard view, kept fresh by change events and polling."""
    realtime = _realtime()
    if realtime.view.last_reloaded_at is None:
        # Sync loop not started in this process
        realtime.reload()
    return jsonify(realtime.snapshot()), 200


@admin_bp.put('/dashboard')
@require_admin
def update_dashboard():
    """Change page, status filter or search and reload the view."""
    view_request = parse_json_body(DashboardViewRequest)
    realtime = _realtime()
    realtime.set_view(page=view_request.page, status=view_request.status, search=view_request.search)
    realtime.reset_new_items()
    return jsonify(realtime.snapshot()), 200


@admin_bp.put('/dashboard/selection')
@require_admin
def update_selection():
    """Toggle one row, toggle the whole page, or clear the selection."""
    selection_request = parse_json_body(SelectionRequest)
    realtime = _realtime()
    selection = realtime.selection

    if selection_request.clear:
        selection.clear()
    elif selection_request.toggle_all:
        selection.toggle_all(item.get("id") for item in realtime.view.items)
    elif selection_request.toggle:
        page_ids = {item.get("id") for item in realtime.view.items}
        if selection_request.toggle not in page_ids:
            raise ValidationException("Only applications on the current page can be selected", [
                {"field": "toggle", "message": "Not on the current page", "type": "value_error"}
            ])
        selection.toggle(selection_request.toggle)

    return jsonify({"selected_ids": selection.ids, "count": len(selection)}), 200


@admin_bp.post('/dashboard/selection/status')
@require_permission(Permission.EDIT_ALL_APPLICATIONS)
def apply_selection_status():
    """Run a bulk status change over the selected rows, then clear the selection."""
    user_context: UserContext = g.user_context
    action = parse_json_body(SelectionActionRequest)
    realtime = _realtime()

    ids: List[str] = realtime.selection.ids
    if not ids:
        raise ValidationException("No applications selected", [
            {"field": "selection", "message": "Select at least one application", "type": "missing"}
        ])

    result = current_app.bulk_coordinator.bulk_transition(ids, action.status, actor=user_context.email)
    realtime.selection.clear()
    realtime.reload()
    return jsonify(result.to_dict()), 200


@admin_bp.get('/users/roles')
@require_permission(Permission.MANAGE_USERS)
def list_user_roles():
    """List every role assignment."""
    rows = current_app.role_store.list_roles()
    for row in rows:
        row["role_display_name"] = role_display_name(row.get("role"))
    return jsonify({"roles": rows, "total": len(rows)}), 200


@admin_bp.put('/users/<user_id>/role')
@require_permission(Permission.MANAGE_USERS)
def assign_user_role(path: UserRolePath):
    """
    Assign a role to a user.

    Granting or revoking an admin-level role needs ``manage_admins``. The
    user's cached permissions are dropped so the change applies on their
    next request.
    """
    user_context: UserContext = g.user_context
    role_request = parse_json_body(AssignRoleRequest)
    role_store = current_app.role_store

    existing = role_store.get_by_user_id(path.user_id)
    current_role = existing.get("role") if existing else None

    assigner = current_app.permission_resolver.resolve(user_context.email)
    decision = can_assign_role(assigner, role_request.role, current_role)
    if not decision.allowed:
        raise AuthorizationException(decision.reason)

    assignment = UserRoleAssignment(user_id=path.user_id, email=role_request.email, role=role_request.role)
    row = role_store.upsert_role(assignment)

    resolver = current_app.permission_resolver
    resolver.invalidate(assignment.email)
    if existing and existing.get("email") and existing["email"] != assignment.email:
        resolver.invalidate(existing["email"])

    current_app.audit_service.log_action(
        user_context.email, "user_role", path.user_id, "assign_role",
        before={"role": current_role}, after={"role": assignment.role, "email": assignment.email}
    )
    logger.info(
        "Role assigned",
        extra={"user_id": path.user_id, "role": assignment.role, "assigned_by": user_context.email}
    )

    row["role_display_name"] = role_display_name(row.get("role"))
    return jsonify(row), 200


@admin_bp.get('/audit')
@require_permission(Permission.AUDIT_LOGS)
def list_audit_entries():
    """Newest audit entries, optionally for one entity."""
    query = parse_query_args(AuditQuery)
    entries = current_app.audit_service.recent(query.entity, query.entity_id, query.limit)
    return jsonify({"entries": entries, "total": len(entries)}), 200


@admin_bp.get('/monitoring')
@require_permission(Permission.PERFORMANCE_MONITORING)
def get_monitoring():
    """
    Performance data kept by this process.

    ``type`` selects the report: ``summary`` (default), ``interactions``,
    ``errors`` or ``all``; ``limit`` caps the interaction and error lists.
    """
    query = parse_query_args(MonitoringQuery)
    if query.type not in REPORT_TYPES:
        raise BadRequestException(f"Invalid type parameter; expected one of {', '.join(REPORT_TYPES)}")

    monitor = current_app.performance_monitor
    return jsonify({"success": True, "enabled": monitor.enabled, "data": monitor.report(query.type, query.limit)}), 200


@admin_bp.post('/monitoring')
@require_any_permission(Permission.PERFORMANCE_MONITORING, Permission.SYSTEM_SETTINGS)
def send_monitoring():
    """Forward the full export to the configured collector."""
    query = parse_query_args(MonitoringActionQuery)
    if query.action != "send":
        raise BadRequestException("Invalid action parameter; expected send")

    try:
        sent = current_app.performance_monitor.send()
    except MonitoringExportError as e:
        return jsonify({"success": False, "sent": False, "message": str(e)}), 502

    message = "Monitoring data sent successfully" if sent else "Monitoring is disabled or no collector is configured"
    return jsonify({"success": True, "sent": sent, "message": message}), 200
