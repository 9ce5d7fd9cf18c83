# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Authentication endpoints: caller identity and permissions, development
tokens and logout.
"""

from flask import jsonify, current_app, g
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging

from models.entities import UserContext
from models.requests import TokenRequest
from domain.authorization import (
    ResolvedPermissions,
    permission_display_name,
    role_display_name,
    visible_routes,
)
from middleware.auth import require_auth
from middleware.error_handler import NotFoundException
from middleware.rate_limit import rate_limit
from middleware.validation import parse_json_body

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

auth_tag = Tag(name="Authentication", description="Caller identity and token management")
auth_bp = APIBlueprint(
    'auth',
    __name__,
    url_prefix='/api/auth',
    abp_tags=[auth_tag]
)


@auth_bp.get('/me')
@require_auth
def get_me():
    """
    Return the caller's role, permissions and the portal sections they may open.
    """
    user_context: UserContext = g.user_context
    resolved = ResolvedPermissions(role=user_context.role, permissions=frozenset(user_context.permissions))

    return jsonify({
        "user_id": user_context.user_id,
        "email": user_context.email,
        "role": user_context.role,
        "role_display_name": role_display_name(user_context.role),
        "permissions": sorted(user_context.permissions),
        "permission_display_names": {p: permission_display_name(p) for p in user_context.permissions},
        "is_admin": user_context.is_admin,
        "is_super_admin": user_context.is_super_admin,
        "routes": visible_routes(resolved),
        "_links": {
            "self": {"href": "/api/auth/me"},
            "logout": {"href": "/api/auth/logout", "method": "POST"},
        }
    }), 200


@auth_bp.post('/token')
@rate_limit(10, 900, per_user=False)
def issue_token():
    """
    Issue an access token for an email. Not available in production, where
    tokens come from the identity provider.
    """
    if current_app.config.get('ENVIRONMENT') == 'production':
        raise NotFoundException("Token issuing is disabled")

    token_request = parse_json_body(TokenRequest)
    email = token_request.email.strip().lower()

    with tracer.start_as_current_span("auth.issue_token") as span:
        span.set_attribute("auth.email", email)
        token = current_app.auth_service.issue_token(token_request.user_id or email, email)

    logger.info("Development token issued", extra={"email": email})
    return jsonify(token), 200


@auth_bp.post('/logout')
@require_auth
def logout():
    """Revoke the caller's token until it expires."""
    user_context: UserContext = g.user_context
    payload = user_context.token_payload or {}

    revoked = False
    redis_service = getattr(current_app, 'redis_service', None)
    if redis_service is not None and payload.get('jti') and payload.get('exp'):
        revoked = redis_service.add_to_blocklist(payload['jti'], int(payload['exp']))

    # Cached permissions are dropped so a later login resolves fresh
    current_app.permission_resolver.invalidate(user_context.email)

    logger.info("User logged out", extra={"user_id": user_context.user_id, "token_revoked": revoked})
    return jsonify({"ok": True, "token_revoked": revoked}), 200
