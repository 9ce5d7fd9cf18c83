# SPDX-License-Identifier: Apache-2.0

"""
Authentication middleware for JWT token validation and user context extraction.

This module provides the access guard used by the routes: it validates the
bearer token, checks the revocation blocklist, resolves the caller's
permissions through the permission resolver and stores a ``UserContext`` on
``flask.g``. Route decorators look the middleware up on ``current_app`` so
they can be applied at import time.
"""

from functools import wraps
from flask import request, jsonify, g, current_app
from typing import Optional, Dict, Any, Callable, Iterable
from opentelemetry import trace
import logging

from models.entities import UserContext
from models.enums import UserRole
from domain.authorization import check_permissions
from services.auth import TokenValidationError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class AuthMiddleware:
    """
    Access guard for Flask applications.

    Args:
        auth_service: JWT authentication service
        permission_resolver: Resolver turning emails into permissions
        redis_service: Redis service for the token blocklist, optional
    """

    def __init__(self, auth_service, permission_resolver, redis_service=None):
        self.auth_service = auth_service
        self.permission_resolver = permission_resolver
        self.redis_service = redis_service

    def extract_token_from_request(self) -> Optional[str]:
        """
        Extract JWT token from request headers.

        Returns:
            JWT token string or None if not found
        """
        auth_header = request.headers.get('Authorization', '').strip()
        if not auth_header:
            return None

        if auth_header.lower().startswith('bearer '):
            return auth_header[7:].strip() or None

        return auth_header

    def is_token_blocked(self, token_payload: Dict[str, Any]) -> bool:
        """Check the revocation blocklist; tokens without ``jti`` cannot be revoked."""
        jti = token_payload.get('jti')
        if not jti or self.redis_service is None:
            return False
        return self.redis_service.is_token_blocked(jti)

    def build_user_context(self, token_payload: Dict[str, Any]) -> UserContext:
        """
        Build user context from a validated token payload.

        Permissions come from the resolver, never from the token.
        """
        email = token_payload.get("email")
        resolved = self.permission_resolver.resolve(email)

        return UserContext(
            user_id=str(token_payload.get("sub") or email),
            email=email,
            role=resolved.role,
            permissions=sorted(resolved.permissions),
            token_payload=token_payload,
            ip_address=request.remote_addr,
            user_agent=request.headers.get('User-Agent', '')
        )

    def authenticate(self) -> UserContext:
        """
        Authenticate the current request.

        Raises:
            TokenValidationError: If the token is missing, revoked or invalid
        """
        token = self.extract_token_from_request()
        if not token:
            raise TokenValidationError("Missing authorization token")

        token_payload = self.auth_service.validate_token(token)
        if self.is_token_blocked(token_payload):
            raise TokenValidationError("Token has been revoked")

        return self.build_user_context(token_payload)


def _problem(status: int, error_type: str, detail: str):
    formatter = current_app.hal_formatter
    if status == 401:
        body = formatter.format_authentication_error(detail, request.path)
    elif status == 403:
        body = formatter.format_authorization_error(detail, request.path)
    else:
        body = formatter.builder.build_error_response(error_type, "Authentication Error", status, detail, request.path)
    return jsonify(body), status


def require_auth(f: Callable) -> Callable:
    """Decorator requiring a valid bearer token; sets ``g.user_context``."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        with tracer.start_as_current_span("auth.middleware.validate_request") as span:
            span.set_attribute("auth.operation", "validate_request")

            try:
                user_context = current_app.auth_middleware.authenticate()
            except TokenValidationError as e:
                span.set_attribute("auth.result", "invalid_token")
                logger.warning(f"Authentication failed: {str(e)}")
                return _problem(401, "authentication-required", str(e))

            g.user_context = user_context
            span.set_attributes({
                "auth.result": "success",
                "user.id": user_context.user_id,
                "user.role": user_context.role
            })
            logger.debug(
                "Authentication successful",
                extra={
                    "user_id": user_context.user_id,
                    "role": user_context.role,
                    "ip_address": user_context.ip_address
                }
            )

            return f(*args, **kwargs)

    return decorated_function


def require_permission(*permissions: str, require_all: bool = True) -> Callable:
    """
    Decorator requiring one or more permissions.

    Args:
        permissions: Required permission values
        require_all: When False, any one of the permissions is enough

    Returns:
        Decorator function
    """
    required = [getattr(p, 'value', p) for p in permissions]

    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user_context: UserContext = g.user_context
            with tracer.start_as_current_span("auth.middleware.check_permission") as span:
                span.set_attributes({
                    "auth.operation": "check_permission",
                    "auth.required_permissions": ",".join(required),
                    "user.id": user_context.user_id
                })

                result = check_permissions(user_context.permissions, required, require_all=require_all)
                if not result.allowed:
                    span.set_attribute("auth.permission_result", "denied")
                    logger.warning(
                        "Authorization failed",
                        extra={
                            "user_id": user_context.user_id,
                            "role": user_context.role,
                            "missing_permissions": result.missing_permissions
                        }
                    )
                    return _problem(403, "insufficient-permissions", result.reason)

                span.set_attribute("auth.permission_result", "granted")
                return f(*args, **kwargs)

        return require_auth(decorated_function)
    return decorator


def require_role(minimum: str) -> Callable:
    """Decorator gating a route on a minimum role."""
    allowed = {
        UserRole.USER.value: (UserRole.USER.value, UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value),
        UserRole.ADMIN.value: (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value),
        UserRole.SUPER_ADMIN.value: (UserRole.SUPER_ADMIN.value,),
    }[getattr(minimum, 'value', minimum)]

    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user_context: UserContext = g.user_context
            if user_context.role not in allowed:
                logger.warning(
                    "Role check failed",
                    extra={"user_id": user_context.user_id, "role": user_context.role, "required_role": minimum}
                )
                return _problem(403, "insufficient-permissions", f"Requires role {minimum}")
            return f(*args, **kwargs)

        return require_auth(decorated_function)
    return decorator


require_admin = require_role(UserRole.ADMIN.value)
require_super_admin = require_role(UserRole.SUPER_ADMIN.value)


def optional_auth(f: Callable) -> Callable:
    """Decorator that sets ``g.user_context`` when a valid token is present."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.user_context = None
        if current_app.auth_middleware.extract_token_from_request():
            try:
                g.user_context = current_app.auth_middleware.authenticate()
            except TokenValidationError as e:
                logger.debug(f"Ignoring invalid optional token: {str(e)}")
        return f(*args, **kwargs)

    return decorated_function


def current_permissions() -> Iterable[str]:
    """Permissions of the authenticated caller, empty when anonymous."""
    user_context = getattr(g, 'user_context', None)
    return user_context.permissions if user_context else []


def require_any_permission(*permissions: str) -> Callable:
    """Decorator requiring at least one of the permissions."""
    return require_permission(*permissions, require_all=False)
