# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error handling middleware with structured problem responses.
Maps HTTP errors, application exceptions and workflow errors onto RFC 7807
bodies built by the HAL formatter.
"""

from flask import Flask, request, g
from werkzeug.exceptions import HTTPException
from pydantic import ValidationError
from typing import Dict, Any, List, Optional, Tuple
from opentelemetry import trace
import logging

from services.hal import HalFormatter
from domain.applications import (
    WorkflowError,
    InvalidStatusError,
    ApplicationNotFoundError,
    UndoUnavailableError,
)

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

HTTP_ERROR_TYPES = {
    400: ("bad-request", "Bad Request"),
    401: ("authentication-required", "Authentication Required"),
    403: ("insufficient-permissions", "Insufficient Permissions"),
    404: ("resource-not-found", "Resource Not Found"),
    405: ("method-not-allowed", "Method Not Allowed"),
    409: ("resource-conflict", "Resource Conflict"),
    413: ("payload-too-large", "Payload Too Large"),
    422: ("validation-error", "Validation Error"),
    429: ("rate-limit-exceeded", "Rate Limit Exceeded"),
    500: ("internal-server-error", "Internal Server Error"),
    502: ("bad-gateway", "Bad Gateway"),
    503: ("service-unavailable", "Service Unavailable"),
    504: ("gateway-timeout", "Gateway Timeout"),
}


def format_validation_errors(error: ValidationError) -> List[Dict[str, Any]]:
    """
    Convert a pydantic ValidationError into field level error entries.

    Args:
        error: Pydantic validation error

    Returns:
        List of {field, message, type} dictionaries
    """
    formatted = []
    for item in error.errors():
        field = '.'.join(str(loc) for loc in item.get('loc', ())) or 'body'
        formatted.append({
            'field': field,
            'message': item.get('msg', 'Invalid value'),
            'type': item.get('type', 'value_error'),
        })
    return formatted


class CustomException(Exception):
    """Base class for custom application exceptions."""

    def __init__(self, message: str, status_code: int = 500, error_type: str = "application-error"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type


class ValidationException(CustomException):
    """Exception for validation errors."""

    def __init__(self, message: str, validation_errors: Optional[list] = None):
        super().__init__(message, 422, "validation-error")
        self.validation_errors = validation_errors or []

    @classmethod
    def from_pydantic(cls, error: ValidationError, message: str = "Request validation failed"):
        return cls(message, format_validation_errors(error))


class BadRequestException(CustomException):
    """Exception for malformed query parameters."""

    def __init__(self, message: str):
        super().__init__(message, 400, "bad-request")


class AuthenticationException(CustomException):
    """Exception for authentication errors."""

    def __init__(self, message: str):
        super().__init__(message, 401, "authentication-required")


class AuthorizationException(CustomException):
    """Exception for authorization errors."""

    def __init__(self, message: str):
        super().__init__(message, 403, "insufficient-permissions")


class NotFoundException(CustomException):
    """Exception for resource not found errors."""

    def __init__(self, message: str):
        super().__init__(message, 404, "resource-not-found")


class ConflictException(CustomException):
    """Exception for resource conflict errors."""

    def __init__(self, message: str):
        super().__init__(message, 409, "resource-conflict")


class ServiceUnavailableException(CustomException):
    """Exception for service unavailable errors."""

    def __init__(self, message: str):
        super().__init__(message, 503, "service-unavailable")


class ErrorHandlerMiddleware:
    """Centralized error handling middleware with problem response formatting."""

    def __init__(self, app: Flask, hal_formatter: HalFormatter):
        self.app = app
        self.hal_formatter = hal_formatter
        self.register_error_handlers()

    @property
    def is_production(self) -> bool:
        return self.app.config.get('ENVIRONMENT') == 'production'

    def register_error_handlers(self):
        """Register error handlers with Flask application."""
        for code in HTTP_ERROR_TYPES:
            self.app.register_error_handler(code, self.handle_http_error)

        self.app.register_error_handler(CustomException, self.handle_custom_exception)
        self.app.register_error_handler(WorkflowError, self.handle_workflow_error)
        self.app.register_error_handler(ValidationError, self.handle_pydantic_error)
        self.app.register_error_handler(Exception, self.handle_unexpected_error)

    def _problem(self, error_type: str, title: str, status: int, detail: str,
                 validation_errors: Optional[List[Dict[str, Any]]] = None) -> Tuple[Dict[str, Any], int]:
        formatters = {
            401: self.hal_formatter.format_authentication_error,
            403: self.hal_formatter.format_authorization_error,
            404: self.hal_formatter.format_not_found_error,
            409: self.hal_formatter.format_conflict_error,
            503: self.hal_formatter.format_service_unavailable_error,
        }
        if status == 422:
            body = self.hal_formatter.format_validation_error(detail, request.path, validation_errors)
        elif status in formatters:
            body = formatters[status](detail, request.path)
        elif status >= 500:
            body = self.hal_formatter.format_server_error(detail, request.path)
        else:
            body = self.hal_formatter.builder.build_error_response(
                error_type, title, status, detail, request.path
            )
        return body, status

    def handle_http_error(self, error: HTTPException) -> Tuple[Dict[str, Any], int]:
        """
        Handle werkzeug HTTP errors.

        Args:
            error: HTTP exception

        Returns:
            Tuple of (error response dict, status code)
        """
        code = error.code or 500
        error_type, title = HTTP_ERROR_TYPES.get(code, ("http-error", error.name or "HTTP Error"))

        with tracer.start_as_current_span("error_handler.http_error") as span:
            span.set_attributes({
                "error.type": error_type,
                "error.status": code,
                "http.method": request.method,
                "http.path": request.path
            })

            detail = str(error.description) if error.description else title
            log = logger.error if code >= 500 else logger.warning
            log(
                f"HTTP error: {title}",
                extra={
                    "error_type": error_type,
                    "status_code": code,
                    "detail": detail,
                    "path": request.path,
                    "method": request.method,
                    "ip_address": request.remote_addr
                }
            )

            if code >= 500 and self.is_production:
                detail = "An internal server error occurred"

            return self._problem(error_type, title, code, detail)

    def handle_custom_exception(self, error: CustomException) -> Tuple[Dict[str, Any], int]:
        with tracer.start_as_current_span("error_handler.custom_exception") as span:
            span.set_attributes({
                "error.type": error.error_type,
                "error.status": error.status_code,
                "http.path": request.path
            })

            logger.warning(
                f"Custom exception: {error.error_type}",
                extra={
                    "error_type": error.error_type,
                    "status_code": error.status_code,
                    "detail": error.message,
                    "path": request.path,
                    "method": request.method
                }
            )

            validation_errors = getattr(error, 'validation_errors', None)
            return self._problem(error.error_type, error.error_type.replace('-', ' ').title(),
                                 error.status_code, error.message, validation_errors)

    def handle_workflow_error(self, error: WorkflowError) -> Tuple[Dict[str, Any], int]:
        """Map workflow failures onto 422, 404 and 409 problems."""
        if isinstance(error, InvalidStatusError):
            status, error_type = 422, "validation-error"
            validation_errors = [{'field': 'status', 'message': str(error), 'type': 'enum'}]
        elif isinstance(error, ApplicationNotFoundError):
            status, error_type, validation_errors = 404, "resource-not-found", None
        elif isinstance(error, UndoUnavailableError):
            status, error_type, validation_errors = 409, "resource-conflict", None
        else:
            status, error_type, validation_errors = 400, "bad-request", None

        logger.warning(
            f"Workflow error: {error.__class__.__name__}",
            extra={"status_code": status, "detail": str(error), "path": request.path}
        )
        return self._problem(error_type, error_type, status, str(error), validation_errors)

    def handle_pydantic_error(self, error: ValidationError) -> Tuple[Dict[str, Any], int]:
        logger.warning("Request validation failed", extra={"path": request.path, "errors": error.error_count()})
        return self._problem("validation-error", "Validation Error", 422,
                             "Request validation failed", format_validation_errors(error))

    def handle_unexpected_error(self, error: Exception) -> Tuple[Dict[str, Any], int]:
        """
        Handle unexpected exceptions not caught by specific handlers.

        Args:
            error: Unexpected exception

        Returns:
            Tuple of (error response dict, status code)
        """
        if isinstance(error, HTTPException):
            return self.handle_http_error(error)

        with tracer.start_as_current_span("error_handler.unexpected_error") as span:
            span.set_attributes({
                "error.type": "unexpected-error",
                "error.class": error.__class__.__name__,
                "http.method": request.method,
                "http.path": request.path
            })
            span.record_exception(error)

            logger.error(
                f"Unexpected error: {error.__class__.__name__}",
                extra={
                    "error_type": "unexpected-error",
                    "error_class": error.__class__.__name__,
                    "error_message": str(error),
                    "path": request.path,
                    "method": request.method
                },
                exc_info=True
            )

            monitor = getattr(self.app, 'performance_monitor', None)
            if monitor is not None:
                user_context = g.get('user_context')
                monitor.track_error(
                    error, request.path,
                    user_id=user_context.user_id if user_context else None,
                    user_agent=request.headers.get('User-Agent'),
                    ip=request.remote_addr,
                )

            detail = "An unexpected error occurred"
            if not self.is_production:
                detail = f"{error.__class__.__name__}: {str(error)}"

            return self._problem("internal-server-error", "Internal Server Error", 500, detail)


def register_error_handlers(app: Flask, hal_formatter: HalFormatter) -> ErrorHandlerMiddleware:
    """Attach the error handling middleware to ``app``."""
    return ErrorHandlerMiddleware(app, hal_formatter)
