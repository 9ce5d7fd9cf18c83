# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for middleware components.

This module tests rate limiting, CORS, request parsing and error handling.
"""

import json
import pytest
from unittest.mock import MagicMock
from flask import Flask, g, jsonify
from pydantic import BaseModel, Field

from middleware.auth import require_any_permission, require_super_admin
from middleware.cors import CORSMiddleware
from middleware.error_handler import (
    ConflictException,
    NotFoundException,
    ValidationException,
    register_error_handlers,
)
from middleware.rate_limit import RateLimiter, rate_limit
from middleware.validation import parse_json_body, parse_query_args
from domain.applications import ApplicationNotFoundError, InvalidStatusError, UndoUnavailableError
from services.hal import HalFormatter
from models.enums import Permission
from fakes import ADMIN_EMAIL, SUPER_ADMIN_EMAIL


class EchoModel(BaseModel):
    name: str = Field(..., min_length=2)
    count: int = Field(default=1, ge=1)


@pytest.fixture
def bare_app():
    """Small Flask app with the error handlers and a rate limited route."""
    app = Flask(__name__)
    app.config.update(TESTING=True, ENVIRONMENT="test", RATE_LIMIT_REQUESTS=2, RATE_LIMIT_WINDOW=60)
    app.hal_formatter = HalFormatter("http://localhost:5000")
    app.redis_service = MagicMock()
    register_error_handlers(app, app.hal_formatter)

    @app.route('/limited')
    @rate_limit()
    def limited():
        return jsonify({"ok": True})

    @app.route('/echo', methods=['POST'])
    def echo():
        return jsonify(parse_json_body(EchoModel).model_dump())

    @app.route('/query')
    def query():
        return jsonify(parse_query_args(EchoModel).model_dump())

    @app.route('/raise/<kind>')
    def raise_error(kind):
        errors = {
            "not-found": NotFoundException("Application x not found"),
            "conflict": ConflictException("Already paid"),
            "invalid-status": InvalidStatusError("archived"),
            "missing": ApplicationNotFoundError("x"),
            "undo": UndoUnavailableError("Undo expired"),
            "boom": RuntimeError("kaboom"),
        }
        raise errors[kind]

    return app


class TestRateLimiter:
    """Test cases for rate limiting."""

    def test_within_limit(self, bare_app):
        bare_app.redis_service.increment_window.return_value = 1

        response = bare_app.test_client().get('/limited')

        assert response.status_code == 200
        assert response.headers['X-RateLimit-Limit'] == '2'
        assert response.headers['X-RateLimit-Remaining'] == '1'

    def test_over_limit(self, bare_app):
        bare_app.redis_service.increment_window.return_value = 3

        response = bare_app.test_client().get('/limited')

        assert response.status_code == 429
        data = json.loads(response.data)
        assert data['type'].endswith('rate-limit-exceeded')
        assert int(response.headers['Retry-After']) > 0

    def test_redis_unavailable_fails_open(self, bare_app):
        bare_app.redis_service.increment_window.return_value = None

        response = bare_app.test_client().get('/limited')

        assert response.status_code == 200
        assert response.headers['X-RateLimit-Remaining'] == '2'

    def test_no_redis_service(self, bare_app):
        bare_app.redis_service = None

        response = bare_app.test_client().get('/limited')

        assert response.status_code == 200
        assert 'X-RateLimit-Limit' not in response.headers

    def test_identifier_prefers_user(self, bare_app):
        limiter = RateLimiter(MagicMock(), bare_app.hal_formatter)
        user_context = MagicMock(user_id="user-1")

        with bare_app.test_request_context('/limited'):
            assert limiter.get_client_identifier(user_context) == "user:user-1"
            assert limiter.get_client_identifier(None).startswith("ip:")


class TestCORSMiddleware:
    """Test cases for CORS handling."""

    @pytest.fixture
    def cors_app(self):
        app = Flask(__name__)
        CORSMiddleware(app, allowed_origins=['https://permits.dipolog.gov.ph', 'https://preview-*'])

        @app.route('/ping')
        def ping():
            return 'pong'

        return app

    def test_allowed_origin(self, cors_app):
        response = cors_app.test_client().get('/ping', headers={'Origin': 'https://permits.dipolog.gov.ph'})

        assert response.headers['Access-Control-Allow-Origin'] == 'https://permits.dipolog.gov.ph'
        assert response.headers['Access-Control-Allow-Credentials'] == 'true'

    def test_prefix_wildcard(self, cors_app):
        response = cors_app.test_client().get('/ping', headers={'Origin': 'https://preview-42.vercel.app'})

        assert response.headers['Access-Control-Allow-Origin'] == 'https://preview-42.vercel.app'

    def test_disallowed_origin(self, cors_app):
        response = cors_app.test_client().get('/ping', headers={'Origin': 'https://evil.example.com'})

        assert 'Access-Control-Allow-Origin' not in response.headers

    def test_preflight(self, cors_app):
        client = cors_app.test_client()

        allowed = client.options('/ping', headers={'Origin': 'https://permits.dipolog.gov.ph'})
        rejected = client.options('/ping', headers={'Origin': 'https://evil.example.com'})

        assert allowed.status_code == 204
        assert 'X-Callback-Token' in allowed.headers['Access-Control-Allow-Headers']
        assert rejected.status_code == 403


class TestRequestParsing:
    """Test cases for body and query validation."""

    def test_valid_body(self, bare_app):
        response = bare_app.test_client().post('/echo', json={"name": "Jane", "count": 2})

        assert response.status_code == 200
        assert json.loads(response.data) == {"name": "Jane", "count": 2}

    def test_invalid_body_lists_fields(self, bare_app):
        response = bare_app.test_client().post('/echo', json={"name": "J", "count": 0})

        assert response.status_code == 422
        fields = sorted(error['field'] for error in json.loads(response.data)['errors'])
        assert fields == ['count', 'name']

    def test_array_body_rejected(self, bare_app):
        response = bare_app.test_client().post('/echo', json=[1, 2])

        assert response.status_code == 422
        assert json.loads(response.data)['errors'][0]['field'] == 'body'

    def test_query_args(self, bare_app):
        response = bare_app.test_client().get('/query?name=Jane&count=3')

        assert json.loads(response.data) == {"name": "Jane", "count": 3}

    def test_invalid_query_args(self, bare_app):
        assert bare_app.test_client().get('/query?name=Jane&count=zero').status_code == 422


class TestErrorHandler:
    """Test cases for problem responses."""

    @pytest.mark.parametrize("kind,status", [
        ("not-found", 404),
        ("conflict", 409),
        ("invalid-status", 422),
        ("missing", 404),
        ("undo", 409),
        ("boom", 500),
    ])
    def test_status_mapping(self, bare_app, kind, status):
        response = bare_app.test_client().get(f'/raise/{kind}')

        assert response.status_code == status
        data = json.loads(response.data)
        assert data['status'] == status
        assert data['instance'] == f'/raise/{kind}'
        assert 'help' in data['_links']

    def test_invalid_status_names_field(self, bare_app):
        data = json.loads(bare_app.test_client().get('/raise/invalid-status').data)

        assert data['errors'][0]['field'] == 'status'
        assert 'archived' in data['detail']

    def test_unknown_route_is_problem(self, bare_app):
        response = bare_app.test_client().get('/nope')

        assert response.status_code == 404
        assert json.loads(response.data)['type'].endswith('resource-not-found')

    def test_validation_exception_keeps_errors(self, bare_app):
        @bare_app.route('/validate')
        def validate():
            raise ValidationException("bad", [{"field": "x", "message": "m", "type": "t"}])

        data = json.loads(bare_app.test_client().get('/validate').data)

        assert data['errors'] == [{"field": "x", "message": "m", "type": "t"}]


class TestAccessGuard:
    """Test cases for the role and permission gates."""

    @pytest.fixture
    def guarded_client(self, app):
        @require_super_admin
        def settings():
            return jsonify({"ok": True})

        @require_any_permission(Permission.MANAGE_ADMINS, Permission.AUDIT_LOGS)
        def audit_or_admins():
            return jsonify({"role": g.user_context.role})

        app.add_url_rule('/guarded/settings', 'guarded_settings', settings)
        app.add_url_rule('/guarded/any', 'guarded_any', audit_or_admins)
        return app.test_client()

    def test_super_admin_gate(self, guarded_client, auth_headers):
        assert guarded_client.get('/guarded/settings').status_code == 401
        assert guarded_client.get('/guarded/settings', headers=auth_headers(ADMIN_EMAIL)).status_code == 403
        assert guarded_client.get('/guarded/settings', headers=auth_headers(SUPER_ADMIN_EMAIL)).status_code == 200

    def test_any_permission_gate(self, guarded_client, auth_headers):
        denied = guarded_client.get('/guarded/any', headers=auth_headers())
        allowed = guarded_client.get('/guarded/any', headers=auth_headers(ADMIN_EMAIL))

        assert denied.status_code == 403
        assert json.loads(denied.data)['type'].endswith('insufficient-permissions')
        assert allowed.status_code == 200
        assert json.loads(allowed.data) == {"role": "admin"}
