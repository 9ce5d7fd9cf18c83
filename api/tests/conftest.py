# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.

Record and role stores are replaced with small in-memory versions that
follow the same method contracts as the MongoDB backed stores.
"""

import os

import pytest

from typing import Dict, Optional
from unittest.mock import MagicMock

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'

from services.auth import AuthService
from services.permissions import PermissionCache, PermissionResolver
from services.payments import PaymentGateway
from services.storage import DocumentStorage
from services.bulk import BulkOperationCoordinator
from services.workflow import StatusWorkflowEngine
from services.realtime import DashboardLoader, RealtimeSyncLayer
from services.monitoring import PerformanceMonitor
from fakes import FakeRecordStore, FakeRoleStore, ADMIN_EMAIL, SUPER_ADMIN_EMAIL, CITIZEN_EMAIL, CALLBACK_TOKEN

@pytest.fixture
def record_store():
    return FakeRecordStore()

@pytest.fixture
def role_store():
    return FakeRoleStore({ADMIN_EMAIL: "admin", SUPER_ADMIN_EMAIL: "super_admin"})

@pytest.fixture
def sms_client():
    client = MagicMock()
    client.configured = True
    client.send.return_value = {"message_id": 1}
    return client

@pytest.fixture
def audit_service():
    service = MagicMock()
    service.log_action.return_value = "audit-1"
    service.recent.return_value = []
    return service

@pytest.fixture
def auth_service():
    return AuthService(secret="permit-portal-test-secret-0123456789abcdef")

@pytest.fixture
def redis_service():
    redis = MagicMock()
    redis.increment_window.return_value = 1
    redis.is_token_blocked.return_value = False
    redis.add_to_blocklist.return_value = True
    redis.health_check.return_value = {"status": "healthy"}
    return redis

@pytest.fixture
def payment_session():
    return MagicMock()

@pytest.fixture
def monitoring_session():
    return MagicMock()

@pytest.fixture
def performance_monitor(monitoring_session):
    return PerformanceMonitor(
        enabled=True,
        endpoint="https://collector.example.com/ingest",
        session=monitoring_session,
        system_metrics=lambda: {"cpu_percent": 12.5},
    )

@pytest.fixture
def services(record_store, role_store, sms_client, audit_service, auth_service,
             redis_service, payment_session, performance_monitor, tmp_path):
    """Every service the app needs, with nothing touching the network."""
    mongodb_service = MagicMock()
    mongodb_service.health_check.return_value = {"status": "healthy", "database": "permit_portal_test"}

    permission_resolver = PermissionResolver(role_store, PermissionCache(ttl_seconds=300))
    realtime = RealtimeSyncLayer(DashboardLoader(record_store), event_source=None, poll_interval=0)

    return {
        "mongodb_service": mongodb_service,
        "redis_service": redis_service,
        "auth_service": auth_service,
        "record_store": record_store,
        "role_store": role_store,
        "audit_service": audit_service,
        "permission_resolver": permission_resolver,
        "document_storage": DocumentStorage(str(tmp_path / "uploads")),
        "sms_client": sms_client,
        "payment_gateway": PaymentGateway(
            api_key="xnd_development_test",
            callback_token=CALLBACK_TOKEN,
            base_url="http://localhost:3000",
            session=payment_session,
        ),
        "workflow_engine": StatusWorkflowEngine(record_store, sms_client, audit_service),
        "bulk_coordinator": BulkOperationCoordinator(record_store, audit_service),
        "realtime_sync": realtime,
        "performance_monitor": performance_monitor,
    }

@pytest.fixture
def app(services):
    """Flask application wired to in-memory services."""
    from app import create_app

    application = create_app(
        config_overrides={"ENVIRONMENT": "test", "REALTIME_ENABLED": False, "TESTING": True},
        services=services,
    )
    return application

@pytest.fixture
def client(app):
    return app.test_client()

@pytest.fixture
def auth_headers(auth_service):
    """Build bearer headers for an email."""
    def _headers(email: str = CITIZEN_EMAIL, user_id: Optional[str] = None) -> Dict[str, str]:
        token = auth_service.issue_token(user_id or email, email)["access_token"]
        return {"Authorization": f"Bearer {token}"}
    return _headers
