"""
Municipal Permit Portal API - Flask Application Entry Point

This module builds the Flask application with OpenAPI 3.0 support, wires
the services together and registers middleware and routes.
"""

import os
import atexit
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from flask import jsonify
from flask_openapi3 import OpenAPI, Info, Tag

from observability.config import setup_observability
from observability.middleware import add_observability_middleware
from middleware.cors import configure_cors
from middleware.error_handler import register_error_handlers
from middleware.auth import AuthMiddleware
from services.hal import create_hal_formatter
from services.mongodb import MongoDBService
from services.redis import RedisService
from services.auth import AuthService
from services.audit import AuditService
from services.health import HealthCheckService
from services.monitoring import PerformanceMonitor
from services.records import ApplicationRecordStore, RoleStore
from services.permissions import PermissionCache, PermissionResolver, parse_admin_allowlist
from services.storage import DocumentStorage
from services.sms import SmsClient
from services.payments import PaymentGateway
from services.workflow import StatusWorkflowEngine
from services.bulk import BulkOperationCoordinator
from services.realtime import DashboardLoader, Notice, RealtimeSyncLayer
from models.responses import HealthResponse

logger = logging.getLogger(__name__)

info = Info(
    title="Municipal Permit Portal API",
    version="1.0.0",
    description="Business, building and barangay permit applications with role-based staff tools"
)

tags = [
    Tag(name="Applications", description="Permit application submission and tracking"),
    Tag(name="Administration", description="Staff application management"),
    Tag(name="Payments", description="Permit fee checkout and provider callbacks"),
    Tag(name="Authentication", description="Caller identity and token management"),
    Tag(name="Notifications", description="SMS notifications to applicants"),
    Tag(name="Health", description="System health and status")
]

health_tag = Tag(name="Health", description="System health and status")


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).lower() == 'true'


def load_config() -> Dict[str, Any]:
    """Read configuration from the environment."""
    environment = os.getenv('ENVIRONMENT', 'development')
    return {
        'ENVIRONMENT': environment,
        'DEBUG': environment == 'development',
        'DOCS_ENABLED': _env_flag('DOCS_ENABLED', 'true'),
        'BASE_URL': os.getenv('BASE_URL', 'http://localhost:5000'),

        'MONGODB_URI': os.getenv('MONGODB_URI', 'mongodb://localhost:27017/permit_portal_dev'),
        'MONGODB_DATABASE': os.getenv('MONGODB_DATABASE', 'permit_portal_dev'),
        'REDIS_URL': os.getenv('REDIS_URL', 'redis://localhost:6379'),

        'JWT_SECRET': os.getenv('JWT_SECRET'),
        'JWT_PRIVATE_KEY': os.getenv('JWT_PRIVATE_KEY'),
        'JWT_PUBLIC_KEY': os.getenv('JWT_PUBLIC_KEY'),
        'JWT_ACCESS_TOKEN_EXPIRE_MINUTES': int(os.getenv('JWT_ACCESS_TOKEN_EXPIRE_MINUTES', '60')),

        'ADMIN_EMAILS': os.getenv('ADMIN_EMAILS', ''),
        'PERMISSION_CACHE_TTL': float(os.getenv('PERMISSION_CACHE_TTL', '300')),

        'XENDIT_API_KEY': os.getenv('XENDIT_API_KEY', ''),
        'XENDIT_CALLBACK_TOKEN': os.getenv('XENDIT_CALLBACK_TOKEN', ''),
        'SEMAPHORE_API_KEY': os.getenv('SEMAPHORE_API_KEY', ''),
        'SEMAPHORE_SENDER': os.getenv('SEMAPHORE_SENDER', 'DIPOLOG'),
        'SMS_MESSAGE_SENDER': os.getenv('SMS_MESSAGE_SENDER', 'Dipolog Permits'),

        'RATE_LIMIT_REQUESTS': int(os.getenv('RATE_LIMIT_REQUESTS', '100')),
        'RATE_LIMIT_WINDOW': int(os.getenv('RATE_LIMIT_WINDOW', '900')),
        'DOCUMENT_STORAGE_PATH': os.getenv('DOCUMENT_STORAGE_PATH', './uploads'),

        'REALTIME_ENABLED': _env_flag('REALTIME_ENABLED'),
        'REALTIME_POLL_INTERVAL': float(os.getenv('REALTIME_POLL_INTERVAL', '30')),
        'OTEL_ENABLED': _env_flag('OTEL_ENABLED'),
        'MONITORING_ENABLED': _env_flag('ENABLE_MONITORING', 'true' if environment == 'production' else 'false'),
        'MONITORING_ENDPOINT': os.getenv('MONITORING_ENDPOINT', ''),
    }


def _log_notice(notice: Notice) -> None:
    logger.info("Dashboard notice", extra={"notice": notice.message, "kind": notice.kind,
                                            "application_id": notice.application_id})


def create_app(config_overrides: Optional[Dict[str, Any]] = None,
               services: Optional[Dict[str, Any]] = None) -> OpenAPI:
    """
    Build the application.

    Args:
        config_overrides: Values replacing the environment configuration
        services: Prebuilt services by attribute name (``record_store``,
            ``sms_client``...); anything missing is built from config

    Returns:
        Configured Flask (OpenAPI) application
    """
    config = load_config()
    config.update(config_overrides or {})
    services = services or {}

    otel_active = setup_observability() and config['OTEL_ENABLED']

    app = OpenAPI(__name__, info=info, tags=tags)
    app.config.update(config)

    def service(name: str, factory: Callable[[], Any]) -> Any:
        instance = services[name] if name in services else factory()
        setattr(app, name, instance)
        return instance

    mongodb_service = service('mongodb_service', lambda: MongoDBService(
        config['MONGODB_URI'], config['MONGODB_DATABASE']))
    redis_service = service('redis_service', lambda: RedisService(config['REDIS_URL']))
    auth_service = service('auth_service', lambda: AuthService(
        config['JWT_SECRET'], config['JWT_PRIVATE_KEY'], config['JWT_PUBLIC_KEY'],
        config['JWT_ACCESS_TOKEN_EXPIRE_MINUTES']))

    record_store = service('record_store', lambda: ApplicationRecordStore(mongodb_service))
    role_store = service('role_store', lambda: RoleStore(mongodb_service))
    audit_service = service('audit_service', lambda: AuditService(mongodb_service))

    permission_resolver = service('permission_resolver', lambda: PermissionResolver(
        role_store,
        PermissionCache(ttl_seconds=config['PERMISSION_CACHE_TTL']),
        parse_admin_allowlist(config['ADMIN_EMAILS'])))

    document_storage = service('document_storage', lambda: DocumentStorage(config['DOCUMENT_STORAGE_PATH']))
    sms_client = service('sms_client', lambda: SmsClient(config['SEMAPHORE_API_KEY'], config['SEMAPHORE_SENDER']))
    service('payment_gateway', lambda: PaymentGateway(
        config['XENDIT_API_KEY'], config['XENDIT_CALLBACK_TOKEN'], config['BASE_URL']))

    service('workflow_engine', lambda: StatusWorkflowEngine(
        record_store, sms_client, audit_service, sms_sender=config['SMS_MESSAGE_SENDER']))
    service('bulk_coordinator', lambda: BulkOperationCoordinator(record_store, audit_service))

    realtime_sync = service('realtime_sync', lambda: RealtimeSyncLayer(
        DashboardLoader(record_store),
        event_source=record_store.watch_applications,
        notify=_log_notice,
        poll_interval=config['REALTIME_POLL_INTERVAL']))

    service('health_service', lambda: HealthCheckService(
        mongodb_service, document_storage, auth_service, redis_service))
    service('performance_monitor', lambda: PerformanceMonitor(
        enabled=config['MONITORING_ENABLED'], endpoint=config['MONITORING_ENDPOINT']))

    hal_formatter = create_hal_formatter(config['BASE_URL'])
    app.hal_formatter = hal_formatter
    app.auth_middleware = AuthMiddleware(auth_service, permission_resolver, redis_service)

    add_observability_middleware(app, instrument=otel_active)
    configure_cors(app, allow_credentials=True)
    register_error_handlers(app, hal_formatter)

    from routes.applications import applications_bp
    from routes.admin import admin_bp
    from routes.payments import payments_bp
    from routes.auth import auth_bp
    from routes.notifications import notifications_bp

    app.register_api(applications_bp)
    app.register_api(admin_bp)
    app.register_api(payments_bp)
    app.register_api(auth_bp)
    app.register_api(notifications_bp)

    @app.get('/api/health', tags=[health_tag], responses={200: HealthResponse, 503: HealthResponse})
    def health_check():
        """Dependency health; 503 when no required dependency is healthy."""
        try:
            health_data = app.health_service.get_comprehensive_health()
        except Exception as e:
            logger.error(f"Health check service failed: {str(e)}", exc_info=True)
            health_data = {
                "status": "unhealthy",
                "service": "permit-portal-api",
                "environment": config['ENVIRONMENT'],
                "timestamp": datetime.utcnow().isoformat() + "Z",
                "checks": {"database": False, "storage": False, "auth": False},
                "error": f"Health check service failed: {str(e)}"
            }

        health_data["_links"] = {"self": {"href": "/api/health"}}
        status_code = 503 if health_data["status"] == "unhealthy" else 200
        return jsonify(health_data), status_code

    if config['REALTIME_ENABLED'] and realtime_sync is not None:
        realtime_sync.start()
        atexit.register(realtime_sync.stop)

    logger.info("Permit portal API initialized", extra={"environment": config['ENVIRONMENT']})
    return app


if __name__ == '__main__':
    app = create_app()
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=app.config['DEBUG']
    )
