"""
Observability Middleware

Request timing, caller attributes on the active span and one structured log
line per request, feeding the performance monitor. Health checks are not
logged.
"""

import time
import logging
from flask import Flask, request, g, current_app
from opentelemetry import trace
from opentelemetry.instrumentation.flask import FlaskInstrumentor

logger = logging.getLogger(__name__)

QUIET_PATHS = ("/api/health",)
STATE_CHANGING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def _current_trace_id():
    span_context = trace.get_current_span().get_span_context()
    return format(span_context.trace_id, "032x") if span_context.is_valid else None


def _record_performance(status_code: int, duration_ms: float, user_context) -> None:
    monitor = getattr(current_app, 'performance_monitor', None)
    if monitor is None:
        return

    endpoint = request.url_rule.rule if request.url_rule is not None else request.path
    user_id = user_context.user_id if user_context else None
    monitor.track_api_call(endpoint, duration_ms, status_code, user_id)
    # Authenticated writes only
    if user_context and request.method in STATE_CHANGING_METHODS:
        monitor.track_interaction(
            f"{request.method} {endpoint}", request.path, user_id,
            {"status_code": status_code, "role": user_context.role}
        )


def add_observability_middleware(app: Flask, instrument: bool = True):
    """Instrument the app and log every request with its caller and outcome."""
    if instrument:
        FlaskInstrumentor().instrument_app(app, excluded_urls=",".join(QUIET_PATHS))

    @app.before_request
    def start_timer():
        g.start_time = time.perf_counter()
        g.trace_id = _current_trace_id()

    @app.after_request
    def record_request(response):
        duration_ms = round((time.perf_counter() - g.get('start_time', time.perf_counter())) * 1000, 2)
        user_context = g.get('user_context')

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("http.duration_ms", duration_ms)
            if user_context:
                span.set_attributes({"user.id": user_context.user_id, "user.role": user_context.role})

        if g.get('trace_id'):
            response.headers['X-Trace-Id'] = g.trace_id

        if request.path in QUIET_PATHS:
            return response

        _record_performance(response.status_code, duration_ms, user_context)

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "HTTP request completed",
            extra={
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "user_id": user_context.user_id if user_context else None,
                "role": user_context.role if user_context else None,
                "trace_id": g.get('trace_id'),
            }
        )
        return response
