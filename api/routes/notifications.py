# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Manual SMS notifications for staff.
"""

from flask import jsonify, current_app, g
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging

from models.entities import UserContext
from models.requests import SendSmsRequest
from middleware.auth import require_admin
from middleware.error_handler import ServiceUnavailableException
from middleware.rate_limit import rate_limit
from middleware.validation import parse_json_body
from services.sms import SmsError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

notifications_tag = Tag(name="Notifications", description="SMS notifications to applicants")
notifications_bp = APIBlueprint(
    'notifications',
    __name__,
    url_prefix='/api/notifications',
    abp_tags=[notifications_tag]
)


@notifications_bp.post('/sms')
@require_admin
@rate_limit()
def send_sms():
    """Send one SMS. Provider failures are reported with ``success: false``."""
    user_context: UserContext = g.user_context
    sms_request = parse_json_body(SendSmsRequest)
    sms_client = current_app.sms_client

    if sms_client is None or not sms_client.configured:
        raise ServiceUnavailableException("SMS provider is not configured")

    with tracer.start_as_current_span("notifications.send_sms") as span:
        span.set_attribute("sms.sent_by", user_context.email or "")
        try:
            result = sms_client.send(sms_request.to, sms_request.message)
        except SmsError as e:
            logger.warning("Manual SMS failed", extra={"sent_by": user_context.email, "error": str(e)})
            return jsonify({"success": False, "error": str(e)}), 502

    logger.info("Manual SMS sent", extra={"sent_by": user_context.email})
    return jsonify({"success": True, "result": result}), 200
