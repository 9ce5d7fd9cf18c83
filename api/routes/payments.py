# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Payment endpoints: fee checkout through the payment provider and the
provider's invoice callback.
"""

from flask import request, jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from pydantic import ValidationError
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging

from models.entities import Payment
from models.requests import CheckoutRequest, PaymentWebhookPayload
from models.responses import CheckoutResponse, ErrorResponse
from middleware.auth import optional_auth
from middleware.error_handler import (
    AuthenticationException,
    NotFoundException,
    ServiceUnavailableException,
    ValidationException,
)
from middleware.rate_limit import rate_limit
from middleware.validation import parse_json_body
from domain.applications import application_reference
from services.payments import PaymentGatewayError, PaymentNotConfiguredError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

payments_tag = Tag(name="Payments", description="Permit fee checkout and provider callbacks")
payments_bp = APIBlueprint(
    'payments',
    __name__,
    url_prefix='/api',
    abp_tags=[payments_tag]
)


@payments_bp.get('/payments/checkout')
def checkout_configuration():
    """Report whether online payment is available."""
    return jsonify(current_app.payment_gateway.configuration_status()), 200


@payments_bp.post('/payments/checkout', responses={
    201: CheckoutResponse, 404: ErrorResponse, 502: CheckoutResponse, 503: ErrorResponse})
@rate_limit(per_user=False)
@optional_auth
def create_checkout():
    """
    Create a provider invoice for an application's fee.

    A ``pending`` payment is recorded against the invoice ID; the callback
    later settles it.
    """
    checkout = parse_json_body(CheckoutRequest)
    gateway = current_app.payment_gateway
    store = current_app.record_store

    with tracer.start_as_current_span("payments.checkout") as span:
        span.set_attributes({"application.id": checkout.application_id, "payment.amount": checkout.amount})

        if not gateway.configured:
            span.set_status(Status(StatusCode.ERROR, "not configured"))
            raise ServiceUnavailableException("Payment provider is not configured")

        application = store.get_application(checkout.application_id)
        if application is None:
            raise NotFoundException(f"Application {checkout.application_id} not found")

        reference = application_reference(application)
        try:
            invoice = gateway.create_invoice(reference, checkout.amount, checkout.email)
        except PaymentNotConfiguredError as e:
            raise ServiceUnavailableException(str(e))
        except PaymentGatewayError as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            return jsonify({"success": False, "invoice": {}, "message": str(e)}), 502

        external_ref = invoice.get("id") or reference
        store.insert_payment(Payment(
            application_id=application["id"],
            amount=checkout.amount,
            external_ref=external_ref,
        ))

        logger.info(
            "Checkout created",
            extra={"application_id": application["id"], "external_ref": external_ref, "amount": checkout.amount}
        )
        return jsonify({
            "success": True,
            "invoice": {
                "id": invoice.get("id"),
                "invoice_url": invoice.get("invoice_url"),
                "external_id": invoice.get("external_id", reference),
                "amount": invoice.get("amount", checkout.amount),
                "status": invoice.get("status", "PENDING"),
                "expiry_date": invoice.get("expiry_date"),
            },
            "message": "Invoice created"
        }), 201


@payments_bp.post('/webhooks/payment')
def payment_webhook():
    """
    Receive the provider's invoice callback.

    The ``X-Callback-Token`` header must match the configured token. A
    ``paid`` callback settles the payment and moves the application to
    ``under_review``; every other accepted callback is just acknowledged.
    """
    gateway = current_app.payment_gateway

    with tracer.start_as_current_span("payments.webhook") as span:
        if not gateway.verify_callback_token(request.headers.get('X-Callback-Token')):
            span.set_attribute("webhook.verified", False)
            logger.warning("Rejected payment callback with invalid token",
                           extra={"ip_address": request.remote_addr})
            raise AuthenticationException("Invalid callback token")
        span.set_attribute("webhook.verified", True)

        try:
            payload = PaymentWebhookPayload(**(request.get_json(silent=True) or {}))
        except ValidationError as e:
            raise ValidationException.from_pydantic(e, "Invalid payment callback")

        span.set_attributes({"payment.reference": payload.reference or "", "payment.status": payload.status or ""})

        if payload.is_paid and payload.reference:
            outcome = current_app.workflow_engine.cascade_payment(payload.reference)
            if outcome is None and payload.external_id and payload.external_id != payload.reference:
                outcome = current_app.workflow_engine.cascade_payment(payload.external_id)
            span.set_attribute("payment.settled", outcome is not None)

        return jsonify({"ok": True}), 200
