# SPDX-License-Identifier: Apache-2.0

"""
Payment gateway client for Xendit invoices.

Checkout creates one hosted invoice; settlement arrives later through the
invoice callback, authenticated with the account's callback token.
"""

import os
import hmac
import logging
from typing import Dict, Any, Optional
import requests
from opentelemetry import trace

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

XENDIT_INVOICE_URL = "https://api.xendit.co/v2/invoices"
PAYMENT_METHODS = ["GCASH", "CARD", "PAYMAYA"]


class PaymentNotConfiguredError(Exception):
    """Raised when no gateway API key is configured."""


class PaymentGatewayError(Exception):
    """Raised when the gateway rejects or fails an invoice request."""


class PaymentGateway:
    """
    Xendit invoice client.

    Args:
        api_key: Xendit secret key
        callback_token: Token Xendit sends in ``X-Callback-Token``
        base_url: Portal URL used for the redirect targets
        session: requests session, injectable for tests
    """

    def __init__(self, api_key: Optional[str] = None, callback_token: Optional[str] = None,
                 base_url: Optional[str] = None, session: Optional[requests.Session] = None,
                 timeout: float = 10):
        self.api_key = api_key if api_key is not None else os.getenv("XENDIT_API_KEY", "")
        self.callback_token = callback_token if callback_token is not None else os.getenv("XENDIT_CALLBACK_TOKEN", "")
        self.base_url = (base_url or os.getenv("BASE_URL", "http://localhost:3000")).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def configuration_status(self) -> Dict[str, Any]:
        return {
            "configured": self.configured,
            "provider": "xendit",
            "callback_verification": bool(self.callback_token),
            "payment_methods": PAYMENT_METHODS,
        }

    def create_invoice(self, reference: str, amount: float, payer_email: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a hosted invoice.

        Args:
            reference: Our reference number, sent as ``external_id``
            amount: Amount in PHP, rounded to whole pesos
            payer_email: Optional payer email

        Returns:
            Invoice payload returned by the gateway

        Raises:
            PaymentNotConfiguredError: Without an API key
            PaymentGatewayError: On transport errors or non-2xx replies
        """
        if not self.configured:
            raise PaymentNotConfiguredError("Payment provider is not configured")

        body = {
            "external_id": reference,
            "amount": round(amount),
            "description": f"Permit fee for {reference}",
            "success_redirect_url": f"{self.base_url}/dashboard",
            "failure_redirect_url": f"{self.base_url}/dashboard",
            "currency": "PHP",
            "payment_methods": PAYMENT_METHODS,
        }
        if payer_email:
            body["payer_email"] = payer_email

        with tracer.start_as_current_span("payments.create_invoice") as span:
            span.set_attributes({"payment.reference": reference, "payment.amount": float(amount)})
            try:
                response = self.session.post(
                    XENDIT_INVOICE_URL,
                    json=body,
                    auth=(self.api_key, ""),
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                logger.error(f"Invoice request failed: {str(e)}")
                raise PaymentGatewayError(f"Invoice request failed: {str(e)}")

            if not response.ok:
                logger.error(
                    "Payment gateway rejected invoice",
                    extra={"status_code": response.status_code, "body": response.text[:200]}
                )
                raise PaymentGatewayError(f"Xendit API error: {response.status_code} {response.text[:200]}")

            invoice = response.json()
            span.set_attribute("payment.invoice_id", invoice.get("id", ""))
            logger.info("Invoice created", extra={"reference": reference, "invoice_id": invoice.get("id")})
            return invoice

    def verify_callback_token(self, received: Optional[str]) -> bool:
        """
        Check the callback token in constant time.

        Returns False when no token is configured, so unauthenticated
        callbacks are never trusted.
        """
        if not self.callback_token or not received:
            return False
        return hmac.compare_digest(self.callback_token.encode(), received.encode())
