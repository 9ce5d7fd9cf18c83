# SPDX-License-Identifier: Apache-2.0

"""
SMS client for the Semaphore messaging API.
"""

import os
import logging
from typing import Dict, Any, Optional
import requests
from opentelemetry import trace

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SEMAPHORE_URL = "https://semaphore.co/api/v4/messages"


class SmsError(Exception):
    """Raised when an SMS could not be sent."""


class SmsClient:
    """
    Minimal Semaphore client: one call, one message.

    Args:
        api_key: Semaphore API key
        sender_name: Registered sender name
        session: requests session, injectable for tests
        timeout: Request timeout in seconds
    """

    def __init__(self, api_key: Optional[str] = None, sender_name: Optional[str] = None,
                 session: Optional[requests.Session] = None, timeout: float = 10):
        self.api_key = api_key if api_key is not None else os.getenv("SEMAPHORE_API_KEY", "")
        self.sender_name = sender_name or os.getenv("SEMAPHORE_SENDER", "DIPOLOG")
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def send(self, phone: str, message: str) -> Dict[str, Any]:
        """
        Send one SMS.

        Args:
            phone: Recipient number
            message: Message text

        Returns:
            Provider response payload

        Raises:
            SmsError: When not configured, or the provider call fails
        """
        if not self.configured:
            raise SmsError("SMS provider is not configured")

        with tracer.start_as_current_span("sms.send") as span:
            span.set_attribute("sms.length", len(message))
            try:
                response = self.session.post(
                    SEMAPHORE_URL,
                    data={
                        "apikey": self.api_key,
                        "sendername": self.sender_name,
                        "number": phone,
                        "message": message,
                    },
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                span.set_attribute("sms.result", "error")
                logger.error(f"SMS request failed: {str(e)}")
                raise SmsError(f"SMS request failed: {str(e)}")

            if not response.ok:
                span.set_attribute("sms.result", "rejected")
                logger.error(
                    "SMS provider rejected message",
                    extra={"status_code": response.status_code, "body": response.text[:200]}
                )
                raise SmsError(f"SMS send failed: {response.status_code} {response.text[:200]}")

            span.set_attribute("sms.result", "sent")
            try:
                return {"provider_response": response.json()}
            except ValueError:
                return {"provider_response": response.text}
