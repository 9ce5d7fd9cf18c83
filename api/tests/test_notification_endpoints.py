# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the manual SMS endpoint.
"""

import json

from services.sms import SmsError
from fakes import ADMIN_EMAIL


class TestSendSms:
    """Test cases for staff SMS sends."""

    def test_requires_admin(self, client, auth_headers, sms_client):
        response = client.post('/api/notifications/sms', headers=auth_headers(),
                               json={"to": "09171234567", "message": "Hello"})

        assert response.status_code == 403
        sms_client.send.assert_not_called()

    def test_send(self, client, auth_headers, sms_client):
        response = client.post('/api/notifications/sms', headers=auth_headers(ADMIN_EMAIL),
                               json={"to": "09171234567", "message": "Your permit is ready"})

        assert response.status_code == 200
        assert json.loads(response.data) == {"success": True, "result": {"message_id": 1}}
        sms_client.send.assert_called_once_with("09171234567", "Your permit is ready")
        assert "X-RateLimit-Remaining" in response.headers

    def test_provider_failure(self, client, auth_headers, sms_client):
        sms_client.send.side_effect = SmsError("SMS send failed: 401")

        response = client.post('/api/notifications/sms', headers=auth_headers(ADMIN_EMAIL),
                               json={"to": "09171234567", "message": "Hello"})

        assert response.status_code == 502
        assert json.loads(response.data) == {"success": False, "error": "SMS send failed: 401"}

    def test_not_configured(self, client, auth_headers, sms_client):
        sms_client.configured = False

        response = client.post('/api/notifications/sms', headers=auth_headers(ADMIN_EMAIL),
                               json={"to": "09171234567", "message": "Hello"})

        assert response.status_code == 503

    def test_empty_message(self, client, auth_headers):
        response = client.post('/api/notifications/sms', headers=auth_headers(ADMIN_EMAIL),
                               json={"to": "09171234567", "message": ""})

        assert response.status_code == 422
