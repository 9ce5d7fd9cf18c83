# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the SMS, payment, storage and token services.
"""

import os
import base64
import pytest
import requests
from unittest.mock import MagicMock

from services.sms import SmsClient, SmsError, SEMAPHORE_URL
from services.payments import (
    PaymentGateway,
    PaymentGatewayError,
    PaymentNotConfiguredError,
    XENDIT_INVOICE_URL,
)
from services.storage import (
    DocumentStorage,
    DocumentValidationError,
    MAX_FILE_SIZE,
    decode_base64_content,
    sanitize_file_name,
    validate_upload,
)
from services.auth import AuthService, TokenValidationError


def _response(ok=True, status_code=200, payload=None, text=""):
    response = MagicMock(ok=ok, status_code=status_code, text=text)
    response.json.return_value = payload or {}
    return response


class TestSmsClient:
    """Test cases for the Semaphore client."""

    def test_send(self):
        session = MagicMock()
        session.post.return_value = _response(payload=[{"message_id": 42}])
        client = SmsClient(api_key="sem-key", sender_name="DIPOLOG", session=session)

        result = client.send("09171234567", "Your permit is approved")

        assert result == {"provider_response": [{"message_id": 42}]}
        url = session.post.call_args[0][0]
        data = session.post.call_args[1]["data"]
        assert url == SEMAPHORE_URL
        assert data == {
            "apikey": "sem-key",
            "sendername": "DIPOLOG",
            "number": "09171234567",
            "message": "Your permit is approved",
        }

    def test_not_configured(self):
        session = MagicMock()
        client = SmsClient(api_key="", session=session)

        assert client.configured is False
        with pytest.raises(SmsError):
            client.send("09171234567", "Hello")
        session.post.assert_not_called()

    def test_provider_rejects(self):
        session = MagicMock()
        session.post.return_value = _response(ok=False, status_code=401, text="Invalid API key")

        with pytest.raises(SmsError) as exc_info:
            SmsClient(api_key="sem-key", session=session).send("09171234567", "Hello")

        assert "401" in str(exc_info.value)

    def test_transport_error(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("connection reset")

        with pytest.raises(SmsError):
            SmsClient(api_key="sem-key", session=session).send("09171234567", "Hello")

    def test_non_json_reply(self):
        session = MagicMock()
        reply = _response(text="queued")
        reply.json.side_effect = ValueError("not json")
        session.post.return_value = reply

        assert SmsClient(api_key="sem-key", session=session).send("0917", "Hi") == {"provider_response": "queued"}


class TestPaymentGateway:
    """Test cases for the Xendit invoice client."""

    def test_create_invoice(self):
        session = MagicMock()
        session.post.return_value = _response(payload={"id": "inv-1", "invoice_url": "https://pay/inv-1"})
        gateway = PaymentGateway("xnd_key", "cb-token", "https://permits.example.com/", session=session)

        invoice = gateway.create_invoice("BP-20240115-ABC123", 499.6, payer_email="jane@example.com")

        assert invoice["id"] == "inv-1"
        assert session.post.call_args[0][0] == XENDIT_INVOICE_URL
        body = session.post.call_args[1]["json"]
        assert body["external_id"] == "BP-20240115-ABC123"
        assert body["amount"] == 500
        assert body["currency"] == "PHP"
        assert body["payer_email"] == "jane@example.com"
        assert body["success_redirect_url"] == "https://permits.example.com/dashboard"
        assert session.post.call_args[1]["auth"] == ("xnd_key", "")

    def test_not_configured(self):
        gateway = PaymentGateway("", "cb-token", session=MagicMock())

        with pytest.raises(PaymentNotConfiguredError):
            gateway.create_invoice("BP-1", 100)
        assert gateway.configuration_status()["configured"] is False

    def test_gateway_rejects(self):
        session = MagicMock()
        session.post.return_value = _response(ok=False, status_code=400, text="API_VALIDATION_ERROR")

        with pytest.raises(PaymentGatewayError) as exc_info:
            PaymentGateway("xnd_key", "cb-token", session=session).create_invoice("BP-1", 100)

        assert "400" in str(exc_info.value)

    def test_transport_error(self):
        session = MagicMock()
        session.post.side_effect = requests.Timeout("timed out")

        with pytest.raises(PaymentGatewayError):
            PaymentGateway("xnd_key", "cb-token", session=session).create_invoice("BP-1", 100)

    @pytest.mark.parametrize("configured,received,expected", [
        ("cb-token", "cb-token", True),
        ("cb-token", "wrong", False),
        ("cb-token", None, False),
        ("", "", False),
        ("", "anything", False),
    ])
    def test_verify_callback_token(self, configured, received, expected):
        gateway = PaymentGateway("xnd_key", configured, session=MagicMock())

        assert gateway.verify_callback_token(received) is expected


class TestDocumentStorage:
    """Test cases for upload validation and storage."""

    def test_save(self, tmp_path):
        storage = DocumentStorage(str(tmp_path))

        relative = storage.save("app-1", "../../etc/DTI permit.pdf", b"%PDF-1.4")

        assert relative.startswith("app-1" + os.sep)
        assert relative.endswith("_DTI_permit.pdf")
        with open(os.path.join(str(tmp_path), relative), "rb") as handle:
            assert handle.read() == b"%PDF-1.4"

    @pytest.mark.parametrize("file_name,content", [
        ("virus.exe", b"MZ"),
        ("noextension", b"data"),
        ("empty.pdf", b""),
        ("huge.pdf", b"x" * (MAX_FILE_SIZE + 1)),
    ])
    def test_rejected_uploads(self, file_name, content):
        with pytest.raises(DocumentValidationError):
            validate_upload(file_name, content)

    def test_extension_is_lowercased(self):
        assert validate_upload("Scan.JPG", b"\xff\xd8") == "jpg"

    def test_sanitize_file_name(self):
        assert sanitize_file_name("C:\\docs\\my file.pdf") == "my_file.pdf"
        assert sanitize_file_name("...") == "upload"

    def test_decode_base64(self):
        encoded = base64.b64encode(b"hello").decode()

        assert decode_base64_content(encoded) == b"hello"
        assert decode_base64_content(f"data:application/pdf;base64,{encoded}") == b"hello"
        with pytest.raises(DocumentValidationError):
            decode_base64_content("not base64!!")

    def test_health_check(self, tmp_path):
        assert DocumentStorage(str(tmp_path / "uploads")).health_check()["status"] == "healthy"


class TestAuthService:
    """Test cases for token issuing and validation."""

    def test_hs256_round_trip(self):
        service = AuthService(secret="permit-portal-test-secret-0123456789abcdef")

        issued = service.issue_token("user-1", " Jane@Example.com ")
        payload = service.validate_token(issued["access_token"])

        assert service.algorithm == "HS256"
        assert payload["sub"] == "user-1"
        assert payload["email"] == "jane@example.com"
        assert payload["jti"]
        assert issued["expires_in"] == 3600

    def test_rs256_with_generated_keys(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        monkeypatch.delenv("JWT_PRIVATE_KEY", raising=False)
        monkeypatch.delenv("JWT_PUBLIC_KEY", raising=False)

        service = AuthService()

        assert service.algorithm == "RS256"
        assert service.self_test() is True

    def test_wrong_secret_rejected(self):
        issued = AuthService(secret="a" * 40).issue_token("user-1", "jane@example.com")

        with pytest.raises(TokenValidationError):
            AuthService(secret="b" * 40).validate_token(issued["access_token"])

    def test_garbage_rejected(self):
        with pytest.raises(TokenValidationError):
            AuthService(secret="a" * 40).validate_token("not.a.jwt")
