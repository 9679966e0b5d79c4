"""
Tests for the WhatsApp connectors: webhook signatures, payload parsing and
provider selection. No network calls are made.
"""
import asyncio
import base64
import hashlib
import hmac
import json

import pytest

from salescoach.config import Settings
from salescoach.connectors import (
    MetaWhatsAppConnector,
    TwilioWhatsAppConnector,
    get_messaging_provider,
    whatsapp,
)
from salescoach.utils.errors import ConfigurationError

URL = "https://coach.example.com/webhook/whatsapp/tenant-1"


def twilio():
    return TwilioWhatsAppConnector("AC123", "secret-token", "whatsapp:+14155238886")


def meta(app_secret="app-secret"):
    return MetaWhatsAppConnector("token", "1234567890", app_secret=app_secret)


class StubResponse:
    def __init__(self, status, text):
        self.status = status
        self._text = text

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class StubSession:
    """Stands in for aiohttp.ClientSession and answers every POST with one response"""

    def __init__(self, response):
        self.response = response
        self.posts = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def post(self, url, **kwargs):
        self.posts.append(url)
        return self.response


@pytest.fixture
def http(monkeypatch):
    def answer(status, text):
        session = StubSession(StubResponse(status, text))
        monkeypatch.setattr(whatsapp.aiohttp, "ClientSession", lambda **kwargs: session)
        return session
    return answer


def twilio_signature(token, url, params):
    data = url + "".join(f"{k}{params[k]}" for k in sorted(params))
    return base64.b64encode(hmac.new(token.encode(), data.encode(), hashlib.sha1).digest()).decode()


# ────────────────────────────────────────────
# TWILIO
# ────────────────────────────────────────────


class TestTwilio:

    PARAMS = {
        "MessageSid": "SM1",
        "From": "whatsapp:+5511900000001",
        "To": "whatsapp:+14155238886",
        "Body": "my goal?",
    }

    def test_valid_signature(self):
        signature = twilio_signature("secret-token", URL, self.PARAMS)
        assert twilio().validate_webhook(signature, self.PARAMS, url=URL) is True

    def test_tampered_params(self):
        signature = twilio_signature("secret-token", URL, self.PARAMS)
        tampered = dict(self.PARAMS, Body="something else")
        assert twilio().validate_webhook(signature, tampered, url=URL) is False

    def test_missing_signature_or_url(self):
        signature = twilio_signature("secret-token", URL, self.PARAMS)
        assert twilio().validate_webhook("", self.PARAMS, url=URL) is False
        assert twilio().validate_webhook(signature, self.PARAMS) is False

    def test_parse_inbound_message(self):
        events = twilio().parse_webhook(self.PARAMS)
        assert len(events) == 1
        event = events[0]
        assert event.kind == "message"
        assert event.from_address == "+5511900000001"
        assert event.body == "my goal?"
        assert event.external_id == "SM1"

    def test_parse_status_callback(self):
        events = twilio().parse_webhook({"MessageSid": "SM2", "MessageStatus": "undelivered", "ErrorCode": "63016"})
        assert [(e.kind, e.status, e.error_message) for e in events] == [("status", "failed", "63016")]

    def test_sender_address(self):
        assert twilio().sender_address == "+14155238886"

    def test_send_reads_sid(self, http):
        session = http(201, '{"sid": "SM42"}')
        result = asyncio.run(twilio().send("+5511900000001", "hi", "tenant-1"))
        assert (result.success, result.external_id) == (True, "SM42")
        assert session.posts == ["https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"]

    def test_send_accepted_with_non_json_body(self, http):
        http(201, "<Response/>")
        result = asyncio.run(twilio().send("+5511900000001", "hi", "tenant-1"))
        assert (result.success, result.external_id) == (True, None)

    def test_send_error_status(self, http):
        http(400, "bad number")
        result = asyncio.run(twilio().send("+5511900000001", "hi", "tenant-1"))
        assert result.success is False
        assert result.error_message == "Twilio error 400: bad number"


# ────────────────────────────────────────────
# META
# ────────────────────────────────────────────


class TestMeta:

    PAYLOAD = {
        "entry": [{
            "changes": [{
                "value": {
                    "metadata": {"display_phone_number": "15550001111"},
                    "messages": [
                        {"from": "5511900000001", "id": "wamid.1", "type": "text", "text": {"body": "tips"}},
                        {"from": "5511900000001", "id": "wamid.2", "type": "image"},
                    ],
                    "statuses": [
                        {"id": "wamid.9", "status": "read"},
                        {"id": "wamid.8", "status": "failed", "errors": [{"title": "Re-engagement required"}]},
                    ],
                },
            }],
        }],
    }

    def test_valid_signature(self):
        raw = json.dumps(self.PAYLOAD).encode()
        signature = "sha256=" + hmac.new(b"app-secret", raw, hashlib.sha256).hexdigest()
        assert meta().validate_webhook(signature, raw) is True

    def test_invalid_signature(self):
        raw = json.dumps(self.PAYLOAD).encode()
        signature = "sha256=" + hmac.new(b"other-secret", raw, hashlib.sha256).hexdigest()
        assert meta().validate_webhook(signature, raw) is False

    def test_no_app_secret_rejects(self):
        raw = b"{}"
        signature = "sha256=" + hmac.new(b"app-secret", raw, hashlib.sha256).hexdigest()
        assert meta(app_secret=None).validate_webhook(signature, raw) is False

    def test_send_reads_message_id(self, http):
        http(200, '{"messages": [{"id": "wamid.42"}]}')
        result = asyncio.run(meta().send("whatsapp:+5511900000001", "hi", "tenant-1"))
        assert (result.success, result.external_id) == (True, "wamid.42")

    @pytest.mark.parametrize("body", ["OK", "[]", ""])
    def test_send_accepted_with_unexpected_body(self, http, body):
        http(200, body)
        result = asyncio.run(meta().send("+5511900000001", "hi", "tenant-1"))
        assert (result.success, result.external_id) == (True, None)

    def test_parse_messages_and_statuses(self):
        events = meta().parse_webhook(self.PAYLOAD)
        assert [(e.kind, e.external_id) for e in events] == [
            ("message", "wamid.1"),
            ("status", "wamid.9"),
            ("status", "wamid.8"),
        ]
        assert events[0].from_address == "+5511900000001"
        assert events[0].body == "tips"
        assert events[1].status == "read"
        assert events[2].status == "failed"
        assert events[2].error_message == "Re-engagement required"


# ────────────────────────────────────────────
# PROVIDER SELECTION
# ────────────────────────────────────────────


class TestGetMessagingProvider:

    def test_twilio(self):
        provider = get_messaging_provider(Settings(
            whatsapp_provider="twilio", twilio_account_sid="AC1", twilio_auth_token="tok"
        ))
        assert isinstance(provider, TwilioWhatsAppConnector)

    def test_meta(self):
        provider = get_messaging_provider(Settings(
            whatsapp_provider="META", meta_token="tok", meta_phone_id="123"
        ))
        assert isinstance(provider, MetaWhatsAppConnector)

    @pytest.mark.parametrize("kwargs", [
        {"whatsapp_provider": "twilio", "twilio_account_sid": None, "twilio_auth_token": None},
        {"whatsapp_provider": "meta", "meta_token": None, "meta_phone_id": None},
        {"whatsapp_provider": "telegram"},
    ])
    def test_missing_configuration(self, kwargs):
        with pytest.raises(ConfigurationError):
            get_messaging_provider(Settings(**kwargs))
