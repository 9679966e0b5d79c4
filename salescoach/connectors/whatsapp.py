"""
WhatsApp messaging connectors (Twilio and Meta Cloud API).

Both providers implement the same small surface:
  - send(to_address, body, tenant_id) -> SendResult, never raises for
    provider-side errors (timeouts, non-2xx)
  - validate_webhook(signature, payload, url=None) -> bool
  - parse_webhook(payload) -> list of WebhookEvent (inbound texts and
    delivery-status callbacks)
"""
import asyncio
import base64
import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import aiohttp

from salescoach.config import Settings, get_settings
from salescoach.utils.errors import ConfigurationError
from salescoach.utils.logger import log

# Provider status words -> DeliveryStatus values
_STATUS_MAP = {
    "queued": "sent",
    "accepted": "sent",
    "sending": "sent",
    "sent": "sent",
    "delivered": "delivered",
    "read": "read",
    "failed": "failed",
    "undelivered": "failed",
}


@dataclass
class SendResult:
    success: bool
    external_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class WebhookEvent:
    kind: str  # "message" | "status"
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    body: Optional[str] = None
    external_id: Optional[str] = None
    status: Optional[str] = None
    error_message: Optional[str] = None


def _strip_channel(address: str) -> str:
    return (address or "").replace("whatsapp:", "").strip()


def _success_body(text: str) -> Dict[str, Any]:
    """JSON object of an accepted send; anything else reads as empty"""
    if not text:
        return {}
    try:
        data = json.loads(text)
    except ValueError:
        log.warning(f"Provider accepted message with a non-JSON body: {text[:200]}")
        return {}
    return data if isinstance(data, dict) else {}


class BaseMessagingProvider(ABC):
    """Outbound messaging channel"""

    provider_name: str = "base"

    @abstractmethod
    async def send(self, to_address: str, body: str, tenant_id: str) -> SendResult:
        pass

    @abstractmethod
    def validate_webhook(self, signature: str, payload: Union[bytes, Dict[str, Any]], url: Optional[str] = None) -> bool:
        pass

    @abstractmethod
    def parse_webhook(self, payload: Dict[str, Any]) -> List[WebhookEvent]:
        pass

    @property
    def sender_address(self) -> str:
        return self.provider_name


class TwilioWhatsAppConnector(BaseMessagingProvider):
    """Twilio Programmable Messaging, WhatsApp channel"""

    provider_name = "twilio"
    API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

    def __init__(self, account_sid: str, auth_token: str, from_address: str, timeout_seconds: float = 30.0):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_address = from_address
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def sender_address(self) -> str:
        return _strip_channel(self.from_address)

    async def send(self, to_address: str, body: str, tenant_id: str) -> SendResult:
        to = to_address if to_address.startswith("whatsapp:") else f"whatsapp:{to_address}"
        data = {"From": self.from_address, "To": to, "Body": body}
        url = self.API_URL.format(sid=self.account_sid)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    url,
                    data=data,
                    auth=aiohttp.BasicAuth(self.account_sid, self.auth_token),
                ) as response:
                    text = await response.text()
                    if 200 <= response.status < 300:
                        sid = _success_body(text).get("sid")
                        log.debug(f"Twilio accepted message | tenant={tenant_id} | sid={sid}")
                        return SendResult(success=True, external_id=sid)
                    log.warning(f"Twilio returned status {response.status} | tenant={tenant_id}")
                    return SendResult(success=False, error_message=f"Twilio error {response.status}: {text[:500]}")
        except asyncio.TimeoutError:
            return SendResult(success=False, error_message="Twilio request timed out")
        except aiohttp.ClientError as e:
            return SendResult(success=False, error_message=f"Twilio connection error: {str(e)}")

    def validate_webhook(self, signature: str, payload: Union[bytes, Dict[str, Any]], url: Optional[str] = None) -> bool:
        """X-Twilio-Signature: base64 HMAC-SHA1 over the URL plus sorted form params."""
        if not signature or not url or not isinstance(payload, dict):
            return False
        data = url + "".join(f"{key}{payload[key]}" for key in sorted(payload))
        digest = hmac.new(self.auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, payload: Dict[str, Any]) -> List[WebhookEvent]:
        sid = payload.get("MessageSid") or payload.get("SmsSid")
        status = payload.get("MessageStatus") or payload.get("SmsStatus")

        if payload.get("Body") is not None and status in (None, "received"):
            return [WebhookEvent(
                kind="message",
                from_address=_strip_channel(payload.get("From", "")),
                to_address=_strip_channel(payload.get("To", "")),
                body=payload.get("Body", ""),
                external_id=sid,
            )]
        if status:
            return [WebhookEvent(
                kind="status",
                external_id=sid,
                status=_STATUS_MAP.get(status.lower(), status.lower()),
                error_message=payload.get("ErrorMessage") or payload.get("ErrorCode"),
            )]
        return []


class MetaWhatsAppConnector(BaseMessagingProvider):
    """Meta WhatsApp Cloud API"""

    provider_name = "meta"
    API_URL = "https://graph.facebook.com/{version}/{phone_id}/messages"

    def __init__(
        self,
        token: str,
        phone_id: str,
        app_secret: Optional[str] = None,
        api_version: str = "v18.0",
        timeout_seconds: float = 30.0,
    ):
        self.token = token
        self.phone_id = phone_id
        self.app_secret = app_secret
        self.api_version = api_version
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def sender_address(self) -> str:
        return self.phone_id

    async def send(self, to_address: str, body: str, tenant_id: str) -> SendResult:
        payload = {
            "messaging_product": "whatsapp",
            "to": _strip_channel(to_address).lstrip("+"),
            "type": "text",
            "text": {"body": body},
        }
        url = self.API_URL.format(version=self.api_version, phone_id=self.phone_id)
        headers = {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(url, json=payload, headers=headers) as response:
                    text = await response.text()
                    if 200 <= response.status < 300:
                        messages = _success_body(text).get("messages")
                        message_id = messages[0].get("id") if messages else None
                        log.debug(f"Meta accepted message | tenant={tenant_id} | id={message_id}")
                        return SendResult(success=True, external_id=message_id)
                    log.warning(f"Meta returned status {response.status} | tenant={tenant_id}")
                    return SendResult(success=False, error_message=f"Meta error {response.status}: {text[:500]}")
        except asyncio.TimeoutError:
            return SendResult(success=False, error_message="Meta request timed out")
        except aiohttp.ClientError as e:
            return SendResult(success=False, error_message=f"Meta connection error: {str(e)}")

    def validate_webhook(self, signature: str, payload: Union[bytes, Dict[str, Any]], url: Optional[str] = None) -> bool:
        """X-Hub-Signature-256: 'sha256=' + hex HMAC-SHA256 of the raw body."""
        if not signature or not self.app_secret or not isinstance(payload, (bytes, bytearray)):
            return False
        digest = hmac.new(self.app_secret.encode("utf-8"), bytes(payload), hashlib.sha256).hexdigest()
        return hmac.compare_digest(f"sha256={digest}", signature)

    def parse_webhook(self, payload: Dict[str, Any]) -> List[WebhookEvent]:
        events = []
        for entry in payload.get("entry", []):
            for change in entry.get("changes", []):
                value = change.get("value", {})
                to_address = value.get("metadata", {}).get("display_phone_number")
                for message in value.get("messages", []):
                    if message.get("type") != "text":
                        continue
                    events.append(WebhookEvent(
                        kind="message",
                        from_address="+" + message.get("from", "").lstrip("+"),
                        to_address=to_address,
                        body=message.get("text", {}).get("body", ""),
                        external_id=message.get("id"),
                    ))
                for status in value.get("statuses", []):
                    errors = status.get("errors") or []
                    events.append(WebhookEvent(
                        kind="status",
                        external_id=status.get("id"),
                        status=_STATUS_MAP.get(status.get("status", ""), status.get("status")),
                        error_message=errors[0].get("title") if errors else None,
                    ))
        return events


def get_messaging_provider(settings: Optional[Settings] = None) -> BaseMessagingProvider:
    """Build the configured provider; missing credentials are a configuration error."""
    settings = settings or get_settings()
    provider = (settings.whatsapp_provider or "").lower()

    if provider == "twilio":
        if not settings.twilio_account_sid or not settings.twilio_auth_token:
            raise ConfigurationError("Twilio credentials not configured (TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN)")
        return TwilioWhatsAppConnector(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_from,
            settings.whatsapp_timeout_seconds,
        )

    if provider == "meta":
        if not settings.meta_token or not settings.meta_phone_id:
            raise ConfigurationError("Meta WhatsApp credentials not configured (META_TOKEN, META_PHONE_ID)")
        return MetaWhatsAppConnector(
            settings.meta_token,
            settings.meta_phone_id,
            settings.meta_app_secret,
            settings.meta_api_version,
            settings.whatsapp_timeout_seconds,
        )

    raise ConfigurationError(f"Unknown WhatsApp provider: {settings.whatsapp_provider!r}")
