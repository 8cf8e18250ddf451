# whatsapp_utils.py
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import httpx

from errors import ConfigurationError, MalformedUpstreamResponse, TransientRemoteFailure

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


def as_whatsapp(number: str) -> str:
    number = (number or "").strip()
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


def strip_whatsapp(address: str) -> str:
    return (address or "").replace("whatsapp:", "").strip()


@dataclass
class InboundMessage:
    sender: str
    text: str = ""
    num_media: int = 0
    media_url: Optional[str] = None
    media_content_type: Optional[str] = None
    message_id: Optional[str] = None

    @classmethod
    def from_form(cls, form: Mapping[str, str]) -> "InboundMessage":
        try:
            num_media = int(form.get("NumMedia") or 0)
        except ValueError:
            num_media = 0
        # quick-reply buttons from the style template arrive as ButtonPayload / ButtonText
        text = form.get("ButtonPayload") or form.get("ButtonText") or form.get("Body") or ""
        return cls(
            sender=strip_whatsapp(form.get("From", "")),
            text=text.strip(),
            num_media=num_media,
            media_url=form.get("MediaUrl0") or None,
            media_content_type=form.get("MediaContentType0") or None,
            message_id=form.get("MessageSid") or None,
        )


@dataclass
class StatusCallback:
    message_id: str
    status: str
    media_urls: List[str] = field(default_factory=list)

    @classmethod
    def from_form(cls, form: Mapping[str, str]) -> "StatusCallback":
        urls = []
        i = 0
        while form.get(f"MediaUrl{i}"):
            urls.append(form[f"MediaUrl{i}"])
            i += 1
        return cls(
            message_id=form.get("MessageSid", ""),
            status=(form.get("MessageStatus") or "").strip().lower(),
            media_urls=urls,
        )


class WhatsAppMessenger:
    """Twilio WhatsApp REST client. Returns the Twilio message SID for every send."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str, timeout: float = 30):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout

    def _check_config(self) -> None:
        if not self.account_sid or not self.auth_token:
            raise ConfigurationError("TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN must be configured")
        if not self.from_number:
            raise ConfigurationError("TWILIO_WHATSAPP_FROM_NUMBER is not configured")

    async def _create_message(self, data: Dict[str, object]) -> str:
        self._check_config()
        url = f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"
        data = {"From": as_whatsapp(self.from_number), **data}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, data=data, auth=(self.account_sid, self.auth_token))
        except httpx.HTTPError as e:
            raise TransientRemoteFailure(f"Twilio request failed: {e}") from e

        if resp.status_code // 100 != 2:
            raise TransientRemoteFailure(f"Twilio send failed ({resp.status_code}): {resp.text}")
        try:
            sid = resp.json().get("sid")
        except ValueError:
            sid = None
        if not sid:
            raise MalformedUpstreamResponse(f"Twilio returned no message sid: {resp.text[:200]}")
        return sid

    async def send_message(
        self,
        to: str,
        body: str,
        media_urls: Optional[List[str]] = None,
        status_callback: Optional[str] = None,
    ) -> str:
        data: Dict[str, object] = {"To": as_whatsapp(to), "Body": body}
        if media_urls:
            data["MediaUrl"] = list(media_urls)
        if status_callback:
            data["StatusCallback"] = status_callback
        sid = await self._create_message(data)
        logger.info(f"Sent message {sid} to {to}: {body!r} media={len(media_urls or [])}")
        return sid

    async def send_template(
        self,
        to: str,
        content_sid: str,
        variables: Optional[Dict[str, str]] = None,
        status_callback: Optional[str] = None,
    ) -> str:
        data: Dict[str, object] = {"To": as_whatsapp(to), "ContentSid": content_sid}
        if variables:
            data["ContentVariables"] = json.dumps(variables)
        if status_callback:
            data["StatusCallback"] = status_callback
        sid = await self._create_message(data)
        logger.info(f"Sent template {content_sid} as {sid} to {to}")
        return sid

    async def download_media(self, media_url: str) -> Tuple[bytes, str]:
        """Twilio media URLs need account auth and redirect to the CDN."""
        self._check_config()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                resp = await client.get(media_url, auth=(self.account_sid, self.auth_token))
        except httpx.HTTPError as e:
            raise TransientRemoteFailure(f"Media download failed: {e}") from e
        if resp.status_code // 100 != 2:
            raise TransientRemoteFailure(f"Media download failed ({resp.status_code}) for {media_url}")
        content_type = resp.headers.get("Content-Type", "application/octet-stream")
        return resp.content, content_type
