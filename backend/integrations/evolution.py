"""
WhatsApp messaging through the Evolution API.

Messages go to ``POST {EVOLUTION_API_URL}/message/sendText/{instance}``
with the ``apikey`` header. The instance is the WhatsApp session the
message is sent from.
"""

import re
from typing import Optional

import httpx
import structlog

from app.config import get_settings
from automation.collaborators import MessagingTransport
from core.exceptions import ActionConfigurationError, ActionError
from integrations.http import send

logger = structlog.get_logger(__name__)


def normalize_phone_number(phone: str) -> str:
    """Normalize a phone number to international format (Brazil default).

    - digits starting with 55 and at least 12 long already carry the country code
    - 10 or 11 digits are a Brazilian number without country code: prefix 55
    - anything else is returned as bare digits
    """
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("55") and len(digits) >= 12:
        return digits
    if 10 <= len(digits) <= 11:
        return f"55{digits}"
    return digits


class EvolutionMessagingTransport(MessagingTransport):
    """Send WhatsApp text messages via an Evolution API server."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        default_instance: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.default_instance = default_instance or settings.EVOLUTION_DEFAULT_INSTANCE
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.EVOLUTION_API_URL,
            headers={"apikey": api_key or settings.EVOLUTION_API_KEY, "Content-Type": "application/json"},
            timeout=timeout or settings.ACTION_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def send_text(self, organization_id, phone, text, session_id=None) -> dict:
        instance = session_id or self.default_instance
        if not instance:
            raise ActionConfigurationError("No WhatsApp session configured for send_message")

        number = normalize_phone_number(phone)
        response = await send(
            self._client,
            "POST",
            f"/message/sendText/{instance}",
            json={"number": number, "text": text},
        )
        if response.status_code == 404:
            raise ActionError(f"WhatsApp instance {instance} not found")

        try:
            data = response.json()
        except ValueError:
            data = {}
        message_id = (data.get("key") or {}).get("id") if isinstance(data, dict) else None
        logger.info("WhatsApp message sent", instance=instance, number=number)
        return {"message_id": message_id, "number": number}
