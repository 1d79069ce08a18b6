import json
import os
from typing import Any, BinaryIO, Dict, Optional

import httpx
from loguru import logger

from tools.errors import IntegrationError, ResourceError


class WhatsAppGateway:
    """Outbound WhatsApp messaging through the Twilio Messages API."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.account_sid = os.getenv("TWILIO_ACCOUNT_SID")
        self.auth_token = os.getenv("TWILIO_AUTH_TOKEN")
        self.phone_number = os.getenv("TWILIO_PHONE_NUMBER", "")
        self.template_sid = os.getenv("TWILIO_TEMPLATE_SID")
        self.base_url = os.getenv("TWILIO_API_BASE", "https://api.twilio.com")
        self.timeout = float(os.getenv("HTTP_TIMEOUT_SECONDS", "20"))
        self._transport = transport

        if not (self.account_sid and self.auth_token):
            logger.warning("No Twilio credentials provided, using mock mode")

    @property
    def enabled(self) -> bool:
        return bool(self.account_sid and self.auth_token)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            auth=(self.account_sid, self.auth_token),
            transport=self._transport,
        )

    def _sender(self) -> str:
        number = self.phone_number
        return number if number.startswith("whatsapp:") else f"whatsapp:{number}"

    async def send_text(self, address: str, body: str) -> str:
        """
        Send a plain text message.

        Args:
            address: Contact key, e.g. ``whatsapp:+56912345678``
            body: Message text

        Returns:
            Twilio message SID (``mock_...`` in mock mode)
        """
        if not self.enabled:
            logger.info(f"Mock mode: would send to {address}: {body[:80]}")
            return "mock_text_sid"

        return await self._create_message({"To": address, "From": self._sender(), "Body": body})

    async def send_template(self, address: str, template_id: str, variables: Dict[str, Any]) -> str:
        """
        Send a pre-approved content template.

        Args:
            address: Contact key
            template_id: Twilio Content SID (``HX...``)
            variables: Positional template variables, e.g. ``{"1": "Jane"}``

        Returns:
            Twilio message SID
        """
        if not self.enabled:
            logger.info(f"Mock mode: would send template {template_id} to {address}")
            return "mock_template_sid"

        return await self._create_message({
            "To": address,
            "From": self._sender(),
            "ContentSid": template_id,
            "ContentVariables": json.dumps(variables),
        })

    async def download_media(self, url: str, sink: BinaryIO) -> int:
        """
        Stream an inbound attachment into ``sink``.

        Twilio media URLs require account credentials and redirect to a
        signed storage URL.

        Returns:
            Number of bytes written
        """
        if not self.enabled:
            raise ResourceError("twilio", "media download unavailable without credentials")

        written = 0
        try:
            async with self._client() as client:
                async with client.stream("GET", url, follow_redirects=True) as response:
                    if response.status_code >= 400:
                        raise ResourceError(
                            "twilio",
                            f"media download returned {response.status_code}",
                            status_code=response.status_code,
                        )
                    async for chunk in response.aiter_bytes():
                        sink.write(chunk)
                        written += len(chunk)
        except httpx.HTTPError as e:
            raise ResourceError("twilio", f"media download failed: {e}") from e

        logger.debug(f"Downloaded {written} bytes from {url}")
        return written

    async def _create_message(self, data: Dict[str, str]) -> str:
        url = f"{self.base_url}/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        try:
            async with self._client() as client:
                response = await client.post(url, data=data)
        except httpx.HTTPError as e:
            raise IntegrationError("twilio", f"send failed: {e}") from e

        if response.status_code >= 400:
            raise IntegrationError(
                "twilio",
                f"send returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            sid = response.json().get("sid", "")
        except ValueError as e:
            raise IntegrationError("twilio", f"invalid JSON response: {e}") from e
        logger.info(f"WhatsApp message sent to {data['To']}: {sid}")
        return sid


# Global gateway instance
whatsapp_gateway = WhatsAppGateway()
