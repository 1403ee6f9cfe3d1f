import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp

from .. import config

logger = logging.getLogger(__name__)


class MessagingError(Exception):
    pass


def phone_to_jid(phone: str) -> str:
    return f"{re.sub(r'[^0-9]', '', phone)}@c.us"


class MessagingClient(ABC):
    """Outbound messaging boundary: one text to one phone, or one text to a group."""

    @abstractmethod
    async def send(self, phone: str, text: str) -> None:
        ...

    @abstractmethod
    async def send_to_group(self, group_ref: str, text: str) -> None:
        ...


class WhatsAppGatewayClient(MessagingClient):
    """Talks to the WhatsApp Web gateway that holds the logged-in session."""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None, timeout: float = 30.0):
        self.base_url = (base_url or config.WHATSAPP_GATEWAY_URL).rstrip("/")
        self.token = token if token is not None else config.WHATSAPP_GATEWAY_TOKEN
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _post(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(url, json=payload, headers=self._headers()) as resp:
                    text = await resp.text()
                    if resp.status >= 400:
                        raise MessagingError(f"WhatsApp gateway error {resp.status}: {text}")
                    return await resp.json(content_type=None) if text else {}
        except aiohttp.ClientError as e:
            raise MessagingError(f"WhatsApp gateway unreachable: {e}") from e

    async def send(self, phone: str, text: str) -> None:
        chat_id = phone_to_jid(phone)
        logger.debug("Sending private message to %s", chat_id)
        await self._post("/messages", {"chatId": chat_id, "text": text})

    async def send_to_group(self, group_ref: str, text: str) -> None:
        logger.debug("Sending group message to %s", group_ref)
        await self._post(f"/groups/{group_ref}/messages", {"text": text})
