"""
HTTP email notifier.
Posts messages to a transactional email API and returns the provider's message id.
"""

import base64
import logging
from typing import Optional

from quotedesk.core.config import settings
from quotedesk.core.integrations.contracts import EmailMessage
from quotedesk.core.integrations.http.http_client import HttpClient

logger = logging.getLogger(__name__)


class HttpEmailNotifier:
    """Notifier backed by a JSON email API."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        http_client: Optional[HttpClient] = None,
    ):
        self.api_url = api_url or settings.EMAIL_API_URL
        self.api_key = api_key if api_key is not None else settings.EMAIL_API_KEY
        self.sender = sender or settings.EMAIL_SENDER
        self.http_client = http_client or HttpClient(
            base_url=self.api_url,
            timeout=settings.NOTIFY_TIMEOUT_SECONDS,
            max_retries=2,
        )

    def _payload(self, message: EmailMessage) -> dict:
        return {
            "from": self.sender,
            "to": [message.to],
            "cc": message.cc,
            "bcc": message.bcc,
            "subject": message.subject,
            "html": message.html_body,
            "attachments": [
                {
                    "filename": attachment.filename,
                    "content_type": attachment.content_type,
                    "content": base64.b64encode(attachment.content).decode("ascii"),
                }
                for attachment in message.attachments
            ],
        }

    async def send_email(self, message: EmailMessage) -> Optional[str]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        response = await self.http_client.post_json(
            "", json=self._payload(message), headers=headers, idempotent=False
        )
        message_id = None
        if isinstance(response, dict):
            message_id = response.get("id") or response.get("message_id")
        logger.info(
            "Email accepted by provider",
            extra={"subject": message.subject, "provider_ref": message_id},
        )
        return message_id

    async def close(self) -> None:
        await self.http_client.close()
