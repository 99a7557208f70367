"""
Contracts for the external collaborators the quotation core depends on.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from quotedesk.models.quotation import Quotation


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass
class EmailMessage:
    to: str
    subject: str
    html_body: str
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    attachments: List[EmailAttachment] = field(default_factory=list)


class DocumentRenderer(Protocol):
    """Produces a viewable document for a quotation. Must be side-effect free."""

    async def render(self, quotation: Quotation) -> bytes:
        ...


class Notifier(Protocol):
    """
    Sends email. Returns the provider's message reference on success and
    raises on any failure.
    """

    async def send_email(self, message: EmailMessage) -> Optional[str]:
        ...
