"""
HTTP document renderer client.
"""

import logging
from typing import Optional

from quotedesk.core.config import settings
from quotedesk.core.integrations.http.http_client import HttpClient
from quotedesk.models.quotation import Quotation

logger = logging.getLogger(__name__)


def quotation_render_payload(quotation: Quotation) -> dict:
    """Serializable snapshot of everything the document template needs."""
    return {
        "quotation_id": str(quotation.id),
        "quotation_number": quotation.quotation_number,
        "title": quotation.title,
        "quotation_date": quotation.quotation_date.isoformat() if quotation.quotation_date else None,
        "valid_until": quotation.valid_until.isoformat() if quotation.valid_until else None,
        "currency": quotation.currency,
        "subtotal": str(quotation.subtotal),
        "discount_percentage": str(quotation.discount_percentage),
        "discount_amount": str(quotation.discount_amount),
        "tax_amount": str(quotation.tax_amount),
        "cgst_amount": str(quotation.cgst_amount),
        "sgst_amount": str(quotation.sgst_amount),
        "igst_amount": str(quotation.igst_amount),
        "total_amount": str(quotation.total_amount),
        "notes": quotation.notes,
        "line_items": [
            {
                "item_name": item.item_name,
                "description": item.description,
                "quantity": str(item.quantity),
                "unit_rate": str(item.unit_rate),
                "discount_amount": str(item.discount_amount),
                "amount": str(item.amount),
            }
            for item in sorted(quotation.line_items, key=lambda i: i.display_order)
        ],
    }


class HttpDocumentRenderer:
    """DocumentRenderer that delegates to a rendering service and returns PDF bytes."""

    def __init__(self, renderer_url: Optional[str] = None, http_client: Optional[HttpClient] = None):
        self.renderer_url = renderer_url or settings.RENDERER_URL
        self.http_client = http_client or HttpClient(
            base_url=self.renderer_url,
            timeout=settings.RENDER_TIMEOUT_SECONDS,
            max_retries=2,
        )

    async def render(self, quotation: Quotation) -> bytes:
        document = await self.http_client.post_for_bytes("", json=quotation_render_payload(quotation))
        if not document:
            raise ValueError(f"Renderer returned an empty document for quotation {quotation.id}")
        logger.debug(f"Rendered quotation {quotation.quotation_number} ({len(document)} bytes)")
        return document

    async def close(self) -> None:
        await self.http_client.close()
