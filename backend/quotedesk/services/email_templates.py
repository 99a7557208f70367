"""
Email bodies for quotation notifications.
"""

from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Optional

from quotedesk.core.integrations.contracts import EmailAttachment, EmailMessage


def _money(currency: str, amount: Decimal) -> str:
    return f"{escape(currency)} {Decimal(amount):,.2f}"


def _wrap(title: str, body: str) -> str:
    return (
        "<html><body style=\"font-family: Arial, sans-serif; color: #1f2937;\">"
        f"<h2>{escape(title)}</h2>{body}"
        "</body></html>"
    )


def quotation_sent(
    to: str,
    quotation_number: str,
    title: str,
    currency: str,
    total_amount: Decimal,
    valid_until,
    view_url: str,
    document: bytes,
    cc=None,
    bcc=None,
    subject: Optional[str] = None,
    custom_message: Optional[str] = None,
) -> EmailMessage:
    intro = f"<p>{escape(custom_message)}</p>" if custom_message else "<p>Please find our quotation attached.</p>"
    body = (
        f"{intro}"
        f"<p><strong>{escape(quotation_number)}</strong>: {escape(title)}<br>"
        f"Total: {_money(currency, total_amount)}<br>"
        f"Valid until: {escape(str(valid_until))}</p>"
        f"<p><a href=\"{escape(view_url)}\">View and respond online</a></p>"
        "<p>You will be asked for a verification code sent to this email address.</p>"
    )
    return EmailMessage(
        to=to,
        cc=list(cc or []),
        bcc=list(bcc or []),
        subject=subject or f"Quotation {quotation_number}: {title}",
        html_body=_wrap(f"Quotation {quotation_number}", body),
        attachments=[EmailAttachment(filename=f"{quotation_number}.pdf", content=document)],
    )


def portal_otp(to: str, quotation_number: str, code: str, expiry_minutes: int) -> EmailMessage:
    body = (
        f"<p>Your verification code for quotation {escape(quotation_number)} is:</p>"
        f"<p style=\"font-size: 24px; letter-spacing: 4px;\"><strong>{escape(code)}</strong></p>"
        f"<p>The code expires in {expiry_minutes} minutes and can be used once.</p>"
    )
    return EmailMessage(
        to=to,
        subject=f"Verification code for quotation {quotation_number}",
        html_body=_wrap("Verification code", body),
    )


def unviewed_reminder(to: str, owner_name: str, quotation_number: str, client_name: str, sent_at: datetime) -> EmailMessage:
    body = (
        f"<p>Hi {escape(owner_name)},</p>"
        f"<p>Quotation <strong>{escape(quotation_number)}</strong> sent to {escape(client_name)} "
        f"on {sent_at:%Y-%m-%d} has not been opened yet.</p>"
        "<p>Consider following up with the client directly.</p>"
    )
    return EmailMessage(
        to=to,
        subject=f"Reminder: quotation {quotation_number} has not been viewed",
        html_body=_wrap("Quotation not viewed", body),
    )


def follow_up_reminder(
    to: str,
    owner_name: str,
    quotation_number: str,
    client_name: str,
    first_viewed_at: datetime,
) -> EmailMessage:
    body = (
        f"<p>Hi {escape(owner_name)},</p>"
        f"<p>{escape(client_name)} first viewed quotation <strong>{escape(quotation_number)}</strong> "
        f"on {first_viewed_at:%Y-%m-%d} but has not responded.</p>"
    )
    return EmailMessage(
        to=to,
        subject=f"Follow up: no response on quotation {quotation_number}",
        html_body=_wrap("Awaiting client response", body),
    )


def client_response(
    to: str,
    quotation_number: str,
    client_email: str,
    decision: str,
    message: Optional[str],
) -> EmailMessage:
    note = f"<p>Message from the client:</p><blockquote>{escape(message)}</blockquote>" if message else ""
    body = (
        f"<p>{escape(client_email)} has <strong>{escape(decision.lower())}</strong> "
        f"quotation {escape(quotation_number)}.</p>{note}"
    )
    return EmailMessage(
        to=to,
        subject=f"Quotation {quotation_number} {decision.lower()} by client",
        html_body=_wrap("Client response received", body),
    )


def approval_requested(
    to: str,
    quotation_number: str,
    requester_name: str,
    discount_percentage: Decimal,
    reason: str,
    escalated: bool = False,
) -> EmailMessage:
    heading = "Escalated discount approval" if escalated else "Discount approval requested"
    body = (
        f"<p>{escape(requester_name)} requested a {Decimal(discount_percentage):.2f}% discount "
        f"on quotation {escape(quotation_number)}.</p>"
        f"<p>Reason: {escape(reason)}</p>"
    )
    return EmailMessage(
        to=to,
        subject=f"{heading}: {quotation_number}",
        html_body=_wrap(heading, body),
    )


def approval_resolved(
    to: str,
    quotation_number: str,
    decision: str,
    discount_percentage: Decimal,
    comments: Optional[str],
) -> EmailMessage:
    note = f"<p>Comments: {escape(comments)}</p>" if comments else ""
    body = (
        f"<p>Your {Decimal(discount_percentage):.2f}% discount request on quotation "
        f"{escape(quotation_number)} was <strong>{escape(decision.lower())}</strong>.</p>{note}"
    )
    return EmailMessage(
        to=to,
        subject=f"Discount request {decision.lower()}: {quotation_number}",
        html_body=_wrap("Discount request resolved", body),
    )
