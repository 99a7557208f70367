"""
End-to-end tests for the internal quotation routes and the public client portal.
"""

from decimal import Decimal

import pytest

from conftest import auth_headers, quotation_payload
from quotedesk.core.exceptions import SecurityError


async def create_and_send(test_client, seed, clock):
    headers = auth_headers(seed.sales_rep)
    payload = quotation_payload(seed.client.id).model_dump(mode="json")
    created = await test_client.post("/api/v1/quotations", json=payload, headers=headers)
    assert created.status_code == 201
    quotation_id = created.json()["id"]

    clock.advance(minutes=5)
    sent = await test_client.post(f"/api/v1/quotations/{quotation_id}/send", json={}, headers=headers)
    assert sent.status_code == 200
    return sent.json()


def portal_base(send_body: dict) -> str:
    link = send_body["access_link"]
    return f"/api/v1/client-portal/quotations/{send_body['quotation_id']}/{link['token']}"


async def verified_session(test_client, base, notifier) -> str:
    requested = await test_client.post(f"{base}/request-otp", json={"email": "buyer@acme.test"})
    assert requested.status_code == 200
    verified = await test_client.post(
        f"{base}/verify-otp", json={"email": "buyer@acme.test", "code": notifier.last_otp()}
    )
    assert verified.status_code == 200
    return verified.json()["session_token"]


async def test_create_quotation_computes_totals(test_client, seed):
    payload = quotation_payload(seed.client.id).model_dump(mode="json")

    response = await test_client.post("/api/v1/quotations", json=payload, headers=auth_headers(seed.sales_rep))

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "DRAFT"
    assert body["quotation_number"].startswith("QT-2025-")
    assert Decimal(body["subtotal"]) == Decimal("53100")
    assert Decimal(body["total_amount"]) == Decimal("62658")


async def test_internal_routes_require_a_bearer_token(test_client, seed):
    payload = quotation_payload(seed.client.id).model_dump(mode="json")

    missing = await test_client.post("/api/v1/quotations", json=payload)
    garbage = await test_client.post(
        "/api/v1/quotations", json=payload, headers={"Authorization": "Bearer not-a-token"}
    )

    assert missing.status_code in (401, 403)
    assert garbage.status_code == 401


async def test_full_portal_journey(test_client, seed, notifier, renderer, clock):
    send_body = await create_and_send(test_client, seed, clock)
    base = portal_base(send_body)
    assert send_body["status"] == "SENT"
    assert send_body["access_link"]["url"].endswith(send_body["access_link"]["token"])

    validated = await test_client.get(f"{base}/validate")
    assert validated.status_code == 200
    assert validated.json()["quotation_number"] == send_body["quotation_number"]
    assert "buyer@acme.test" not in validated.json()["client_email_hint"]

    clock.advance(minutes=10)
    session_token = await verified_session(test_client, base, notifier)
    session_headers = {"X-Portal-Session": session_token}

    viewed = await test_client.get(base, headers=session_headers)
    assert viewed.status_code == 200
    assert viewed.json()["status"] == "VIEWED"
    assert viewed.json()["can_respond"] is True
    assert len(viewed.json()["line_items"]) == 2

    download = await test_client.get(f"{base}/download", headers=session_headers)
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/pdf"
    assert send_body["quotation_number"] in download.headers["content-disposition"]
    assert download.content.startswith(b"%PDF")

    clock.advance(minutes=1)
    responded = await test_client.post(
        f"{base}/respond", json={"decision": "ACCEPTED", "message": "Go ahead"}, headers=session_headers
    )
    assert responded.status_code == 200
    assert responded.json()["status"] == "ACCEPTED"

    again = await test_client.post(f"{base}/respond", json={"decision": "REJECTED"}, headers=session_headers)
    assert again.status_code == 400

    history = await test_client.get(
        f"/api/v1/quotations/{send_body['quotation_id']}/history", headers=auth_headers(seed.sales_rep)
    )
    assert [h["new_status"] for h in history.json()] == ["DRAFT", "SENT", "VIEWED", "ACCEPTED"]


async def test_view_requires_a_verified_session(test_client, seed, clock):
    base = portal_base(await create_and_send(test_client, seed, clock))

    missing = await test_client.get(base)
    forged = await test_client.get(base, headers={"X-Portal-Session": "forged"})

    assert missing.status_code == 401
    assert missing.json()["error"]["message"] == SecurityError.SESSION_MESSAGE
    assert forged.status_code == 401


async def test_session_expires(test_client, seed, notifier, clock):
    base = portal_base(await create_and_send(test_client, seed, clock))
    session_token = await verified_session(test_client, base, notifier)

    clock.advance(minutes=31)
    response = await test_client.get(base, headers={"X-Portal-Session": session_token})

    assert response.status_code == 401


async def test_unknown_token_is_not_found(test_client, seed, clock):
    send_body = await create_and_send(test_client, seed, clock)
    base = f"/api/v1/client-portal/quotations/{send_body['quotation_id']}/{'x' * 43}"

    response = await test_client.get(f"{base}/validate")

    assert response.status_code == 404
    assert response.json() == {"error": {"message": SecurityError.LINK_MESSAGE}}


async def test_otp_request_for_other_email_is_silent(test_client, seed, notifier, clock):
    base = portal_base(await create_and_send(test_client, seed, clock))
    sent_before = len(notifier.sent)

    response = await test_client.post(f"{base}/request-otp", json={"email": "intruder@evil.test"})

    assert response.status_code == 200
    assert len(notifier.sent) == sent_before


async def test_wrong_code_is_rejected(test_client, seed, notifier, clock):
    base = portal_base(await create_and_send(test_client, seed, clock))
    await test_client.post(f"{base}/request-otp", json={"email": "buyer@acme.test"})
    code = notifier.last_otp()
    wrong = "1" * 6 if code != "1" * 6 else "2" * 6

    response = await test_client.post(f"{base}/verify-otp", json={"email": "buyer@acme.test", "code": wrong})

    assert response.status_code == 401
    assert response.json()["error"]["message"] == SecurityError.OTP_MESSAGE


async def test_resend_invalidates_previous_link(test_client, seed, clock):
    send_body = await create_and_send(test_client, seed, clock)
    old_base = portal_base(send_body)

    clock.advance(minutes=5)
    resent = await test_client.post(
        f"/api/v1/quotations/{send_body['quotation_id']}/resend", json={}, headers=auth_headers(seed.sales_rep)
    )

    assert resent.status_code == 200
    assert resent.json()["is_resend"] is True
    assert (await test_client.get(f"{old_base}/validate")).status_code == 404
    assert (await test_client.get(f"{portal_base(resent.json())}/validate")).status_code == 200

    links = await test_client.get(
        f"/api/v1/quotations/{send_body['quotation_id']}/access-links", headers=auth_headers(seed.sales_rep)
    )
    assert sorted(link["is_active"] for link in links.json()) == [False, True]
    assert all(send_body["access_link"]["token"] not in link["masked_token"] for link in links.json())


async def test_page_view_tracking(test_client, seed, clock):
    base = portal_base(await create_and_send(test_client, seed, clock))

    started = await test_client.post(f"{base}/start-view", json={}, headers={"User-Agent": "pytest-browser"})
    assert started.status_code == 200

    clock.advance(seconds=42)
    ended = await test_client.post(f"{base}/end-view", json={"page_view_id": started.json()["page_view_id"]})

    assert ended.status_code == 200
    assert ended.json()["duration_seconds"] == 42


@pytest.mark.parametrize("discount, expected_status", [("5", 201), ("12", 201)])
async def test_discount_approval_over_http(test_client, seed, discount, expected_status):
    payload = quotation_payload(seed.client.id, discount=discount, approval_reason="Strategic account").model_dump(
        mode="json"
    )

    created = await test_client.post("/api/v1/quotations", json=payload, headers=auth_headers(seed.sales_rep))
    assert created.status_code == expected_status
    body = created.json()

    if discount == "5":
        assert body["is_pending_approval"] is False
        return

    assert body["is_pending_approval"] is True
    approval_id = body["pending_approval_id"]

    pending = await test_client.get("/api/v1/discount-approvals/pending", headers=auth_headers(seed.manager))
    assert [a["id"] for a in pending.json()] == [approval_id]

    locked = await test_client.post(
        f"/api/v1/quotations/{body['id']}/send", json={}, headers=auth_headers(seed.sales_rep)
    )
    assert locked.status_code == 409

    approved = await test_client.post(
        f"/api/v1/discount-approvals/{approval_id}/approve",
        json={"comments": "Fine for this quarter"},
        headers=auth_headers(seed.manager),
    )
    assert approved.status_code == 200

    quotation = await test_client.get(f"/api/v1/quotations/{body['id']}", headers=auth_headers(seed.sales_rep))
    assert quotation.json()["is_pending_approval"] is False
    assert Decimal(quotation.json()["discount_percentage"]) == Decimal("12")
