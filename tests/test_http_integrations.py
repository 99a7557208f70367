"""
HTTP collaborator tests against a local aiohttp server.
"""

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from quotedesk.core.integrations.contracts import EmailMessage
from quotedesk.core.integrations.email import HttpEmailNotifier
from quotedesk.core.integrations.http.http_client import HttpClient


def message() -> EmailMessage:
    return EmailMessage(to="buyer@acme.test", subject="Quotation QT-2025-000001: Racking", html_body="<p>hi</p>")


def flaky_app(path: str, failures: int, status: int, body):
    """App whose handler fails `failures` times with `status` before answering `body`."""
    hits = []

    async def handler(request):
        hits.append(await request.read())
        if len(hits) <= failures:
            return web.json_response({"error": "upstream"}, status=status)
        if isinstance(body, bytes):
            return web.Response(body=body, content_type="application/pdf")
        return web.json_response(body)

    app = web.Application()
    app.router.add_post(path, handler)
    return app, hits


async def test_email_is_not_resubmitted_after_server_error():
    app, hits = flaky_app("/send", failures=1, status=502, body={"id": "msg-1"})

    async with TestServer(app) as server:
        url = str(server.make_url("/send"))
        notifier = HttpEmailNotifier(
            api_url=url,
            api_key="test-key",
            sender="quotes@quotedesk.test",
            http_client=HttpClient(base_url=url, max_retries=3, retry_delay=0),
        )
        with pytest.raises(aiohttp.ClientResponseError):
            await notifier.send_email(message())
        await notifier.close()

    assert len(hits) == 1


async def test_email_returns_provider_reference():
    app, hits = flaky_app("/send", failures=0, status=200, body={"id": "msg-42"})

    async with TestServer(app) as server:
        url = str(server.make_url("/send"))
        notifier = HttpEmailNotifier(api_url=url, http_client=HttpClient(base_url=url, retry_delay=0))
        provider_ref = await notifier.send_email(message())
        await notifier.close()

    assert provider_ref == "msg-42"
    assert len(hits) == 1


async def test_idempotent_post_retries_server_errors():
    app, hits = flaky_app("/render", failures=2, status=503, body=b"%PDF-1.4 rendered")

    async with TestServer(app) as server:
        client = HttpClient(base_url=str(server.make_url("/render")), max_retries=3, retry_delay=0)
        document = await client.post_for_bytes("", json={"quotation_number": "QT-2025-000001"})
        await client.close()

    assert document == b"%PDF-1.4 rendered"
    assert len(hits) == 3


async def test_client_errors_are_not_retried():
    app, hits = flaky_app("/render", failures=5, status=422, body=b"")

    async with TestServer(app) as server:
        client = HttpClient(base_url=str(server.make_url("/render")), max_retries=3, retry_delay=0)
        with pytest.raises(aiohttp.ClientResponseError) as exc_info:
            await client.post_for_bytes("", json={})
        await client.close()

    assert exc_info.value.status == 422
    assert len(hits) == 1
