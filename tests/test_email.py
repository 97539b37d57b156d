import json

import httpx
import pytest

from gritsync.core.classifier import AppError, ErrorType, classify_error
from gritsync.services.email import ResendEmailSender, render_payment_email, sender_identity

API_URL = "https://api.resend.test/emails"


def _sender(handler, api_key="re_test_key"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResendEmailSender(
        api_key=api_key,
        api_url=API_URL,
        default_from="GritSync <noreply@gritsync.com>",
        client=client,
    )


@pytest.mark.asyncio
async def test_send_posts_to_resend():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "em_123"})

    sender = _sender(handler)
    message_id = await sender.send("maria@example.com", "Payment Successful", "<p>hi</p>")

    assert message_id == "em_123"
    assert seen["url"] == API_URL
    assert seen["auth"] == "Bearer re_test_key"
    assert seen["body"] == {
        "from": "GritSync <noreply@gritsync.com>",
        "to": ["maria@example.com"],
        "subject": "Payment Successful",
        "html": "<p>hi</p>",
    }


@pytest.mark.asyncio
async def test_send_uses_explicit_sender():
    seen = {}

    def handler(request):
        seen["from"] = json.loads(request.content)["from"]
        return httpx.Response(200, json={"id": "em_1"})

    await _sender(handler).send("a@example.com", "s", "h", from_="Billing <billing@gritsync.com>")
    assert seen["from"] == "Billing <billing@gritsync.com>"


@pytest.mark.asyncio
async def test_provider_failure_raises_classifiable_error():
    sender = _sender(lambda request: httpx.Response(503, json={"message": "unavailable"}))

    with pytest.raises(httpx.HTTPStatusError) as exc:
        await sender.send("a@example.com", "s", "h")

    c = classify_error(exc.value)
    assert c.type == ErrorType.SERVER
    assert c.retryable is True


@pytest.mark.asyncio
async def test_missing_api_key():
    sender = _sender(lambda request: httpx.Response(200, json={}), api_key="")

    with pytest.raises(AppError) as exc:
        await sender.send("a@example.com", "s", "h")
    assert exc.value.type == ErrorType.SERVER


def test_render_payment_email_escapes_name():
    html = render_payment_email("<Maria>", "$267.99", "https://gritsync.com/applications/1")
    assert "&lt;Maria&gt;" in html
    assert "$267.99" in html
    assert 'href="https://gritsync.com/applications/1"' in html


def test_sender_identity():
    assert sender_identity("GritSync", "noreply@gritsync.com") == "GritSync <noreply@gritsync.com>"
    assert sender_identity("", "noreply@gritsync.com") == "noreply@gritsync.com"
