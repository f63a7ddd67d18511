import base64
import json

import httpx
import pytest

from cicadatix.errors import DispatchError
from cicadatix.notify import Attachment, MailMessage, ResendTransport


def message() -> MailMessage:
    return MailMessage(
        sender="Cicada <noreply@example.com>",
        to=["fan@example.com"],
        subject="Your Ticket for Cicada Night",
        html="<img src='cid:qrcode0'>",
        attachments=[Attachment("qrcode0.png", b"\x89PNG", "image/png",
                                content_id="qrcode0")],
    )


@pytest.mark.asyncio
async def test_resend_posts_inline_attachments():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "re_123"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        message_id = await ResendTransport(http, "re_key").send(message())

    assert message_id == "re_123"
    assert seen["auth"] == "Bearer re_key"
    [att] = seen["body"]["attachments"]
    assert att["content_id"] == "qrcode0"
    assert base64.b64decode(att["content"]) == b"\x89PNG"
    assert seen["body"]["to"] == ["fan@example.com"]


@pytest.mark.asyncio
async def test_resend_error_status_raises():
    def handler(request):
        return httpx.Response(422, json={"message": "bad from"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(DispatchError):
            await ResendTransport(http, "re_key").send(message())


@pytest.mark.asyncio
async def test_resend_unreachable_raises():
    def handler(request):
        raise httpx.ConnectError("no route", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(DispatchError):
            await ResendTransport(http, "re_key").send(message())
