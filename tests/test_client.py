import pytest
from aiohttp import web

from filemailer.client import FilemailerClient, ServiceError

from helpers import serve


def service_app(status=200, body=None, text=None):
    async def send(request):
        payload = await request.json()
        send.received.append(payload)
        if text is not None:
            return web.Response(status=status, text=text)
        return web.json_response(body or {"ok": True, "stage": "sent"}, status=status)

    send.received = []

    async def health(request):
        return web.Response(text="ok")

    app = web.Application()
    app.router.add_post("/send", send)
    app.router.add_get("/health", health)
    return app, send.received


@pytest.mark.asyncio
async def test_send_posts_payload():
    app, received = service_app()
    async with serve(app) as server:
        client = FilemailerClient(str(server.make_url("/")))
        result = await client.send("k" * 64, "https://h/r.pdf")

    assert result == {"ok": True, "stage": "sent"}
    assert received == [{"api_key": "k" * 64, "file_url": "https://h/r.pdf"}]


@pytest.mark.asyncio
async def test_send_raises_service_error_with_status_and_message():
    body = {"ok": False, "stage": "download_bad_status", "error": "remote_error", "message": "download bad status 404"}
    app, _ = service_app(status=502, body=body)
    async with serve(app) as server:
        client = FilemailerClient(str(server.make_url("/")))
        with pytest.raises(ServiceError) as excinfo:
            await client.send("k" * 64, "https://h/missing")

    assert excinfo.value.status == 502
    assert excinfo.value.message == "download bad status 404"
    assert excinfo.value.stage == "download_bad_status"


@pytest.mark.asyncio
async def test_send_handles_plain_text_errors():
    app, _ = service_app(status=500, text="boom")
    async with serve(app) as server:
        client = FilemailerClient(str(server.make_url("/")))
        with pytest.raises(ServiceError) as excinfo:
            await client.send("k" * 64, "https://h/r")
    assert excinfo.value.status == 500
    assert excinfo.value.message == "boom"


@pytest.mark.asyncio
async def test_unreachable_service():
    app, _ = service_app()
    async with serve(app) as server:
        url = str(server.make_url("/"))
    client = FilemailerClient(url)

    with pytest.raises(ServiceError) as excinfo:
        await client.send("k" * 64, "https://h/r")
    assert excinfo.value.status is None
    assert await client.health() is False


@pytest.mark.asyncio
async def test_health():
    app, _ = service_app()
    async with serve(app) as server:
        assert await FilemailerClient(str(server.make_url("/"))).health() is True
