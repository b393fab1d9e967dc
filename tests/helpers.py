from contextlib import asynccontextmanager

from aiohttp import web
from aiohttp.test_utils import TestServer


@asynccontextmanager
async def serve(app: web.Application):
    """Run an aiohttp application on a free local port."""
    server = TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


def file_app(routes: dict) -> web.Application:
    """Build an app answering GET ``path`` with ``(status, body)``."""

    def make_handler(status, body):
        async def handler(request):
            return web.Response(status=status, body=body)

        return handler

    app = web.Application()
    for path, (status, body) in routes.items():
        app.router.add_get(path, make_handler(status, body))
    return app
