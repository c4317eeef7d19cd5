"""Proxy HTTP requests and WebSockets from the dev server to a backend."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit

import aiohttp
from aiohttp import web

log = logging.getLogger(__name__)

# The client decodes the backend body, so its framing headers no longer apply.
_SKIPPED_RESPONSE_HEADERS = {"content-length", "content-encoding", "transfer-encoding"}
_SKIPPED_REQUEST_HEADERS = {"host", "transfer-encoding"}


def _backend_path(backend: str) -> str:
    return urlsplit(backend).path or "/"


def build_outbound_url(backend: str, path: str, query: str | None) -> str:
    """Build the backend URL for a request whose listening prefix was stripped to ``path``."""
    parts = urlsplit(backend)
    backend_path = parts.path or "/"
    rest = path.lstrip("/") if backend_path.endswith("/") else path
    url = f"{parts.scheme}://{parts.netloc}/{backend_path.lstrip('/')}{rest}"
    if query is not None:
        url += f"?{query}"
    return url


class HttpProxy:
    """Forwards every request under a path prefix to an HTTP backend."""

    def __init__(
        self, session: aiohttp.ClientSession, backend: str, rewrite: str | None = None
    ) -> None:
        self.session = session
        self.backend = backend
        self.rewrite = rewrite

    def path(self) -> str:
        """The path this proxy listens at."""
        return self.rewrite if self.rewrite is not None else _backend_path(self.backend)

    def register(self, app: web.Application) -> web.Application:
        """Add this proxy's routes to ``app``."""
        prefix = self.path().rstrip("/")
        if prefix:
            app.router.add_route("*", prefix, self.handle)
        app.router.add_route("*", prefix + "/{tail:.*}", self.handle)
        return app

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """Proxy ``request`` to the backend and stream the answer back."""
        prefix = self.path().rstrip("/")
        stripped = request.rel_url.raw_path[len(prefix):] or "/"
        query: str | None = request.rel_url.raw_query_string
        if not query and "?" not in request.raw_path:
            query = None

        headers = [
            (key, value)
            for key, value in request.headers.items()
            if key.lower() not in _SKIPPED_REQUEST_HEADERS
        ]
        host = urlsplit(self.backend).hostname
        if host:
            headers.append(("Host", host))

        response: web.StreamResponse | None = None
        try:
            url = build_outbound_url(self.backend, stripped, query)
            body = await request.read()
            async with self.session.request(
                request.method, url, headers=headers, data=body or None
            ) as backend_res:
                response = web.StreamResponse(
                    status=backend_res.status, reason=backend_res.reason
                )
                for key, value in backend_res.headers.items():
                    if key.lower() not in _SKIPPED_RESPONSE_HEADERS:
                        response.headers.add(key, value)
                await response.prepare(request)
                async for chunk in backend_res.content.iter_any():
                    await response.write(chunk)
                await response.write_eof()
                return response
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, ConnectionError) as err:
            log.error("error proxying request to proxy backend: %s", err)
            if response is not None and response.prepared:
                return response
            return web.Response(status=500)


async def _pump(source, sink, label: str) -> None:
    try:
        while True:
            msg = await source.receive()
            if msg.type is aiohttp.WSMsgType.TEXT:
                await sink.send_str(msg.data)
            elif msg.type is aiohttp.WSMsgType.BINARY:
                await sink.send_bytes(msg.data)
            elif msg.type is aiohttp.WSMsgType.PING:
                await sink.ping(msg.data)
            elif msg.type is aiohttp.WSMsgType.PONG:
                await sink.pong(msg.data)
            elif msg.type is aiohttp.WSMsgType.CLOSE:
                code = msg.data if isinstance(msg.data, int) and msg.data not in (1005, 1006) else 1000
                await sink.close(code=code, message=(msg.extra or "").encode("utf-8"))
                return
            else:
                return
    except (aiohttp.ClientError, ConnectionError, RuntimeError) as err:
        log.error("error forwarding %s WebSocket message: %s", label, err)


class WebSocketProxy:
    """Relays WebSocket messages between a client and a backend."""

    def __init__(self, backend: str, rewrite: str | None = None) -> None:
        self.backend = backend
        self.rewrite = rewrite

    def path(self) -> str:
        """The path this proxy listens at."""
        return self.rewrite if self.rewrite is not None else _backend_path(self.backend)

    def register(self, app: web.Application) -> web.Application:
        """Add this proxy's route to ``app``."""
        app.router.add_get(self.path(), self.handle)
        return app

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        """Upgrade ``request`` and relay messages until either side stops."""
        log.debug("new websocket connection")
        frontend = web.WebSocketResponse(autoping=False)
        await frontend.prepare(request)

        async with aiohttp.ClientSession() as session:
            try:
                backend = await session.ws_connect(self.backend, autoping=False)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as err:
                log.error(
                    "error establishing WebSocket connection to backend %s for proxy: %s",
                    self.backend,
                    err,
                )
                await frontend.close()
                return frontend
            try:
                tasks = {
                    asyncio.create_task(_pump(frontend, backend, "frontend")),
                    asyncio.create_task(_pump(backend, frontend, "backend")),
                }
                _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
            finally:
                await backend.close()

        if not frontend.closed:
            await frontend.close()
        log.debug("websocket connection closed")
        return frontend