import socket
from urllib.parse import urlsplit

import aiohttp
import pytest
from aiohttp import test_utils, web

from wasmforge.proxy import HttpProxy, WebSocketProxy, build_outbound_url


def test_outbound_url_with_trailing_slash_backend():
    assert (
        build_outbound_url("http://localhost:9000/api/", "/users", "a=1")
        == "http://localhost:9000/api/users?a=1"
    )


def test_outbound_url_without_trailing_slash_backend():
    assert (
        build_outbound_url("http://localhost:9000/api", "/users", None)
        == "http://localhost:9000/api/users"
    )


def test_outbound_url_root_backend():
    assert build_outbound_url("http://localhost:9000", "/users", None) == "http://localhost:9000/users"


@pytest.mark.parametrize("path", ["/", "/users", "/a/b/c"])
def test_outbound_url_slash_invariant(path):
    with_slash = build_outbound_url("http://localhost:9000/api/", path, None)
    without_slash = build_outbound_url("http://localhost:9000/api", path, None)
    assert with_slash == without_slash


def test_outbound_url_empty_query_kept():
    url = build_outbound_url("http://localhost:9000/api/", "/x", "")
    assert url.endswith("?")
    assert build_outbound_url("http://localhost:9000/api/", "/x", None) + "?" == url


def test_http_path_prefers_rewrite():
    backend = "http://localhost:9000/api"
    assert HttpProxy(None, backend, "/front").path() == "/front"
    assert HttpProxy(None, backend).path() == urlsplit(backend).path


def test_websocket_path_prefers_rewrite():
    backend = "ws://localhost:9000/ws"
    assert WebSocketProxy(backend, "/live").path() == "/live"
    assert WebSocketProxy(backend).path() == urlsplit(backend).path


async def _echo_http(request):
    body = await request.text()
    return web.json_response(
        {
            "path_qs": request.path_qs,
            "host": request.headers.get("Host"),
            "method": request.method,
            "body": body,
        },
        status=201,
        headers={"X-Backend": "yes"},
    )


def _backend_app():
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", _echo_http)
    return app


@pytest.mark.asyncio
async def test_http_proxy_forwards_request():
    async with test_utils.TestServer(_backend_app()) as backend:
        async with aiohttp.ClientSession() as session:
            proxy = HttpProxy(session, f"http://{backend.host}:{backend.port}/api/")
            app = proxy.register(web.Application())
            async with test_utils.TestClient(test_utils.TestServer(app)) as client:
                request_path = "/api/users?x=1"
                resp = await client.post(request_path, data="payload")
                assert resp.status == 201
                assert resp.headers["X-Backend"] == "yes"
                data = await resp.json()
    assert data["path_qs"] == request_path
    assert data["method"] == "POST"
    assert data["body"] == "payload"
    assert data["host"] == backend.host


@pytest.mark.asyncio
async def test_http_proxy_rewrite_strips_prefix():
    async with test_utils.TestServer(_backend_app()) as backend:
        backend_url = f"http://{backend.host}:{backend.port}/api"
        async with aiohttp.ClientSession() as session:
            proxy = HttpProxy(session, backend_url, "/front")
            app = proxy.register(web.Application())
            async with test_utils.TestClient(test_utils.TestServer(app)) as client:
                resp = await client.get("/front/users")
                data = await resp.json()
    assert data["path_qs"] == urlsplit(build_outbound_url(backend_url, "/users", None)).path
    assert not data["path_qs"].startswith("/front")


@pytest.mark.asyncio
async def test_http_proxy_unreachable_backend_gives_500():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    async with aiohttp.ClientSession() as session:
        proxy = HttpProxy(session, f"http://127.0.0.1:{port}/")
        app = proxy.register(web.Application())
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get("/anything")
            assert resp.status == 500


async def _echo_ws(request):
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    async for msg in ws:
        if msg.type is aiohttp.WSMsgType.TEXT:
            await ws.send_str(msg.data)
        elif msg.type is aiohttp.WSMsgType.BINARY:
            await ws.send_bytes(msg.data)
    return ws


@pytest.mark.asyncio
async def test_websocket_proxy_relays_messages():
    backend_app = web.Application()
    backend_app.router.add_get("/ws", _echo_ws)
    async with test_utils.TestServer(backend_app) as backend:
        proxy = WebSocketProxy(f"ws://{backend.host}:{backend.port}/ws")
        app = proxy.register(web.Application())
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            ws = await client.ws_connect(proxy.path())
            await ws.send_str("hello")
            assert await ws.receive_str(timeout=5) == "hello"
            await ws.send_bytes(b"\x01\x02")
            assert await ws.receive_bytes(timeout=5) == b"\x01\x02"
            await ws.close()
            assert ws.closed


@pytest.mark.asyncio
async def test_websocket_proxy_closes_when_backend_unreachable():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    proxy = WebSocketProxy(f"ws://127.0.0.1:{port}/ws")
    app = proxy.register(web.Application())
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        ws = await client.ws_connect("/ws")
        msg = await ws.receive(timeout=5)
        assert msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED)
        await ws.close()