from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from keyforge.core.middleware.request_id import RequestIdMiddleware, resolve_request_id


def _client():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/")
    async def root(request: Request):
        return {"request_id": getattr(request.state, "request_id", None)}

    return TestClient(app)


def test_generates_request_id_when_missing():
    resp = _client().get("/")
    assert resp.status_code == 200
    rid_header = resp.headers.get("x-request-id")
    assert rid_header
    assert rid_header == resp.json().get("request_id")


def test_echoes_provided_request_id():
    resp = _client().get("/", headers={"X-Request-Id": "test-rid-123"})
    assert resp.headers.get("x-request-id") == "test-rid-123"
    assert resp.json().get("request_id") == "test-rid-123"


def test_replaces_unsafe_request_id():
    resp = _client().get("/", headers={"X-Request-Id": "<script>alert(1)</script>"})
    rid = resp.headers.get("x-request-id")
    assert rid != "<script>alert(1)</script>"
    assert resp.json().get("request_id") == rid


def test_resolve_request_id_bounds():
    assert resolve_request_id("a" * 128) == "a" * 128
    assert resolve_request_id("a" * 129) != "a" * 129
    assert resolve_request_id(None)
