"""Tests for the streamable HTTP surface and session lifecycle."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from starlette.testclient import TestClient

from mailgun_mcp.http_transport import is_initialize_request
from mailgun_mcp.server import build_http_app, build_server

PROTOCOL_VERSION = "2025-03-26"
HEADERS = {
    "Accept": "application/json, text/event-stream",
    "Content-Type": "application/json",
}

INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {},
        "clientInfo": {"name": "pytest", "version": "0.0.1"},
    },
}
INITIALIZED = {"jsonrpc": "2.0", "method": "notifications/initialized"}


def _upstream(request: httpx.Request) -> httpx.Response:
    if request.url.path.startswith("/domains/missing"):
        return httpx.Response(404, json={"message": "Domain not found"})
    return httpx.Response(200, json={"id": "<1@example.test>", "message": "Queued. Thank you."})


@pytest.fixture
def client(settings, document):
    mcp, _service = asyncio.run(
        build_server(settings, document=document, transport=httpx.MockTransport(_upstream))
    )
    app = build_http_app(mcp, settings)
    with TestClient(app) as test_client:
        yield test_client


def _session_headers(session_id: str) -> dict:
    return {**HEADERS, "mcp-session-id": session_id, "mcp-protocol-version": PROTOCOL_VERSION}


def _open_session(client: TestClient) -> str:
    response = client.post("/mcp", json=INITIALIZE, headers=HEADERS)
    assert response.status_code == 200
    session_id = response.headers["mcp-session-id"]
    initialized = client.post("/mcp", json=INITIALIZED, headers=_session_headers(session_id))
    assert initialized.status_code == 202
    return session_id


class TestHealth:
    def test_health_is_always_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["service"] == "mailgun-mcp-server"
        assert body["transport"] == "http"
        assert "timestamp" in body


class TestSessionLifecycle:
    def test_initialize_returns_session_identifier(self, client):
        response = client.post("/mcp", json=INITIALIZE, headers=HEADERS)

        assert response.status_code == 200
        assert response.headers["mcp-session-id"]
        assert response.json()["result"]["serverInfo"]["name"] == "mailgun-mcp-server"
        assert len(client.app.state.sessions) == 1

    def test_full_lifecycle(self, client):
        session_id = _open_session(client)

        listed = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
            headers=_session_headers(session_id),
        )
        assert listed.status_code == 200
        names = [tool["name"] for tool in listed.json()["result"]["tools"]]
        assert names == ["sendMessage", "get-domains-name-messages"]

        deleted = client.delete("/mcp", headers=_session_headers(session_id))
        assert deleted.status_code == 200
        assert deleted.json() == {"message": "Session terminated"}
        assert session_id not in client.app.state.sessions

        again = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 3, "method": "tools/list"},
            headers=_session_headers(session_id),
        )
        assert again.status_code == 404
        assert again.json()["error"]["code"] == -32600
        assert client.get("/mcp", headers=_session_headers(session_id)).status_code == 404
        assert client.delete("/mcp", headers=_session_headers(session_id)).status_code == 404

    def test_tool_call_through_session(self, client):
        session_id = _open_session(client)

        response = client.post(
            "/mcp",
            json={
                "jsonrpc": "2.0",
                "id": 4,
                "method": "tools/call",
                "params": {"name": "sendMessage", "arguments": {"domain": "example.com", "to": "a@b.com"}},
            },
            headers=_session_headers(session_id),
        )

        result = response.json()["result"]
        assert response.status_code == 200
        assert result["isError"] is False
        assert "Queued" in result["content"][0]["text"]

    def test_upstream_error_is_tool_result(self, client):
        session_id = _open_session(client)

        response = client.post(
            "/mcp",
            json={
                "jsonrpc": "2.0",
                "id": 5,
                "method": "tools/call",
                "params": {"name": "get-domains-name-messages", "arguments": {"name": "missing"}},
            },
            headers=_session_headers(session_id),
        )

        result = response.json()["result"]
        assert result["isError"] is True
        assert result["structuredContent"]["status"] == 404

    def test_invalid_arguments_are_jsonrpc_error(self, client):
        session_id = _open_session(client)

        response = client.post(
            "/mcp",
            json={
                "jsonrpc": "2.0",
                "id": 6,
                "method": "tools/call",
                "params": {"name": "sendMessage", "arguments": {"domain": "example.com"}},
            },
            headers=_session_headers(session_id),
        )

        error = response.json()["error"]
        assert error["code"] == -32602
        assert error["data"] == {"field": "to"}

    def test_sessions_are_independent(self, client):
        first = _open_session(client)
        second = _open_session(client)

        assert first != second
        assert client.delete("/mcp", headers=_session_headers(first)).status_code == 200

        listed = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 7, "method": "tools/list"},
            headers=_session_headers(second),
        )
        assert listed.status_code == 200
        assert client.app.state.sessions.session_ids() == [second]


class TestSessionErrors:
    def test_post_without_session_is_rejected(self, client):
        response = client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json() == {
            "jsonrpc": "2.0",
            "error": {"code": -32600, "message": "Missing mcp-session-id header. Initialize a session first."},
            "id": None,
        }

    def test_post_with_unknown_session_is_not_found(self, client):
        response = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"},
            headers=_session_headers("deadbeef"),
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == -32600

    def test_get_without_session_is_rejected(self, client):
        response = client.get("/mcp", headers={"Accept": "text/event-stream"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32600

    def test_delete_unknown_session_is_not_found(self, client):
        response = client.delete("/mcp", headers={"mcp-session-id": "deadbeef"})

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Session not found"

    def test_errors_do_not_disturb_live_sessions(self, client):
        session_id = _open_session(client)

        client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"}, headers=HEADERS)
        client.delete("/mcp", headers={"mcp-session-id": "deadbeef"})

        assert session_id in client.app.state.sessions


class TestInitializeDetection:
    def test_detects_single_initialize(self):
        assert is_initialize_request(b'{"jsonrpc": "2.0", "id": 1, "method": "initialize"}')

    def test_detects_batched_initialize(self):
        assert is_initialize_request(b'[{"jsonrpc": "2.0", "id": 1, "method": "initialize"}]')

    def test_other_methods_and_garbage(self):
        assert not is_initialize_request(b'{"jsonrpc": "2.0", "id": 1, "method": "tools/list"}')
        assert not is_initialize_request(b"not json")


class TestRejectedInitialize:
    def test_unacceptable_accept_header_leaves_no_session(self, client):
        for _ in range(3):
            response = client.post(
                "/mcp",
                json=INITIALIZE,
                headers={"Accept": "text/plain", "Content-Type": "application/json"},
            )
            assert response.status_code == 406

        assert len(client.app.state.sessions) == 0

    def test_wrong_content_type_leaves_no_session(self, client):
        response = client.post(
            "/mcp",
            content=json.dumps(INITIALIZE),
            headers={"Accept": "application/json, text/event-stream", "Content-Type": "text/plain"},
        )

        assert response.status_code == 415
        assert len(client.app.state.sessions) == 0

    def test_rejected_initialize_does_not_touch_live_sessions(self, client):
        session_id = _open_session(client)

        client.post("/mcp", json=INITIALIZE, headers={"Accept": "text/plain", "Content-Type": "application/json"})

        assert client.app.state.sessions.session_ids() == [session_id]


def _events(response) -> list:
    return [json.loads(line[len("data:"):]) for line in response.text.splitlines() if line.startswith("data:")]


@pytest.fixture
def sse_client(settings, document):
    settings = settings.model_copy(update={"mcp_json_response": False})
    mcp, _service = asyncio.run(
        build_server(settings, document=document, transport=httpx.MockTransport(_upstream))
    )
    with TestClient(build_http_app(mcp, settings)) as test_client:
        yield test_client


class TestEventStreamReplies:
    def test_initialize_reply_is_an_event(self, sse_client):
        response = sse_client.post("/mcp", json=INITIALIZE, headers=HEADERS)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["mcp-session-id"]
        [event] = _events(response)
        assert event["id"] == 1
        assert event["result"]["serverInfo"]["name"] == "mailgun-mcp-server"

    def test_tool_call_reply_is_an_event(self, sse_client):
        session_id = _open_session(sse_client)

        response = sse_client.post(
            "/mcp",
            json={
                "jsonrpc": "2.0",
                "id": 9,
                "method": "tools/call",
                "params": {"name": "sendMessage", "arguments": {"domain": "example.com", "to": "a@b.com"}},
            },
            headers=_session_headers(session_id),
        )

        [event] = _events(response)
        assert event["id"] == 9
        assert event["result"]["isError"] is False
