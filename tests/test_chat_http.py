"""HTTP-level tests for the streaming chat endpoint."""

from __future__ import annotations

from conftest import auth_headers, count_rows, parse_sse
from godrick.db import Conversation
from godrick.providers.base import FailedEvent, TokenEvent


def test_anonymous_chat_streams_events(client, store) -> None:
    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"
    assert "x-request-id" in response.headers

    events = parse_sse(response.text)
    assert [e["type"] for e in events] == ["token", "token", "done"]
    assert "conversationId" not in events[-1]
    assert count_rows(store, Conversation) == 0


def test_authenticated_chat_returns_conversation_id(client, make_user) -> None:
    _, token = make_user()

    response = client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "hi"}]},
        headers=auth_headers(token),
    )

    events = parse_sse(response.text)
    conversation_id = events[-1]["conversationId"]

    detail = client.get(f"/api/conversations/{conversation_id}", headers=auth_headers(token))
    assert detail.status_code == 200
    conversation = detail.json()["conversation"]
    assert conversation["title"] == "hi"
    assert [(m["role"], m["content"]) for m in conversation["messages"]] == [
        ("user", "hi"),
        ("assistant", "Hello world"),
    ]


def test_conversation_id_is_reused_across_requests(client, make_user) -> None:
    _, token = make_user()
    first = parse_sse(
        client.post(
            "/api/chat",
            json={"messages": [{"role": "user", "content": "hi"}]},
            headers=auth_headers(token),
        ).text
    )
    conversation_id = first[-1]["conversationId"]

    second = parse_sse(
        client.post(
            "/api/chat",
            json={
                "messages": [
                    {"role": "user", "content": "hi"},
                    {"role": "assistant", "content": "Hello world"},
                    {"role": "user", "content": "more"},
                ],
                "conversationId": conversation_id,
            },
            headers=auth_headers(token),
        ).text
    )

    assert second[-1]["conversationId"] == conversation_id
    listing = client.get("/api/conversations", headers=auth_headers(token)).json()
    assert len(listing["conversations"]) == 1


def test_invalid_bearer_token_is_treated_as_anonymous(client, store) -> None:
    response = client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "hi"}]},
        headers=auth_headers("garbage"),
    )

    assert response.status_code == 200
    assert parse_sse(response.text)[-1]["type"] == "done"
    assert count_rows(store, Conversation) == 0


def test_empty_history_is_a_client_error(client, gateway) -> None:
    response = client.post("/api/chat", json={"messages": []})

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "E1001"
    assert error["message"] == "Messages array is required"
    assert gateway.calls == []


def test_missing_history_is_a_client_error(client, gateway) -> None:
    response = client.post("/api/chat", json={})

    assert response.status_code == 400
    assert gateway.calls == []


def test_malformed_message_is_rejected(client) -> None:
    response = client.post("/api/chat", json={"messages": [{"role": "user"}]})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "E1001"


def test_upstream_failure_is_reported_in_band(client, gateway) -> None:
    gateway.script = [TokenEvent("Hel"), FailedEvent("Provider unavailable", "E4000")]

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 200
    events = parse_sse(response.text)
    assert events == [
        {"type": "token", "content": "Hel"},
        {"type": "error", "error": "Provider unavailable"},
    ]
