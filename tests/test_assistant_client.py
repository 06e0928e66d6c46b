import json

import httpx
import pytest

from threadbot.errors import BackendError, InvalidSessionId
from threadbot.providers.assistant import OpenAIAssistantClient

THREAD = "thread_abc123XYZ789"


def _client(handler, assistant_id: str | None = "asst_1") -> OpenAIAssistantClient:
    return OpenAIAssistantClient(
        api_key="sk-test",
        assistant_id=assistant_id,
        api_base="https://api.test/v1/",
        transport=httpx.MockTransport(handler),
    )


async def test_create_thread_sends_beta_header_and_validates_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": THREAD, "object": "thread"})

    client = _client(handler)
    assert await client.create_thread() == THREAD
    await client.aclose()

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1/threads"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert request.headers["OpenAI-Beta"] == "assistants=v2"


async def test_create_thread_rejects_malformed_id() -> None:
    client = _client(lambda request: httpx.Response(200, json={"id": "[object Object]"}))

    with pytest.raises(InvalidSessionId):
        await client.create_thread()


async def test_turn_endpoints_map_to_thread_and_run_calls() -> None:
    seen: list[tuple[str, str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        seen.append((request.method, request.url.path, body))
        path = request.url.path
        if path.endswith("/messages") and request.method == "POST":
            return httpx.Response(200, json={"id": "msg_user"})
        if path.endswith("/runs"):
            return httpx.Response(200, json={"id": "run_1", "thread_id": THREAD, "status": "queued"})
        if "/runs/" in path:
            return httpx.Response(
                200,
                json={"id": "run_1", "status": "failed", "last_error": {"code": "server_error", "message": "boom"}},
            )
        assert request.url.params["order"] == "desc"
        assert request.url.params["limit"] == "1"
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "id": "msg_reply",
                        "role": "assistant",
                        "content": [
                            {"type": "text", "text": {"value": "Olá!", "annotations": []}},
                            {"type": "image_file", "image_file": {"file_id": "file_1"}},
                            {"type": "text", "text": {"value": "Tudo bem?", "annotations": []}},
                        ],
                    }
                ]
            },
        )

    client = _client(handler)
    assert await client.add_message(THREAD, "Hello") == "msg_user"
    run = await client.create_run(THREAD)
    polled = await client.retrieve_run(THREAD, run.id)
    messages = await client.list_messages(THREAD, limit=1)
    await client.aclose()

    assert seen[0] == ("POST", f"/v1/threads/{THREAD}/messages", {"role": "user", "content": "Hello"})
    assert seen[1] == ("POST", f"/v1/threads/{THREAD}/runs", {"assistant_id": "asst_1"})
    assert seen[2][:2] == ("GET", f"/v1/threads/{THREAD}/runs/run_1")
    assert run.status == "queued"
    assert polled.status == "failed"
    assert polled.last_error == "boom"
    assert polled.thread_id == THREAD
    assert len(messages) == 1
    assert messages[0].role == "assistant"
    assert messages[0].text == "Olá!\nTudo bem?"


async def test_http_errors_become_backend_errors() -> None:
    client = _client(
        lambda request: httpx.Response(404, json={"error": {"message": "No thread found", "type": "invalid_request_error"}})
    )

    with pytest.raises(BackendError) as exc:
        await client.add_message(THREAD, "Hello")

    assert exc.value.status_code == 404
    assert "No thread found" in str(exc.value)


async def test_transport_errors_become_backend_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(BackendError):
        await client.retrieve_run(THREAD, "run_1")


async def test_create_run_requires_assistant_id(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_ASSISTANT_ID", raising=False)
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = _client(handler, assistant_id=None)
    assert client.is_configured() is False
    with pytest.raises(BackendError):
        await client.create_run(THREAD)
    assert calls == []


def test_credentials_fall_back_to_environment(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
    monkeypatch.setenv("OPENAI_ASSISTANT_ID", "asst_env")

    client = OpenAIAssistantClient()

    assert client.api_key == "sk-from-env"
    assert client.assistant_id == "asst_env"
    assert client.is_configured() is True
