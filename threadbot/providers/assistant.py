"""OpenAI Assistants (threads/runs) client over httpx."""

from __future__ import annotations

import os
from typing import Any

import httpx
from loguru import logger

from threadbot.errors import BackendError
from threadbot.providers.base import AssistantBackend, RunInfo, ThreadMessage
from threadbot.session.store import parse_session_id


class OpenAIAssistantClient(AssistantBackend):
    """
    Assistant backend speaking the OpenAI Assistants v2 REST API.

    Threads are the per-user sessions; runs execute the configured assistant
    against a thread.
    """

    def __init__(
        self,
        api_key: str | None = None,
        assistant_id: str | None = None,
        api_base: str = "https://api.openai.com/v1",
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        self.assistant_id = assistant_id or os.environ.get("OPENAI_ASSISTANT_ID", "")
        self.api_base = api_base.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def is_configured(self) -> bool:
        return bool(self.api_key and self.assistant_id)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_base,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "OpenAI-Beta": "assistants=v2",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout_s,
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        client = self._get_client()
        try:
            response = await client.request(method, path, json=json_body, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = self._error_detail(e.response)
            raise BackendError(
                f"{method} {path} failed with {e.response.status_code}: {detail}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {path} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(f"{method} {path} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise BackendError(f"{method} {path} returned unexpected payload")
        return data

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200]
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            return str(error.get("message") or error.get("code") or "unknown error")
        return str(payload)[:200]

    @staticmethod
    def _run_from_payload(data: dict[str, Any], thread_id: str) -> RunInfo:
        last_error = data.get("last_error")
        if isinstance(last_error, dict):
            last_error = last_error.get("message") or last_error.get("code")
        run_id = str(data.get("id") or "")
        if not run_id:
            raise BackendError("Run payload has no id")
        return RunInfo(
            id=run_id,
            thread_id=str(data.get("thread_id") or thread_id),
            status=str(data.get("status") or "").lower(),
            last_error=str(last_error) if last_error else None,
        )

    @staticmethod
    def _message_from_payload(data: dict[str, Any]) -> ThreadMessage:
        parts: list[str] = []
        for block in data.get("content") or []:
            if not isinstance(block, dict) or block.get("type") != "text":
                continue
            text = block.get("text")
            if isinstance(text, dict):
                text = text.get("value")
            if isinstance(text, str) and text:
                parts.append(text)
        return ThreadMessage(
            id=str(data.get("id") or ""),
            role=str(data.get("role") or ""),
            text="\n".join(parts),
            raw=data,
        )

    async def create_thread(self) -> str:
        data = await self._request("POST", "/threads", json_body={})
        thread_id = parse_session_id(data)
        logger.debug(f"Created thread {thread_id}")
        return thread_id

    async def add_message(self, thread_id: str, text: str) -> str:
        data = await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            json_body={"role": "user", "content": text},
        )
        return str(data.get("id") or "")

    async def create_run(self, thread_id: str) -> RunInfo:
        if not self.assistant_id:
            raise BackendError("No assistant id configured")
        data = await self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            json_body={"assistant_id": self.assistant_id},
        )
        return self._run_from_payload(data, thread_id)

    async def retrieve_run(self, thread_id: str, run_id: str) -> RunInfo:
        data = await self._request("GET", f"/threads/{thread_id}/runs/{run_id}")
        return self._run_from_payload(data, thread_id)

    async def list_messages(self, thread_id: str, limit: int = 1) -> list[ThreadMessage]:
        data = await self._request(
            "GET",
            f"/threads/{thread_id}/messages",
            params={"limit": max(1, min(100, int(limit))), "order": "desc"},
        )
        rows = data.get("data") or []
        return [self._message_from_payload(row) for row in rows if isinstance(row, dict)]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
