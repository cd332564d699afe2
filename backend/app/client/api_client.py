from __future__ import annotations

import logging

import httpx

from app.client.models import ChatMessage, ConversationSnapshot

logger = logging.getLogger(__name__)


class MessagingAPIError(Exception):
    """Non-2xx response, or the request never reached the server (status_code 0)."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{status_code}: {detail}")


class MessagingAPIClient:
    """Async client for the messaging HTTP API, as used by a chat view."""

    def __init__(
        self,
        base_url: str,
        *,
        user_id: str | None = None,
        admin_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers: dict[str, str] = {}
        if user_id:
            headers["X-User-Id"] = user_id
        if admin_key:
            headers["X-Admin-Key"] = admin_key
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "MessagingAPIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise MessagingAPIError(0, str(exc)) from exc

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            raise MessagingAPIError(response.status_code, str(detail))
        try:
            return response.json()
        except ValueError as exc:
            raise MessagingAPIError(response.status_code, "invalid JSON body") from exc

    async def open_conversation(self) -> ConversationSnapshot:
        return ConversationSnapshot.from_payload(await self._request("POST", "/conversations"))

    async def list_conversations(self) -> list[ConversationSnapshot]:
        data = await self._request("GET", "/conversations")
        return [ConversationSnapshot.from_payload(c) for c in data.get("conversations", [])]

    async def get_conversation(self, conversation_id: str) -> ConversationSnapshot:
        return ConversationSnapshot.from_payload(
            await self._request("GET", f"/conversations/{conversation_id}")
        )

    async def send_message(
        self,
        conversation_id: str,
        content: str | None = None,
        media_type: str | None = None,
        media_url: str | None = None,
    ) -> ChatMessage:
        body = {
            "conversation_id": conversation_id,
            "content": content,
            "media_type": media_type,
            "media_url": media_url,
        }
        return ChatMessage.from_payload(await self._request("POST", "/messages", json=body))

    async def mark_read(self, conversation_id: str) -> int:
        data = await self._request(
            "PATCH", "/messages/read", json={"conversation_id": conversation_id}
        )
        return int(data.get("marked", 0))

    async def unread_count(self) -> int:
        data = await self._request("GET", "/notifications/unread-count")
        return int(data.get("unread_count", 0))
