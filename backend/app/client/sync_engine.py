from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Callable, Iterable

from app.client.api_client import MessagingAPIClient, MessagingAPIError
from app.client.models import ChatMessage, ConversationSnapshot, Draft, Toast
from app.client.push import PushSubscriber
from app.client.timeline import MessageTimeline
from app.config import settings
from app.models.message import SenderRole
from app.services.realtime import NEW_MESSAGE_EVENT, admin_channel, user_channel

logger = logging.getLogger(__name__)

TOAST_SNIPPET_LENGTH = 80
SEEN_IDS_LIMIT = 1000


class SendFailedError(MessagingAPIError):
    """A send was rejected; ``draft`` holds the input to put back in the composer."""

    def __init__(self, status_code: int, detail: str, draft: Draft) -> None:
        self.draft = draft
        super().__init__(status_code, detail)


class ConversationSyncEngine:
    """Keeps a viewer's chat state in step with the server over push and poll.

    Two sources feed the same :class:`MessageTimeline`: the pub/sub
    subscription for the viewer's channel and a fixed-interval refetch. Both
    run as tasks on one event loop and merge synchronously, so a merge is
    never interleaved with another. Messages for the open conversation are
    merged and marked read; anything else becomes a toast.

    Bind one engine to the lifetime of a chat view and ``stop()`` it (or use
    ``async with``) when the view goes away; that cancels the poll timer and
    drops the push subscription.
    """

    def __init__(
        self,
        api: MessagingAPIClient,
        viewer_role: SenderRole,
        *,
        user_id: str | None = None,
        push: PushSubscriber | None = None,
        poll_interval: float | None = None,
        brand_name: str | None = None,
        on_toast: Callable[[Toast], None] | None = None,
        on_conversations_changed: Callable[[], None] | None = None,
        on_scroll_to_latest: Callable[[], None] | None = None,
        on_unread_count: Callable[[int], None] | None = None,
        seen_limit: int = SEEN_IDS_LIMIT,
    ) -> None:
        self.viewer_role = SenderRole(viewer_role)
        if self.viewer_role is SenderRole.USER and not user_id:
            raise ValueError("a user viewer needs a user_id to pick its push channel")
        self.user_id = user_id
        self._api = api
        self._push = push
        self._poll_interval = (
            poll_interval if poll_interval is not None else settings.POLL_INTERVAL_SECONDS
        )
        self._brand_name = brand_name or settings.BRAND_NAME
        self._on_toast = on_toast
        self._on_conversations_changed = on_conversations_changed
        self._on_scroll_to_latest = on_scroll_to_latest
        self._on_unread_count = on_unread_count

        self.timeline = MessageTimeline()
        self.active_conversation_id: str | None = None
        self.unread_count = 0
        # Ids already shown or toasted, oldest evicted first once seen_limit is reached.
        self._seen_ids: set[str] = set()
        self._seen_order: deque[str] = deque(maxlen=seen_limit)
        self._tasks: list[asyncio.Task] = []

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def channel(self) -> str:
        if self.viewer_role is SenderRole.ADMIN:
            return admin_channel()
        return user_channel(self.user_id)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks.append(asyncio.create_task(self._poll_loop(), name="chat-poll"))
        if self._push is not None:
            self._tasks.append(asyncio.create_task(self._push_loop(), name="chat-push"))

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> "ConversationSyncEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # ── Conversation view ─────────────────────────────────────────────────────

    async def open_conversation(self, conversation_id: str) -> ConversationSnapshot | None:
        self.active_conversation_id = conversation_id
        self.timeline = MessageTimeline()

        snapshot = await self._api.get_conversation(conversation_id)
        if self.active_conversation_id != conversation_id:
            return None  # another conversation was opened meanwhile

        self.timeline.merge_many(snapshot.messages)
        self._remember(m.id for m in snapshot.messages)
        await self._mark_read(conversation_id)
        self._scroll_to_latest()
        return snapshot

    def close_conversation(self) -> None:
        self.active_conversation_id = None
        self.timeline = MessageTimeline()

    async def send(
        self,
        content: str | None = None,
        media_type: str | None = None,
        media_url: str | None = None,
    ) -> ChatMessage:
        conversation_id = self.active_conversation_id
        if conversation_id is None:
            raise RuntimeError("no conversation is open")

        draft = Draft(content=content, media_type=media_type, media_url=media_url)
        try:
            message = await self._api.send_message(
                conversation_id, content=content, media_type=media_type, media_url=media_url
            )
        except MessagingAPIError as exc:
            raise SendFailedError(exc.status_code, exc.detail, draft) from exc

        # Our own message: never toast it when it echoes back.
        self._remember([message.id])
        if message.conversation_id == self.active_conversation_id and self.timeline.merge(message):
            self._scroll_to_latest()
        return message

    # ── Ingestion (push + poll) ───────────────────────────────────────────────

    async def handle_event(self, payload: dict) -> None:
        """Push path: one ``new-message`` event."""
        try:
            message = ChatMessage.from_payload(payload.get("message") or {})
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("push: invalid message event %r: %s", payload, exc)
            return
        await self._receive([message], payload.get("sender_name") or "User")

    async def poll_once(self) -> None:
        """Poll path: refetch the open conversation, then the inbox summary."""
        conversation_id = self.active_conversation_id
        if conversation_id is not None:
            snapshot = await self._api.get_conversation(conversation_id)
            if self.active_conversation_id == conversation_id:
                await self._receive(snapshot.messages, snapshot.user_name or "User")
            else:
                logger.debug("poll: discarding result for closed conversation %s", conversation_id)
        await self._poll_inbox()

    async def _receive(self, messages: Iterable[ChatMessage], sender_name: str) -> None:
        active_id = self.active_conversation_id
        here: list[ChatMessage] = []
        elsewhere: list[ChatMessage] = []
        for message in messages:
            if active_id is not None and message.conversation_id == active_id:
                here.append(message)
            else:
                elsewhere.append(message)

        inserted = self.timeline.merge_many(here)
        self._remember(m.id for m in inserted)
        if inserted:
            self._scroll_to_latest()
            if any(m.sender_role != self.viewer_role.value for m in inserted):
                await self._mark_read(active_id)

        for message in elsewhere:
            self._notify(message, sender_name)

    async def _poll_inbox(self) -> None:
        count = await self._api.unread_count()
        self.unread_count = count
        if self._on_unread_count is not None:
            self._on_unread_count(count)
        if count == 0:
            return

        for conversation in await self._api.list_conversations():
            if conversation.id == self.active_conversation_id:
                continue
            if conversation.unread_for(self.viewer_role.value) == 0:
                continue
            snapshot = await self._api.get_conversation(conversation.id)
            latest = next(
                (m for m in reversed(snapshot.messages) if m.sender_role != self.viewer_role.value),
                None,
            )
            if latest is not None:
                self._notify(latest, conversation.user_name or "User")

    def _notify(self, message: ChatMessage, sender_name: str) -> None:
        if message.id in self._seen_ids:
            return
        self._remember([message.id])
        if self._on_conversations_changed is not None:
            self._on_conversations_changed()
        if message.sender_role == self.viewer_role.value:
            return
        if message.sender_role == SenderRole.ADMIN.value:
            title = f"New message from {self._brand_name}"
        else:
            title = f"New message from {sender_name}"
        if self._on_toast is not None:
            self._on_toast(
                Toast(
                    title=title,
                    message=message.content[:TOAST_SNIPPET_LENGTH],
                    conversation_id=message.conversation_id,
                )
            )

    def _remember(self, message_ids: Iterable[str]) -> None:
        for message_id in message_ids:
            if message_id in self._seen_ids:
                continue
            if len(self._seen_order) == self._seen_order.maxlen:
                self._seen_ids.discard(self._seen_order[0])
            self._seen_order.append(message_id)
            self._seen_ids.add(message_id)

    async def _mark_read(self, conversation_id: str | None) -> None:
        if conversation_id is None:
            return
        try:
            await self._api.mark_read(conversation_id)
        except MessagingAPIError as exc:
            logger.warning("mark_read failed for conversation %s: %s", conversation_id, exc)

    def _scroll_to_latest(self) -> None:
        if self._on_scroll_to_latest is not None:
            self._on_scroll_to_latest()

    # ── Background loops ──────────────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except MessagingAPIError as exc:
                logger.warning("poll failed: %s", exc)
            except Exception:
                # A failed tick is logged; the loop keeps polling.
                logger.exception("poll: unexpected error, retrying in %.1fs", self._poll_interval)
            await asyncio.sleep(self._poll_interval)

    async def _push_loop(self) -> None:
        async for event, data in self._push.listen(self.channel):
            if event != NEW_MESSAGE_EVENT:
                continue
            await self.handle_event(data)
