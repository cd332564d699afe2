"""Tests for POST /messages and PATCH /messages/read."""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock

from app.main import app
from app.models.message import Message
from app.services.errors import DeliveryWarning
from app.services.realtime import get_publisher

ADMIN_KEY = "test-admin-key"


def _as_user(user) -> dict:
    return {"X-User-Id": user.id}


def _as_admin() -> dict:
    return {"X-Admin-Key": ADMIN_KEY}


def _open(client, user) -> str:
    resp = client.post("/conversations", headers=_as_user(user))
    assert resp.status_code == 200
    return resp.json()["id"]


# ---------------------------------------------------------------------------
# Auth guard
# ---------------------------------------------------------------------------


def test_send_without_identity_returns_401(client):
    resp = client.post("/messages", json={"conversation_id": str(uuid.uuid4()), "content": "hi"})
    assert resp.status_code == 401


def test_wrong_admin_key_returns_401(client):
    resp = client.post(
        "/messages",
        json={"conversation_id": str(uuid.uuid4()), "content": "hi"},
        headers={"X-Admin-Key": "nope"},
    )
    assert resp.status_code == 401


def test_user_cannot_post_into_someone_elses_conversation(client, make_user):
    owner, intruder = make_user(), make_user()
    conv_id = _open(client, owner)

    resp = client.post(
        "/messages",
        json={"conversation_id": conv_id, "content": "hi"},
        headers=_as_user(intruder),
    )

    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------


def test_user_send_notifies_admin_inbox(client, make_user, publisher, email_task):
    user = make_user(name="Alice")
    conv_id = _open(client, user)

    resp = client.post(
        "/messages",
        json={"conversation_id": conv_id, "content": "Hi"},
        headers=_as_user(user),
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["content"] == "Hi"
    assert data["sender_role"] == "user"
    assert data["sender_id"] == user.id
    assert data["read_at"] is None

    channel, event, payload = publisher.events[-1]
    assert channel == "admin-messages"
    assert event == "new-message"
    assert payload["sender_name"] == "Alice"
    assert payload["message"]["id"] == data["id"]

    email_task.delay.assert_called_once_with(
        "shop-admin@example.com", "Alice", "Hi", conv_id, True, None
    )


def test_admin_send_notifies_customer_channel(client, make_user, publisher, email_task):
    user = make_user(name="Bob")
    conv_id = _open(client, user)

    resp = client.post(
        "/messages",
        json={"conversation_id": conv_id, "content": "Hello!"},
        headers=_as_admin(),
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["sender_role"] == "admin"
    assert data["sender_id"] is None

    channel, _, payload = publisher.events[-1]
    assert channel == f"user-{user.id}-messages"
    assert payload["sender_name"] == "Admin"

    email_task.delay.assert_called_once_with(user.email, "Admin", "Hello!", conv_id, False, "Bob")


def test_user_without_name_is_reported_as_user(client, make_user, publisher):
    user = make_user(name=None)
    conv_id = _open(client, user)

    client.post("/messages", json={"conversation_id": conv_id, "content": "hey"}, headers=_as_user(user))

    assert publisher.events[-1][2]["sender_name"] == "User"


def test_media_only_send(client, make_user):
    user = make_user()
    conv_id = _open(client, user)

    resp = client.post(
        "/messages",
        json={
            "conversation_id": conv_id,
            "media_type": "video",
            "media_url": "data:video/mp4;base64,AAAA",
        },
        headers=_as_user(user),
    )

    assert resp.status_code == 200
    assert resp.json()["content"] == "🎥 Video"
    assert resp.json()["media_url"] == "data:video/mp4;base64,AAAA"


def test_publish_failure_does_not_fail_send(client, make_user, db_session):
    failing = MagicMock()
    failing.publish.side_effect = DeliveryWarning("redis down")
    app.dependency_overrides[get_publisher] = lambda: failing

    user = make_user()
    conv_id = _open(client, user)
    resp = client.post(
        "/messages", json={"conversation_id": conv_id, "content": "still stored"}, headers=_as_user(user)
    )

    assert resp.status_code == 200
    assert db_session.query(Message).filter(Message.id == resp.json()["id"]).count() == 1


def test_email_enqueue_failure_does_not_fail_send(client, make_user, email_task):
    email_task.delay.side_effect = ConnectionError("broker unreachable")
    user = make_user()
    conv_id = _open(client, user)

    resp = client.post(
        "/messages", json={"conversation_id": conv_id, "content": "hello"}, headers=_as_user(user)
    )

    assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_empty_content_without_media_returns_400(client, make_user):
    user = make_user()
    conv_id = _open(client, user)
    resp = client.post("/messages", json={"conversation_id": conv_id, "content": ""}, headers=_as_user(user))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Message content or media is required"


def test_media_url_without_type_returns_400(client, make_user):
    user = make_user()
    conv_id = _open(client, user)
    resp = client.post(
        "/messages",
        json={"conversation_id": conv_id, "media_url": "data:image/png;base64,AA"},
        headers=_as_user(user),
    )
    assert resp.status_code == 400


def test_oversized_content_returns_400(client, make_user):
    user = make_user()
    conv_id = _open(client, user)
    resp = client.post(
        "/messages", json={"conversation_id": conv_id, "content": "a" * 5001}, headers=_as_user(user)
    )
    assert resp.status_code == 400


def test_missing_conversation_id_returns_400(client, make_user):
    resp = client.post("/messages", json={"content": "hi"}, headers=_as_user(make_user()))
    assert resp.status_code == 400


def test_bad_conversation_id_format_returns_400(client, make_user):
    resp = client.post(
        "/messages", json={"conversation_id": "abc", "content": "hi"}, headers=_as_user(make_user())
    )
    assert resp.status_code == 400


def test_unknown_conversation_returns_404(client, make_user):
    resp = client.post(
        "/messages",
        json={"conversation_id": str(uuid.uuid4()), "content": "hi"},
        headers=_as_user(make_user()),
    )
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


def test_eleventh_message_in_a_minute_is_rejected(client, make_user, clock):
    user = make_user()
    conv_id = _open(client, user)
    body = {"conversation_id": conv_id, "content": "spam"}

    for _ in range(10):
        assert client.post("/messages", json=body, headers=_as_user(user)).status_code == 200

    resp = client.post("/messages", json=body, headers=_as_user(user))
    assert resp.status_code == 429
    assert "Retry-After" in resp.headers

    clock.advance(61)
    assert client.post("/messages", json=body, headers=_as_user(user)).status_code == 200


def test_rejected_send_is_not_stored(client, make_user, db_session):
    user = make_user()
    conv_id = _open(client, user)
    body = {"conversation_id": conv_id, "content": "x"}
    for _ in range(11):
        client.post("/messages", json=body, headers=_as_user(user))

    assert db_session.query(Message).filter(Message.conversation_id == conv_id).count() == 10


def test_admin_is_not_rate_limited(client, make_user):
    conv_id = _open(client, make_user())
    body = {"conversation_id": conv_id, "content": "reply"}
    for _ in range(12):
        assert client.post("/messages", json=body, headers=_as_admin()).status_code == 200


# ---------------------------------------------------------------------------
# PATCH /messages/read
# ---------------------------------------------------------------------------


def test_user_mark_read_flips_admin_messages_only(client, make_user, db_session):
    user = make_user()
    conv_id = _open(client, user)
    client.post("/messages", json={"conversation_id": conv_id, "content": "q"}, headers=_as_user(user))
    client.post("/messages", json={"conversation_id": conv_id, "content": "a"}, headers=_as_admin())

    resp = client.patch("/messages/read", json={"conversation_id": conv_id}, headers=_as_user(user))

    assert resp.status_code == 200
    assert resp.json() == {
        "message": "Messages marked as read",
        "conversation_id": conv_id,
        "marked": 1,
    }
    by_role = {
        m.sender_role: m.read_at
        for m in db_session.query(Message).filter(Message.conversation_id == conv_id)
    }
    assert by_role["admin"] is not None
    assert by_role["user"] is None


def test_admin_mark_read_zeroes_admin_counter(client, make_user):
    user = make_user()
    conv_id = _open(client, user)
    for text in ("one", "two"):
        client.post("/messages", json={"conversation_id": conv_id, "content": text}, headers=_as_user(user))

    resp = client.patch("/messages/read", json={"conversation_id": conv_id}, headers=_as_admin())
    assert resp.json()["marked"] == 2

    detail = client.get(f"/conversations/{conv_id}", headers=_as_admin()).json()
    assert detail["admin_unread_count"] == 0
    assert all(m["read_at"] is not None for m in detail["messages"])


def test_mark_read_on_foreign_conversation_returns_403(client, make_user):
    conv_id = _open(client, make_user())
    resp = client.patch("/messages/read", json={"conversation_id": conv_id}, headers=_as_user(make_user()))
    assert resp.status_code == 403


def test_mark_read_without_conversation_id_returns_400(client, make_user):
    resp = client.patch("/messages/read", json={}, headers=_as_user(make_user()))
    assert resp.status_code == 400
