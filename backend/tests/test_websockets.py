"""
NeighborLink Backend — WebSocket Endpoint Tests
================================================

What:  The chat and notification sockets, driven through FastAPI's
       TestClient (httpx cannot speak WebSocket). The in-memory store is
       seeded with asyncio.run() because these tests are synchronous.

What we test:
    ✅ Unauthenticated sockets close with 4001, outsiders with 4403
    ✅ The chat socket sends context and the first page, relays sent
       messages and answers unknown actions with an error frame
    ✅ Validation errors become error notices without closing the socket
    ✅ Frames that are not JSON objects get an error frame; the room survives
    ✅ A store failure while opening the room closes with 1011
    ✅ The notification socket pushes the unread count and refreshes on demand
"""

import asyncio
import uuid
from functools import partial
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from neighborlink.main import app
from neighborlink.realtime.feed import ChangeFeed
from neighborlink.schemas.api import OfferCreate
from neighborlink.services.chat import ChatRoom
from neighborlink.services.unread import UnreadCounter

from fakes import FakeStore


def seed():
    store = FakeStore(ChangeFeed())

    async def build():
        alice = await store.create_profile(uuid.uuid4(), "alice@example.com", "Alice")
        bob = await store.create_profile(uuid.uuid4(), "bob@example.com", "Bob")
        offer = await store.create_offer(
            alice.id,
            OfferCreate(type="offer", skill="Gardening", description="Raised beds", zip="97201"),
        )
        conversation = await store.insert_conversation(offer.id, bob.id, alice.id)
        await store.insert_message(conversation.id, alice.id, "Welcome!")
        return SimpleNamespace(alice=alice, bob=bob, offer=offer, conversation=conversation)

    return store, asyncio.run(build())


class TestChatSocket:
    def setup_method(self):
        self.store, self.world = seed()
        self.room_patch = patch(
            "neighborlink.routes.conversations.ChatRoom",
            partial(ChatRoom, store=self.store, feed=self.store.feed),
        )
        self.room_patch.start()
        self.client = TestClient(app)

    def teardown_method(self):
        self.room_patch.stop()

    def url(self, user_id=None):
        path = f"/ws/conversations/{self.world.conversation.id}"
        return f"{path}?user_id={user_id}" if user_id else path

    def test_requires_user(self):
        with self.client.websocket_connect(self.url()) as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4001

    def test_outsider_closed_with_4403(self):
        with self.client.websocket_connect(self.url(uuid.uuid4())) as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4403

    def test_context_page_and_send(self):
        with self.client.websocket_connect(self.url(self.world.bob.id)) as ws:
            context = ws.receive_json()
            page = ws.receive_json()

            assert context["type"] == "context"
            assert context["data"]["other_user"]["id"] == str(self.world.alice.id)
            assert page["type"] == "page"
            assert [m["content"] for m in page["data"]["messages"]] == ["Welcome!"]
            assert page["data"]["messages"][0]["is_read"] is True

            ws.send_json({"action": "send", "content": "Thanks, see you Sunday"})
            pushed = ws.receive_json()
            assert pushed["type"] == "message"
            assert pushed["data"]["message"]["content"] == "Thanks, see you Sunday"

            ws.send_json({"action": "dance"})
            assert ws.receive_json()["type"] == "error"

            ws.send_json({"action": "send", "content": "   "})
            notice = ws.receive_json()
            assert notice["type"] == "notice"
            assert notice["data"] == {"level": "error", "message": "Message cannot be empty"}

    @pytest.mark.parametrize("frame", ["not json", "[1, 2]", "42"])
    def test_malformed_frame_keeps_socket_open(self, frame):
        with self.client.websocket_connect(self.url(self.world.bob.id)) as ws:
            ws.receive_json()
            ws.receive_json()

            ws.send_text(frame)
            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["data"]["message"].startswith("Invalid message format")

            ws.send_json({"action": "send", "content": "Still here"})
            pushed = ws.receive_json()
            assert pushed["type"] == "message"
            assert pushed["data"]["message"]["content"] == "Still here"

    def test_store_failure_on_open_closes_with_1011(self):
        self.store.fail_on.add("get_conversation")

        with self.client.websocket_connect(self.url(self.world.bob.id)) as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == 1011

    def test_match_action(self):
        with self.client.websocket_connect(self.url(self.world.bob.id)) as ws:
            ws.receive_json()
            ws.receive_json()

            ws.send_json({"action": "match"})
            frames = [ws.receive_json() for _ in range(3)]

        kinds = [f["type"] for f in frames]
        assert kinds == ["conversation", "notice", "match"]
        assert frames[1]["data"]["message"] == "Match sent! Waiting for the other user to match."
        assert frames[2]["data"]["outcome"] == "waiting"


class TestNotificationSocket:
    def setup_method(self):
        self.store, self.world = seed()
        self.counter_patch = patch(
            "neighborlink.routes.notifications.UnreadCounter",
            partial(UnreadCounter, self.store, self.store.feed),
        )
        self.counter_patch.start()
        self.client = TestClient(app)

    def teardown_method(self):
        self.counter_patch.stop()

    def test_pushes_unread_count(self):
        url = f"/ws/notifications?user_id={self.world.bob.id}"
        with self.client.websocket_connect(url) as ws:
            assert ws.receive_json() == {"type": "unread", "data": {"unread_count": 1}}

            ws.send_text("refresh")
            assert ws.receive_json() == {"type": "unread", "data": {"unread_count": 1}}

    def test_requires_user(self):
        with self.client.websocket_connect("/ws/notifications") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4001
