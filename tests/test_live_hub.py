"""
tests.test_live_hub
~~~~~~~~~~~~~~~~~~~

LiveHub 实时中枢单元测试：房间成员通知、聊天、互动、频道聊天、信令、开播状态、
错误事件与动态记录。

所有事件都只进入连接的发件箱，测试直接读取发件箱断言，不涉及真实 socket。
"""
from __future__ import annotations

import asyncio
from typing import Any

import pytest

from app.services.activity import ActivityRecorder
from app.services.live_hub import LiveHub
from conftest import RecordingActivityLogger, drain, of_type


async def _join(hub: LiveHub, conn: Any, room_id: str, **extra: Any) -> None:
    await hub.handle(conn, {"type": "join-room", "data": {"room_id": room_id, **extra}})


# ── 连接生命周期 ──────────────────────────────────────────────────────

class TestConnect:
    @pytest.mark.asyncio
    async def test_connected_event(self, hub: LiveHub) -> None:
        conn = hub.connect("X")

        [event] = drain(conn)
        assert event == {
            "type": "connected",
            "data": {"connection_id": conn.connection_id, "display_name": "X"},
        }
        assert hub.registry.online_count == 1

    @pytest.mark.asyncio
    async def test_guest_name_when_missing(self, hub: LiveHub) -> None:
        conn = hub.connect("")
        assert conn.display_name == f"guest-{conn.connection_id[:6]}"

    @pytest.mark.asyncio
    async def test_disconnect_unregisters_and_closes(self, hub: LiveHub) -> None:
        conn = hub.connect("X")
        hub.disconnect(conn)

        assert hub.registry.get(conn.connection_id) is None
        assert conn.closed is True


# ── 房间场景 ──────────────────────────────────────────────────────────

class TestRoomScenario:
    @pytest.mark.asyncio
    async def test_stream_1_scenario(self, hub: LiveHub) -> None:
        """X 加入 → Y 加入 → Y 发送聊天 → X 断开。"""
        x = hub.connect("X")
        y = hub.connect("Y")
        drain(x), drain(y)

        await _join(hub, x, "stream-1")
        x_events = drain(x)
        assert of_type(x_events, "member-list") == [{"room_id": "stream-1", "members": []}]
        assert of_type(x_events, "viewer-count") == [{"room_id": "stream-1", "count": 1}]

        await _join(hub, y, "stream-1")
        y_events = drain(y)
        x_events = drain(x)
        assert of_type(y_events, "member-list") == [{
            "room_id": "stream-1",
            "members": [{"connection_id": x.connection_id, "display_name": "X"}],
        }]
        assert of_type(x_events, "member-joined") == [
            {"connection_id": y.connection_id, "display_name": "Y"},
        ]
        assert of_type(y_events, "member-joined") == []
        assert of_type(x_events, "viewer-count") == [{"room_id": "stream-1", "count": 2}]
        assert of_type(y_events, "viewer-count") == [{"room_id": "stream-1", "count": 2}]

        await hub.handle(y, {"type": "send-chat", "data": {"room_id": "stream-1", "text": "hi"}})
        for conn in (x, y):
            [chat] = of_type(drain(conn), "chat")
            assert chat["text"] == "hi"
            assert chat["display_name"] == "Y"
            assert chat["room_id"] == "stream-1"
            assert isinstance(chat["timestamp"], int)

        hub.disconnect(x)
        y_events = drain(y)
        assert of_type(y_events, "member-left") == [
            {"connection_id": x.connection_id, "display_name": "X"},
        ]
        assert of_type(y_events, "viewer-count") == [{"room_id": "stream-1", "count": 1}]
        assert hub.presence.count_of("stream-1") == 1

    @pytest.mark.asyncio
    async def test_room_deleted_when_last_member_disconnects(self, hub: LiveHub) -> None:
        x = hub.connect("X")
        await _join(hub, x, "solo")
        hub.disconnect(x)

        assert hub.presence.rooms() == []
        assert hub.room_info("solo").viewer_count == 0

    @pytest.mark.asyncio
    async def test_switch_room_notifies_old_room_first(self, hub: LiveHub) -> None:
        """第二次 join-room 先离开原房间：原房间收到 member-left 与新人数。"""
        x = hub.connect("X")
        y = hub.connect("Y")
        await _join(hub, x, "a")
        await _join(hub, y, "a")
        drain(x), drain(y)

        await _join(hub, x, "b")

        y_events = drain(y)
        assert of_type(y_events, "member-left") == [
            {"connection_id": x.connection_id, "display_name": "X"},
        ]
        assert of_type(y_events, "viewer-count") == [{"room_id": "a", "count": 1}]
        x_events = drain(x)
        assert of_type(x_events, "member-list") == [{"room_id": "b", "members": []}]
        assert hub.presence.room_of(x.connection_id) == "b"

    @pytest.mark.asyncio
    async def test_rejoin_same_room_resends_member_list_only(self, hub: LiveHub) -> None:
        x = hub.connect("X")
        y = hub.connect("Y")
        await _join(hub, x, "a")
        await _join(hub, y, "a")
        drain(x), drain(y)

        await _join(hub, y, "a", display_name="Yolanda")

        assert [e["type"] for e in drain(y)] == ["member-list"]
        assert drain(x) == []
        assert hub.presence.members_of("a")[1] == (y.connection_id, "Yolanda")

    @pytest.mark.asyncio
    async def test_leave_room(self, hub: LiveHub) -> None:
        x = hub.connect("X")
        y = hub.connect("Y")
        await _join(hub, x, "a")
        await _join(hub, y, "a")
        drain(x), drain(y)

        await hub.handle(x, {"type": "leave-room"})

        assert hub.presence.room_of(x.connection_id) is None
        assert of_type(drain(y), "viewer-count") == [{"room_id": "a", "count": 1}]
        assert drain(x) == []

    @pytest.mark.asyncio
    async def test_request_viewer_count_from_outside_room(self, hub: LiveHub) -> None:
        x = hub.connect("X")
        outsider = hub.connect("O")
        await _join(hub, x, "a")
        drain(x), drain(outsider)

        await hub.handle(outsider, {"type": "request-viewer-count", "data": {"room_id": "a"}})

        assert of_type(drain(outsider), "viewer-count") == [{"room_id": "a", "count": 1}]
        assert of_type(drain(x), "viewer-count") == [{"room_id": "a", "count": 1}]

    @pytest.mark.asyncio
    async def test_room_info_and_list(self, hub: LiveHub) -> None:
        x = hub.connect("X")
        y = hub.connect("Y")
        await _join(hub, x, "a")
        await _join(hub, y, "b")

        info = hub.room_info("a")
        assert info.viewer_count == 1
        assert info.members[0].connection_id == x.connection_id
        assert sorted(r.room_id for r in hub.list_rooms()) == ["a", "b"]
        assert hub.stats() == {"online": 2, "rooms": 2, "live_channels": 0}


# ── 聊天与互动 ────────────────────────────────────────────────────────

class TestChatAndReaction:
    @pytest.mark.asyncio
    async def test_chat_requires_membership(self, hub: LiveHub) -> None:
        x = hub.connect("X")
        drain(x)

        await hub.handle(x, {"type": "send-chat", "data": {"room_id": "a", "text": "hi"}})

        [error] = of_type(drain(x), "error")
        assert error["code"] == "NotFound"

    @pytest.mark.asyncio
    async def test_chat_too_long(self, recorder: ActivityRecorder) -> None:
        hub = LiveHub(recorder, chat_max_length=5)
        x = hub.connect("X")
        await _join(hub, x, "a")
        drain(x)

        await hub.handle(x, {"type": "send-chat", "data": {"room_id": "a", "text": "toolong"}})

        [error] = of_type(drain(x), "error")
        assert error["code"] == "InvalidMessage"

    @pytest.mark.asyncio
    async def test_reaction_broadcast(self, hub: LiveHub) -> None:
        x = hub.connect("X")
        y = hub.connect("Y")
        await _join(hub, x, "a")
        await _join(hub, y, "a")
        drain(x), drain(y)

        await hub.handle(x, {"type": "send-reaction", "data": {"room_id": "a", "emoji": "🔥"}})

        expected = [{"room_id": "a", "emoji": "🔥", "display_name": "X"}]
        assert of_type(drain(x), "reaction") == expected
        assert of_type(drain(y), "reaction") == expected

    @pytest.mark.asyncio
    async def test_room_broadcast_order_is_fifo(self, hub: LiveHub) -> None:
        x = hub.connect("X")
        y = hub.connect("Y")
        await _join(hub, x, "a")
        await _join(hub, y, "a")
        drain(x), drain(y)

        for i in range(5):
            await hub.handle(x, {"type": "send-chat", "data": {"room_id": "a", "text": str(i)}})

        assert [c["text"] for c in of_type(drain(y), "chat")] == ["0", "1", "2", "3", "4"]


# ── 信令 ──────────────────────────────────────────────────────────────

class TestSignaling:
    @pytest.mark.asyncio
    async def test_offer_answer_ice(self, hub: LiveHub) -> None:
        a = hub.connect("A")
        b = hub.connect("B")
        drain(a), drain(b)

        await hub.handle(a, {"type": "send-offer", "data": {"target_id": b.connection_id, "payload": {"sdp": "o"}}})
        await hub.handle(b, {"type": "send-answer", "data": {"target_id": a.connection_id, "payload": {"sdp": "a"}}})
        await hub.handle(a, {"type": "send-ice-candidate", "data": {"target_id": b.connection_id, "payload": "c1"}})

        assert drain(b) == [
            {"type": "offer", "data": {"from_id": a.connection_id, "payload": {"sdp": "o"}}},
            {"type": "ice-candidate", "data": {"from_id": a.connection_id, "payload": "c1"}},
        ]
        assert drain(a) == [
            {"type": "answer", "data": {"from_id": b.connection_id, "payload": {"sdp": "a"}}},
        ]

    @pytest.mark.asyncio
    async def test_missing_target_no_error(self, hub: LiveHub) -> None:
        a = hub.connect("A")
        drain(a)

        await hub.handle(a, {"type": "send-offer", "data": {"target_id": "gone", "payload": {}}})

        assert drain(a) == []


# ── 频道开播状态 ──────────────────────────────────────────────────────

class TestChannelStatus:
    @pytest.mark.asyncio
    async def test_go_live_broadcasts_to_everyone_once(self, hub: LiveHub) -> None:
        streamer = hub.connect("S")
        viewer = hub.connect("V")
        await _join(hub, viewer, "other-room")
        drain(streamer), drain(viewer)

        await hub.handle(streamer, {"type": "channel-go-live", "data": {"channel_id": "ch1"}})
        await hub.handle(streamer, {"type": "channel-go-live", "data": {"channel_id": "ch1"}})

        expected = [{"channel_id": "ch1", "is_live": True}]
        assert of_type(drain(viewer), "channel-status-change") == expected
        assert of_type(drain(streamer), "channel-status-change") == expected
        assert hub.live_channels() == ["ch1"]
        assert hub.is_live("ch1") is True

    @pytest.mark.asyncio
    async def test_stop_live_only_when_live(self, hub: LiveHub) -> None:
        streamer = hub.connect("S")
        drain(streamer)

        await hub.handle(streamer, {"type": "channel-stop-live", "data": {"channel_id": "ch1"}})
        assert drain(streamer) == []

        await hub.handle(streamer, {"type": "channel-go-live", "data": {"channel_id": "ch1"}})
        await hub.handle(streamer, {"type": "channel-stop-live", "data": {"channel_id": "ch1"}})
        assert of_type(drain(streamer), "channel-status-change") == [
            {"channel_id": "ch1", "is_live": True},
            {"channel_id": "ch1", "is_live": False},
        ]
        assert hub.is_live("ch1") is False


# ── 频道聊天 ──────────────────────────────────────────────────────────

async def _subscribe(hub: LiveHub, conn: Any, channel_id: str) -> None:
    await hub.handle(conn, {"type": "join-channel", "data": {"channel_id": channel_id}})


class TestChannelChat:
    @pytest.mark.asyncio
    async def test_subscribe_is_independent_of_room(self, hub: LiveHub) -> None:
        b = hub.connect("B")
        await _join(hub, b, "room-1")
        drain(b)

        await _subscribe(hub, b, "c1")
        await _subscribe(hub, b, "c2")

        assert drain(b) == []
        assert hub.presence.room_of(b.connection_id) == "room-1"
        assert hub.channels.channels_of(b.connection_id) == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_channel_message_fans_out_to_subscribers_only(self, hub: LiveHub) -> None:
        a = hub.connect("A")
        b = hub.connect("B")
        outsider = hub.connect("O")
        await _join(hub, outsider, "c1")  # 同名房间的成员不是频道订阅者
        await _subscribe(hub, a, "c1")
        await _subscribe(hub, b, "c1")
        drain(a), drain(b), drain(outsider)

        await hub.handle(a, {"type": "send-channel-message", "data": {"channel_id": "c1", "text": "hey"}})

        [msg_a] = of_type(drain(a), "channel-message")
        [msg_b] = of_type(drain(b), "channel-message")
        assert msg_a == msg_b
        assert msg_b["channel_id"] == "c1"
        assert msg_b["display_name"] == "A"
        assert msg_b["text"] == "hey"
        assert isinstance(msg_b["timestamp"], int)
        assert drain(outsider) == []

    @pytest.mark.asyncio
    async def test_unsubscribed_sender_rejected(self, hub: LiveHub) -> None:
        a = hub.connect("A")
        drain(a)

        await hub.handle(a, {"type": "send-channel-message", "data": {"channel_id": "c1", "text": "hey"}})

        [error] = of_type(drain(a), "error")
        assert error["code"] == "NotFound"

    @pytest.mark.asyncio
    async def test_leave_channel_stops_delivery(self, hub: LiveHub) -> None:
        a = hub.connect("A")
        b = hub.connect("B")
        await _subscribe(hub, a, "c1")
        await _subscribe(hub, b, "c1")
        await hub.handle(b, {"type": "leave-channel", "data": {"channel_id": "c1"}})
        drain(a), drain(b)

        await hub.handle(a, {"type": "send-channel-message", "data": {"channel_id": "c1", "text": "hey"}})

        assert len(of_type(drain(a), "channel-message")) == 1
        assert drain(b) == []

    @pytest.mark.asyncio
    async def test_disconnect_drops_subscriptions(self, hub: LiveHub) -> None:
        a = hub.connect("A")
        b = hub.connect("B")
        await _subscribe(hub, a, "c1")
        await _subscribe(hub, b, "c1")

        hub.disconnect(b)

        assert hub.channels.subscribers_of("c1") == [a.connection_id]
        assert hub.channels.channels_of(b.connection_id) == []

    @pytest.mark.asyncio
    async def test_missing_channel_id_is_invalid(self, hub: LiveHub) -> None:
        a = hub.connect("A")
        drain(a)

        await hub.handle(a, {"type": "join-channel", "data": {}})

        [error] = of_type(drain(a), "error")
        assert error["code"] == "InvalidMessage"


# ── 错误处理 ──────────────────────────────────────────────────────────

class TestErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        "{not json",
        "[1, 2]",
        {"type": "unknown-type"},
        {"type": "join-room", "data": {}},
        {"type": "join-room", "data": {"room_id": ""}},
    ])
    async def test_invalid_message(self, hub: LiveHub, raw: Any) -> None:
        conn = hub.connect("X")
        drain(conn)

        await hub.handle(conn, raw)

        [error] = of_type(drain(conn), "error")
        assert error["code"] == "InvalidMessage"
        assert conn.closed is False

    @pytest.mark.asyncio
    async def test_ping_pong(self, hub: LiveHub) -> None:
        conn = hub.connect("X")
        drain(conn)

        await hub.handle(conn, '{"type": "ping"}')

        assert [e["type"] for e in drain(conn)] == ["pong"]


# ── 动态记录 ──────────────────────────────────────────────────────────

class TestActivity:
    @pytest.mark.asyncio
    async def test_records_join_chat_and_live(
        self, hub: LiveHub, recorder: ActivityRecorder, activity_sink: RecordingActivityLogger,
    ) -> None:
        x = hub.connect("X")
        await _join(hub, x, "a")
        await hub.handle(x, {"type": "send-chat", "data": {"room_id": "a", "text": "hi"}})
        await hub.handle(x, {"type": "channel-go-live", "data": {"channel_id": "a"}})
        await hub.handle(x, {"type": "channel-stop-live", "data": {"channel_id": "a"}})
        await recorder.drain()

        assert [r[0] for r in activity_sink.records] == [
            "room_joined", "message_sent", "stream_started", "stream_ended",
        ]
        assert all(r[1] == "X" for r in activity_sink.records)
        assert activity_sink.records[1][2] == {"room_id": "a", "text": "hi"}

    @pytest.mark.asyncio
    async def test_failing_logger_never_blocks_broadcast(self) -> None:
        class BrokenLogger:
            async def record(self, event_type: str, actor_name: str, details: dict[str, Any]) -> None:
                raise RuntimeError("db down")

        recorder = ActivityRecorder(BrokenLogger())
        hub = LiveHub(recorder)
        x = hub.connect("X")
        y = hub.connect("Y")
        await _join(hub, x, "a")
        await _join(hub, y, "a")
        drain(x)

        await hub.handle(y, {"type": "send-chat", "data": {"room_id": "a", "text": "hi"}})

        assert of_type(drain(x), "chat")[0]["text"] == "hi"
        await recorder.drain()
        assert recorder.pending_count == 0

    @pytest.mark.asyncio
    async def test_slow_logger_does_not_delay_handle(self) -> None:
        gate = asyncio.Event()

        class SlowLogger:
            async def record(self, event_type: str, actor_name: str, details: dict[str, Any]) -> None:
                await gate.wait()

        recorder = ActivityRecorder(SlowLogger())
        hub = LiveHub(recorder)
        x = hub.connect("X")

        await asyncio.wait_for(_join(hub, x, "a"), timeout=1)

        assert recorder.pending_count == 1
        gate.set()
        await recorder.drain()
        assert recorder.pending_count == 0
