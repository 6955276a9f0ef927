"""Tests for the notification manager pipeline."""

import asyncio

import pytest
from unittest.mock import MagicMock

from streamnotify.display_queue import DisplayQueue
from streamnotify.events import Platform, iso_from_ms
from streamnotify.models import Reason
from streamnotify.notification_config import NotificationsConfig, parse_notification_config
from streamnotify.notification_manager import NotificationManager, normalize_keys
from streamnotify.scrubber import is_clean
from streamnotify.transport import ReplayTransport

CONNECTED_AT = 10_000_000


def spying(queue):
    """Wrap a real queue so add_item calls can be asserted."""
    return MagicMock(wraps=queue)


def count_non_ascii(text):
    return sum(1 for ch in text if ord(ch) >= 0x80)


class TestScenarios:
    """End to end scenarios through handle_notification."""

    @pytest.mark.asyncio
    async def test_twitch_giftmember_bulk(self, manager, queue):
        """Bulk gifted subscriptions are admitted at priority 5."""
        result = await manager.handle_notification(
            "platform:giftmember",
            "T",
            {"userId": "123", "username": "GiftUser", "tier": "1000", "giftCount": 5, "cumulativeTotal": 7},
        )
        assert result.success is True
        assert result.suppressed is False
        item = queue.pop_next()
        assert item.id == result.notification_id
        assert item.priority == 5
        display = item.data.display_message
        assert "GiftUser" in display and "5" in display
        assert "gift" in display.lower() or "sub" in display.lower()
        assert "undefined" not in display and "null" not in display
        assert "GiftUser" in item.data.tts_message and "5" in item.data.tts_message

    @pytest.mark.asyncio
    async def test_youtube_super_chat(self, manager, queue):
        """A 10 USD Super Chat shows amount and currency."""
        result = await manager.handle_notification(
            "platform:gift",
            "V",
            {"username": "ChatHero", "userId": "y2", "giftType": "Super Chat", "giftCount": 1, "amount": 10, "currency": "USD"},
        )
        assert result.success is True
        item = queue.pop_next()
        assert item.type == "platform:gift"
        assert item.platform is Platform.YOUTUBE
        assert item.priority == 4
        assert "10" in item.data.display_message
        assert "USD" in item.data.display_message

    @pytest.mark.asyncio
    async def test_tiktok_spam_burst(self, make_manager):
        """Only the first of a burst of low-value roses reaches the queue."""
        config = parse_notification_config(
            {"spam": {"low_value_threshold": 9, "max_individual_notifications": 1}}
        )
        queue = spying(DisplayQueue())
        manager = make_manager(config, queue)
        data = {"userId": "u", "amount": 1, "giftType": "Rose", "giftCount": 1}

        results = [await manager.handle_notification("platform:gift", "S", dict(data)) for _ in range(5)]

        assert results[0].success is True and results[0].suppressed is False
        for result in results[1:]:
            assert result.suppressed is True
            assert result.reason is Reason.SPAM_DETECTION
        assert queue.add_item.call_count == 1

    @pytest.mark.asyncio
    async def test_tiktok_aggregated_bypasses_spam(self, manager, queue):
        """Aggregated gifts never consult the spam detector."""
        manager.spam_detector = MagicMock()
        result = await manager.handle_notification(
            "platform:gift",
            "S",
            {"userId": "u", "amount": 50, "giftCount": 5, "giftType": "Rose", "isAggregated": True},
        )
        assert result.success is True and result.suppressed is False
        manager.spam_detector.handle_donation_spam.assert_not_called()
        assert queue.pop_next().data.is_aggregated is True

    @pytest.mark.asyncio
    async def test_twitch_eventsub_raid(self, manager, queue):
        """A raid envelope becomes a priority 6 notification."""
        raw = {
            "metadata": {"message_type": "notification", "message_timestamp": "2023-11-14T22:13:20.000Z"},
            "payload": {
                "subscription": {"type": "channel.raid"},
                "event": {"from_broadcaster_user_id": "77", "from_broadcaster_user_name": "Raider", "viewers": 100},
            },
        }
        result = await manager.handle_raw_event("T", raw)
        assert result.success is True
        item = queue.pop_next()
        assert item.priority == 6
        assert item.data.viewer_count == 100
        assert "100" in item.data.display_message

    @pytest.mark.asyncio
    async def test_old_message_dropped(self, make_manager, config):
        """Chat sent before the connection is never queued."""
        queue = spying(DisplayQueue())
        manager = make_manager(config, queue)
        manager.connections.record_connection(Platform.TWITCH, CONNECTED_AT)
        result = await manager.handle_notification(
            "platform:chat",
            "T",
            {"username": "Viewer", "message": "hi", "timestamp": "1970-01-01T00:00:05.000Z"},
        )
        assert result.suppressed is True
        assert result.reason is Reason.OLD_MESSAGE
        queue.add_item.assert_not_called()


class TestPipelineProperties:
    """Properties that hold for every event."""

    @pytest.mark.asyncio
    async def test_messages_are_clean(self, manager, queue):
        """Shaped messages never carry technical artifacts."""
        events = [
            ("chat", {"username": "Viewer", "message": "see localhost:3000 [DEBUG]"}),
            ("follow", {"username": "null"}),
            ("gift", {"username": "Donor", "amount": 5, "currency": "USD", "giftType": "{gift}"}),
            ("raid", {"username": "Raider", "viewerCount": 3}),
        ]
        for kind, data in events:
            await manager.handle_notification(kind, "T", data)
        items = queue.items()
        assert len(items) == 4
        for item in items:
            assert is_clean(item.data.display_message)
            assert is_clean(item.data.tts_message)

    @pytest.mark.asyncio
    async def test_international_names_preserved(self, manager, queue):
        """Non-ASCII names keep every character."""
        names = ["山田太郎", "Łukasz Żółć", "محمد", "🎮GamerX🎮", "Ольга"]
        for index, name in enumerate(names):
            await manager.handle_notification("follow", "V", {"username": name, "userId": f"u{index}"})
        for item, name in zip(sorted(queue.items(), key=lambda i: i.data.username), sorted(names)):
            assert name in item.data.display_message
            assert count_non_ascii(item.data.display_message) >= count_non_ascii(name)
            assert name in item.data.tts_message

    @pytest.mark.asyncio
    async def test_priority_order(self, manager, queue, clock):
        """Later higher priority items pop before earlier lower ones."""
        await manager.handle_notification("follow", "T", {"username": "Fan"})
        clock.advance(10)
        await manager.handle_notification("raid", "T", {"username": "Raider", "viewerCount": 5})
        assert queue.pop_next().type == "platform:raid"
        assert queue.pop_next().type == "platform:follow"

    @pytest.mark.asyncio
    async def test_disabled_touches_no_sinks(self, make_manager, tts_sink, effects_sink, goals_sink):
        """With everything off nothing is queued or dispatched."""
        config = parse_notification_config({"general": {"enabled": False, "tts_enabled": True}})
        queue = MagicMock()
        manager = make_manager(config, queue)
        for kind, data in [
            ("gift", {"username": "A", "amount": 5, "currency": "USD"}),
            ("chat", {"username": "A", "message": "hi"}),
            ("raid", {"username": "A", "viewerCount": 2}),
        ]:
            result = await manager.handle_notification(kind, "V", data)
            assert result.success is True
            assert result.suppressed is True
            assert result.reason is Reason.DISABLED
        await manager.shutdown()
        queue.add_item.assert_not_called()
        tts_sink.speak.assert_not_awaited()
        effects_sink.get_vfx_config.assert_not_awaited()
        goals_sink.process_donation_goal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_type_disabled(self, make_manager):
        """Disabling a kind suppresses it."""
        config = parse_notification_config({"general": {"follows_enabled": False}})
        manager = make_manager(config, DisplayQueue())
        result = await manager.handle_notification("follow", "T", {"username": "Fan"})
        assert result.reason is Reason.DISABLED

    @pytest.mark.asyncio
    async def test_platform_disabled(self, make_manager):
        """Disabling a platform suppresses its events."""
        config = parse_notification_config({"platforms": {"tiktok": {"notifications_enabled": False}}})
        manager = make_manager(config, DisplayQueue())
        result = await manager.handle_notification("follow", "S", {"username": "Fan"})
        assert result.reason is Reason.DISABLED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "platform,data",
        [
            ("T", {"username": "Someone", "self": True, "message": "hi"}),
            ("T", {"username": "STREAMER", "message": "hi"}),
            ("V", {"username": "My Channel", "message": "hi"}),
            ("V", {"username": "x", "badges": ["Owner"], "message": "hi"}),
            ("S", {"username": "Nick", "userId": "6800", "message": "hi"}),
        ],
    )
    async def test_self_messages_suppressed(self, make_manager, platform, data):
        """Events from the broadcaster identity are suppressed."""
        config = parse_notification_config(
            {
                "general": {"ignore_self_messages": True},
                "platforms": {
                    "twitch": {"username": "streamer"},
                    "youtube": {"username": "My Channel"},
                    "tiktok": {"username": "mychannel", "user_id": "6800"},
                },
            }
        )
        queue = MagicMock()
        manager = make_manager(config, queue)
        result = await manager.handle_notification("chat", platform, data)
        assert result.suppressed is True
        assert result.reason is Reason.SELF_MESSAGE
        queue.add_item.assert_not_called()

    @pytest.mark.asyncio
    async def test_old_messages_never_admitted(self, manager, queue):
        """Any chat older than the connection is dropped."""
        for ms in (0, 5_000, CONNECTED_AT - 1):
            result = await manager.handle_notification(
                "chat",
                "T",
                {"username": "Viewer", "message": "hi", "timestamp": iso_from_ms(ms)},
                connection_time_ms=CONNECTED_AT,
            )
            assert result.reason is Reason.OLD_MESSAGE
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_new_message_after_connection(self, manager, queue):
        """Chat sent after connecting is admitted."""
        result = await manager.handle_notification(
            "chat",
            "T",
            {"username": "Viewer", "message": "hi", "timestamp": "1970-01-01T02:46:40.000Z"},
            connection_time_ms=CONNECTED_AT,
        )
        assert result.suppressed is False
        assert len(queue) == 1


class TestPipelineErrors:
    """Failure reasons surfaced by handle_notification."""

    @pytest.mark.asyncio
    async def test_unknown_type(self, manager):
        result = await manager.handle_notification("platform:dance", "T", {"username": "A"})
        assert result.success is False
        assert result.reason is Reason.INVALID_NOTIFICATION

    @pytest.mark.asyncio
    async def test_unknown_platform(self, manager):
        result = await manager.handle_notification("follow", "myspace", {"username": "A"})
        assert result.reason is Reason.INVALID_NOTIFICATION

    @pytest.mark.asyncio
    async def test_missing_username(self, manager):
        """Events with no user at all are rejected."""
        result = await manager.handle_notification("follow", "T", {})
        assert result.success is False
        assert result.reason is Reason.INVALID_NOTIFICATION

    @pytest.mark.asyncio
    async def test_config_missing(self, make_manager):
        """A kind with no config entry fails with config_missing."""
        manager = make_manager(NotificationsConfig(types={}), DisplayQueue())
        result = await manager.handle_notification("follow", "T", {"username": "A"})
        assert result.success is False
        assert result.reason is Reason.CONFIG_MISSING

    @pytest.mark.asyncio
    async def test_display_sink_failure(self, make_manager, config, tts_sink):
        """A display failure loses the notification and is reported."""
        queue = MagicMock()
        queue.add_item.side_effect = RuntimeError("overlay gone")
        manager = make_manager(config, queue)
        result = await manager.handle_notification("follow", "T", {"username": "A"})
        assert result.success is False
        assert result.reason is Reason.SINK_FAILURE
        await manager.shutdown()
        tts_sink.speak.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_side_effect_failure_does_not_fail(self, make_manager, queue, goals_sink):
        """Side effect failures are only logged."""
        goals_sink.process_donation_goal.side_effect = RuntimeError("goals down")
        manager = make_manager(NotificationsConfig(), queue)
        result = await manager.handle_notification("gift", "V", {"username": "A", "amount": 20, "currency": "USD"})
        await manager.shutdown()
        assert result.success is True
        assert manager.get_stats()["sink_failures"] == 1

    @pytest.mark.asyncio
    async def test_shaping_failure(self, manager):
        """Gifts with unusable amounts fail to shape."""
        result = await manager.handle_notification("gift", "V", {"username": "A", "amount": 10.5, "currency": "JPY"})
        assert result.success is False
        assert result.reason is Reason.SHAPING_FAILED

    @pytest.mark.asyncio
    async def test_zero_amount_gift(self, manager, queue):
        """Zero value fiat gifts are dropped."""
        result = await manager.handle_notification("gift", "V", {"username": "A", "amount": 0, "currency": "USD"})
        assert result.suppressed is True
        assert result.reason is Reason.ZERO_AMOUNT
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_cancelled_while_waiting(self, manager, queue):
        """Cancelling a queued invocation reports cancelled and changes nothing."""
        async with manager.pipeline_lock:
            task = asyncio.create_task(manager.handle_notification("follow", "T", {"username": "Fan"}))
            await asyncio.sleep(0)
            task.cancel()
            result = await task
        assert result.success is False
        assert result.reason is Reason.CANCELLED
        assert len(queue) == 0
        assert manager.suppressor.get_statistics()["tracked_users"] == 0


class TestRateLimit:
    """Per-user suppression inside the pipeline."""

    @pytest.mark.asyncio
    async def test_user_rate_limit(self, make_manager):
        config = parse_notification_config({"general": {"max_notifications_per_user": 2}})
        manager = make_manager(config, DisplayQueue(chat_optimization=False))
        results = [
            await manager.handle_notification("chat", "T", {"userId": "1", "username": "Chatty", "message": f"m{i}"})
            for i in range(3)
        ]
        assert [r.suppressed for r in results] == [False, False, True]
        assert results[2].reason is Reason.USER_RATE_LIMIT

    @pytest.mark.asyncio
    async def test_aggregated_gift_still_rate_limited(self, make_manager):
        """Aggregated gifts skip spam checks but not the user limit."""
        config = parse_notification_config({"general": {"max_notifications_per_user": 1}})
        manager = make_manager(config, DisplayQueue())
        data = {"userId": "u", "amount": 50, "giftCount": 5, "giftType": "Rose", "isAggregated": True}
        first = await manager.handle_notification("gift", "S", dict(data))
        second = await manager.handle_notification("gift", "S", dict(data))
        assert first.suppressed is False
        assert second.reason is Reason.USER_RATE_LIMIT


class TestRawEvents:
    """Raw payloads through normalisers and transports."""

    @pytest.mark.asyncio
    async def test_malformed_payload_dropped(self, manager, queue):
        """Malformed payloads return None and are counted."""
        assert await manager.handle_raw_event("S", {"type": "gift", "user": {"userId": "u"}}) is None
        assert manager.get_stats()["results"]["normalise_error"] == 1
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_wrong_typed_envelope_dropped(self, manager, queue):
        """Wrong-typed EventSub fields are dropped through the transport without raising."""
        transport = ReplayTransport("T", connected_at_ms=CONNECTED_AT)
        manager.attach_transport(transport)
        assert await transport.deliver({"metadata": "notification"}) is None
        assert await transport.deliver(
            {"metadata": {"message_type": "notification"}, "subscription": {"type": ["x"]}, "event": {}}
        ) is None
        assert manager.get_stats()["results"]["normalise_error"] == 2
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_transport_feeds_pipeline(self, manager, queue):
        """Attached transports deliver into the pipeline and report connection time."""
        transport = ReplayTransport("T", connected_at_ms=CONNECTED_AT)
        manager.attach_transport(transport)
        old = await transport.deliver(
            {"message": "hi", "context": {"username": "viewer", "tmi-sent-ts": "5000"}}
        )
        assert old.reason is Reason.OLD_MESSAGE
        new = await transport.deliver(
            {"message": "hi", "context": {"username": "viewer", "tmi-sent-ts": str(CONNECTED_AT + 1)}}
        )
        assert new.success is True and new.suppressed is False
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_tiktok_raw_gift(self, manager, queue):
        raw = {
            "type": "gift",
            "user": {"userId": "u1", "uniqueId": "rosefan", "nickname": "Rose Fan"},
            "gift": {"giftName": "Lion", "diamondCount": 29999},
            "giftType": 2,
        }
        result = await manager.handle_raw_event("S", raw)
        assert result.success is True
        assert queue.pop_next().data.display_message == "Rose Fan sent 1x Lion (29,999 coins)"


class TestOperatorApi:
    """Announcements, aggregation flushing and config swaps."""

    @pytest.mark.asyncio
    async def test_announce_jumps_the_queue(self, manager, queue):
        """Announcements use envelope priority."""
        await manager.handle_notification("raid", "T", {"username": "Raider", "viewerCount": 5})
        result = await manager.announce("Mod", "Stream starting soon")
        assert result.success is True
        item = queue.pop_next()
        assert item.priority == 8
        assert item.data.display_message == "Mod: Stream starting soon"
        assert item.data.tts_message == "Stream starting soon"

    @pytest.mark.asyncio
    async def test_announce_disabled(self, make_manager):
        config = parse_notification_config({"general": {"enabled": False}})
        manager = make_manager(config, DisplayQueue())
        result = await manager.announce("Mod", "hello")
        assert result.reason is Reason.DISABLED

    @pytest.mark.asyncio
    async def test_flush_aggregations(self, make_manager, clock):
        """Held back gifts come back as one aggregated notification."""
        config = parse_notification_config({"spam": {"low_value_threshold": 9, "max_individual_notifications": 1}})
        queue = DisplayQueue()
        manager = make_manager(config, queue)
        for _ in range(4):
            await manager.handle_notification("gift", "S", {"userId": "u", "username": "Rosy", "amount": 1, "giftType": "Rose"})
        assert await manager.flush_aggregations() == []

        clock.advance(5_000)
        [result] = await manager.flush_aggregations()
        assert result.success is True and result.suppressed is False
        aggregated = [item for item in queue.items() if item.data.is_aggregated]
        assert len(aggregated) == 1
        assert aggregated[0].data.gift_count == 3
        assert aggregated[0].data.display_message == "Rosy sent 3 gifts worth 3 coins (Rose)"

    @pytest.mark.asyncio
    async def test_replace_config(self, manager):
        """New config takes effect for later events."""
        manager.replace_config(parse_notification_config({"general": {"follows_enabled": False}}))
        result = await manager.handle_notification("follow", "T", {"username": "Fan"})
        assert result.reason is Reason.DISABLED
        assert manager.suppressor.config is manager.config

    @pytest.mark.asyncio
    async def test_stats(self, manager):
        await manager.handle_notification("follow", "T", {"username": "Fan"})
        await manager.handle_notification("follow", "T", {})
        stats = manager.get_stats()
        assert stats["results"]["admitted"] == 1
        assert stats["results"]["invalid_notification"] == 1
        assert "spam" in stats


def test_normalize_keys():
    """camelCase keys become snake_case."""
    assert normalize_keys({"userId": "1", "giftCount": 2, "is_aggregated": True}) == {
        "user_id": "1",
        "gift_count": 2,
        "is_aggregated": True,
    }
