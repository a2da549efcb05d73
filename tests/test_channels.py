import logging
import struct

import pytest

from poweredup.channels import ChannelReceiver, HubChannels, TopicChannel
from poweredup.errors import HubDisconnectedError


class TestTopicChannel:
    @pytest.mark.asyncio
    async def test_publish_and_get(self):
        channel = TopicChannel("test")
        receiver = channel.subscribe()

        channel.publish(1)
        channel.publish(2)

        assert receiver.qsize() == 2
        assert await receiver.get() == 1
        assert await receiver.get() == 2

    def test_publish_without_receivers(self):
        channel = TopicChannel("test")
        channel.publish(1)
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_every_receiver_gets_every_item(self):
        channel = TopicChannel("test")
        first = channel.subscribe()
        second = channel.subscribe()

        assert channel.subscriber_count == 2

        channel.publish("a")

        assert await first.get() == "a"
        assert await second.get() == "a"

    @pytest.mark.asyncio
    async def test_only_new_items(self):
        channel = TopicChannel("test")
        channel.publish("old")

        receiver = channel.subscribe()
        channel.publish("new")

        assert await receiver.get() == "new"
        assert receiver.qsize() == 0

    @pytest.mark.asyncio
    async def test_predicate(self):
        channel = TopicChannel("test")
        receiver = channel.subscribe(predicate=lambda x: x % 2 == 0)

        for x in range(5):
            channel.publish(x)

        assert receiver.qsize() == 3
        assert [await receiver.get() for _ in range(3)] == [0, 2, 4]

    @pytest.mark.asyncio
    async def test_transform(self):
        channel = TopicChannel("test")
        receiver = channel.subscribe(transform=lambda x: struct.unpack("<h", x))

        channel.publish(b"\xff\xff")

        assert await receiver.get() == (-1,)

    @pytest.mark.asyncio
    async def test_transform_error_is_dropped(self, caplog: pytest.LogCaptureFixture):
        channel = TopicChannel("test")
        receiver = channel.subscribe(transform=lambda x: struct.unpack("<h", x))

        with caplog.at_level(logging.WARNING):
            channel.publish(b"\x00")

        channel.publish(b"\x01\x00")

        assert "could not be decoded" in caplog.text
        assert receiver.qsize() == 1
        assert await receiver.get() == (1,)

    @pytest.mark.asyncio
    async def test_slow_receiver_drops_oldest(self, caplog: pytest.LogCaptureFixture):
        channel = TopicChannel("test", maxsize=2)
        slow = channel.subscribe()
        big = channel.subscribe(maxsize=10)

        with caplog.at_level(logging.WARNING):
            for x in range(5):
                channel.publish(x)

        assert slow.dropped == 3
        assert "not keeping up" in caplog.text
        assert [await slow.get() for _ in range(2)] == [3, 4]

        assert big.dropped == 0
        assert big.qsize() == 5

    @pytest.mark.asyncio
    async def test_close_channel(self):
        channel = TopicChannel("test")
        receiver = channel.subscribe()

        channel.publish(1)
        channel.close()
        channel.publish(2)

        assert channel.closed
        assert receiver.closed
        assert receiver.qsize() == 1
        assert await receiver.get() == 1

        with pytest.raises(HubDisconnectedError):
            await receiver.get()

        # keeps raising
        with pytest.raises(HubDisconnectedError):
            await receiver.get()

    @pytest.mark.asyncio
    async def test_iterate_until_closed(self):
        channel = TopicChannel("test")
        receiver = channel.subscribe()

        for x in range(3):
            channel.publish(x)

        channel.close()

        assert [x async for x in receiver] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_subscribe_after_close(self):
        channel = TopicChannel("test")
        channel.close()

        receiver = channel.subscribe()

        assert receiver.closed
        assert [x async for x in receiver] == []

    def test_close_twice(self):
        channel = TopicChannel("test")
        channel.close()
        channel.close()
        assert channel.closed


class TestChannelReceiver:
    def test_bad_maxsize(self):
        with pytest.raises(ValueError):
            ChannelReceiver("test", 0)

    @pytest.mark.asyncio
    async def test_close_receiver(self):
        channel = TopicChannel("test")
        receiver = channel.subscribe()
        other = channel.subscribe()

        receiver.close()
        channel.publish(1)

        assert receiver.closed
        assert channel.subscriber_count == 1
        assert not channel.closed
        assert await other.get() == 1

        with pytest.raises(RuntimeError):
            await receiver.get()

    @pytest.mark.asyncio
    async def test_context_manager(self):
        channel = TopicChannel("test")

        with channel.subscribe() as receiver:
            channel.publish(1)
            assert await receiver.get() == 1

        assert receiver.closed
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self):
        channel = TopicChannel("test")
        receiver = channel.subscribe()
        channel.publish(1)
        receiver.close()

        assert [x async for x in receiver] == []

    def test_repr(self):
        channel = TopicChannel("values", maxsize=4)
        assert repr(channel) == "TopicChannel('values')"
        assert repr(channel.subscribe()) == "ChannelReceiver('values', maxsize=4)"


class TestHubChannels:
    def test_close_all(self):
        channels = HubChannels(maxsize=3)
        receivers = [c.subscribe() for c in channels]

        assert len(receivers) == 4
        assert all(r.maxsize == 3 for r in receivers)

        channels.close()

        assert all(c.closed for c in channels)
        assert all(r.closed for r in receivers)
