"""Tests for the in-process change feed and its Redis mirror."""

import json

from redis.exceptions import ConnectionError as RedisConnectionError

from league.services.change_feed import ChangeEvent, ChangeFeed


class RecordingRedis:
    """Collects publish calls instead of talking to a server."""

    def __init__(self, fail: bool = False):
        self.published = []
        self.fail = fail
        self.closed = False

    async def publish(self, channel, payload):
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.published.append((channel, json.loads(payload)))
        return 1

    async def aclose(self):
        self.closed = True


async def test_key_filtering():
    feed = ChangeFeed()
    lobby_one = feed.subscribe('lobby_players', key=1)
    every_lobby = feed.subscribe('lobby_players')
    matches = feed.subscribe('matches')

    delivered = await feed.publish(ChangeEvent('lobby_players', 'insert', 1, {'player_id': 7}))
    await feed.publish(ChangeEvent('lobby_players', 'insert', 2, {'player_id': 8}))

    assert delivered == 2
    assert [e.key for e in lobby_one.drain()] == [1]
    assert [e.key for e in every_lobby.drain()] == [1, 2]
    assert matches.drain() == []


async def test_cancel_is_idempotent_and_stops_delivery():
    feed = ChangeFeed()
    subscription = feed.subscribe('matches', key=3)
    assert feed.subscription_count == 1

    subscription.cancel()
    subscription.cancel()
    assert feed.subscription_count == 0

    assert await feed.publish(ChangeEvent('matches', 'update', 3)) == 0
    assert subscription.drain() == []


async def test_async_iteration_ends_after_cancel():
    feed = ChangeFeed()
    subscription = feed.subscribe('lobbies')
    await feed.publish_many([
        ChangeEvent('lobbies', 'insert', 1),
        ChangeEvent('lobbies', 'update', 1),
    ])
    subscription.cancel()

    actions = [event.action async for event in subscription]
    assert actions == ['insert', 'update']


async def test_callbacks_sync_and_async():
    feed = ChangeFeed()
    seen = []

    async def async_callback(event):
        seen.append(('async', event.action))

    feed.subscribe('matches', callback=lambda event: seen.append(('sync', event.action)))
    feed.subscribe('matches', callback=async_callback)

    await feed.publish(ChangeEvent('matches', 'insert', 1))
    assert sorted(seen) == [('async', 'insert'), ('sync', 'insert')]


async def test_callback_subscriptions_do_not_queue():
    feed = ChangeFeed()
    seen = []
    subscription = feed.subscribe('match_results', callback=seen.append)

    for match_id in range(200):
        assert await feed.publish(ChangeEvent('match_results', 'update', match_id)) == 1

    assert len(seen) == 200
    assert subscription.queue.qsize() == 0


async def test_failing_callback_does_not_stop_delivery():
    feed = ChangeFeed()

    def broken(event):
        raise RuntimeError("boom")

    feed.subscribe('matches', callback=broken)
    healthy = feed.subscribe('matches')

    assert await feed.publish(ChangeEvent('matches', 'insert', 1)) == 2
    assert len(healthy.drain()) == 1


async def test_get_with_timeout():
    feed = ChangeFeed()
    subscription = feed.subscribe('lobbies')
    await feed.publish(ChangeEvent('lobbies', 'insert', 5))

    event = await subscription.get(timeout=1)
    assert event.key == 5


async def test_redis_mirror_channels():
    redis_client = RecordingRedis()
    feed = ChangeFeed(redis_client)

    await feed.publish(ChangeEvent('lobby_players', 'insert', 4, {'seat': 2}))

    assert [channel for channel, _ in redis_client.published] == [
        'league:lobby_players', 'league:lobby_players:4'
    ]
    payload = redis_client.published[0][1]
    assert payload == {'table': 'lobby_players', 'action': 'insert', 'key': 4, 'record': {'seat': 2}}

    await feed.close()
    assert redis_client.closed


async def test_redis_failure_is_logged_not_raised():
    feed = ChangeFeed(RecordingRedis(fail=True))
    local = feed.subscribe('matches')

    assert await feed.publish(ChangeEvent('matches', 'update', 1)) == 1
    assert len(local.drain()) == 1


def test_event_json_handles_enums_and_datetimes():
    from datetime import datetime
    from league.database.models import MatchStatus

    event = ChangeEvent('matches', 'update', 1, {
        'status': MatchStatus.COMPLETED,
        'completed_at': datetime(2024, 5, 1, 20, 30),
    })
    payload = json.loads(event.to_json())
    assert payload['record'] == {'status': 'completed', 'completed_at': '2024-05-01T20:30:00'}
