import asyncio
import json

import pytest
from aiohttp import web

from config import Settings
from engine.models import DataFreshness, FeedStatus
from engine.pipeline import MetricsEngine
from engine.protocol import INCREMENT_TYPE, SNAPSHOT_TYPE
from engine.window import ApplyResult
from feed_manager import TRANSITIONS, ConnectionManager, ConnectionState
from feed_messages import encode_message


def fast_settings(**overrides):
    values = dict(
        FEED_URL="ws://127.0.0.1:1/",
        CONNECT_TIMEOUT=1.0,
        FALLBACK_TIMEOUT=5.0,
        RECONNECT_MAX_ATTEMPTS=2,
        RECONNECT_DELAY=0.01,
        RECONNECT_MAX_DELAY=0.02,
        TELEGRAM_BOT_TOKEN="",
        TELEGRAM_CHAT_ID="",
    )
    values.update(overrides)
    return Settings(**values)


async def wait_until(predicate, timeout=3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)


def feed_app(messages, close_after_send=False, release=None):
    """Websocket block feed that replays ``messages`` to every subscriber"""
    connections = []

    async def handler(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        connections.append(ws)
        if release is not None:
            await release.wait()
        for message in messages:
            await ws.send_str(message)
        if close_after_send:
            await ws.close()
            return ws
        async for _ in ws:
            pass
        return ws

    app = web.Application()
    app.router.add_get("/ws", handler)
    return app, connections


@pytest.fixture
def engine(now):
    return MetricsEngine(capacity=240, clock=lambda: now)


@pytest.fixture
def snapshot_message(make_block):
    return encode_message(SNAPSHOT_TYPE, [make_block(3), make_block(2), make_block(1)])


async def start_feed(aiohttp_server, app):
    server = await aiohttp_server(app)
    return str(server.make_url("/ws")).replace("http://", "ws://", 1)


async def test_snapshot_then_increments(aiohttp_server, engine, make_block, snapshot_message):
    messages = [
        encode_message(INCREMENT_TYPE, make_block(0)),
        snapshot_message,
        encode_message(INCREMENT_TYPE, make_block(4)),
        encode_message(INCREMENT_TYPE, make_block(4)),
        "not json",
        json.dumps({"type": "mempool", "data": {}}),
        encode_message(INCREMENT_TYPE, make_block(5)),
    ]
    app, _ = feed_app(messages)
    url = await start_feed(aiohttp_server, app)

    manager = ConnectionManager(engine, fast_settings(), endpoint=url)
    await manager.start()
    try:
        await wait_until(lambda: len(engine.state().window) == 5)

        state = engine.state()
        assert [record.height for record in state.window] == [5, 4, 3, 2, 1]
        assert state.status == FeedStatus.CONNECTED
        assert state.freshness == DataFreshness.LIVE
        assert state.diagnostics.duplicates_rejected == 1
        assert state.diagnostics.protocol_errors == 1
        assert manager.state == ConnectionState.OPEN
        assert manager.last_message_time is not None
    finally:
        await manager.stop()

    assert manager.state == ConnectionState.MANUALLY_CLOSED
    assert not manager.running
    assert engine.closed
    assert engine.state().window == ()


async def test_fallback_until_first_snapshot(aiohttp_server, engine, snapshot_message):
    release = asyncio.Event()
    app, _ = feed_app([snapshot_message], release=release)
    url = await start_feed(aiohttp_server, app)

    async with ConnectionManager(engine, fast_settings(FALLBACK_TIMEOUT=0.05), endpoint=url):
        await wait_until(lambda: engine.using_fallback_data)
        state = engine.state()
        assert state.status == FeedStatus.USING_FALLBACK
        assert state.freshness == DataFreshness.FALLBACK
        assert len(state.window) > 0

        release.set()
        await wait_until(lambda: not engine.using_fallback_data)

        state = engine.state()
        assert [record.height for record in state.window] == [3, 2, 1]
        assert state.status == FeedStatus.CONNECTED

    assert engine.closed


async def test_reconnects_after_server_closes(aiohttp_server, engine, snapshot_message):
    app, connections = feed_app([snapshot_message], close_after_send=True)
    url = await start_feed(aiohttp_server, app)

    async with ConnectionManager(engine, fast_settings(), endpoint=url) as manager:
        await wait_until(lambda: engine.state().diagnostics.snapshots_applied >= 2)
        assert manager.connections_opened >= 2
        assert len(connections) >= 2
        # the data from the last snapshot stays readable between connections
        assert len(engine.state().window) == 3


async def test_gives_up_after_max_attempts(engine):
    manager = ConnectionManager(engine, fast_settings(FEED_URL="ws://127.0.0.1:1/"))
    await manager.start()
    try:
        await wait_until(lambda: manager.state == ConnectionState.DISCONNECTED and not manager.running)
        assert engine.state().status == FeedStatus.DISCONNECTED
        assert manager.connections_opened == 0
    finally:
        await manager.stop()


async def test_stopped_manager_cannot_restart(engine):
    manager = ConnectionManager(engine, fast_settings())
    await manager.stop()

    with pytest.raises(RuntimeError):
        await manager.start()
    assert manager.handle_message('{"type": "newBlock"}') is None


async def test_handle_message_without_transport(engine, make_block, snapshot_message):
    manager = ConnectionManager(engine, fast_settings())

    assert manager.handle_message(encode_message(INCREMENT_TYPE, make_block(9))) is None
    assert engine.state().window == ()

    manager.handle_message(snapshot_message)
    assert len(engine.state().window) == 3

    assert manager.handle_message(encode_message(INCREMENT_TYPE, make_block(4))) == ApplyResult.ACCEPTED
    assert manager.handle_message(encode_message(INCREMENT_TYPE, make_block(4))) == ApplyResult.REJECTED_DUPLICATE

    manager.handle_message(encode_message(SNAPSHOT_TYPE, [make_block(100)]))
    assert len(engine.state().window) == 4


async def test_all_malformed_snapshot_is_skipped(engine, snapshot_message):
    manager = ConnectionManager(engine, fast_settings())

    manager.handle_message(json.dumps({"type": SNAPSHOT_TYPE, "data": [{"height": 1}, 7]}))

    assert engine.state().diagnostics.malformed_records == 2
    assert not engine.has_genuine_snapshot

    manager.handle_message(snapshot_message)
    assert engine.has_genuine_snapshot


def test_invalid_transition_raises(engine):
    manager = ConnectionManager(engine, fast_settings())

    with pytest.raises(RuntimeError):
        manager._transition(ConnectionState.OPEN)
    assert manager._transition(ConnectionState.MANUALLY_CLOSED)
    assert not manager._transition(ConnectionState.CONNECTING)


def test_transition_table_has_no_way_out_of_manual_close():
    assert TRANSITIONS[ConnectionState.MANUALLY_CLOSED] == set()
    assert ConnectionState.CONNECTING in TRANSITIONS[ConnectionState.RECONNECTING]
