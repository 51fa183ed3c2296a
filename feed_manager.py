# feed_manager.py
import asyncio
import time
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp
import backoff

from config import Settings, settings as default_settings
from engine.errors import FeedConnectionError, ProtocolError
from engine.fallback import build_fallback_records
from engine.models import FeedStatus
from engine.pipeline import MetricsEngine
from engine.protocol import IncrementMessage, SnapshotMessage, parse_message
from engine.window import ApplyResult
from utils.logging import logger

CONNECT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"
    RECONNECTING = "reconnecting"
    MANUALLY_CLOSED = "manually_closed"


TRANSITIONS = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {ConnectionState.OPEN, ConnectionState.ERRORED},
    ConnectionState.OPEN: {ConnectionState.CLOSED, ConnectionState.ERRORED},
    ConnectionState.CLOSED: {ConnectionState.RECONNECTING},
    ConnectionState.ERRORED: {ConnectionState.RECONNECTING, ConnectionState.DISCONNECTED},
    ConnectionState.RECONNECTING: {ConnectionState.CONNECTING},
    ConnectionState.MANUALLY_CLOSED: set(),
}


class ConnectionManager:
    """
    Owns one live subscription to the block feed and feeds the engine.

    The first message on every connection must be a ``recentBlocks``
    snapshot; ``newBlock`` increments are applied after it and any other
    message kind is ignored. Connect attempts back off exponentially up to
    RECONNECT_MAX_ATTEMPTS, after which the manager stays disconnected and
    the last aggregates remain readable. If no snapshot ever arrives within
    FALLBACK_TIMEOUT a synthetic one is applied and flagged as such.

    Every task and socket is released by ``stop()``, and the engine is
    closed so nothing mutates it afterwards.
    """

    def __init__(self, engine: MetricsEngine, config: Optional[Settings] = None, endpoint: Optional[str] = None):
        self.engine = engine
        self.config = config or default_settings
        self.endpoint = endpoint or self.config.FEED_URL
        self.state = ConnectionState.DISCONNECTED
        self.last_message_time: Optional[float] = None
        self.connections_opened = 0

        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._runner: Optional[asyncio.Task] = None
        self._fallback_task: Optional[asyncio.Task] = None
        self._awaiting_snapshot = True
        self._lock = asyncio.Lock()

        self._connect = backoff.on_exception(
            backoff.expo,
            CONNECT_ERRORS,
            max_tries=self.config.RECONNECT_MAX_ATTEMPTS,
            on_backoff=self._on_backoff,
            on_giveup=self._on_giveup,
            jitter=None,
            factor=self.config.RECONNECT_DELAY,
            max_value=self.config.RECONNECT_MAX_DELAY,
        )(self._open_socket)

    async def __aenter__(self) -> "ConnectionManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def _transition(self, new_state: ConnectionState) -> bool:
        if self.state == ConnectionState.MANUALLY_CLOSED:
            return False
        if new_state != ConnectionState.MANUALLY_CLOSED and new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid feed state transition {self.state.value} -> {new_state.value}")
        logger.info(f"Feed connection {self.state.value} -> {new_state.value}")
        self.state = new_state
        return True

    async def start(self, endpoint: Optional[str] = None):
        """Begin connecting; returns once the background tasks are scheduled"""
        async with self._lock:
            if self.state == ConnectionState.MANUALLY_CLOSED:
                raise RuntimeError("A stopped ConnectionManager cannot be restarted")
            if self._runner is not None:
                return
            if endpoint:
                self.endpoint = endpoint

            try:
                self._session = aiohttp.ClientSession()
                self._fallback_task = asyncio.create_task(self._fallback_timer())
                self._runner = asyncio.create_task(self._run())
            except BaseException:
                await self._release()
                raise
            logger.info(f"Subscribing to block feed at {self.endpoint}")

    async def stop(self):
        """Tear down the subscription; no engine mutation happens after this returns"""
        async with self._lock:
            if self.state == ConnectionState.MANUALLY_CLOSED:
                return
            self._transition(ConnectionState.MANUALLY_CLOSED)
            await self._release()
            self.engine.close()
            logger.info("Block feed subscription stopped")

    async def _release(self):
        tasks = [task for task in (self._runner, self._fallback_task) if task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._runner = None
        self._fallback_task = None
        await self._close_socket()
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _close_socket(self):
        if self._ws is not None:
            ws, self._ws = self._ws, None
            if not ws.closed:
                await ws.close()

    async def _open_socket(self) -> aiohttp.ClientWebSocketResponse:
        self._transition(ConnectionState.CONNECTING)

        async def connect():
            return await self._session.ws_connect(self.endpoint, heartbeat=self.config.HEARTBEAT)

        return await asyncio.wait_for(connect(), timeout=self.config.CONNECT_TIMEOUT)

    def _on_backoff(self, details: Dict[str, Any]):
        logger.warning(
            f"Feed connection attempt {details['tries']} failed ({details.get('exception')}), "
            f"retrying in {details['wait']:.1f}s"
        )
        self._transition(ConnectionState.ERRORED)
        self._transition(ConnectionState.RECONNECTING)
        self.engine.set_connection_status(FeedStatus.RECONNECTING)

    def _on_giveup(self, details: Dict[str, Any]):
        logger.error(
            f"Giving up on block feed {self.endpoint} after {details['tries']} attempts: "
            f"{details.get('exception')}"
        )
        self._transition(ConnectionState.ERRORED)
        self._transition(ConnectionState.DISCONNECTED)
        self.engine.set_connection_status(FeedStatus.DISCONNECTED)

    async def _run(self):
        try:
            while self.state != ConnectionState.MANUALLY_CLOSED:
                try:
                    self._ws = await self._connect()
                except CONNECT_ERRORS:
                    # _on_giveup has already recorded the failure
                    return

                self.connections_opened += 1
                self._awaiting_snapshot = True
                self._transition(ConnectionState.OPEN)
                self.engine.set_connection_status(FeedStatus.CONNECTED)

                try:
                    await self._consume(self._ws)
                    self._transition(ConnectionState.CLOSED)
                    logger.warning(f"Block feed closed the connection (code {self._ws.close_code})")
                except FeedConnectionError as e:
                    self._transition(ConnectionState.ERRORED)
                    logger.warning(f"Block feed connection failed: {e}")
                finally:
                    await self._close_socket()

                self._transition(ConnectionState.RECONNECTING)
                self.engine.set_connection_status(FeedStatus.RECONNECTING)
                await asyncio.sleep(self.config.RECONNECT_DELAY)
        except Exception:
            logger.exception("Block feed runner stopped unexpectedly")
            if self._transition(ConnectionState.ERRORED):
                self._transition(ConnectionState.DISCONNECTED)
            self.engine.set_connection_status(FeedStatus.DISCONNECTED)
        finally:
            await self._close_socket()

    async def _consume(self, ws: aiohttp.ClientWebSocketResponse):
        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self.handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise FeedConnectionError(f"Websocket error: {ws.exception()}")
        except aiohttp.ClientError as e:
            raise FeedConnectionError(str(e)) from e

    def handle_message(self, raw) -> Optional[ApplyResult]:
        """Parse one inbound message and deliver it to the engine"""
        if self.state == ConnectionState.MANUALLY_CLOSED:
            return None
        self.last_message_time = time.time()

        try:
            message = parse_message(raw)
        except ProtocolError as e:
            logger.warning(f"Dropping malformed feed message: {e.detail}")
            self.engine.record_protocol_error()
            return None

        if isinstance(message, SnapshotMessage):
            if not self._awaiting_snapshot:
                logger.warning("Ignoring repeated snapshot on an open subscription")
                return None
            if message.rejected:
                logger.warning(f"Dropped {message.rejected} malformed blocks from snapshot")
                self.engine.record_protocol_error(malformed_records=message.rejected)
                if not message.records:
                    return None
            self._awaiting_snapshot = False
            self._cancel_fallback()
            self.engine.apply_snapshot(message.records)
            return None

        if isinstance(message, IncrementMessage):
            if self._awaiting_snapshot:
                logger.warning(f"Ignoring block {message.record.height} received before the snapshot")
                return None
            result = self.engine.apply_increment(message.record)
            if result == ApplyResult.ACCEPTED:
                logger.debug(f"New {message.record.algorithm.value} block at height {message.record.height}")
            return result

        logger.debug(f"Ignoring '{message.kind}' feed message")
        return None

    def _cancel_fallback(self):
        task = self._fallback_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _fallback_timer(self):
        await asyncio.sleep(self.config.FALLBACK_TIMEOUT)
        if self.engine.has_genuine_snapshot or self.state == ConnectionState.MANUALLY_CLOSED:
            return
        logger.warning(f"No snapshot within {self.config.FALLBACK_TIMEOUT}s, showing fallback data")
        self.engine.apply_snapshot(build_fallback_records(), fallback=True)
