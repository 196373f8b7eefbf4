"""
Gateway session connection for the camera client.

The client keeps one authenticated WebSocket to the gateway's /session
endpoint open for as long as it runs. Detections and user intents are queued
by the camera loop and written by a sender task; gateway events (scores,
countdown, curation, errors) are parsed and handed to `on_message`. Lost
connections are retried with a doubling delay.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from handsign.message import Message, MessageError, parse_message

logger = logging.getLogger(__name__)

SEND_QUEUE_SIZE = 100


@dataclass
class ConnectionStats:
    connected: bool = False
    connect_time: Optional[float] = None
    disconnect_time: Optional[float] = None
    reconnect_attempts: int = 0
    messages_sent: int = 0
    messages_failed: int = 0
    messages_received: int = 0
    messages_invalid: int = 0
    last_send_time: Optional[float] = None


class WebSocketClient:
    """
    Reconnecting client for the gateway session socket.

    `send` never blocks the camera loop: messages go through a bounded queue
    and are dropped (and counted) when it is full or when no connection is
    up by the time the sender reaches them.
    """

    def __init__(
        self,
        server_url: str,
        token: str,
        max_backoff_seconds: float = 30.0,
        initial_backoff_seconds: float = 1.0,
        on_connected: Optional[Callable[[], Awaitable[None]]] = None,
        on_disconnected: Optional[Callable[[], Awaitable[None]]] = None,
        on_message: Optional[Callable[[Message], None]] = None,
    ):
        """
        Args:
            server_url: Gateway session URL, e.g. ws://127.0.0.1:8080/session
            token: Bearer token expected by the gateway
            max_backoff_seconds: Upper bound for the reconnect delay
            initial_backoff_seconds: First reconnect delay, restored after
                every successful connection
            on_connected: Awaited once per established connection
            on_disconnected: Awaited once per lost connection
            on_message: Called with every gateway event that parses
        """
        self.server_url = server_url
        self.token = token
        self.max_backoff = max_backoff_seconds
        self.initial_backoff = initial_backoff_seconds
        self.on_connected = on_connected
        self.on_disconnected = on_disconnected
        self.on_message = on_message

        self.stats = ConnectionStats()

        self._ws: Optional[ClientConnection] = None
        self._running = False
        self._backoff = initial_backoff_seconds
        self._outgoing: asyncio.Queue = asyncio.Queue(maxsize=SEND_QUEUE_SIZE)
        self._tasks: list = []

    @property
    def connected(self) -> bool:
        return self._ws is not None and self.stats.connected

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._run_connection()),
            asyncio.create_task(self._run_sender()),
        ]
        logger.info(f"Gateway client started for {self.server_url}")

    async def stop(self) -> None:
        """Cancel both tasks and close the socket if one is open."""
        if not self._running:
            return
        self._running = False

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self.stats.connected = False
        logger.info("Gateway client stopped")

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    def send(self, message: Message) -> bool:
        """Queue `message`; False (and counted as failed) if the queue is full."""
        try:
            self._outgoing.put_nowait(message.to_json())
        except asyncio.QueueFull:
            self.stats.messages_failed += 1
            logger.warning(f"Outgoing queue full, {message.type} dropped")
            return False
        return True

    async def _run_sender(self) -> None:
        while self._running:
            payload = await self._outgoing.get()
            ws = self._ws
            if ws is None or not self.stats.connected:
                self.stats.messages_failed += 1
                continue
            try:
                await ws.send(payload)
            except (ConnectionClosed, WebSocketException) as e:
                self.stats.messages_failed += 1
                logger.warning(f"Send failed: {e}")
                continue
            self.stats.messages_sent += 1
            self.stats.last_send_time = time.time()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def _run_connection(self) -> None:
        while self._running:
            try:
                await self._session()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Gateway connection failed: {e}")

            if not self._running:
                return
            delay = self._backoff
            self._backoff = min(self._backoff * 2, self.max_backoff)
            self.stats.reconnect_attempts += 1
            logger.info(f"Reconnecting in {delay:.1f}s")
            await asyncio.sleep(delay)

    async def _session(self) -> None:
        """Open one connection and read gateway events until it closes."""
        logger.info(f"Connecting to {self.server_url}")
        try:
            ws = await connect(
                self.server_url,
                additional_headers={"Authorization": f"Bearer {self.token}"},
                ping_interval=20,
                ping_timeout=10,
                close_timeout=5,
            )
        except InvalidStatus as e:
            logger.error(f"Gateway refused the session: HTTP {e.response.status_code}")
            raise

        self._ws = ws
        self._backoff = self.initial_backoff
        self.stats.connected = True
        self.stats.connect_time = time.time()
        logger.info("Connected to gateway")

        try:
            if self.on_connected:
                await self.on_connected()
            async for data in ws:
                self._handle_incoming(data)
        except ConnectionClosed as e:
            logger.info(f"Gateway closed the session: {e}")
        finally:
            self._ws = None
            self.stats.connected = False
            self.stats.disconnect_time = time.time()
            if self.on_disconnected:
                await self.on_disconnected()

    def _handle_incoming(self, data) -> None:
        self.stats.messages_received += 1
        try:
            msg = parse_message(data)
        except MessageError as e:
            self.stats.messages_invalid += 1
            logger.warning(f"Unreadable gateway event: {e}")
            return
        logger.debug(f"Gateway event: {msg.type}")
        if self.on_message:
            self.on_message(msg)

    def get_stats(self) -> dict:
        stats = dict(vars(self.stats))
        stats["connected"] = self.connected
        stats["queue_size"] = self._outgoing.qsize()
        return stats
