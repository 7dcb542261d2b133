"""Long-lived websocket channel for push notifications.

A channel is idle, connected, or waiting to reconnect. Errors and closes go
through the same scheduler, which keeps at most one reconnect timer armed.
Reconnection uses a fixed delay and never gives up; only ``stop`` ends it.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import websockets

logger = logging.getLogger(__name__)

SubscriptionFactory = Callable[[], list[dict[str, Any]]]
MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


class PushChannel:
    """Websocket subscription with fixed-delay reconnects.

    Example:
        channel = PushChannel(
            "btc",
            "wss://ws.blockchain.info/inv",
            subscriptions=lambda: [{"op": "unconfirmed_sub"}],
            on_message=handle,
        )
        channel.start()
        ...
        await channel.stop()
    """

    def __init__(
        self,
        name: str,
        url: str,
        subscriptions: SubscriptionFactory,
        on_message: MessageHandler,
        reconnect_delay: float = 5.0,
        open_timeout: float = 30.0,
        connect: Optional[Callable[..., Any]] = None,
    ):
        """Initialize the channel.

        Args:
            name: Label used in logs
            url: Websocket endpoint
            subscriptions: Returns the frames to send after each (re)connect
            on_message: Coroutine called with every decoded inbound frame
            reconnect_delay: Seconds to wait before reconnecting
            open_timeout: Handshake timeout in seconds
            connect: Connection factory (defaults to ``websockets.connect``)
        """
        self.name = name
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.open_timeout = open_timeout
        self._subscriptions = subscriptions
        self._on_message = on_message
        self._connect = connect or websockets.connect

        self._task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._stopped = True
        self.connected = False
        self.reconnect_count = 0

    @property
    def state(self) -> str:
        if self.connected:
            return "connected"
        if self._reconnect_handle is not None:
            return "reconnect-pending"
        if self._task is not None and not self._task.done():
            return "connecting"
        return "idle"

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def start(self) -> None:
        """Open a fresh connection, dropping any current one."""
        self._cancel_reconnect()
        if self._task is not None and not self._task.done():
            self._task.cancel()

        self._stopped = False
        self._task = asyncio.create_task(self._run(), name=f"{self.name}-push")

    async def stop(self) -> None:
        """Close the connection without scheduling a reconnect."""
        self._stopped = True
        self._cancel_reconnect()

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.connected = False
        logger.info(f"{self.name} push channel stopped")

    async def restart(self) -> None:
        """Reconnect so that subscriptions reflect the current address list."""
        await self.stop()
        self.start()

    async def _run(self) -> None:
        try:
            async with self._connect(
                self.url,
                open_timeout=self.open_timeout,
                ping_interval=30,
                ping_timeout=10,
            ) as ws:
                self.connected = True
                logger.info(f"{self.name} websocket connection established")

                frames = self._subscriptions()
                if frames:
                    logger.info(f"Sending {len(frames)} {self.name} subscription frames")
                for frame in frames:
                    await ws.send(json.dumps(frame))

                async for raw in ws:
                    await self._dispatch(raw)

        except asyncio.CancelledError:
            self.connected = False
            raise
        except Exception as e:
            self.connected = False
            self._on_error(e)

        self.connected = False
        self._on_close()

    async def _dispatch(self, raw: Any) -> None:
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            message = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring undecodable {self.name} frame: {e}")
            return

        if not isinstance(message, dict):
            return

        try:
            await self._on_message(message)
        except Exception as e:
            logger.error(f"Error processing {self.name} websocket message: {e}")

    def _on_error(self, error: Exception) -> None:
        logger.error(f"{self.name} websocket error: {error}")
        self._schedule_reconnect()

    def _on_close(self) -> None:
        logger.info(f"{self.name} websocket connection closed")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._stopped:
            return

        self._cancel_reconnect()
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._reconnect)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._stopped:
            return

        self.reconnect_count += 1
        logger.info(f"Attempting to reconnect {self.name} websocket (attempt {self.reconnect_count})...")
        self._task = asyncio.create_task(self._run(), name=f"{self.name}-push")
