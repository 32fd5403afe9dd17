"""MQTT client port and adapters.

Provides MqttPort (Protocol) and three implementations:

- MqttClient — real aiomqtt-based client
- MockMqttClient — test double that records calls
- NullMqttClient — silent no-op adapter

Design decisions:

- aiomqtt imported lazily inside MqttClient.connect() so Mock/Null
  work without aiomqtt installed
- connect() fails fast with BrokerConnectionError; once the first
  session is up, a dropped session is reopened with exponential backoff
  and the tracked subscriptions are restored
- Payloads that are not UTF-8 are dropped before reaching callbacks
- MessageCallback dispatches (topic, payload) to registered handlers
- No topic filtering — the TopicRouter maps topics to entities
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from jema2mqtt._settings import MqttSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (topic, payload) for each inbound message."""

# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Port contract for MQTT publish/subscribe.

    All broker interaction goes through this protocol so the bridge
    can be driven by an in-memory double in tests.
    """

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topics: Sequence[str]) -> None: ...

    def on_message(self, callback: MessageCallback) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Adapters that own a broker connection."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...


# ---------------------------------------------------------------------------
# Null adapter
# ---------------------------------------------------------------------------


@dataclass
class NullMqttClient:
    """Silent no-op MQTT adapter.

    Every method is a no-op that logs at DEBUG level.
    """

    async def publish(
        self,
        topic: str,
        payload: str,  # noqa: ARG002
        *,
        retain: bool = False,  # noqa: ARG002
        qos: int = 1,  # noqa: ARG002
    ) -> None:
        """Silently discard a publish request."""
        logger.debug("NullMqttClient.publish(%s) discarded", topic)

    async def subscribe(self, topics: Sequence[str]) -> None:
        """Silently discard a subscribe request."""
        logger.debug("NullMqttClient.subscribe(%s) discarded", list(topics))

    def on_message(self, callback: MessageCallback) -> None:  # noqa: ARG002
        """Inbound messages never arrive."""


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory test double that records MQTT interactions.

    Records publishes, subscriptions and the connection lifecycle for
    assertion.  Supports callback registration and simulated message
    delivery via ``deliver()``.  Set ``fail_connect`` or
    ``fail_publish_topics`` to inject broker failures.
    """

    published: list[tuple[str, str, bool, int]] = field(default_factory=list)
    subscriptions: list[str] = field(default_factory=list)
    events: list[str] = field(default_factory=list)
    fail_connect: bool = False
    fail_publish_topics: set[str] = field(default_factory=set)
    connected: bool = False
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    # -- MqttPort methods --------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Record a publish call."""
        if topic in self.fail_publish_topics:
            msg = f"simulated publish failure on {topic}"
            raise RuntimeError(msg)
        self.published.append((topic, payload, retain, qos))
        self.events.append(f"publish:{topic}")

    async def subscribe(self, topics: Sequence[str]) -> None:
        """Record a subscribe call."""
        self.subscriptions.extend(topics)
        self.events.append("subscribe")

    def on_message(self, callback: MessageCallback) -> None:
        """Register an inbound-message callback."""
        self._callbacks.append(callback)

    # -- MqttLifecycle methods ---------------------------------------------

    async def connect(self) -> None:
        """Record a connect call, or fail when ``fail_connect`` is set."""
        from jema2mqtt._errors import BrokerConnectionError

        if self.fail_connect:
            msg = "simulated broker refusal"
            raise BrokerConnectionError(msg)
        self.connected = True
        self.events.append("connect")

    async def disconnect(self) -> None:
        """Record a disconnect call."""
        self.connected = False
        self.events.append("disconnect")

    # -- Test helpers -------------------------------------------------------

    async def deliver(self, topic: str, payload: str) -> None:
        """Simulate an inbound message by invoking all callbacks."""
        for cb in self._callbacks:
            await cb(topic, payload)

    @property
    def publish_count(self) -> int:
        """Number of recorded publishes."""
        return len(self.published)

    def reset(self) -> None:
        """Clear all recorded data and callbacks."""
        self.published.clear()
        self.subscriptions.clear()
        self.events.clear()
        self._callbacks.clear()

    def get_messages_for(self, topic: str) -> list[tuple[str, bool, int]]:
        """Return ``(payload, retain, qos)`` tuples for *topic*."""
        return [
            (payload, retain, qos)
            for t, payload, retain, qos in self.published
            if t == topic
        ]


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Production MQTT adapter backed by *aiomqtt*.

    ``connect()`` opens the first broker session and fails fast.  After
    that a background task feeds inbound messages to the registered
    callbacks and reopens the session whenever it drops, restoring the
    tracked subscriptions.  ``disconnect()`` stops that task and closes
    the session.

    ``aiomqtt`` is imported lazily inside ``connect()`` so the mock
    and null adapters work without the dependency installed.
    """

    settings: MqttSettings
    qos: int = 1

    # internal state --------------------------------------------------------
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _subscriptions: list[str] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _client: Any = field(default=None, init=False, repr=False)
    _stack: contextlib.AsyncExitStack | None = field(
        default=None,
        init=False,
        repr=False,
    )
    _listen_task: asyncio.Task[None] | None = field(
        default=None,
        init=False,
        repr=False,
    )

    # -- MqttPort methods --------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish a message to the broker.

        Raises:
            RuntimeError: If the client is not connected.
        """
        if self._client is None:
            msg = "MqttClient is not connected"
            raise RuntimeError(msg)
        await self._client.publish(topic, payload, retain=retain, qos=qos)
        logger.debug("Published to %s (qos=%d, retain=%s)", topic, qos, retain)

    async def subscribe(self, topics: Sequence[str]) -> None:
        """Subscribe to every topic in *topics* with a single request.

        The topics are tracked so they can be restored after a
        reconnection.

        Raises:
            RuntimeError: If the client is not connected.
        """
        if self._client is None:
            msg = "MqttClient is not connected"
            raise RuntimeError(msg)
        if not topics:
            return
        self._subscriptions.extend(t for t in topics if t not in self._subscriptions)
        await self._client.subscribe([(topic, self.qos) for topic in topics])

    def on_message(self, callback: MessageCallback) -> None:
        """Register a callback for inbound messages."""
        self._callbacks.append(callback)

    # -- Lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        """Open the broker session.

        Raises:
            BrokerConnectionError: If the broker is unreachable or
                rejects the connection.
        """
        from jema2mqtt._errors import BrokerConnectionError

        try:
            import aiomqtt  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "aiomqtt is required to use MqttClient"
            raise RuntimeError(msg) from exc

        try:
            await self._open_session(aiomqtt)
        except (aiomqtt.MqttError, OSError) as exc:
            msg = (
                f"cannot connect to MQTT broker "
                f"{self.settings.host}:{self.settings.port}: {exc}"
            )
            raise BrokerConnectionError(msg) from exc

        self._listen_task = asyncio.create_task(self._connection_loop(aiomqtt))
        logger.info(
            "MQTT connected to %s:%d",
            self.settings.host,
            self.settings.port,
        )

    async def disconnect(self) -> None:
        """Stop the listener and close the session.

        Idempotent — safe to call multiple times.
        """
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        stack, self._stack = self._stack, None
        self._client = None
        if stack is not None:
            await stack.aclose()

    @property
    def is_connected(self) -> bool:
        """Whether the client currently holds a broker session."""
        return self._client is not None

    # -- Internal -----------------------------------------------------------

    async def _open_session(self, aiomqtt: Any) -> None:
        password: str | None = None
        if self.settings.password is not None:
            password = self.settings.password.get_secret_value()

        stack = contextlib.AsyncExitStack()
        self._client = await stack.enter_async_context(
            aiomqtt.Client(
                hostname=self.settings.host,
                port=self.settings.port,
                username=self.settings.username,
                password=password,
                identifier=self.settings.client_id or None,
                keepalive=self.settings.keepalive,
            ),
        )
        self._stack = stack

    async def _close_session(self) -> None:
        stack, self._stack = self._stack, None
        self._client = None
        if stack is None:
            return
        try:
            await stack.aclose()
        except Exception:
            logger.debug("Error while closing dropped MQTT session", exc_info=True)

    async def _connection_loop(self, aiomqtt: Any) -> None:
        """Dispatch inbound messages; reopen the session when it drops.

        The delay before each attempt starts at ``reconnect_interval``
        and doubles per consecutive failure, capped at
        ``reconnect_max_interval``.
        """
        delay = self.settings.reconnect_interval
        while True:
            try:
                if self._client is None:
                    await self._open_session(aiomqtt)
                    if self._subscriptions:
                        await self._client.subscribe(
                            [(topic, self.qos) for topic in self._subscriptions],
                        )
                    logger.info(
                        "MQTT reconnected to %s:%d",
                        self.settings.host,
                        self.settings.port,
                    )
                    delay = self.settings.reconnect_interval
                async for message in self._client.messages:
                    await self._dispatch(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning(
                    "MQTT connection lost, reconnecting in %.1fs",
                    delay,
                    exc_info=True,
                )
            else:
                logger.warning(
                    "MQTT message stream ended, reconnecting in %.1fs",
                    delay,
                )
            await self._close_session()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.settings.reconnect_max_interval)

    async def _dispatch(self, message: Any) -> None:
        """Decode and fan-out an inbound message to callbacks."""
        topic = str(message.topic)

        if message.payload is None:
            logger.debug("Skipping message with None payload on %s", topic)
            return

        if isinstance(message.payload, (bytes, bytearray)):
            try:
                payload = message.payload.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("Dropping non-UTF-8 payload on %s", topic)
                return
        else:
            payload = str(message.payload)

        for cb in self._callbacks:
            try:
                await cb(topic, payload)
            except Exception:
                logger.exception("Error in message callback for %s", topic)
