"""Bridge lifecycle: ordered startup, steady state, ordered shutdown.

The :class:`Bridge` is the composition root.  It owns the process-wide
lifecycle state::

    starting → ready → stopping → stopped

Startup order:

1. Build every discovery payload (unknown domains fail here, before
   any hardware or network access).
2. Acquire one hardware binding per entity, concurrently.
3. Connect to the broker.
4. Subscribe to every command topic.
5. Per entity, concurrently: attach the change listener, publish the
   current state, publish the discovery payload.
6. ``ready``: publish ``online`` once, then start the heartbeat.

Any startup failure releases what was already acquired and propagates.

Shutdown order (runs exactly once, every step best-effort):

1. Stop routing commands and cancel the heartbeat.
2. Wait for in-flight command and state handlers, at most
   ``shutdown_timeout`` seconds.
3. Publish ``offline`` for every entity.
4. Disconnect from the broker.
5. Release the hardware bindings.

Typical usage::

    settings = Settings()
    bridge = Bridge.from_settings(settings, version=__version__)
    await bridge.run()
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import uuid
from collections.abc import Awaitable
from enum import StrEnum
from typing import Any

from jema2mqtt._discovery import DiscoveryContext, build_discovery
from jema2mqtt._errors import ErrorPublisher
from jema2mqtt._hardware import HardwarePort, resolve_hardware
from jema2mqtt._health import AvailabilityHeartbeat
from jema2mqtt._models import (
    AvailabilityToken,
    BridgeConfig,
    Entity,
    load_bridge_config,
)
from jema2mqtt._mqtt import MqttClient, MqttLifecycle, MqttPort
from jema2mqtt._registry import EntityRegistry
from jema2mqtt._router import TopicRouter
from jema2mqtt._settings import Settings
from jema2mqtt._sync import StateSynchronizer
from jema2mqtt._topics import DEFAULT_NAMESPACE, discovery_topic

logger = logging.getLogger(__name__)


class LifecycleState(StrEnum):
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Bridge:
    """Bridges a fixed set of JEM-A terminals to MQTT.

    Args:
        config: Device identifier and entities.
        mqtt: Broker connection (connected by :meth:`start` when it
            implements :class:`MqttLifecycle`).
        hardware: Hardware access layer.
        namespace: Topic namespace for entity topics.
        discovery_prefix: Home Assistant discovery prefix.
        qos: QoS for subscriptions and publishes.
        availability_interval: Seconds between ``online`` heartbeats.
        shutdown_timeout: Seconds shutdown waits for in-flight command
            handlers before publishing ``offline``.
        version: Software version advertised in discovery payloads.
    """

    def __init__(
        self,
        *,
        config: BridgeConfig,
        mqtt: MqttPort,
        hardware: HardwarePort,
        namespace: str = DEFAULT_NAMESPACE,
        discovery_prefix: str = "homeassistant",
        qos: int = 1,
        availability_interval: float = 10.0,
        shutdown_timeout: float = 5.0,
        version: str = "0.0.0",
    ) -> None:
        if availability_interval <= 0:
            msg = f"availability_interval must be positive, got {availability_interval}"
            raise ValueError(msg)
        self._config = config
        self._mqtt = mqtt
        self._hardware = hardware
        self._namespace = namespace
        self._discovery_prefix = discovery_prefix
        self._qos = qos
        self._availability_interval = availability_interval
        self._shutdown_timeout = shutdown_timeout
        self._discovery = DiscoveryContext(
            device_id=config.device_id,
            qos=qos,
            namespace=namespace,
            sw_version=version,
        )
        self._state = LifecycleState.STARTING
        self._started = False
        self._registry: EntityRegistry | None = None
        self._sync: StateSynchronizer | None = None
        self._router: TopicRouter | None = None
        self._heartbeat: AvailabilityHeartbeat | None = None
        self._connected = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        version: str = "0.0.0",
        dry_run: bool = False,
        mqtt: MqttPort | None = None,
        hardware: HardwarePort | None = None,
        config: BridgeConfig | None = None,
    ) -> Bridge:
        """Wire a bridge from settings.

        Loads the entity file and resolves the hardware adapter unless
        they are passed in.  When no explicit ``client_id`` is
        configured, one is generated as ``jema2mqtt-{hex8}``.

        Raises:
            ConfigurationError: If the entity file or the hardware
                adapter cannot be loaded.
        """
        resolved_config = (
            config if config is not None else load_bridge_config(settings.config_file)
        )
        resolved_hardware = (
            hardware
            if hardware is not None
            else resolve_hardware(settings.hardware_adapter, dry_run=dry_run)
        )
        if mqtt is None:
            mqtt_settings = settings.mqtt
            if not mqtt_settings.client_id:
                mqtt_settings = mqtt_settings.model_copy(
                    update={"client_id": f"jema2mqtt-{uuid.uuid4().hex[:8]}"},
                )
            mqtt = MqttClient(settings=mqtt_settings, qos=settings.qos)
        return cls(
            config=resolved_config,
            mqtt=mqtt,
            hardware=resolved_hardware,
            namespace=settings.mqtt.topic_prefix,
            discovery_prefix=settings.discovery_prefix,
            qos=settings.qos,
            availability_interval=settings.availability_interval,
            shutdown_timeout=settings.shutdown_timeout,
            version=version,
        )

    # -- Read-only properties -----------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def entities(self) -> tuple[Entity, ...]:
        return self._config.entities

    @property
    def synchronizer(self) -> StateSynchronizer | None:
        """The state synchronizer, available once hardware is acquired."""
        return self._sync

    # -- Startup ------------------------------------------------------------

    async def start(self) -> None:
        """Run the startup sequence and enter ``ready``.

        Raises:
            ConfigurationError: Unknown entity domain.
            HardwareUnavailableError: A binding could not be acquired.
            BrokerConnectionError: The broker could not be reached.
            RuntimeError: If the bridge was already started.
        """
        if self._started:
            msg = "Bridge.start() may only be called once"
            raise RuntimeError(msg)
        self._started = True
        logger.info("jema2mqtt: start (%d entity(ies))", len(self.entities))

        try:
            await self._startup()
        except BaseException:
            await self._abort_startup()
            raise

        if self._state is not LifecycleState.STARTING:
            # shutdown() ran while startup was in flight
            return
        self._state = LifecycleState.READY
        assert self._heartbeat is not None
        await self._heartbeat.publish_all(AvailabilityToken.ONLINE)
        self._heartbeat.start()
        logger.info("jema2mqtt: ready")

    async def _startup(self) -> None:
        payloads = {
            entity.id: build_discovery(entity, self._discovery)
            for entity in self.entities
        }

        self._registry = await EntityRegistry.acquire(self.entities, self._hardware)

        if isinstance(self._mqtt, MqttLifecycle):
            await self._mqtt.connect()
        self._connected = True
        logger.info("mqtt-client: connected")

        error_publisher = ErrorPublisher(mqtt=self._mqtt, topic_prefix=self._namespace)
        self._sync = StateSynchronizer(
            registry=self._registry,
            mqtt=self._mqtt,
            namespace=self._namespace,
            qos=self._qos,
            error_publisher=error_publisher,
        )
        self._router = TopicRouter(
            entities=self.entities,
            handler=self._sync.dispatch_command,
            namespace=self._namespace,
        )
        self._mqtt.on_message(self._router.route)
        subscriptions = self._router.subscriptions
        if subscriptions:
            for topic in subscriptions:
                logger.debug("subscribe: %s", topic)
            await self._mqtt.subscribe(subscriptions)

        await asyncio.gather(
            *(self._announce(entity, payloads[entity.id]) for entity in self.entities),
        )

        self._heartbeat = AvailabilityHeartbeat(
            mqtt=self._mqtt,
            entities=self.entities,
            interval=self._availability_interval,
            namespace=self._namespace,
            qos=self._qos,
            error_publisher=error_publisher,
        )

    async def _announce(self, entity: Entity, payload: dict[str, Any]) -> None:
        """Attach the change listener, publish current state and discovery."""
        assert self._sync is not None
        self._sync.attach(entity)
        await self._sync.publish_current_state(entity)
        await self._mqtt.publish(
            discovery_topic(self._discovery_prefix, entity, payload["unique_id"]),
            json.dumps(payload),
            retain=True,
            qos=self._qos,
        )

    async def _abort_startup(self) -> None:
        self._state = LifecycleState.STOPPED
        if self._router is not None:
            self._router.disable()
        if self._connected and isinstance(self._mqtt, MqttLifecycle):
            await self._guard("broker disconnect", self._mqtt.disconnect())
        if self._registry is not None:
            await self._guard("hardware release", self._registry.release_all())

    # -- Shutdown -----------------------------------------------------------

    async def shutdown(self) -> None:
        """Run the shutdown sequence.  Calls after the first are no-ops."""
        if self._state in (LifecycleState.STOPPING, LifecycleState.STOPPED):
            logger.debug("Shutdown already %s", self._state)
            return
        self._state = LifecycleState.STOPPING
        logger.info("jema2mqtt: shutdown")

        if self._router is not None:
            self._router.disable()

        if self._heartbeat is not None:
            await self._guard("heartbeat cancellation", self._heartbeat.stop())
        if self._sync is not None:
            await self._guard(
                "in-flight handlers",
                self._sync.close(timeout=self._shutdown_timeout),
            )
        if self._heartbeat is not None:
            await self._guard(
                "offline publication",
                self._heartbeat.publish_all(AvailabilityToken.OFFLINE),
            )
        if self._connected and isinstance(self._mqtt, MqttLifecycle):
            await self._guard("broker disconnect", self._mqtt.disconnect())
            logger.info("mqtt-client: closed")
        if self._registry is not None:
            await self._guard("hardware release", self._registry.release_all())

        self._state = LifecycleState.STOPPED
        logger.info("Shutdown complete")

    @staticmethod
    async def _guard(step: str, awaitable: Awaitable[object]) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception("Shutdown step '%s' failed", step)

    # -- Run ----------------------------------------------------------------

    async def run(self, *, shutdown_event: asyncio.Event | None = None) -> None:
        """Start, block until a termination signal, then shut down.

        Args:
            shutdown_event: Override shutdown event (skip OS signal
                handlers).  Useful in tests to control shutdown timing.
        """
        event = self._install_signal_handlers(shutdown_event)
        await self.start()
        try:
            await event.wait()
        finally:
            await self.shutdown()

    @staticmethod
    def _install_signal_handlers(
        shutdown_event: asyncio.Event | None,
    ) -> asyncio.Event:
        """Install SIGTERM/SIGINT handlers. Returns the shutdown event."""
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event
