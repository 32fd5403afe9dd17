"""Command and state reconciliation between MQTT and the terminals.

Two independent paths per entity:

- **Command path** (broker → hardware): a ``ACTIVE``/``INACTIVE``
  command reads the monitor and pulses the control line only when the
  monitored state differs from the command.  Retained or repeated
  commands therefore never make the terminal oscillate.  Any other
  payload is dropped.
- **Change path** (hardware → broker): every monitored transition is
  published to the entity's state topic, retained.

Steady-state failures are isolated to the entity: they are logged,
reported through the :class:`ErrorPublisher`, and the operation is
abandoned.  The next broker retransmission is the only retry.

Known race: there is no in-flight flag between a pulse and the
monitor reflecting it.  Two commands arriving inside that window both
read the old state and both pulse.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any

from jema2mqtt._errors import ErrorPublisher, TransientOperationError
from jema2mqtt._models import Entity, StatusToken
from jema2mqtt._mqtt import MqttPort
from jema2mqtt._registry import EntityRegistry
from jema2mqtt._topics import DEFAULT_NAMESPACE, TopicCategory, topic_for

logger = logging.getLogger(__name__)


@dataclass
class StateSynchronizer:
    """Applies broker commands to terminals and publishes their state.

    Args:
        registry: Entities and their bindings.
        mqtt: Shared broker connection.
        namespace: Topic namespace.
        qos: QoS for state publishes.
        error_publisher: Optional remote error reporting.
    """

    registry: EntityRegistry
    mqtt: MqttPort
    namespace: str = DEFAULT_NAMESPACE
    qos: int = 1
    error_publisher: ErrorPublisher | None = None
    _tasks: set[asyncio.Task[None]] = field(default_factory=set, init=False, repr=False)
    _accepting: bool = field(default=True, init=False, repr=False)

    # -- Command path -------------------------------------------------------

    async def handle_command(self, entity_id: str, payload: str) -> None:
        """Reconcile one command for *entity_id* against its monitor."""
        token = StatusToken.parse(payload)
        if token is None:
            logger.debug(
                "Ignoring unknown command %r for '%s'",
                payload,
                entity_id,
                extra={"entity": entity_id},
            )
            return

        binding = self.registry.binding(entity_id)
        try:
            monitor = await binding.read_monitor()
        except Exception as exc:
            await self._report("read monitor", entity_id, exc)
            return

        if monitor == token.as_bool():
            logger.debug(
                "'%s' already %s, no pulse",
                entity_id,
                token,
                extra={"entity": entity_id},
            )
            return

        try:
            await binding.pulse_control()
        except Exception as exc:
            await self._report("pulse control", entity_id, exc)
            return
        logger.info(
            "Pulsed '%s' towards %s",
            entity_id,
            token,
            extra={"entity": entity_id},
        )

    def dispatch_command(self, entity_id: str, payload: str) -> None:
        """Handle a command as its own task so entities never wait on each other."""
        self._spawn(self.handle_command(entity_id, payload))

    # -- Change path --------------------------------------------------------

    def attach(self, entity: Entity) -> None:
        """Subscribe to monitored-state transitions of *entity*."""

        def _on_change(value: bool) -> None:
            self._spawn(self.publish_state(entity, value))

        self.registry.binding(entity.id).on_monitor_change(_on_change)

    async def publish_state(self, entity: Entity, value: bool) -> None:
        """Publish *value* to the state topic of *entity* (retained)."""
        token = StatusToken.from_bool(value)
        topic = topic_for(entity, TopicCategory.STATE, namespace=self.namespace)
        try:
            await self.mqtt.publish(topic, str(token), retain=True, qos=self.qos)
        except Exception as exc:
            await self._report("publish state", entity.id, exc)
            return
        logger.debug(
            "State of '%s' is %s", entity.id, token, extra={"entity": entity.id}
        )

    async def publish_current_state(self, entity: Entity) -> None:
        """Read the monitor and publish it.  Failures propagate (startup use)."""
        value = await self.registry.binding(entity.id).read_monitor()
        token = StatusToken.from_bool(value)
        topic = topic_for(entity, TopicCategory.STATE, namespace=self.namespace)
        await self.mqtt.publish(topic, str(token), retain=True, qos=self.qos)

    # -- Task bookkeeping ---------------------------------------------------

    async def close(self, timeout: float | None = None) -> None:
        """Wait for in-flight handlers, then stop accepting new work.

        State changes caused by an in-flight pulse are still published.
        With a *timeout*, handlers still running after that many seconds
        are left to finish on their own and ``close()`` returns anyway.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                logger.warning(
                    "%d handler(s) still running after %.1fs, not waiting",
                    len(self._tasks),
                    timeout,
                )
                break
            await asyncio.wait(set(self._tasks), timeout=remaining)
        self._accepting = False

    async def drain(self) -> None:
        """Wait until every spawned handler has finished."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        if not self._accepting:
            coro.close()
            return
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _report(self, operation: str, entity_id: str, exc: Exception) -> None:
        error = TransientOperationError(operation, entity_id, str(exc))
        logger.error("%s", error, exc_info=exc, extra={"entity": entity_id})
        if self.error_publisher is not None:
            await self.error_publisher.publish(error, device=entity_id)
