"""Availability heartbeat for every bridged entity.

A single background task publishes ``online`` to each entity's
availability topic at a fixed interval.  The bridge's shutdown
sequence cancels the task with :meth:`AvailabilityHeartbeat.stop` and
then awaits ``publish_all(OFFLINE)`` while the broker connection is
still open.

Topic layout::

    {namespace}/{entity}/availability   ← "online" / "offline"

Publication behaviour:

- **Not retained** — availability expires with the heartbeat.
- **Fire-and-forget** — a failed publish is logged and reported; the
  other entities are still published.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from jema2mqtt._errors import ErrorPublisher, TransientOperationError
from jema2mqtt._models import AvailabilityToken, Entity
from jema2mqtt._mqtt import MqttPort
from jema2mqtt._topics import DEFAULT_NAMESPACE, TopicCategory, topic_for

logger = logging.getLogger(__name__)


@dataclass
class AvailabilityHeartbeat:
    """Publishes entity availability on one shared timer.

    Parameters
    ----------
    mqtt:
        Shared broker connection.
    entities:
        Every configured entity.
    interval:
        Seconds between ``online`` heartbeats.
    namespace:
        Topic namespace.
    qos:
        QoS for availability publishes.
    error_publisher:
        Optional remote error reporting.
    """

    mqtt: MqttPort
    entities: Sequence[Entity]
    interval: float
    namespace: str = DEFAULT_NAMESPACE
    qos: int = 1
    error_publisher: ErrorPublisher | None = None
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.interval <= 0:
            msg = f"interval must be positive, got {self.interval}"
            raise ValueError(msg)
        self.entities = tuple(self.entities)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic ``online`` loop (first tick after one interval)."""
        if self.running:
            logger.debug("Heartbeat already running")
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Cancel the periodic loop.  Idempotent."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def publish_all(self, token: AvailabilityToken) -> None:
        """Publish *token* to every entity's availability topic, concurrently."""
        await asyncio.gather(
            *(self._safe_publish(entity, token) for entity in self.entities),
        )

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.publish_all(AvailabilityToken.ONLINE)

    async def _safe_publish(self, entity: Entity, token: AvailabilityToken) -> None:
        topic = topic_for(entity, TopicCategory.AVAILABILITY, namespace=self.namespace)
        try:
            await self.mqtt.publish(topic, str(token), retain=False, qos=self.qos)
        except Exception as exc:
            error = TransientOperationError(f"publish {token}", entity.id, str(exc))
            logger.error("%s", error, exc_info=exc, extra={"entity": entity.id})
            if self.error_publisher is not None:
                await self.error_publisher.publish(error, device=entity.id)
