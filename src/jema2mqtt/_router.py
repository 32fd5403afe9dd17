"""MQTT command topic routing.

Maps each entity's command topic back to the entity id and hands the
payload to the command handler.  The command topics are computed with
:func:`~jema2mqtt._topics.topic_for` when the router is built, so the
subscriber and the publisher share one topic layout.

Topic convention::

    {namespace}/{entity}/set    → command topic (subscribed, routed here)
    {namespace}/{entity}/state  → state topic (published, not routed)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from jema2mqtt._models import Entity
from jema2mqtt._topics import DEFAULT_NAMESPACE, TopicCategory, topic_for

logger = logging.getLogger(__name__)

CommandHandler = Callable[[str, str], None]
"""Receives (entity_id, payload) for each routed command."""


class TopicRouter:
    """Routes inbound command messages to the entity they address.

    Messages on topics that are not the command topic of a known
    entity are ignored.
    """

    def __init__(
        self,
        *,
        entities: Iterable[Entity],
        handler: CommandHandler,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        self._namespace = namespace
        self._commands = {
            topic_for(entity, TopicCategory.COMMAND, namespace=namespace): entity.id
            for entity in entities
        }
        self._handler = handler
        self._enabled = True

    async def route(self, topic: str, payload: str) -> None:
        """Route an inbound MQTT message to its entity's handler."""
        if not self._enabled:
            logger.debug("Router disabled, dropping message on %s", topic)
            return

        entity_id = self._commands.get(topic)
        if entity_id is None:
            if self._looks_like_command(topic):
                logger.warning("No entity configured for command topic %s", topic)
            return

        self._handler(entity_id, payload)

    def disable(self) -> None:
        """Drop every message from now on."""
        self._enabled = False

    def _looks_like_command(self, topic: str) -> bool:
        return topic.startswith(f"{self._namespace}/") and topic.endswith(
            f"/{TopicCategory.COMMAND}",
        )

    @property
    def subscriptions(self) -> list[str]:
        """Command topics for every routable entity, in sorted order."""
        return sorted(self._commands)
