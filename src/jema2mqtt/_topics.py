"""MQTT topic naming.

Topics are recomputed from the entity on every use, never stored, so
the subscriber side and the publisher side always agree::

    {namespace}/{entity}/set           → command (subscribed)
    {namespace}/{entity}/state         → state (published, retained)
    {namespace}/{entity}/availability  → availability (published)
    {discovery}/{domain}/{unique_id}/config → discovery (retained)
"""

from __future__ import annotations

from enum import StrEnum

from jema2mqtt._models import Entity

DEFAULT_NAMESPACE = "jema2mqtt"


class TopicCategory(StrEnum):
    COMMAND = "set"
    STATE = "state"
    AVAILABILITY = "availability"


def topic_for(
    entity: Entity,
    category: TopicCategory,
    *,
    namespace: str = DEFAULT_NAMESPACE,
) -> str:
    """Return the topic for *entity* in *category*."""
    return f"{namespace}/{entity.id}/{category}"


def discovery_topic(prefix: str, entity: Entity, unique_id: str) -> str:
    """Return the Home Assistant discovery config topic for *entity*."""
    return f"{prefix}/{entity.domain}/{unique_id}/config"
