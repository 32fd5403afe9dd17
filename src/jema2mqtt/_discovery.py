"""Home Assistant MQTT discovery payloads.

Each entity is advertised once at startup on
``{discovery_prefix}/{domain}/{unique_id}/config`` (retained).  All
domains share the same base fields; the domain decides how the two
canonical tokens map onto Home Assistant's vocabulary:

======== ============================ ==============================
Domain   Command keys                 State keys
======== ============================ ==============================
lock     payload_lock / payload_unlock state_locked / state_unlocked
switch   payload_on / payload_off      state_on / state_off
cover    payload_close / payload_open  state_closed / state_open
======== ============================ ==============================

The first key of each pair carries ``ACTIVE``, the second ``INACTIVE``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from jema2mqtt._errors import ConfigurationError
from jema2mqtt._models import Entity, EntityDomain, StatusToken
from jema2mqtt._topics import DEFAULT_NAMESPACE, TopicCategory, topic_for

ORIGIN_NAME = "jema2mqtt"
MANUFACTURER = "nana4rider"
SUPPORT_URL = "https://github.com/nana4rider/jema2mqtt"

# (active command, inactive command, active state, inactive state)
_DOMAIN_KEYS: dict[str, tuple[str, str, str, str]] = {
    EntityDomain.LOCK: (
        "payload_lock",
        "payload_unlock",
        "state_locked",
        "state_unlocked",
    ),
    EntityDomain.SWITCH: ("payload_on", "payload_off", "state_on", "state_off"),
    EntityDomain.COVER: (
        "payload_close",
        "payload_open",
        "state_closed",
        "state_open",
    ),
}


@dataclass(frozen=True, slots=True)
class DiscoveryContext:
    """Deploy-wide values shared by every discovery payload."""

    device_id: str
    qos: int = 1
    namespace: str = DEFAULT_NAMESPACE
    sw_version: str = "0.0.0"

    def unique_id(self, entity: Entity) -> str:
        return f"{ORIGIN_NAME}_{self.device_id}_{entity.id}"


def build_discovery(entity: Entity, context: DiscoveryContext) -> dict[str, Any]:
    """Build the discovery payload for *entity*.

    Raises:
        ConfigurationError: If the entity's domain has no payload shape.
    """
    keys = _DOMAIN_KEYS.get(entity.domain)
    if keys is None:
        msg = f"unknown domain {entity.domain!r} for entity '{entity.id}'"
        raise ConfigurationError(msg)

    active_cmd, inactive_cmd, active_state, inactive_state = keys
    payload: dict[str, Any] = {
        "unique_id": context.unique_id(entity),
        "name": entity.name,
        "command_topic": topic_for(
            entity, TopicCategory.COMMAND, namespace=context.namespace
        ),
        "state_topic": topic_for(
            entity, TopicCategory.STATE, namespace=context.namespace
        ),
        "availability_topic": topic_for(
            entity, TopicCategory.AVAILABILITY, namespace=context.namespace
        ),
        "optimistic": False,
        "qos": context.qos,
        "retain": True,
        "device": {
            "identifiers": [f"{ORIGIN_NAME}_{context.device_id}"],
            "name": f"{ORIGIN_NAME}.{context.device_id}",
            "model": ORIGIN_NAME,
            "manufacturer": MANUFACTURER,
        },
        "origin": {
            "name": ORIGIN_NAME,
            "sw_version": context.sw_version,
            "support_url": SUPPORT_URL,
        },
        active_cmd: str(StatusToken.ACTIVE),
        inactive_cmd: str(StatusToken.INACTIVE),
        active_state: str(StatusToken.ACTIVE),
        inactive_state: str(StatusToken.INACTIVE),
    }
    return payload
