"""Entity data model and entity configuration loading.

The entity list is read once at startup from a JSON file::

    {
        "deviceId": "living",
        "entities": [
            {
                "id": "front-door",
                "name": "Front Door",
                "domain": "lock",
                "controlGpio": 17,
                "monitorGpio": 27
            }
        ]
    }

Snake-case keys (``device_id``, ``control_gpio``, ...) are accepted too.
Entities are immutable after loading; ``id`` is the sole routing key
for broker messages and hardware events.
"""

from __future__ import annotations

import json
import logging
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Self

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from jema2mqtt._errors import ConfigurationError

logger = logging.getLogger(__name__)

_TOPIC_RESERVED = frozenset("/+#")


class EntityDomain(StrEnum):
    """Home Assistant platforms a binary-state entity can be exposed as."""

    LOCK = "lock"
    SWITCH = "switch"
    COVER = "cover"


class StatusToken(StrEnum):
    """Canonical two-valued status used on command and state topics."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"

    @classmethod
    def from_bool(cls, value: bool) -> StatusToken:
        return cls.ACTIVE if value else cls.INACTIVE

    @classmethod
    def parse(cls, payload: str) -> StatusToken | None:
        """Return the token for *payload*, or ``None`` if it is not one."""
        try:
            return cls(payload)
        except ValueError:
            return None

    def as_bool(self) -> bool:
        return self is StatusToken.ACTIVE


class AvailabilityToken(StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"


class Entity(BaseModel):
    """One physical binary-state device bridged to MQTT.

    ``control_handle`` and ``monitor_handle`` are opaque to the bridge;
    they are handed to the hardware access layer unchanged.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Stable unique identifier.")
    name: str = Field(description="Human-readable label for discovery.")
    domain: EntityDomain
    control_handle: Annotated[int, Field(ge=0)] = Field(
        validation_alias=AliasChoices("controlGpio", "control_gpio", "control_handle"),
        description="Hardware channel pulsed to change the state.",
    )
    monitor_handle: Annotated[int, Field(ge=0)] = Field(
        validation_alias=AliasChoices("monitorGpio", "monitor_gpio", "monitor_handle"),
        description="Hardware channel read to observe the state.",
    )

    @field_validator("id")
    @classmethod
    def _id_is_single_topic_level(cls, value: str) -> str:
        """The id is one MQTT topic level: no separators or wildcards."""
        if _TOPIC_RESERVED & set(value):
            msg = f"entity id must not contain '/', '+' or '#', got {value!r}"
            raise ValueError(msg)
        return value


class BridgeConfig(BaseModel):
    """The deploy-wide device identifier plus its entities."""

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("deviceId", "device_id"),
    )
    entities: tuple[Entity, ...] = ()

    @model_validator(mode="after")
    def _entity_ids_unique(self) -> Self:
        seen: set[str] = set()
        dupes: set[str] = set()
        for entity in self.entities:
            if entity.id in seen:
                dupes.add(entity.id)
            seen.add(entity.id)
        if dupes:
            msg = f"Entity ids must be unique, duplicates: {sorted(dupes)}"
            raise ValueError(msg)
        return self


def load_bridge_config(path: str | Path) -> BridgeConfig:
    """Read and validate the entity configuration file.

    Raises:
        ConfigurationError: If the file cannot be read, is not valid
            JSON, or does not describe a valid entity set.
    """
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"cannot read entity configuration {config_path}: {exc}"
        raise ConfigurationError(msg) from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"entity configuration {config_path} is not valid JSON: {exc}"
        raise ConfigurationError(msg) from exc

    try:
        config = BridgeConfig.model_validate(data)
    except ValidationError as exc:
        msg = f"invalid entity configuration {config_path}: {exc}"
        raise ConfigurationError(msg) from exc

    logger.debug(
        "Loaded %d entity(ies) for device '%s' from %s",
        len(config.entities),
        config.device_id,
        config_path,
    )
    return config
