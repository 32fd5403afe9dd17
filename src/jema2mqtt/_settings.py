"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files.  Nested models use ``__`` as the delimiter in env var names,
e.g. ``MQTT__HOST=broker.local``.

Process-level settings live here.  The entity list itself lives in a
separate JSON file (``config_file``) parsed by
:func:`jema2mqtt._models.load_bridge_config`.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings; nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables (with ``__`` nesting)::

        MQTT__HOST=broker.local
        MQTT__PORT=1883
        MQTT__USERNAME=user
        MQTT__PASSWORD=secret
        MQTT__TOPIC_PREFIX=jema2mqtt
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the bridge generates "
            "'jema2mqtt-{hex8}' at startup."
        ),
    )
    keepalive: Annotated[int, Field(ge=1)] = Field(
        default=60,
        description="MQTT keepalive interval in seconds.",
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description=(
            "Initial seconds to wait before reconnecting after the "
            "session drops.  Doubles on each consecutive failure up to "
            "``reconnect_max_interval``."
        ),
    )
    reconnect_max_interval: Annotated[float, Field(gt=0)] = Field(
        default=300.0,
        description=(
            "Upper bound (seconds) for the reconnect backoff.  The "
            "delay doubles after each failure but never exceeds this value."
        ),
    )
    topic_prefix: str = Field(
        default="jema2mqtt",
        min_length=1,
        description="Namespace for entity topics ({prefix}/{id}/set etc.).",
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    - ``"json"`` (default) — structured JSON lines.
    - ``"text"`` — human-readable timestamped lines.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format ('json' or 'text').",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for the jema2mqtt bridge.

    Example ``.env``::

        MQTT__HOST=broker.local
        MQTT__USERNAME=user
        MQTT__PASSWORD=secret
        DISCOVERY_PREFIX=homeassistant
        QOS=1
        AVAILABILITY_INTERVAL=10
        CONFIG_FILE=/etc/jema2mqtt/config.json
        LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
    discovery_prefix: str = Field(
        default="homeassistant",
        min_length=1,
        description="Topic prefix for Home Assistant MQTT discovery.",
    )
    qos: Annotated[int, Field(ge=0, le=2)] = Field(
        default=1,
        description="QoS level for subscriptions, publishes and discovery.",
    )
    availability_interval: Annotated[float, Field(gt=0)] = Field(
        default=10.0,
        description="Seconds between 'online' availability heartbeats.",
    )
    shutdown_timeout: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description=(
            "Seconds shutdown waits for in-flight command handlers "
            "before publishing 'offline'."
        ),
    )
    config_file: str = Field(
        default="./config.json",
        description="Path to the JSON entity configuration file.",
    )
    hardware_adapter: str | None = Field(
        default=None,
        description=(
            "Hardware access layer as a 'module.path:Factory' import "
            "string.  When unset, the in-memory dry-run adapter is used."
        ),
    )
