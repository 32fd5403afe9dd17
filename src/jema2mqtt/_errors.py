"""Error taxonomy and structured error publication for jema2mqtt.

Exception classes follow the bridge's failure phases:

- **Startup** — :class:`ConfigurationError`, :class:`BrokerConnectionError`
  and :class:`HardwareUnavailableError` abort the process before the
  bridge reaches ``ready``.
- **Steady state** — :class:`TransientOperationError` wraps a single
  failed publish, monitor read or control pulse.  It is logged and
  reported, never propagated past the entity that raised it.

Transient errors are also published as structured JSON events so an
unattended bridge can be observed remotely.

Topic layout::

    {prefix}/error              ← all errors (global, always published)
    {prefix}/{entity}/error     ← per-entity errors (when entity is known)

Payload schema::

    {
        "error_type": "transient_operation",
        "message": "Human-readable error description",
        "device": "front-door" | null,
        "timestamp": "2026-02-14T12:34:56+00:00",
        "details": {}
    }

Publication behaviour:

- **Not retained** — errors are events, not last-known state.
- **Fire-and-forget** — publication failures are logged, never propagated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

from jema2mqtt._mqtt import MqttPort

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class Jema2MqttError(Exception):
    """Base class for all bridge errors."""


class ConfigurationError(Jema2MqttError):
    """Invalid or unreadable entity configuration (fatal, pre-connection)."""


class BrokerConnectionError(Jema2MqttError, ConnectionError):
    """The MQTT broker is unreachable or rejected the credentials."""


class HardwareUnavailableError(Jema2MqttError):
    """A hardware binding could not be acquired for an entity."""

    def __init__(self, entity_id: str, reason: str) -> None:
        super().__init__(f"hardware unavailable for '{entity_id}': {reason}")
        self.entity_id = entity_id


class TransientOperationError(Jema2MqttError):
    """A single publish, read or pulse failed during steady state."""

    def __init__(self, operation: str, entity_id: str | None, reason: str) -> None:
        target = f" for '{entity_id}'" if entity_id is not None else ""
        super().__init__(f"{operation} failed{target}: {reason}")
        self.operation = operation
        self.entity_id = entity_id


DEFAULT_ERROR_TYPES: dict[type[Exception], str] = {
    ConfigurationError: "configuration",
    BrokerConnectionError: "broker_connection",
    HardwareUnavailableError: "hardware_unavailable",
    TransientOperationError: "transient_operation",
}
"""Machine-readable ``error_type`` strings for the bridge's own errors."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Immutable structured error event ready for MQTT publication."""

    error_type: str
    message: str
    device: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(asdict(self))


def build_error_payload(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    device: str | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Convert an exception into a structured :class:`ErrorPayload`.

    Looks up the exact class of the exception; subclasses are not
    matched.  Unmapped types fall back to ``"error"``.

    A :class:`TransientOperationError` contributes its ``operation``
    to ``details``.
    """
    resolved_map = error_type_map if error_type_map is not None else DEFAULT_ERROR_TYPES
    error_type = resolved_map.get(type(error), "error")
    now = clock() if clock is not None else datetime.now(UTC)
    details: dict[str, object] = {}
    if isinstance(error, TransientOperationError):
        details["operation"] = error.operation
    return ErrorPayload(
        error_type=error_type,
        message=str(error),
        device=device,
        timestamp=now.isoformat(),
        details=details,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class ErrorPublisher:
    """Publishes structured error payloads to MQTT.

    Errors during publication are logged but never propagated; a
    failed error *report* must not take an entity down with it.

    Args:
        mqtt: MQTT port used for publishing.
        topic_prefix: Namespace for error topics (e.g. ``"jema2mqtt"``).
        error_type_map: Exception type to ``error_type`` string mapping.
        clock: Optional callable returning a :class:`~datetime.datetime`
            for deterministic testing.
    """

    mqtt: MqttPort
    topic_prefix: str
    error_type_map: dict[type[Exception], str] = field(
        default_factory=lambda: dict(DEFAULT_ERROR_TYPES),
    )
    clock: Callable[[], datetime] | None = field(default=None, repr=False)

    async def publish(self, error: Exception, *, device: str | None = None) -> None:
        """Build an error payload and publish it.

        Always publishes to ``{topic_prefix}/error``; when *device* is
        given, also to ``{topic_prefix}/{device}/error``.
        """
        try:
            payload = build_error_payload(
                error,
                error_type_map=self.error_type_map,
                device=device,
                clock=self.clock,
            )
            payload_json = payload.to_json()
        except Exception:
            logger.exception(
                "Failed to build error payload for %r (device=%s)",
                error,
                device,
            )
            return

        await self._safe_publish(f"{self.topic_prefix}/error", payload_json)
        if device is not None:
            await self._safe_publish(
                f"{self.topic_prefix}/{device}/error",
                payload_json,
            )

    async def _safe_publish(self, topic: str, payload: str) -> None:
        try:
            await self.mqtt.publish(topic, payload, retain=False, qos=1)
        except Exception:
            logger.exception("Failed to publish error to %s", topic)
