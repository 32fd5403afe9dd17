"""Public test-support utilities for jema2mqtt.

Re-exports test doubles and factories so that test suites can import
everything from a single ``jema2mqtt.testing`` namespace instead of
reaching into private modules.

Provided symbols:

- :class:`BridgeHarness` — a Bridge wired to in-memory doubles.
- :class:`MockMqttClient` — in-memory MQTT double that records calls.
- :class:`NullMqttClient` — silent no-op MQTT adapter.
- :class:`MockHardware` / :class:`MockJemaBinding` — terminal doubles.
- :func:`make_entity` — terse :class:`~jema2mqtt.Entity` factory.
- :func:`make_settings` — factory for ``Settings`` without ``.env`` files.
"""

from jema2mqtt._hardware import MockHardware, MockJemaBinding
from jema2mqtt._mqtt import MockMqttClient, NullMqttClient
from jema2mqtt.testing._harness import BridgeHarness, make_entity
from jema2mqtt.testing._settings import make_settings

__all__ = [
    "BridgeHarness",
    "MockHardware",
    "MockJemaBinding",
    "MockMqttClient",
    "NullMqttClient",
    "make_entity",
    "make_settings",
]
