"""jema2mqtt.

Bridges JEM-A home-appliance terminals (locks, switches, covers) to an
MQTT broker with Home Assistant discovery.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("jema2mqtt")
except PackageNotFoundError:
    # Last resort fallback for source checkouts without metadata
    __version__ = "0.0.0+unknown"

from jema2mqtt._bridge import Bridge, LifecycleState  # noqa: E402
from jema2mqtt._discovery import DiscoveryContext, build_discovery  # noqa: E402
from jema2mqtt._errors import (  # noqa: E402
    BrokerConnectionError,
    ConfigurationError,
    ErrorPayload,
    ErrorPublisher,
    HardwareUnavailableError,
    Jema2MqttError,
    TransientOperationError,
    build_error_payload,
)
from jema2mqtt._hardware import (  # noqa: E402
    DryRunHardware,
    HardwarePort,
    JemaBinding,
    MonitorListener,
    resolve_hardware,
)
from jema2mqtt._health import AvailabilityHeartbeat  # noqa: E402
from jema2mqtt._logging import JsonFormatter, configure_logging  # noqa: E402
from jema2mqtt._models import (  # noqa: E402
    AvailabilityToken,
    BridgeConfig,
    Entity,
    EntityDomain,
    StatusToken,
    load_bridge_config,
)
from jema2mqtt._mqtt import (  # noqa: E402
    MessageCallback,
    MqttClient,
    MqttLifecycle,
    MqttPort,
    NullMqttClient,
)
from jema2mqtt._registry import EntityRegistry  # noqa: E402
from jema2mqtt._settings import LoggingSettings, MqttSettings, Settings  # noqa: E402
from jema2mqtt._sync import StateSynchronizer  # noqa: E402
from jema2mqtt._topics import TopicCategory, discovery_topic, topic_for  # noqa: E402

__all__ = [
    # Version
    "__version__",
    # Lifecycle
    "Bridge",
    "LifecycleState",
    # Model
    "AvailabilityToken",
    "BridgeConfig",
    "Entity",
    "EntityDomain",
    "StatusToken",
    "load_bridge_config",
    # Topics & discovery
    "DiscoveryContext",
    "TopicCategory",
    "build_discovery",
    "discovery_topic",
    "topic_for",
    # Hardware
    "DryRunHardware",
    "EntityRegistry",
    "HardwarePort",
    "JemaBinding",
    "MonitorListener",
    "resolve_hardware",
    # Synchronisation & health
    "AvailabilityHeartbeat",
    "StateSynchronizer",
    # MQTT
    "MessageCallback",
    "MqttClient",
    "MqttLifecycle",
    "MqttPort",
    "NullMqttClient",
    # Errors
    "BrokerConnectionError",
    "ConfigurationError",
    "ErrorPayload",
    "ErrorPublisher",
    "HardwareUnavailableError",
    "Jema2MqttError",
    "TransientOperationError",
    "build_error_payload",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # Settings
    "LoggingSettings",
    "MqttSettings",
    "Settings",
]
