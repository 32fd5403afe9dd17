"""Tests for jema2mqtt._bridge — lifecycle orchestration.

Test Techniques Used:
    - Event Ordering: MockMqttClient.events pins the startup and
      shutdown sequences
    - State Transition Testing: starting → ready → stopping → stopped
    - Error Condition Testing: each startup failure aborts cleanly
    - Fault Isolation: shutdown steps are best-effort
    - Harness Testing: BridgeHarness wires the test doubles
"""

from __future__ import annotations

import asyncio
import json
import re
import signal
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from jema2mqtt._bridge import Bridge, LifecycleState
from jema2mqtt._errors import (
    BrokerConnectionError,
    ConfigurationError,
    HardwareUnavailableError,
)
from jema2mqtt._hardware import DryRunHardware, JemaBinding, MockJemaBinding
from jema2mqtt._models import BridgeConfig, Entity, EntityDomain
from jema2mqtt._mqtt import MockMqttClient, MqttClient
from jema2mqtt.testing import BridgeHarness, make_entity, make_settings

FRONT_DOOR = make_entity("front-door", control=17, monitor=27)
FAN = make_entity("fan", EntityDomain.SWITCH, control=22, monitor=23)

STATE = "publish:jema2mqtt/front-door/state"
DISCOVERY = "publish:homeassistant/lock/jema2mqtt_test_front-door/config"
AVAILABILITY = "publish:jema2mqtt/front-door/availability"

# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class TestStartupSequence:
    """Technique: Event Ordering."""

    async def test_reaches_ready(self, bridge_harness: BridgeHarness) -> None:
        assert bridge_harness.bridge.state is LifecycleState.STARTING

        await bridge_harness.bridge.start()

        assert bridge_harness.bridge.state is LifecycleState.READY
        await bridge_harness.bridge.shutdown()

    async def test_order_connect_subscribe_announce_online(
        self,
        bridge_harness: BridgeHarness,
    ) -> None:
        await bridge_harness.bridge.start()

        assert bridge_harness.mqtt.events == [
            "connect",
            "subscribe",
            STATE,
            DISCOVERY,
            AVAILABILITY,
        ]
        await bridge_harness.bridge.shutdown()

    async def test_subscribes_every_command_topic(self) -> None:
        harness = BridgeHarness.create([FRONT_DOOR, FAN])

        await harness.bridge.start()

        assert harness.mqtt.subscriptions == [
            "jema2mqtt/fan/set",
            "jema2mqtt/front-door/set",
        ]
        assert harness.mqtt.events.count("subscribe") == 1
        await harness.bridge.shutdown()

    async def test_initial_state_and_discovery_retained(self) -> None:
        harness = BridgeHarness.create([FRONT_DOOR], initial_states={27: True})

        await harness.bridge.start()

        assert harness.mqtt.get_messages_for("jema2mqtt/front-door/state") == [
            ("ACTIVE", True, 1),
        ]
        [(payload, retain, qos)] = harness.mqtt.get_messages_for(
            "homeassistant/lock/jema2mqtt_test_front-door/config",
        )
        assert retain is True
        assert qos == 1
        discovery = json.loads(payload)
        assert discovery["unique_id"] == "jema2mqtt_test_front-door"
        assert discovery["payload_lock"] == "ACTIVE"
        await harness.bridge.shutdown()

    async def test_online_published_once_not_retained(
        self,
        bridge_harness: BridgeHarness,
    ) -> None:
        await bridge_harness.bridge.start()

        assert bridge_harness.mqtt.get_messages_for(
            "jema2mqtt/front-door/availability",
        ) == [("online", False, 1)]
        await bridge_harness.bridge.shutdown()

    async def test_settings_flow_into_topics_and_qos(self) -> None:
        harness = BridgeHarness.create(
            [FAN],
            namespace="house",
            discovery_prefix="ha",
            qos=2,
        )

        await harness.bridge.start()

        assert harness.mqtt.subscriptions == ["house/fan/set"]
        assert harness.mqtt.get_messages_for("house/fan/state") == [
            ("INACTIVE", True, 2),
        ]
        discovery = harness.mqtt.get_messages_for("ha/switch/jema2mqtt_test_fan/config")
        assert len(discovery) == 1
        await harness.bridge.shutdown()

    async def test_no_entities_skips_subscribe(self) -> None:
        harness = BridgeHarness.create([])

        await harness.bridge.start()

        assert harness.bridge.state is LifecycleState.READY
        assert harness.mqtt.events == ["connect"]
        await harness.bridge.shutdown()

    async def test_start_twice_raises(self, bridge_harness: BridgeHarness) -> None:
        await bridge_harness.bridge.start()
        with pytest.raises(RuntimeError, match="only be called once"):
            await bridge_harness.bridge.start()
        await bridge_harness.bridge.shutdown()


class _UnreadableHardware:
    """Acquires bindings whose monitor can never be read."""

    def __init__(self) -> None:
        self.bindings: list[MockJemaBinding] = []

    async def acquire(self, control_handle: int, monitor_handle: int) -> JemaBinding:
        binding = MockJemaBinding(control_handle, monitor_handle, fail_read=True)
        self.bindings.append(binding)
        return binding


class TestStartupFailures:
    """Technique: Error Condition Testing."""

    async def test_unknown_domain_fails_before_hardware_and_broker(self) -> None:
        odd = Entity.model_construct(
            id="odd",
            name="Odd",
            domain="fan",
            control_handle=1,
            monitor_handle=2,
        )
        harness = BridgeHarness.create([FRONT_DOOR, odd])

        with pytest.raises(ConfigurationError, match="unknown domain"):
            await harness.bridge.start()

        assert harness.hardware.bindings == {}
        assert harness.mqtt.events == []
        assert harness.bridge.state is LifecycleState.STOPPED

    async def test_hardware_failure_skips_broker(self) -> None:
        harness = BridgeHarness.create([FRONT_DOOR, FAN])
        harness.hardware.fail_handles = {22}

        with pytest.raises(HardwareUnavailableError):
            await harness.bridge.start()

        assert harness.mqtt.events == []
        assert harness.hardware.bindings[17].released
        assert harness.bridge.state is LifecycleState.STOPPED

    async def test_broker_failure_releases_hardware(self) -> None:
        harness = BridgeHarness.create()
        harness.mqtt.fail_connect = True

        with pytest.raises(BrokerConnectionError):
            await harness.bridge.start()

        assert harness.binding("front-door").released
        assert harness.mqtt.published == []
        assert harness.bridge.state is LifecycleState.STOPPED

    async def test_initial_state_failure_is_fatal(self) -> None:
        mqtt = MockMqttClient()
        hardware = _UnreadableHardware()
        bridge = Bridge(
            config=BridgeConfig(device_id="test", entities=(FRONT_DOOR,)),
            mqtt=mqtt,
            hardware=hardware,
        )

        with pytest.raises(OSError, match="monitor read failure"):
            await bridge.start()

        assert mqtt.events[-1] == "disconnect"
        assert hardware.bindings[0].released
        assert bridge.state is LifecycleState.STOPPED

    async def test_discovery_publish_failure_is_fatal(self) -> None:
        harness = BridgeHarness.create()
        harness.mqtt.fail_publish_topics = {DISCOVERY.removeprefix("publish:")}

        with pytest.raises(RuntimeError, match="simulated publish failure"):
            await harness.bridge.start()

        assert harness.binding("front-door").released
        assert not harness.mqtt.connected

    def test_non_positive_interval_rejected(self) -> None:
        with pytest.raises(ValueError, match="availability_interval"):
            BridgeHarness.create(availability_interval=0)


# ---------------------------------------------------------------------------
# Steady state
# ---------------------------------------------------------------------------


class TestSteadyState:
    """Technique: Harness Testing."""

    async def test_command_round_trip(self, bridge_harness: BridgeHarness) -> None:
        await bridge_harness.bridge.start()
        binding = bridge_harness.binding("front-door")

        await bridge_harness.mqtt.deliver("jema2mqtt/front-door/set", "ACTIVE")
        await bridge_harness.settle()
        await bridge_harness.mqtt.deliver("jema2mqtt/front-door/set", "ACTIVE")
        await bridge_harness.settle()

        assert binding.pulse_count == 1
        assert bridge_harness.mqtt.get_messages_for("jema2mqtt/front-door/state") == [
            ("INACTIVE", True, 1),
            ("ACTIVE", True, 1),
        ]
        await bridge_harness.bridge.shutdown()

    async def test_external_change_published(self, bridge_harness: BridgeHarness) -> None:
        await bridge_harness.bridge.start()

        bridge_harness.binding("front-door").set_monitor(True)
        await bridge_harness.settle()

        assert bridge_harness.mqtt.get_messages_for("jema2mqtt/front-door/state")[-1] == (
            "ACTIVE",
            True,
            1,
        )
        await bridge_harness.bridge.shutdown()

    async def test_heartbeat_running_when_ready(self) -> None:
        harness = BridgeHarness.create(availability_interval=0.01)

        await harness.bridge.start()
        await asyncio.sleep(0.05)
        await harness.bridge.shutdown()

        onlines = [
            payload
            for payload, _r, _q in harness.mqtt.get_messages_for(
                "jema2mqtt/front-door/availability",
            )
            if payload == "online"
        ]
        assert len(onlines) >= 2


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestShutdown:
    """Technique: State Transition Testing."""

    async def test_order_offline_disconnect_release(
        self,
        bridge_harness: BridgeHarness,
    ) -> None:
        await bridge_harness.bridge.start()
        bridge_harness.mqtt.events.clear()

        await bridge_harness.bridge.shutdown()

        assert bridge_harness.mqtt.events == [AVAILABILITY, "disconnect"]
        assert bridge_harness.mqtt.get_messages_for(
            "jema2mqtt/front-door/availability",
        )[-1] == ("offline", False, 1)
        assert bridge_harness.binding("front-door").released
        assert bridge_harness.bridge.state is LifecycleState.STOPPED

    async def test_runs_exactly_once(self) -> None:
        harness = BridgeHarness.create([FRONT_DOOR, FAN])
        await harness.bridge.start()
        harness.mqtt.events.clear()

        await asyncio.gather(harness.bridge.shutdown(), harness.bridge.shutdown())
        await harness.bridge.shutdown()

        assert harness.mqtt.events.count("disconnect") == 1
        assert len([e for e in harness.mqtt.events if e.endswith("/availability")]) == 2

    async def test_offline_published_despite_release_failure(self) -> None:
        harness = BridgeHarness.create([FRONT_DOOR, FAN])
        await harness.bridge.start()
        harness.binding("front-door").fail_release = True
        harness.mqtt.events.clear()

        await harness.bridge.shutdown()

        assert harness.mqtt.events[-1] == "disconnect"
        assert len([e for e in harness.mqtt.events if e.endswith("/availability")]) == 2
        assert harness.binding("fan").released
        assert harness.bridge.state is LifecycleState.STOPPED

    async def test_offline_published_despite_heartbeat_failure(
        self,
        bridge_harness: BridgeHarness,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        await bridge_harness.bridge.start()
        heartbeat = bridge_harness.bridge._heartbeat
        assert heartbeat is not None
        task = heartbeat._task
        failing_stop = AsyncMock(side_effect=RuntimeError("cancel failed"))
        heartbeat.stop = failing_stop  # type: ignore[method-assign]
        bridge_harness.mqtt.events.clear()

        await bridge_harness.bridge.shutdown()

        assert bridge_harness.mqtt.events == [AVAILABILITY, "disconnect"]
        assert "Shutdown step 'heartbeat cancellation' failed" in caplog.text
        assert task is not None
        task.cancel()

    async def test_offline_publish_failure_still_disconnects(
        self,
        bridge_harness: BridgeHarness,
    ) -> None:
        await bridge_harness.bridge.start()
        bridge_harness.mqtt.fail_publish_topics = {AVAILABILITY.removeprefix("publish:")}

        await bridge_harness.bridge.shutdown()

        assert bridge_harness.mqtt.events[-1] == "disconnect"
        assert bridge_harness.binding("front-door").released

    async def test_stalled_handler_does_not_block_offline(
        self,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        harness = BridgeHarness.create(shutdown_timeout=0.05)
        await harness.bridge.start()
        release = asyncio.Event()

        async def _stalled_pulse() -> None:
            await release.wait()

        monkeypatch.setattr(harness.binding("front-door"), "pulse_control", _stalled_pulse)
        await harness.mqtt.deliver("jema2mqtt/front-door/set", "ACTIVE")
        harness.mqtt.events.clear()

        await asyncio.wait_for(harness.bridge.shutdown(), timeout=1.0)

        assert harness.mqtt.events == [AVAILABILITY, "disconnect"]
        assert harness.bridge.state is LifecycleState.STOPPED

        release.set()
        assert harness.bridge.synchronizer is not None
        await harness.bridge.synchronizer.drain()

    async def test_commands_dropped_after_shutdown(
        self,
        bridge_harness: BridgeHarness,
    ) -> None:
        await bridge_harness.bridge.start()
        await bridge_harness.bridge.shutdown()

        await bridge_harness.mqtt.deliver("jema2mqtt/front-door/set", "ACTIVE")
        await bridge_harness.settle()

        assert bridge_harness.binding("front-door").pulse_count == 0

    async def test_shutdown_before_start(self, bridge_harness: BridgeHarness) -> None:
        await bridge_harness.bridge.shutdown()

        assert bridge_harness.bridge.state is LifecycleState.STOPPED
        assert bridge_harness.mqtt.events == []


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------


class TestRun:
    async def test_run_until_shutdown_event(self, bridge_harness: BridgeHarness) -> None:
        task = asyncio.create_task(bridge_harness.run())
        for _ in range(100):
            if bridge_harness.bridge.state is LifecycleState.READY:
                break
            await asyncio.sleep(0.01)
        assert bridge_harness.bridge.state is LifecycleState.READY

        bridge_harness.trigger_shutdown()
        await asyncio.wait_for(task, timeout=1.0)

        assert bridge_harness.bridge.state is LifecycleState.STOPPED
        assert bridge_harness.mqtt.events[-1] == "disconnect"

    async def test_run_propagates_startup_failure(self) -> None:
        harness = BridgeHarness.create()
        harness.mqtt.fail_connect = True

        with pytest.raises(BrokerConnectionError):
            await harness.run()

    async def test_signals_share_one_shutdown_event(
        self,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        loop = asyncio.get_running_loop()
        handlers: dict[int, object] = {}
        monkeypatch.setattr(
            loop,
            "add_signal_handler",
            lambda sig, callback: handlers.__setitem__(sig, callback),
        )

        event = Bridge._install_signal_handlers(None)

        assert set(handlers) == {signal.SIGTERM, signal.SIGINT}
        assert handlers[signal.SIGTERM] == handlers[signal.SIGINT] == event.set
        handlers[signal.SIGINT]()  # type: ignore[operator]
        assert event.is_set()

    async def test_explicit_event_skips_signal_handlers(self) -> None:
        event = asyncio.Event()
        assert Bridge._install_signal_handlers(event) is event


# ---------------------------------------------------------------------------
# from_settings
# ---------------------------------------------------------------------------


def _config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "deviceId": "living",
                "entities": [
                    {
                        "id": "front-door",
                        "name": "Front Door",
                        "domain": "lock",
                        "controlGpio": 17,
                        "monitorGpio": 27,
                    },
                ],
            },
        ),
        encoding="utf-8",
    )
    return path


class TestFromSettings:
    """Technique: Specification-based Testing."""

    def test_wires_dry_run_bridge(self, tmp_path: Path) -> None:
        settings = make_settings(config_file=str(_config_file(tmp_path)))

        bridge = Bridge.from_settings(settings, version="1.0.0", dry_run=True)

        assert [e.id for e in bridge.entities] == ["front-door"]
        assert isinstance(bridge._hardware, DryRunHardware)
        assert isinstance(bridge._mqtt, MqttClient)

    def test_generates_client_id_when_empty(self, tmp_path: Path) -> None:
        settings = make_settings(config_file=str(_config_file(tmp_path)))

        bridge = Bridge.from_settings(settings, dry_run=True)

        assert isinstance(bridge._mqtt, MqttClient)
        assert re.fullmatch(r"jema2mqtt-[0-9a-f]{8}", bridge._mqtt.settings.client_id)

    def test_keeps_explicit_client_id(self, tmp_path: Path) -> None:
        settings = make_settings(
            config_file=str(_config_file(tmp_path)),
            mqtt={"client_id": "bridge-1"},
        )

        bridge = Bridge.from_settings(settings, dry_run=True)

        assert isinstance(bridge._mqtt, MqttClient)
        assert bridge._mqtt.settings.client_id == "bridge-1"

    def test_missing_config_file(self, tmp_path: Path) -> None:
        settings = make_settings(config_file=str(tmp_path / "absent.json"))
        with pytest.raises(ConfigurationError):
            Bridge.from_settings(settings, dry_run=True)

    async def test_injected_doubles_run_end_to_end(self, tmp_path: Path) -> None:
        settings = make_settings(
            config_file=str(_config_file(tmp_path)),
            mqtt={"topic_prefix": "house"},
            discovery_prefix="ha",
        )
        mqtt = MockMqttClient()

        bridge = Bridge.from_settings(settings, version="1.0.0", mqtt=mqtt, dry_run=True)
        await bridge.start()
        await bridge.shutdown()

        assert mqtt.subscriptions == ["house/front-door/set"]
        [(payload, _retain, _qos)] = mqtt.get_messages_for(
            "ha/lock/jema2mqtt_living_front-door/config",
        )
        assert json.loads(payload)["origin"]["sw_version"] == "1.0.0"
