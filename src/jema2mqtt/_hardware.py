"""Hardware access port and in-memory adapters.

The bridge never touches GPIO itself.  It talks to a JEM-A terminal
through two protocols:

- :class:`HardwarePort` acquires one :class:`JemaBinding` per entity
  from its control and monitor channels.
- :class:`JemaBinding` reads the monitored state, pulses the control
  line and reports monitored-state transitions to a listener.

Adapters satisfy the protocols structurally (PEP 544).  Listeners are
invoked on the event loop; an adapter that observes transitions on
another thread must hand them over with ``loop.call_soon_threadsafe``.

Provided adapters:

- :class:`DryRunHardware` — in-memory terminals whose pulse toggles the
  monitored state; lets the bridge run without hardware.
- :class:`MockHardware` — test double with call recording and failure
  injection.

A real hardware layer is plugged in through the ``hardware_adapter``
setting (``module.path:Factory``), see :func:`resolve_hardware`.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from jema2mqtt._errors import ConfigurationError

logger = logging.getLogger(__name__)

MonitorListener = Callable[[bool], None]
"""Callback receiving the new monitored value on every transition."""

# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


@runtime_checkable
class JemaBinding(Protocol):
    """Live handle on one JEM-A terminal."""

    async def read_monitor(self) -> bool:
        """Return the current monitored state."""
        ...

    async def pulse_control(self) -> None:
        """Pulse the control line once."""
        ...

    def on_monitor_change(self, listener: MonitorListener) -> None:
        """Register *listener* for monitored-state transitions."""
        ...

    async def release(self) -> None:
        """Release the underlying hardware channels."""
        ...


@runtime_checkable
class HardwarePort(Protocol):
    """Factory for :class:`JemaBinding` instances."""

    async def acquire(self, control_handle: int, monitor_handle: int) -> JemaBinding:
        """Acquire the terminal wired to the given channels.

        Raises:
            Exception: Any failure; the registry reports it as
                :class:`~jema2mqtt._errors.HardwareUnavailableError`.
        """
        ...


# ---------------------------------------------------------------------------
# Dry-run adapter
# ---------------------------------------------------------------------------


@dataclass
class DryRunJemaBinding:
    """In-memory terminal; every pulse flips the monitored state."""

    control_handle: int
    monitor_handle: int
    state: bool = False
    _listeners: list[MonitorListener] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    async def read_monitor(self) -> bool:
        return self.state

    async def pulse_control(self) -> None:
        logger.info(
            "[dry-run] pulse control=%d (monitor=%d now %s)",
            self.control_handle,
            self.monitor_handle,
            not self.state,
        )
        self.state = not self.state
        for listener in self._listeners:
            listener(self.state)

    def on_monitor_change(self, listener: MonitorListener) -> None:
        self._listeners.append(listener)

    async def release(self) -> None:
        self._listeners.clear()
        logger.info("[dry-run] released control=%d", self.control_handle)


@dataclass
class DryRunHardware:
    """Hands out :class:`DryRunJemaBinding` instances, all starting inactive."""

    async def acquire(self, control_handle: int, monitor_handle: int) -> JemaBinding:
        logger.info(
            "[dry-run] acquired terminal control=%d monitor=%d",
            control_handle,
            monitor_handle,
        )
        return DryRunJemaBinding(control_handle, monitor_handle)


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockJemaBinding:
    """Recording terminal double.

    With ``follow_pulse`` (the default) a pulse toggles ``state`` and
    notifies listeners, like a real terminal.  Turn it off to model a
    monitor that lags behind the control line.
    """

    control_handle: int
    monitor_handle: int
    state: bool = False
    follow_pulse: bool = True
    fail_read: bool = False
    fail_pulse: bool = False
    fail_release: bool = False
    pulse_count: int = 0
    read_count: int = 0
    released: bool = False
    listeners: list[MonitorListener] = field(default_factory=list)

    async def read_monitor(self) -> bool:
        self.read_count += 1
        if self.fail_read:
            msg = f"simulated monitor read failure on {self.monitor_handle}"
            raise OSError(msg)
        return self.state

    async def pulse_control(self) -> None:
        if self.fail_pulse:
            msg = f"simulated pulse failure on {self.control_handle}"
            raise OSError(msg)
        self.pulse_count += 1
        if self.follow_pulse:
            self.set_monitor(not self.state)

    def on_monitor_change(self, listener: MonitorListener) -> None:
        self.listeners.append(listener)

    async def release(self) -> None:
        if self.fail_release:
            msg = f"simulated release failure on {self.control_handle}"
            raise OSError(msg)
        self.released = True

    # -- Test helpers -------------------------------------------------------

    def set_monitor(self, value: bool) -> None:
        """Simulate a monitored-state transition."""
        self.state = value
        for listener in self.listeners:
            listener(value)


@dataclass
class MockHardware:
    """Hardware double handing out :class:`MockJemaBinding` instances.

    ``initial_states`` maps monitor handles to their starting value;
    ``fail_handles`` lists control handles whose acquisition fails.
    Bindings are kept in ``bindings`` keyed by control handle.
    """

    initial_states: dict[int, bool] = field(default_factory=dict)
    fail_handles: set[int] = field(default_factory=set)
    bindings: dict[int, MockJemaBinding] = field(default_factory=dict)

    async def acquire(self, control_handle: int, monitor_handle: int) -> JemaBinding:
        if control_handle in self.fail_handles:
            msg = f"GPIO {control_handle} busy"
            raise OSError(msg)
        binding = MockJemaBinding(
            control_handle,
            monitor_handle,
            state=self.initial_states.get(monitor_handle, False),
        )
        self.bindings[control_handle] = binding
        return binding


# ---------------------------------------------------------------------------
# Adapter resolution
# ---------------------------------------------------------------------------


def _import_string(dotted_path: str) -> Any:
    """Import an object from a ``module.path:Name`` string.

    Raises:
        ImportError: If the module cannot be found.
        AttributeError: If the name doesn't exist in the module.
        ValueError: If the path doesn't contain exactly one ``:``.
    """
    parts = dotted_path.split(":")
    if len(parts) != 2:  # noqa: PLR2004
        msg = f"Expected 'module.path:Name', got {dotted_path!r}"
        raise ValueError(msg)

    module_path, name = parts
    module = importlib.import_module(module_path)
    return getattr(module, name)


def resolve_hardware(adapter: str | None, *, dry_run: bool = False) -> HardwarePort:
    """Build the hardware port selected by the ``hardware_adapter`` setting.

    Dry-run mode, or an unset adapter, selects :class:`DryRunHardware`.
    Otherwise *adapter* is imported and called without arguments.

    Raises:
        ConfigurationError: If the adapter cannot be imported or built.
    """
    if dry_run or adapter is None:
        logger.info("Hardware backend: dry-run (no terminal will be driven)")
        return DryRunHardware()

    try:
        factory = _import_string(adapter)
        port = factory()
    except Exception as exc:
        msg = f"cannot load hardware adapter {adapter!r}: {exc}"
        raise ConfigurationError(msg) from exc

    if not isinstance(port, HardwarePort):
        msg = f"hardware adapter {adapter!r} does not provide acquire()"
        raise ConfigurationError(msg)
    logger.info("Hardware backend: %s", adapter)
    return port
