"""
One device: its transport, its resolved profile and its declared collectors.

Lifecycle:
    UNINITIALIZED -> CONNECTED -> DECLARED -> IDLE <-> COLLECTING -> CLOSED

A failed open() is terminal. Tick failures leave the session IDLE.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from tikstat.collector.base import CollectorRegistry, MetricsCollector
from tikstat.config.profile import DeviceProfile
from tikstat.errors import CollectTimeout, ConnectError, TikstatError
from tikstat.metrics import MetricsSink
from tikstat.transport.routeros import RouterOSTransport

log = logging.getLogger(__name__)

TransportFactory = Callable[[DeviceProfile, float], "RouterOSTransport"]


class SessionState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    DECLARED = "declared"
    IDLE = "idle"
    COLLECTING = "collecting"
    CLOSED = "closed"


class Deadline:
    """Wall-clock budget for one poll tick."""

    def __init__(self, seconds: Optional[float], clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires = None if seconds is None else clock() + seconds

    def remaining(self) -> Optional[float]:
        if self._expires is None:
            return None
        return max(0.0, self._expires - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0


class DeviceSession:

    def __init__(
        self,
        profile: DeviceProfile,
        registry: CollectorRegistry,
        transport_factory: Optional[TransportFactory] = None,
        socket_timeout: float = 5.0,
    ):
        self.profile = profile
        self.identity = profile.identity
        self.collectors: List[MetricsCollector] = []
        self._registry = registry
        self._transport_factory = transport_factory or RouterOSTransport.from_profile
        self._socket_timeout = socket_timeout
        self._transport = None
        self._deadline: Optional[Deadline] = None
        self._lock = threading.Lock()
        self.state = SessionState.UNINITIALIZED

    @property
    def name(self) -> str:
        return self.profile.name or self.identity.address

    def _require(self, *states: SessionState):
        if self.state not in states:
            expected = ", ".join(s.value for s in states)
            raise RuntimeError(f"{self.name}: session is {self.state.value}, expected {expected}")

    def _connect(self):
        transport = self._transport_factory(self.profile, self._socket_timeout)
        try:
            transport.probe()
        except Exception:
            transport.close()
            raise
        return transport

    def open(self) -> None:
        self._require(SessionState.UNINITIALIZED)
        try:
            self._transport = self._connect()
        except ConnectError:
            self.state = SessionState.CLOSED
            raise
        except TikstatError as e:
            self.state = SessionState.CLOSED
            raise ConnectError(f"{self.name}: probe failed: {e}") from e
        self.state = SessionState.CONNECTED
        log.info("%s: connected to %s", self.name, self.identity.address)

    def declare(self, sink: MetricsSink) -> None:
        self._require(SessionState.CONNECTED)
        self.collectors = self._registry.declare_all(self.profile, self.identity, sink)
        self.state = SessionState.DECLARED
        log.debug("%s: declared %s", self.name, ", ".join(c.name() for c in self.collectors))

    def collect_once(self, budget: Optional[float] = None) -> None:
        """Run every enabled collector once within `budget` seconds."""
        self._require(SessionState.DECLARED, SessionState.IDLE)
        with self._lock:
            self.state = SessionState.COLLECTING
            self._deadline = Deadline(budget)
            started = time.monotonic()
            try:
                self._registry.collect_all(self)
            finally:
                self._deadline = None
                if self.state is SessionState.COLLECTING:
                    self.state = SessionState.IDLE
            log.debug("%s: collected in %.2fs", self.name, time.monotonic() - started)

    def run(self, command: str, *args: str) -> List[Dict[str, str]]:
        """Issue a device command, bounded by the current tick deadline."""
        if self._transport is None:
            raise ConnectError(f"{self.name}: not connected")

        deadline = self._deadline
        timeout = self._socket_timeout
        if deadline is not None:
            remaining = deadline.remaining()
            if remaining is not None:
                if remaining <= 0:
                    raise CollectTimeout(f"{self.name}: scrape deadline exceeded before {command}")
                timeout = min(timeout, remaining)

        try:
            return self._transport.run(command, *args, timeout=timeout)
        except ConnectError as e:
            if deadline is not None and deadline.expired:
                raise CollectTimeout(f"{self.name}: scrape deadline exceeded during {command}") from e
            raise

    def reconnect(self) -> None:
        """Replace a lost transport. Declared collectors and families are kept."""
        self._require(SessionState.IDLE, SessionState.DECLARED)
        with self._lock:
            if self._transport is not None:
                self._transport.close()
                self._transport = None
            self._transport = self._connect()
        log.info("%s: reconnected", self.name)

    def close(self) -> None:
        with self._lock:
            if self.state is SessionState.CLOSED:
                return
            if self._transport is not None:
                try:
                    self._transport.close()
                finally:
                    self._transport = None
            self.state = SessionState.CLOSED
        log.info("%s: session closed", self.name)
