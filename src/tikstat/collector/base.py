"""
Base collector interface and the ordered collector registry.

A collector maps the records of one or more device commands onto a set of
gauge families. Collectors are instantiated per device session, so the
families they declare belong to exactly one device identity.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional, Sequence, Type

from tikstat.config.profile import DeviceIdentity, DeviceProfile
from tikstat.errors import CollectError, DeclareError, TikstatError
from tikstat.metrics import GaugeFamily, MetricsSink

if TYPE_CHECKING:
    from tikstat.session import DeviceSession

log = logging.getLogger(__name__)

NAMESPACE = "mktxp"


def parse_float(value: Optional[str]) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class MetricsCollector(ABC):
    """Interface for all metric plugins."""

    # Profile flag that switches this collector; None means always on.
    flag: Optional[str] = None

    def is_enabled(self, profile: DeviceProfile) -> bool:
        if self.flag is None:
            return True
        return profile.is_enabled(self.flag)

    @abstractmethod
    def declare(self, sink: MetricsSink, identity: DeviceIdentity) -> None:
        """Register this collector's gauge families for one device."""
        ...

    @abstractmethod
    def collect(self, session: "DeviceSession") -> None:
        """Run the device commands and update the declared gauges."""
        ...

    def name(self) -> str:
        return type(self).__name__

    def _gauge(
        self,
        sink: MetricsSink,
        identity: DeviceIdentity,
        name: str,
        documentation: str,
        labelnames: Sequence[str] = (),
    ) -> GaugeFamily:
        return sink.gauge(
            f"{NAMESPACE}_{name}",
            documentation,
            labelnames=labelnames,
            const_labels=identity.const_labels(),
        )


class CollectorRegistry:
    """Append-only, ordered list of collector classes.

    Built once by build_registry() before any session exists; frozen after.
    """

    def __init__(self):
        self._collectors: List[Type[MetricsCollector]] = []
        self._frozen = False

    def register(self, collector_cls: Type[MetricsCollector]) -> None:
        if self._frozen:
            raise RuntimeError("collector registry is frozen")
        self._collectors.append(collector_cls)

    def freeze(self) -> "CollectorRegistry":
        self._frozen = True
        return self

    @property
    def collectors(self) -> List[Type[MetricsCollector]]:
        return list(self._collectors)

    def __len__(self) -> int:
        return len(self._collectors)

    def declare_all(
        self,
        profile: DeviceProfile,
        identity: DeviceIdentity,
        sink: MetricsSink,
    ) -> List[MetricsCollector]:
        """Instantiate and declare every enabled collector, in registration order.

        Stops at the first failure; families declared before it stay in the sink.
        """
        declared: List[MetricsCollector] = []
        for collector_cls in self._collectors:
            collector = collector_cls()
            if not collector.is_enabled(profile):
                log.debug("%s: %s disabled", identity.name, collector.name())
                continue
            try:
                collector.declare(sink, identity)
            except DeclareError:
                raise
            except (TikstatError, ValueError) as e:
                raise DeclareError(f"failed to declare {collector.name()}: {e}") from e
            declared.append(collector)
        return declared

    def collect_all(self, session: "DeviceSession") -> None:
        """Run one tick. The first failing collector ends the tick.

        Values set by collectors that already ran are not rolled back.
        """
        for collector in session.collectors:
            if not collector.is_enabled(session.profile):
                continue
            try:
                collector.collect(session)
            except CollectError as e:
                raise type(e)(
                    f"failed to collect {collector.name()} for {session.profile.hostname}: {e}"
                ) from e


def build_registry() -> CollectorRegistry:
    """Assemble the built-in collectors in their fixed order."""
    from tikstat.collector.identity import IdentityCollector
    from tikstat.collector.packages import PackagesCollector
    from tikstat.collector.poe import POECollector
    from tikstat.collector.resources import ResourcesCollector
    from tikstat.collector.users import ActiveUsersCollector

    registry = CollectorRegistry()
    for collector_cls in (
        IdentityCollector,
        ResourcesCollector,
        PackagesCollector,
        POECollector,
        ActiveUsersCollector,
    ):
        registry.register(collector_cls)
    return registry.freeze()
