"""
Shared gauge registry that every device thread writes into.

prometheus_client's Gauge has no constant labels, and two devices declare
the same metric names, so families are kept here keyed by (name, constant
labels) and exposed through a custom collector. Families that share a name
must share their label schema; the exposition merges them into one
GaugeMetricFamily per name.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import CollectorRegistry

from tikstat.config.profile import DeviceIdentity
from tikstat.errors import DeclareError

_ConstKey = Tuple[Tuple[str, str], ...]


class _GaugeChild:
    __slots__ = ("_family", "_key")

    def __init__(self, family: "GaugeFamily", key: Tuple[str, ...]):
        self._family = family
        self._key = key

    def set(self, value: float) -> None:
        self._family._set(self._key, float(value))


class GaugeFamily:
    """One metric name under one set of constant labels."""

    def __init__(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str],
        const_labels: Dict[str, str],
    ):
        self.name = name
        self.documentation = documentation
        self.labelnames = tuple(labelnames)
        self.const_labels = dict(const_labels)
        self._values: Dict[Tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def labels(self, *labelvalues: str, **labelkwargs: str) -> _GaugeChild:
        if labelvalues and labelkwargs:
            raise ValueError("Can't pass both *args and **kwargs")
        if labelkwargs:
            if sorted(labelkwargs) != sorted(self.labelnames):
                raise ValueError(f"{self.name}: incorrect label names {sorted(labelkwargs)}")
            labelvalues = tuple(labelkwargs[name] for name in self.labelnames)
        if len(labelvalues) != len(self.labelnames):
            raise ValueError(f"{self.name}: expected {len(self.labelnames)} label values")
        return _GaugeChild(self, tuple("" if v is None else str(v) for v in labelvalues))

    def set(self, value: float) -> None:
        """Set the value of a family declared without variable labels."""
        self.labels().set(value)

    def _set(self, key: Tuple[str, ...], value: float) -> None:
        with self._lock:
            self._values[key] = value

    def samples(self) -> List[Tuple[Tuple[str, ...], float]]:
        with self._lock:
            return list(self._values.items())

    def get(self, **labelkwargs: str) -> Optional[float]:
        key = tuple(str(labelkwargs.get(name, "")) for name in self.labelnames)
        with self._lock:
            return self._values.get(key)


class MetricsSink:
    """Thread-safe family registry, registered once with a prometheus CollectorRegistry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self._lock = threading.Lock()
        self._families: Dict[str, Dict[_ConstKey, GaugeFamily]] = {}
        self.registry = registry if registry is not None else CollectorRegistry()
        self.registry.register(self)

    def gauge(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str] = (),
        const_labels: Optional[Dict[str, str]] = None,
    ) -> GaugeFamily:
        const_labels = dict(const_labels or {})
        overlap = set(const_labels) & set(labelnames)
        if overlap:
            raise DeclareError(f"{name}: labels {sorted(overlap)} are both constant and variable")

        const_key: _ConstKey = tuple(sorted(const_labels.items()))
        family = GaugeFamily(name, documentation, labelnames, const_labels)

        with self._lock:
            by_const = self._families.setdefault(name, {})
            for existing in by_const.values():
                if (existing.labelnames != family.labelnames
                        or sorted(existing.const_labels) != sorted(const_labels)):
                    raise DeclareError(
                        f"{name}: label schema {self._schema(family)} conflicts with "
                        f"already registered {self._schema(existing)}"
                    )
            if const_key in by_const:
                raise DeclareError(f"{name}: already registered for {dict(const_key)}")
            by_const[const_key] = family
        return family

    @staticmethod
    def _schema(family: GaugeFamily) -> List[str]:
        return sorted(family.const_labels) + list(family.labelnames)

    def families_for(self, identity: DeviceIdentity) -> List[GaugeFamily]:
        const_key = tuple(sorted(identity.const_labels().items()))
        with self._lock:
            return [by_const[const_key] for by_const in self._families.values()
                    if const_key in by_const]

    def family(self, name: str, identity: DeviceIdentity) -> Optional[GaugeFamily]:
        const_key = tuple(sorted(identity.const_labels().items()))
        with self._lock:
            return self._families.get(name, {}).get(const_key)

    def discard(self, identity: DeviceIdentity) -> int:
        """Drop every family declared under a device's constant labels."""
        const_key = tuple(sorted(identity.const_labels().items()))
        removed = 0
        with self._lock:
            for name in list(self._families):
                if self._families[name].pop(const_key, None) is not None:
                    removed += 1
                if not self._families[name]:
                    del self._families[name]
        return removed

    def collect(self) -> Iterator[GaugeMetricFamily]:
        with self._lock:
            snapshot = {name: list(by_const.values()) for name, by_const in self._families.items()}

        for name, families in snapshot.items():
            first = families[0]
            const_names = sorted(first.const_labels)
            metric = GaugeMetricFamily(
                name, first.documentation, labels=const_names + list(first.labelnames)
            )
            for family in families:
                const_values = [family.const_labels[label] for label in const_names]
                for key, value in family.samples():
                    metric.add_metric(const_values + list(key), value)
            yield metric
