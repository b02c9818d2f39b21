"""
System resources: memory, storage, CPU and uptime.

Numeric fields that do not parse are skipped for that tick rather than
failing the whole collector; the gauge keeps its previous value.
"""

from __future__ import annotations

import re
from typing import Optional

from tikstat.collector.base import MetricsCollector, parse_float

_LABELS = ["architecture_name", "board_name", "cpu", "version"]

# (gauge name, record key, help)
_GAUGES = [
    ("system_free_memory", "free-memory", "Free memory available on the router (in bytes)."),
    ("system_total_memory", "total-memory", "Total memory on the router (in bytes)."),
    ("system_free_hdd_space", "free-hdd-space", "Free HDD space available on the router (in bytes)."),
    ("system_total_hdd_space", "total-hdd-space", "Total HDD space on the router (in bytes)."),
    ("system_cpu_load", "cpu-load", "CPU load on the router (percentage)."),
    ("system_cpu_count", "cpu-count", "Number of available CPU cores."),
    ("system_cpu_frequency", "cpu-frequency", "CPU frequency in MHz."),
]

_PROPLIST = [
    "uptime", "free-memory", "total-memory", "free-hdd-space", "total-hdd-space",
    "cpu-load", "cpu-count", "cpu-frequency", "architecture-name", "board-name", "cpu", "version",
]

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|us|w|d|h|m|s)")
_UNIT_SECONDS = {
    "w": 604800,
    "d": 86400,
    "h": 3600,
    "m": 60,
    "s": 1,
    "ms": 0.001,
    "us": 0.000001,
}


def parse_duration(text: Optional[str]) -> Optional[float]:
    """Convert a RouterOS duration such as `1w2d3h4m5s` or `01:02:03` to seconds."""
    if not text:
        return None
    text = text.strip()

    plain = parse_float(text)
    if plain is not None:
        return plain

    # Older releases print `3d04:05:06`
    days = 0.0
    day_match = re.fullmatch(r"(?:(\d+)d)?(\d+):(\d{2}):(\d{2})", text)
    if day_match:
        days = float(day_match.group(1) or 0)
        hours, minutes, seconds = (int(g) for g in day_match.group(2, 3, 4))
        return days * 86400 + hours * 3600 + minutes * 60 + seconds

    total = 0.0
    consumed = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != consumed:
            return None
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        consumed = match.end()
    if consumed != len(text):
        return None
    return total


class ResourcesCollector(MetricsCollector):

    def declare(self, sink, identity):
        self._gauges = [
            (self._gauge(sink, identity, name, help_text, _LABELS), key)
            for name, key, help_text in _GAUGES
        ]
        self._uptime = self._gauge(sink, identity, "system_uptime", "System uptime in seconds.", _LABELS)

    def collect(self, session):
        records = session.run("/system/resource/print", "proplist=" + ",".join(_PROPLIST))
        for record in records:
            labels = (
                record.get("architecture-name", ""),
                record.get("board-name", ""),
                record.get("cpu", ""),
                record.get("version", ""),
            )
            for gauge, key in self._gauges:
                value = parse_float(record.get(key))
                if value is not None:
                    gauge.labels(*labels).set(value)

            uptime = parse_duration(record.get("uptime"))
            if uptime is not None:
                self._uptime.labels(*labels).set(uptime)
