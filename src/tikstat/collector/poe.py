"""
Power over Ethernet output per port.

Disabled unless the profile sets `poe = yes`: the monitor command is issued
once per port and is slow on switches with many ports.
"""

from __future__ import annotations

from tikstat.collector.base import MetricsCollector, parse_float

_LABELS = ["name", "poe_out", "poe_priority", "poe_out_status"]


class POECollector(MetricsCollector):

    flag = "poe"

    def declare(self, sink, identity):
        self._voltage = self._gauge(
            sink, identity, "poe_out_voltage", "Output voltage of PoE interfaces (in Volts).", _LABELS)
        self._current = self._gauge(
            sink, identity, "poe_out_current", "Output current of PoE interfaces (in Amperes).", _LABELS)
        self._power = self._gauge(
            sink, identity, "poe_out_power", "Output power of PoE interfaces (in Watts).", _LABELS)
        self._info = self._gauge(
            sink, identity, "poe_info", "Information about PoE interfaces.", _LABELS)

    def collect(self, session):
        ports = session.run("/interface/ethernet/poe/print", "proplist=name")
        for idx, port in enumerate(ports):
            monitor = session.run(
                "/interface/ethernet/poe/monitor",
                "once=",
                f"numbers={idx}",
            )
            for record in monitor:
                labels = {
                    "name": record.get("name", port.get("name", "")),
                    "poe_out": record.get("poe-out", ""),
                    "poe_priority": record.get("poe-priority", ""),
                    "poe_out_status": record.get("poe-out-status", ""),
                }
                for gauge, key in (
                    (self._voltage, "poe-out-voltage"),
                    (self._current, "poe-out-current"),
                    (self._power, "poe-out-power"),
                ):
                    value = parse_float(record.get(key))
                    if value is not None:
                        gauge.labels(**labels).set(value)
                self._info.labels(**labels).set(1)
