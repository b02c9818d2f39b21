"""System identity: one info gauge carrying the name the router reports for itself."""

from __future__ import annotations

from tikstat.collector.base import MetricsCollector
from tikstat.errors import CollectError


class IdentityCollector(MetricsCollector):

    def declare(self, sink, identity):
        self._info = self._gauge(
            sink, identity,
            "system_identity_info",
            "Information about the system identity of the router",
            ["name"],
        )

    def collect(self, session):
        for record in session.run("/system/identity/print"):
            identity_name = record.get("name")
            if not identity_name:
                raise CollectError("missing 'name' field in /system/identity/print reply")
            self._info.labels(identity_name).set(1)
