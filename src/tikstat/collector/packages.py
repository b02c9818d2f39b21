"""Installed packages as info gauges."""

from __future__ import annotations

from tikstat.collector.base import MetricsCollector


class PackagesCollector(MetricsCollector):

    flag = "installed_packages"

    def declare(self, sink, identity):
        self._info = self._gauge(
            sink, identity,
            "installed_packages_info",
            "Information about installed packages on the router",
            ["name", "version", "build_time", "disabled"],
        )

    def collect(self, session):
        records = session.run("/system/package/print", "proplist=name,version,build-time,disabled")
        for record in records:
            self._info.labels(
                record.get("name", ""),
                record.get("version", ""),
                record.get("build-time", ""),
                record.get("disabled", ""),
            ).set(1)
