"""Currently logged-in users."""

from __future__ import annotations

from tikstat.collector.base import MetricsCollector

_FIELDS = ("name", "when", "address", "via", "group")


class ActiveUsersCollector(MetricsCollector):

    flag = "user"

    def declare(self, sink, identity):
        self._info = self._gauge(
            sink, identity,
            "active_users_info",
            "Information about active users on the router",
            list(_FIELDS),
        )

    def collect(self, session):
        records = session.run("/user/active/print", "proplist=" + ",".join(_FIELDS))
        for record in records:
            self._info.labels(*(record.get(field, "") for field in _FIELDS)).set(1)
