"""
Per-device profiles and the template merge.

Every DeviceProfile field defaults to None, meaning "not set in this
section". That keeps an explicit `poe = no` on a device distinguishable from
a section that never mentions poe, so a template `poe = yes` cannot overwrite
it.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

TEMPLATE_SECTION = "default"

# Resolution for metric flags left unset after the template merge.
DEFAULT_ENABLEMENT: Dict[str, bool] = {
    "installed_packages": True,
    "dhcp": True,
    "dhcp_lease": True,
    "connections": True,
    "connection_stats": False,
    "interface": True,
    "route": True,
    "pool": True,
    "firewall": True,
    "neighbor": True,
    "dns": False,
    "ipv6_route": False,
    "ipv6_pool": False,
    "ipv6_firewall": False,
    "ipv6_neighbor": False,
    "poe": False,
    "monitor": True,
    "netwatch": True,
    "public_ip": True,
    "wireless": True,
    "wireless_clients": True,
    "capsman": True,
    "capsman_clients": True,
    "eoip": False,
    "gre": False,
    "ipip": False,
    "lte": False,
    "ipsec": False,
    "switch_port": False,
    "kid_control_assigned": False,
    "kid_control_dynamic": False,
    "user": True,
    "queue": True,
    "bgp": False,
    "routing_stats": False,
    "certificate": False,
}


@dataclass(frozen=True)
class DeviceIdentity:
    """Constant labels attached to every metric family of one device."""

    address: str
    name: str

    def const_labels(self) -> Dict[str, str]:
        return {"routerboard_address": self.address, "routerboard_name": self.name}


@dataclass(frozen=True)
class DeviceProfile:
    name: Optional[str] = None

    # Connection
    hostname: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    enabled: Optional[bool] = None

    use_ssl: Optional[bool] = None
    no_ssl_certificate: Optional[bool] = None
    ssl_certificate_verify: Optional[bool] = None
    plaintext_login: Optional[bool] = None

    # Metric groups
    installed_packages: Optional[bool] = None
    dhcp: Optional[bool] = None
    dhcp_lease: Optional[bool] = None
    connections: Optional[bool] = None
    connection_stats: Optional[bool] = None
    interface: Optional[bool] = None
    route: Optional[bool] = None
    pool: Optional[bool] = None
    firewall: Optional[bool] = None
    neighbor: Optional[bool] = None
    dns: Optional[bool] = None
    ipv6_route: Optional[bool] = None
    ipv6_pool: Optional[bool] = None
    ipv6_firewall: Optional[bool] = None
    ipv6_neighbor: Optional[bool] = None
    poe: Optional[bool] = None
    monitor: Optional[bool] = None
    netwatch: Optional[bool] = None
    public_ip: Optional[bool] = None
    wireless: Optional[bool] = None
    wireless_clients: Optional[bool] = None
    capsman: Optional[bool] = None
    capsman_clients: Optional[bool] = None
    eoip: Optional[bool] = None
    gre: Optional[bool] = None
    ipip: Optional[bool] = None
    lte: Optional[bool] = None
    ipsec: Optional[bool] = None
    switch_port: Optional[bool] = None
    kid_control_assigned: Optional[bool] = None
    kid_control_dynamic: Optional[bool] = None
    user: Optional[bool] = None
    queue: Optional[bool] = None
    bgp: Optional[bool] = None
    routing_stats: Optional[bool] = None
    certificate: Optional[bool] = None
    remote_dhcp_entry: Optional[str] = None
    remote_capsman_entry: Optional[str] = None

    # Behaviour
    use_comments_over_names: Optional[bool] = None
    check_for_updates: Optional[bool] = None

    def is_enabled(self, flag: str) -> bool:
        """Resolve a metric flag: explicit value if set, else the per-metric default."""
        if flag not in DEFAULT_ENABLEMENT:
            raise KeyError(f"unknown metric flag: {flag}")
        value = getattr(self, flag)
        if value is None:
            return DEFAULT_ENABLEMENT[flag]
        return value

    @property
    def scheduled(self) -> bool:
        # Only an explicit `enabled = no` takes a device out.
        return self.enabled is not False

    @property
    def identity(self) -> DeviceIdentity:
        return DeviceIdentity(address=self.hostname or "", name=self.name or "")


# Field names as they appear in configuration sections (`name` comes from the section header)
PROFILE_KEYS: List[str] = [f.name for f in dataclasses.fields(DeviceProfile) if f.name != "name"]


def merge_profiles(template: DeviceProfile, override: DeviceProfile) -> DeviceProfile:
    """Overlay `override` on `template`. Neither input is modified."""
    changes = {}
    for f in dataclasses.fields(DeviceProfile):
        if getattr(override, f.name) is None:
            inherited = getattr(template, f.name)
            if inherited is not None:
                changes[f.name] = inherited
    return dataclasses.replace(override, **changes)


def resolve_profiles(sections: Dict[str, DeviceProfile]) -> Dict[str, DeviceProfile]:
    """Merge every device section against the `default` template.

    The template section itself is removed before merging, so it never
    shows up as a device regardless of its own `enabled` value.
    """
    devices = dict(sections)
    template = devices.pop(TEMPLATE_SECTION, DeviceProfile())

    resolved: Dict[str, DeviceProfile] = {}
    for name, section in devices.items():
        merged = merge_profiles(template, section)
        resolved[name] = dataclasses.replace(merged, name=name)
    return resolved


def scheduled_profiles(resolved: Dict[str, DeviceProfile]) -> List[DeviceProfile]:
    return [profile for profile in resolved.values() if profile.scheduled]


def enabled_flags(profile: DeviceProfile, flags: Optional[Iterable[str]] = None) -> List[str]:
    return [flag for flag in (flags or DEFAULT_ENABLEMENT) if profile.is_enabled(flag)]
