"""
Process-wide settings from the [TIKSTAT] section of _tikstat.conf.

Loaded once at startup; a missing file means every default applies.
Durations are in seconds.
"""

from __future__ import annotations

import configparser
import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

from tikstat.config.loader import read_ini
from tikstat.errors import ConfigParseError

log = logging.getLogger(__name__)

GLOBAL_FILE = "_tikstat.conf"
GLOBAL_SECTION = "TIKSTAT"


@dataclass(frozen=True)
class GlobalConfig:
    listen: str = "0.0.0.0:49090"
    socket_timeout: float = 5
    initial_delay_on_failure: float = 120
    max_delay_on_failure: float = 900
    delay_inc_div: int = 5
    bandwidth: bool = False
    bandwidth_test_interval: float = 600
    minimal_collect_interval: float = 5
    verbose_mode: bool = False
    fetch_routers_in_parallel: bool = False
    max_worker_threads: int = 5
    max_scrape_duration: float = 30
    total_max_scrape_duration: float = 90
    compact_default_conf_values: bool = False

    @property
    def listen_address(self) -> Tuple[str, int]:
        host, sep, port = self.listen.rpartition(":")
        if not sep:
            raise ConfigParseError(f"listen must be host:port, got {self.listen!r}")
        try:
            return host or "0.0.0.0", int(port)
        except ValueError as e:
            raise ConfigParseError(f"listen port is not a number: {self.listen!r}") from e

    def reconnect_delay(self, failures: int) -> float:
        """Seconds to wait before reconnect attempt number `failures` (1-based)."""
        divisor = max(1, self.delay_inc_div)
        delay = (1 + (failures - 1) / divisor) * self.initial_delay_on_failure
        return min(delay, self.max_delay_on_failure)


# Must be strictly positive; everything else numeric only non-negative
_POSITIVE_KEYS = {"minimal_collect_interval", "max_scrape_duration"}


def _coerce(section: configparser.SectionProxy, field: dataclasses.Field):
    key = field.name
    try:
        if field.type in ("int", int, "float", float):
            value = section.getint(key) if field.type in ("int", int) else section.getfloat(key)
            if value < 0 or (value == 0 and key in _POSITIVE_KEYS):
                raise ValueError("out of range")
            return value
        if field.type in ("bool", bool):
            return section.getboolean(key)
        return section.get(key)
    except ValueError as e:
        raise ConfigParseError(
            f"[{GLOBAL_SECTION}] bad value for '{key}': {section.get(key)!r}"
        ) from e


def parse_global(parser: configparser.ConfigParser) -> GlobalConfig:
    if not parser.has_section(GLOBAL_SECTION):
        return GlobalConfig()

    section = parser[GLOBAL_SECTION]
    fields = {f.name: f for f in dataclasses.fields(GlobalConfig)}
    unknown = sorted(set(section.keys()) - set(fields))
    if unknown:
        raise ConfigParseError(f"[{GLOBAL_SECTION}] unrecognized key(s): {', '.join(unknown)}")

    values = {key: _coerce(section, fields[key]) for key in section.keys()}
    return GlobalConfig(**values)


def load_global_config(path: Union[str, Path]) -> GlobalConfig:
    if not Path(path).exists():
        log.info("No global config at %s, using defaults", path)
        return GlobalConfig()
    try:
        return parse_global(read_ini(path))
    except ConfigParseError as e:
        if e.path:
            raise
        raise ConfigParseError(str(e), path=str(path)) from e
