"""
INI loading for device sections.

One section per device, plus the `default` template. Keys are
case-insensitive, section names are not. Unknown keys are an error rather
than being ignored, so a typo like `poe_enabled = yes` cannot silently fall
back to the default policy.
"""

from __future__ import annotations

import configparser
import logging
from pathlib import Path
from typing import Dict, Union

from tikstat.config.profile import PROFILE_KEYS, DeviceProfile
from tikstat.errors import ConfigParseError

log = logging.getLogger(__name__)

DEVICES_FILE = "tikstat.conf"

_INT_KEYS = {"port"}
_STR_KEYS = {"hostname", "username", "password", "remote_dhcp_entry", "remote_capsman_entry"}

# configparser treats its default section as inherited by every other
# section; move it out of the way so a literal [DEFAULT] is just a section.
_NO_INHERITED_SECTION = "\x00inherited"


def new_parser() -> configparser.ConfigParser:
    return configparser.ConfigParser(
        interpolation=None,
        strict=True,
        default_section=_NO_INHERITED_SECTION,
    )


def read_ini(source: Union[str, Path], text: bool = False) -> configparser.ConfigParser:
    """Parse an INI file (or a string when `text` is set), wrapping parser errors."""
    parser = new_parser()
    origin = "<string>" if text else str(source)
    try:
        if text:
            parser.read_string(str(source), source=origin)
        else:
            with open(source, encoding="utf-8") as fh:
                parser.read_file(fh, source=origin)
    except OSError as e:
        raise ConfigParseError(f"cannot read file: {e}", path=origin) from e
    except configparser.Error as e:
        raise ConfigParseError(str(e).replace("\n", " "), path=origin) from e
    return parser


def _convert(section: configparser.SectionProxy, key: str):
    try:
        if key in _INT_KEYS:
            return section.getint(key)
        if key in _STR_KEYS:
            return section.get(key)
        return section.getboolean(key)
    except ValueError as e:
        raise ConfigParseError(
            f"section [{section.name}]: bad value for '{key}': {section.get(key)!r}"
        ) from e


def section_to_profile(section: configparser.SectionProxy) -> DeviceProfile:
    unknown = sorted(set(section.keys()) - set(PROFILE_KEYS))
    if unknown:
        raise ConfigParseError(
            f"section [{section.name}]: unrecognized key(s): {', '.join(unknown)}"
        )
    values = {key: _convert(section, key) for key in section.keys()}
    return DeviceProfile(**values)


def parse_devices(parser: configparser.ConfigParser) -> Dict[str, DeviceProfile]:
    """Map every section (template included) to an unresolved DeviceProfile."""
    return {name: section_to_profile(parser[name]) for name in parser.sections()}


def load_devices(path: Union[str, Path]) -> Dict[str, DeviceProfile]:
    parser = read_ini(path)
    try:
        sections = parse_devices(parser)
    except ConfigParseError as e:
        raise ConfigParseError(str(e), path=str(path)) from e
    log.debug("Loaded %d section(s) from %s", len(sections), path)
    return sections
