"""Tests for INI loading of device sections and the global section."""

import os
import tempfile

import pytest

from tikstat.config.global_config import GlobalConfig, load_global_config, parse_global
from tikstat.config.loader import load_devices, parse_devices, read_ini
from tikstat.config.profile import resolve_profiles, scheduled_profiles
from tikstat.errors import ConfigParseError

DEVICES = """
[default]
username = admin
password = changeme
port = 8729
use_ssl = yes
ssl_certificate_verify = no

[core-router]
hostname = 192.168.88.1

[lab]
hostname = 10.0.0.9
enabled = no

[office]
Hostname = 10.0.0.3
POE = yes
user = false
"""


def _parse(text: str):
    return parse_devices(read_ini(text, text=True))


def _write(text: str) -> str:
    with tempfile.NamedTemporaryFile("w", suffix=".conf", delete=False) as f:
        f.write(text)
        return f.name


def test_sections_become_profiles():
    sections = _parse(DEVICES)
    assert set(sections) == {"default", "core-router", "lab", "office"}
    assert sections["default"].port == 8729
    assert sections["default"].ssl_certificate_verify is False


def test_absent_keys_stay_unset():
    core = _parse(DEVICES)["core-router"]
    assert core.username is None
    assert core.poe is None
    assert core.enabled is None


def test_keys_are_case_insensitive():
    office = _parse(DEVICES)["office"]
    assert office.hostname == "10.0.0.3"
    assert office.poe is True
    assert office.user is False


def test_resolved_devices_from_file():
    path = _write(DEVICES)
    try:
        resolved = resolve_profiles(load_devices(path))
    finally:
        os.unlink(path)

    assert "default" not in resolved
    assert resolved["core-router"].username == "admin"
    assert resolved["core-router"].port == 8729
    assert resolved["core-router"].is_enabled("poe") is False
    assert resolved["core-router"].is_enabled("user") is True
    assert [p.name for p in scheduled_profiles(resolved)] == ["core-router", "office"]


def test_unknown_key_is_rejected():
    with pytest.raises(ConfigParseError, match="poe_enabled"):
        _parse("[edge]\nhostname = 10.0.0.1\npoe_enabled = yes\n")


def test_bad_bool_is_rejected():
    with pytest.raises(ConfigParseError, match="poe"):
        _parse("[edge]\npoe = maybe\n")


def test_bad_port_is_rejected():
    with pytest.raises(ConfigParseError, match="port"):
        _parse("[edge]\nport = https\n")


def test_duplicate_section_is_rejected():
    with pytest.raises(ConfigParseError):
        _parse("[edge]\nhostname = a\n[edge]\nhostname = b\n")


def test_garbage_is_rejected():
    with pytest.raises(ConfigParseError):
        _parse("hostname = 10.0.0.1\n")


def test_missing_devices_file_is_a_config_error():
    with pytest.raises(ConfigParseError, match="cannot read"):
        load_devices("/nonexistent/tikstat.conf")


def test_uppercase_default_is_an_ordinary_section():
    sections = _parse("[DEFAULT]\nhostname = 10.0.0.1\n[edge]\nport = 80\n")
    assert sections["DEFAULT"].hostname == "10.0.0.1"
    assert sections["edge"].hostname is None


def test_global_defaults_when_file_missing():
    config = load_global_config("/nonexistent/_tikstat.conf")
    assert config == GlobalConfig()
    assert config.listen == "0.0.0.0:49090"
    assert config.socket_timeout == 5
    assert config.initial_delay_on_failure == 120
    assert config.max_delay_on_failure == 900
    assert config.delay_inc_div == 5
    assert config.bandwidth is False
    assert config.bandwidth_test_interval == 600
    assert config.minimal_collect_interval == 5
    assert config.verbose_mode is False
    assert config.fetch_routers_in_parallel is False
    assert config.max_worker_threads == 5
    assert config.max_scrape_duration == 30
    assert config.total_max_scrape_duration == 90
    assert config.compact_default_conf_values is False


def test_global_overrides():
    path = _write(
        "[TIKSTAT]\nlisten = 127.0.0.1:9436\nminimal_collect_interval = 15\n"
        "max_scrape_duration = 2.5\nfetch_routers_in_parallel = True\n"
    )
    try:
        config = load_global_config(path)
    finally:
        os.unlink(path)

    assert config.listen_address == ("127.0.0.1", 9436)
    assert config.minimal_collect_interval == 15
    assert config.max_scrape_duration == 2.5
    assert config.fetch_routers_in_parallel is True
    assert config.socket_timeout == 5


def test_global_unknown_key_is_rejected():
    with pytest.raises(ConfigParseError, match="scrape_everything"):
        parse_global(read_ini("[TIKSTAT]\nscrape_everything = yes\n", text=True))


def test_global_negative_value_is_rejected():
    with pytest.raises(ConfigParseError, match="socket_timeout"):
        parse_global(read_ini("[TIKSTAT]\nsocket_timeout = -1\n", text=True))


@pytest.mark.parametrize("key", ["minimal_collect_interval", "max_scrape_duration"])
def test_zero_interval_is_rejected(key):
    with pytest.raises(ConfigParseError, match=key):
        parse_global(read_ini(f"[TIKSTAT]\n{key} = 0\n", text=True))


def test_zero_delay_is_allowed():
    config = parse_global(read_ini("[TIKSTAT]\ninitial_delay_on_failure = 0\n", text=True))
    assert config.initial_delay_on_failure == 0


def test_listen_without_port_is_rejected():
    with pytest.raises(ConfigParseError):
        GlobalConfig(listen="localhost").listen_address


def test_reconnect_delay_grows_and_caps():
    config = GlobalConfig(initial_delay_on_failure=120, max_delay_on_failure=900, delay_inc_div=5)
    delays = [config.reconnect_delay(n) for n in range(1, 40)]

    assert delays[0] == 120
    assert delays[5] == pytest.approx(240)
    assert delays == sorted(delays)
    assert max(delays) == 900
