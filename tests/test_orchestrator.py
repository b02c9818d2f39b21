"""
Tests for startup isolation, per-device polling threads and shutdown.

Devices are backed by in-memory transports; tick intervals are a few
milliseconds so the polling loops turn over quickly.
"""

import time

from prometheus_client import generate_latest

from tikstat.collector.base import build_registry
from tikstat.config.global_config import GlobalConfig
from tikstat.config.profile import DeviceProfile, resolve_profiles, scheduled_profiles
from tikstat.errors import CollectError
from tikstat.metrics import MetricsSink
from tikstat.mock.fake_routeros_server import FakeRouter
from tikstat.mock.transport import InMemoryTransport
from tikstat.orchestrator import Orchestrator
from tikstat.session import SessionState
from tikstat.transport.routeros import RouterOSTransport


class _Devices:
    """Transport factory handing out a fresh in-memory transport per connect."""

    def __init__(self):
        self.unreachable = set()
        self.failing = {}
        self.transports = {}

    def __call__(self, profile, timeout):
        transport = InMemoryTransport(FakeRouter(identity=profile.name), address=profile.hostname)
        transport.unreachable = profile.name in self.unreachable
        transport.failing_commands = self.failing.setdefault(profile.name, {})
        self.transports.setdefault(profile.name, []).append(transport)
        return transport

    def latest(self, name):
        return self.transports[name][-1]


def _make_config(**overrides) -> GlobalConfig:
    defaults = dict(
        minimal_collect_interval=0.01,
        max_scrape_duration=2,
        socket_timeout=1,
        initial_delay_on_failure=0.05,
        max_delay_on_failure=0.2,
        delay_inc_div=2,
    )
    defaults.update(overrides)
    return GlobalConfig(**defaults)


def _profiles(*names, **extra):
    sections = {"default": DeviceProfile(username="admin", port=8729)}
    for i, name in enumerate(names):
        sections[name] = DeviceProfile(hostname=f"10.0.0.{i + 1}", **extra.get(name, {}))
    return scheduled_profiles(resolve_profiles(sections))


def _wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def _make_orchestrator(profiles, devices, **config):
    sink = MetricsSink()
    orchestrator = Orchestrator(
        profiles, _make_config(**config), build_registry(), sink, transport_factory=devices,
    )
    return orchestrator, sink


def test_start_collects_before_returning():
    devices = _Devices()
    orchestrator, sink = _make_orchestrator(_profiles("core-router", "edge"), devices)
    try:
        started = orchestrator.start()
        assert [s.name for s in started] == ["core-router", "edge"]

        text = generate_latest(sink.registry).decode()
        assert 'mktxp_system_identity_info{routerboard_address="10.0.0.1",routerboard_name="core-router",name="core-router"} 1.0' in text
        assert 'routerboard_name="edge"' in text
    finally:
        assert orchestrator.shutdown(grace=2) == []


def test_disabled_device_gets_no_session_or_metrics():
    devices = _Devices()
    profiles = _profiles("core-router", "lab", lab={"enabled": False})
    orchestrator, sink = _make_orchestrator(profiles, devices)
    try:
        orchestrator.start()
        assert list(orchestrator.sessions) == ["core-router"]
        assert "lab" not in devices.transports
        assert 'routerboard_name="lab"' not in generate_latest(sink.registry).decode()
    finally:
        orchestrator.shutdown(grace=2)


def test_disabled_profile_passed_directly_is_skipped():
    devices = _Devices()
    profiles = [DeviceProfile(name="lab", hostname="10.0.0.9", enabled=False)]
    orchestrator, _ = _make_orchestrator(profiles, devices)
    assert orchestrator.start() == []
    assert devices.transports == {}
    orchestrator.shutdown(grace=1)


def test_connect_failure_is_isolated():
    devices = _Devices()
    devices.unreachable.add("edge")
    orchestrator, sink = _make_orchestrator(_profiles("core-router", "edge", "office"), devices)
    try:
        started = orchestrator.start()
        assert [s.name for s in started] == ["core-router", "office"]
        assert [(f.name, f.phase) for f in orchestrator.failures] == [("edge", "connect")]
        assert 'routerboard_name="edge"' not in generate_latest(sink.registry).decode()
    finally:
        orchestrator.shutdown(grace=2)


def test_initial_collect_failure_excludes_device_and_its_metrics():
    devices = _Devices()
    devices.failing["edge"] = {"/system/resource/print": CollectError("resource print failed")}
    orchestrator, sink = _make_orchestrator(_profiles("core-router", "edge"), devices)
    try:
        orchestrator.start()
        assert list(orchestrator.sessions) == ["core-router"]
        assert [(f.name, f.phase) for f in orchestrator.failures] == [("edge", "collect")]
        assert devices.latest("edge").closed
        assert sink.families_for(DeviceProfile(name="edge", hostname="10.0.0.2").identity) == []
    finally:
        orchestrator.shutdown(grace=2)


def test_tick_failure_does_not_stop_other_devices():
    devices = _Devices()
    orchestrator, _ = _make_orchestrator(_profiles("core-router", "edge"), devices)
    try:
        orchestrator.start()
        devices.failing["edge"]["/system/identity/print"] = CollectError("injected")

        core = devices.latest("core-router")
        edge = devices.latest("edge")
        core_before = len(core.calls)
        edge_before = len(edge.calls)

        assert _wait_until(lambda: len(core.calls) > core_before + 20)
        # edge keeps ticking (and failing) on its own schedule
        assert _wait_until(lambda: len(edge.calls) > edge_before + 5)
        assert orchestrator.running() == ["core-router", "edge"]
        assert orchestrator.sessions["edge"].state in (SessionState.IDLE, SessionState.COLLECTING)
    finally:
        orchestrator.shutdown(grace=2)


def test_lost_connection_reconnects_after_backoff():
    devices = _Devices()
    orchestrator, _ = _make_orchestrator(_profiles("core-router"), devices)
    try:
        orchestrator.start()
        first = devices.latest("core-router")
        first.unreachable = True

        assert _wait_until(lambda: len(devices.transports["core-router"]) >= 2)
        assert first.closed
        second = devices.latest("core-router")
        assert _wait_until(lambda: len(second.calls) > 0)
    finally:
        orchestrator.shutdown(grace=2)


def test_shutdown_closes_every_session_and_joins_threads():
    devices = _Devices()
    orchestrator, _ = _make_orchestrator(_profiles("a", "b", "c"), devices)
    orchestrator.start()
    assert len(orchestrator.running()) == 3

    started = time.monotonic()
    stuck = orchestrator.shutdown(grace=2)

    assert stuck == []
    assert time.monotonic() - started < 2
    assert orchestrator.running() == []
    for name, session in orchestrator.sessions.items():
        assert session.state is SessionState.CLOSED
        assert devices.latest(name).closed


def test_parallel_startup():
    devices = _Devices()
    devices.unreachable.add("b")
    orchestrator, _ = _make_orchestrator(
        _profiles("a", "b", "c", "d"), devices,
        fetch_routers_in_parallel=True, max_worker_threads=2,
    )
    try:
        started = orchestrator.start()
        assert [s.name for s in started] == ["a", "c", "d"]
        assert [f.name for f in orchestrator.failures] == ["b"]
    finally:
        assert orchestrator.shutdown(grace=2) == []


def test_run_forever_returns_after_stop():
    devices = _Devices()
    orchestrator, _ = _make_orchestrator(_profiles("a"), devices)
    orchestrator.start()
    orchestrator.request_stop()
    orchestrator.run_forever(poll=0.01)
    assert orchestrator.shutdown(grace=2) == []


def test_unexpected_startup_errors_stay_with_their_device():
    devices = _Devices()
    devices.failing["buggy"] = {"/system/resource/print": ValueError("bad record")}

    def factory(profile, timeout):
        if profile.name == "broken":
            raise RuntimeError("transport setup exploded")
        return devices(profile, timeout)

    sink = MetricsSink()
    orchestrator = Orchestrator(
        _profiles("broken", "buggy", "core-router"), _make_config(), build_registry(), sink,
        transport_factory=factory,
    )
    try:
        started = orchestrator.start()
        assert [s.name for s in started] == ["core-router"]
        assert [(f.name, f.phase) for f in orchestrator.failures] == [
            ("broken", "connect"), ("buggy", "collect"),
        ]
        assert devices.latest("buggy").closed
        assert 'routerboard_name="buggy"' not in generate_latest(sink.registry).decode()
    finally:
        orchestrator.shutdown(grace=2)


def test_ipv6_device_with_real_transport_does_not_block_siblings():
    devices = _Devices()

    def factory(profile, timeout):
        if profile.name == "v6":
            return RouterOSTransport.from_profile(profile, timeout)
        return devices(profile, timeout)

    profiles = [
        DeviceProfile(name="v6", hostname="::1", port=1, use_ssl=False),
        DeviceProfile(name="core-router", hostname="10.0.0.1"),
    ]
    sink = MetricsSink()
    orchestrator = Orchestrator(
        profiles, _make_config(socket_timeout=1), build_registry(), sink, transport_factory=factory,
    )
    try:
        started = orchestrator.start()
        assert [s.name for s in started] == ["core-router"]
        assert [(f.name, f.phase) for f in orchestrator.failures] == [("v6", "connect")]
    finally:
        orchestrator.shutdown(grace=2)


def test_parallel_startup_survives_unexpected_errors():
    devices = _Devices()
    devices.failing["b"] = {"/system/identity/print": KeyError("name")}
    orchestrator, _ = _make_orchestrator(
        _profiles("a", "b", "c"), devices, fetch_routers_in_parallel=True,
    )
    try:
        started = orchestrator.start()
        assert [s.name for s in started] == ["a", "c"]
        assert [(f.name, f.phase) for f in orchestrator.failures] == [("b", "collect")]
    finally:
        orchestrator.shutdown(grace=2)


class _SlowProbe(InMemoryTransport):

    def probe(self):
        time.sleep(0.5)
        return super().probe()


def test_parallel_startup_is_bounded_and_late_devices_are_discarded():
    devices = _Devices()

    def factory(profile, timeout):
        if profile.name == "slow":
            transport = _SlowProbe(FakeRouter(identity="slow"), address=profile.hostname)
            devices.transports.setdefault("slow", []).append(transport)
            return transport
        return devices(profile, timeout)

    sink = MetricsSink()
    orchestrator = Orchestrator(
        _profiles("fast", "slow"),
        _make_config(fetch_routers_in_parallel=True, total_max_scrape_duration=0.1),
        build_registry(), sink, transport_factory=factory,
    )
    try:
        started_at = time.monotonic()
        started = orchestrator.start()

        assert time.monotonic() - started_at < 0.45
        assert [s.name for s in started] == ["fast"]
        assert [(f.name, f.phase) for f in orchestrator.failures] == [("slow", "timeout")]
        assert orchestrator.running() == ["fast"]

        # the late start finishes in the background, then is torn down
        assert _wait_until(lambda: devices.latest("slow").closed)
        slow = DeviceProfile(name="slow", hostname="10.0.0.2").identity
        assert _wait_until(lambda: sink.families_for(slow) == [])
        text = generate_latest(sink.registry).decode()
        assert 'routerboard_name="slow"' not in text
        assert 'routerboard_name="fast"' in text
    finally:
        orchestrator.shutdown(grace=2)
