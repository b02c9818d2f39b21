"""
Runs one polling thread per device.

start() brings every scheduled device through open -> declare -> first
collect before returning, so the exposition endpoint never serves an empty
scrape. A device that fails any of those steps is logged, recorded in
`failures` and left out; the others carry on. Each polling thread then
waits on the shared stop event between ticks and closes its own session on
the way out.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from tikstat.collector.base import CollectorRegistry
from tikstat.config.global_config import GlobalConfig
from tikstat.config.profile import DeviceProfile
from tikstat.errors import CollectError, ConnectError, DeclareError, TikstatError
from tikstat.metrics import MetricsSink
from tikstat.session import DeviceSession, SessionState, TransportFactory

log = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_GRACE = 10.0


@dataclass
class DeviceFailure:
    name: str
    phase: str  # "connect", "declare", "collect" or "timeout"
    error: Exception


def _phase_of(error: Exception) -> str:
    if isinstance(error, ConnectError):
        return "connect"
    if isinstance(error, DeclareError):
        return "declare"
    return "collect"


def _phase_reached(state: SessionState) -> str:
    """Startup step that was running when a session in `state` failed unexpectedly."""
    if state in (SessionState.UNINITIALIZED, SessionState.CLOSED):
        return "connect"
    if state is SessionState.CONNECTED:
        return "declare"
    return "collect"


class Orchestrator:

    def __init__(
        self,
        profiles: Iterable[DeviceProfile],
        config: GlobalConfig,
        registry: CollectorRegistry,
        sink: MetricsSink,
        transport_factory: Optional[TransportFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._profiles = [p for p in profiles if p.scheduled]
        self._config = config
        self._registry = registry
        self._sink = sink
        self._transport_factory = transport_factory
        self._clock = clock
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._threads: Dict[str, threading.Thread] = {}
        self.sessions: Dict[str, DeviceSession] = {}
        self.failures: List[DeviceFailure] = []

    # -- startup --

    def _new_session(self, profile: DeviceProfile) -> DeviceSession:
        return DeviceSession(
            profile,
            self._registry,
            transport_factory=self._transport_factory,
            socket_timeout=self._config.socket_timeout,
        )

    def _record_failure(self, name: str, phase: str, error: Exception, exc_info: bool = False):
        with self._lock:
            self.failures.append(DeviceFailure(name, phase, error))
        log.error("%s: startup failed during %s: %s", name, phase, error, exc_info=exc_info)

    def _abandon(self, session: DeviceSession):
        session.close()
        self._sink.discard(session.identity)

    def _start_device(self, profile: DeviceProfile) -> Optional[DeviceSession]:
        session = self._new_session(profile)
        log.info("Starting collector for router: %s", session.name)
        try:
            session.open()
            session.declare(self._sink)
            session.collect_once(self._config.max_scrape_duration)
        except TikstatError as e:
            self._abandon(session)
            self._record_failure(session.name, _phase_of(e), e)
            return None
        except Exception as e:
            phase = _phase_reached(session.state)
            self._abandon(session)
            self._record_failure(session.name, phase, e, exc_info=True)
            return None
        return session

    def _start_parallel(self) -> List[DeviceSession]:
        started: List[DeviceSession] = []
        executor = ThreadPoolExecutor(
            max_workers=max(1, self._config.max_worker_threads),
            thread_name_prefix="tikstat-startup",
        )
        futures: Dict[Future, DeviceProfile] = {
            executor.submit(self._start_device, profile): profile for profile in self._profiles
        }
        done, pending = wait(futures, timeout=self._config.total_max_scrape_duration)

        for future in done:
            session = future.result()
            if session is not None:
                started.append(session)

        for future in pending:
            profile = futures[future]
            self._record_failure(
                profile.name or "", "timeout",
                TimeoutError(f"startup exceeded {self._config.total_max_scrape_duration}s"),
            )
            future.cancel()
            future.add_done_callback(self._discard_late_start)

        executor.shutdown(wait=False)
        # keep configuration order
        order = {p.name: i for i, p in enumerate(self._profiles)}
        return sorted(started, key=lambda s: order.get(s.profile.name, 0))

    def _discard_late_start(self, future: Future):
        if future.cancelled():
            return
        session = future.result()
        if session is not None:
            self._abandon(session)

    def start(self) -> List[DeviceSession]:
        """Start every scheduled device and launch its polling thread."""
        if self._config.fetch_routers_in_parallel and len(self._profiles) > 1:
            started = self._start_parallel()
        else:
            started = [s for s in map(self._start_device, self._profiles) if s is not None]

        for session in started:
            self.sessions[session.name] = session
            thread = threading.Thread(
                target=self._poll_loop,
                args=(session,),
                name=f"tikstat-{session.name}",
                daemon=True,
            )
            self._threads[session.name] = thread
            thread.start()

        log.info("%d of %d device(s) started", len(started), len(self._profiles))
        return started

    # -- polling --

    def _poll_loop(self, session: DeviceSession):
        interval = self._config.minimal_collect_interval
        budget = self._config.max_scrape_duration
        failures = 0
        retry_at = 0.0

        try:
            while not self._stop.wait(interval):
                if failures:
                    if self._clock() < retry_at:
                        continue
                    try:
                        session.reconnect()
                    except ConnectError as e:
                        failures += 1
                        delay = self._config.reconnect_delay(failures)
                        retry_at = self._clock() + delay
                        log.warning("%s: reconnect failed (%s), next attempt in %.0fs", session.name, e, delay)
                        continue
                    failures = 0

                try:
                    session.collect_once(budget)
                except ConnectError as e:
                    failures = 1
                    delay = self._config.reconnect_delay(failures)
                    retry_at = self._clock() + delay
                    log.warning("%s: connection lost (%s), reconnecting in %.0fs", session.name, e, delay)
                except CollectError as e:
                    log.warning("failed to collect metrics: %s", e)
                except Exception:
                    log.exception("%s: unexpected error during collection", session.name)
        finally:
            session.close()
            log.info("Stopping collector for router: %s", session.name)

    # -- shutdown --

    def request_stop(self):
        self._stop.set()

    def running(self) -> List[str]:
        return [name for name, thread in self._threads.items() if thread.is_alive()]

    def shutdown(self, grace: float = DEFAULT_SHUTDOWN_GRACE) -> List[str]:
        """Signal every thread and join them. Returns names still running after `grace`."""
        self._stop.set()
        deadline = self._clock() + grace
        for thread in self._threads.values():
            thread.join(max(0.0, deadline - self._clock()))

        stuck = self.running()
        if stuck:
            log.warning("Device thread(s) still running after %.0fs: %s", grace, ", ".join(stuck))
        else:
            log.info("All device threads stopped")
        return stuck

    def run_forever(self, poll: float = 1.0):
        """Block until request_stop() is called (e.g. from a signal handler)."""
        while not self._stop.wait(poll):
            pass
