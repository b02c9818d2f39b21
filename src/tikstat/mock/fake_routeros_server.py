"""
Fake RouterOS REST API for testing without a router.

    tikstat mock-device --port 18728

Answers the handful of commands the built-in collectors issue, with basic
auth. Plain HTTP only, so point a device section at it with `use_ssl = no`.
"""

from __future__ import annotations

import base64
import json
import random
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Dict, List, Optional

_START = time.time()

POE_PORTS = ["ether2", "ether3", "ether4"]


def _uptime() -> str:
    seconds = int(time.time() - _START) + 3 * 86400 + 4 * 3600
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{days}d{hours}h{minutes}m{seconds}s"


class FakeRouter:
    """In-memory device state. Numbers drift a little on every read."""

    def __init__(self, identity: str = "MikroTik", seed: int = 42):
        self.identity = identity
        self._rng = random.Random(seed)

    def resource(self) -> Dict[str, str]:
        return {
            "uptime": _uptime(),
            "free-memory": str(self._rng.randint(180, 220) * 1024 * 1024),
            "total-memory": str(1024 * 1024 * 1024),
            "free-hdd-space": str(96 * 1024 * 1024),
            "total-hdd-space": str(128 * 1024 * 1024),
            "cpu-load": str(self._rng.randint(1, 35)),
            "cpu-count": "4",
            "cpu-frequency": "1400",
            "architecture-name": "arm64",
            "board-name": "RB5009UG+S+",
            "cpu": "ARM64",
            "version": "7.15.3 (stable)",
        }

    def packages(self) -> List[Dict[str, str]]:
        return [
            {"name": "routeros", "version": "7.15.3", "build-time": "2024-07-24 10:39:00", "disabled": "false"},
            {"name": "container", "version": "7.15.3", "build-time": "2024-07-24 10:39:00", "disabled": "true"},
        ]

    def poe_monitor(self, port: str) -> Dict[str, str]:
        powered = port != POE_PORTS[-1]
        return {
            "name": port,
            "poe-out": "auto-on",
            "poe-priority": "10",
            "poe-out-status": "powered-on" if powered else "waiting-for-load",
            "poe-out-voltage": f"{self._rng.uniform(51.5, 52.5):.1f}" if powered else "0",
            "poe-out-current": str(self._rng.randint(80, 140)) if powered else "0",
            "poe-out-power": f"{self._rng.uniform(4.0, 7.5):.1f}" if powered else "0",
        }

    def active_users(self) -> List[Dict[str, str]]:
        return [
            {"name": "admin", "when": "2024-08-01 12:00:01", "address": "10.0.0.5", "via": "api", "group": "full"},
        ]

    def command(self, path: str, body: Dict[str, object]) -> Optional[object]:
        """Reply for one REST call, or None for an unknown command."""
        if path in ("/system/identity", "/system/identity/print"):
            record = {"name": self.identity}
            return record if path == "/system/identity" else [record]
        if path == "/system/resource/print":
            return [self.resource()]
        if path == "/system/package/print":
            return self.packages()
        if path == "/interface/ethernet/poe/print":
            return [{".id": f"*{i + 1}", "name": name} for i, name in enumerate(POE_PORTS)]
        if path == "/interface/ethernet/poe/monitor":
            numbers = str(body.get("numbers", "0"))
            port = numbers if numbers in POE_PORTS else POE_PORTS[int(numbers) % len(POE_PORTS)]
            return [self.poe_monitor(port)]
        if path == "/user/active/print":
            return self.active_users()
        return None


def apply_proplist(reply, body: Dict[str, object]):
    props = body.get(".proplist")
    if not props or not isinstance(reply, list):
        return reply
    return [{k: v for k, v in record.items() if k in props} for record in reply]


def make_handler(router: FakeRouter, username: str = "admin", password: str = ""):
    expected = "Basic " + base64.b64encode(f"{username}:{password}".encode()).decode()

    class _RestHandler(BaseHTTPRequestHandler):

        def _send(self, status: int, payload):
            data = json.dumps(payload).encode()
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def _handle(self, body: Dict[str, object]):
            if self.headers.get("Authorization") != expected:
                self._send(401, {"error": 401, "message": "Unauthorized"})
                return
            if not self.path.startswith("/rest/"):
                self._send(404, {"error": 404, "message": "Not Found"})
                return

            reply = router.command(self.path[len("/rest"):], body)
            if reply is None:
                self._send(400, {"error": 400, "message": "Bad Request", "detail": "no such command"})
                return
            self._send(200, apply_proplist(reply, body))

        def do_GET(self):
            self._handle({})

        def do_POST(self):
            length = int(self.headers.get("Content-Length") or 0)
            raw = self.rfile.read(length) if length else b"{}"
            try:
                body = json.loads(raw or b"{}")
            except ValueError:
                self._send(400, {"error": 400, "message": "Bad Request", "detail": "invalid JSON"})
                return
            self._handle(body if isinstance(body, dict) else {})

        def log_message(self, format, *args):
            pass  # Suppress request logging noise

    return _RestHandler


def run_fake_server(host: str = "127.0.0.1", port: int = 18728, identity: str = "MikroTik"):
    server = HTTPServer((host, port), make_handler(FakeRouter(identity=identity)))
    print(f"Fake RouterOS REST API running at http://{host}:{port}/rest (user admin, empty password)")
    print("Press Ctrl+C to stop.\n")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    server.server_close()
    print("\nServer stopped.")


if __name__ == "__main__":
    run_fake_server()
