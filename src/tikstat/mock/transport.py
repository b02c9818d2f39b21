"""
Transport that answers from a FakeRouter in memory, no sockets involved.
Used for orchestration tests and failure injection.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from tikstat.errors import CommandError, ConnectError
from tikstat.mock.fake_routeros_server import FakeRouter, apply_proplist
from tikstat.transport.routeros import command_body


class InMemoryTransport:

    def __init__(self, router: Optional[FakeRouter] = None, address: str = "fake:0"):
        self.router = router or FakeRouter()
        self.address = address
        self.closed = False
        self.unreachable = False
        self.failing_commands: Dict[str, Exception] = {}
        self.calls: List[str] = []

    def probe(self) -> Dict[str, str]:
        if self.unreachable:
            raise ConnectError(f"{self.address}: connection refused")
        return {"name": self.router.identity}

    def run(self, command: str, *args: str, timeout: Optional[float] = None) -> List[Dict[str, str]]:
        if self.closed:
            raise ConnectError(f"{self.address}: transport closed")
        if self.unreachable:
            raise ConnectError(f"{self.address}: connection reset")
        path = "/" + command.strip("/")
        self.calls.append(path)
        if path in self.failing_commands:
            raise self.failing_commands[path]

        body = command_body(args)
        reply = self.router.command(path, body)
        if reply is None:
            raise CommandError(f"{self.address}: {path} failed with 400 no such command")
        reply = apply_proplist(reply, body)
        return [reply] if isinstance(reply, dict) else reply

    def close(self):
        self.closed = True
