"""
RouterOS v7 REST transport.

Console commands map onto POST requests under /rest, e.g.
`/system/resource/print proplist=uptime,cpu-load` becomes
POST /rest/system/resource/print {".proplist": ["uptime", "cpu-load"]}.
Every reply is normalized to a list of string-to-string records.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from tikstat.config.profile import DeviceProfile
from tikstat.errors import CommandError, ConnectError

log = logging.getLogger(__name__)

DEFAULT_HOSTNAME = "localhost"
DEFAULT_USERNAME = "admin"


def command_body(args) -> Dict[str, object]:
    """Turn `key=value` words into a REST JSON body.

    A leading `=` (API sentence style, e.g. `=once=`) is accepted and dropped.
    `proplist` becomes the `.proplist` list the REST API expects.
    """
    body: Dict[str, object] = {}
    for arg in args:
        word = arg[1:] if arg.startswith("=") else arg
        key, _, value = word.partition("=")
        if not key:
            raise ValueError(f"malformed command argument: {arg!r}")
        if key in ("proplist", ".proplist"):
            body[".proplist"] = [p for p in value.split(",") if p]
        else:
            body[key] = value
    return body


def _records(payload) -> List[Dict[str, str]]:
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        raise CommandError(f"unexpected reply type: {type(payload).__name__}")
    records = []
    for item in payload:
        if not isinstance(item, dict):
            raise CommandError(f"unexpected record type: {type(item).__name__}")
        records.append({str(k): "" if v is None else str(v) for k, v in item.items()})
    return records


class RouterOSTransport:

    def __init__(
        self,
        hostname: str,
        port: Optional[int] = None,
        username: str = DEFAULT_USERNAME,
        password: str = "",
        use_ssl: bool = True,
        verify: bool = True,
        timeout_seconds: float = 5.0,
    ):
        scheme = "https" if use_ssl else "http"
        if port is None:
            port = 443 if use_ssl else 80
        if ":" in hostname and not hostname.startswith("["):
            hostname = f"[{hostname}]"  # IPv6 literal
        self.address = f"{hostname}:{port}"
        self.base_url = f"{scheme}://{hostname}:{port}/rest"
        self._timeout = timeout_seconds
        try:
            self._client = httpx.Client(
                base_url=self.base_url,
                auth=(username, password),
                verify=verify,
                timeout=timeout_seconds,
            )
        except httpx.InvalidURL as e:
            raise ConnectError(f"{self.address}: invalid device address: {e}") from e

    @classmethod
    def from_profile(cls, profile: DeviceProfile, timeout_seconds: float = 5.0) -> "RouterOSTransport":
        use_ssl = profile.use_ssl is not False
        verify = profile.ssl_certificate_verify is not False and not profile.no_ssl_certificate
        return cls(
            hostname=profile.hostname or DEFAULT_HOSTNAME,
            port=profile.port,
            username=profile.username if profile.username is not None else DEFAULT_USERNAME,
            password=profile.password or "",
            use_ssl=use_ssl,
            verify=verify,
            timeout_seconds=timeout_seconds,
        )

    def _request(self, method: str, path: str, body=None, timeout: Optional[float] = None):
        try:
            response = self._client.request(
                method,
                path,
                json=body,
                timeout=self._timeout if timeout is None else timeout,
            )
        except httpx.TimeoutException as e:
            raise ConnectError(f"{self.address}: timed out on {path}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ConnectError(f"{self.address}: {e}") from e

        if response.status_code in (401, 403):
            raise ConnectError(f"{self.address}: authentication rejected ({response.status_code})")
        if response.is_error:
            detail = ""
            try:
                detail = response.json().get("detail", "")
            except (ValueError, AttributeError):
                pass
            raise CommandError(f"{self.address}: {path} failed with {response.status_code} {detail}".rstrip())

        try:
            return response.json()
        except ValueError as e:
            raise CommandError(f"{self.address}: {path} returned invalid JSON") from e

    def probe(self) -> Dict[str, str]:
        """Check reachability and credentials. Returns the identity record."""
        records = _records(self._request("GET", "/system/identity"))
        return records[0] if records else {}

    def run(self, command: str, *args: str, timeout: Optional[float] = None) -> List[Dict[str, str]]:
        path = "/" + command.strip("/")
        log.debug("%s: %s %s", self.address, path, " ".join(args))
        return _records(self._request("POST", path, command_body(args), timeout=timeout))

    def close(self):
        self._client.close()
