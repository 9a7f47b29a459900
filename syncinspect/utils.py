"""Small helpers shared by the inspection tools."""

from __future__ import annotations

import json
import logging
import os
import platform
import threading
import time
import urllib.error
import urllib.request
from collections.abc import Iterable
from datetime import datetime, timezone
from ssl import SSLContext
from typing import Any
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)

VERSION = "None"
BUILD_TS = "None"
GIT_HASH = "None"
GIT_BRANCH = "None"

_ALLOWED_URL_SCHEMES = frozenset({"http", "https", "unix", "unixs"})


def origin_error(err: BaseException | None) -> BaseException | None:
    """Follow the explicit ``raise ... from`` chain back to its first error."""
    while err is not None and err.__cause__ is not None:
        err = err.__cause__
    return err


def slice_to_map(items: Iterable[str]) -> dict[str, None]:
    """Return a dict whose keys are the given strings, in order."""
    return dict.fromkeys(items)


def strings_to_interfaces(items: Iterable[str]) -> list[Any]:
    """Return the strings as a plain list of objects."""
    return list(items)


def get_json(url: str, ssl_context: SSLContext | None = None) -> Any:
    """Fetch ``url`` with HTTP GET and decode the body as JSON.

    Raises ``OSError`` when the server answers with a status other than 200.
    """
    try:
        with urllib.request.urlopen(url, context=ssl_context) as resp:
            status = resp.status
            body = resp.read()
    except urllib.error.HTTPError as err:
        message = err.read().decode(errors="replace")
        raise OSError(
            f"get {url} http status code != 200, message {message}"
        ) from err
    if status != 200:
        raise OSError(
            f"get {url} http status code != 200, message {body.decode(errors='replace')}"
        )
    return json.loads(body)


def tso_to_rough_time(ts: int) -> datetime:
    """Turn a timestamp oracle value into a datetime rounded down to seconds."""
    physical_ms = ts >> 18
    seconds = abs(physical_ms) // 1000
    if physical_ms < 0:
        seconds = -seconds
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _split_host_port(hostport: str) -> tuple[str, str]:
    """Split ``host:port`` or ``[host]:port`` the strict way."""
    colon = hostport.rfind(":")
    if colon < 0:
        raise ValueError(f"address {hostport}: missing port in address")
    start, end_search = 0, 0
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ValueError(f"address {hostport}: missing ']' in address")
        after = end + 1
        if after == len(hostport):
            raise ValueError(f"address {hostport}: missing port in address")
        if after != colon:
            if hostport[after] == ":":
                raise ValueError(f"address {hostport}: too many colons in address")
            raise ValueError(f"address {hostport}: missing port in address")
        host = hostport[1:end]
        start, end_search = 1, after
    else:
        host = hostport[:colon]
        if ":" in host:
            raise ValueError(f"address {hostport}: too many colons in address")
    if "[" in hostport[start:]:
        raise ValueError(f"address {hostport}: unexpected '[' in address")
    if "]" in hostport[end_search:]:
        raise ValueError(f"address {hostport}: unexpected ']' in address")
    return host, hostport[colon + 1 :]


def parse_host_port_addr(s: str) -> list[str]:
    """Parse a comma separated list of ``host:port`` or ``scheme://host:port``."""
    addrs: list[str] = []
    for raw in s.split(","):
        item = raw.strip()
        try:
            _split_host_port(item)
        except ValueError:
            pass
        else:
            addrs.append(item)
            continue

        try:
            parts = urlsplit(item)
        except ValueError as err:
            raise ValueError(f"parse url {item} failed {err}") from err
        if parts.scheme not in _ALLOWED_URL_SCHEMES:
            raise ValueError(
                f"URL scheme must be http, https, unix, or unixs: {item}"
            )
        try:
            _split_host_port(parts.netloc.rpartition("@")[2])
        except ValueError:
            raise ValueError(
                f'URL address does not have the form "host:port": {item}'
            ) from None
        if parts.path:
            raise ValueError(f"URL must not contain a path: {item}")
        addrs.append(urlunsplit(parts))
    return addrs


def get_raw_info(app: str) -> str:
    """Return the build information of ``app`` as text, one item per line."""
    return (
        f"{app}: {VERSION}\n"
        f"Git Commit Hash: {GIT_HASH}\n"
        f"Git Branch: {GIT_BRANCH}\n"
        f"UTC Build Time: {BUILD_TS}\n"
        f"Python Version: {platform.python_version()}\n"
    )


def print_info(app: str) -> None:
    """Log the build information of ``app``."""
    logger.info(
        "Welcome to %s | Release Version=%s Git Commit Hash=%s Git Branch=%s "
        "UTC Build Time=%s Python Version=%s",
        app,
        VERSION,
        GIT_HASH,
        GIT_BRANCH,
        BUILD_TS,
        platform.python_version(),
    )


class _CPUSampler:
    """Keeps the previous sample so each call measures the interval since it."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_wall_ns = 0
        self._last_usage_ns = 0

    def sample(self) -> float:
        times = os.times()
        usage_ns = int((times.user + times.system) * 1_000_000_000)
        now_ns = time.time_ns()
        with self._lock:
            elapsed = now_ns - self._last_wall_ns
            used = usage_ns - self._last_usage_ns
            self._last_wall_ns = now_ns
            self._last_usage_ns = usage_ns
        if elapsed <= 0:
            return 0.0
        return used / elapsed * 100.0


_cpu_sampler = _CPUSampler()


def get_cpu_percentage() -> float:
    """Return CPU usage of this process since the last call, in percent."""
    return _cpu_sampler.sample()