"""Point-in-time network reachability checks.

The answer is a hint, not a guarantee. A false "online" is caught by the
orchestrator when the actual remote call fails.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Well-known resolvers; any one accepting a TCP connection means we have a route out.
DEFAULT_PROBE_HOSTS: list[tuple[str, int]] = [
    ("1.1.1.1", 53),
    ("8.8.8.8", 53),
    ("208.67.222.222", 53),
]


@runtime_checkable
class ConnectivityMonitor(Protocol):
    """Reports whether the device currently has a network path."""

    async def is_online(self) -> bool: ...


class NetworkConnectivityMonitor:
    """Probes TCP reachability of a handful of hosts.

    Usage::

        monitor = NetworkConnectivityMonitor.for_backend("https://xyz.supabase.co")
        if await monitor.is_online():
            ...
    """

    def __init__(
        self,
        probe_hosts: list[tuple[str, int]] | None = None,
        timeout: float = 3.0,
    ) -> None:
        self._hosts = list(probe_hosts) if probe_hosts else list(DEFAULT_PROBE_HOSTS)
        self._timeout = timeout

    @classmethod
    def for_backend(cls, backend_url: str, timeout: float = 3.0) -> NetworkConnectivityMonitor:
        """Probe the backend host first, then the default resolvers."""
        hosts: list[tuple[str, int]] = []
        parsed = urlparse(backend_url) if backend_url else None
        if parsed and parsed.hostname:
            port = parsed.port or (443 if parsed.scheme == "https" else 80)
            hosts.append((parsed.hostname, port))
        hosts.extend(DEFAULT_PROBE_HOSTS)
        return cls(hosts, timeout=timeout)

    @property
    def probe_hosts(self) -> list[tuple[str, int]]:
        return list(self._hosts)

    async def is_online(self) -> bool:
        for host, port in self._hosts:
            if await self._probe(host, port):
                return True
        logger.debug("No probe host reachable; reporting offline")
        return False

    async def _probe(self, host: str, port: int) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self._timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True


class StaticConnectivityMonitor:
    """Fixed answer; used for forced-offline mode and tests."""

    def __init__(self, online: bool = True) -> None:
        self.online = online
        self.checks = 0

    async def is_online(self) -> bool:
        self.checks += 1
        return self.online
