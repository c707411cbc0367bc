"""
pactmock Server Registry

Process-wide table of running mock servers, keyed by the port each one is
bound to. The port doubles as the handle handed to callers.
"""

import atexit
import logging
import threading
from enum import Enum
from typing import Dict, List, Optional, Set

from .config import MockServerConfig
from .contract import Contract
from .errors import InvalidHandleError, RegistryCorruptionError
from .server import MockServer


logger = logging.getLogger("pactmock.registry")


class CleanupOutcome(Enum):
    """What a cleanup call did."""

    STOPPED = 'stopped'
    ALREADY_STOPPED = 'already_stopped'
    UNKNOWN = 'unknown'


class ServerRegistry:
    """
    Owns every running MockServer.

    Insertions and removals are serialised by a lock. Lookups read the table
    without it; each server guards its own interaction log.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._servers: Dict[int, MockServer] = {}
        self._retired: Set[int] = set()

    def start(
        self,
        contract: Contract,
        bind_address: str,
        config: Optional[MockServerConfig] = None
    ) -> int:
        """
        Start a mock server for the contract and register it.

        Args:
            contract: Parsed contract
            bind_address: 'host:port' to bind
            config: Optional MockServerConfig

        Returns:
            Port of the running server, which is also its handle

        Raises:
            BindError: If the server could not be bound; nothing is registered
        """
        server = MockServer(contract, config=config)
        port = server.start(bind_address)
        self.register(server)
        return port

    def register(self, server: MockServer) -> int:
        """Add a running server under its port."""
        with self._lock:
            if server.port in self._servers:
                server.shutdown()
                raise RegistryCorruptionError(
                    f"A mock server is already registered on port {server.port}"
                )
            self._servers[server.port] = server
            # The OS may hand out a retired port again
            self._retired.discard(server.port)

        logger.debug(f"Registered mock server on port {server.port}")
        return server.port

    def get(self, port: int) -> Optional[MockServer]:
        return self._servers.get(port)

    def require(self, port: int) -> MockServer:
        """Like get(), but raise InvalidHandleError for unknown ports."""
        server = self._servers.get(port)
        if server is None:
            raise InvalidHandleError(port)
        return server

    def ports(self) -> List[int]:
        with self._lock:
            return sorted(self._servers)

    def is_retired(self, port: int) -> bool:
        return port in self._retired

    def cleanup(self, port: int) -> CleanupOutcome:
        """
        Stop the server on a port and remove it from the table.

        Repeated calls for the same port are no-ops reporting ALREADY_STOPPED.
        """
        with self._lock:
            server = self._servers.pop(port, None)
            if server is None:
                if port in self._retired:
                    return CleanupOutcome.ALREADY_STOPPED
                return CleanupOutcome.UNKNOWN
            self._retired.add(port)

        # Shut down outside the lock so other servers are not held up
        server.shutdown()
        logger.info(f"Cleaned up mock server on port {port}")
        return CleanupOutcome.STOPPED

    def shutdown_all(self):
        """Force-stop every running server (called at interpreter exit)."""
        with self._lock:
            servers = list(self._servers.items())
            self._servers.clear()
            self._retired.update(port for port, _ in servers)

        for port, server in servers:
            logger.debug(f"Stopping mock server on port {port} at exit")
            server.shutdown()

    def __len__(self) -> int:
        return len(self._servers)

    def __contains__(self, port: int) -> bool:
        return port in self._servers


_registry: Optional[ServerRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> ServerRegistry:
    """Process-wide registry, created on first use."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = ServerRegistry()
                atexit.register(_registry.shutdown_all)
    return _registry
