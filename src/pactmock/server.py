"""
pactmock Mock Server

FastAPI-based HTTP mock server that serves the responses declared in a
contract and records how well every received request matched.

Features:
- Rule-based request matching against every interaction in the contract
- Canned responses for matches, diagnostic 500 responses otherwise
- Thread-safe interaction log with consistent snapshots
- Background uvicorn listener with bounded, idempotent shutdown
- Optional CORS pre-flight handling
"""

from __future__ import annotations  # Enable forward references for type hints

import json
import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Dict, Any, Optional, Iterable, Tuple

import uvicorn
from fastapi import FastAPI, Request, Response

from .common.url_utils import QueryString, parse_bind_address
from .common.utils import filter_response_headers, normalize_headers
from .config import MockServerConfig
from .contract import Contract, Interaction, OptionalBody, RequestSpec, PRESENT
from .errors import BindError, InvalidAddressError, PactMockError
from .matching.matcher import MatchResult, RequestMatcher
from .matching.mismatch import Mismatch


HTTP_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, HEAD, POST, PUT, DELETE, CONNECT, OPTIONS, TRACE, PATCH',
    'Access-Control-Allow-Headers': '*',
}


class ServerState(Enum):
    """Lifecycle of a mock server instance."""

    CREATED = 'created'
    RUNNING = 'running'
    STOPPED = 'stopped'


@dataclass
class MockMetrics:
    """Track mock server metrics."""

    total_requests: int = 0
    matched_requests: int = 0
    unmatched_requests: int = 0
    start_time: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        uptime_seconds = (datetime.now() - datetime.fromisoformat(self.start_time)).total_seconds()
        return {
            'total_requests': self.total_requests,
            'matched_requests': self.matched_requests,
            'unmatched_requests': self.unmatched_requests,
            'match_rate': round((self.matched_requests / self.total_requests * 100) if self.total_requests > 0 else 0, 2),
            'uptime_seconds': round(uptime_seconds, 2),
            'start_time': self.start_time
        }


@dataclass
class RecordedInteraction:
    """A received request and the outcome of matching it."""

    request: RequestSpec
    interaction: Optional[Interaction]
    mismatches: List[Mismatch]
    request_found: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def matched(self) -> bool:
        return self.interaction is not None and not self.mismatches

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'timestamp': self.timestamp,
            'request': self.request.to_dict(),
            'matched': self.matched,
            'interaction': self.interaction.description if self.interaction else None,
            'mismatches': [m.to_dict() for m in self.mismatches],
        }


class MockServer:
    """
    Mock server for one contract and one test run.

    Owns the parsed contract, a bound listener running on a background thread
    and the log of every request it received.

    Example:
        server = MockServer(parse_contract(text))
        port = server.start('127.0.0.1:0')

        # ... exercise the consumer against http://127.0.0.1:<port> ...

        assert server.matched(), server.mismatches()
        server.shutdown()
    """

    def __init__(
        self,
        contract: Contract,
        config: Optional[MockServerConfig] = None,
        request_matcher: Optional[RequestMatcher] = None
    ):
        """
        Initialize mock server.

        Args:
            contract: Parsed contract to serve
            config: Optional MockServerConfig for server behavior
            request_matcher: Optional RequestMatcher instance (will create if None)
        """
        self.contract = contract
        self.config = config or MockServerConfig()
        self.metrics = MockMetrics()

        self.logger = logging.getLogger("pactmock.server")
        self.logger.setLevel(getattr(logging, self.config.log_level.upper()))

        self.matcher = request_matcher or RequestMatcher(contract.interactions)

        # Guards the interaction log and metrics
        self._lock = threading.Lock()
        self._recorded: List[RecordedInteraction] = []

        # Guards lifecycle transitions
        self._state_lock = threading.Lock()
        self._state = ServerState.CREATED
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None
        self.host: Optional[str] = None
        self.port: Optional[int] = None

        self.app = self._create_app()

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def url(self) -> Optional[str]:
        if self.port is None:
            return None
        host = self.host if self.host not in ('0.0.0.0', '::', '') else '127.0.0.1'
        if ':' in host:
            host = f'[{host}]'
        scheme = 'https' if self.config.tls else 'http'
        return f"{scheme}://{host}:{self.port}"

    def _create_app(self) -> FastAPI:
        """Create FastAPI application with a single catch-all route."""
        app = FastAPI(
            title=f"pactmock: {self.contract.consumer.name} -> {self.contract.provider.name}",
            docs_url=None,
            redoc_url=None,
            openapi_url=None
        )

        @app.api_route("/{path:path}", methods=HTTP_METHODS)
        async def mock_request(request: Request, path: str):
            """Handle incoming requests and serve mock responses."""
            return await self._handle_request(request)

        return app

    async def _handle_request(self, request: Request) -> Response:
        """
        Match an incoming request, record the outcome and respond.

        Args:
            request: FastAPI Request object

        Returns:
            The interaction's response on a match, a diagnostic response otherwise
        """
        body = await request.body()
        actual = self.build_request(
            request.method,
            request.url.path,
            request.url.query,
            request.headers.items(),
            body
        )

        self.logger.debug(f"Incoming: {actual.summary()}")

        result = self.matcher.find_match(actual)

        if not result.matched and self.config.cors_preflight and self._is_cors_preflight(actual):
            self.logger.debug(f"Answering CORS pre-flight for {actual.path}")
            return Response(status_code=200, headers=CORS_HEADERS)

        self._record(actual, result)

        if result.matched:
            self.logger.debug(f"Matched interaction '{result.interaction.description}'")
            return self._create_response(result.interaction)

        self.logger.warning(f"No matching interaction for {actual.summary()}: {result.reason}")
        for mismatch in result.mismatches:
            self.logger.debug(f"  {mismatch.kind} at {mismatch.path}: {mismatch.description}")
        return self._create_mismatch_response(actual, result)

    @staticmethod
    def build_request(
        method: str,
        path: str,
        raw_query: str,
        headers: Iterable[Tuple[str, str]],
        body: bytes
    ) -> RequestSpec:
        """
        Build the RequestSpec the matcher compares against the contract.

        Repeated headers are combined with ', ' as HTTP allows.
        """
        combined: Dict[str, str] = {}
        for name, value in headers:
            key = name.lower()
            combined[key] = f"{combined[key]}, {value}" if key in combined else value

        content_type = combined.get('content-type')
        if body:
            actual_body = OptionalBody(PRESENT, body, content_type)
        else:
            actual_body = OptionalBody.empty()

        return RequestSpec(
            method=method.upper(),
            path=path or '/',
            query=QueryString.parse(raw_query),
            headers=combined,
            body=actual_body
        )

    def _create_response(self, interaction: Interaction) -> Response:
        """
        Create a Response from the interaction's expected response.

        Args:
            interaction: Interaction that matched

        Returns:
            Response object
        """
        expected = interaction.response
        headers = filter_response_headers(expected.headers)

        if expected.body.is_present() and 'content-type' not in normalize_headers(headers):
            headers['Content-Type'] = expected.body.content_type

        if self.config.cors_preflight:
            headers.setdefault('Access-Control-Allow-Origin', '*')

        return Response(
            content=expected.body.content if expected.body.is_present() else b'',
            status_code=expected.status,
            headers=headers
        )

    def _create_mismatch_response(self, actual: RequestSpec, result: MatchResult) -> Response:
        """
        Create a diagnostic response for a request that matched nothing.

        Args:
            actual: Request that was received
            result: Best candidate match

        Returns:
            Response with a JSON body describing the mismatches
        """
        content = {
            'error': (
                f"Request-Mismatch: {actual.summary()}"
                if result.request_found
                else f"Unexpected-Request: {actual.summary()}"
            ),
            'request': actual.to_dict(),
            'closest_interaction': result.interaction.description if result.interaction else None,
            'mismatches': [m.to_dict() for m in result.mismatches],
        }
        headers = {'X-Pactmock-Matched': 'false'}
        if self.config.cors_preflight:
            headers['Access-Control-Allow-Origin'] = '*'

        return Response(
            content=json.dumps(content, default=str),
            status_code=self.config.mismatch_status,
            media_type="application/json",
            headers=headers
        )

    @staticmethod
    def _is_cors_preflight(actual: RequestSpec) -> bool:
        return actual.method == 'OPTIONS' and 'access-control-request-method' in actual.headers

    def _record(self, actual: RequestSpec, result: MatchResult):
        """Append a log entry; readers never see a half-written entry."""
        entry = RecordedInteraction(
            request=actual,
            interaction=result.interaction if result.matched else None,
            mismatches=list(result.mismatches),
            request_found=result.request_found
        )
        with self._lock:
            self._recorded.append(entry)
            self.metrics.total_requests += 1
            if entry.matched:
                self.metrics.matched_requests += 1
            else:
                self.metrics.unmatched_requests += 1

    def recorded(self) -> List[RecordedInteraction]:
        """Snapshot of the interaction log, in arrival order."""
        with self._lock:
            return list(self._recorded)

    def unexercised_interactions(self, entries: Optional[List[RecordedInteraction]] = None) -> List[Interaction]:
        """Interactions of the contract that no request has matched yet."""
        if entries is None:
            entries = self.recorded()
        served = [e.interaction for e in entries if e.interaction is not None]
        return [
            interaction for interaction in self.contract.interactions
            if not any(s is interaction for s in served)
        ]

    def matched(self) -> bool:
        """
        True iff every received request matched and every interaction was exercised.

        A contract without interactions is matched until a request arrives.
        """
        entries = self.recorded()
        if any(entry.mismatches for entry in entries):
            return False
        return not self.unexercised_interactions(entries)

    def mismatches(self) -> List[Dict[str, Any]]:
        """
        Describe everything that prevents matched() from being true.

        Returns:
            List of 'request-mismatch', 'request-not-found' and
            'missing-request' entries
        """
        entries = self.recorded()
        report: List[Dict[str, Any]] = []

        for entry in entries:
            if not entry.mismatches:
                continue
            report.append({
                'type': 'request-mismatch' if entry.request_found else 'request-not-found',
                'method': entry.request.method,
                'path': entry.request.path,
                'request': entry.request.to_dict(),
                'mismatches': [m.to_dict() for m in entry.mismatches],
            })

        for interaction in self.unexercised_interactions(entries):
            report.append({
                'type': 'missing-request',
                'description': interaction.description,
                'method': interaction.request.method,
                'path': interaction.request.path,
                'request': interaction.request.to_dict(),
            })

        return report

    def start(self, bind_address: Optional[str] = None) -> int:
        """
        Bind the listener and start serving on a background thread.

        Args:
            bind_address: 'host:port' to bind (defaults to the config's host/port)

        Returns:
            The bound port

        Raises:
            InvalidAddressError: If the address cannot be parsed or resolved
            BindError: If the address cannot be bound or the server fails to start
        """
        with self._state_lock:
            if self._state is not ServerState.CREATED:
                raise PactMockError(f"Mock server is {self._state.value}; it can only be started once")

            host, port = parse_bind_address(bind_address or self.config.bind_address)
            sock = self._bind_socket(host, port)

            uvicorn_config = uvicorn.Config(
                self.app,
                log_level=self.config.log_level,
                access_log=self.config.access_log,
                log_config=None,
                lifespan="off",
                timeout_graceful_shutdown=int(max(self.config.shutdown_timeout, 1)),
                ssl_certfile=self.config.ssl_certfile,
                ssl_keyfile=self.config.ssl_keyfile
            )
            try:
                uvicorn_config.load()
            except OSError as e:
                sock.close()
                raise BindError(f"Could not load TLS certificate for {host}:{port}: {e}")
            self._server = uvicorn.Server(uvicorn_config)
            self._socket = sock
            self.host = host
            self.port = sock.getsockname()[1]

            self._thread = threading.Thread(
                target=self._server.run,
                kwargs={'sockets': [sock]},
                name=f"pactmock-{self.port}",
                daemon=True
            )
            self._thread.start()

            deadline = time.monotonic() + self.config.startup_timeout
            while not self._server.started:
                if not self._thread.is_alive() or time.monotonic() > deadline:
                    self._abort_start()
                    raise BindError(f"Mock server on {host}:{self.port} failed to start")
                time.sleep(0.01)

            self._state = ServerState.RUNNING
            self.metrics = MockMetrics()

        self.logger.info(
            f"Mock server for {self.contract.consumer.name} -> {self.contract.provider.name} "
            f"listening on {self.url} ({len(self.contract.interactions)} interactions)"
        )
        return self.port

    def _bind_socket(self, host: str, port: int) -> socket.socket:
        try:
            infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except socket.gaierror as e:
            raise InvalidAddressError(f"Cannot resolve bind host '{host}': {e}")

        family, sock_type, proto, _, sockaddr = infos[0]
        sock = socket.socket(family, sock_type, proto)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(sockaddr)
        except OSError as e:
            sock.close()
            raise BindError(f"Could not bind {host}:{port}: {e}")
        return sock

    def _abort_start(self):
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=1.0)
        if self._socket is not None:
            self._socket.close()
        self._state = ServerState.STOPPED

    def shutdown(self) -> bool:
        """
        Stop the listener.

        Waits up to config.shutdown_timeout for in-flight connections, then
        forces them closed. Safe to call any number of times.

        Returns:
            True if this call stopped the server, False if it was already stopped
        """
        with self._state_lock:
            if self._state is ServerState.STOPPED:
                return False
            was_running = self._state is ServerState.RUNNING
            self._state = ServerState.STOPPED

        if not was_running:
            return True

        self.logger.debug(f"Shutting down mock server on port {self.port} - {self.metrics.to_dict()}")

        self._server.should_exit = True
        self._thread.join(timeout=self.config.shutdown_timeout + 1.0)
        if self._thread.is_alive():
            self.logger.warning(f"Mock server on port {self.port} did not drain in time; forcing exit")
            self._server.force_exit = True
            self._thread.join(timeout=self.config.shutdown_timeout + 1.0)
            if self._thread.is_alive():
                self.logger.error(f"Mock server thread for port {self.port} is still alive after forced exit")

        self._socket.close()
        self.logger.info(f"Mock server on port {self.port} stopped")
        return True

    def get_app(self) -> FastAPI:
        """
        Get the FastAPI app instance for testing or custom deployment.

        Returns:
            FastAPI application instance
        """
        return self.app

    def report(self) -> str:
        """Human-readable summary of the run, used by the CLI."""
        lines = [
            f"{self.contract.consumer.name} -> {self.contract.provider.name}: "
            f"{'all interactions matched' if self.matched() else 'MISMATCHES FOUND'}"
        ]
        for entry in self.mismatches():
            if entry['type'] == 'missing-request':
                lines.append(f"  missing request: {entry['method']} {entry['path']} ({entry['description']})")
                continue
            lines.append(f"  {entry['type']}: {entry['method']} {entry['path']}")
            for mismatch in entry['mismatches']:
                lines.append(f"    - {mismatch['path']}: {mismatch['mismatch']}")
        return '\n'.join(lines)


def create_mock_server(
    contract: Contract,
    bind_address: str = "127.0.0.1:0",
    config: Optional[MockServerConfig] = None
) -> MockServer:
    """
    Convenience function to create and start a mock server.

    Args:
        contract: Parsed contract
        bind_address: 'host:port' to bind; port 0 picks a free port
        config: Optional MockServerConfig

    Returns:
        Running MockServer instance

    Example:
        server = create_mock_server(parse_contract(text))
        requests_to(server.url)
    """
    server = MockServer(contract, config=config)
    server.start(bind_address)
    return server
