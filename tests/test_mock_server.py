"""
Tests for pactmock Mock Server

Tests the FastAPI-based mock server including:
- Serving matched responses
- Diagnostic responses for unmatched requests
- matched() / mismatches() reporting
- Interaction log and metrics
- Live start/shutdown lifecycle
"""

import json
import socket
import time
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest
from fastapi.testclient import TestClient

from pactmock.config import MockServerConfig
from pactmock.contract import Contract, parse_contract
from pactmock.errors import BindError, InvalidAddressError, PactMockError
from pactmock.server import MockMetrics, MockServer, ServerState, create_mock_server


@pytest.fixture
def mallory_server(mallory_contract):
    return MockServer(Contract.from_dict(mallory_contract))


@pytest.fixture
def users_server(users_contract):
    return MockServer(Contract.from_dict(users_contract))


class TestMockMetrics:
    """Test MockMetrics dataclass."""

    def test_default_metrics(self):
        metrics = MockMetrics()
        assert metrics.total_requests == 0
        assert metrics.matched_requests == 0
        assert metrics.unmatched_requests == 0

    def test_metrics_to_dict(self):
        """Test match rate calculation."""
        metrics = MockMetrics(total_requests=4, matched_requests=3, unmatched_requests=1)
        data = metrics.to_dict()
        assert data['match_rate'] == 75.0
        assert 'uptime_seconds' in data


class TestServingResponses:
    """Test request handling through the FastAPI app."""

    def test_mallory_match(self, mallory_server):
        """Test the declared response is served verbatim."""
        client = TestClient(mallory_server.get_app())

        response = client.get('/mallory?name=ron&status=good')

        assert response.status_code == 200
        assert response.text == 'That is some good Mallory.'
        assert response.headers['content-type'] == 'text/html'
        assert mallory_server.matched()

    def test_query_key_order_does_not_matter(self, mallory_server):
        client = TestClient(mallory_server.app)
        response = client.get('/mallory?status=good&name=ron')
        assert response.status_code == 200
        assert mallory_server.matched()

    def test_mallory_mismatch(self, mallory_server):
        """Test a non-matching request gets a diagnostic 500."""
        client = TestClient(mallory_server.app)

        response = client.get('/mallory?name=someone-else')

        assert response.status_code == 500
        assert response.headers['x-pactmock-matched'] == 'false'
        data = response.json()
        assert data['error'].startswith('Request-Mismatch')
        assert data['closest_interaction'] == 'a request to be nice to Mallory'
        assert {m['path'] for m in data['mismatches']} == {'query.name[0]', 'query.status'}
        assert not mallory_server.matched()

    def test_json_response_gets_content_type(self, users_server):
        """Test JSON bodies default to application/json."""
        client = TestClient(users_server.app)

        response = client.post('/users', json={'name': 'Bob', 'age': 41})

        assert response.status_code == 201
        assert response.headers['content-type'] == 'application/json'
        assert response.json() == {'id': 456}

    def test_request_headers_checked(self, users_server):
        """Test an expected header is required."""
        client = TestClient(users_server.app)

        assert client.get('/users/123', headers={'Accept': 'application/json'}).json()['id'] == 123
        assert client.get('/users/123', headers={'Accept': 'text/html'}).status_code == 500

    def test_request_body_checked(self, users_server):
        """Test body rules are applied to received bodies."""
        client = TestClient(users_server.app)
        response = client.post('/users', json={'name': 'Bob', 'age': 'old'})
        assert response.status_code == 500
        assert response.json()['mismatches'][0]['path'] == '$.age'

    def test_custom_mismatch_status(self, mallory_contract):
        server = MockServer(Contract.from_dict(mallory_contract), config=MockServerConfig(mismatch_status=418))
        response = TestClient(server.app).get('/nope')
        assert response.status_code == 418

    def test_empty_contract_rejects_requests(self, empty_contract_text):
        """Test zero-interaction servers are matched until a request arrives."""
        server = MockServer(parse_contract(empty_contract_text))
        assert server.matched()

        response = TestClient(server.app).get('/anything')

        assert response.status_code == 500
        assert response.json()['error'].startswith('Unexpected-Request')
        assert not server.matched()


class TestMatchedAndMismatches:
    """Test matched() and mismatches() reporting."""

    def test_unexercised_interaction_is_unmatched(self, users_server):
        """Test every interaction must be exercised."""
        client = TestClient(users_server.app)
        client.get('/users/123', headers={'Accept': 'application/json'})

        assert not users_server.matched()
        report = users_server.mismatches()
        assert report == [{
            'type': 'missing-request',
            'description': 'create a user',
            'method': 'POST',
            'path': '/users',
            'request': users_server.contract.interactions[1].request.to_dict(),
        }]

    def test_matched_after_every_interaction(self, users_server):
        client = TestClient(users_server.app)
        client.get('/users/123', headers={'Accept': 'application/json'})
        client.post('/users', json={'name': 'Bob', 'age': 41})

        assert users_server.matched()
        assert users_server.mismatches() == []

    def test_matched_independent_of_order(self, users_server):
        """Test arrival order is irrelevant."""
        client = TestClient(users_server.app)
        client.post('/users', json={'name': 'Bob', 'age': 41})
        client.get('/users/123', headers={'Accept': 'application/json'})
        assert users_server.matched()

    def test_one_bad_request_spoils_the_run(self, users_server):
        """Test a mismatch is never forgotten."""
        client = TestClient(users_server.app)
        client.get('/users/123', headers={'Accept': 'application/json'})
        client.post('/users', json={'name': 'Bob', 'age': 41})
        client.delete('/users/123')

        assert not users_server.matched()
        types = [entry['type'] for entry in users_server.mismatches()]
        assert types == ['request-not-found']

    def test_request_mismatch_entry(self, mallory_server):
        client = TestClient(mallory_server.app)
        client.get('/mallory?name=someone-else')

        report = mallory_server.mismatches()
        assert [entry['type'] for entry in report] == ['request-mismatch', 'missing-request']
        assert report[0]['method'] == 'GET'
        assert report[0]['path'] == '/mallory'
        json.dumps(report)

    def test_report_text(self, mallory_server):
        TestClient(mallory_server.app).get('/mallory?name=someone-else')
        report = mallory_server.report()
        assert 'MISMATCHES FOUND' in report
        assert 'missing request' in report


class TestInteractionLog:
    """Test the recorded interaction log."""

    def test_log_in_arrival_order(self, users_server):
        client = TestClient(users_server.app)
        client.post('/users', json={'name': 'Bob', 'age': 41})
        client.get('/nope')

        recorded = users_server.recorded()
        assert [entry.request.path for entry in recorded] == ['/users', '/nope']
        assert recorded[0].matched
        assert recorded[0].interaction.description == 'create a user'
        assert not recorded[1].matched
        assert recorded[1].to_dict()['mismatches']

    def test_recorded_is_a_snapshot(self, mallory_server):
        client = TestClient(mallory_server.app)
        snapshot = mallory_server.recorded()
        client.get('/mallory?name=ron&status=good')
        assert snapshot == []
        assert len(mallory_server.recorded()) == 1

    def test_metrics_updated(self, mallory_server):
        client = TestClient(mallory_server.app)
        client.get('/mallory?name=ron&status=good')
        client.get('/other')

        assert mallory_server.metrics.total_requests == 2
        assert mallory_server.metrics.matched_requests == 1
        assert mallory_server.metrics.unmatched_requests == 1

    def test_build_request_combines_repeated_headers(self):
        actual = MockServer.build_request(
            'get', '/x', 'a=1&a=2', [('X-Tag', 'one'), ('x-tag', 'two')], b''
        )
        assert actual.method == 'GET'
        assert actual.headers == {'x-tag': 'one, two'}
        assert actual.query == {'a': ['1', '2']}
        assert actual.body.is_empty()


class TestCorsPreflight:
    """Test optional CORS pre-flight handling."""

    def test_preflight_answered_when_enabled(self, mallory_contract):
        server = MockServer(Contract.from_dict(mallory_contract), config=MockServerConfig(cors_preflight=True))
        client = TestClient(server.app)

        response = client.options('/mallory', headers={
            'Origin': 'http://localhost:3000',
            'Access-Control-Request-Method': 'GET'
        })

        assert response.status_code == 200
        assert response.headers['access-control-allow-origin'] == '*'
        assert server.recorded() == []

        client.get('/mallory?name=ron&status=good')
        assert server.matched()

    def test_preflight_is_a_mismatch_when_disabled(self, mallory_server):
        client = TestClient(mallory_server.app)
        response = client.options('/mallory', headers={'Access-Control-Request-Method': 'GET'})
        assert response.status_code == 500


class TestLifecycle:
    """Test binding and shutdown of a live server."""

    def test_start_and_shutdown(self, mallory_contract):
        """Test a live server answers and stops."""
        server = MockServer(Contract.from_dict(mallory_contract))
        assert server.state is ServerState.CREATED

        port = server.start('127.0.0.1:0')
        try:
            assert port > 0
            assert server.state is ServerState.RUNNING
            assert server.url == f'http://127.0.0.1:{port}'

            response = httpx.get(f'{server.url}/mallory', params={'name': 'ron', 'status': 'good'})
            assert response.status_code == 200
            assert response.text == 'That is some good Mallory.'
            assert server.matched()
        finally:
            assert server.shutdown() is True

        assert server.state is ServerState.STOPPED
        assert server.shutdown() is False

        with pytest.raises(httpx.TransportError):
            httpx.get(f'http://127.0.0.1:{port}/mallory', timeout=1.0)

    def test_log_retained_after_shutdown(self, mallory_contract):
        server = create_mock_server(Contract.from_dict(mallory_contract))
        httpx.get(f'{server.url}/mallory', params={'name': 'ron', 'status': 'good'})
        server.shutdown()
        assert server.matched()
        assert len(server.recorded()) == 1

    def test_start_only_once(self, mallory_contract):
        server = MockServer(Contract.from_dict(mallory_contract))
        server.start('127.0.0.1:0')
        try:
            with pytest.raises(PactMockError):
                server.start('127.0.0.1:0')
        finally:
            server.shutdown()

    def test_port_in_use(self, mallory_contract, occupied_port):
        """Test bind failures raise BindError and leave the server unstarted."""
        server = MockServer(Contract.from_dict(mallory_contract))
        with pytest.raises(BindError):
            server.start(f'127.0.0.1:{occupied_port}')
        assert server.state is ServerState.CREATED

    def test_invalid_address(self, mallory_contract):
        server = MockServer(Contract.from_dict(mallory_contract))
        with pytest.raises(InvalidAddressError):
            server.start('127.0.0.1:not-a-port')

    def test_shutdown_before_start(self, mallory_contract):
        server = MockServer(Contract.from_dict(mallory_contract))
        assert server.shutdown() is True
        assert server.shutdown() is False

    def test_independent_servers(self, mallory_contract, users_contract):
        """Test two servers run side by side without sharing logs."""
        first = create_mock_server(Contract.from_dict(mallory_contract))
        second = create_mock_server(Contract.from_dict(users_contract))
        try:
            assert first.port != second.port
            httpx.get(f'{first.url}/mallory', params={'name': 'ron', 'status': 'good'})
            assert first.matched()
            assert second.recorded() == []
        finally:
            first.shutdown()
            second.shutdown()

    def test_shutdown_bounded_with_stalled_client(self, mallory_contract):
        """Test a client holding a half-sent request open cannot block shutdown."""
        config = MockServerConfig(shutdown_timeout=0.5)
        server = create_mock_server(Contract.from_dict(mallory_contract), config=config)

        stalled = socket.create_connection(('127.0.0.1', server.port))
        try:
            stalled.sendall(
                b'POST /mallory HTTP/1.1\r\nHost: 127.0.0.1\r\n'
                b'Content-Type: text/plain\r\nContent-Length: 100\r\n\r\npartial'
            )
            time.sleep(0.2)

            started = time.monotonic()
            assert server.shutdown() is True
            elapsed = time.monotonic() - started
        finally:
            stalled.close()

        assert elapsed < 4.0
        assert server.state is ServerState.STOPPED

    def test_concurrent_requests(self, mallory_contract):
        """Test parallel requests are all served and recorded."""
        server = create_mock_server(Contract.from_dict(mallory_contract))
        try:
            def fetch(_):
                return httpx.get(f'{server.url}/mallory', params={'name': 'ron', 'status': 'good'}).status_code

            with ThreadPoolExecutor(max_workers=8) as pool:
                statuses = list(pool.map(fetch, range(40)))

            assert statuses == [200] * 40
            assert len(server.recorded()) == 40
            assert server.metrics.matched_requests == 40
            assert server.matched()
        finally:
            server.shutdown()


class TestTLS:
    """Test serving HTTPS."""

    def test_serves_https(self, mallory_contract, tls_files):
        certfile, keyfile = tls_files
        config = MockServerConfig(ssl_certfile=certfile, ssl_keyfile=keyfile)
        server = create_mock_server(Contract.from_dict(mallory_contract), config=config)
        try:
            assert server.url == f'https://127.0.0.1:{server.port}'

            response = httpx.get(f'{server.url}/mallory', params={'name': 'ron', 'status': 'good'}, verify=False)

            assert response.status_code == 200
            assert response.text == 'That is some good Mallory.'
            assert server.matched()
        finally:
            server.shutdown()

    def test_missing_certificate(self, mallory_contract, tmp_path):
        """Test an unreadable certificate is a start failure."""
        config = MockServerConfig(ssl_certfile=str(tmp_path / 'missing.pem'))
        server = MockServer(Contract.from_dict(mallory_contract), config)

        with pytest.raises(BindError):
            server.start('127.0.0.1:0')
        assert server.state is ServerState.CREATED
