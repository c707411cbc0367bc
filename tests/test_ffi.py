"""
Tests for pactmock boundary functions

End-to-end tests driving real mock servers through the flat, handle-based
API:
- Error codes from create_mock_server()
- matched() / mismatches() for valid and invalid handles
- Idempotent cleanup
- Writing pact files
"""

import json
from unittest.mock import patch

import httpx
import pytest

from pactmock.ffi import (
    cleanup_mock_server,
    create_mock_server,
    merge_pact_documents,
    mock_server_matched,
    mock_server_mismatches,
    write_pact_file,
)


@pytest.fixture
def handles():
    """Collect handles and clean them up after the test."""
    started = []
    yield started
    for handle in started:
        cleanup_mock_server(handle)


@pytest.fixture
def mallory_handle(mallory_contract_text, handles):
    handle = create_mock_server(mallory_contract_text, '127.0.0.1:0')
    assert handle > 0
    handles.append(handle)
    return handle


class TestMalloryScenario:
    """Test the Mallory end-to-end scenario."""

    def test_matching_request(self, mallory_handle):
        """Test the declared request is answered and the run matches."""
        response = httpx.get(f'http://127.0.0.1:{mallory_handle}/mallory?name=ron&status=good')

        assert response.status_code == 200
        assert response.text == 'That is some good Mallory.'
        assert mock_server_matched(mallory_handle) is True

    def test_non_matching_request(self, mallory_handle):
        """Test a different query fails the run."""
        response = httpx.get(f'http://127.0.0.1:{mallory_handle}/mallory?name=someone-else')

        assert response.status_code == 500
        assert mock_server_matched(mallory_handle) is False

        mismatches = json.loads(mock_server_mismatches(mallory_handle))
        assert mismatches[0]['type'] == 'request-mismatch'
        assert mismatches[0]['path'] == '/mallory'

    def test_unexercised_interaction(self, mallory_handle):
        """Test nothing received means not matched."""
        assert mock_server_matched(mallory_handle) is False
        mismatches = json.loads(mock_server_mismatches(mallory_handle))
        assert [m['type'] for m in mismatches] == ['missing-request']


class TestCreateMockServer:
    """Test create_mock_server() results."""

    def test_zero_interactions_matched_immediately(self, empty_contract_text, handles):
        handle = create_mock_server(empty_contract_text, '127.0.0.1:0')
        handles.append(handle)

        assert handle > 0
        assert mock_server_matched(handle) is True
        assert json.loads(mock_server_mismatches(handle)) == []

    @pytest.mark.parametrize('contract,address', [
        (None, '127.0.0.1:0'),
        ('', '127.0.0.1:0'),
        ('{"interactions": []}', None),
    ])
    def test_missing_arguments(self, contract, address):
        assert create_mock_server(contract, address) == -1

    def test_contract_parse_error(self):
        assert create_mock_server('{"interactions": [', '127.0.0.1:0') == -2
        assert create_mock_server('{"interactions": [{"description": "no request"}]}', '127.0.0.1:0') == -2

    def test_port_in_use(self, mallory_contract_text, occupied_port):
        assert create_mock_server(mallory_contract_text, f'127.0.0.1:{occupied_port}') == -3

    @pytest.mark.parametrize('address', ['127.0.0.1:abc', '127.0.0.1:70000', '[::1'])
    def test_invalid_address(self, mallory_contract_text, address):
        assert create_mock_server(mallory_contract_text, address) == -5

    def test_internal_error(self, mallory_contract_text):
        """Test unexpected failures are contained."""
        with patch('pactmock.ffi.get_registry', side_effect=RuntimeError('boom')):
            assert create_mock_server(mallory_contract_text, '127.0.0.1:0') == -4

    def test_servers_are_independent(self, mallory_contract_text, empty_contract_text, handles):
        first = create_mock_server(mallory_contract_text, '127.0.0.1:0')
        second = create_mock_server(empty_contract_text, '127.0.0.1:0')
        handles.extend([first, second])

        httpx.get(f'http://127.0.0.1:{second}/unexpected')

        assert first != second
        assert mock_server_matched(second) is False
        assert json.loads(mock_server_mismatches(first))[0]['type'] == 'missing-request'


class TestHandles:
    """Test handle validity and cleanup."""

    def test_invalid_handles_report_failure(self):
        """Test unknown handles never raise."""
        assert mock_server_matched(-1) is False
        assert mock_server_mismatches(-1) is None
        assert cleanup_mock_server(99999) is False

    def test_cleanup_twice(self, mallory_contract_text):
        """Test repeated cleanup succeeds without further effect."""
        handle = create_mock_server(mallory_contract_text, '127.0.0.1:0')

        assert cleanup_mock_server(handle) is True
        assert cleanup_mock_server(handle) is True
        assert mock_server_matched(handle) is False

        with pytest.raises(httpx.TransportError):
            httpx.get(f'http://127.0.0.1:{handle}/mallory', timeout=1.0)


class TestWritePactFile:
    """Test write_pact_file()."""

    def test_writes_contract(self, mallory_handle, mallory_contract, tmp_path):
        assert write_pact_file(mallory_handle, str(tmp_path)) == 0

        written = json.loads((tmp_path / 'mallory-consumer-mallory-provider.json').read_text())
        assert written == mallory_contract

    def test_merges_existing_file(self, mallory_handle, tmp_path):
        """Test interactions are merged by description."""
        existing = {
            'consumer': {'name': 'mallory-consumer'},
            'provider': {'name': 'mallory-provider'},
            'interactions': [
                {'description': 'an older interaction', 'request': {'method': 'GET', 'path': '/old'}},
                {'description': 'a request to be nice to Mallory', 'request': {'method': 'GET', 'path': '/stale'}},
            ]
        }
        path = tmp_path / 'mallory-consumer-mallory-provider.json'
        path.write_text(json.dumps(existing))

        assert write_pact_file(mallory_handle, str(tmp_path)) == 0

        interactions = json.loads(path.read_text())['interactions']
        assert [i['description'] for i in interactions] == ['an older interaction', 'a request to be nice to Mallory']
        assert interactions[1]['request']['path'] == '/mallory'

    def test_overwrite(self, mallory_handle, tmp_path):
        path = tmp_path / 'mallory-consumer-mallory-provider.json'
        path.write_text(json.dumps({'interactions': [{'description': 'an older interaction'}]}))

        assert write_pact_file(mallory_handle, str(tmp_path), overwrite=True) == 0
        assert len(json.loads(path.read_text())['interactions']) == 1

    def test_file_name_keeps_spaces(self, handles, tmp_path):
        """Test party names are used as written in the file name."""
        contract = json.dumps({
            'consumer': {'name': 'Consumer'},
            'provider': {'name': 'Alice Service'},
            'interactions': []
        })
        handle = create_mock_server(contract, '127.0.0.1:0')
        assert handle > 0
        handles.append(handle)

        assert write_pact_file(handle, str(tmp_path)) == 0
        assert [p.name for p in tmp_path.iterdir()] == ['Consumer-Alice Service.json']

    def test_file_name_replaces_path_separators(self, handles, tmp_path):
        contract = json.dumps({
            'consumer': {'name': 'web/app'},
            'provider': {'name': 'billing'},
            'interactions': []
        })
        handle = create_mock_server(contract, '127.0.0.1:0')
        handles.append(handle)

        assert write_pact_file(handle, str(tmp_path)) == 0
        assert (tmp_path / 'web_app-billing.json').exists()

    def test_unknown_handle(self, tmp_path):
        assert write_pact_file(-1, str(tmp_path)) == 3

    def test_unwritable_directory(self, mallory_handle, tmp_path):
        blocker = tmp_path / 'not-a-directory'
        blocker.write_text('x')
        assert write_pact_file(mallory_handle, str(blocker)) == 2

    def test_merge_rejects_non_object(self):
        with pytest.raises(ValueError):
            merge_pact_documents([], {'interactions': []})
