"""
pactmock Boundary Adapter

Flat, handle-based functions for callers in other languages or test
frameworks. None of them raise: failures come back as negative codes, False
or None, and are logged.

Example:
    port = create_mock_server(contract_json, "127.0.0.1:0")
    if port < 0:
        fail(f"mock server did not start: {port}")

    # ... exercise the consumer against http://127.0.0.1:<port> ...

    assert mock_server_matched(port), mock_server_mismatches(port)
    cleanup_mock_server(port)
"""

import json
import logging
import os
import re
from typing import Any, Dict, Optional

from .config import MockServerConfig
from .contract import parse_contract
from .errors import (
    BindError,
    ContractParseError,
    InvalidAddressError,
    ERROR_NULL_ARGUMENT,
    ERROR_CONTRACT_PARSE,
    ERROR_SERVER_START,
    ERROR_INTERNAL,
    ERROR_INVALID_ADDRESS,
    WRITE_OK,
    WRITE_FAILED,
    WRITE_NO_SERVER,
)
from .registry import CleanupOutcome, get_registry


logger = logging.getLogger("pactmock.ffi")


def create_mock_server(
    contract: Optional[str],
    bind_address: Optional[str],
    config: Optional[MockServerConfig] = None
) -> int:
    """
    Parse a contract, start a mock server for it and register it.

    Args:
        contract: Contract JSON text
        bind_address: 'host:port' to bind; port 0 picks a free port
        config: Optional MockServerConfig

    Returns:
        The bound port (the server's handle), or a negative error code:
        -1 missing argument, -2 contract parse error, -3 server could not
        start, -4 internal error, -5 invalid bind address
    """
    if not contract or not bind_address:
        logger.error("create_mock_server called without a contract or bind address")
        return ERROR_NULL_ARGUMENT

    try:
        parsed = parse_contract(contract)
    except ContractParseError as e:
        logger.error(f"Could not parse contract: {e}")
        return ERROR_CONTRACT_PARSE
    except Exception:
        logger.exception("Unexpected failure while parsing contract")
        return ERROR_INTERNAL

    try:
        return get_registry().start(parsed, bind_address, config)
    except InvalidAddressError as e:
        logger.error(f"Invalid bind address '{bind_address}': {e}")
        return ERROR_INVALID_ADDRESS
    except BindError as e:
        logger.error(f"Could not start mock server: {e}")
        return ERROR_SERVER_START
    except Exception:
        logger.exception("Unexpected failure while starting mock server")
        return ERROR_INTERNAL


def mock_server_matched(handle: int) -> bool:
    """
    True iff every request matched and every interaction was exercised.

    Unknown or cleaned-up handles report False.
    """
    server = get_registry().get(handle)
    if server is None:
        logger.warning(f"mock_server_matched: no mock server running with handle {handle}")
        return False
    return server.matched()


def mock_server_mismatches(handle: int) -> Optional[str]:
    """
    JSON array describing every mismatch of the server, or None for unknown handles.
    """
    server = get_registry().get(handle)
    if server is None:
        logger.warning(f"mock_server_mismatches: no mock server running with handle {handle}")
        return None
    return json.dumps(server.mismatches(), default=str)


def cleanup_mock_server(handle: int) -> bool:
    """
    Stop the server and release its port.

    Returns True the first time and on any repeated call for a handle that
    was once valid; False if the handle was never issued.
    """
    try:
        outcome = get_registry().cleanup(handle)
    except Exception:
        logger.exception(f"Unexpected failure while cleaning up mock server {handle}")
        return False

    if outcome is CleanupOutcome.UNKNOWN:
        logger.warning(f"cleanup_mock_server: no mock server was ever started with handle {handle}")
        return False
    return True


def write_pact_file(handle: int, directory: str, overwrite: bool = False) -> int:
    """
    Write the server's contract to '<directory>/<consumer>-<provider>.json'.

    An existing file is merged with the contract (interactions with the same
    description are replaced) unless overwrite is set.

    Returns:
        0 on success, 2 if the file could not be written, 3 for unknown handles
    """
    server = get_registry().get(handle)
    if server is None:
        logger.warning(f"write_pact_file: no mock server running with handle {handle}")
        return WRITE_NO_SERVER

    contract = server.contract
    filename = f"{_file_safe(contract.consumer.name)}-{_file_safe(contract.provider.name)}.json"
    path = os.path.join(directory or '.', filename)

    try:
        document = contract.to_dict()
        if not overwrite and os.path.exists(path):
            with open(path, 'r', encoding='utf-8') as f:
                document = merge_pact_documents(json.load(f), document)

        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=2)
    except (OSError, ValueError) as e:
        logger.error(f"Could not write pact file {path}: {e}")
        return WRITE_FAILED

    logger.info(f"Wrote pact file {path} ({len(document.get('interactions', []))} interactions)")
    return WRITE_OK


def merge_pact_documents(existing: Dict[str, Any], current: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two contract documents for the same consumer/provider pair.

    Interactions are keyed by description: the current ones replace existing
    ones with the same description, the rest are kept in their original order.
    """
    if not isinstance(existing, dict):
        raise ValueError("existing pact file does not hold a JSON object")

    merged = dict(existing)
    merged.update({k: v for k, v in current.items() if k != 'interactions'})

    current_interactions = current.get('interactions', [])
    replaced = {i.get('description') for i in current_interactions if isinstance(i, dict)}
    kept = [
        i for i in existing.get('interactions', [])
        if not (isinstance(i, dict) and i.get('description') in replaced)
    ]
    merged['interactions'] = kept + list(current_interactions)
    return merged


def _file_safe(name: str) -> str:
    """Keep the party name as written, minus path separators and characters filesystems reject."""
    cleaned = re.sub(r'[\\/:*?"<>|\x00-\x1f]', '_', name).strip()
    return cleaned.strip('.') or 'unnamed'
