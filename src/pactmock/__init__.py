"""
pactmock - Consumer contract mock server

Stands up ephemeral HTTP mock servers from Pact contracts, matches every
received request against the contract's interactions with rule-based
structural matching, and reports whether the consumer behaved as agreed.

This package provides:
- Contract parsing into an immutable in-memory model
- Matching engine (method, path, query, headers, body with matching rules)
- FastAPI/uvicorn mock servers running on background threads
- A process-wide registry addressed by port handles
- Flat boundary functions that never raise
"""

__version__ = "0.1.0"

from .config import MockServerConfig
from .contract import Contract, Interaction, OptionalBody, Party, RequestSpec, ResponseSpec, parse_contract
from .errors import (
    PactMockError,
    ContractParseError,
    BindError,
    InvalidAddressError,
    InvalidHandleError,
    RegistryCorruptionError,
)
from .matching import Mismatch, MatchResult, MatchScore, RequestMatcher, match_request, match_response
from .server import MockServer, MockMetrics, RecordedInteraction, ServerState
from .registry import ServerRegistry, CleanupOutcome, get_registry
from .ffi import (
    create_mock_server,
    mock_server_matched,
    mock_server_mismatches,
    cleanup_mock_server,
    write_pact_file,
)

__all__ = [
    '__version__',

    # Contract
    'Contract',
    'Interaction',
    'OptionalBody',
    'Party',
    'RequestSpec',
    'ResponseSpec',
    'parse_contract',

    # Matching
    'Mismatch',
    'MatchResult',
    'MatchScore',
    'RequestMatcher',
    'match_request',
    'match_response',

    # Server
    'MockServer',
    'MockServerConfig',
    'MockMetrics',
    'RecordedInteraction',
    'ServerState',
    'ServerRegistry',
    'CleanupOutcome',
    'get_registry',

    # Boundary functions
    'create_mock_server',
    'mock_server_matched',
    'mock_server_mismatches',
    'cleanup_mock_server',
    'write_pact_file',

    # Errors
    'PactMockError',
    'ContractParseError',
    'BindError',
    'InvalidAddressError',
    'InvalidHandleError',
    'RegistryCorruptionError',
]
