"""
pactmock Errors

Exception hierarchy shared by the contract parser, the mock server and the
registry, plus the numeric codes returned across the foreign-call boundary.
"""

from typing import Optional


# create_mock_server() failure codes
ERROR_NULL_ARGUMENT = -1
ERROR_CONTRACT_PARSE = -2
ERROR_SERVER_START = -3
ERROR_INTERNAL = -4
ERROR_INVALID_ADDRESS = -5

# write_pact_file() result codes
WRITE_OK = 0
WRITE_FAILED = 2
WRITE_NO_SERVER = 3


class PactMockError(Exception):
    """Base class for all pactmock errors."""


class ContractParseError(PactMockError):
    """Contract text is malformed or a required field has the wrong shape."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.message = message
        self.path = path
        if path:
            super().__init__(f"{path}: {message}")
        else:
            super().__init__(message)


class BindError(PactMockError):
    """The listener could not be bound to the requested address."""


class InvalidAddressError(BindError):
    """The bind address could not be parsed."""


class InvalidHandleError(PactMockError):
    """No running mock server is registered under the handle."""

    def __init__(self, handle: int):
        self.handle = handle
        super().__init__(f"No mock server running with handle {handle}")


class RegistryCorruptionError(PactMockError):
    """The handle table is in a state that should be impossible."""
