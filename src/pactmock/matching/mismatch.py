"""
pactmock Mismatch Records

One structured record per facet/path that failed to satisfy its expectation.
"""

from dataclasses import dataclass
from typing import Any, Dict


METHOD_MISMATCH = 'MethodMismatch'
PATH_MISMATCH = 'PathMismatch'
QUERY_MISMATCH = 'QueryMismatch'
HEADER_MISMATCH = 'HeaderMismatch'
BODY_TYPE_MISMATCH = 'BodyTypeMismatch'
BODY_MISMATCH = 'BodyMismatch'
STATUS_MISMATCH = 'StatusMismatch'
UNEXPECTED_REQUEST = 'UnexpectedRequest'

# Facet each kind belongs to, used when scoring candidate interactions
FACETS = {
    METHOD_MISMATCH: 'method',
    PATH_MISMATCH: 'path',
    QUERY_MISMATCH: 'query',
    HEADER_MISMATCH: 'headers',
    BODY_TYPE_MISMATCH: 'body',
    BODY_MISMATCH: 'body',
    STATUS_MISMATCH: 'status',
    UNEXPECTED_REQUEST: 'method',
}


@dataclass(frozen=True)
class Mismatch:
    """Outcome of comparing one actual value to one expected value at a path."""

    kind: str
    path: str
    expected: Any
    actual: Any
    description: str

    @property
    def facet(self) -> str:
        return FACETS.get(self.kind, 'body')

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'type': self.kind,
            'path': self.path,
            'expected': self.expected,
            'actual': self.actual,
            'mismatch': self.description,
        }
