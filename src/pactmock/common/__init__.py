"""
pactmock Common Utilities

Shared utilities and helpers used across pactmock modules.
"""

from .utils import (
    safe_json_parse,
    decode_body,
    normalize_headers,
    split_header_value,
    base_content_type,
    content_kind,
    detect_content_type,
    filter_response_headers,
    ContractLoader,
)
from .url_utils import QueryString, parse_bind_address

__all__ = [
    'safe_json_parse',
    'decode_body',
    'normalize_headers',
    'split_header_value',
    'base_content_type',
    'content_kind',
    'detect_content_type',
    'filter_response_headers',
    'ContractLoader',
    'QueryString',
    'parse_bind_address',
]
