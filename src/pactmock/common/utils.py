"""
pactmock Common Utilities

Shared helpers for loading contract files, JSON parsing and header handling.
"""

import json
from pathlib import Path
from typing import List, Dict, Any, Optional, Mapping


# Headers the HTTP stack computes itself and must not be copied from a contract
HOP_BY_HOP_HEADERS = {'content-length', 'transfer-encoding', 'connection'}


def safe_json_parse(json_string: Any, default: Any = None) -> Any:
    """
    Safely parse JSON string with error handling.

    Args:
        json_string: JSON string (or bytes) to parse
        default: Default value to return if parsing fails

    Returns:
        Parsed JSON object, or default if parsing fails

    Example:
        body = safe_json_parse(request.body.content, default={})
    """
    if not json_string:
        return default

    try:
        return json.loads(json_string)
    except (json.JSONDecodeError, TypeError, ValueError):
        return default


def decode_body(body: Optional[bytes]) -> str:
    """Decode a body for logs and diagnostics, never failing."""
    if not body:
        return ""
    try:
        return body.decode('utf-8')
    except UnicodeDecodeError:
        return f"[binary data, {len(body)} bytes]"


def normalize_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """
    Lower-case header names and flatten list values.

    Args:
        headers: Header mapping as found in a contract or a request

    Returns:
        Dict keyed by lower-cased header name
    """
    if not headers:
        return {}

    normalized: Dict[str, str] = {}
    for name, value in headers.items():
        if isinstance(value, (list, tuple)):
            value = ', '.join(str(v) for v in value)
        key = str(name).lower()
        if key in normalized:
            normalized[key] = f"{normalized[key]}, {value}"
        else:
            normalized[key] = str(value)
    return normalized


def base_content_type(content_type: Optional[str]) -> str:
    """Media type without parameters, lower-cased ('application/json; charset=utf-8' -> 'application/json')."""
    if not content_type:
        return ''
    return content_type.split(';', 1)[0].strip().lower()


def content_kind(content_type: Optional[str]) -> str:
    """
    Classify a content type as 'json', 'xml' or 'text'.

    Anything that is neither JSON nor XML is compared byte for byte, so
    binary types fall into 'text' as well.
    """
    base = base_content_type(content_type)
    if base == 'application/json' or base.endswith('+json'):
        return 'json'
    if base in ('application/xml', 'text/xml') or base.endswith('+xml'):
        return 'xml'
    return 'text'


def detect_content_type(body: bytes) -> str:
    """Guess a content type for a body that came without one."""
    text = body.lstrip()
    if text[:1] in (b'{', b'[') and safe_json_parse(body) is not None:
        return 'application/json'
    if text.startswith(b'<?xml'):
        return 'application/xml'
    if text[:1] == b'<' and not text[:9].lower().startswith((b'<!doctype', b'<html')):
        return 'application/xml'
    return 'text/plain'


def split_header_value(value: str) -> List[str]:
    """Split a (possibly combined) header value on commas, stripping whitespace."""
    return [part.strip() for part in value.split(',')]


def filter_response_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Drop headers the server computes itself (content-length and friends)."""
    return {k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}


class ContractLoader:
    """
    Loader for Pact contract files.

    Reads a contract from disk and checks it is a JSON object before handing
    the text to the parser.

    Example:
        loader = ContractLoader("pacts/Consumer-Provider.json")
        contract_text = loader.load_text()
    """

    def __init__(self, file_path: str):
        """
        Initialize contract loader.

        Args:
            file_path: Path to the contract JSON file
        """
        self.file_path = Path(file_path)

    def load_text(self) -> str:
        """
        Read the raw contract text.

        Raises:
            FileNotFoundError: If the contract file doesn't exist
        """
        if not self.file_path.exists():
            raise FileNotFoundError(f"Contract file not found: {self.file_path}")

        return self.file_path.read_text(encoding='utf-8')

    def load(self) -> Dict[str, Any]:
        """
        Load the contract as a JSON document.

        Returns:
            Contract dictionary

        Raises:
            FileNotFoundError: If the contract file doesn't exist
            ValueError: If the file is not a JSON object
        """
        data = json.loads(self.load_text())

        if not isinstance(data, dict):
            raise ValueError(
                f"Unexpected JSON format in {self.file_path}. "
                f"Expected a contract object, got {type(data).__name__}"
            )
        return data

    @staticmethod
    def load_from_file(file_path: str) -> Dict[str, Any]:
        """
        Convenience method to load a contract in one call.

        Example:
            data = ContractLoader.load_from_file("pacts/Consumer-Provider.json")
        """
        return ContractLoader(file_path).load()
