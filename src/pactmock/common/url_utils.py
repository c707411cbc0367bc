"""
pactmock URL Utilities

Query string decomposition and bind address parsing shared by the contract
parser, the mock server and the CLI.
"""

import ipaddress
from urllib.parse import parse_qsl, quote, urlencode
from typing import Dict, List, Tuple, Union

from ..errors import InvalidAddressError


QueryValues = Dict[str, List[str]]


class QueryString:
    """Ordered, repeated-key aware query string handling."""

    @staticmethod
    def parse(query: str) -> QueryValues:
        """
        Decompose a raw query string into key -> ordered values.

        Keys keep the order of their first appearance and each key keeps the
        order of its values. Percent-escapes and '+' are decoded.

        Args:
            query: Raw query string, with or without a leading '?'

        Returns:
            Dict mapping each key to the list of its values
        """
        if not query:
            return {}

        if query.startswith('?'):
            query = query[1:]

        values: QueryValues = {}
        for key, value in parse_qsl(query, keep_blank_values=True):
            values.setdefault(key, []).append(value)
        return values

    @staticmethod
    def from_object(data: Dict[str, Union[str, List[str]]]) -> QueryValues:
        """
        Normalise a query object (v3 contract form) into key -> values.

        Args:
            data: Mapping of key to a single value or a list of values

        Returns:
            Dict mapping each key to a list of string values
        """
        values: QueryValues = {}
        for key, value in data.items():
            if isinstance(value, list):
                values[key] = [str(v) for v in value]
            elif value is None:
                values[key] = ['']
            else:
                values[key] = [str(value)]
        return values

    @staticmethod
    def to_string(values: QueryValues) -> str:
        """Encode key -> values back into a query string."""
        pairs = [(key, value) for key, vals in values.items() for value in vals]
        return urlencode(pairs, quote_via=quote)


def parse_bind_address(address: str) -> Tuple[str, int]:
    """
    Split a bind address into host and port.

    Accepts 'host:port', '[ipv6]:port', ':port' (all interfaces on IPv4) and a
    bare host (port 0, i.e. pick a free port).

    Args:
        address: Address string such as '127.0.0.1:0'

    Returns:
        (host, port) tuple

    Raises:
        InvalidAddressError: If the address cannot be parsed
    """
    if not address or not address.strip():
        raise InvalidAddressError("Bind address is empty")

    text = address.strip()

    if text.startswith('['):
        end = text.find(']')
        if end == -1:
            raise InvalidAddressError(f"Unterminated IPv6 literal in '{address}'")
        host = text[1:end]
        rest = text[end + 1:]
        if rest and not rest.startswith(':'):
            raise InvalidAddressError(f"Unexpected characters after IPv6 literal in '{address}'")
        port_text = rest[1:] if rest else '0'
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            raise InvalidAddressError(f"'{host}' is not a valid IPv6 address")
    elif text.count(':') > 1:
        # Bare IPv6 literal without a port
        try:
            ipaddress.IPv6Address(text)
        except ValueError:
            raise InvalidAddressError(f"'{address}' is not a valid address")
        host, port_text = text, '0'
    elif ':' in text:
        host, port_text = text.rsplit(':', 1)
        host = host or '0.0.0.0'
    else:
        host, port_text = text, '0'

    try:
        port = int(port_text)
    except ValueError:
        raise InvalidAddressError(f"Port '{port_text}' in '{address}' is not a number")

    if not 0 <= port <= 65535:
        raise InvalidAddressError(f"Port {port} in '{address}' is out of range")

    if any(c.isspace() for c in host):
        raise InvalidAddressError(f"Host '{host}' in '{address}' is not valid")

    return host, port
