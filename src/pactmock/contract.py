"""
pactmock Contract Model

In-memory form of a Pact contract and the parser that builds it.

A contract is immutable once parsed and is owned by the mock server that
loaded it. Parse errors name the offending field, e.g.
``interactions[0].request.method``.
"""

import json
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from jsonpath_ng.exceptions import JSONPathError
from jsonpath_ng.ext import parse as jsonpath_parse

from .common.url_utils import QueryString
from .common.utils import detect_content_type, normalize_headers, safe_json_parse, decode_body
from .errors import ContractParseError
from .matching.rules import MatchingRules


logger = logging.getLogger("pactmock.contract")

ABSENT = 'absent'
EMPTY = 'empty'
PRESENT = 'present'


@dataclass(frozen=True)
class OptionalBody:
    """
    A body expectation.

    'absent' means the body is not compared at all, 'empty' means it must be
    empty, 'present' carries the expected bytes and their content type.
    """

    state: str = ABSENT
    content: bytes = b''
    content_type: Optional[str] = None

    @classmethod
    def absent(cls) -> 'OptionalBody':
        return cls(ABSENT)

    @classmethod
    def empty(cls) -> 'OptionalBody':
        return cls(EMPTY)

    @classmethod
    def present(cls, content: bytes, content_type: Optional[str] = None) -> 'OptionalBody':
        if not content:
            return cls(EMPTY, b'', content_type)
        return cls(PRESENT, content, content_type or detect_content_type(content))

    @classmethod
    def from_json(cls, value: Any, content_type: Optional[str] = None) -> 'OptionalBody':
        """
        Build a body from its contract form.

        Strings are taken verbatim; any other JSON value is serialised as JSON.
        """
        if value is None:
            return cls.absent()
        if isinstance(value, str):
            if value == '':
                return cls.empty()
            return cls.present(value.encode('utf-8'), content_type)
        return cls.present(json.dumps(value, separators=(',', ':')).encode('utf-8'), content_type or 'application/json')

    def is_absent(self) -> bool:
        return self.state == ABSENT

    def is_empty(self) -> bool:
        return self.state == EMPTY

    def is_present(self) -> bool:
        return self.state == PRESENT

    def value_as_text(self) -> str:
        return decode_body(self.content)

    def parsed_json(self) -> Any:
        """Decoded JSON value of a present body, or None."""
        if not self.is_present():
            return None
        return safe_json_parse(self.content)


@dataclass(frozen=True)
class Party:
    """Consumer or provider; identified by name only."""

    name: str


def _expect_type(value: Any, expected_type, description: str, path: str):
    if not isinstance(value, expected_type) or (isinstance(value, bool) and expected_type is int):
        raise ContractParseError(f"must be {description}, got {type(value).__name__}", path)
    return value


def _parse_headers(data: Any, path: str) -> Dict[str, str]:
    if data is None:
        return {}
    _expect_type(data, dict, "an object", path)
    headers = {}
    for name, value in data.items():
        if isinstance(value, list):
            headers[name] = ', '.join(str(v) for v in value)
        elif isinstance(value, (str, int, float)) and not isinstance(value, bool):
            headers[name] = str(value)
        else:
            raise ContractParseError("header values must be strings", f"{path}.{name}")
    return headers


def _parse_body(data: Dict[str, Any], headers: Dict[str, str]) -> OptionalBody:
    if 'body' not in data:
        return OptionalBody.absent()
    content_type = normalize_headers(headers).get('content-type')
    return OptionalBody.from_json(data['body'], content_type)


@dataclass
class RequestSpec:
    """Request half of an interaction, also used for received requests."""

    method: str = 'GET'
    path: str = '/'
    query: Dict[str, List[str]] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: OptionalBody = field(default_factory=OptionalBody)
    matching_rules: MatchingRules = field(default_factory=MatchingRules)

    @classmethod
    def from_dict(cls, data: Any, path: str = 'request') -> 'RequestSpec':
        """Create RequestSpec from its contract form."""
        _expect_type(data, dict, "an object", path)

        method = _expect_type(data.get('method', 'GET'), str, "a string", f"{path}.method")
        request_path = _expect_type(data.get('path', '/'), str, "a string", f"{path}.path")

        raw_query = data.get('query')
        if raw_query is None:
            query = {}
        elif isinstance(raw_query, str):
            query = QueryString.parse(raw_query)
        elif isinstance(raw_query, dict):
            query = QueryString.from_object(raw_query)
        else:
            raise ContractParseError("must be a string or an object", f"{path}.query")

        headers = _parse_headers(data.get('headers'), f"{path}.headers")

        return cls(
            method=method.upper(),
            path=request_path,
            query=query,
            headers=headers,
            body=_parse_body(data, headers),
            matching_rules=MatchingRules.from_json(data.get('matchingRules'), f"{path}.matchingRules")
        )

    @property
    def content_type(self) -> Optional[str]:
        return normalize_headers(self.headers).get('content-type') or self.body.content_type

    def summary(self) -> str:
        """One-line description such as 'GET /mallory?name=ron'."""
        if self.query:
            return f"{self.method} {self.path}?{QueryString.to_string(self.query)}"
        return f"{self.method} {self.path}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (diagnostic form)."""
        data: Dict[str, Any] = {'method': self.method, 'path': self.path}
        if self.query:
            data['query'] = self.query
        if self.headers:
            data['headers'] = dict(self.headers)
        if not self.body.is_absent():
            data['body'] = self.body.value_as_text()
        return data


@dataclass
class ResponseSpec:
    """Response half of an interaction."""

    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    body: OptionalBody = field(default_factory=OptionalBody)
    matching_rules: MatchingRules = field(default_factory=MatchingRules)

    @classmethod
    def from_dict(cls, data: Any, path: str = 'response') -> 'ResponseSpec':
        """Create ResponseSpec from its contract form."""
        if data is None:
            data = {}
        _expect_type(data, dict, "an object", path)

        status = _expect_type(data.get('status', 200), int, "an integer", f"{path}.status")
        if not 100 <= status <= 599:
            raise ContractParseError(f"{status} is not a valid HTTP status", f"{path}.status")

        headers = _parse_headers(data.get('headers'), f"{path}.headers")
        return cls(
            status=status,
            headers=headers,
            body=_parse_body(data, headers),
            matching_rules=MatchingRules.from_json(data.get('matchingRules'), f"{path}.matchingRules")
        )

    @property
    def content_type(self) -> Optional[str]:
        return normalize_headers(self.headers).get('content-type') or self.body.content_type


@dataclass
class Interaction:
    """One expected request/response pair."""

    description: str
    request: RequestSpec
    response: ResponseSpec
    provider_state: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any, path: str = 'interactions[0]') -> 'Interaction':
        """Create Interaction from its contract form."""
        _expect_type(data, dict, "an object", path)

        description = _expect_type(data.get('description', ''), str, "a string", f"{path}.description")

        provider_state = data.get('providerState', data.get('provider_state'))
        states = data.get('providerStates')
        if provider_state is None and isinstance(states, list) and states:
            first = states[0]
            provider_state = first.get('name') if isinstance(first, dict) else first
        if provider_state is not None:
            _expect_type(provider_state, str, "a string", f"{path}.providerState")

        if 'request' not in data:
            raise ContractParseError("is required", f"{path}.request")

        return cls(
            description=description,
            provider_state=provider_state,
            request=RequestSpec.from_dict(data['request'], f"{path}.request"),
            response=ResponseSpec.from_dict(data.get('response'), f"{path}.response")
        )


@dataclass
class Contract:
    """A parsed Pact: parties, ordered interactions and metadata."""

    consumer: Party
    provider: Party
    interactions: List[Interaction] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    source: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def spec_version(self) -> Optional[str]:
        """Pact specification version declared in the metadata, if any."""
        for key in ('pact-specification', 'pactSpecification'):
            section = self.metadata.get(key)
            if isinstance(section, dict) and section.get('version') is not None:
                return str(section['version'])
        return None

    @classmethod
    def from_dict(cls, data: Any) -> 'Contract':
        """
        Create a Contract from a decoded JSON document.

        Raises:
            ContractParseError: If a field is missing or has the wrong shape
        """
        _expect_type(data, dict, "an object", '$')

        consumer = cls._parse_party(data.get('consumer'), 'consumer')
        provider = cls._parse_party(data.get('provider'), 'provider')

        raw_interactions = data.get('interactions', [])
        if not isinstance(raw_interactions, list):
            raise ContractParseError("must be an array", 'interactions')

        interactions = [
            Interaction.from_dict(item, f"interactions[{index}]")
            for index, item in enumerate(raw_interactions)
        ]

        metadata = data.get('metadata') or {}
        _expect_type(metadata, dict, "an object", 'metadata')

        contract = cls(
            consumer=consumer,
            provider=provider,
            interactions=interactions,
            metadata=metadata,
            source=deepcopy(data)
        )
        contract._report_unresolved_rule_paths()
        return contract

    @staticmethod
    def _parse_party(data: Any, path: str) -> Party:
        if data is None:
            return Party(name=path)
        _expect_type(data, dict, "an object", path)
        name = _expect_type(data.get('name', path), str, "a string", f"{path}.name")
        return Party(name=name)

    def _report_unresolved_rule_paths(self):
        """Log body rule paths that can never apply; they are not an error."""
        for index, interaction in enumerate(self.interactions):
            for label, spec in (('request', interaction.request), ('response', interaction.response)):
                body_value = spec.body.parsed_json()
                if body_value is None:
                    continue
                for rule_path in spec.matching_rules.body_paths():
                    if not _rule_path_resolves(rule_path, body_value):
                        logger.info(
                            f"Matching rule path '{rule_path}' in interactions[{index}].{label} "
                            f"does not resolve against the expected body"
                        )

    def to_dict(self) -> Dict[str, Any]:
        """The contract document as it was loaded."""
        return deepcopy(self.source)


def _rule_path_resolves(path: str, value: Any) -> bool:
    try:
        expression = jsonpath_parse(path)
    except JSONPathError as e:
        logger.debug(f"Cannot evaluate matching rule path '{path}': {e}")
        return False
    return bool(expression.find(value))


def parse_contract(text: str) -> Contract:
    """
    Parse contract text into a Contract.

    Args:
        text: Contract JSON document

    Returns:
        Parsed Contract

    Raises:
        ContractParseError: If the text is not valid JSON or not a valid contract
    """
    if not text or not text.strip():
        raise ContractParseError("contract text is empty")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ContractParseError(f"invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})")

    return Contract.from_dict(data)
