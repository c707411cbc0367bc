"""
pactmock Request Matcher

Rule-based matching engine comparing actual requests/responses with the
expectations declared in a contract.

Features:
- Facet-by-facet comparison (method, path, query, headers, body)
- Key-based query matching with ordered values per key
- Case-insensitive header matching; only expected headers are checked
- Structural JSON/XML body diff with per-path matching rules
- Best-candidate selection across all interactions for diagnostics

All functions here are pure: they never touch the network or shared state,
so they are safe to call from any number of connection handlers at once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from .body import compare_body
from .mismatch import (
    Mismatch,
    METHOD_MISMATCH,
    PATH_MISMATCH,
    QUERY_MISMATCH,
    HEADER_MISMATCH,
    STATUS_MISMATCH,
    UNEXPECTED_REQUEST,
)
from .rules import MatchingRules, RuleSet
from ..common.utils import base_content_type, normalize_headers, split_header_value

if TYPE_CHECKING:
    from ..contract import Interaction, RequestSpec, ResponseSpec


REQUEST_FACETS = ('method', 'path', 'query', 'headers', 'body')


@dataclass
class MatchScore:
    """Per-facet outcome of comparing a request with one interaction."""

    method_match: bool = True
    path_match: bool = True
    query_match: bool = True
    header_match: bool = True
    body_match: bool = True
    mismatch_count: int = 0

    @classmethod
    def from_mismatches(cls, mismatches: Sequence[Mismatch]) -> 'MatchScore':
        facets = {m.facet for m in mismatches}
        return cls(
            method_match='method' not in facets,
            path_match='path' not in facets,
            query_match='query' not in facets,
            header_match='headers' not in facets,
            body_match='body' not in facets,
            mismatch_count=len(mismatches)
        )

    @property
    def facets_matched(self) -> int:
        """Number of request facets (out of five) without mismatches."""
        return sum([
            self.method_match,
            self.path_match,
            self.query_match,
            self.header_match,
            self.body_match,
        ])

    @property
    def is_full_match(self) -> bool:
        return self.mismatch_count == 0

    def sort_key(self) -> Tuple[int, int]:
        """Higher is better: most facets matched, then fewest mismatches."""
        return self.facets_matched, -self.mismatch_count

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'method': self.method_match,
            'path': self.path_match,
            'query': self.query_match,
            'headers': self.header_match,
            'body': self.body_match,
            'facets_matched': self.facets_matched,
            'mismatch_count': self.mismatch_count,
        }


@dataclass
class MatchResult:
    """Result of matching a request against the contract."""

    interaction: Optional[Interaction] = None
    mismatches: List[Mismatch] = field(default_factory=list)
    score: Optional[MatchScore] = None
    reason: str = ""

    @property
    def matched(self) -> bool:
        return self.interaction is not None and not self.mismatches

    @property
    def request_found(self) -> bool:
        """True when the best candidate at least agreed on method and path."""
        return (
            self.interaction is not None
            and self.score is not None
            and self.score.method_match
            and self.score.path_match
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'matched': self.matched,
            'interaction': self.interaction.description if self.interaction else None,
            'score': self.score.to_dict() if self.score else None,
            'reason': self.reason,
            'mismatches': [m.to_dict() for m in self.mismatches],
        }


def match_method(expected: str, actual: str) -> List[Mismatch]:
    """Case-insensitive method comparison."""
    if expected.upper() != actual.upper():
        return [Mismatch(
            METHOD_MISMATCH, 'method', expected.upper(), actual.upper(),
            f"Expected method {expected.upper()} but received {actual.upper()}"
        )]
    return []


def match_path(expected: str, actual: str, rules: MatchingRules) -> List[Mismatch]:
    """Compare paths as scalars, or with the path rule when one is registered."""
    rule_set = rules.for_path()
    if rule_set is not None:
        return [
            Mismatch(PATH_MISMATCH, 'path', expected, actual, failure)
            for failure in rule_set.check(expected, actual)
        ]
    if expected != actual:
        return [Mismatch(
            PATH_MISMATCH, 'path', expected, actual,
            f"Expected path '{expected}' but received '{actual}'"
        )]
    return []


def match_query(
    expected: Dict[str, List[str]],
    actual: Dict[str, List[str]],
    rules: MatchingRules
) -> List[Mismatch]:
    """
    Key-based query comparison.

    Every expected key must be present in the actual query; keys the contract
    does not mention are ignored. For each key the ordered list of values is
    compared element-wise, unless a query rule governs that key.
    """
    mismatches: List[Mismatch] = []

    for key, expected_values in expected.items():
        path = f'query.{key}'
        if key not in actual:
            mismatches.append(Mismatch(
                QUERY_MISMATCH, path, expected_values, None,
                f"Expected query parameter '{key}' but was missing"
            ))
            continue

        actual_values = actual[key]
        rule_set = rules.for_query(key)
        if rule_set is not None:
            mismatches.extend(_match_values_with_rules(path, key, expected_values, actual_values, rule_set))
            continue

        if len(expected_values) != len(actual_values):
            mismatches.append(Mismatch(
                QUERY_MISMATCH, path, expected_values, actual_values,
                f"Expected query parameter '{key}' with {len(expected_values)} value(s) "
                f"{expected_values} but received {len(actual_values)} value(s) {actual_values}"
            ))
        for index, (expected_value, actual_value) in enumerate(zip(expected_values, actual_values)):
            if expected_value != actual_value:
                mismatches.append(Mismatch(
                    QUERY_MISMATCH, f'{path}[{index}]', expected_value, actual_value,
                    f"Expected '{expected_value}' but received '{actual_value}' "
                    f"for query parameter '{key}'"
                ))

    return mismatches


def _match_values_with_rules(path, key, expected_values, actual_values, rule_set: RuleSet) -> List[Mismatch]:
    mismatches = []
    if rule_set.is_type_like:
        for failure in rule_set.check_cardinality(len(actual_values)):
            mismatches.append(Mismatch(QUERY_MISMATCH, path, expected_values, actual_values, failure))
    elif len(expected_values) != len(actual_values):
        mismatches.append(Mismatch(
            QUERY_MISMATCH, path, expected_values, actual_values,
            f"Expected query parameter '{key}' with {len(expected_values)} value(s) "
            f"but received {len(actual_values)} value(s)"
        ))

    for index, actual_value in enumerate(actual_values):
        if index < len(expected_values):
            template = expected_values[index]
        else:
            template = expected_values[0] if expected_values else ''
        for failure in rule_set.check(template, actual_value):
            mismatches.append(Mismatch(QUERY_MISMATCH, f'{path}[{index}]', template, actual_value, failure))
    return mismatches


def match_headers(
    expected: Dict[str, str],
    actual: Dict[str, str],
    rules: MatchingRules
) -> List[Mismatch]:
    """
    Compare the headers named by the contract; extra actual headers are fine.
    """
    mismatches: List[Mismatch] = []
    actual_headers = normalize_headers(actual)

    for name, expected_value in normalize_headers(expected).items():
        path = f'headers.{name}'
        if name not in actual_headers:
            mismatches.append(Mismatch(
                HEADER_MISMATCH, path, expected_value, None,
                f"Expected header '{name}' but was missing"
            ))
            continue

        actual_value = actual_headers[name]
        rule_set = rules.for_header(name)
        if rule_set is not None:
            for failure in rule_set.check(expected_value, actual_value):
                mismatches.append(Mismatch(HEADER_MISMATCH, path, expected_value, actual_value, failure))
            continue

        if not _header_values_equal(name, expected_value, actual_value):
            mismatches.append(Mismatch(
                HEADER_MISMATCH, path, expected_value, actual_value,
                f"Expected header '{name}' to have value '{expected_value}' but was '{actual_value}'"
            ))

    return mismatches


def _header_values_equal(name: str, expected: str, actual: str) -> bool:
    if name == 'content-type':
        return _content_type_matches(expected, actual)
    return split_header_value(expected) == split_header_value(actual)


def _content_type_matches(expected: str, actual: str) -> bool:
    """Base types must agree and every expected parameter must be present."""
    if base_content_type(expected) != base_content_type(actual):
        return False
    actual_params = _content_type_params(actual)
    for key, value in _content_type_params(expected).items():
        if actual_params.get(key) != value:
            return False
    return True


def _content_type_params(content_type: str) -> Dict[str, str]:
    params = {}
    for part in content_type.split(';')[1:]:
        if '=' in part:
            key, value = part.split('=', 1)
            params[key.strip().lower()] = value.strip().strip('"').lower()
    return params


def match_status(expected: int, actual: int, rules: MatchingRules) -> List[Mismatch]:
    rule_set = rules.for_status()
    if rule_set is not None:
        return [
            Mismatch(STATUS_MISMATCH, 'status', expected, actual, failure)
            for failure in rule_set.check(expected, actual)
        ]
    if expected != actual:
        return [Mismatch(
            STATUS_MISMATCH, 'status', expected, actual,
            f"Expected status {expected} but received {actual}"
        )]
    return []


def match_request(expected: RequestSpec, actual: RequestSpec) -> List[Mismatch]:
    """
    Compare an actual request with an expected one.

    Facets are compared independently, in the order method, path, query,
    headers, body, and their mismatches are concatenated.

    Args:
        expected: Request declared by the contract
        actual: Request that was received

    Returns:
        List of mismatches, empty when the request matches
    """
    rules = expected.matching_rules
    mismatches: List[Mismatch] = []
    mismatches.extend(match_method(expected.method, actual.method))
    mismatches.extend(match_path(expected.path, actual.path, rules))
    mismatches.extend(match_query(expected.query, actual.query, rules))
    mismatches.extend(match_headers(expected.headers, actual.headers, rules))
    mismatches.extend(compare_body(expected.body, actual.body, rules, allow_unexpected_keys=False))
    return mismatches


def match_response(expected: ResponseSpec, actual: ResponseSpec) -> List[Mismatch]:
    """
    Compare an actual response with an expected one.

    Responses tolerate unexpected object keys in bodies; status, headers and
    body are otherwise compared like requests.
    """
    rules = expected.matching_rules
    mismatches: List[Mismatch] = []
    mismatches.extend(match_status(expected.status, actual.status, rules))
    mismatches.extend(match_headers(expected.headers, actual.headers, rules))
    mismatches.extend(compare_body(expected.body, actual.body, rules, allow_unexpected_keys=True))
    return mismatches


class RequestMatcher:
    """
    Finds the interaction that should serve an incoming request.

    Every interaction is evaluated in contract order. The first one with no
    mismatches wins; when none matches fully, the best candidate (most facets
    matched, then fewest mismatches, then earliest in the contract) is
    returned for diagnostics.

    Example:
        matcher = RequestMatcher(contract.interactions)
        result = matcher.find_match(actual_request)

        if result.matched:
            serve(result.interaction.response)
    """

    def __init__(self, interactions: Sequence[Interaction]):
        """
        Initialize request matcher.

        Args:
            interactions: Interactions of the contract, in declaration order
        """
        self.interactions = list(interactions)

    def find_match(self, actual: RequestSpec) -> MatchResult:
        """
        Find the interaction matching an incoming request.

        Args:
            actual: Request that was received

        Returns:
            MatchResult for the matching interaction or the best candidate
        """
        if not self.interactions:
            return MatchResult(
                interaction=None,
                mismatches=[Mismatch(
                    UNEXPECTED_REQUEST, '$', None, f"{actual.method} {actual.path}",
                    f"Unexpected request {actual.method} {actual.path}: the contract has no interactions"
                )],
                reason="No interactions defined"
            )

        best: Optional[MatchResult] = None
        for interaction in self.interactions:
            mismatches = match_request(interaction.request, actual)
            score = MatchScore.from_mismatches(mismatches)

            if not mismatches:
                return MatchResult(
                    interaction=interaction,
                    mismatches=[],
                    score=score,
                    reason=f"Matched interaction '{interaction.description}'"
                )

            # Strict comparison keeps the earliest candidate on ties
            if best is None or score.sort_key() > best.score.sort_key():
                best = MatchResult(interaction=interaction, mismatches=mismatches, score=score)

        best.reason = (
            f"No interaction matched; closest was '{best.interaction.description}' "
            f"({best.score.facets_matched}/{len(REQUEST_FACETS)} facets, "
            f"{best.score.mismatch_count} mismatch(es))"
        )
        return best
