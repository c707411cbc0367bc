"""
pactmock Matching Engine

Pure, rule-based comparison of actual requests/responses against contract
expectations.

This module provides:
- Matching rules (equality, type, regex, include, minmax) keyed by path
- Structural JSON/XML body diff
- Facet matchers and best-interaction selection
"""

from .mismatch import Mismatch
from .rules import Rule, RuleSet, MatchingRules
from .body import compare_body, compare_json, DiffContext
from .matcher import (
    MatchScore,
    MatchResult,
    RequestMatcher,
    match_request,
    match_response,
)

__all__ = [
    # Rules
    'Rule',
    'RuleSet',
    'MatchingRules',

    # Body diff
    'compare_body',
    'compare_json',
    'DiffContext',

    # Matcher
    'Mismatch',
    'MatchScore',
    'MatchResult',
    'RequestMatcher',
    'match_request',
    'match_response',
]
