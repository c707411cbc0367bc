"""
pactmock Matching Rules

Rules relax or redirect the default exact comparison at a structural path.

Features:
- Rule kinds: equality, type, regex, include, minmax
- Several rules per path combined with AND / OR
- Flat (v2, "$.body.x") and categorised (v3) rule documents
- Path weighting so the most specific rule wins and rules cascade to children
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..errors import ContractParseError


RULE_KINDS = ('equality', 'type', 'regex', 'include', 'minmax')

CATEGORIES = ('path', 'query', 'header', 'body', 'status')

# A path token is a field name (str), an array index (int) or the wildcard '*'
PathToken = Union[str, int]

WILDCARD = '*'

_IDENTIFIER = re.compile(r'^[A-Za-z_@#][A-Za-z0-9_\-@#:]*$')
_TOKEN = re.compile(
    r"""
    \.(?P<field>[^.\[\]]+)          # .name or .*
    | \[(?P<index>\d+)\]            # [0]
    | \[\*\]                        # [*]
    | \['(?P<quoted>(?:[^'\\]|\\.)*)'\]   # ['name with spaces']
    | \["(?P<dquoted>(?:[^"\\]|\\.)*)"\]  # ["name"]
    """,
    re.VERBOSE,
)


def json_type(value: Any) -> str:
    """Name the JSON type of a decoded value (bool is not a number)."""
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'boolean'
    if isinstance(value, (int, float)):
        return 'number'
    if isinstance(value, str):
        return 'string'
    if isinstance(value, list):
        return 'array'
    if isinstance(value, dict):
        return 'object'
    return type(value).__name__


def json_equal(expected: Any, actual: Any) -> bool:
    """Equality that keeps JSON types apart (true != 1, 1 == 1.0)."""
    if json_type(expected) != json_type(actual):
        return False
    return expected == actual


def describe(value: Any) -> str:
    """Render a value the way it appears on the wire."""
    if isinstance(value, str):
        return f"'{value}'"
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return repr(value)


def scalar_text(value: Any) -> str:
    """String form of a scalar used by regex and include rules."""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def parse_path(path: str) -> List[PathToken]:
    """
    Tokenise a rule path such as "$.animals[*].name" or "$['a b'][0]".

    Raises:
        ValueError: If the path is not a '$'-rooted path expression
    """
    text = path.strip()
    if not text.startswith('$'):
        raise ValueError(f"Path '{path}' must start with '$'")

    tokens: List[PathToken] = ['$']
    position = 1
    while position < len(text):
        match = _TOKEN.match(text, position)
        if not match:
            raise ValueError(f"Cannot parse path '{path}' at position {position}")
        if match.group('field') is not None:
            tokens.append(match.group('field'))
        elif match.group('index') is not None:
            tokens.append(int(match.group('index')))
        elif match.group('quoted') is not None:
            tokens.append(match.group('quoted').replace("\\'", "'"))
        elif match.group('dquoted') is not None:
            tokens.append(match.group('dquoted').replace('\\"', '"'))
        else:
            tokens.append(WILDCARD)
        position = match.end()
    return tokens


def format_path(tokens: Sequence[PathToken]) -> str:
    """Inverse of parse_path for concrete (actual) paths."""
    parts = ['$']
    for token in tokens[1:]:
        if isinstance(token, int):
            parts.append(f'[{token}]')
        elif token == WILDCARD:
            parts.append('.*')
        elif _IDENTIFIER.match(token):
            parts.append(f'.{token}')
        else:
            escaped = token.replace("'", "\\'")
            parts.append(f"['{escaped}']")
    return ''.join(parts)


def path_weight(rule_tokens: Sequence[PathToken], actual_tokens: Sequence[PathToken]) -> int:
    """
    Weight of a rule path against an actual path; 0 means it does not apply.

    Exact tokens weigh 2 and wildcards 1. A rule path applies to the actual
    path it names and to everything below it.
    """
    if len(rule_tokens) > len(actual_tokens):
        return 0

    weight = 0
    for rule_token, actual_token in zip(rule_tokens, actual_tokens):
        if rule_token == WILDCARD:
            weight += 1
        elif isinstance(rule_token, int) or isinstance(actual_token, int):
            if rule_token != actual_token or type(rule_token) is not type(actual_token):
                return 0
            weight += 2
        elif rule_token == actual_token:
            weight += 2
        else:
            return 0
    return weight


@dataclass(frozen=True)
class Rule:
    """A single matching rule."""

    kind: str
    regex: Optional[str] = None
    value: Optional[str] = None
    min: Optional[int] = None
    max: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: Optional[str] = None) -> 'Rule':
        """
        Build a rule from its contract form.

        Accepts {"match": "type"}, {"match": "type", "min": 1},
        {"match": "regex", "regex": "\\d+"}, {"regex": "\\d+"},
        {"match": "include", "value": "foo"} and {"min": 0, "max": 3}.

        Raises:
            ContractParseError: For unknown kinds or missing arguments
        """
        if not isinstance(data, dict):
            raise ContractParseError("matching rule must be an object", path)

        kind = data.get('match')
        if kind is None:
            if 'regex' in data:
                kind = 'regex'
            elif 'min' in data or 'max' in data:
                kind = 'minmax'
            else:
                raise ContractParseError("matching rule has no 'match' type", path)

        if kind == 'type' and ('min' in data or 'max' in data):
            kind = 'minmax'
        elif kind in ('min', 'max'):
            kind = 'minmax'

        if kind not in RULE_KINDS:
            raise ContractParseError(f"unsupported matching rule '{kind}'", path)

        if kind == 'regex':
            pattern = data.get('regex')
            if not isinstance(pattern, str):
                raise ContractParseError("regex rule needs a 'regex' string", path)
            try:
                re.compile(pattern)
            except re.error as e:
                raise ContractParseError(f"invalid regex '{pattern}': {e}", path)
            return cls(kind='regex', regex=pattern)

        if kind == 'include':
            value = data.get('value')
            if value is None:
                raise ContractParseError("include rule needs a 'value'", path)
            return cls(kind='include', value=str(value))

        if kind == 'minmax':
            minimum = data.get('min')
            maximum = data.get('max')
            for name, bound in (('min', minimum), ('max', maximum)):
                if bound is not None and (isinstance(bound, bool) or not isinstance(bound, int) or bound < 0):
                    raise ContractParseError(f"'{name}' must be a non-negative integer", path)
            if minimum is not None and maximum is not None and minimum > maximum:
                raise ContractParseError(f"min {minimum} is greater than max {maximum}", path)
            return cls(kind='minmax', min=minimum, max=maximum)

        return cls(kind=kind)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the contract form."""
        if self.kind == 'regex':
            return {'match': 'regex', 'regex': self.regex}
        if self.kind == 'include':
            return {'match': 'include', 'value': self.value}
        if self.kind == 'minmax':
            data: Dict[str, Any] = {'match': 'type'}
            if self.min is not None:
                data['min'] = self.min
            if self.max is not None:
                data['max'] = self.max
            return data
        return {'match': self.kind}

    def check(self, expected: Any, actual: Any) -> Optional[str]:
        """
        Apply the rule to a single value.

        Returns:
            None when the value satisfies the rule, otherwise a description
        """
        if self.kind == 'equality':
            if not json_equal(expected, actual):
                return f"Expected {describe(actual)} to be equal to {describe(expected)}"
            return None

        if self.kind in ('type', 'minmax'):
            if json_type(expected) != json_type(actual):
                return (
                    f"Expected {describe(actual)} ({json_type(actual)}) to be the same type "
                    f"as {describe(expected)} ({json_type(expected)})"
                )
            if self.kind == 'minmax' and isinstance(actual, list):
                return self.check_cardinality(len(actual))
            return None

        if isinstance(actual, (dict, list)) or actual is None:
            return f"Expected {describe(actual)} to be a value matching {self._requirement()}"

        text = scalar_text(actual)
        if self.kind == 'regex':
            if re.fullmatch(self.regex, text) is None:
                return f"Expected {describe(actual)} to match '{self.regex}'"
            return None

        if self.kind == 'include':
            if self.value not in text:
                return f"Expected {describe(actual)} to include '{self.value}'"
            return None

        return None

    def check_cardinality(self, size: int) -> Optional[str]:
        """Check an array length against min/max, if this rule has bounds."""
        if self.min is not None and size < self.min:
            return f"Expected an array with at least {self.min} element(s) but received {size}"
        if self.max is not None and size > self.max:
            return f"Expected an array with at most {self.max} element(s) but received {size}"
        return None

    def _requirement(self) -> str:
        if self.kind == 'regex':
            return f"regex '{self.regex}'"
        return f"include '{self.value}'"


@dataclass
class RuleSet:
    """All rules registered at one path, combined with AND or OR."""

    rules: List[Rule] = field(default_factory=list)
    combine: str = 'AND'

    @classmethod
    def from_json(cls, data: Any, path: Optional[str] = None) -> 'RuleSet':
        """
        Parse either a single rule object or {"matchers": [...], "combine": ...}.
        """
        if isinstance(data, dict) and 'matchers' in data:
            matchers = data['matchers']
            if not isinstance(matchers, list):
                raise ContractParseError("'matchers' must be an array", path)
            combine = str(data.get('combine', 'AND')).upper()
            if combine not in ('AND', 'OR'):
                raise ContractParseError(f"unknown combine mode '{combine}'", path)
            rules = [Rule.from_dict(m, f"{path}.matchers[{i}]" if path else None)
                     for i, m in enumerate(matchers)]
            return cls(rules=rules, combine=combine)
        return cls(rules=[Rule.from_dict(data, path)])

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the categorised contract form."""
        return {'matchers': [r.to_dict() for r in self.rules], 'combine': self.combine}

    @property
    def is_type_like(self) -> bool:
        """
        Type and minmax rules relax structure: objects may carry extra keys
        and arrays are not held to the expected length.
        """
        return any(rule.kind in ('type', 'minmax') for rule in self.rules)

    def check(self, expected: Any, actual: Any) -> List[str]:
        """
        Apply every rule to a value.

        Returns:
            Failure descriptions; empty when the value satisfies the set
        """
        failures = []
        for rule in self.rules:
            failure = rule.check(expected, actual)
            if failure is None and self.combine == 'OR':
                return []
            if failure is not None:
                failures.append(failure)
        return failures

    def check_cardinality(self, size: int) -> List[str]:
        """Check an array length against every bounded rule."""
        failures = []
        for rule in self.rules:
            failure = rule.check_cardinality(size)
            if failure is None and self.combine == 'OR' and rule.kind == 'minmax':
                return []
            if failure is not None:
                failures.append(failure)
        return failures


class MatchingRules:
    """
    Rules for one request or response, grouped by category.

    Example:
        rules = MatchingRules.from_json({
            "$.path": {"match": "regex", "regex": "/product/\\\\d+"},
            "$.body.items": {"min": 1, "match": "type"},
        })
        rules.for_path()
        rules.select_body(['$', 'items', 0])
    """

    def __init__(self, rules: Optional[Dict[str, Dict[str, RuleSet]]] = None):
        self.rules: Dict[str, Dict[str, RuleSet]] = {c: {} for c in CATEGORIES}
        for category, entries in (rules or {}).items():
            self.rules.setdefault(category, {}).update(entries)
        self._body_index: List[Tuple[List[PathToken], RuleSet]] = []
        self._build_index()

    def _build_index(self):
        """Pre-tokenise body rule paths; unparseable paths never apply."""
        self._body_index = []
        for path, rule_set in self.rules['body'].items():
            try:
                tokens = parse_path(path)
            except ValueError:
                continue
            self._body_index.append((tokens, rule_set))

    @classmethod
    def from_json(cls, data: Any, path: str = 'matchingRules') -> 'MatchingRules':
        """
        Parse a matchingRules object in either the flat or categorised form.

        Raises:
            ContractParseError: If the document has the wrong shape
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ContractParseError("matching rules must be an object", path)

        rules: Dict[str, Dict[str, RuleSet]] = {c: {} for c in CATEGORIES}
        for key, value in data.items():
            entry_path = f"{path}['{key}']"
            if key.startswith('$'):
                category, sub_key = cls._split_flat_key(key, entry_path)
                rules.setdefault(category, {})[sub_key] = RuleSet.from_json(value, entry_path)
            elif key in ('path', 'status'):
                rules[key][''] = RuleSet.from_json(value, entry_path)
            elif key in ('query', 'header', 'headers', 'body'):
                if not isinstance(value, dict):
                    raise ContractParseError("rule category must be an object", entry_path)
                category = 'header' if key == 'headers' else key
                for sub_key, rule_value in value.items():
                    sub_path = f"{entry_path}['{sub_key}']"
                    if category == 'header':
                        sub_key = sub_key.lower()
                    elif category == 'body' and not sub_key.startswith('$'):
                        sub_key = f'$.{sub_key}'
                    rules[category][sub_key] = RuleSet.from_json(rule_value, sub_path)
            else:
                raise ContractParseError(f"unknown matching rule category '{key}'", entry_path)
        return cls(rules)

    @staticmethod
    def _split_flat_key(key: str, entry_path: str) -> Tuple[str, str]:
        """Map a flat key like "$.headers.Accept" to (category, key)."""
        try:
            tokens = parse_path(key)
        except ValueError as e:
            raise ContractParseError(str(e), entry_path)

        if len(tokens) < 2:
            return 'body', '$'

        head = tokens[1]
        rest = tokens[2:]
        if head == 'path' and not rest:
            return 'path', ''
        if head == 'status' and not rest:
            return 'status', ''
        if head == 'query' and len(rest) == 1 and isinstance(rest[0], str):
            return 'query', rest[0]
        if head in ('headers', 'header') and len(rest) == 1 and isinstance(rest[0], str):
            return 'header', rest[0].lower()
        if head == 'body':
            text = key.strip()
            if text.startswith('$.body'):
                return 'body', '$' + text[len('$.body'):]
            return 'body', format_path(['$'] + rest)
        raise ContractParseError(f"cannot place matching rule path '{key}'", entry_path)

    def is_empty(self) -> bool:
        return not any(self.rules.values())

    def for_path(self) -> Optional[RuleSet]:
        return self.rules['path'].get('')

    def for_status(self) -> Optional[RuleSet]:
        return self.rules['status'].get('')

    def for_query(self, key: str) -> Optional[RuleSet]:
        return self.rules['query'].get(key)

    def for_header(self, name: str) -> Optional[RuleSet]:
        return self.rules['header'].get(name.lower())

    def body_paths(self) -> List[str]:
        return list(self.rules['body'].keys())

    def select_body(self, tokens: Sequence[PathToken]) -> Optional[RuleSet]:
        """
        Find the rule set governing a body path.

        The highest weight wins; equal weights prefer the longer rule path,
        then the rule declared first.
        """
        return self._best_body_rule(tokens)[0]

    def select_body_direct(self, tokens: Sequence[PathToken]) -> Optional[RuleSet]:
        """
        Like select_body(), but only when the winning rule names this exact
        path rather than one of its ancestors.

        Array cardinality (min/max) is only enforced by direct rules.
        """
        rule_set, depth = self._best_body_rule(tokens)
        if rule_set is None or depth != len(tokens):
            return None
        return rule_set

    def _best_body_rule(self, tokens: Sequence[PathToken]) -> Tuple[Optional[RuleSet], int]:
        best: Optional[RuleSet] = None
        best_key = (0, 0)
        for rule_tokens, rule_set in self._body_index:
            weight = path_weight(rule_tokens, tokens)
            if weight == 0:
                continue
            key = (weight, len(rule_tokens))
            if key > best_key:
                best_key = key
                best = rule_set
        return best, best_key[1]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the categorised (v3) contract form."""
        data: Dict[str, Any] = {}
        for category, entries in self.rules.items():
            if not entries:
                continue
            if category in ('path', 'status'):
                data[category] = entries[''].to_dict()
            else:
                data[category] = {k: v.to_dict() for k, v in entries.items()}
        return data
