"""
pactmock Body Matching

Structural comparison of request/response bodies.

JSON and XML documents are walked recursively with a single comparison
function; at every path the most specific matching rule (if any) decides how
the value is compared. Other content is compared byte for byte.
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ElementTree
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, TYPE_CHECKING

from .mismatch import Mismatch, BODY_MISMATCH, BODY_TYPE_MISMATCH
from .rules import MatchingRules, PathToken, describe, format_path, json_equal, json_type
from ..common.utils import base_content_type, content_kind, decode_body

if TYPE_CHECKING:
    from ..contract import OptionalBody


@dataclass
class DiffContext:
    """Settings shared by one body comparison."""

    rules: MatchingRules
    allow_unexpected_keys: bool = False


def compare_body(
    expected: OptionalBody,
    actual: OptionalBody,
    rules: Optional[MatchingRules] = None,
    allow_unexpected_keys: bool = False
) -> List[Mismatch]:
    """
    Compare an actual body with the expected one.

    Args:
        expected: Body from the contract
        actual: Body that was received
        rules: Matching rules of the request/response
        allow_unexpected_keys: Tolerate extra object keys everywhere

    Returns:
        List of mismatches, empty when the body matches
    """
    if expected.is_absent():
        return []

    if expected.is_empty():
        if actual.content:
            return [Mismatch(
                BODY_MISMATCH, '$', '', decode_body(actual.content),
                f"Expected an empty body but received '{decode_body(actual.content)}'"
            )]
        return []

    expected_text = decode_body(expected.content)
    if not actual.content:
        return [Mismatch(
            BODY_MISMATCH, '$', expected_text, None,
            f"Expected body '{expected_text}' but was missing"
        )]

    expected_type = expected.content_type or 'text/plain'
    kind = content_kind(expected_type)
    if actual.content_type:
        actual_kind = content_kind(actual.content_type)
        if actual_kind != kind or (
            kind == 'text' and base_content_type(actual.content_type) != base_content_type(expected_type)
        ):
            return [Mismatch(
                BODY_TYPE_MISMATCH, '$', base_content_type(expected_type),
                base_content_type(actual.content_type),
                f"Expected a body of '{base_content_type(expected_type)}' "
                f"but the actual content type was '{base_content_type(actual.content_type)}'"
            )]

    context = DiffContext(rules=rules or MatchingRules(), allow_unexpected_keys=allow_unexpected_keys)

    if kind == 'json':
        return compare_json_bodies(expected.content, actual.content, context)
    if kind == 'xml':
        return compare_xml_bodies(expected.content, actual.content, context)
    return compare_text_bodies(expected.content, actual.content, context)


def compare_json_bodies(expected: bytes, actual: bytes, context: DiffContext) -> List[Mismatch]:
    """Parse both bodies as JSON and compare them structurally."""
    try:
        expected_value = json.loads(expected)
    except ValueError:
        return compare_text_bodies(expected, actual, context)

    try:
        actual_value = json.loads(actual)
    except ValueError as e:
        return [Mismatch(
            BODY_MISMATCH, '$', expected_value, decode_body(actual),
            f"Failed to parse the actual body as JSON: {e}"
        )]

    return compare_json(expected_value, actual_value, context)


def compare_json(expected: Any, actual: Any, context: DiffContext) -> List[Mismatch]:
    """Compare two decoded JSON documents."""
    mismatches: List[Mismatch] = []
    _compare_value(['$'], expected, actual, context, mismatches)
    return mismatches


def _compare_value(
    tokens: List[PathToken],
    expected: Any,
    actual: Any,
    context: DiffContext,
    out: List[Mismatch]
):
    rule_set = context.rules.select_body(tokens)

    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            out.append(_type_mismatch(tokens, expected, actual))
            return
        _compare_objects(tokens, expected, actual, rule_set, context, out)
    elif isinstance(expected, list):
        if not isinstance(actual, list):
            out.append(_type_mismatch(tokens, expected, actual))
            return
        _compare_arrays(tokens, expected, actual, rule_set, context, out)
    elif rule_set is not None:
        for failure in rule_set.check(expected, actual):
            out.append(Mismatch(BODY_MISMATCH, format_path(tokens), expected, actual, failure))
    elif not json_equal(expected, actual):
        out.append(Mismatch(
            BODY_MISMATCH, format_path(tokens), expected, actual,
            f"Expected {describe(expected)} but received {describe(actual)}"
        ))


def _compare_objects(tokens, expected, actual, rule_set, context, out):
    allow_extra = context.allow_unexpected_keys or (rule_set is not None and rule_set.is_type_like)

    for key, expected_value in expected.items():
        child = tokens + [key]
        if key not in actual:
            out.append(Mismatch(
                BODY_MISMATCH, format_path(child), expected_value, None,
                f"Expected key '{key}' but was missing"
            ))
            continue
        _compare_value(child, expected_value, actual[key], context, out)

    if not allow_extra:
        for key in actual:
            if key not in expected:
                out.append(Mismatch(
                    BODY_MISMATCH, format_path(tokens + [key]), None, actual[key],
                    f"Did not expect key '{key}' with value {describe(actual[key])}"
                ))


def _compare_arrays(tokens, expected, actual, rule_set, context, out):
    path = format_path(tokens)

    if rule_set is not None and rule_set.is_type_like:
        if context.rules.select_body_direct(tokens) is rule_set:
            for failure in rule_set.check_cardinality(len(actual)):
                out.append(Mismatch(BODY_MISMATCH, path, expected, actual, failure))
        if not expected:
            return
        for index, item in enumerate(actual):
            template = expected[index] if index < len(expected) else expected[0]
            _compare_value(tokens + [index], template, item, context, out)
        return

    if len(expected) != len(actual):
        out.append(Mismatch(
            BODY_MISMATCH, path, expected, actual,
            f"Expected an array with {len(expected)} element(s) but received {len(actual)} element(s)"
        ))

    for index, (expected_item, actual_item) in enumerate(zip(expected, actual)):
        _compare_value(tokens + [index], expected_item, actual_item, context, out)


def _type_mismatch(tokens: Sequence[PathToken], expected: Any, actual: Any) -> Mismatch:
    return Mismatch(
        BODY_MISMATCH, format_path(tokens), expected, actual,
        f"Type mismatch: expected {json_type(expected)} {describe(expected)} "
        f"but received {json_type(actual)} {describe(actual)}"
    )


def compare_xml_bodies(expected: bytes, actual: bytes, context: DiffContext) -> List[Mismatch]:
    """Parse both bodies as XML and compare the element trees."""
    try:
        expected_root = ElementTree.fromstring(expected)
    except ElementTree.ParseError:
        return compare_text_bodies(expected, actual, context)

    try:
        actual_root = ElementTree.fromstring(actual)
    except ElementTree.ParseError as e:
        return [Mismatch(
            BODY_MISMATCH, '$', decode_body(expected), decode_body(actual),
            f"Failed to parse the actual body as XML: {e}"
        )]

    mismatches: List[Mismatch] = []
    if expected_root.tag != actual_root.tag:
        mismatches.append(Mismatch(
            BODY_MISMATCH, '$', expected_root.tag, actual_root.tag,
            f"Expected root element <{expected_root.tag}> but received <{actual_root.tag}>"
        ))
        return mismatches

    _compare_element(['$', expected_root.tag], expected_root, actual_root, context, mismatches)
    return mismatches


def _compare_element(tokens, expected, actual, context, out):
    rule_set = context.rules.select_body(tokens)
    allow_extra = context.allow_unexpected_keys or (rule_set is not None and rule_set.is_type_like)
    path = format_path(tokens)

    for name, value in expected.attrib.items():
        attr_tokens = tokens + [f'@{name}']
        if name not in actual.attrib:
            out.append(Mismatch(
                BODY_MISMATCH, format_path(attr_tokens), value, None,
                f"Expected attribute '{name}'='{value}' but was missing"
            ))
            continue
        _compare_text_value(attr_tokens, value, actual.attrib[name], context, out)

    if not allow_extra:
        for name, value in actual.attrib.items():
            if name not in expected.attrib:
                out.append(Mismatch(
                    BODY_MISMATCH, format_path(tokens + [f'@{name}']), None, value,
                    f"Did not expect attribute '{name}'='{value}'"
                ))

    expected_text = (expected.text or '').strip()
    actual_text = (actual.text or '').strip()
    if expected_text or actual_text:
        _compare_text_value(tokens + ['#text'], expected_text, actual_text, context, out)

    expected_groups = _group_children(expected)
    actual_groups = _group_children(actual)

    for tag, expected_children in expected_groups.items():
        group_tokens = tokens + [tag]
        actual_children = actual_groups.get(tag, [])
        group_rules = context.rules.select_body(group_tokens)

        if group_rules is not None and group_rules.is_type_like:
            direct = context.rules.select_body_direct(group_tokens) is group_rules
            cardinality = group_rules.check_cardinality(len(actual_children)) if direct else []
            for failure in cardinality:
                out.append(Mismatch(BODY_MISMATCH, format_path(group_tokens),
                                    len(expected_children), len(actual_children), failure))
            minimum_is_zero = direct and any(rule.min == 0 for rule in group_rules.rules)
            if not actual_children and not cardinality and not minimum_is_zero:
                out.append(_missing_child(group_tokens, tag))
            for index, child in enumerate(actual_children):
                template = expected_children[index] if index < len(expected_children) else expected_children[0]
                _compare_element(group_tokens + [index], template, child, context, out)
            continue

        if not actual_children:
            out.append(_missing_child(group_tokens, tag))
            continue

        if len(expected_children) != len(actual_children):
            out.append(Mismatch(
                BODY_MISMATCH, format_path(group_tokens), len(expected_children), len(actual_children),
                f"Expected {len(expected_children)} <{tag}> element(s) but received {len(actual_children)}"
            ))
        for index, (expected_child, actual_child) in enumerate(zip(expected_children, actual_children)):
            _compare_element(group_tokens + [index], expected_child, actual_child, context, out)

    if not allow_extra:
        for tag, children in actual_groups.items():
            if tag not in expected_groups:
                out.append(Mismatch(
                    BODY_MISMATCH, path, None, tag,
                    f"Did not expect {len(children)} <{tag}> child element(s)"
                ))


def _compare_text_value(tokens, expected: str, actual: str, context: DiffContext, out: List[Mismatch]):
    rule_set = context.rules.select_body(tokens)
    if rule_set is not None:
        for failure in rule_set.check(expected, actual):
            out.append(Mismatch(BODY_MISMATCH, format_path(tokens), expected, actual, failure))
    elif expected != actual:
        out.append(Mismatch(
            BODY_MISMATCH, format_path(tokens), expected, actual,
            f"Expected '{expected}' but received '{actual}'"
        ))


def _group_children(element) -> 'OrderedDict[str, list]':
    groups: 'OrderedDict[str, list]' = OrderedDict()
    for child in element:
        if not isinstance(child.tag, str):
            continue  # comments and processing instructions
        groups.setdefault(child.tag, []).append(child)
    return groups


def _missing_child(tokens, tag: str) -> Mismatch:
    return Mismatch(
        BODY_MISMATCH, format_path(tokens), tag, None,
        f"Expected a <{tag}> element but was missing"
    )


def compare_text_bodies(expected: bytes, actual: bytes, context: DiffContext) -> List[Mismatch]:
    """Byte-exact comparison, unless a whole-body rule is registered at '$'."""
    rule_set = context.rules.select_body(['$'])
    if rule_set is not None:
        expected_text = decode_body(expected)
        actual_text = decode_body(actual)
        return [
            Mismatch(BODY_MISMATCH, '$', expected_text, actual_text, failure)
            for failure in rule_set.check(expected_text, actual_text)
        ]

    if expected != actual:
        expected_text = decode_body(expected)
        actual_text = decode_body(actual)
        return [Mismatch(
            BODY_MISMATCH, '$', expected_text, actual_text,
            f"Expected body '{expected_text}' but received '{actual_text}'"
        )]
    return []
