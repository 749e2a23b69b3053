"""
Field transform rules applied to record values during theming and translation.

Three rule kinds exist: a value mapping, a regular expression substitution and a
text style rewrite through a text service. Rules select the fields they apply to
with glob patterns on the file path and field name; when several rules apply to a
field the one with the highest priority runs first and each rule sees the output
of the previous one.
"""

import logging
import re
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Dict, List, Optional, Sequence, Union

from ..exceptions import TextServiceError
from .text_service import TextService


logger = logging.getLogger(__name__)

_ID_FIELD = re.compile(r'.*(id|key|ref)$', re.IGNORECASE)
_NUMERIC_FIELD = re.compile(r'.*(level|attack|defense|hp|mp|damage|price|count|value|rate|percent).*', re.IGNORECASE)
_TEXT_FIELD = re.compile(r'.*(name|title|desc|description|text|comment|note|info).*', re.IGNORECASE)
_NUMERIC_VALUE = re.compile(r'^[0-9.\-+]+$')


@dataclass(frozen=True)
class MappingRule:
    """Replace whole values through a lookup table."""
    name: str
    mappings: Dict[str, str] = field(default_factory=dict, hash=False)
    field_pattern: Optional[str] = None
    file_pattern: Optional[str] = None
    case_sensitive: bool = False
    default_value: Optional[str] = None
    priority: int = 50
    description: str = ""


@dataclass(frozen=True)
class RegexRule:
    """Substitute a regular expression; ``replacement`` uses ``re.sub`` syntax."""
    name: str
    pattern: str
    replacement: str = ""
    field_pattern: Optional[str] = None
    file_pattern: Optional[str] = None
    flags: int = 0
    replace_all: bool = True
    priority: int = 75
    description: str = ""

    def __post_init__(self):
        try:
            re.compile(self.pattern, self.flags)
        except re.error as e:
            raise ValueError(f"Invalid pattern for rule {self.name}: {e}")


@dataclass(frozen=True)
class TextStyleRule:
    """Rewrite free text into a style with a text service."""
    name: str
    style: str
    prompt: str
    priority: int = 100

    @property
    def description(self) -> str:
        return f"Rewrite text in {self.style} style"


TransformRule = Union[MappingRule, RegexRule, TextStyleRule]


@dataclass
class TransformContext:
    """Where a value comes from and what can be used to transform it."""
    file_path: str
    field_name: str
    record_id: Optional[str] = None
    record: Dict[str, str] = field(default_factory=dict)
    text_service: Optional[TextService] = None


def _glob_matches(text: str, pattern: Optional[str], case_sensitive: bool = False) -> bool:
    if not pattern:
        return True
    if case_sensitive:
        return fnmatchcase(text, pattern)
    return fnmatchcase(text.lower(), pattern.lower())


def rule_matches(rule: TransformRule, file_path: str, field_name: str) -> bool:
    """Whether ``rule`` applies to ``field_name`` of ``file_path``."""
    if isinstance(rule, TextStyleRule):
        if _ID_FIELD.match(field_name) or _NUMERIC_FIELD.match(field_name):
            return False
        return bool(_TEXT_FIELD.match(field_name))

    case_sensitive = isinstance(rule, MappingRule) and rule.case_sensitive
    return (_glob_matches(file_path, rule.file_pattern, case_sensitive)
            and _glob_matches(field_name, rule.field_pattern, case_sensitive))


def apply_rule(rule: TransformRule, value: Optional[str], context: TransformContext) -> Optional[str]:
    """Transform one value; empty values pass through unchanged."""
    if not value:
        return value

    if isinstance(rule, MappingRule):
        lookup = {(k if rule.case_sensitive else k.lower()): v for k, v in rule.mappings.items()}
        key = value if rule.case_sensitive else value.lower()
        if key in lookup:
            return lookup[key]
        for source, target in lookup.items():
            if source in key or key in source:
                return target
        return rule.default_value if rule.default_value is not None else value

    if isinstance(rule, RegexRule):
        return re.sub(rule.pattern, rule.replacement, value, count=0 if rule.replace_all else 1, flags=rule.flags)

    if isinstance(rule, TextStyleRule):
        if _NUMERIC_VALUE.match(value) or context.text_service is None:
            return value
        lines = [rule.prompt, "", f"Original: {value}", f"Field: {context.field_name}"]
        if context.record_id is not None:
            lines.append(f"Record: {context.record_id}")
        lines.extend(["", "Reply with the rewritten text only."])
        try:
            rewritten = context.text_service.chat("\n".join(lines))
        except TextServiceError as e:
            logger.warning(f"Rule {rule.name} kept {context.field_name} unchanged: {e}")
            return value
        return rewritten.strip() if rewritten else value

    raise TypeError(f"Unsupported rule type: {type(rule).__name__}")


def validate_transform(rule: TransformRule, original: str, transformed: Optional[str]) -> bool:
    """Sanity check a rule's output before it replaces the original."""
    if transformed is None:
        return False
    if isinstance(rule, RegexRule):
        if transformed == original:
            return True
        return len(transformed) <= len(original) * 5
    if not transformed:
        return False
    if isinstance(rule, TextStyleRule):
        return len(original) * 0.3 <= len(transformed) <= len(original) * 3
    return True


def apply_rules(rules: Sequence[TransformRule], record: Dict[str, str], file_path: str,
                record_id: Optional[str] = None, text_service: Optional[TextService] = None) -> Dict[str, str]:
    """
    Run every matching rule over every field of ``record``.

    Returns:
        A new record; fields whose transform fails validation keep the previous value
    """
    ordered: List[TransformRule] = sorted(rules, key=lambda r: r.priority, reverse=True)
    result = dict(record)
    for field_name, original in record.items():
        value = original
        context = TransformContext(file_path, field_name, record_id, record, text_service)
        for rule in ordered:
            if not rule_matches(rule, file_path, field_name):
                continue
            transformed = apply_rule(rule, value, context)
            if value and validate_transform(rule, value, transformed):
                value = transformed
            elif value:
                logger.debug(f"Rule {rule.name} produced an invalid value for {field_name}, skipped")
        result[field_name] = value
    return result
