"""
Content rewriting through hosted text services and field transform rules.
"""

from .text_service import (
    ChatCompletionClient, TextService, canonical_model_name, create_text_service,
    register_text_service, supported_models
)
from .response_cache import AiResponseCache
from .batch_rewriter import BatchFieldRewriter, build_batch_prompt, parse_batch_result
from .rules import (
    MappingRule, RegexRule, TextStyleRule, TransformContext, apply_rule, apply_rules,
    rule_matches, validate_transform
)

__all__ = [
    'AiResponseCache',
    'BatchFieldRewriter',
    'ChatCompletionClient',
    'MappingRule',
    'RegexRule',
    'TextService',
    'TextStyleRule',
    'TransformContext',
    'apply_rule',
    'apply_rules',
    'build_batch_prompt',
    'canonical_model_name',
    'create_text_service',
    'parse_batch_result',
    'register_text_service',
    'rule_matches',
    'supported_models',
    'validate_transform',
]
