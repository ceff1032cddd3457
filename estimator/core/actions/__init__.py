"""
Action mini-language: parsing and application of LLM line item instructions.

Exports:
- parse_attributes / parse_instruction: decode one instruction
- MutationEngine, ActionSummary: apply a batch against the store
- infer_cost_type: the keyword cost classification
"""

from .parser import (
    LineItemFields,
    ParsedAction,
    format_attributes,
    format_item_context,
    parse_attributes,
    parse_instruction,
    to_line_item_fields,
)
from .engine import ActionSummary, MutationEngine
from .cost_types import infer_cost_type
from .range_normalizer import detect_change_type, normalize_actions

__all__ = [
    "LineItemFields",
    "ParsedAction",
    "format_attributes",
    "format_item_context",
    "parse_attributes",
    "parse_instruction",
    "to_line_item_fields",
    "ActionSummary",
    "MutationEngine",
    "infer_cost_type",
    "detect_change_type",
    "normalize_actions",
]
