"""
LLM module: provider client, prompts, response normalization and streaming.

Exports:
- LLMClient: generate / generate_stream over a LlamaIndex LLM
- parse_markup_response / parse_json_response / normalize_response
- extract_partial_fields: best-effort scan of an incomplete buffer
- StreamConsumer: provider stream -> typed events
"""

from .client import LLMClient, translate_provider_error
from .partial import PartialFields, extract_partial_fields
from .response_parser import (
    MODE_ACTIONS,
    MODE_JSON,
    MODE_MARKUP,
    EstimateMarkup,
    extract_actions,
    normalize_response,
    parse_json_response,
    parse_markup_response,
)
from .stream_consumer import StreamConsumer

__all__ = [
    "LLMClient",
    "translate_provider_error",
    "PartialFields",
    "extract_partial_fields",
    "MODE_ACTIONS",
    "MODE_JSON",
    "MODE_MARKUP",
    "EstimateMarkup",
    "extract_actions",
    "normalize_response",
    "parse_json_response",
    "parse_markup_response",
    "StreamConsumer",
]
