"""
Estimate orchestration module.

Exports:
- EstimateService: buffered and streamed estimate workflows
- EstimateContext: the inputs of one LLM call
- derive_project_name: short project name from a prompt
"""

from .service import EstimateContext, EstimateService, derive_project_name, normalize_line_items
from .dedupe import find_duplicate, is_duplicate

__all__ = [
    "EstimateContext",
    "EstimateService",
    "derive_project_name",
    "normalize_line_items",
    "find_duplicate",
    "is_duplicate",
]
