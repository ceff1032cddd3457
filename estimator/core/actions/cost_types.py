"""Keyword based cost type classification.

One rule set, applied in order, first match wins. Keywords match as
substrings of the lowercased description. "administrative" is checked
before the ``admin`` group so it lands in overhead.
"""

from typing import Optional

_OVERHEAD_FIRST = ("administrative",)

_KEYWORD_GROUPS = (
    ("admin", ("admin",)),
    ("equipment", ("equipment", "tool", "machine", "device")),
    ("labor", ("labor", "work", "service", "hour", "installation")),
    ("material", ("material", "supply", "part", "component")),
    ("overhead", ("overhead", "indirect", "administrative")),
)


def infer_cost_type(description: Optional[str]) -> str:
    """Classify a line item description into a cost type."""
    text = (description or "").lower()
    if not text:
        return "other"

    if any(keyword in text for keyword in _OVERHEAD_FIRST):
        return "overhead"

    for cost_type, keywords in _KEYWORD_GROUPS:
        if any(keyword in text for keyword in keywords):
            return cost_type

    return "other"
