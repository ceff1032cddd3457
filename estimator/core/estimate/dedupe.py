"""Approximate duplicate detection for AI-suggested line items.

Two items are treated as the same when their titles match after
normalization and at least one of amount, unit price, quantity or cost type
also matches. This is a heuristic: different items with a shared title and
price collapse into one, and a re-priced item with a reworded title is kept
twice.
"""

import re
from typing import Any, Dict, Iterable, Optional

_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")

_MATCH_FIELDS = ("amount", "unit_price", "quantity", "cost_type")


def normalize_title(text: Optional[str]) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    if not text:
        return ""
    text = _PUNCT_RE.sub(" ", str(text).lower())
    return _SPACE_RE.sub(" ", text).strip()


def _same(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return False
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return abs(float(a) - float(b)) < 1e-9
    return str(a).strip().lower() == str(b).strip().lower()


def is_duplicate(candidate: Dict[str, Any], existing: Dict[str, Any]) -> bool:
    title = normalize_title(candidate.get("title") or candidate.get("description"))
    if not title:
        return False

    existing_titles = {
        normalize_title(existing.get("title")),
        normalize_title(existing.get("description")),
    }
    if title not in existing_titles:
        return False

    return any(_same(candidate.get(f), existing.get(f)) for f in _MATCH_FIELDS)


def find_duplicate(
    candidate: Dict[str, Any], existing_items: Iterable[Dict[str, Any]]
) -> Optional[Dict[str, Any]]:
    for item in existing_items:
        if is_duplicate(candidate, item):
            return item
    return None

