"""Best-effort field extraction from an incomplete LLM buffer.

The buffer is by definition not valid JSON (or XML) yet, so this is plain
pattern matching over a snapshot. It is lossy and advisory: any failure
yields ``None``.
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Optional

from ..constants import PARTIAL_MIN_LENGTH

logger = logging.getLogger(__name__)

_TITLE_RE = re.compile(r"(?:title)[\"'\s:>]+([^\"',\n<]+)", re.IGNORECASE)
_TOTAL_RE = re.compile(r"totalAmount[\"'\s:]+(\d+(?:\.\d+)?)", re.IGNORECASE)
_CURRENCY_RE = re.compile(r"currency[\"'\s:>]+([A-Z]{3})\b", re.IGNORECASE)
_LINE_ITEMS_RE = re.compile(r"lineItems[\"'\s:]+\[", re.IGNORECASE)
_ITEM_FRAGMENT_RE = re.compile(r"\{[^{}]*description[^{}]*\}", re.IGNORECASE)
_ACTION_RE = re.compile(r"<action>[^<]+</action>")


@dataclass
class PartialFields:
    """Fields recognized so far; ``None`` means not seen yet."""

    title: Optional[str] = None
    total_amount: Optional[float] = None
    currency: Optional[str] = None
    line_item_count: Optional[int] = None

    def to_dict(self) -> dict:
        mapping = {
            "title": "title",
            "total_amount": "totalAmount",
            "currency": "currency",
            "line_item_count": "lineItemCount",
        }
        return {mapping[k]: v for k, v in asdict(self).items() if v is not None}


def _to_number(text: str):
    number = float(text)
    return int(number) if number.is_integer() else number


def extract_partial_fields(text: str, min_length: int = PARTIAL_MIN_LENGTH) -> Optional[PartialFields]:
    """Scan ``text`` for early structured signals.

    Returns ``None`` when the buffer is too short, nothing is recognized,
    or the scan fails.
    """
    if not text or len(text) <= min_length:
        return None

    try:
        fields = PartialFields()

        match = _TITLE_RE.search(text)
        if match and match.group(1).strip():
            fields.title = match.group(1).strip()

        match = _TOTAL_RE.search(text)
        if match:
            fields.total_amount = _to_number(match.group(1))

        match = _CURRENCY_RE.search(text)
        if match:
            fields.currency = match.group(1).upper()

        if _LINE_ITEMS_RE.search(text):
            fields.line_item_count = len(_ITEM_FRAGMENT_RE.findall(text))
        else:
            actions = _ACTION_RE.findall(text)
            if actions:
                fields.line_item_count = len(actions)

        if not fields.to_dict():
            return None
        return fields
    except Exception as e:
        logger.debug(f"Partial extraction skipped: {e}")
        return None
