"""Normalization of AI-generated range updates.

A range request ("set the cost type of rows 3-8 to labor") narrows what
the model is allowed to touch. Update actions are re-parsed, cleaned and
re-serialized before they reach the mutation engine.
"""

import logging
from typing import List

from ..constants import DEFAULT_UNIT_TYPE, VALID_UNIT_TYPES
from .cost_types import infer_cost_type
from .parser import OP_UPDATE, format_attributes, parse_instruction

logger = logging.getLogger(__name__)

CHANGE_COST_TYPE = "cost_type"
CHANGE_UNIT_TYPE = "unit_type"
CHANGE_GENERAL = "general"

_CHANGE_VERBS = ("change", "set", "update")
_OTHER_FIELDS = ("description", "price", "quantity")


def detect_change_type(prompt: str) -> str:
    """Decide whether a range prompt only targets one categorical field."""
    text = (prompt or "").lower()
    narrow = any(v in text for v in _CHANGE_VERBS) and not any(f in text for f in _OTHER_FIELDS)

    if narrow and ("cost type" in text or "cost_type" in text):
        return CHANGE_COST_TYPE
    if narrow and ("unit type" in text or "unit_type" in text):
        return CHANGE_UNIT_TYPE
    return CHANGE_GENERAL


def _clean_unit_type(value) -> str:
    unit_type = str(value).strip().lower()
    if unit_type not in VALID_UNIT_TYPES:
        logger.info(f"Invalid unit_type '{value}', defaulting to '{DEFAULT_UNIT_TYPE}'")
        return DEFAULT_UNIT_TYPE
    return unit_type


def normalize_actions(actions: List[str], change_type: str = CHANGE_GENERAL) -> List[str]:
    """Clean update actions for a range change.

    Non-update actions pass through untouched.
    """
    normalized = []
    for action in actions:
        parsed = parse_instruction(action)
        if parsed.operation != OP_UPDATE:
            normalized.append(action)
            continue

        attributes = {}
        for key, value in parsed.attributes.items():
            if isinstance(value, str) and value.strip().lower() == "undefined":
                continue
            if key in ("amount", "unit_price", "quantity") and isinstance(value, (bool, str)):
                try:
                    value = float(str(value))
                except ValueError:
                    continue
            if key == "is_sub_item" and not isinstance(value, bool):
                value = str(value).lower() == "true"
            attributes[key] = value

        if change_type == CHANGE_COST_TYPE:
            attributes = {k: v for k, v in attributes.items() if k == "cost_type"}
        elif change_type == CHANGE_UNIT_TYPE:
            attributes = {k: v for k, v in attributes.items() if k == "unit_type"}

        if "unit_type" in attributes:
            attributes["unit_type"] = _clean_unit_type(attributes["unit_type"])

        if change_type == CHANGE_GENERAL and "description" in attributes and "cost_type" not in attributes:
            attributes["cost_type"] = infer_cost_type(str(attributes["description"]))

        body = format_attributes(attributes)
        normalized.append(f"+ ID:{parsed.item_id}, {body}" if body else f"+ ID:{parsed.item_id}")

    return normalized
