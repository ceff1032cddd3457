"""Action mini-language parser.

Decodes one LLM-produced instruction such as::

    + ID:42, description='Concrete, 3000 psi', quantity=150, unit_price=12

into a typed attribute map. Values are a small tagged variant (str, int,
float, bool); ``to_line_item_fields`` is the only place that maps the
variant map onto typed line item columns.

The parser never raises. Malformed pairs are skipped and the caller
decides whether the remaining attributes are usable.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from ..constants import CATEGORICAL_KEYS

AttrValue = Union[str, int, float, bool]

QUOTE_CHARS = ("'", '"')

OP_ADD = "add"
OP_UPDATE = "update"
OP_DELETE = "delete"
OP_UNKNOWN = "unknown"

_ID_PREFIX_RE = re.compile(r"^ID:(\d+),?\s*")
_UPDATE_RE = re.compile(r"^\+\s*ID:")
_DELETE_RE = re.compile(r"^-\s*ID:")
_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")


@dataclass
class ParsedAction:
    """One decoded instruction: (operation, item id, attributes)."""

    operation: str
    item_id: Optional[int] = None
    attributes: Dict[str, AttrValue] = field(default_factory=dict)
    raw: str = ""


# ── Tokenizer ─────────────────────────────────────────────────────────


def _split_pairs(text: str):
    """Yield (key, raw_value) pairs from ``key=value, key=value`` text.

    Quoted spans keep their quote characters so coercion can tell a quoted
    string from a bare token. A backslash inside quotes protects the next
    character from ending the span.
    """
    key = []
    value = []
    in_key = True
    quote = None
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if in_key:
            if ch == "=":
                in_key = False
            elif ch == ",":
                # key without a value
                key = []
            else:
                key.append(ch)
            i += 1
            continue

        if quote:
            if ch == "\\" and i + 1 < n:
                value.append(ch)
                value.append(text[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
            value.append(ch)
        elif ch in QUOTE_CHARS and not "".join(value).strip():
            quote = ch
            value.append(ch)
        elif ch == ",":
            name = "".join(key).strip()
            if name:
                yield name, "".join(value)
            key, value, in_key = [], [], True
        else:
            value.append(ch)
        i += 1

    if not in_key:
        name = "".join(key).strip()
        if name:
            yield name, "".join(value)


def _unescape(text: str, quote: str) -> str:
    out = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] in (quote, "\\"):
            out.append(text[i + 1])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def coerce_value(raw: str, key: Optional[str] = None) -> AttrValue:
    """Convert a raw token into its typed value."""
    value = raw.strip()

    if len(value) >= 2 and value[0] in QUOTE_CHARS and value[-1] == value[0]:
        return _unescape(value[1:-1], value[0])

    if key in CATEGORICAL_KEYS:
        return value

    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False

    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        number = float(value)
        # out-of-range literals stay strings
        return number if math.isfinite(number) else value

    return value


def parse_attributes(text: str) -> Dict[str, AttrValue]:
    """Parse ``[ID:<n>,] key=value, ...`` into a typed attribute map.

    A leading ``ID:<digits>`` surfaces as integer ``id``.
    """
    attributes: Dict[str, AttrValue] = {}
    if not text:
        return attributes

    remainder = text.strip()
    match = _ID_PREFIX_RE.match(remainder)
    if match:
        attributes["id"] = int(match.group(1))
        remainder = remainder[match.end():]

    for key, raw in _split_pairs(remainder):
        attributes[key] = coerce_value(raw, key)

    return attributes


def parse_instruction(instruction: str) -> ParsedAction:
    """Classify an instruction by its marker and parse its attributes.

    ``+ ID:<n>, ...`` is an update, ``- ID:<n>`` a delete and a bare ``+``
    an add. Anything else is ``unknown``.
    """
    text = (instruction or "").strip()

    if _UPDATE_RE.match(text):
        attributes = parse_attributes(text[1:].strip())
        item_id = attributes.pop("id", None)
        if item_id is None:
            return ParsedAction(OP_UNKNOWN, raw=text)
        return ParsedAction(OP_UPDATE, item_id, attributes, raw=text)

    if _DELETE_RE.match(text):
        attributes = parse_attributes(text[1:].strip())
        item_id = attributes.pop("id", None)
        if item_id is None:
            return ParsedAction(OP_UNKNOWN, raw=text)
        return ParsedAction(OP_DELETE, item_id, {}, raw=text)

    if text.startswith("+"):
        attributes = parse_attributes(text[1:].strip())
        attributes.pop("id", None)
        return ParsedAction(OP_ADD, None, attributes, raw=text)

    return ParsedAction(OP_UNKNOWN, raw=text)


# ── Serialization ─────────────────────────────────────────────────────


def format_value(value: AttrValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)

    text = str(value)
    if "'" in text and '"' not in text:
        quote = '"'
    else:
        quote = "'"
    escaped = text.replace("\\", "\\\\").replace(quote, "\\" + quote)
    return f"{quote}{escaped}{quote}"


def format_attributes(attributes: Dict[str, AttrValue]) -> str:
    """Serialize an attribute map back into ``key=value`` form.

    Strings are always quoted so re-parsing gives the same map.
    """
    parts = []
    if isinstance(attributes.get("id"), int) and not isinstance(attributes.get("id"), bool):
        parts.append(f"ID:{attributes['id']}")
    for key, value in attributes.items():
        if key == "id" and parts:
            continue
        parts.append(f"{key}={format_value(value)}")
    return ", ".join(parts)


def format_item_context(item: Dict[str, Any]) -> str:
    """Render a persisted line item as a prompt context line."""
    line = (
        f"ID:{item.get('id')}, description={format_value(item.get('description') or '')}, "
        f"quantity={item.get('quantity')}, unit_price={item.get('unit_price')}, "
        f"amount={item.get('amount')}"
    )
    if item.get("parent_item_id"):
        line += f", parent_id={item['parent_item_id']}"
    return line


# ── Typed builder ─────────────────────────────────────────────────────

_FIELD_ALIASES = {
    "title": "title",
    "description": "description",
    "quantity": "quantity",
    "qty": "quantity",
    "unit_price": "unit_price",
    "unitPrice": "unit_price",
    "price": "unit_price",
    "amount": "amount",
    "unit_type": "unit_type",
    "unitType": "unit_type",
    "unit": "unit_type",
    "cost_type": "cost_type",
    "costType": "cost_type",
    "status": "status",
    "currency": "currency",
    "parent_id": "parent_item_id",
    "parentId": "parent_item_id",
    "parent_item_id": "parent_item_id",
    "parentItemId": "parent_item_id",
    "parent": "parent",
    "is_sub_item": "is_sub_item",
    "isSubItem": "is_sub_item",
}

_NUMERIC_FIELDS = ("quantity", "unit_price", "amount")
_STRING_FIELDS = ("title", "description", "unit_type", "cost_type", "status", "currency", "parent")


@dataclass
class LineItemFields:
    """Typed view of an action's attributes.

    Every field is optional; ``None`` means "not supplied". Keys that are
    not line item columns land in ``extra``.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    amount: Optional[float] = None
    unit_type: Optional[str] = None
    cost_type: Optional[str] = None
    status: Optional[str] = None
    currency: Optional[str] = None
    parent_item_id: Optional[int] = None
    parent: Optional[str] = None
    is_sub_item: Optional[bool] = None
    extra: Dict[str, AttrValue] = field(default_factory=dict)

    def to_changes(self) -> Dict[str, Any]:
        """Column values that were explicitly supplied."""
        columns = (
            "title", "description", "quantity", "unit_price", "amount",
            "unit_type", "cost_type", "status", "currency",
            "parent_item_id", "is_sub_item",
        )
        return {name: getattr(self, name) for name in columns if getattr(self, name) is not None}


def _as_number(key: str, value: AttrValue):
    if isinstance(value, bool):
        raise ValueError(f"invalid {key} '{value}'")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"invalid {key} '{value}'")
        return value
    try:
        number = float(str(value).replace(",", "").strip())
    except ValueError:
        raise ValueError(f"invalid {key} '{value}'")
    if not math.isfinite(number):
        raise ValueError(f"invalid {key} '{value}'")
    return int(number) if number.is_integer() and _INT_RE.match(str(value).strip()) else number


def _as_string(value: AttrValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_bool(value: AttrValue) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def to_line_item_fields(attributes: Dict[str, AttrValue]) -> LineItemFields:
    """Map a parsed attribute map onto ``LineItemFields``.

    Raises:
        ValueError: a numeric column carries a non-numeric value
    """
    fields = LineItemFields()
    for key, value in attributes.items():
        if key == "id":
            continue
        name = _FIELD_ALIASES.get(key)
        if name is None:
            fields.extra[key] = value
        elif name in _NUMERIC_FIELDS:
            setattr(fields, name, _as_number(key, value))
        elif name == "parent_item_id":
            fields.parent_item_id = int(_as_number(key, value))
        elif name == "is_sub_item":
            fields.is_sub_item = _as_bool(value)
        elif name in _STRING_FIELDS:
            setattr(fields, name, _as_string(value))
    return fields
