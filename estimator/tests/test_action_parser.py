"""Tests for the action mini-language parser.

Tests cover:
- Value coercion (quoted strings, numbers, booleans, categorical keys)
- Attribute parsing with quotes, escapes and embedded commas
- Instruction classification (add, update, delete, unknown)
- Serialization that re-parses to the same map
- Typed mapping onto line item fields
"""

import pytest

from estimator.core.actions.parser import (
    OP_ADD,
    OP_DELETE,
    OP_UNKNOWN,
    OP_UPDATE,
    coerce_value,
    format_attributes,
    format_item_context,
    parse_attributes,
    parse_instruction,
    to_line_item_fields,
)


# ── Tests: coerce_value ─────────────────────────────────────────────────


class TestCoerceValue:
    """Raw token to typed value."""

    def test_integer(self):
        assert coerce_value("150") == 150
        assert isinstance(coerce_value("150"), int)

    def test_float(self):
        assert coerce_value("12.5") == 12.5

    def test_booleans_case_insensitive(self):
        assert coerce_value("true") is True
        assert coerce_value("FALSE") is False

    def test_quoted_string_keeps_content(self):
        assert coerce_value("'150'") == "150"
        assert coerce_value('"hello world"') == "hello world"

    def test_escaped_quote_inside_string(self):
        assert coerce_value(r"'O\'Brien'") == "O'Brien"

    def test_bare_word_is_string(self):
        assert coerce_value("sqft") == "sqft"

    def test_categorical_key_stays_string(self):
        assert coerce_value("true", key="status") == "true"
        assert coerce_value("10", key="cost_type") == "10"


# ── Tests: parse_attributes ─────────────────────────────────────────────


class TestParseAttributes:
    """key=value lists."""

    def test_id_prefix(self):
        attrs = parse_attributes("ID:42, quantity=3")
        assert attrs == {"id": 42, "quantity": 3}

    def test_comma_inside_quotes(self):
        attrs = parse_attributes("description='Concrete, 3000 psi', quantity=150")
        assert attrs["description"] == "Concrete, 3000 psi"
        assert attrs["quantity"] == 150

    def test_double_quotes_and_spaces(self):
        attrs = parse_attributes(' title = "Rebar" ,  unit_price = 0.85 ')
        assert attrs == {"title": "Rebar", "unit_price": 0.85}

    def test_key_without_value_skipped(self):
        attrs = parse_attributes("broken, quantity=2")
        assert attrs == {"quantity": 2}

    def test_empty_text(self):
        assert parse_attributes("") == {}


# ── Tests: parse_instruction ────────────────────────────────────────────


class TestParseInstruction:
    """Marker classification."""

    def test_add(self):
        action = parse_instruction("+ description='Drywall', quantity=20, unit_price=15")
        assert action.operation == OP_ADD
        assert action.item_id is None
        assert action.attributes["description"] == "Drywall"

    def test_update(self):
        action = parse_instruction("+ ID:7, quantity=30")
        assert action.operation == OP_UPDATE
        assert action.item_id == 7
        assert action.attributes == {"quantity": 30}

    def test_delete(self):
        action = parse_instruction("- ID:9")
        assert action.operation == OP_DELETE
        assert action.item_id == 9

    def test_non_numeric_id_is_unknown(self):
        assert parse_instruction("+ ID:abc, quantity=1").operation == OP_UNKNOWN

    def test_delete_without_id_is_unknown(self):
        assert parse_instruction("- quantity=1").operation == OP_UNKNOWN

    def test_garbage_is_unknown(self):
        assert parse_instruction("hello there").operation == OP_UNKNOWN
        assert parse_instruction("").operation == OP_UNKNOWN

    def test_add_ignores_stray_id(self):
        action = parse_instruction("+ description='x', id=5")
        assert action.operation == OP_ADD
        assert "id" not in action.attributes


# ── Tests: serialization ────────────────────────────────────────────────


class TestFormatAttributes:
    """Serialized attributes parse back to the same map."""

    @pytest.mark.parametrize("attrs", [
        {"id": 3, "description": "Tile, ceramic", "quantity": 12},
        {"title": "It's done", "done": True, "unit_price": 2.5},
        {"note": 'He said "hi"'},
    ])
    def test_reparse(self, attrs):
        assert parse_attributes(format_attributes(attrs)) == attrs

    @pytest.mark.parametrize("text", [
        "ID:42, description='Concrete, 3000 psi', quantity=150, unit_price=12",
        "description=\"O'Brien fittings\", unit_type=hour, done=true",
        "title='Rebar', unit_price=0.85, amount=1e3, quantity=-2",
        "note='a=b, c=d', cost_type=10, status=TRUE",
        "description=Gravel, amount=1e400",
    ])
    def test_parse_format_parse_is_stable(self, text):
        parsed = parse_attributes(text)
        assert parse_attributes(format_attributes(parsed)) == parsed

    def test_overflowing_number_stays_string(self):
        assert parse_attributes("amount=1e400") == {"amount": "1e400"}
        with pytest.raises(ValueError):
            to_line_item_fields({"amount": "1e400"})

    def test_item_context_line(self):
        line = format_item_context({
            "id": 4, "description": "Paint", "quantity": 2,
            "unit_price": 30, "amount": 60, "parent_item_id": 1,
        })
        assert line.startswith("ID:4, description='Paint'")
        assert line.endswith("parent_id=1")


# ── Tests: to_line_item_fields ──────────────────────────────────────────


class TestToLineItemFields:
    """Typed mapping."""

    def test_aliases(self):
        fields = to_line_item_fields({"qty": 2, "price": 9.5, "unitType": "hour", "parentId": 3})
        assert fields.quantity == 2
        assert fields.unit_price == 9.5
        assert fields.unit_type == "hour"
        assert fields.parent_item_id == 3

    def test_unknown_keys_go_to_extra(self):
        fields = to_line_item_fields({"supplier": "ACME", "quantity": 1})
        assert fields.extra == {"supplier": "ACME"}
        assert fields.to_changes() == {"quantity": 1}

    def test_numeric_string_accepted(self):
        assert to_line_item_fields({"unit_price": "1,250"}).unit_price == 1250

    def test_non_numeric_quantity_raises(self):
        with pytest.raises(ValueError):
            to_line_item_fields({"quantity": "lots"})
