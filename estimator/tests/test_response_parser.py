"""Tests for the LLM response normalizer and partial field extraction.

Tests cover:
- Markup responses (fenced, unfenced, nested actions, malformed XML)
- Missing <estimate> container
- JSON responses with and without repair
- Mode dispatch
- Partial extraction thresholds and recognized fields
"""

import pytest

from estimator.core.exceptions import MissingEstimateDataError, ResponseParseError
from estimator.core.llm.partial import extract_partial_fields
from estimator.core.llm.response_parser import (
    MODE_ACTIONS,
    MODE_JSON,
    EstimateMarkup,
    extract_actions,
    normalize_response,
    parse_json_response,
    parse_markup_response,
)


# ── Fixtures ────────────────────────────────────────────────────────────


MARKUP = """Here is your estimate:

```xml
<estimate>
  <project_title>Bathroom refresh</project_title>
  <currency>EUR</currency>
  <actions>
    <action>+ description='Tile', quantity=12, unit_price=30</action>
    <action>+ description='Tiling labor', quantity=8, unit_price=45</action>
  </actions>
</estimate>
```
"""


# ── Tests: markup mode ──────────────────────────────────────────────────


class TestParseMarkup:
    """<estimate> documents."""

    def test_fenced_document(self):
        result = parse_markup_response(MARKUP)
        assert isinstance(result, EstimateMarkup)
        assert result.project_title == "Bathroom refresh"
        assert result.currency == "EUR"
        assert result.instructions == [
            "+ description='Tile', quantity=12, unit_price=30",
            "+ description='Tiling labor', quantity=8, unit_price=45",
        ]

    def test_unfenced_with_surrounding_prose(self):
        text = "Sure! <estimate><project_title>Deck</project_title><action>+ description='Boards'</action></estimate> Done."
        result = parse_markup_response(text)
        assert result.project_title == "Deck"
        assert result.instructions == ["+ description='Boards'"]

    def test_defaults_for_optional_fields(self):
        result = parse_markup_response("<estimate><actions></actions></estimate>")
        assert result.project_title == "Untitled Project"
        assert result.currency == "USD"
        assert result.instructions == []

    def test_malformed_xml_falls_back_to_scan(self):
        text = (
            "<estimate><project_title>Tom & Jerry house</project_title>"
            "<action>+ description='Nails & screws'</action></estimate>"
        )
        result = parse_markup_response(text)
        assert result.project_title == "Tom & Jerry house"
        assert result.instructions == ["+ description='Nails & screws'"]

    def test_entities_unescaped(self):
        text = "<estimate><action>+ description='A &amp; B'</action></estimate>"
        assert parse_markup_response(text).instructions == ["+ description='A & B'"]

    def test_missing_container_raises(self):
        with pytest.raises(MissingEstimateDataError):
            parse_markup_response("I cannot help with that.")

    def test_to_dict(self):
        assert parse_markup_response(MARKUP).to_dict()["projectTitle"] == "Bathroom refresh"


# ── Tests: JSON mode ────────────────────────────────────────────────────


class TestParseJson:
    """JSON documents and repair."""

    def test_plain_json(self):
        assert parse_json_response('{"title": "Deck", "total": 10}') == {"title": "Deck", "total": 10}

    def test_fenced_json(self):
        text = 'Result:\n```json\n{"lineItems": []}\n```'
        assert parse_json_response(text) == {"lineItems": []}

    def test_repairs_trailing_comma(self):
        assert parse_json_response('{"a": 1, "b": [1, 2,],}') == {"a": 1, "b": [1, 2]}

    def test_repairs_cut_off_document(self):
        data = parse_json_response('{"title": "Deck", "items": [{"name": "Boards"')
        assert data["title"] == "Deck"
        assert data["items"][0]["name"] == "Boards"

    def test_unrepairable_raises(self):
        with pytest.raises(ResponseParseError):
            parse_json_response("")


# ── Tests: dispatch ─────────────────────────────────────────────────────


class TestNormalizeResponse:
    """Mode selection."""

    def test_default_is_markup(self):
        assert isinstance(normalize_response(MARKUP), EstimateMarkup)

    def test_json_mode(self):
        assert normalize_response('{"x": 1}', MODE_JSON) == {"x": 1}

    def test_actions_mode_needs_no_container(self):
        text = "<action>+ ID:1, quantity=2</action>\n<action>- ID:2</action>"
        assert normalize_response(text, MODE_ACTIONS) == ["+ ID:1, quantity=2", "- ID:2"]

    def test_extract_actions_skips_empty(self):
        assert extract_actions("<action>  </action><action>- ID:3</action>") == ["- ID:3"]


# ── Tests: partial extraction ───────────────────────────────────────────


class TestPartialExtraction:
    """Advisory fields from an incomplete buffer."""

    def test_short_buffer_ignored(self):
        assert extract_partial_fields('{"title": "Deck"', min_length=300) is None

    def test_json_fields(self):
        text = (
            '{"title": "Garage build", "currency": "USD", "totalAmount": 1250.5, '
            '"lineItems": [{"description": "Slab", "amount": 900}, {"description": "Frame"'
        )
        fields = extract_partial_fields(text, min_length=10)
        assert fields.to_dict() == {
            "title": "Garage build",
            "totalAmount": 1250.5,
            "currency": "USD",
            "lineItemCount": 1,
        }

    def test_markup_fields(self):
        text = (
            "<estimate><project_title>Deck</project_title><currency>cad</currency>"
            "<actions><action>+ description='Boards'</action><action>+ descr"
        )
        fields = extract_partial_fields(text, min_length=10)
        assert fields.title == "Deck"
        assert fields.currency == "CAD"
        assert fields.line_item_count == 1

    def test_nothing_recognized(self):
        assert extract_partial_fields("x" * 50, min_length=10) is None
