"""LLM response normalizer.

Turns raw model text into structured data. Two modes:

- markup: an ``<estimate>`` document carrying a project title, a currency
  and an ordered list of ``<action>`` instructions
- json: a JSON document, repaired with ``json_repair`` when the model
  emitted almost-JSON (trailing commas, unquoted keys, cut-off brackets)

Only genuinely optional fields get defaults; nothing else is invented.
"""

import html
import json
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, List, Union

from json_repair import repair_json

from ..constants import DEFAULT_CURRENCY, DEFAULT_PROJECT_TITLE
from ..exceptions import MissingEstimateDataError, ResponseParseError

logger = logging.getLogger(__name__)

MODE_MARKUP = "markup"
MODE_JSON = "json"
MODE_ACTIONS = "actions"

_XML_FENCE_RE = re.compile(r"```(?:xml)?\s*([\s\S]*?)```", re.IGNORECASE)
_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_ESTIMATE_SPAN_RE = re.compile(r"<estimate\b[^>]*>[\s\S]*?</estimate>", re.IGNORECASE)
_ACTION_RE = re.compile(r"<action>([^<]+)</action>")
_TAG_TEXT_RE = "<{tag}>([\\s\\S]*?)</{tag}>"


@dataclass
class EstimateMarkup:
    """Structured payload of a markup-mode response."""

    project_title: str = DEFAULT_PROJECT_TITLE
    currency: str = DEFAULT_CURRENCY
    instructions: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "projectTitle": self.project_title,
            "currency": self.currency,
            "instructions": list(self.instructions),
        }


def _strip_fence(text: str, pattern: re.Pattern) -> str:
    match = pattern.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return text.strip()


# ── Markup mode ───────────────────────────────────────────────────────


def _locate_estimate(raw: str) -> str:
    """Return the first ``<estimate>...</estimate>`` span.

    The fenced body is searched first, then the raw text.
    """
    stripped = _strip_fence(raw, _XML_FENCE_RE)
    match = _ESTIMATE_SPAN_RE.search(stripped) or _ESTIMATE_SPAN_RE.search(raw)
    if not match:
        raise MissingEstimateDataError("Missing estimate data in AI response")
    return match.group(0)


def _from_element(root: ET.Element) -> EstimateMarkup:
    title = (root.findtext("project_title") or "").strip()
    currency = (root.findtext("currency") or "").strip()

    # <actions><action/>...</actions>, a single <action>, or both
    instructions = []
    for element in root.iter("action"):
        text = "".join(element.itertext()).strip()
        if text:
            instructions.append(text)

    return EstimateMarkup(
        project_title=title or DEFAULT_PROJECT_TITLE,
        currency=currency or DEFAULT_CURRENCY,
        instructions=instructions,
    )


def _from_regex(span: str) -> EstimateMarkup:
    """Lenient scan for markup that is not well-formed XML (e.g. a bare ``&``)."""

    def tag_text(tag):
        match = re.search(_TAG_TEXT_RE.format(tag=tag), span)
        return html.unescape(match.group(1)).strip() if match else ""

    return EstimateMarkup(
        project_title=tag_text("project_title") or DEFAULT_PROJECT_TITLE,
        currency=tag_text("currency") or DEFAULT_CURRENCY,
        instructions=extract_actions(span),
    )


def parse_markup_response(text: str) -> EstimateMarkup:
    """Parse a markup-mode response.

    Raises:
        MissingEstimateDataError: no ``<estimate>`` container in the text
    """
    span = _locate_estimate(text or "")
    try:
        result = _from_element(ET.fromstring(span))
    except ET.ParseError as e:
        logger.warning(f"Estimate markup is not well-formed ({e}), using lenient scan")
        result = _from_regex(span)

    logger.debug(
        f"Parsed estimate markup: title={result.project_title!r} "
        f"currency={result.currency} actions={len(result.instructions)}"
    )
    return result


def extract_actions(text: str) -> List[str]:
    """Collect every ``<action>`` body in document order."""
    actions = []
    for match in _ACTION_RE.finditer(text or ""):
        body = html.unescape(match.group(1)).strip()
        if body:
            actions.append(body)
    return actions


# ── JSON mode ─────────────────────────────────────────────────────────


def parse_json_response(text: str) -> Any:
    """Parse a JSON-mode response, repairing it when needed.

    Raises:
        ResponseParseError: neither the raw nor the repaired text parses
    """
    candidate = _strip_fence(text or "", _JSON_FENCE_RE)

    try:
        return json.loads(candidate)
    except ValueError:
        logger.info("Direct JSON parse failed, attempting repair")

    try:
        repaired = repair_json(candidate)
        data = json.loads(repaired)
    except (ValueError, TypeError) as e:
        raise ResponseParseError("Failed to parse or repair JSON response", details=str(e))

    if not isinstance(data, (dict, list)):
        raise ResponseParseError("Failed to parse or repair JSON response")
    return data


def normalize_response(text: str, mode: str = MODE_MARKUP) -> Union[EstimateMarkup, Any]:
    """Dispatch to the parser for ``mode``.

    ``actions`` mode is the lenient range flow: a plain list of action
    bodies, with no container required.
    """
    if mode == MODE_JSON:
        return parse_json_response(text)
    if mode == MODE_ACTIONS:
        return extract_actions(text)
    return parse_markup_response(text)
