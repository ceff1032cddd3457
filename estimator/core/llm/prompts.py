"""Prompt templates for estimate generation."""

import json
from typing import Any, Dict, List, Optional

from ..actions.parser import format_value, format_item_context
from ..constants import MAX_CONTEXT_ITEMS

DEFAULT_RESPONSE_STRUCTURE = {
    "estimate": {
        "title": "Title of the estimate",
        "totalAmount": 0,
        "currency": "USD",
        "lineItems": [
            {
                "description": "Description of item",
                "quantity": 0,
                "unitPrice": 0,
                "amount": 0,
                "subItems": [
                    {
                        "description": "Description of sub-item",
                        "quantity": 0,
                        "unitPrice": 0,
                        "amount": 0,
                    }
                ],
            }
        ],
    }
}

BROWSING_INSTRUCTIONS = """
        You may use the web browsing tool when the user asks you to check prices online.
        If the request contains a link, open it. If the user asks you to search a site,
        type the query and press the search button (or Enter if there is none).
"""

ESTIMATE_MARKUP_TEMPLATE = """
    You are a professional construction estimator. Based on the following construction project description, create a detailed line item estimate with proper construction trades and categories.

    Construction Project: {project}

    Generate a comprehensive construction estimate that includes relevant items based on the project description.

    IMPORTANT: Your response MUST be in XML format with the following structure:
    <estimate>
      <project_title>Brief descriptive title of the construction project</project_title>
      <currency>USD</currency>
      <actions>
        <action>+ description='Site Preparation and Excavation', quantity=1, unit_price=3500, amount=3500, cost_type='labor', unit_type='package'</action>
        <action>+ description='Concrete Foundation', quantity=150, unit_price=12, amount=1800, cost_type='material', unit_type='unit'</action>
        <action>+ description='Foundation Labor', quantity=16, unit_price=75, amount=1200, cost_type='labor', unit_type='hour'</action>
      </actions>
    </estimate>

    Each <action> tag must start with a '+' character followed by a space, then a comma-separated list of attributes.
    Required attributes: description, quantity, unit_price, amount, cost_type, unit_type
    Valid cost_type values: material, labor, equipment, overhead
    Valid unit_type values: hour, day, unit, package
    Use parent='<description of an earlier item>' to nest an item under one listed before it.

    Do not include any other text, explanations, or formatting outside of this XML structure.
"""

ADDITIONAL_MARKUP_TEMPLATE = """
    You are an estimator agent. You have previously created an estimate for a project titled "{title}".
    Now you need to modify the estimate based on the following additional request.

    Current line items (showing first {limit}):
    {items}{more}

    Additional request from the user:
    {prompt}

    IMPORTANT: Your response MUST be in XML format with the following structure:
    <estimate>
      <actions>
        <action>+ description='New item description', quantity=1, unit_price=100, amount=100</action>
        <action>+ ID:123, description='Updated item description', quantity=2, unit_price=150, amount=300</action>
        <action>- ID:456</action>
      </actions>
    </estimate>

    Each <action> tag must contain one of the following:
    1. For adding new items: Start with '+' followed by attributes (description, quantity, unit_price, amount)
    2. For updating existing items: Start with '+' followed by the item ID and the attributes to update
    3. For deleting items: Start with '-' followed by the item ID
{browsing}
    Do not include any other text, explanations, or formatting outside of this XML structure.
"""

RANGE_INSTRUCTIONS = {
    "cost_type": (
        "Please ONLY update the cost_type field and do not change any other fields. "
        "Use the format: <estimate><actions><action>+ ID:[id], cost_type=[new_cost_type]</action></actions></estimate>"
    ),
    "unit_type": (
        "Please ONLY update the unit_type field and do not change any other fields. "
        "Valid unit types are: hour, day, unit, package. "
        "Use the format: <estimate><actions><action>+ ID:[id], unit_type=[new_unit_type]</action></actions></estimate>"
    ),
    "general": (
        "Please provide actions to modify these items. For unit_type, valid values are: "
        "hour, day, unit, package. "
        "Use the format: <estimate><actions><action>+ ID:[id], [field]=[value]</action></actions></estimate>"
    ),
}


def _describe_project(details: Dict[str, Any]) -> str:
    return (
        f"{details.get('title', '')}\n\n{details.get('description', '')}\n\n"
        f"Scope: {details.get('scope') or ''}\nTimeline: {details.get('timeline') or ''}"
    )


def build_estimate_prompt(
    project_details: Dict[str, Any],
    response_structure: Optional[Dict[str, Any]] = None,
    additional_requirements: Optional[Dict[str, Any]] = None,
) -> str:
    """Initial generation prompt.

    With a response structure the model is asked for JSON, otherwise for
    the ``<estimate>`` markup with actions.
    """
    if response_structure:
        return (
            "Generate a detailed project estimate based on the following requirements.\n\n"
            f"Project Details:\n{json.dumps(project_details, indent=2, default=str)}\n\n"
            f"Additional Requirements:\n{json.dumps(additional_requirements or {}, indent=2, default=str)}\n\n"
            "IMPORTANT: Format your response as valid JSON matching this exact structure:\n"
            f"{json.dumps(response_structure, indent=2)}\n\n"
            "Include nested line items where appropriate. "
            "Ensure all numeric values are actual numbers, not strings."
        )
    return ESTIMATE_MARKUP_TEMPLATE.format(project=_describe_project(project_details))


def build_additional_prompt(
    project: Dict[str, Any],
    existing_items: List[Dict[str, Any]],
    prompt: str,
    allow_web_browsing: bool = False,
    total_items: Optional[int] = None,
) -> str:
    """Prompt for modifying an existing estimate."""
    shown = existing_items[:MAX_CONTEXT_ITEMS]
    total = total_items if total_items is not None else len(existing_items)
    items = "\n    ".join(format_item_context(item) for item in shown) or "No existing items"
    more = f"\n    ... and {total - len(shown)} more items" if total > len(shown) else ""

    return ADDITIONAL_MARKUP_TEMPLATE.format(
        title=project.get("name") or "Untitled Project",
        limit=MAX_CONTEXT_ITEMS,
        items=items,
        more=more,
        prompt=prompt,
        browsing=BROWSING_INSTRUCTIONS if allow_web_browsing else "",
    )


def build_range_prompt(items: List[Dict[str, Any]], prompt: str, change_type: str) -> str:
    """Prompt for an AI change limited to a row range."""
    context = "\n".join(
        f"{format_item_context(item)}, "
        f"cost_type={format_value(item.get('cost_type') or 'material')}, "
        f"unit_type={format_value(item.get('unit_type') or 'unit')}"
        for item in items
    )
    instructions = RANGE_INSTRUCTIONS.get(change_type, RANGE_INSTRUCTIONS["general"])
    return f"For the following line items:\n{context}\n\nUser request: {prompt}\n\n{instructions}"
