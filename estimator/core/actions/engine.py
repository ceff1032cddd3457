"""Line item mutation engine.

Applies an ordered batch of action instructions against a project's
line items. Each instruction is handled on its own: a failure is recorded
in the summary and the next instruction is still applied.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..constants import DEFAULT_CURRENCY, DEFAULT_ITEM_STATUS, DEFAULT_UNIT_TYPE
from .cost_types import infer_cost_type
from .parser import (
    OP_ADD,
    OP_DELETE,
    OP_UPDATE,
    LineItemFields,
    ParsedAction,
    parse_instruction,
    to_line_item_fields,
)

logger = logging.getLogger(__name__)


@dataclass
class ActionSummary:
    """Outcome of one batch."""

    items_added: int = 0
    items_updated: int = 0
    items_deleted: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return self.items_added + self.items_updated + self.items_deleted

    def merge(self, other: "ActionSummary") -> "ActionSummary":
        self.items_added += other.items_added
        self.items_updated += other.items_updated
        self.items_deleted += other.items_deleted
        self.errors.extend(other.errors)
        return self

    def to_dict(self) -> dict:
        return {
            "itemsAdded": self.items_added,
            "itemsUpdated": self.items_updated,
            "itemsDeleted": self.items_deleted,
            "errors": list(self.errors),
        }


class MutationEngine:
    """Interprets action instructions against the persistence store.

    Args:
        store: ProjectManager (or anything with the same item methods)
    """

    def __init__(self, store):
        self.store = store

    def apply(
        self,
        project_id: int,
        user_id: Optional[str],
        instructions: Iterable[str],
        currency: str = DEFAULT_CURRENCY,
    ) -> ActionSummary:
        """Apply instructions strictly in order and summarize the result."""
        summary = ActionSummary()

        for raw in instructions:
            instruction = (raw or "").strip()
            if not instruction:
                continue

            action = parse_instruction(instruction)
            if action.operation == OP_UPDATE:
                self._apply_update(project_id, action, summary)
            elif action.operation == OP_DELETE:
                self._apply_delete(project_id, action, summary)
            elif action.operation == OP_ADD:
                self._apply_add(project_id, user_id, action, currency, summary)
            else:
                summary.errors.append(f"Unknown instruction format: {instruction}")

        logger.info(
            f"Applied actions to project {project_id}: "
            f"added={summary.items_added} updated={summary.items_updated} "
            f"deleted={summary.items_deleted} errors={len(summary.errors)}"
        )
        return summary

    # ── Add ───────────────────────────────────────────────────────────

    def _apply_add(
        self,
        project_id: int,
        user_id: Optional[str],
        action: ParsedAction,
        currency: str,
        summary: ActionSummary,
    ) -> None:
        try:
            fields = to_line_item_fields(action.attributes)
            if not fields.description:
                summary.errors.append(f"Missing description in add instruction: {action.raw}")
                return

            record = self._build_new_item(fields, currency)
            parent_id = self._resolve_parent(project_id, fields, summary)
            if parent_id is not None:
                record["parent_item_id"] = parent_id
                record["is_sub_item"] = True

            self.store.create_item(project_id, user_id, record)
            summary.items_added += 1
        except Exception as e:
            logger.warning(f"Add failed for project {project_id}: {e}")
            summary.errors.append(f"Error adding new item: {e}")

    def _build_new_item(self, fields: LineItemFields, currency: str) -> Dict[str, Any]:
        quantity = fields.quantity if fields.quantity is not None else 1
        unit_price = fields.unit_price if fields.unit_price is not None else 0
        amount = fields.amount if fields.amount is not None else quantity * unit_price

        data = {
            "ai_generated": True,
            "generation_timestamp": datetime.now(timezone.utc).isoformat(),
        }
        data.update(fields.extra)

        return {
            "title": fields.title or fields.description,
            "description": fields.description,
            "quantity": quantity,
            "unit_price": unit_price,
            "amount": amount,
            "currency": fields.currency or currency,
            "unit_type": fields.unit_type or DEFAULT_UNIT_TYPE,
            "cost_type": fields.cost_type or infer_cost_type(fields.description),
            "status": fields.status or DEFAULT_ITEM_STATUS,
            "parent_item_id": None,
            "is_sub_item": bool(fields.is_sub_item),
            "data": data,
        }

    def _resolve_parent(
        self, project_id: int, fields: LineItemFields, summary: ActionSummary
    ) -> Optional[int]:
        """Best-effort parent lookup; unresolved parents are reported, not fatal."""
        if fields.parent_item_id is not None:
            if self.store.get_item(project_id, fields.parent_item_id):
                return fields.parent_item_id
            summary.errors.append(f"Could not find parent item ID:{fields.parent_item_id}")
            return None

        if fields.parent:
            parent = self.store.find_item_by_description(project_id, fields.parent)
            if parent:
                return parent["id"]
            summary.errors.append(f"Could not find parent item: {fields.parent}")

        return None

    # ── Update ────────────────────────────────────────────────────────

    def _apply_update(self, project_id: int, action: ParsedAction, summary: ActionSummary) -> None:
        item_id = action.item_id
        try:
            fields = to_line_item_fields(action.attributes)
            changes = fields.to_changes()

            if fields.amount is None and fields.quantity is not None and fields.unit_price is not None:
                changes["amount"] = fields.quantity * fields.unit_price

            if fields.description is not None:
                if fields.cost_type is None:
                    changes["cost_type"] = infer_cost_type(fields.description)
                if fields.title is None:
                    changes["title"] = fields.description

            if fields.parent_item_id is not None or fields.parent:
                changes.pop("parent_item_id", None)
                parent_id = self._resolve_parent(project_id, fields, summary)
                if parent_id == item_id:
                    summary.errors.append(f"Item ID:{item_id} cannot be its own parent")
                elif parent_id is not None:
                    changes["parent_item_id"] = parent_id
                    changes["is_sub_item"] = True

            updated = self.store.update_item(project_id, item_id, changes, fields.extra)
            if updated is None:
                summary.errors.append(f"Item ID:{item_id} not found")
                return
            summary.items_updated += 1
        except Exception as e:
            logger.warning(f"Update failed for item {item_id}: {e}")
            summary.errors.append(f"Error updating item ID:{item_id}: {e}")

    # ── Delete ────────────────────────────────────────────────────────

    def _apply_delete(self, project_id: int, action: ParsedAction, summary: ActionSummary) -> None:
        item_id = action.item_id
        try:
            if self.store.delete_item(project_id, item_id):
                summary.items_deleted += 1
            else:
                logger.debug(f"Delete skipped, item {item_id} not in project {project_id}")
        except Exception as e:
            logger.warning(f"Delete failed for item {item_id}: {e}")
            summary.errors.append(f"Error deleting item ID:{item_id}: {e}")
