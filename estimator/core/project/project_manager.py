"""Project Manager for the estimator.

Provides CRUD operations for projects, line items, and conversation
history. Every item operation is scoped to its owning project.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from ..constants import DEFAULT_CURRENCY, DEFAULT_PAGE_SIZE, DEFAULT_PROJECT_STATUS
from ..db import DatabaseManager
from ..db.models import Conversation, LineItem, Message, Project

logger = logging.getLogger(__name__)

_PROJECT_FIELDS = ("name", "description", "status", "currency", "total_amount", "business_id")
_ITEM_FIELDS = (
    "title", "description", "quantity", "unit_price", "unit_type", "amount",
    "currency", "cost_type", "status", "parent_item_id", "is_sub_item",
)


class ProjectManager:
    """Manages projects and their line items with database persistence."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        logger.info("ProjectManager initialized")

    # =========================================================================
    # Project CRUD
    # =========================================================================

    def create_project(
        self,
        user_id: Optional[str],
        name: str,
        description: str = "",
        currency: str = DEFAULT_CURRENCY,
        total_amount: float = 0,
        raw_response: Optional[str] = None,
        business_id: Optional[str] = None,
    ) -> Dict:
        """Create a project with its conversation.

        The raw model response that produced the project, if any, is stored
        as the first assistant message.
        """
        try:
            with self.db.get_session() as session:
                project = Project(
                    name=name,
                    description=description,
                    status=DEFAULT_PROJECT_STATUS,
                    currency=currency or DEFAULT_CURRENCY,
                    total_amount=total_amount,
                    created_by=user_id,
                    business_id=business_id,
                )
                session.add(project)
                session.flush()

                conversation = Conversation(project_id=project.id, title=name, created_by=user_id)
                session.add(conversation)
                session.flush()

                if raw_response is not None:
                    session.add(Message(
                        conversation_id=conversation.id,
                        role="assistant",
                        content=json.dumps({"type": "initial_estimate", "raw_response": raw_response}),
                        user_id=user_id,
                    ))

                logger.info(f"Created project: {project.id} ({name})")
                return self._project_to_dict(project)

        except Exception as e:
            logger.error(f"Failed to create project: {e}")
            raise

    def get_project(self, project_id: int) -> Optional[Dict]:
        """Retrieve project details by ID."""
        try:
            with self.db.get_session() as session:
                project = session.query(Project).filter(Project.id == project_id).first()
                if not project:
                    return None
                return self._project_to_dict(project)

        except Exception as e:
            logger.error(f"Failed to get project {project_id}: {e}")
            raise

    def list_projects(self, user_id: str) -> List[Dict]:
        """List all projects for a user, newest first."""
        with self.db.get_session() as session:
            projects = session.query(Project).filter(
                Project.created_by == user_id
            ).order_by(Project.created_at.desc(), Project.id.desc()).all()
            return [self._project_to_dict(p) for p in projects]

    def update_project(self, project_id: int, **fields: Any) -> bool:
        """Update project columns. Unknown keys are ignored."""
        try:
            with self.db.get_session() as session:
                project = session.query(Project).filter(Project.id == project_id).first()
                if not project:
                    return False

                for key, value in fields.items():
                    if key in _PROJECT_FIELDS and value is not None:
                        setattr(project, key, value)
                project.updated_at = datetime.utcnow()
                return True

        except Exception as e:
            logger.error(f"Failed to update project {project_id}: {e}")
            raise

    def delete_project(self, project_id: int) -> bool:
        """Delete a project and all associated data (CASCADE)."""
        with self.db.get_session() as session:
            project = session.query(Project).filter(Project.id == project_id).first()
            if not project:
                return False
            session.delete(project)
            logger.info(f"Deleted project: {project_id}")
            return True

    # =========================================================================
    # Line Items
    # =========================================================================

    def count_line_items(self, project_id: int) -> int:
        with self.db.get_session() as session:
            return session.query(func.count(LineItem.id)).filter(
                LineItem.project_id == project_id
            ).scalar() or 0

    def get_line_items(
        self,
        project_id: int,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[Dict]:
        """Page through a project's items in creation order."""
        with self.db.get_session() as session:
            items = session.query(LineItem).filter(
                LineItem.project_id == project_id
            ).order_by(
                LineItem.created_at, LineItem.id
            ).offset(max(offset, 0)).limit(limit).all()
            return [self._item_to_dict(i) for i in items]

    def get_items_by_row_range(self, project_id: int, start: int, end: int) -> List[Dict]:
        """Items at rows ``start..end`` (inclusive, zero-based, creation order)."""
        return self.get_line_items(project_id, offset=start, limit=end - start + 1)

    def get_item(self, project_id: int, item_id: int) -> Optional[Dict]:
        with self.db.get_session() as session:
            item = self._query_item(session, project_id, item_id)
            return self._item_to_dict(item) if item else None

    def find_item_by_description(self, project_id: int, description: str) -> Optional[Dict]:
        """Exact description match within the project, oldest first."""
        with self.db.get_session() as session:
            item = session.query(LineItem).filter(
                LineItem.project_id == project_id,
                LineItem.description == description,
            ).order_by(LineItem.id).first()
            return self._item_to_dict(item) if item else None

    def create_item(self, project_id: int, user_id: Optional[str], record: Dict[str, Any]) -> Dict:
        """Insert one line item from a column -> value mapping."""
        with self.db.get_session() as session:
            item = LineItem(project_id=project_id, created_by=user_id, data=record.get("data"))
            for key in _ITEM_FIELDS:
                if key in record:
                    setattr(item, key, record[key])
            session.add(item)
            session.flush()
            logger.debug(f"Created line item {item.id} in project {project_id}")
            return self._item_to_dict(item)

    def update_item(
        self,
        project_id: int,
        item_id: int,
        changes: Dict[str, Any],
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict]:
        """Apply a partial update. Returns None when the item is not in the project.

        ``extra_data`` is merged into the item's open ``data`` map.
        """
        with self.db.get_session() as session:
            item = self._query_item(session, project_id, item_id)
            if not item:
                return None

            for key, value in changes.items():
                if key in _ITEM_FIELDS:
                    setattr(item, key, value)

            if extra_data:
                merged = dict(item.data or {})
                merged.update(extra_data)
                item.data = merged

            item.updated_at = datetime.utcnow()
            session.flush()
            return self._item_to_dict(item)

    def delete_item(self, project_id: int, item_id: int) -> bool:
        """Delete an item scoped to its project. False when it does not exist."""
        with self.db.get_session() as session:
            item = self._query_item(session, project_id, item_id)
            if not item:
                return False
            session.delete(item)
            return True

    def duplicate_item(self, project_id: int, item_id: int, user_id: Optional[str]) -> Optional[Dict]:
        """Copy an item (same parent, new id)."""
        with self.db.get_session() as session:
            item = self._query_item(session, project_id, item_id)
            if not item:
                return None

            copy = LineItem(project_id=project_id, created_by=user_id)
            for key in _ITEM_FIELDS:
                setattr(copy, key, getattr(item, key))
            copy.data = dict(item.data or {}, duplicated_from=item.id)
            session.add(copy)
            session.flush()
            return self._item_to_dict(copy)

    def calculate_total(self, project_id: int) -> float:
        """Sum of root item amounts (sub-items are part of their parent)."""
        with self.db.get_session() as session:
            total = session.query(func.coalesce(func.sum(LineItem.amount), 0)).filter(
                LineItem.project_id == project_id,
                LineItem.parent_item_id.is_(None),
            ).scalar()
            return float(total or 0)

    # =========================================================================
    # Conversations
    # =========================================================================

    def _latest_conversation(self, session, project_id: int, user_id: Optional[str]) -> Conversation:
        conversation = session.query(Conversation).filter(
            Conversation.project_id == project_id
        ).order_by(Conversation.created_at.desc(), Conversation.id.desc()).first()

        if conversation is None:
            conversation = Conversation(project_id=project_id, created_by=user_id)
            session.add(conversation)
            session.flush()
        return conversation

    def add_message(self, project_id: int, user_id: Optional[str], role: str, content: Any) -> Dict:
        """Append a message to the project's latest conversation."""
        with self.db.get_session() as session:
            conversation = self._latest_conversation(session, project_id, user_id)
            if not isinstance(content, str):
                content = json.dumps(content, default=str)
            message = Message(
                conversation_id=conversation.id, role=role, content=content, user_id=user_id
            )
            session.add(message)
            session.flush()
            return self._message_to_dict(message)

    def log_prompt_and_actions(
        self,
        project_id: int,
        user_id: Optional[str],
        prompt: str,
        raw_response: Optional[str],
        action_summary: Dict[str, Any],
    ) -> None:
        """Record a user prompt and the assistant's applied actions."""
        try:
            self.add_message(project_id, user_id, "user", prompt)
            self.add_message(project_id, user_id, "assistant", {
                "type": "additional_estimate",
                "raw_response": raw_response,
                "action_summary": action_summary,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            })
        except Exception as e:
            logger.error(f"Failed to log prompt for project {project_id}: {e}")
            raise

    def get_conversations(self, project_id: int) -> List[Dict]:
        """Conversations for a project with their messages, oldest first."""
        with self.db.get_session() as session:
            conversations = session.query(Conversation).filter(
                Conversation.project_id == project_id
            ).order_by(Conversation.created_at, Conversation.id).all()
            return [
                {
                    "id": c.id,
                    "project_id": c.project_id,
                    "title": c.title,
                    "created_at": c.created_at.isoformat() if c.created_at else None,
                    "messages": [self._message_to_dict(m) for m in c.messages],
                }
                for c in conversations
            ]

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _query_item(session, project_id: int, item_id: int) -> Optional[LineItem]:
        return session.query(LineItem).filter(
            LineItem.id == item_id,
            LineItem.project_id == project_id,
        ).first()

    @staticmethod
    def _project_to_dict(project: Project) -> Dict:
        return {
            "id": project.id,
            "name": project.name,
            "description": project.description,
            "status": project.status,
            "currency": project.currency,
            "total_amount": project.total_amount,
            "business_id": project.business_id,
            "created_by": project.created_by,
            "created_at": project.created_at.isoformat() if project.created_at else None,
            "updated_at": project.updated_at.isoformat() if project.updated_at else None,
        }

    @staticmethod
    def _item_to_dict(item: LineItem) -> Dict:
        return {
            "id": item.id,
            "project_id": item.project_id,
            "title": item.title,
            "description": item.description,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
            "unit_type": item.unit_type,
            "amount": item.amount,
            "currency": item.currency,
            "cost_type": item.cost_type,
            "status": item.status,
            "parent_item_id": item.parent_item_id,
            "is_sub_item": bool(item.is_sub_item),
            "data": item.data or {},
            "created_by": item.created_by,
            "created_at": item.created_at.isoformat() if item.created_at else None,
        }

    @staticmethod
    def _message_to_dict(message: Message) -> Dict:
        content = message.content
        try:
            content = json.loads(content)
        except (TypeError, ValueError):
            pass
        return {
            "id": message.id,
            "role": message.role,
            "content": content,
            "user_id": message.user_id,
            "created_at": message.created_at.isoformat() if message.created_at else None,
        }
