"""
SQLAlchemy ORM Models for the estimator

- Project: A construction estimate owned by one user
- LineItem: A node in a project's cost breakdown (table ``estimate_items``)
- Conversation: Prompt history per project
- Message: One user prompt or assistant response within a conversation
"""

from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, Float, ForeignKey, Index, Integer, String, Text, TIMESTAMP,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Project(Base):
    """Estimate project."""
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    business_id = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(50), default="draft")  # draft, active, archived
    currency = Column(String(3), default="USD")
    total_amount = Column(Float, default=0)
    created_by = Column(String(64), nullable=True)  # auth provider user id
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow)

    line_items = relationship("LineItem", back_populates="project", cascade="all, delete-orphan")
    conversations = relationship("Conversation", back_populates="project", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_projects_created_by", "created_by"),
    )

    def __repr__(self):
        return f"<Project(id={self.id}, name='{self.name}')>"


class LineItem(Base):
    """Line item within a project's estimate."""
    __tablename__ = "estimate_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Float, default=1)
    unit_price = Column(Float, default=0)
    unit_type = Column(String(50), default="unit")  # hour, day, unit, package
    amount = Column(Float, default=0)
    currency = Column(String(3), default="USD")
    cost_type = Column(String(50), nullable=True)  # material, labor, equipment, overhead, admin, other
    status = Column(String(50), default="active")
    parent_item_id = Column(Integer, ForeignKey("estimate_items.id", ondelete="SET NULL"), nullable=True)
    is_sub_item = Column(Boolean, default=False)
    data = Column(JSONType, nullable=True)  # open key/value map for non-schema fields
    created_by = Column(String(64), nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project", back_populates="line_items")
    parent = relationship("LineItem", remote_side=[id], backref="sub_items")

    __table_args__ = (
        Index("idx_estimate_items_project", "project_id"),
        Index("idx_estimate_items_parent", "parent_item_id"),
    )

    def __repr__(self):
        return f"<LineItem(id={self.id}, title='{self.title}', amount={self.amount})>"


class Conversation(Base):
    """Prompt history for a project."""
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    project = relationship("Project", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )

    __table_args__ = (
        Index("idx_conversations_project", "project_id"),
    )

    def __repr__(self):
        return f"<Conversation(id={self.id}, project_id={self.project_id})>"


class Message(Base):
    """A single message in a conversation."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), nullable=False)  # user, assistant
    content = Column(Text, nullable=False)  # plain text or a JSON document
    user_id = Column(String(64), nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")

    def __repr__(self):
        return f"<Message(id={self.id}, role='{self.role}')>"
