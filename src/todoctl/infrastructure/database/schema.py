"""SQLAlchemy Core table definitions for the todoctl database.

Collections (tags, dependencies, permissions, metadata maps) are stored as
JSON text; :mod:`todoctl.infrastructure.store` encodes and decodes them.
Timestamps are ISO 8601 strings.
"""

from __future__ import annotations

from sqlalchemy import (
    REAL,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
)

metadata = MetaData()

lists = Table(
    "lists",
    metadata,
    Column("id", Text, primary_key=True),
    Column("title", Text, nullable=False),
    Column("description", Text),
    Column("parent_list_id", Text, ForeignKey("lists.id", ondelete="CASCADE")),
    Column("position", Integer, nullable=False, default=0, server_default="0"),
    Column("priority", Text, nullable=False, default="medium", server_default="medium"),
    Column("status", Text, nullable=False, default="active", server_default="active"),
    Column("created_by", Text),
    Column("created_at", Text, nullable=False),
    Column("updated_at", Text, nullable=False),
    Column("completed_at", Text),
    Column("metadata", Text),  # JSON object
)

agents = Table(
    "agents",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("role", Text, nullable=False),
    Column("status", Text, nullable=False, default="active", server_default="active"),
    Column("permissions", Text),  # JSON array
    Column("configuration", Text),  # JSON object
    Column("last_active", Text),
    Column("created_at", Text, nullable=False),
    Column("updated_at", Text, nullable=False),
)

items = Table(
    "items",
    metadata,
    Column("id", Text, primary_key=True),
    Column("list_id", Text, ForeignKey("lists.id", ondelete="CASCADE"), nullable=False),
    Column("title", Text, nullable=False),
    Column("description", Text),
    Column("position", Integer, nullable=False, default=0, server_default="0"),
    Column("priority", Text, nullable=False, default="medium", server_default="medium"),
    Column("status", Text, nullable=False, default="pending", server_default="pending"),
    Column("due_date", Text),
    Column("estimated_duration", Integer),
    Column("actual_duration", Integer),
    Column("tags", Text),  # JSON array
    Column("dependencies", Text),  # JSON array of item ids
    Column("assigned_to", Text, ForeignKey("agents.id", ondelete="SET NULL")),
    Column("created_by", Text),
    Column("created_at", Text, nullable=False),
    Column("updated_at", Text, nullable=False),
    Column("completed_at", Text),
    Column("metadata", Text),  # JSON object
    Index("ix_items_list_id", "list_id"),
)

sessions = Table(
    "sessions",
    metadata,
    Column("id", Text, primary_key=True),
    Column("agent_id", Text, ForeignKey("agents.id", ondelete="SET NULL")),
    Column("user_id", Text),
    Column("status", Text, nullable=False, default="active", server_default="active"),
    Column("expiration_minutes", Integer, nullable=False, default=60, server_default="60"),
    Column("created_at", Text, nullable=False),
    Column("expires_at", Text, nullable=False),
    Column("last_activity", Text),
    Column("metadata", Text),  # JSON object
)

action_logs = Table(
    "action_logs",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("command", Text, nullable=False),
    Column("action", Text, nullable=False),
    Column("target_type", Text, nullable=False),
    Column("target_id", Text, nullable=False),
    Column("agent_id", Text),
    Column("session_id", Text),
    Column("correlation_id", Text),
    Column("parameters", Text),  # JSON object
    Column("result", Text),  # JSON
    Column("success", Integer, nullable=False),
    Column("error_code", Text),
    Column("error_message", Text),
    Column("execution_time", REAL, nullable=False),
    Column("timestamp", Text, nullable=False),
    Column("rollback_id", Integer, ForeignKey("action_logs.id")),
    Index("ix_action_logs_session", "session_id"),
)
