"""
Database models for the Discord AI Bot.

Only two things outlive the process: users' custom system prompts and an
audit trail of admin actions. Conversation history is deliberately kept
in memory and is not modelled here.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserPrompt(Base):
    """
    A user's custom system prompt.

    At most one row per user; no row means the default prompt is used.

    Attributes:
        id: Primary key
        user_id: Discord user ID
        custom_prompt: Prompt text used as the system turn
        created_at: When the prompt was first set
        updated_at: When the prompt was last changed
    """

    __tablename__ = "user_prompts"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(32), unique=True, nullable=False, index=True)
    custom_prompt = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<UserPrompt(user_id='{self.user_id}', length={len(self.custom_prompt or '')})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "customPrompt": self.custom_prompt,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class AdminAction(Base):
    """
    Audit record of one admin operation.

    Attributes:
        id: Primary key
        action: Operation name (e.g. "reset-user", "force-provider")
        admin_id: Who ran it: a Discord user ID, or "api" for the HTTP API
        target: What it was applied to, when there is a single target
        details: Operation result, such as the counts that were cleared
        created_at: When it ran
    """

    __tablename__ = "admin_actions"

    id = Column(Integer, primary_key=True)
    action = Column(String(64), nullable=False, index=True)
    admin_id = Column(String(32), nullable=False)
    target = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AdminAction(id={self.id}, action='{self.action}', admin_id='{self.admin_id}')>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "adminId": self.admin_id,
            "target": self.target,
            "details": self.details,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
