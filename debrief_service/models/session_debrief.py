"""Versioned AI debrief of a completed workout session."""
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from debrief_service.db.database import Base

JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class SessionDebrief(Base):
    """One generated debrief version.

    Rows are append-only: a new version is inserted and the previous active
    row is flipped to ``is_active = False``. ``version`` and ``summary`` are
    never modified after insert.
    """

    __tablename__ = "session_debriefs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    session_id = Column(
        Integer,
        ForeignKey("workout_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version = Column(Integer, nullable=False, default=1)
    parent_debrief_id = Column(Integer, nullable=True)

    # Generated content
    summary = Column(Text, nullable=False)
    pr_highlights = Column(JSONType, nullable=True)
    adherence_score = Column(Float, nullable=True)
    focus_areas = Column(JSONType, nullable=True)
    streak_context = Column(JSONType, nullable=True)
    overload_digest = Column(JSONType, nullable=True)
    # "metadata" is reserved on declarative classes
    debrief_metadata = Column("metadata", JSONType, nullable=False, default=dict)

    # Lineage/state
    is_active = Column(Boolean, nullable=False, default=True)
    regeneration_count = Column(Integer, nullable=False, default=0)

    # Reader interaction
    viewed_at = Column(DateTime, nullable=True)
    dismissed_at = Column(DateTime, nullable=True)
    pinned_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "session_id", "version", name="uq_session_debrief_version"),
        Index("ix_session_debriefs_created_at", "created_at"),
        Index("ix_session_debriefs_user_created", "user_id", "created_at"),
        CheckConstraint("version > 0", name="check_session_debrief_version_positive"),
    )

    # Columns a debrief insert binds; drives the statement chunk size
    INSERT_FIELDS = (
        "user_id",
        "session_id",
        "version",
        "parent_debrief_id",
        "summary",
        "pr_highlights",
        "adherence_score",
        "focus_areas",
        "streak_context",
        "overload_digest",
        "debrief_metadata",
        "is_active",
        "regeneration_count",
        "created_at",
        "updated_at",
    )

    def __repr__(self) -> str:
        return (
            f"<SessionDebrief(id={self.id}, user_id='{self.user_id}', "
            f"session_id={self.session_id}, version={self.version}, is_active={self.is_active})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "version": self.version,
            "parent_debrief_id": self.parent_debrief_id,
            "summary": self.summary,
            "pr_highlights": self.pr_highlights,
            "adherence_score": self.adherence_score,
            "focus_areas": self.focus_areas,
            "streak_context": self.streak_context,
            "overload_digest": self.overload_digest,
            "metadata": self.debrief_metadata,
            "is_active": self.is_active,
            "regeneration_count": self.regeneration_count,
            "viewed_at": self.viewed_at.isoformat() if self.viewed_at else None,
            "dismissed_at": self.dismissed_at.isoformat() if self.dismissed_at else None,
            "pinned_at": self.pinned_at.isoformat() if self.pinned_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
