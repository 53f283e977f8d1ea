"""
Draft model definition

Pending replacement body for one persistency-layer document.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Text, ForeignKey
from sqlalchemy.orm import relationship

from app.db.base import Base, utcnow


class SessionDraft(Base):
    """
    Session draft model

    Keyed by (session_id, path). Rows are updated in place and never
    deleted; ``needs_persist`` flips back to False once committed.
    """
    __tablename__ = "session_drafts"
    __table_args__ = {'comment': 'Queued persistency layer edits per session'}

    session_id = Column(
        String(36),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        primary_key=True,
        comment="Owning session",
    )
    path = Column(String(512), primary_key=True, comment="Normalized repository-relative path")

    content = Column(Text, nullable=False, comment="Full file body")
    summary = Column(Text, nullable=True, comment="Human readable summary of the change")
    needs_persist = Column(Boolean, default=True, nullable=False, comment="Awaiting commit")

    created_at = Column(DateTime, default=utcnow, nullable=False, comment="Creation time")
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False, comment="Last update time")

    session = relationship("ChatSession", back_populates="drafts")

    def __repr__(self):
        return f"<SessionDraft(session_id='{self.session_id}', path='{self.path}', needs_persist={self.needs_persist})>"
