"""
Session model definition

A chat session bound to one Bitbucket (workspace, repository, branch) triple.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text, JSON
from sqlalchemy.orm import relationship

from app.db.base import Base, utcnow


class ChatSession(Base):
    """
    Chat session model

    Holds the repository binding, the context snapshot taken from the
    persistency layer, the aggregate draft state and the pull request
    linkage of one conversation.
    """
    __tablename__ = "sessions"
    __table_args__ = {'comment': 'Chat sessions bound to a repository branch'}

    # Primary key
    id = Column(String(36), primary_key=True, comment="Session UUID")

    label = Column(String(512), nullable=False, comment="Display label: project · branch")
    created_at = Column(DateTime, default=utcnow, nullable=False, comment="Creation time")
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False, comment="Last update time")

    # Project identity
    project_uuid = Column(String(64), nullable=False, comment="Bitbucket project UUID")
    project_key = Column(String(64), nullable=True, comment="Bitbucket project key")
    project_name = Column(String(255), nullable=False, comment="Bitbucket project name")

    # Workspace identity
    workspace_slug = Column(String(255), nullable=True, comment="Bitbucket workspace slug")
    workspace_name = Column(String(255), nullable=True, comment="Bitbucket workspace name")
    workspace_uuid = Column(String(64), nullable=True, comment="Bitbucket workspace UUID")

    # Repository and branch identity
    repository_slug = Column(String(255), nullable=False, comment="Repository slug")
    repository_name = Column(String(255), nullable=False, comment="Repository display name")
    branch_name = Column(String(255), nullable=False, comment="Destination branch name")
    branch_is_default = Column(Boolean, default=False, nullable=False, comment="Is the repository main branch")

    # Context snapshot
    context_folder_exists = Column(Boolean, default=False, nullable=False, comment="Persistency folder exists on the branch")
    context_truncated = Column(Boolean, default=False, nullable=False, comment="File cap was hit while collecting")
    context_has_bootstrap = Column(Boolean, default=False, nullable=False, comment="Bootstrap file present")
    context_files = Column(JSON, nullable=False, default=list, comment="Ordered list of {path, content, truncated}")

    # Persistence state
    persist_allow_writes = Column(Boolean, default=False, nullable=False, comment="Assistant may queue drafts")
    persist_has_changes = Column(Boolean, default=False, nullable=False, comment="At least one draft awaits persistence")
    persist_draft_count = Column(Integer, default=0, nullable=False, comment="Number of drafts awaiting persistence")

    # Pull request linkage
    persist_pr_id = Column(Integer, nullable=True, comment="Bitbucket pull request id")
    persist_pr_url = Column(String(1024), nullable=True, comment="Pull request HTML url")
    persist_pr_branch = Column(String(255), nullable=True, comment="Feature branch name")
    persist_pr_title = Column(String(512), nullable=True, comment="Last pull request title")
    persist_updated_at = Column(DateTime, nullable=True, comment="Last successful persistence")

    # External tracker task
    tracker_task_key = Column(String(64), nullable=True, comment="Tracker task key, e.g. PROJ-12")
    tracker_task_url = Column(String(1024), nullable=True, comment="Tracker task url")
    tracker_task_summary = Column(Text, nullable=True, comment="Tracker task summary")
    tracker_task_created_at = Column(DateTime, nullable=True, comment="When the task was linked")

    drafts = relationship(
        "SessionDraft",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<ChatSession(id='{self.id}', label='{self.label}', branch='{self.branch_name}')>"

    @property
    def context_state(self) -> str:
        """``missing`` when the folder is absent, ``empty`` without files, else ``ready``."""
        if not self.context_folder_exists:
            return "missing"
        if not self.context_files:
            return "empty"
        return "ready"

    def to_dict(self, exclude_fields=None):
        """
        Convert to dictionary

        Args:
            exclude_fields: List of fields to exclude

        Returns:
            Dictionary of column values, datetimes as ISO strings
        """
        exclude_fields = exclude_fields or []
        data = {}
        for column in self.__table__.columns:
            if column.name in exclude_fields:
                continue
            value = getattr(self, column.name)
            if hasattr(value, "isoformat"):
                value = value.isoformat()
            data[column.name] = value
        return data

    def touch(self):
        """Update the updated_at timestamp"""
        self.updated_at = utcnow()
