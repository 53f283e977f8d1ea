"""
Resource and embedding models

Durable knowledge indexed for retrieval.
"""

from sqlalchemy import Column, String, DateTime, Text, LargeBinary, ForeignKey
from sqlalchemy.orm import relationship

from app.db.base import Base, utcnow


class Resource(Base):
    """Free text submitted for indexing"""
    __tablename__ = "resources"
    __table_args__ = {'comment': 'Indexed knowledge resources'}

    id = Column(String(36), primary_key=True, comment="Resource UUID")
    content = Column(Text, nullable=False, comment="Original text")
    created_at = Column(DateTime, default=utcnow, nullable=False, comment="Creation time")
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False, comment="Last update time")

    embeddings = relationship(
        "ResourceEmbedding",
        back_populates="resource",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ResourceEmbedding(Base):
    """One embedded sentence of a resource"""
    __tablename__ = "resource_embeddings"
    __table_args__ = {'comment': 'Sentence embeddings of resources'}

    id = Column(String(36), primary_key=True, comment="Embedding UUID")
    resource_id = Column(
        String(36),
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning resource",
    )
    content = Column(Text, nullable=False, comment="Embedded sentence")
    embedding = Column(LargeBinary, nullable=False, comment="Embedding vector as float32 bytes")

    resource = relationship("Resource", back_populates="embeddings")
