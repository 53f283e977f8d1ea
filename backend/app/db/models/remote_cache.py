"""
Remote listing cache model

Short-lived copies of Bitbucket project and branch listings.
"""

from datetime import timedelta

from sqlalchemy import Column, String, DateTime, JSON

from app.db.base import Base, utcnow


class RemoteListingCache(Base):
    """Cached listing keyed by (correlation_id, scope, cache_key)"""
    __tablename__ = "remote_listing_cache"
    __table_args__ = {'comment': 'Bitbucket listing cache scoped to an OAuth session'}

    correlation_id = Column(String(64), primary_key=True, comment="Credential correlation id")
    scope = Column(String(32), primary_key=True, comment="Listing kind: projects or branches")
    cache_key = Column(String(512), primary_key=True, comment="Listing parameters")

    payload = Column(JSON, nullable=False, comment="Cached listing")
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False, comment="Last refresh time")

    def is_fresh(self, ttl_seconds: int, now=None) -> bool:
        now = now or utcnow()
        return self.updated_at is not None and now - self.updated_at < timedelta(seconds=ttl_seconds)
