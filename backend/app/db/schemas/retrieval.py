"""
Retrieval schemas

Requests and responses of the embedding index endpoints.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ContextBlockSchema(BaseModel):
    """Ad hoc context to score alongside durable knowledge"""
    id: str = Field(..., min_length=1, description="Stable block id")
    content: str = Field(..., description="Block text")
    label: Optional[str] = Field(None, description="Human readable label")
    source: Optional[str] = Field(None, description="Where the block came from")


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, description="Search query")
    context_blocks: List[ContextBlockSchema] = Field(default_factory=list)
    session_id: Optional[str] = Field(None, description="Include this session's context files")
    limit: Optional[int] = Field(None, ge=1, le=50, description="Maximum number of results")


class RetrievalResultSchema(BaseModel):
    name: str
    similarity: float
    source: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ResourceCreate(BaseModel):
    content: str = Field(..., min_length=1, description="Text to index")


class ResourceIndexedResponse(BaseModel):
    resource_id: str
    embedding_count: int
