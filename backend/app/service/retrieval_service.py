"""
Retrieval Service

Business logic layer - durable knowledge indexing and context search
"""

import logging
from typing import Optional

from app.config.logging_config import log_print
from app.core.context_payload import ContextBlock, ContextPayload, context_blocks, merge_context_blocks
from app.core.embedding_index import EmbeddingIndex
from app.db.repository import SessionRepository
from app.db.schemas import ResourceCreate, ResourceIndexedResponse, RetrievalResultSchema, SearchRequest
from app.utils.exceptions import NotFoundError
from app.utils.model.response_model import BaseResponse, ListResponse

logger = logging.getLogger(__name__)


class RetrievalService:
    """Retrieval service"""

    def __init__(self, index: Optional[EmbeddingIndex] = None):
        self._index = index
        self.session_repo = SessionRepository()

    @property
    def index(self) -> EmbeddingIndex:
        # Built lazily so the app starts without an embedding key
        if self._index is None:
            self._index = EmbeddingIndex()
        return self._index

    @log_print
    async def search(self, data: SearchRequest):
        """Score durable knowledge plus inline and session context blocks"""
        blocks = [ContextBlock(id=b.id, content=b.content, label=b.label, source=b.source) for b in data.context_blocks]

        if data.session_id:
            chat_session = await self.session_repo.get_session_by_id(data.session_id)
            if chat_session is None:
                raise NotFoundError(
                    f"Session '{data.session_id}' not found",
                    resource_type="session",
                    resource_id=data.session_id,
                )
            blocks = merge_context_blocks(context_blocks(ContextPayload.from_session(chat_session)), blocks)

        results = await self.index.search(data.query, context_blocks=blocks, limit=data.limit)
        items = [RetrievalResultSchema(**r.to_dict()) for r in results]
        return ListResponse.success(items=items)

    @log_print
    async def index_resource(self, data: ResourceCreate):
        resource, count = await self.index.index(data.content)
        return BaseResponse.created(data=ResourceIndexedResponse(resource_id=resource.id, embedding_count=count))
