"""
Retrieval API Router
"""

from fastapi import APIRouter

from app.db.schemas import ResourceCreate, SearchRequest
from app.service.retrieval_service import RetrievalService

retrieval_router = APIRouter(prefix="/retrieval", tags=["retrieval"])

retrieval_service = RetrievalService()


@retrieval_router.post(
    "/search",
    summary="Search relevant context",
    operation_id="search_context"
)
async def search(data: SearchRequest):
    """Rank stored knowledge and the given context blocks against a query"""
    return await retrieval_service.search(data)


@retrieval_router.post(
    "/resources",
    summary="Index a resource",
    operation_id="index_resource"
)
async def index_resource(data: ResourceCreate):
    return await retrieval_service.index_resource(data)
