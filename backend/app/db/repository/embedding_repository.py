"""
Embedding repository implementation

Stores resources with their sentence embeddings and ranks them against a
query vector.
"""

import heapq
import uuid
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.resource import Resource, ResourceEmbedding
from app.db.repository.base_repository import BaseRepository
from app.db.session import async_with_session
from app.utils.vector import cosine_scores, from_blob, to_blob

# Rows scored per fetched partition
SCAN_BATCH_SIZE = 500


@dataclass
class EmbeddingMatch:
    resource_id: str
    content: str
    similarity: float


class EmbeddingRepository(BaseRepository[ResourceEmbedding]):
    """Resource embedding data access layer"""

    def __init__(self):
        super().__init__(ResourceEmbedding)

    @async_with_session
    async def create_resource(
        self,
        session: AsyncSession,
        content: str,
        embeddings: Sequence[Tuple[str, List[float]]]
    ) -> Tuple[Resource, List[ResourceEmbedding]]:
        """
        Store a resource and its embeddings in one transaction

        Args:
            session: Database session
            content: Original resource text
            embeddings: (sentence, vector) pairs

        Returns:
            The resource and its embedding rows
        """
        resource = Resource(id=str(uuid.uuid4()), content=content)
        session.add(resource)

        rows = [
            ResourceEmbedding(
                id=str(uuid.uuid4()),
                resource_id=resource.id,
                content=sentence,
                embedding=to_blob(vector),
            )
            for sentence, vector in embeddings
        ]
        session.add_all(rows)
        await session.flush()
        return resource, rows

    @async_with_session
    async def list_embeddings(self, session: AsyncSession) -> List[ResourceEmbedding]:
        result = await session.execute(select(ResourceEmbedding))
        return list(result.scalars().all())

    @async_with_session
    async def search_similar(
        self,
        session: AsyncSession,
        query_vector: Sequence[float],
        threshold: float,
        limit: int,
        batch_size: int = SCAN_BATCH_SIZE,
    ) -> List[EmbeddingMatch]:
        """
        Best ``limit`` sentences with similarity strictly above ``threshold``

        Rows are streamed in partitions of ``batch_size`` and scored with
        numpy, so at most one partition plus ``limit`` matches is held in
        memory. Rows whose dimension differs from the query are skipped.

        Returns:
            Matches ordered by descending similarity
        """
        if limit <= 0:
            return []
        dimension = len(query_vector)
        best: List[Tuple[float, str, str]] = []

        stmt = select(
            ResourceEmbedding.resource_id,
            ResourceEmbedding.content,
            ResourceEmbedding.embedding,
        ).execution_options(yield_per=batch_size)
        result = await session.stream(stmt)
        async for partition in result.partitions(batch_size):
            rows = []
            vectors = []
            for resource_id, content, blob in partition:
                vector = from_blob(blob)
                if vector.shape[0] == dimension:
                    rows.append((resource_id, content))
                    vectors.append(vector)
            if not vectors:
                continue

            scores = cosine_scores(query_vector, np.vstack(vectors))
            keep = np.flatnonzero(scores > threshold)
            candidates = [(float(scores[i]), rows[i][0], rows[i][1]) for i in keep]
            best = heapq.nlargest(limit, best + candidates, key=lambda c: c[0])

        return [EmbeddingMatch(resource_id=r, content=c, similarity=s) for s, r, c in best]
