"""
Embedding index over durable resources and ad hoc context blocks.

Durable knowledge lives in ``resource_embeddings``, one row per sentence.
Context blocks (session context files, inline context) are chunked and
embedded per search and never stored.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from openai import AsyncOpenAI

from app.config import EmbeddingConfig
from app.core.context_payload import ContextBlock
from app.db.repository import EmbeddingRepository
from app.utils.exceptions import ConfigurationMissingError
from app.utils.vector import cosine_scores

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...


class OpenAIEmbedder:
    """Embedder backed by the OpenAI embeddings endpoint"""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key or EmbeddingConfig.API_KEY
        self.model = model or EmbeddingConfig.MODEL
        self.base_url = base_url or EmbeddingConfig.BASE_URL
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationMissingError("Embedding provider is not configured (OPENAI_API_KEY).")
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        response = await self.client.embeddings.create(model=self.model, input=list(texts))
        return [item.embedding for item in response.data]


@dataclass
class RetrievalResult:
    name: str
    similarity: float
    source: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def parent_id(self) -> str:
        return str(self.metadata.get("parent_id") or self.name)

    def to_dict(self) -> dict:
        return {"name": self.name, "similarity": self.similarity, "source": self.source, "metadata": self.metadata}


@dataclass
class ContextChunk:
    id: str
    label: str
    content: str
    metadata: Dict[str, Any]


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def split_into_sentences(text: str) -> List[str]:
    return [part.strip() for part in text.replace("\r\n", " ").split(".") if part.strip()]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    return float(cosine_scores(a, [b])[0])


def create_context_chunks(
    blocks: Sequence[ContextBlock],
    chunk_size: Optional[int] = None,
    max_chunks: Optional[int] = None,
) -> List[ContextChunk]:
    """
    Cut blocks into fixed-size windows.

    A window never spans two blocks; once ``max_chunks`` windows exist the
    remaining blocks are ignored.
    """
    chunk_size = chunk_size or EmbeddingConfig.CHUNK_SIZE
    max_chunks = EmbeddingConfig.MAX_CONTEXT_CHUNKS if max_chunks is None else max_chunks

    chunks: List[ContextChunk] = []
    for block in blocks:
        normalized = normalize_whitespace(block.content)
        chunk_index = 0
        for position in range(0, len(normalized), chunk_size):
            if len(chunks) >= max_chunks:
                return chunks
            segment = normalized[position:position + chunk_size].strip()
            if not segment:
                continue
            chunks.append(ContextChunk(
                id=f"{block.id}#{chunk_index}",
                label=block.label or block.id,
                content=segment,
                metadata={"parent_id": block.id, "chunk_index": chunk_index, "source": block.source},
            ))
            chunk_index += 1
    return chunks


class EmbeddingIndex:
    """Indexes durable resources and answers similarity searches"""

    def __init__(
        self,
        embedder: Optional[Embedder] = None,
        repo: Optional[EmbeddingRepository] = None,
        durable_threshold: Optional[float] = None,
        context_threshold: Optional[float] = None,
        default_limit: Optional[int] = None,
        preview_length: Optional[int] = None,
    ):
        self.embedder = embedder or OpenAIEmbedder()
        self.repo = repo or EmbeddingRepository()
        self.durable_threshold = EmbeddingConfig.DURABLE_THRESHOLD if durable_threshold is None else durable_threshold
        self.context_threshold = EmbeddingConfig.CONTEXT_THRESHOLD if context_threshold is None else context_threshold
        self.default_limit = default_limit or EmbeddingConfig.DEFAULT_LIMIT
        self.preview_length = preview_length or EmbeddingConfig.PREVIEW_LENGTH

    async def index(self, text: str) -> tuple:
        """
        Embed ``text`` sentence by sentence and store it as a resource.

        Returns:
            (Resource, number of stored embeddings)
        """
        sentences = split_into_sentences(text)
        vectors = await self.embedder.embed(sentences) if sentences else []
        resource, rows = await self.repo.create_resource(text, list(zip(sentences, vectors)))
        logger.info(f"Indexed resource {resource.id} with {len(rows)} embeddings")
        return resource, len(rows)

    async def _durable_matches(self, query_vector: List[float], limit: int) -> List[RetrievalResult]:
        matches = await self.repo.search_similar(query_vector, self.durable_threshold, limit)
        return [
            RetrievalResult(
                name=match.content,
                similarity=match.similarity,
                source="database",
                metadata={"parent_id": match.resource_id},
            )
            for match in matches
        ]

    async def _context_matches(self, query_vector: List[float], blocks: Sequence[ContextBlock]) -> List[RetrievalResult]:
        chunks = create_context_chunks(blocks)
        if not chunks:
            return []
        vectors = await self.embedder.embed([c.content for c in chunks])
        scores = cosine_scores(query_vector, vectors)
        results = []
        for chunk, similarity in zip(chunks, scores):
            if similarity >= self.context_threshold:
                results.append(RetrievalResult(
                    name=chunk.label,
                    similarity=float(similarity),
                    source="context",
                    metadata={**chunk.metadata, "preview": chunk.content[:self.preview_length]},
                ))
        return results

    async def search(
        self,
        query: str,
        context_blocks: Optional[Sequence[ContextBlock]] = None,
        limit: Optional[int] = None,
    ) -> List[RetrievalResult]:
        """
        Rank durable sentences and context chunks against ``query``.

        Results are sorted by descending similarity with at most one result
        per parent id.
        """
        limit = limit or self.default_limit
        normalized = normalize_whitespace(query)
        if not normalized:
            return []

        query_vector = (await self.embedder.embed([normalized]))[0]
        combined = await self._durable_matches(query_vector, limit)
        if context_blocks:
            combined += await self._context_matches(query_vector, context_blocks)
        combined.sort(key=lambda r: r.similarity, reverse=True)

        unique: List[RetrievalResult] = []
        seen = set()
        for result in combined:
            if result.parent_id in seen:
                continue
            seen.add(result.parent_id)
            unique.append(result)
            if len(unique) >= limit:
                break
        return unique
