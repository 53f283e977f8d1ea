"""
Tests for the embedding index
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.context_payload import ContextBlock
from app.core.embedding_index import (
    EmbeddingIndex,
    OpenAIEmbedder,
    cosine_similarity,
    create_context_chunks,
    split_into_sentences,
)
from app.db.repository import EmbeddingRepository
from app.utils.exceptions import ConfigurationMissingError


class TestHelpers:
    """Test text and vector helpers"""

    def test_split_into_sentences(self):
        assert split_into_sentences("Persist drafts.  Refresh tokens.\r\nDone. ") == [
            "Persist drafts",
            "Refresh tokens",
            "Done",
        ]

    def test_cosine_similarity(self):
        assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([0, 0], [1, 1]) == 0.0


class TestCreateContextChunks:
    """Test fixed-size chunking of context blocks"""

    def test_windows_per_block(self):
        blocks = [
            ContextBlock("doc", "abcd  efgh\nij", label="Doc", source="persistency-layer"),
            ContextBlock("other", "xyz"),
        ]

        chunks = create_context_chunks(blocks, chunk_size=5, max_chunks=10)

        assert [(c.id, c.content) for c in chunks] == [
            ("doc#0", "abcd"),
            ("doc#1", "efgh"),
            ("doc#2", "ij"),
            ("other#0", "xyz"),
        ]
        assert chunks[0].label == "Doc"
        assert chunks[3].label == "other"
        assert chunks[1].metadata == {"parent_id": "doc", "chunk_index": 1, "source": "persistency-layer"}

    def test_global_cap(self):
        blocks = [ContextBlock("a", "x" * 20), ContextBlock("b", "y" * 20)]

        chunks = create_context_chunks(blocks, chunk_size=10, max_chunks=3)

        assert [c.id for c in chunks] == ["a#0", "a#1", "b#0"]

    def test_blank_block_yields_nothing(self):
        assert create_context_chunks([ContextBlock("a", "   \n ")], chunk_size=10, max_chunks=5) == []


class TestEmbeddingIndex:
    """Test indexing and similarity search"""

    @pytest.mark.asyncio
    async def test_index_stores_one_row_per_sentence(self, db, fake_embedder):
        index = EmbeddingIndex(embedder=fake_embedder)

        resource, count = await index.index("Persist drafts to a branch. Tokens refresh quietly.")

        assert count == 2
        rows = await EmbeddingRepository().list_embeddings()
        assert sorted(r.content for r in rows) == ["Persist drafts to a branch", "Tokens refresh quietly"]
        assert all(r.resource_id == resource.id for r in rows)
        assert fake_embedder.calls == [["Persist drafts to a branch", "Tokens refresh quietly"]]

    @pytest.mark.asyncio
    async def test_durable_results_deduplicated_by_resource(self, db, fake_embedder):
        index = EmbeddingIndex(embedder=fake_embedder)
        resource, _ = await index.index("Persist the draft. Persist the branch.")

        results = await index.search("persist draft")

        assert len(results) == 1
        assert results[0].source == "database"
        assert results[0].parent_id == resource.id
        assert results[0].name == "Persist the draft"

    @pytest.mark.asyncio
    async def test_merges_context_and_sorts(self, db, fake_embedder):
        index = EmbeddingIndex(embedder=fake_embedder)
        await index.index("Tokens refresh before expiry")

        results = await index.search(
            "token bootstrap",
            context_blocks=[
                ContextBlock("boot", "Bootstrap token rules", label="ai/ai-bootstrap.mdc"),
                ContextBlock("unrelated", "Nothing relevant here"),
            ],
        )

        assert [r.source for r in results] == ["context", "database"]
        assert results[0].name == "ai/ai-bootstrap.mdc"
        assert results[0].metadata["parent_id"] == "boot"
        assert results[0].metadata["preview"] == "Bootstrap token rules"
        assert results[0].similarity >= results[1].similarity

    @pytest.mark.asyncio
    async def test_same_parent_across_sources_collapses(self, db, fake_embedder):
        index = EmbeddingIndex(embedder=fake_embedder)
        resource, _ = await index.index("Persist the session cache")

        results = await index.search(
            "persist session cache",
            context_blocks=[ContextBlock(resource.id, "persist session")],
        )

        assert len(results) == 1
        assert results[0].source == "database"

    @pytest.mark.asyncio
    async def test_threshold_and_limit_reach_repository(self):
        embedder = MagicMock()
        embedder.embed = AsyncMock(side_effect=[
            [[1.0, 0.0]],
            [[3.0, 4.0]],
        ])
        repo = MagicMock()
        repo.search_similar = AsyncMock(return_value=[])
        index = EmbeddingIndex(embedder=embedder, repo=repo, durable_threshold=0.6, context_threshold=0.6)

        results = await index.search("query", context_blocks=[ContextBlock("c", "chunk")], limit=3)

        repo.search_similar.assert_awaited_once_with([1.0, 0.0], 0.6, 3)
        # Context matches may equal the threshold
        assert [r.parent_id for r in results] == ["c"]
        assert results[0].similarity == pytest.approx(0.6)

    def test_default_thresholds(self):
        index = EmbeddingIndex(embedder=MagicMock(), repo=MagicMock())
        assert index.durable_threshold == 0.3
        assert index.context_threshold == 0.25

    @pytest.mark.asyncio
    async def test_limit(self, db, fake_embedder):
        index = EmbeddingIndex(embedder=fake_embedder)
        blocks = [ContextBlock(f"b{i}", f"draft context {i}") for i in range(5)]

        results = await index.search("draft context", context_blocks=blocks, limit=2)

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_blank_query(self, db, fake_embedder):
        assert await EmbeddingIndex(embedder=fake_embedder).search("   ") == []
        assert fake_embedder.calls == []


class TestOpenAIEmbedder:
    """Test the OpenAI-backed embedder"""

    @pytest.mark.asyncio
    async def test_requires_api_key(self):
        embedder = OpenAIEmbedder(api_key="")
        embedder.api_key = None

        with pytest.raises(ConfigurationMissingError):
            await embedder.embed(["text"])

    @pytest.mark.asyncio
    async def test_calls_embeddings_endpoint(self):
        embedder = OpenAIEmbedder(api_key="sk-test", model="text-embedding-3-small")
        client = MagicMock()
        client.embeddings.create = AsyncMock(return_value=MagicMock(data=[
            MagicMock(embedding=[0.1, 0.2]),
            MagicMock(embedding=[0.3, 0.4]),
        ]))
        embedder._client = client

        vectors = await embedder.embed(["a", "b"])

        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        client.embeddings.create.assert_awaited_once_with(model="text-embedding-3-small", input=["a", "b"])

    @pytest.mark.asyncio
    async def test_empty_input_skips_request(self):
        embedder = OpenAIEmbedder(api_key="sk-test")
        embedder._client = MagicMock()

        assert await embedder.embed([]) == []


class TestEmbeddingRepositorySearch:
    """Test similarity ranking inside the repository"""

    @pytest.mark.asyncio
    async def test_threshold_is_exclusive(self, db):
        repo = EmbeddingRepository()
        await repo.create_resource("r", [
            ("at threshold", [3.0, 4.0]),
            ("above", [4.0, 3.0]),
            ("below", [0.0, 1.0]),
        ])

        matches = await repo.search_similar([1.0, 0.0], 0.6, 5)

        assert [m.content for m in matches] == ["above"]
        assert matches[0].similarity == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_best_matches_across_partitions(self, db):
        repo = EmbeddingRepository()
        first, _ = await repo.create_resource("first", [("weak", [1.0, 1.0]), ("exact", [2.0, 0.0])])
        second, _ = await repo.create_resource("second", [("close", [5.0, 1.0]), ("far", [1.0, 3.0])])

        matches = await repo.search_similar([1.0, 0.0], 0.3, 2, batch_size=1)

        assert [m.content for m in matches] == ["exact", "close"]
        assert [m.resource_id for m in matches] == [first.id, second.id]
        assert matches[0].similarity >= matches[1].similarity

    @pytest.mark.asyncio
    async def test_other_dimensions_skipped(self, db):
        repo = EmbeddingRepository()
        await repo.create_resource("r", [("three", [1.0, 0.0, 0.0]), ("two", [1.0, 0.0])])

        matches = await repo.search_similar([1.0, 0.0], 0.3, 5)

        assert [m.content for m in matches] == ["two"]

    @pytest.mark.asyncio
    async def test_empty_table(self, db):
        assert await EmbeddingRepository().search_similar([1.0, 0.0], 0.3, 5) == []
