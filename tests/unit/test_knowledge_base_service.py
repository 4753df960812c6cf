"""Unit tests for KnowledgeBaseService."""

from __future__ import annotations

import pytest

from semantic_kb.models.knowledge_base import KnowledgeBaseRecord, RenameJournalEntry
from semantic_kb.utils.errors import (
    IngestionLockedError,
    KnowledgeBaseError,
    NotFoundError,
    VectorStoreError,
)
from semantic_kb.utils.naming import collection_name

TS1 = "2026-01-01T00:00:00.000000+00:00"
TS2 = "2026-01-02T00:00:00.000000+00:00"
TOKEN = "3f2a9c"


async def _seed(vector_store, name: str, rows: list, **extra) -> None:  # noqa: ANN001, ANN003
    metadata = {"knowledge_base": True, "kb_name": name, "schema_version": "1.0.0", **extra}
    await vector_store.create_collection_with_rows(collection_name(name), rows, metadata=metadata)


def _record(name: str, **updates) -> KnowledgeBaseRecord:  # noqa: ANN003
    base = {
        "name": name,
        "collection_name": collection_name(name),
        "created_at": TS1,
        "updated_at": TS1,
    }
    return KnowledgeBaseRecord(**{**base, **updates})


@pytest.fixture()
async def docs(vector_store, row_factory):  # noqa: ANN001, ANN201
    rows = [
        row_factory("docs", "a.md", "alpha", TS1, chunk_index=0, seq=0, chunk_type="heading"),
        row_factory("docs", "a.md", "beta", TS1, chunk_index=1, seq=1),
        row_factory("docs", "b.pdf", "gamma", TS1, chunk_index=0, seq=2, document_type="pdf"),
        row_factory("docs", "a.md", "delta", TS2, chunk_index=0, seq=0),
    ]
    await _seed(vector_store, "docs", rows)
    return vector_store.collections[collection_name("docs")]


class TestListAndStats:
    @pytest.mark.asyncio
    async def test_list_includes_tagged_collections_and_empty_records(
        self, kb_service, vector_store, registry, docs, row_factory  # noqa: ANN001
    ) -> None:
        await vector_store.create_collection_with_rows(
            "unrelated", [row_factory("x", "x.md", "x")], metadata={"owner": "other"}
        )
        await registry.upsert_record(_record("empty", source_path="/data/empty"))

        listed = await kb_service.list_knowledge_bases()

        assert [kb.name for kb in listed] == ["docs", "empty"]
        docs_meta = listed[0]
        assert docs_meta.chunk_count == 4
        assert docs_meta.file_count == 2
        assert docs_meta.document_types == {"markdown": 1, "pdf": 1}
        assert docs_meta.last_ingestion == TS2
        assert listed[1].chunk_count == 0
        assert listed[1].source_path == "/data/empty"

    @pytest.mark.asyncio
    async def test_stats(self, kb_service, registry, docs) -> None:  # noqa: ANN001
        await registry.upsert_record(_record("docs", source_path="/src/docs"))

        stats = await kb_service.get_stats("Docs")

        assert stats.name == "docs"
        assert stats.collection_name == "kb_docs_1_0_0"
        assert stats.chunk_count == 4
        assert stats.file_count == 2
        assert [(c.type, c.count) for c in stats.chunk_types] == [("paragraph", 3), ("heading", 1)]
        assert stats.size_bytes == len("alpha") + len("beta") + len("gamma") + len("delta")
        assert stats.last_ingestion == TS2
        assert [(s.ingestion_timestamp, s.chunk_count) for s in stats.chunk_sets] == [(TS1, 3), (TS2, 1)]
        assert stats.source_path == "/src/docs"

    @pytest.mark.asyncio
    async def test_stats_counts_multibyte_content(self, kb_service, vector_store, row_factory) -> None:  # noqa: ANN001
        await _seed(vector_store, "intl", [row_factory("intl", "a.md", "héllo")])
        stats = await kb_service.get_stats("intl")
        assert stats.size_bytes == 6

    @pytest.mark.asyncio
    async def test_stats_missing(self, kb_service) -> None:  # noqa: ANN001
        with pytest.raises(NotFoundError):
            await kb_service.get_stats("missing")

    @pytest.mark.asyncio
    async def test_list_documents(self, kb_service, docs) -> None:  # noqa: ANN001
        documents = await kb_service.list_documents("docs")

        assert [(d.file_path, d.chunk_count) for d in documents] == [("a.md", 3), ("b.pdf", 1)]
        assert documents[0].last_ingestion == TS2
        assert documents[1].document_type == "pdf"

    @pytest.mark.asyncio
    async def test_list_documents_wraps_store_failure(self, kb_service, docs, monkeypatch) -> None:  # noqa: ANN001
        async def broken_scan(where=None, include_vectors=False, limit=None):  # noqa: ANN001, ANN202
            raise VectorStoreError("scan failed", provider_name="in-memory")

        monkeypatch.setattr(docs, "query_all", broken_scan)

        with pytest.raises(KnowledgeBaseError, match="scan failed") as exc_info:
            await kb_service.list_documents("docs")
        assert isinstance(exc_info.value.__cause__, VectorStoreError)


class TestChunkSets:
    @pytest.mark.asyncio
    async def test_delete_chunk_set_removes_only_that_run(self, kb_service, docs) -> None:  # noqa: ANN001
        deleted = await kb_service.delete_chunk_set("docs", TS1)

        assert deleted == 3
        assert [r.content for r in docs.rows] == ["delta"]
        assert docs.delete_calls == [{"ingestion_timestamp": TS1}]

    @pytest.mark.asyncio
    async def test_unknown_timestamp_returns_zero_without_delete(self, kb_service, docs) -> None:  # noqa: ANN001
        deleted = await kb_service.delete_chunk_set("docs", "2020-01-01T00:00:00.000000+00:00")

        assert deleted == 0
        assert docs.delete_calls == []
        assert len(docs.rows) == 4

    @pytest.mark.asyncio
    async def test_delete_chunk_set_refreshes_record(self, kb_service, registry, docs) -> None:  # noqa: ANN001
        await registry.upsert_record(_record("docs", chunk_count=4, last_ingestion=TS2))

        await kb_service.delete_chunk_set("docs", TS2)

        record = registry.records["docs"]
        assert record.chunk_count == 3
        assert record.last_ingestion == TS1

    @pytest.mark.asyncio
    async def test_delete_chunk_set_missing_kb(self, kb_service) -> None:  # noqa: ANN001
        with pytest.raises(NotFoundError):
            await kb_service.delete_chunk_set("missing", TS1)


class TestDeleteDocument:
    @pytest.mark.asyncio
    async def test_deletes_all_chunks_of_a_file(self, kb_service, docs) -> None:  # noqa: ANN001
        assert await kb_service.delete_document("docs", "a.md") == 3
        assert {r.file_path for r in docs.rows} == {"b.pdf"}

    @pytest.mark.asyncio
    async def test_unknown_file_returns_zero(self, kb_service, docs) -> None:  # noqa: ANN001
        assert await kb_service.delete_document("docs", "nope.md") == 0
        assert docs.delete_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_path", ["", "   ", "/etc/passwd", "../secret.md", "a/../../b.md", "C:\\x.md"])
    async def test_rejects_unsafe_paths(self, kb_service, docs, bad_path: str) -> None:  # noqa: ANN001
        with pytest.raises(KnowledgeBaseError):
            await kb_service.delete_document("docs", bad_path)
        assert docs.delete_calls == []


class TestCreateAndDelete:
    @pytest.mark.asyncio
    async def test_create_registers_empty_record(self, kb_service, registry, vector_store) -> None:  # noqa: ANN001
        created = await kb_service.create_knowledge_base("New KB")

        assert created.name == "new_kb"
        assert created.chunk_count == 0
        assert "new_kb" in registry.records
        assert vector_store.collections == {}

    @pytest.mark.asyncio
    async def test_create_existing_fails(self, kb_service, docs) -> None:  # noqa: ANN001
        with pytest.raises(KnowledgeBaseError):
            await kb_service.create_knowledge_base("docs")

    @pytest.mark.asyncio
    async def test_create_invalid_name(self, kb_service) -> None:  # noqa: ANN001
        with pytest.raises(KnowledgeBaseError):
            await kb_service.create_knowledge_base("!!!")

    @pytest.mark.asyncio
    async def test_delete_drops_collection_and_record(
        self, kb_service, registry, vector_store, docs  # noqa: ANN001
    ) -> None:
        await registry.upsert_record(_record("docs"))

        await kb_service.delete("docs")

        assert vector_store.collections == {}
        assert registry.records == {}
        assert registry.locks == {}

    @pytest.mark.asyncio
    async def test_delete_record_only(self, kb_service, registry) -> None:  # noqa: ANN001
        await registry.upsert_record(_record("empty"))
        await kb_service.delete("empty")
        assert registry.records == {}

    @pytest.mark.asyncio
    async def test_delete_missing(self, kb_service) -> None:  # noqa: ANN001
        with pytest.raises(NotFoundError):
            await kb_service.delete("missing")

    @pytest.mark.asyncio
    async def test_delete_while_locked(self, kb_service, registry, docs) -> None:  # noqa: ANN001
        registry.locks["docs"] = "someone-else"
        with pytest.raises(IngestionLockedError):
            await kb_service.delete("docs")
        assert len(docs.rows) == 4
        assert docs.delete_calls == []

    @pytest.mark.asyncio
    async def test_delete_wraps_store_failure(
        self, kb_service, registry, vector_store, docs, monkeypatch  # noqa: ANN001
    ) -> None:
        await registry.upsert_record(_record("docs"))

        async def refuse_drop(name):  # noqa: ANN001, ANN202
            raise VectorStoreError("collection busy", provider_name="in-memory")

        monkeypatch.setattr(vector_store, "delete_collection", refuse_drop)

        with pytest.raises(KnowledgeBaseError, match="collection busy") as exc_info:
            await kb_service.delete("docs")

        assert isinstance(exc_info.value.__cause__, VectorStoreError)
        assert "docs" in registry.records
        assert registry.locks == {}

    @pytest.mark.asyncio
    async def test_create_while_locked(self, kb_service, registry) -> None:  # noqa: ANN001
        registry.locks["new_kb"] = "ingest-run"
        with pytest.raises(IngestionLockedError):
            await kb_service.create_knowledge_base("new_kb")
        assert registry.records == {}


class TestRename:
    @pytest.mark.asyncio
    async def test_rename_preserves_rows_and_stamps_provenance(
        self, kb_service, registry, vector_store, docs  # noqa: ANN001
    ) -> None:
        await registry.upsert_record(_record("docs", source_path="/src/docs"))

        renamed = await kb_service.rename("docs", "Manuals")

        assert renamed.name == "manuals"
        assert renamed.chunk_count == 4
        assert collection_name("docs") not in vector_store.collections
        target = vector_store.collections[collection_name("manuals")]
        assert len(target.rows) == 4
        assert {r.knowledge_base for r in target.rows} == {"manuals"}
        assert {r.renamed_from for r in target.rows} == {"docs"}
        assert all(r.renamed_at for r in target.rows)
        assert all(r.vector for r in target.rows)
        assert target.metadata["kb_name"] == "manuals"
        assert target.metadata["knowledge_base"] is True
        assert "docs" not in registry.records
        assert registry.records["manuals"].source_path == "/src/docs"
        assert registry.journal == {}
        assert registry.locks == {}

    @pytest.mark.asyncio
    async def test_rename_keeps_chunk_sets(self, kb_service, docs) -> None:  # noqa: ANN001
        await kb_service.rename("docs", "manuals")
        stats = await kb_service.get_stats("manuals")
        assert [s.ingestion_timestamp for s in stats.chunk_sets] == [TS1, TS2]

    @pytest.mark.asyncio
    async def test_rename_empty_collection(self, kb_service, vector_store) -> None:  # noqa: ANN001
        await vector_store.get_or_create_collection(
            collection_name("empty"), {"knowledge_base": True, "kb_name": "empty"}
        )
        renamed = await kb_service.rename("empty", "still_empty")
        assert renamed.chunk_count == 0
        assert collection_name("still_empty") in vector_store.collections
        assert collection_name("empty") not in vector_store.collections

    @pytest.mark.asyncio
    async def test_same_name(self, kb_service, docs) -> None:  # noqa: ANN001
        with pytest.raises(KnowledgeBaseError):
            await kb_service.rename("docs", "DOCS")

    @pytest.mark.asyncio
    async def test_missing_source(self, kb_service) -> None:  # noqa: ANN001
        with pytest.raises(NotFoundError):
            await kb_service.rename("missing", "other")

    @pytest.mark.asyncio
    async def test_target_exists(self, kb_service, vector_store, docs, row_factory) -> None:  # noqa: ANN001
        await _seed(vector_store, "other", [row_factory("other")])
        with pytest.raises(KnowledgeBaseError):
            await kb_service.rename("docs", "other")
        assert len(docs.rows) == 4

    @pytest.mark.asyncio
    async def test_failed_copy_rolls_back(
        self, kb_service, registry, vector_store, docs, monkeypatch  # noqa: ANN001
    ) -> None:
        async def broken_count(where=None):  # noqa: ANN001, ANN202
            return 0

        original_create = vector_store.create_collection_with_rows

        async def create_and_break(name, rows, metadata=None):  # noqa: ANN001, ANN202
            handle = await original_create(name, rows, metadata)
            monkeypatch.setattr(handle, "count_rows", broken_count)
            return handle

        monkeypatch.setattr(vector_store, "create_collection_with_rows", create_and_break)

        with pytest.raises(KnowledgeBaseError, match="verification failed"):
            await kb_service.rename("docs", "manuals")

        assert collection_name("manuals") not in vector_store.collections
        assert len(docs.rows) == 4
        assert registry.journal == {}
        assert registry.locks == {}

    @pytest.mark.asyncio
    async def test_target_created_mid_rename_is_kept(
        self, kb_service, registry, vector_store, docs, row_factory, monkeypatch  # noqa: ANN001
    ) -> None:
        original_begin = registry.begin_rename

        async def begin_then_collide(entry):  # noqa: ANN001, ANN202
            await original_begin(entry)
            await _seed(vector_store, "manuals", [row_factory("manuals", content="written elsewhere")])

        monkeypatch.setattr(registry, "begin_rename", begin_then_collide)

        with pytest.raises(KnowledgeBaseError) as exc_info:
            await kb_service.rename("docs", "manuals")

        assert isinstance(exc_info.value.__cause__, VectorStoreError)
        survivor = vector_store.collections[collection_name("manuals")]
        assert [r.content for r in survivor.rows] == ["written elsewhere"]
        assert len(docs.rows) == 4
        assert registry.journal == {}
        assert registry.locks == {}

    @pytest.mark.asyncio
    async def test_locked_target_name_rejects_rename(
        self, kb_service, registry, vector_store, docs  # noqa: ANN001
    ) -> None:
        registry.locks["manuals"] = "ingest-run"

        with pytest.raises(IngestionLockedError):
            await kb_service.rename("docs", "manuals")

        assert collection_name("manuals") not in vector_store.collections
        assert registry.locks == {"manuals": "ingest-run"}
        assert registry.journal == {}

    @pytest.mark.asyncio
    async def test_target_claimed_before_lock_is_rechecked(
        self, kb_service, registry, vector_store, docs, monkeypatch  # noqa: ANN001
    ) -> None:
        original_acquire = registry.acquire_lock

        async def acquire_after_claim(name, owner, ttl_seconds):  # noqa: ANN001, ANN202
            if name == "manuals":
                await registry.upsert_record(_record("manuals"))
            await original_acquire(name, owner, ttl_seconds)

        monkeypatch.setattr(registry, "acquire_lock", acquire_after_claim)

        with pytest.raises(KnowledgeBaseError, match="already exists"):
            await kb_service.rename("docs", "manuals")

        assert collection_name("manuals") not in vector_store.collections
        assert registry.journal == {}
        assert registry.locks == {}

    @pytest.mark.asyncio
    async def test_store_failure_is_wrapped(
        self, kb_service, vector_store, docs, monkeypatch  # noqa: ANN001
    ) -> None:
        async def refuse_create(name, rows, metadata=None):  # noqa: ANN001, ANN202
            raise VectorStoreError("quota exceeded", provider_name="in-memory")

        monkeypatch.setattr(vector_store, "create_collection_with_rows", refuse_create)

        with pytest.raises(KnowledgeBaseError, match="quota exceeded") as exc_info:
            await kb_service.rename("docs", "manuals")

        assert isinstance(exc_info.value.__cause__, VectorStoreError)
        assert len(docs.rows) == 4


class TestRecovery:
    def _entry(self, phase: str, expected_rows: int = 4) -> RenameJournalEntry:
        return RenameJournalEntry(
            old_name="docs",
            new_name="manuals",
            old_collection=collection_name("docs"),
            new_collection=collection_name("manuals"),
            phase=phase,
            expected_rows=expected_rows,
            started_at=TS1,
            rename_token=TOKEN,
        )

    @pytest.mark.asyncio
    async def test_nothing_pending(self, kb_service) -> None:  # noqa: ANN001
        assert await kb_service.recover_pending_renames() == 0

    @pytest.mark.asyncio
    async def test_partial_copy_is_rolled_back(
        self, kb_service, registry, vector_store, docs, row_factory  # noqa: ANN001
    ) -> None:
        await _seed(
            vector_store, "manuals", [row_factory("manuals", content="partial")], rename_token=TOKEN
        )
        await registry.begin_rename(self._entry("copying"))

        assert await kb_service.recover_pending_renames() == 1

        assert collection_name("manuals") not in vector_store.collections
        assert len(docs.rows) == 4
        assert registry.journal == {}

    @pytest.mark.asyncio
    async def test_collection_not_created_by_rename_is_kept(
        self, kb_service, registry, vector_store, docs  # noqa: ANN001
    ) -> None:
        rows = [r.with_updates(knowledge_base="manuals") for r in docs.rows]
        await _seed(vector_store, "manuals", rows)
        await registry.begin_rename(self._entry("copying"))

        assert await kb_service.recover_pending_renames() == 1

        assert len(vector_store.collections[collection_name("manuals")].rows) == 4
        assert len(docs.rows) == 4
        assert registry.journal == {}

    @pytest.mark.asyncio
    async def test_complete_copy_is_rolled_forward(
        self, kb_service, registry, vector_store, docs  # noqa: ANN001
    ) -> None:
        rows = [r.with_updates(knowledge_base="manuals") for r in docs.rows]
        await _seed(vector_store, "manuals", rows, rename_token=TOKEN)
        await registry.upsert_record(_record("docs"))
        await registry.begin_rename(self._entry("copying"))

        assert await kb_service.recover_pending_renames() == 1

        assert collection_name("docs") not in vector_store.collections
        assert len(vector_store.collections[collection_name("manuals")].rows) == 4
        assert "manuals" in registry.records
        assert registry.journal == {}

    @pytest.mark.asyncio
    async def test_committing_phase_is_rolled_forward(
        self, kb_service, registry, vector_store, docs  # noqa: ANN001
    ) -> None:
        rows = [r.with_updates(knowledge_base="manuals") for r in docs.rows]
        await _seed(vector_store, "manuals", rows)
        await registry.begin_rename(self._entry("committing"))

        await kb_service.recover_pending_renames()

        assert collection_name("docs") not in vector_store.collections
        assert registry.journal == {}


class TestListeners:
    @pytest.mark.asyncio
    async def test_mutations_notify_listeners(self, kb_service, docs) -> None:  # noqa: ANN001
        seen: list[str] = []

        async def listener(kb: str) -> None:
            seen.append(kb)

        kb_service.add_mutation_listener(listener)
        await kb_service.delete_chunk_set("docs", TS2)
        await kb_service.rename("docs", "manuals")
        await kb_service.delete("manuals")

        assert seen == ["docs", "docs", "manuals", "manuals"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_mutation(self, kb_service, docs) -> None:  # noqa: ANN001
        async def listener(kb: str) -> None:
            raise RuntimeError("boom")

        kb_service.add_mutation_listener(listener)
        assert await kb_service.delete_chunk_set("docs", TS1) == 3
