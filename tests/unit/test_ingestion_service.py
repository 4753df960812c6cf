"""Unit tests for IngestionService."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
import structlog

from semantic_kb.providers.converter.docling_converter import DoclingDocumentConverter
from semantic_kb.services.ingestion.chunker import DocumentChunker
from semantic_kb.services.ingestion.file_scanner import FileScanner
from semantic_kb.services.ingestion.ingestion_service import IngestionService
from semantic_kb.utils.errors import IngestionError, IngestionLockedError, VectorStoreError
from semantic_kb.utils.naming import collection_name

COLLECTION = collection_name("docs")


def _write(root: Path, rel: str, content: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture()
def source_dir(tmp_path: Path) -> Path:
    root = tmp_path / "source"
    _write(root, "guide.md", "# Guide\n\nHow to configure retries.\n\n## Backoff\n\nExponential backoff.\n")
    _write(root, "notes.txt", "Plain notes about billing.\n")
    _write(root, "data.json", '{"ignored": true}')
    _write(root, "sub/faq.md", "# FAQ\n\nWhat is the refund policy?\n")
    return root


class TestIngestDirectory:
    @pytest.mark.asyncio
    async def test_stores_all_chunks(self, ingestion_service, vector_store, source_dir) -> None:  # noqa: ANN001
        stats = await ingestion_service.ingest("Docs", source_dir)

        assert stats.knowledge_base == "docs"
        assert stats.total_files == 4
        assert stats.supported_files == 3
        assert stats.unsupported_by_extension == {".json": 1}
        assert stats.files_processed == 3
        assert stats.files_failed == 0
        assert stats.chunks_created > 0
        assert stats.chunks_stored == stats.chunks_created
        assert stats.chunks_failed_embedding == 0

        collection = vector_store.collections[COLLECTION]
        assert len(collection.rows) == stats.chunks_stored
        assert {r.file_path for r in collection.rows} == {"guide.md", "notes.txt", "sub/faq.md"}
        assert {r.ingestion_timestamp for r in collection.rows} == {stats.ingestion_timestamp}
        assert collection.metadata["knowledge_base"] is True
        assert collection.metadata["kb_name"] == "docs"
        assert collection.metadata["embedding_model"] == "mock-model"

    @pytest.mark.asyncio
    async def test_row_ids_and_provenance(self, ingestion_service, vector_store, source_dir) -> None:  # noqa: ANN001
        stats = await ingestion_service.ingest("docs", source_dir)

        rows = vector_store.collections[COLLECTION].rows
        ids = [r.id for r in rows]
        assert len(set(ids)) == len(ids)
        assert ids[0] == f"docs:{stats.ingestion_timestamp}:0"
        guide = [r for r in rows if r.file_path == "guide.md"]
        assert [r.chunk_index for r in guide] == list(range(len(guide)))
        assert all(r.document_type == "markdown" for r in guide)
        assert all(r.vector and len(r.vector) == 16 for r in rows)

    @pytest.mark.asyncio
    async def test_failed_embeddings_still_count_as_created(
        self, ingestion_service, embedding_provider, vector_store, source_dir  # noqa: ANN001
    ) -> None:
        embedding_provider.fail_markers = {"billing"}

        stats = await ingestion_service.ingest("docs", source_dir)

        assert stats.chunks_failed_embedding == 1
        assert stats.chunks_created == stats.chunks_stored + 1
        contents = [r.content for r in vector_store.collections[COLLECTION].rows]
        assert not any("billing" in c for c in contents)

    @pytest.mark.asyncio
    async def test_embedding_exception_aborts(
        self, ingestion_service, embedding_provider, registry, source_dir  # noqa: ANN001
    ) -> None:
        embedding_provider.raise_error = RuntimeError("model crashed")

        with pytest.raises(IngestionError, match="Embedding failed") as exc_info:
            await ingestion_service.ingest("docs", source_dir)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert registry.locks == {}

    @pytest.mark.asyncio
    async def test_no_supported_files_creates_nothing(
        self, ingestion_service, vector_store, registry, tmp_path  # noqa: ANN001
    ) -> None:
        _write(tmp_path, "data.json", "{}")

        stats = await ingestion_service.ingest("docs", tmp_path)

        assert stats.supported_files == 0
        assert stats.chunks_stored == 0
        assert vector_store.collections == {}
        assert "docs" not in registry.records

    @pytest.mark.asyncio
    async def test_not_a_directory(self, ingestion_service, tmp_path) -> None:  # noqa: ANN001
        with pytest.raises(IngestionError):
            await ingestion_service.ingest_directory("docs", tmp_path / "missing")

    @pytest.mark.asyncio
    async def test_missing_source_path_raises(
        self, ingestion_service, vector_store, registry, tmp_path  # noqa: ANN001
    ) -> None:
        with pytest.raises(IngestionError, match="does not exist"):
            await ingestion_service.ingest("docs", tmp_path / "sourec")

        assert vector_store.collections == {}
        assert registry.records == {}

    @pytest.mark.asyncio
    async def test_invalid_name(self, ingestion_service, source_dir) -> None:  # noqa: ANN001
        with pytest.raises(IngestionError):
            await ingestion_service.ingest("!!!", source_dir)

    @pytest.mark.asyncio
    async def test_respects_ignore_files(self, ingestion_service, vector_store, source_dir) -> None:  # noqa: ANN001
        _write(source_dir, ".kbignore", "sub/\n")

        await ingestion_service.ingest("docs", source_dir)
        assert "sub/faq.md" not in {r.file_path for r in vector_store.collections[COLLECTION].rows}

        await ingestion_service.ingest("all", source_dir, respect_ignore_files=False)
        assert "sub/faq.md" in {
            r.file_path for r in vector_store.collections[collection_name("all")].rows
        }


class TestChunkSets:
    @pytest.mark.asyncio
    async def test_runs_get_distinct_increasing_timestamps(
        self, ingestion_service, vector_store, source_dir  # noqa: ANN001
    ) -> None:
        first = await ingestion_service.ingest("docs", source_dir)
        second = await ingestion_service.ingest("docs", source_dir)

        assert second.ingestion_timestamp > first.ingestion_timestamp
        collection = vector_store.collections[COLLECTION]
        assert len(collection.rows) == first.chunks_stored + second.chunks_stored

        deleted = await collection.delete_where({"ingestion_timestamp": first.ingestion_timestamp})
        assert deleted == first.chunks_stored
        assert {r.ingestion_timestamp for r in collection.rows} == {second.ingestion_timestamp}

    @pytest.mark.asyncio
    async def test_frozen_clock_still_yields_unique_timestamps(
        self, embedding_provider, vector_store, registry, source_dir  # noqa: ANN001
    ) -> None:
        frozen = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        service = IngestionService(
            file_scanner=FileScanner(),
            converter=DoclingDocumentConverter(),
            chunker=DocumentChunker(),
            embedding_provider=embedding_provider,
            vector_store=vector_store,
            registry=registry,
            clock=lambda: frozen,
        )

        first = await service.ingest("docs", source_dir)
        second = await service.ingest("docs", source_dir)

        assert first.ingestion_timestamp == "2026-03-01T12:00:00.000000+00:00"
        assert second.ingestion_timestamp == "2026-03-01T12:00:00.000001+00:00"

    @pytest.mark.asyncio
    async def test_replace_existing_prunes_earlier_runs(
        self, ingestion_service, vector_store, source_dir  # noqa: ANN001
    ) -> None:
        await ingestion_service.ingest("docs", source_dir)
        latest = await ingestion_service.ingest("docs", source_dir, replace_existing=True)

        rows = vector_store.collections[COLLECTION].rows
        assert {r.ingestion_timestamp for r in rows} == {latest.ingestion_timestamp}
        assert len(rows) == latest.chunks_stored


class TestFileLists:
    @pytest.mark.asyncio
    async def test_missing_file_is_reported_per_file(self, ingestion_service, vector_store, tmp_path) -> None:  # noqa: ANN001
        good = _write(tmp_path, "good.md", "# Good\n\nSome content.\n")

        result = await ingestion_service.ingest_files("docs", [good, tmp_path / "gone.md"])

        assert result.stats.files_processed == 1
        assert result.stats.files_failed == 1
        assert [e.file_path for e in result.errors] == ["gone.md"]
        assert {r.file_path for r in vector_store.collections[COLLECTION].rows} == {"good.md"}

    @pytest.mark.asyncio
    async def test_single_file_source(self, ingestion_service, registry, tmp_path) -> None:  # noqa: ANN001
        path = _write(tmp_path, "one.md", "# One\n\nSingle file.\n")

        stats = await ingestion_service.ingest("docs", path)

        assert stats.total_files == 1
        assert stats.files_processed == 1
        assert registry.records["docs"].source_path == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_unsupported_file_is_counted_not_processed(self, ingestion_service, tmp_path) -> None:  # noqa: ANN001
        path = _write(tmp_path, "data.json", "{}")
        result = await ingestion_service.ingest_files("docs", [path])
        assert result.stats.unsupported_by_extension == {".json": 1}
        assert result.stats.files_processed == 0
        assert result.errors == []


class TestLockingAndConsistency:
    @pytest.mark.asyncio
    async def test_held_lock_rejects_run(self, ingestion_service, registry, vector_store, source_dir) -> None:  # noqa: ANN001
        registry.locks["docs"] = "other-host:1:abcd"

        with pytest.raises(IngestionLockedError):
            await ingestion_service.ingest("docs", source_dir)

        assert vector_store.collections == {}
        assert registry.locks == {"docs": "other-host:1:abcd"}

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_rejected(
        self, ingestion_service, embedding_provider, vector_store, source_dir  # noqa: ANN001
    ) -> None:
        await ingestion_service.ingest("docs", source_dir)
        embedding_provider.dimension = 8

        with pytest.raises(IngestionError, match="dimensional"):
            await ingestion_service.ingest("docs", source_dir)

    @pytest.mark.asyncio
    async def test_registry_record_is_updated(self, ingestion_service, registry, source_dir) -> None:  # noqa: ANN001
        stats = await ingestion_service.ingest("docs", source_dir)

        record = registry.records["docs"]
        assert record.collection_name == COLLECTION
        assert record.source_path == str(source_dir.resolve())
        assert record.file_count == 3
        assert record.chunk_count == stats.chunks_stored
        assert record.document_types == {"markdown": 2, "text": 1}
        assert record.last_ingestion == stats.ingestion_timestamp
        assert record.embedding_dimension == 16

    @pytest.mark.asyncio
    async def test_collection_create_failure_is_fatal(
        self, ingestion_service, vector_store, registry, source_dir, monkeypatch  # noqa: ANN001
    ) -> None:
        seen: list[str] = []

        async def listener(kb: str) -> None:
            seen.append(kb)

        async def refuse_create(name, rows, metadata=None):  # noqa: ANN001, ANN202
            raise VectorStoreError("disk full", provider_name="in-memory")

        monkeypatch.setattr(vector_store, "create_collection_with_rows", refuse_create)
        ingestion_service.add_mutation_listener(listener)

        with pytest.raises(IngestionError, match="Storing chunks") as exc_info:
            await ingestion_service.ingest("docs", source_dir)

        assert isinstance(exc_info.value.__cause__, VectorStoreError)
        assert registry.records == {}
        assert registry.locks == {}
        assert seen == []

    @pytest.mark.asyncio
    async def test_append_failure_is_fatal(
        self, ingestion_service, vector_store, registry, source_dir, monkeypatch  # noqa: ANN001
    ) -> None:
        first = await ingestion_service.ingest("docs", source_dir)
        seen: list[str] = []

        async def listener(kb: str) -> None:
            seen.append(kb)

        async def refuse_append(rows):  # noqa: ANN001, ANN202
            raise VectorStoreError("write rejected", provider_name="in-memory")

        monkeypatch.setattr(vector_store.collections[COLLECTION], "append_rows", refuse_append)
        ingestion_service.add_mutation_listener(listener)

        with pytest.raises(IngestionError, match="write rejected") as exc_info:
            await ingestion_service.ingest("docs", source_dir)

        assert isinstance(exc_info.value.__cause__, VectorStoreError)
        assert registry.records["docs"].last_ingestion == first.ingestion_timestamp
        assert registry.records["docs"].chunk_count == first.chunks_stored
        assert registry.locks == {}
        assert seen == []

    @pytest.mark.asyncio
    async def test_one_embed_call_per_batch(
        self, ingestion_service, embedding_provider, source_dir  # noqa: ANN001
    ) -> None:
        # batch_size=2 over three supported files
        await ingestion_service.ingest("docs", source_dir)
        assert embedding_provider.embed_calls == 2

    @pytest.mark.asyncio
    async def test_batch_size_one_embeds_per_file(
        self, embedding_provider, vector_store, registry, source_dir  # noqa: ANN001
    ) -> None:
        service = IngestionService(
            file_scanner=FileScanner(),
            converter=DoclingDocumentConverter(),
            chunker=DocumentChunker(),
            embedding_provider=embedding_provider,
            vector_store=vector_store,
            registry=registry,
            batch_size=1,
        )

        stats = await service.ingest("docs", source_dir)

        assert stats.files_processed == 3
        assert embedding_provider.embed_calls == 3

    def test_rejects_non_positive_batch_size(self, embedding_provider, vector_store, registry) -> None:  # noqa: ANN001
        with pytest.raises(ValueError):
            IngestionService(
                file_scanner=FileScanner(),
                converter=DoclingDocumentConverter(),
                chunker=DocumentChunker(),
                embedding_provider=embedding_provider,
                vector_store=vector_store,
                registry=registry,
                batch_size=0,
            )


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_progress_phases(self, ingestion_service, source_dir) -> None:  # noqa: ANN001
        events: list[tuple[str, int, int]] = []

        await ingestion_service.ingest(
            "docs", source_dir, progress_callback=lambda p, c, t: events.append((p, c, t))
        )

        phases = [e[0] for e in events]
        assert phases[0] == "scanning"
        assert {"processing", "embedding", "storing"} <= set(phases)
        processing = [e for e in events if e[0] == "processing"]
        # batch_size=2 over three supported files
        assert [(c, t) for _, c, t in processing] == [(2, 3), (3, 3)]

    @pytest.mark.asyncio
    async def test_failing_progress_callback_is_ignored(self, ingestion_service, source_dir) -> None:  # noqa: ANN001
        def explode(phase: str, current: int, total: int) -> None:
            raise RuntimeError("display gone")

        stats = await ingestion_service.ingest("docs", source_dir, progress_callback=explode)
        assert stats.chunks_stored > 0

    @pytest.mark.asyncio
    async def test_listeners_notified_after_write(self, ingestion_service, source_dir, tmp_path) -> None:  # noqa: ANN001
        seen: list[str] = []

        async def listener(kb: str) -> None:
            seen.append(kb)

        ingestion_service.add_mutation_listener(listener)
        await ingestion_service.ingest("docs", source_dir)
        empty = tmp_path / "empty"
        empty.mkdir()
        await ingestion_service.ingest("other", empty)

        assert seen == ["docs"]

    @pytest.mark.asyncio
    async def test_kb_name_is_bound_for_log_events(self, ingestion_service, source_dir) -> None:  # noqa: ANN001
        bound: list[dict] = []

        def record(phase: str, current: int, total: int) -> None:
            if phase == "processing":
                bound.append(structlog.contextvars.get_contextvars())

        await ingestion_service.ingest("Docs", source_dir, progress_callback=record)

        assert bound
        assert all(ctx.get("kb_name") == "docs" for ctx in bound)
        assert "kb_name" not in structlog.contextvars.get_contextvars()
