"""Document ingestion pipeline for semantic-kb knowledge bases.

Orchestrates the full pipeline: **scan -> convert -> chunk -> embed -> store**.

Pipeline stages overview:

1. **Scan** (file_scanner.py / FileScanner) -- Walks a source directory,
   honours ``.gitignore``/``.kbignore`` and classifies every file as
   supported or unsupported for the active profile.

2. **Convert** (via IDocumentConverter) -- Reads text formats directly and
   hands office/PDF/audio files to the docling CLI, producing normalised
   markdown-like text.

3. **Chunk** (chunker.py / DocumentChunker) -- Splits that text along its
   structure (headings, tables, lists, code fences) into token-bounded
   chunks, with a sliding window as the fallback.

4. **Embed** (via IEmbeddingProvider) -- One batched call per file batch.

5. **Store** (via IVectorStoreProvider) -- Appends the batch to the
   knowledge base's collection, tagged with the run's ingestion timestamp.

The IngestionService class orchestrates all five stages and exposes
``ingest_directory``, ``ingest_files`` and the dispatching ``ingest``.
"""

from semantic_kb.services.ingestion.chunker import DocumentChunker
from semantic_kb.services.ingestion.file_scanner import FileScanner
from semantic_kb.services.ingestion.ingestion_service import IngestionService

__all__ = ["DocumentChunker", "FileScanner", "IngestionService"]
