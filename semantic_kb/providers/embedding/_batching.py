"""Batch embedding with per-item failure isolation.

``embed_batch`` encodes non-empty texts in slices of ``batch_limit``.  When a
whole slice fails it retries the slice one text at a time, so a single
poisonous input costs one ``None`` rather than the batch.  A slice in which
no text can be encoded, a one-text slice included, raises ``EmbeddingError``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from semantic_kb.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

EncodeFn = Callable[[list[str]], Awaitable[list[list[float]]]]


async def embed_batch(
    texts: list[str],
    encode: EncodeFn,
    batch_limit: int,
    provider_name: str,
) -> list[list[float] | None]:
    results: list[list[float] | None] = [None] * len(texts)
    # Empty texts never reach the model.
    indexed = [(i, t) for i, t in enumerate(texts) if t and t.strip()]

    for start in range(0, len(indexed), batch_limit):
        window = indexed[start : start + batch_limit]
        try:
            vectors = await encode([t for _, t in window])
            if len(vectors) != len(window):
                raise ValueError(f"expected {len(window)} vectors, got {len(vectors)}")
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "embedding_batch_failed_retrying_items",
                provider=provider_name,
                batch_size=len(window),
                error=str(exc),
            )
            recovered = 0
            for i, text in window:
                try:
                    results[i] = (await encode([text]))[0]
                    recovered += 1
                except Exception as item_exc:  # noqa: BLE001
                    logger.warning(
                        "embedding_item_failed",
                        provider=provider_name,
                        index=i,
                        error=str(item_exc),
                    )
            if recovered == 0:
                raise EmbeddingError(
                    message=f"Every item of a {len(window)}-text batch failed: {exc}",
                    provider_name=provider_name,
                ) from exc
            continue
        for (i, _), vector in zip(window, vectors):
            results[i] = vector

    return results
