"""
VectorProjector — rebuild a user's vector points from the cache.

Safe to run at any time: point ids are deterministic, and rows whose
canonical text is unchanged since their last projection are skipped
without re-embedding.
"""

import hashlib
import logging
from dataclasses import dataclass

from ..cache.items import TABLES, CacheStore
from ..models import SourceKind
from .embeddings import Embedder
from .index import VectorIndex
from .text import POINT_TYPES, canonical_text, point_id

logger = logging.getLogger(__name__)


@dataclass
class ProjectionResult:
    projected: int = 0
    skipped: int = 0
    failed: int = 0


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class VectorProjector:
    def __init__(self, cache: CacheStore, index: VectorIndex, embedder: Embedder) -> None:
        self._cache = cache
        self._index = index
        self._embedder = embedder

    async def project_user(
        self, user_id: int, kinds: tuple[SourceKind, ...] | None = None
    ) -> ProjectionResult:
        """
        Project every cache row of the user. Raises VectorUnavailableError
        up front when the index cannot take writes; per-row failures are
        logged and counted.
        """
        self._index.require()
        result = ProjectionResult()

        for kind in kinds or tuple(TABLES):
            async for row in self._cache.iter_rows(user_id, kind):
                text = canonical_text(kind, row)
                if not text:
                    result.skipped += 1
                    continue
                pid = point_id(kind, user_id, row["id"])
                digest = content_hash(text)
                if await self._index.get_hash(pid, user_id) == digest:
                    result.skipped += 1
                    continue
                try:
                    vector = await self._embedder.embed(text)
                    await self._index.upsert(
                        pid,
                        vector,
                        {
                            "type": POINT_TYPES[kind],
                            "user_id": user_id,
                            "source_item_id": row["id"],
                            "content": text,
                        },
                        digest,
                    )
                except Exception as e:
                    logger.error("Projection of %s failed: %s", pid, e, exc_info=True)
                    result.failed += 1
                    continue
                result.projected += 1

        logger.info(
            "Vector projection for user %d: projected=%d skipped=%d failed=%d",
            user_id, result.projected, result.skipped, result.failed,
        )
        return result
