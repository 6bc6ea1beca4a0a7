"""Optional RediSearch backend: vector KNN and full-text search over chat records.

The backend exists only when the Redis server has the search module. That is
probed once at startup (``VectorIndex.probe``) and the answer is frozen into
``Capabilities``. Without it every search method returns ``[]``, so callers
cannot tell "no backend" from "no matches".

Vectors are stored as float32 bytes in the ``embedding`` field of the record
hash; the index covers the ``{prefix}:chat:`` prefix, so evicting a record
removes its vector too.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from redis.commands.search.field import NumericField, TagField, TextField, VectorField
from redis.commands.search.query import Query
from redis.exceptions import RedisError, ResponseError

try:
    from redis.commands.search.index_definition import IndexDefinition, IndexType
except ImportError:  # redis-py < 6
    from redis.commands.search.indexDefinition import IndexDefinition, IndexType

from faq_cache.config import Settings
from faq_cache.keywords import extract_keywords
from faq_cache.observability import get_logger, metrics, timed

_log = get_logger("vector_index")


@dataclass(frozen=True)
class VectorMatch:
    id: str
    score: float


def to_bytes(vector: list[float]) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


class VectorIndex:
    """KNN and full-text search through the Redis search module."""

    def __init__(self, client, settings: Settings | None = None, available: bool = False):
        self.client = client
        self.settings = settings or Settings()
        self.available = available
        self.index_name = self.settings.index_name
        self.dimension = self.settings.embedding_dimension
        self._record_prefix = f"{self.settings.key_prefix}:chat:"

    # -- capability probing ------------------------------------------------

    @staticmethod
    def probe(client, settings: Settings) -> bool:
        """Return True if the search module answers and the index exists (or was created)."""
        if not settings.vector_search_enabled:
            _log.info("search_extension_disabled")
            return False
        try:
            client.ft(settings.index_name).info()
            _log.info("search_extension_available", index=settings.index_name, created=False)
            return True
        except ResponseError as exc:
            if "unknown command" in str(exc).lower():
                _log.info("search_extension_unavailable", reason=str(exc))
                return False
        except RedisError as exc:
            _log.warning("search_extension_probe_failed", error=str(exc))
            return False

        try:
            VectorIndex._create_index(client, settings)
        except RedisError as exc:
            _log.warning("search_index_create_failed", error=str(exc))
            return False
        _log.info("search_extension_available", index=settings.index_name, created=True)
        return True

    @staticmethod
    def _create_index(client, settings: Settings) -> None:
        schema = (
            TextField("question"),
            TagField("category"),
            NumericField("created_at"),
            VectorField(
                "embedding",
                "HNSW",
                {
                    "TYPE": "FLOAT32",
                    "DIM": settings.embedding_dimension,
                    "DISTANCE_METRIC": "COSINE",
                    "M": 16,
                    "EF_CONSTRUCTION": 200,
                },
            ),
        )
        client.ft(settings.index_name).create_index(
            schema,
            definition=IndexDefinition(prefix=[f"{settings.key_prefix}:chat:"], index_type=IndexType.HASH),
        )

    # -- writes --------------------------------------------------------------

    def add(self, record_id: str, vector: list[float]) -> bool:
        """Attach a vector to a stored record. Returns False on any failure."""
        if len(vector) != self.dimension:
            _log.warning("vector_dimension_mismatch", record_id=record_id,
                         expected=self.dimension, got=len(vector))
            return False
        try:
            self.client.hset(self._record_prefix + record_id, "embedding", to_bytes(vector))
        except RedisError as exc:
            metrics.inc("store_errors")
            _log.error("vector_add_failed", record_id=record_id, error=str(exc))
            return False
        metrics.inc("vectors_indexed")
        return True

    # -- search --------------------------------------------------------------

    def _record_id(self, doc) -> str | None:
        doc_id = getattr(doc, "id", None)
        if not isinstance(doc_id, str) or not doc_id.startswith(self._record_prefix):
            return None
        return doc_id[len(self._record_prefix):] or None

    def knn(self, vector: list[float], k: int, min_score: float) -> list[VectorMatch]:
        """Nearest records by cosine similarity, best first, filtered by ``min_score``."""
        if not self.available or not vector:
            return []
        if len(vector) != self.dimension:
            _log.warning("vector_dimension_mismatch", expected=self.dimension, got=len(vector))
            return []
        query = (
            Query(f"*=>[KNN {int(k)} @embedding $vec AS vector_distance]")
            .return_fields("vector_distance")
            .sort_by("vector_distance")
            .paging(0, int(k))
            .dialect(2)
        )
        with timed("vector_knn"):
            try:
                res = self.client.ft(self.index_name).search(query, query_params={"vec": to_bytes(vector)})
            except RedisError as exc:
                metrics.inc("store_errors")
                _log.error("vector_knn_failed", error=str(exc))
                return []

        matches = []
        for doc in getattr(res, "docs", None) or []:
            record_id = self._record_id(doc)
            try:
                # COSINE distance in RediSearch is 1 - cosine similarity
                similarity = 1.0 - float(getattr(doc, "vector_distance"))
            except (AttributeError, TypeError, ValueError):
                record_id = None
            if record_id is None:
                metrics.inc("search_docs_malformed")
                continue
            if similarity >= min_score:
                matches.append(VectorMatch(id=record_id, score=round(similarity, 6)))
        matches.sort(key=lambda m: m.score, reverse=True)
        _log.debug("vector_knn_complete", returned=len(matches), k=k)
        return matches

    def full_text(self, query_text: str, limit: int) -> list[str]:
        """Record ids whose question matches any keyword of ``query_text``."""
        if not self.available or limit <= 0:
            return []
        keywords = sorted(extract_keywords(query_text))
        if not keywords:
            return []
        query = (
            Query(f"@question:({'|'.join(keywords)})")
            .no_content()
            .paging(0, int(limit))
            .dialect(2)
        )
        try:
            res = self.client.ft(self.index_name).search(query)
        except RedisError as exc:
            metrics.inc("store_errors")
            _log.error("full_text_search_failed", error=str(exc))
            return []
        ids = []
        for doc in getattr(res, "docs", None) or []:
            record_id = self._record_id(doc)
            if record_id is None:
                metrics.inc("search_docs_malformed")
                continue
            ids.append(record_id)
        return ids
