"""FaqCache — wires settings, Redis, backends and the orchestrator together.

This is the surface the rest of the platform calls:

    cache = FaqCache.from_settings(load_config())
    rid = cache.save_chat(user_id, '{"question": "...", "answer": "..."}')
    hit = cache.search_similar_chat("ลืมรหัสผ่านทำยังไง")   # {} on miss
    rows = cache.search_chat("ลืมรหัสผ่านทำยังไง")
"""

from __future__ import annotations

from typing import Any

import redis

from faq_cache._constants import CATEGORIES, CATEGORY_POOL_SIZE
from faq_cache.classifier import CategoryClassifier
from faq_cache.config import Capabilities, Settings
from faq_cache.embeddings import EmbeddingGateway, build_provider
from faq_cache.judge import SemanticJudge, build_judge
from faq_cache.observability import get_logger, metrics
from faq_cache.orchestrator import MatchResult, QueryOrchestrator
from faq_cache.store import ChatRecordStore
from faq_cache.vector_index import VectorIndex

_log = get_logger("service")


class FaqCache:
    """Semantic FAQ cache facade."""

    def __init__(
        self,
        client,
        settings: Settings | None = None,
        embeddings: EmbeddingGateway | None = None,
        judge: SemanticJudge | None = None,
        capabilities: Capabilities | None = None,
        clock=None,
    ):
        self.settings = settings or Settings()
        self.client = client
        self.embeddings = embeddings
        self.judge = judge

        # Probed once; the result is fixed for the life of this instance.
        if capabilities is None:
            capabilities = Capabilities(
                search_extension=VectorIndex.probe(client, self.settings),
                embeddings=embeddings is not None,
            )
        self.capabilities = capabilities

        self.classifier = CategoryClassifier()
        self.vector_index = VectorIndex(client, self.settings, available=capabilities.search_extension)
        store_kwargs = {"clock": clock} if clock is not None else {}
        self.store = ChatRecordStore(
            client,
            self.settings,
            classifier=self.classifier,
            vector_index=self.vector_index,
            embeddings=embeddings,
            **store_kwargs,
        )
        if embeddings is not None and embeddings.cache is None:
            embeddings.cache = self.store
        self.orchestrator = QueryOrchestrator(
            self.store,
            capabilities,
            vector_index=self.vector_index,
            embeddings=embeddings,
            judge=judge,
            classifier=self.classifier,
        )
        _log.info(
            "faq_cache_init",
            search_extension=capabilities.search_extension,
            embeddings=capabilities.embeddings,
            judge=bool(judge and judge.available),
            max_per_category=self.settings.max_chat_per_category,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> FaqCache:
        client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.socket_timeout,
            socket_connect_timeout=settings.socket_timeout,
        )
        provider = build_provider(settings)
        embeddings = EmbeddingGateway(provider, settings) if provider is not None else None
        return cls(client, settings, embeddings=embeddings, judge=build_judge(settings))

    # -- exposed operations ---------------------------------------------------

    def save_chat(self, user_id: str, raw_message: str | dict) -> str | None:
        return self.store.save(user_id, raw_message)

    def find_best_answer(self, query: str) -> MatchResult | None:
        return self.orchestrator.find_best_answer(query)

    def search_similar_chat(self, query: str) -> dict[str, Any]:
        """Best cached answer as a dict, or ``{}`` when nothing qualifies."""
        result = self.orchestrator.find_best_answer(query)
        return result.to_dict() if result is not None else {}

    def search_chat(self, query: str, limit: int = CATEGORY_POOL_SIZE) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.orchestrator.search_chat(query, limit=limit)]

    def stats(self) -> dict[str, Any]:
        return {
            "buckets": {cat: self.store.bucket_size(cat) for cat in CATEGORIES},
            "max_per_category": self.settings.max_chat_per_category,
            "capabilities": {
                "search_extension": self.capabilities.search_extension,
                "embeddings": self.capabilities.embeddings,
                "vector_search": self.capabilities.vector_search,
                "judge": bool(self.judge and self.judge.available),
            },
            "metrics": metrics.summary(),
        }
