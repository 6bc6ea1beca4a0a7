"""Query orchestrator — the fallback chain behind ``find_best_answer``.

Stages, each of which may settle the answer:

1. Category pool: the 30 most recent records in the query's category.
2. Vector KNN (only when the search extension was found at startup and the
   query embeds): k=10, cosine >= 0.7, merged by id.
3. Keyword supplement when the pool has fewer than 5 records: intersection
   of the keyword-index sets of the query keywords.
4. Lexical scoring of the whole pool, keep >= 0.7.
5. AI scoring of the first 3 candidates when 4 found nothing, keep >= 0.7.
6. AI synthesis from up to 5 candidates when 4 and 5 found nothing.

The best stage-4/5 match is returned when its score exceeds 0.8; otherwise
the stage-6 suggestion, otherwise None. An empty pool returns None without
calling any external service.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from faq_cache._constants import (
    ACCEPT_THRESHOLD,
    AI_SCORE_CANDIDATES,
    AI_SUGGESTION_CONFIDENCE,
    AI_SYNTHESIS_CANDIDATES,
    CATEGORY_POOL_SIZE,
    KEYWORD_SUPPLEMENT_BELOW,
    KNN_K,
    KNN_MIN_SCORE,
    RETURN_THRESHOLD,
)
from faq_cache.classifier import CategoryClassifier
from faq_cache.config import Capabilities
from faq_cache.keywords import extract_keywords
from faq_cache.observability import get_logger, metrics, timed
from faq_cache.similarity import score as lexical_score
from faq_cache.store import ChatRecord, ChatRecordStore

_log = get_logger("orchestrator")

SOURCE_LEXICAL = "lexical"
SOURCE_AI_SCORE = "ai_score"
SOURCE_AI_SUGGESTION = "ai_suggestion"


@dataclass
class MatchResult:
    score: float
    matched_question: str
    answer: str
    source: str
    record_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "matched_question": self.matched_question,
            "message": {"score": self.score, "message": self.answer},
            "source": self.source,
            "record_id": self.record_id,
        }


@dataclass
class CandidatePool:
    """Insertion-ordered, id-deduplicated candidate records."""

    records: dict[str, ChatRecord] = field(default_factory=dict)

    def add(self, record: ChatRecord) -> bool:
        if record.id in self.records:
            return False
        self.records[record.id] = record
        return True

    def extend(self, records) -> int:
        return sum(1 for r in records if self.add(r))

    def __contains__(self, record_id: str) -> bool:
        return record_id in self.records

    def __len__(self) -> int:
        return len(self.records)

    def first(self, n: int) -> list[ChatRecord]:
        return list(self.records.values())[:n]

    def all(self) -> list[ChatRecord]:
        return list(self.records.values())


class QueryOrchestrator:
    """Composes store, vector index, embeddings and judge into one lookup."""

    def __init__(
        self,
        store: ChatRecordStore,
        capabilities: Capabilities,
        vector_index=None,
        embeddings=None,
        judge=None,
        classifier: CategoryClassifier | None = None,
        scorer: Callable[[str, str], float] = lexical_score,
    ):
        self.store = store
        self.capabilities = capabilities
        self.vector_index = vector_index
        self.embeddings = embeddings
        self.judge = judge
        self.classifier = classifier or store.classifier
        self.scorer = scorer

    @property
    def vector_search(self) -> bool:
        return (self.capabilities.vector_search
                and self.vector_index is not None
                and self.embeddings is not None)

    # -- candidate gathering --------------------------------------------------

    def gather_candidates(self, query: str, category: str | None = None) -> CandidatePool:
        """Stages 1-3: category pool, KNN merge, keyword supplement."""
        category = category or self.classifier.classify(query)
        pool = CandidatePool()
        pool.extend(self.store.search_by_category(category, CATEGORY_POOL_SIZE))
        from_category = len(pool)

        from_vector = 0
        # An empty store must not cost an embedding call.
        if self.vector_search and (from_category or self.store.total_records()):
            vector = self.embeddings.embed_query(query)
            if vector is not None:
                matches = self.vector_index.knn(vector, KNN_K, KNN_MIN_SCORE)
                new_ids = [m.id for m in matches if m.id not in pool]
                from_vector = pool.extend(self.store.get_many(new_ids))

        from_keywords = 0
        if len(pool) < KEYWORD_SUPPLEMENT_BELOW:
            keywords = extract_keywords(query)
            if keywords:
                ids = sorted(rid for rid in self.store.find_by_keywords(keywords) if rid not in pool)
                from_keywords = pool.extend(self.store.get_many(ids))

        _log.info("candidates_gathered", category=category, total=len(pool),
                  category_hits=from_category, vector_hits=from_vector,
                  keyword_hits=from_keywords)
        return pool

    # -- scoring stages -------------------------------------------------------

    def _lexical_matches(self, query: str, pool: CandidatePool) -> list[MatchResult]:
        matches = []
        for record in pool.all():
            s = self.scorer(query, record.question)
            if s >= ACCEPT_THRESHOLD:
                matches.append(MatchResult(s, record.question, record.answer, SOURCE_LEXICAL, record.id))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def _ai_matches(self, query: str, pool: CandidatePool) -> list[MatchResult]:
        if self.judge is None or not self.judge.available:
            return []
        matches = []
        for record in pool.first(AI_SCORE_CANDIDATES):
            s = self.judge.score(query, record.question)
            if s is not None and s >= ACCEPT_THRESHOLD:
                matches.append(MatchResult(s, record.question, record.answer, SOURCE_AI_SCORE, record.id))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def _ai_suggestion(self, query: str, pool: CandidatePool) -> MatchResult | None:
        if self.judge is None or not self.judge.available:
            return None
        context = [(r.question, r.answer) for r in pool.first(AI_SYNTHESIS_CANDIDATES)]
        answer = self.judge.synthesize(query, context)
        if answer is None:
            return None
        return MatchResult(AI_SUGGESTION_CONFIDENCE, query, answer, SOURCE_AI_SUGGESTION)

    # -- entry points ---------------------------------------------------------

    def find_best_answer(self, query: str) -> MatchResult | None:
        """Run the fallback chain. Returns None when no stage qualifies."""
        if not query or not query.strip():
            return None
        metrics.inc("faq_lookups")
        with timed("find_best_answer", _log):
            pool = self.gather_candidates(query)
            if not len(pool):
                metrics.inc("faq_misses")
                _log.info("faq_miss", reason="empty_pool")
                return None

            matches = self._lexical_matches(query, pool)
            suggestion = None
            if not matches:
                matches = self._ai_matches(query, pool)
            if not matches:
                suggestion = self._ai_suggestion(query, pool)

            if matches and matches[0].score > RETURN_THRESHOLD:
                best = matches[0]
                metrics.inc(f"faq_hits_{best.source}")
                _log.info("faq_hit", source=best.source, score=best.score, record_id=best.record_id)
                return best
            if suggestion is not None:
                metrics.inc("faq_ai_suggestions")
                _log.info("faq_hit", source=suggestion.source, score=suggestion.score)
                return suggestion

            metrics.inc("faq_misses")
            _log.info("faq_miss", reason="below_threshold",
                      best=matches[0].score if matches else None, pool=len(pool))
            return None

    def search_chat(self, query: str, limit: int = CATEGORY_POOL_SIZE) -> list[ChatRecord]:
        """Category-recency records plus full-text hits, de-duplicated by id."""
        if not query or not query.strip():
            return []
        category = self.classifier.classify(query)
        pool = CandidatePool()
        pool.extend(self.store.search_by_category(category, limit))
        if self.capabilities.search_extension and self.vector_index is not None:
            ids = [rid for rid in self.vector_index.full_text(query, limit) if rid not in pool]
            pool.extend(self.store.get_many(ids))
        return pool.all()
