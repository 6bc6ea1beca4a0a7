#!/usr/bin/env python3
"""Tests for orchestrator.py — candidate gathering and the find_best_answer chain."""

import pytest

from faq_cache.config import Capabilities
from faq_cache.embeddings import EmbeddingGateway
from faq_cache.judge import NO_ANSWER, SemanticJudge
from faq_cache.observability import metrics
from faq_cache.orchestrator import (
    SOURCE_AI_SCORE,
    SOURCE_AI_SUGGESTION,
    SOURCE_LEXICAL,
    CandidatePool,
    MatchResult,
    QueryOrchestrator,
)
from faq_cache.service import FaqCache
from faq_cache.store import ChatRecord, ChatRecordStore
from fakes import FakeRedis, FakeSearch, HashEmbeddingProvider, ScriptedBackend, qa


def judge_replies(score="0.1", answer=NO_ANSWER):
    """Backend answering score prompts with ``score`` and synthesis prompts with ``answer``."""
    return ScriptedBackend(fn=lambda prompt: score if prompt.startswith("Rate") else answer)


def score_prompts(backend):
    return [p for p in backend.prompts if p.startswith("Rate")]


def synthesis_prompts(backend):
    return [p for p in backend.prompts if not p.startswith("Rate")]


@pytest.fixture
def make_cache(settings, clock):
    def build(backend=None, vector=False):
        client = FakeRedis(search=FakeSearch()) if vector else FakeRedis()
        embeddings = EmbeddingGateway(HashEmbeddingProvider(), settings) if vector else None
        judge = SemanticJudge(backend, settings=settings) if backend is not None else None
        return FaqCache(client, settings, embeddings=embeddings, judge=judge, clock=clock)
    return build


# ── CandidatePool / MatchResult ──────────────────────────────────────


def _record(rid, question="q"):
    return ChatRecord(rid, "u", question, "a", "{}", "general", 0)


def test_candidate_pool_dedups_in_order():
    pool = CandidatePool()
    assert pool.extend([_record("a"), _record("b"), _record("a")]) == 2
    assert not pool.add(_record("b"))
    assert "a" in pool and "c" not in pool
    assert [r.id for r in pool.all()] == ["a", "b"]
    assert [r.id for r in pool.first(1)] == ["a"]
    assert len(pool) == 2


def test_match_result_dict_shape():
    result = MatchResult(0.95, "q", "answer", SOURCE_AI_SUGGESTION)
    assert result.to_dict() == {
        "score": 0.95,
        "matched_question": "q",
        "message": {"score": 0.95, "message": "answer"},
        "source": SOURCE_AI_SUGGESTION,
        "record_id": None,
    }


# ── empty store ──────────────────────────────────────────────────────


def test_empty_store_returns_none_without_external_calls(make_cache):
    backend = judge_replies(score="0.99", answer="made up")
    cache = make_cache(backend, vector=True)
    assert cache.capabilities.vector_search

    assert cache.find_best_answer("ลืมรหัสผ่าน เข้าสู่ระบบไม่ได้") is None
    assert cache.embeddings.provider.calls == 0
    assert backend.prompts == []
    assert metrics.get("faq_misses") == 1


def test_blank_query(make_cache):
    assert make_cache().find_best_answer("   ") is None


# ── lexical stage ────────────────────────────────────────────────────


def test_exact_question_is_lexical_hit(make_cache):
    backend = judge_replies()
    cache = make_cache(backend)
    rid = cache.save_chat("u", qa("How do I reset my password?", "Use the reset link"))

    result = cache.find_best_answer("how do i reset my password")
    assert result.source == SOURCE_LEXICAL
    assert result.score == 1.0
    assert result.answer == "Use the reset link"
    assert result.record_id == rid
    assert backend.prompts == []
    assert metrics.get("faq_hits_lexical") == 1


def test_best_lexical_match_wins(make_cache):
    cache = make_cache()
    cache.save_chat("u", qa("reset password quickly", "partial"))
    cache.save_chat("u", qa("reset my password", "exact"))
    assert cache.find_best_answer("reset my password").answer == "exact"


def test_lexical_between_thresholds_returns_none_without_ai(make_cache):
    # 0.7 * 2/3 + 0.3 * 2/sqrt(6) ~= 0.71: accepted, not returned
    backend = judge_replies(score="0.99", answer="ai answer")
    cache = make_cache(backend)
    cache.save_chat("u", qa("reset password quickly"))

    assert cache.find_best_answer("reset my password") is None
    assert backend.prompts == []


# ── AI stages ────────────────────────────────────────────────────────


def test_thai_login_question_reaches_pool_and_ai_score(make_cache):
    backend = judge_replies(score="0.85")
    cache = make_cache(backend)
    rid = cache.save_chat("u", qa("ลืมรหัสผ่าน เข้าสู่ระบบไม่ได้", "กดลืมรหัสผ่านที่หน้าเข้าสู่ระบบ"))
    query = "login ไม่ได้ รหัสผ่านผิด"

    assert cache.classifier.classify(query) == "account"
    assert rid in cache.orchestrator.gather_candidates(query)

    result = cache.find_best_answer(query)
    assert result.source == SOURCE_AI_SCORE
    assert result.score == 0.85
    assert result.record_id == rid
    assert result.answer == "กดลืมรหัสผ่านที่หน้าเข้าสู่ระบบ"
    assert len(score_prompts(backend)) == 1
    assert synthesis_prompts(backend) == []


def test_ai_score_limited_to_three_candidates(make_cache):
    backend = judge_replies(score="0.1")
    cache = make_cache(backend)
    for i in range(6):
        cache.save_chat("u", qa(f"account question number {i}00"))

    assert cache.find_best_answer("login ไม่ได้") is None
    assert len(score_prompts(backend)) == 3
    synthesis = synthesis_prompts(backend)
    assert len(synthesis) == 1
    assert "5. Q:" in synthesis[0] and "6. Q:" not in synthesis[0]


def test_ai_score_between_thresholds_skips_synthesis(make_cache):
    backend = judge_replies(score="0.75", answer="should not be used")
    cache = make_cache(backend)
    cache.save_chat("u", qa("ลืมรหัสผ่าน เข้าสู่ระบบไม่ได้"))

    assert cache.find_best_answer("login ไม่ได้ รหัสผ่านผิด") is None
    assert synthesis_prompts(backend) == []


def test_synthesis_suggestion(make_cache):
    backend = judge_replies(score="0.2", answer="ลองรีเซ็ตรหัสผ่านจากหน้าเข้าสู่ระบบค่ะ")
    cache = make_cache(backend)
    cache.save_chat("u", qa("ลืมรหัสผ่าน เข้าสู่ระบบไม่ได้"))
    query = "login ไม่ได้ รหัสผ่านผิด"

    result = cache.find_best_answer(query)
    assert result.source == SOURCE_AI_SUGGESTION
    assert result.score == 0.95
    assert result.matched_question == query
    assert result.record_id is None
    assert result.to_dict()["message"] == {"score": 0.95, "message": "ลองรีเซ็ตรหัสผ่านจากหน้าเข้าสู่ระบบค่ะ"}
    assert metrics.get("faq_ai_suggestions") == 1


def test_synthesis_no_answer_is_miss(make_cache):
    backend = judge_replies(score="0.2", answer=NO_ANSWER)
    cache = make_cache(backend)
    cache.save_chat("u", qa("ลืมรหัสผ่าน เข้าสู่ระบบไม่ได้"))

    assert cache.find_best_answer("login ไม่ได้ รหัสผ่านผิด") is None
    assert metrics.get("faq_misses") == 1


def test_judge_failure_is_miss(make_cache):
    def down(prompt):
        raise ConnectionError("judge unreachable")

    cache = make_cache(ScriptedBackend(fn=down))
    cache.save_chat("u", qa("ลืมรหัสผ่าน เข้าสู่ระบบไม่ได้"))
    assert cache.find_best_answer("login ไม่ได้ รหัสผ่านผิด") is None


def test_without_judge_below_threshold_is_miss(make_cache):
    cache = make_cache()
    cache.save_chat("u", qa("ลืมรหัสผ่าน เข้าสู่ระบบไม่ได้"))
    assert cache.find_best_answer("login ไม่ได้ รหัสผ่านผิด") is None


# ── candidate gathering ──────────────────────────────────────────────


def test_keyword_supplement_crosses_categories(make_cache):
    cache = make_cache()
    other = cache.save_chat("u", qa("password for certificate download"))
    assert cache.classifier.classify("certificate download") == "course"

    pool = cache.orchestrator.gather_candidates("certificate download")
    assert other in pool


def test_no_keyword_supplement_when_pool_is_full(make_cache):
    cache = make_cache()
    other = cache.save_chat("u", qa("password for certificate download"))
    for i in range(5):
        cache.save_chat("u", qa(f"course lesson {i}00"))

    pool = cache.orchestrator.gather_candidates("certificate download")
    assert len(pool) == 5
    assert other not in pool


def test_keyword_supplement_skips_evicted_ids(make_cache):
    cache = make_cache()
    gone = cache.save_chat("u", qa("password for certificate download"))
    cache.client.delete(cache.store.record_key(gone))

    pool = cache.orchestrator.gather_candidates("certificate download")
    assert gone not in pool
    assert len(pool) == 0


def test_knn_merges_neighbours_from_other_categories(make_cache):
    cache = make_cache(vector=True)
    assert cache.capabilities.vector_search
    other = cache.save_chat("u", qa("password certificate download"))
    for i in range(5):
        cache.save_chat("u", qa(f"course lesson {i}00"))

    pool = cache.orchestrator.gather_candidates("certificate download")
    assert other in pool
    assert len(pool) == 6


def test_knn_skipped_without_search_extension(settings, clock):
    client = FakeRedis()
    store = ChatRecordStore(client, settings, clock=clock)
    embeddings = EmbeddingGateway(HashEmbeddingProvider(), settings)
    orchestrator = QueryOrchestrator(store, Capabilities(search_extension=False, embeddings=True),
                                     embeddings=embeddings)
    store.save("u", qa("course lesson one"))

    orchestrator.gather_candidates("course lesson")
    assert embeddings.provider.calls == 0


def test_custom_scorer(settings, clock):
    store = ChatRecordStore(FakeRedis(), settings, clock=clock)
    store.save("u", qa("refund for anything"))
    orchestrator = QueryOrchestrator(store, Capabilities(), scorer=lambda a, b: 0.9)
    result = orchestrator.find_best_answer("refund please")
    assert result.score == 0.9
    assert result.source == SOURCE_LEXICAL


# ── search_chat ──────────────────────────────────────────────────────


def test_search_chat_category_then_full_text(make_cache):
    cache = make_cache(vector=True)
    account = cache.save_chat("u", qa("password for certificate download"))
    course = cache.save_chat("u", qa("certificate is missing"))

    ids = [r.id for r in cache.orchestrator.search_chat("certificate download")]
    assert ids[0] == course
    assert account in ids
    assert len(ids) == len(set(ids))


def test_search_chat_without_extension_is_category_only(make_cache):
    cache = make_cache()
    account = cache.save_chat("u", qa("password for certificate download"))
    course = cache.save_chat("u", qa("certificate is missing"))

    ids = [r.id for r in cache.orchestrator.search_chat("certificate download")]
    assert ids == [course]
    assert account not in ids
    assert cache.orchestrator.search_chat("") == []
