# faq-cache: semantic FAQ cache in front of a generative-AI answer service

"""faq-cache: answer support questions from previously answered ones.

Core modules:
    classifier    — rule-based topic categories (fixed priority order)
    keywords      — Thai/English keyword extraction
    similarity    — Jaccard / term-frequency cosine blend
    store         — Redis chat records, category buckets, keyword index
    vector_index  — optional RediSearch KNN + full-text backend
    embeddings    — embedding providers and guarded gateway
    judge         — AI-graded similarity and answer synthesis
    resilience    — per-call timeouts and circuit breakers
    orchestrator  — the find_best_answer fallback chain
    service       — FaqCache facade (save_chat, search_similar_chat, search_chat)
    compaction    — stale keyword-index compaction, vector backfill
    observability — structured JSON logging + metrics
"""

__version__ = "1.0.0"
