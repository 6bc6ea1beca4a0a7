"""FAQ cache constants: pipeline thresholds, categories, stopwords, key layout."""

from __future__ import annotations

__all__ = [
    "CATEGORIES", "DEFAULT_CATEGORY",
    "CATEGORY_POOL_SIZE", "KNN_K", "KNN_MIN_SCORE", "KEYWORD_SUPPLEMENT_BELOW",
    "ACCEPT_THRESHOLD", "RETURN_THRESHOLD", "AI_SCORE_CANDIDATES",
    "AI_SYNTHESIS_CANDIDATES", "AI_SUGGESTION_CONFIDENCE",
    "JACCARD_WEIGHT", "COSINE_WEIGHT",
    "MIN_TOKEN_LENGTH", "THAI_TONE_MARKS", "_STOPWORDS_EN", "_STOPWORDS_TH",
    "EMBEDDING_BATCH_SIZE", "MAX_CHAT_PER_CATEGORY", "DEFAULT_CACHE_TTL",
]

# Fixed priority order: the first category whose rule matches wins.
CATEGORIES = ("account", "payment", "course", "technical", "support", "general")
DEFAULT_CATEGORY = "general"

# Candidate gathering
CATEGORY_POOL_SIZE = 30        # most recent records pulled from the category bucket
KNN_K = 10                     # vector neighbours requested
KNN_MIN_SCORE = 0.7            # minimum cosine similarity for a KNN hit
KEYWORD_SUPPLEMENT_BELOW = 5   # keyword-index supplement when pool is smaller than this

# Scoring
ACCEPT_THRESHOLD = 0.7         # lexical and AI scores below this are discarded
RETURN_THRESHOLD = 0.8         # best score must exceed this to be returned
AI_SCORE_CANDIDATES = 3        # pool candidates sent to the AI grader
AI_SYNTHESIS_CANDIDATES = 5    # pool candidates given to the AI as context

# Canonical confidence of an AI-authored suggestion. Used for both the match
# score and the inner message score.
AI_SUGGESTION_CONFIDENCE = 0.95

# Lexical blend
JACCARD_WEIGHT = 0.7
COSINE_WEIGHT = 0.3

# Tokenization
MIN_TOKEN_LENGTH = 3           # tokens of length <= 2 are dropped
THAI_TONE_MARKS = "\u0e48\u0e49\u0e4a\u0e4b"  # mai ek, mai tho, mai tri, mai chattawa

# Storage
MAX_CHAT_PER_CATEGORY = 1000
DEFAULT_CACHE_TTL = 60 * 60    # 1 hour
EMBEDDING_BATCH_SIZE = 20


_STOPWORDS_EN = frozenset({
    "a", "an", "the", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "shall",
    "should", "may", "might", "can", "could", "must", "and", "but", "or",
    "nor", "not", "so", "yet", "for", "of", "to", "in", "on", "at", "by",
    "with", "from", "as", "into", "about", "between", "through", "during",
    "before", "after", "above", "below", "up", "down", "out", "off", "over",
    "under", "again", "further", "then", "once", "here", "there", "when",
    "where", "why", "how", "all", "each", "every", "both", "few", "more",
    "most", "other", "some", "such", "no", "only", "own", "same", "than",
    "too", "very", "just", "because", "if", "while", "that", "this",
    "it", "its", "we", "they", "them", "their", "he", "she", "his", "her",
    "you", "your", "our", "what", "which", "who", "whom", "please", "thanks",
})

# Thai function words and polite particles. Stored with tone marks as people
# type them; keywords.py strips the marks before comparison.
_STOPWORDS_TH = frozenset({
    "และ", "หรือ", "ที่", "ของ", "ใน", "การ", "ความ", "เป็น", "ได้", "ไม่",
    "มี", "จะ", "ให้", "กับ", "แต่", "ก็", "นี้", "นั้น", "ว่า", "แล้ว",
    "อยู่", "คือ", "โดย", "จาก", "เพื่อ", "ครับ", "ค่ะ", "คะ", "นะ", "ด้วย",
    "อย่าง", "ยัง", "เรา", "ฉัน", "ผม", "คุณ", "เขา", "ไหม", "อะไร", "ทำไม",
    "อย่างไร", "ยังไง", "บ้าง", "เมื่อ", "ถ้า", "ซึ่ง", "ต้อง", "ไป", "มา",
    "ขอ", "หน่อย", "เลย", "กัน", "ทำ", "ตอน", "นี่", "โปรด", "ช่วยด้วย",
    "ขอบคุณ", "สวัสดี", "ค่ะค่ะ", "นะคะ", "นะครับ",
})
