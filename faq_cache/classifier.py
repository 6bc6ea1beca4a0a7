"""Category classifier — rule-based topic tagging for support questions.

Deterministic, regex-based, no model required. Rules are checked in a fixed
priority order (account, payment, course, technical, support) and the first
match wins; anything else is ``general``. The category decides which bucket a
question is stored in and which pool a query draws candidates from, so the
order must not change.
"""
from __future__ import annotations

import re

from faq_cache._constants import DEFAULT_CATEGORY

# Ordered: dict insertion order is the priority order.
CATEGORY_RULES: dict[str, list[str]] = {
    "account": [
        r"\blog\s?in\b", r"\blog\s?out\b", r"\bsign\s?(in|up)\b", r"\bpassword\b",
        r"\busername\b", r"\baccount\b", r"\bregist(er|ration)\b", r"\botp\b",
        r"\bprofile\b",
        r"เข้าสู่ระบบ", r"ล็อกอิน", r"ล็อคอิน", r"รหัสผ่าน", r"ลืมรหัส",
        r"บัญชี", r"สมัครสมาชิก", r"ชื่อผู้ใช้", r"โปรไฟล์", r"ออกจากระบบ",
    ],
    "payment": [
        r"\bpay(ment|ments|ing)?\b", r"\bprice\b", r"\brefund\b", r"\binvoice\b",
        r"\breceipt\b", r"\bcredit\s?card\b", r"\bbank\b", r"\btransfer\b",
        r"\bpromptpay\b", r"\border\b", r"\bdiscount\b", r"\bcoupon\b",
        r"ชำระ", r"จ่ายเงิน", r"ราคา", r"คืนเงิน", r"โอนเงิน", r"ใบเสร็จ",
        r"บัตรเครดิต", r"ค่าเรียน", r"ส่วนลด", r"คูปอง", r"พร้อมเพย์",
    ],
    "course": [
        r"\bcourses?\b", r"\blessons?\b", r"\bclass(es)?\b", r"\bcertificat(e|es|ion)\b",
        r"\benrol(l|ment|led)?\b", r"\bcurriculum\b", r"\bquiz(zes)?\b", r"\bexams?\b",
        r"\binstructor\b",
        r"คอร์ส", r"หลักสูตร", r"บทเรียน", r"ใบประกาศ", r"ประกาศนียบัตร",
        r"ลงทะเบียนเรียน", r"ข้อสอบ", r"แบบทดสอบ", r"วิทยากร", r"ผู้สอน",
    ],
    "technical": [
        r"\bvideos?\b", r"\bplay(back)?\b", r"\bloading\b", r"\berror\b", r"\bbug\b",
        r"\bcrash(es|ed)?\b", r"\bbrowser\b", r"\bapp\b", r"\bslow\b", r"\bbuffer(ing)?\b",
        r"\bupload\b", r"\bdownload\b",
        r"วิดีโอ", r"วีดีโอ", r"เล่นไม่ได้", r"โหลด", r"ค้าง", r"ข้อผิดพลาด",
        r"แอป", r"เบราว์เซอร์", r"ไม่มีเสียง", r"ภาพไม่ขึ้น", r"กระตุก",
    ],
    "support": [
        r"\bcontact\b", r"\bhelp\b", r"\bsupport\b", r"\badmin\b", r"\bphone\b",
        r"\bemail\b", r"\bcomplain(t)?\b",
        r"ติดต่อ", r"สอบถาม", r"ช่วยเหลือ", r"แอดมิน", r"เบอร์โทร", r"อีเมล",
        r"ร้องเรียน", r"เจ้าหน้าที่",
    ],
}


class CategoryClassifier:
    """Classifies text into one of the fixed support categories."""

    def __init__(self, rules: dict[str, list[str]] | None = None):
        self._compiled: list[tuple[str, list[re.Pattern]]] = []
        for category, patterns in (rules or CATEGORY_RULES).items():
            self._compiled.append(
                (category, [re.compile(p, re.IGNORECASE) for p in patterns])
            )

    @property
    def categories(self) -> list[str]:
        return [cat for cat, _ in self._compiled] + [DEFAULT_CATEGORY]

    def classify(self, text: str) -> str:
        """Return the first category whose rule matches ``text``."""
        if not text:
            return DEFAULT_CATEGORY
        lowered = text.lower()
        for category, patterns in self._compiled:
            if any(p.search(lowered) for p in patterns):
                return category
        return DEFAULT_CATEGORY


_default = CategoryClassifier()


def classify(text: str) -> str:
    """Classify with the default rule set."""
    return _default.classify(text)
