#!/usr/bin/env python3
"""Tests for classifier.py — priority-ordered topic rules."""

import unittest

from faq_cache._constants import CATEGORIES
from faq_cache.classifier import CATEGORY_RULES, CategoryClassifier, classify


class TestCategoryClassifier(unittest.TestCase):
    def setUp(self):
        self.clf = CategoryClassifier()

    def test_account_english(self):
        self.assertEqual(self.clf.classify("I forgot my password"), "account")

    def test_account_thai(self):
        self.assertEqual(self.clf.classify("ลืมรหัสผ่าน ทำยังไง"), "account")

    def test_payment(self):
        self.assertEqual(self.clf.classify("How do I get a refund?"), "payment")
        self.assertEqual(self.clf.classify("คอร์สนี้ราคาเท่าไหร่"), "payment")

    def test_course(self):
        self.assertEqual(self.clf.classify("When does the next lesson open?"), "course")

    def test_technical(self):
        self.assertEqual(self.clf.classify("The video keeps buffering"), "technical")

    def test_support(self):
        self.assertEqual(self.clf.classify("ติดต่อเจ้าหน้าที่ได้ที่ไหน"), "support")

    def test_default_general(self):
        self.assertEqual(self.clf.classify("Good morning"), "general")

    def test_empty_is_general(self):
        self.assertEqual(self.clf.classify(""), "general")
        self.assertEqual(self.clf.classify(None), "general")

    def test_priority_payment_beats_course(self):
        # "ราคา" (payment) and "หลักสูตร" (course) both match; payment is earlier.
        self.assertEqual(self.clf.classify("ราคาหลักสูตร"), "payment")

    def test_priority_with_four_matching_rules(self):
        # support, course and payment all match; payment is checked first
        self.assertEqual(self.clf.classify("ติดต่อสอบถามเรื่องหลักสูตรและราคา"), "payment")

    def test_priority_account_beats_payment(self):
        self.assertEqual(self.clf.classify("payment failed after login"), "account")

    def test_priority_technical_beats_support(self):
        self.assertEqual(self.clf.classify("video error, please help"), "technical")

    def test_case_insensitive(self):
        self.assertEqual(self.clf.classify("PASSWORD RESET"), "account")

    def test_word_boundaries(self):
        # "app" must not match inside a longer word
        self.assertEqual(self.clf.classify("snapped"), "general")

    def test_deterministic(self):
        text = "ชำระเงินแล้วแต่ยังเข้าเรียนคอร์สไม่ได้"
        results = {self.clf.classify(text) for _ in range(20)}
        self.assertEqual(len(results), 1)

    def test_categories_property(self):
        self.assertEqual(tuple(self.clf.categories), CATEGORIES)

    def test_rule_order_matches_categories(self):
        self.assertEqual(tuple(CATEGORY_RULES) + ("general",), CATEGORIES)

    def test_custom_rules(self):
        clf = CategoryClassifier(rules={"payment": [r"\bbaht\b"]})
        self.assertEqual(clf.classify("100 baht"), "payment")
        self.assertEqual(clf.classify("password"), "general")

    def test_module_level_classify(self):
        self.assertEqual(classify("reset password"), "account")


if __name__ == "__main__":
    unittest.main()
