"""Tests for criteria normalization and the trigram text helpers.

Covers:
  - PAN upper-casing and format rejection
  - Silent dropping of short phones, bad Aadhaar numbers and e-mails
  - Empty / whitespace-only criteria rejection
  - Trigram similarity semantics (pg_trgm-compatible)
"""

import pytest

from caseflow.dedup.models import MatchField, SearchCriteria
from caseflow.dedup.normalizer import (
    normalize_aadhaar,
    normalize_bank_account,
    normalize_criteria,
    normalize_email,
    normalize_name,
    normalize_pan,
    normalize_phone,
)
from caseflow.dedup.text import collapse_whitespace, digits_only, trigram_similarity, trigrams
from caseflow.errors import EmptyCriteria, InvalidPanFormat


# ═══════════════════════════════════════════════════
# Field normalizers
# ═══════════════════════════════════════════════════

class TestPan:
    @pytest.mark.parametrize("raw", ["abcde1234f", " ABCDE1234F ", "AbCdE1234f"])
    def test_valid_pan_upper_cased(self, raw):
        assert normalize_pan(raw) == "ABCDE1234F"

    @pytest.mark.parametrize("raw", ["ABCD1234F", "ABCDE12345", "1BCDE1234F", "ABCDE1234FG", "ABCDE 1234F"])
    def test_malformed_pan_rejected(self, raw):
        with pytest.raises(InvalidPanFormat) as exc:
            normalize_pan(raw)
        assert exc.value.code == "INVALID_PAN_FORMAT"
        assert exc.value.status_code == 400

    def test_blank_pan_is_absent(self):
        assert normalize_pan("   ") is None
        assert normalize_pan(None) is None


class TestPhone:
    def test_formatting_stripped(self):
        assert normalize_phone("+91 98765-43210") == "919876543210"

    def test_exactly_ten_digits_kept(self):
        assert normalize_phone("(987) 654-3210") == "9876543210"

    @pytest.mark.parametrize("raw", ["12345", "987654321", "abc", "---"])
    def test_short_phone_dropped(self, raw):
        assert normalize_phone(raw) is None


class TestOtherFields:
    def test_aadhaar_spaces_and_hyphens_removed(self):
        assert normalize_aadhaar("1234 5678-9012") == "123456789012"

    @pytest.mark.parametrize("raw", ["1234", "1234567890123", "12345678901X"])
    def test_bad_aadhaar_dropped(self, raw):
        assert normalize_aadhaar(raw) is None

    def test_bank_account_compacted_and_upper_cased(self):
        assert normalize_bank_account(" 0012-3456 78ab ") == "0012345678AB"

    def test_email_lower_cased(self):
        assert normalize_email(" Priya.Sharma@Example.COM ") == "priya.sharma@example.com"

    def test_email_without_at_dropped(self):
        assert normalize_email("not-an-email") is None

    def test_name_whitespace_collapsed(self):
        assert normalize_name("  Rajesh \t  Kumar ") == "Rajesh Kumar"


# ═══════════════════════════════════════════════════
# normalize_criteria
# ═══════════════════════════════════════════════════

class TestNormalizeCriteria:
    def test_full_criteria(self):
        c = normalize_criteria({
            "customerName": " Rajesh  Kumar ",
            "panNumber": "abcde1234f",
            "customerPhone": "98765 43210",
            "aadhaarNumber": "1234 5678 9012",
            "bankAccountNumber": "00123456",
            "customerEmail": "R.Kumar@Mail.com",
        })
        assert c == SearchCriteria(
            customer_name="Rajesh Kumar",
            pan_number="ABCDE1234F",
            customer_phone="9876543210",
            aadhaar_number="123456789012",
            bank_account_number="00123456",
            customer_email="r.kumar@mail.com",
        )

    @pytest.mark.parametrize("raw", [
        None,
        {},
        {"customerName": "   ", "panNumber": "", "customerPhone": "\t"},
        {"customerName": None, "bankAccountNumber": "  "},
    ])
    def test_empty_criteria_rejected(self, raw):
        with pytest.raises(EmptyCriteria) as exc:
            normalize_criteria(raw)
        assert exc.value.code == "INVALID_SEARCH_CRITERIA"

    def test_short_phone_dropped_but_request_survives(self):
        c = normalize_criteria({"customerPhone": "12345", "customerName": "Meena"})
        assert c.customer_phone is None
        assert c.present_fields() == [MatchField.CUSTOMER_NAME]

    def test_only_short_phone_is_empty(self):
        with pytest.raises(EmptyCriteria):
            normalize_criteria({"customerPhone": "12345"})

    def test_non_string_values_treated_as_absent(self):
        c = normalize_criteria({"panNumber": 12345, "customerName": "Meena", "customerPhone": 9876543210})
        assert c.pan_number is None
        assert c.customer_phone is None
        assert c.customer_name == "Meena"

    def test_bad_pan_rejected_even_with_other_fields(self):
        with pytest.raises(InvalidPanFormat):
            normalize_criteria({"panNumber": "BAD", "customerName": "Meena"})

    def test_accepts_search_criteria_instance(self):
        c = normalize_criteria(SearchCriteria(pan_number="abcde1234f"))
        assert c.pan_number == "ABCDE1234F"

    def test_to_dict_uses_request_keys(self):
        c = normalize_criteria({"panNumber": "ABCDE1234F", "customerEmail": "a@b.in"})
        assert c.to_dict() == {"panNumber": "ABCDE1234F", "customerEmail": "a@b.in"}


# ═══════════════════════════════════════════════════
# Text helpers
# ═══════════════════════════════════════════════════

class TestTextHelpers:
    def test_collapse_whitespace(self):
        assert collapse_whitespace("  a \n b   c ") == "a b c"

    def test_digits_only(self):
        assert digits_only("+91 (98765) 43210") == "919876543210"

    def test_trigrams_use_word_padding(self):
        assert trigrams("Ram") == frozenset({"  r", " ra", "ram", "am "})

    def test_identical_names_score_one(self):
        assert trigram_similarity("Rajesh Kumar", "rajesh kumar") == 1.0

    def test_minor_spelling_variation(self):
        # 12 shared trigrams out of 15 distinct
        assert trigram_similarity("Rajesh Kumar", "Rajesh Kumaar") == pytest.approx(0.8)

    def test_unrelated_names_score_low(self):
        assert trigram_similarity("Rajesh Kumar", "Meena Iyer") < 0.1

    @pytest.mark.parametrize("a,b", [("", "Ram"), ("Ram", None), (None, None), ("---", "Ram")])
    def test_empty_side_scores_zero(self, a, b):
        assert trigram_similarity(a, b) == 0.0
