"""Tests for phone number normalization."""

import pytest

from src.click_attribution.services.phone import normalize_phone


class TestNormalizePhone:
    """Test normalize_phone."""

    def test_national_number_gets_country_code(self):
        assert normalize_phone("9876543210") == "919876543210"

    def test_number_with_country_code_unchanged(self):
        assert normalize_phone("919876543210") == "919876543210"

    def test_ten_digit_number_starting_with_91_is_prefixed(self):
        """A national number that happens to start with the country code is still national."""
        assert normalize_phone("9198765432") == "919198765432"

    def test_leading_zeros_stripped(self):
        assert normalize_phone("009876543210") == "919876543210"
        assert normalize_phone("0919876543210") == "919876543210"

    def test_formatting_characters_removed(self):
        assert normalize_phone("+91 98765-43210") == "919876543210"

    @pytest.mark.parametrize("raw", [None, "", "000", "+", "abc"])
    def test_unusable_input_returns_empty(self, raw):
        assert normalize_phone(raw) == ""

    def test_custom_country_code(self):
        assert normalize_phone("4155550100", country_code="1") == "14155550100"

    def test_idempotent(self):
        once = normalize_phone("09876543210")
        assert normalize_phone(once) == once
