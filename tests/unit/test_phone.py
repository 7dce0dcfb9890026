"""Tests for phone number normalization."""

import pytest

from notifier.core.notifications.phone import normalize_phone, to_address


class TestNormalizePhone:
    """Test normalize_phone."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("(86) 99805-3279", "558698053279"),
            ("86998053279", "558698053279"),
            ("+55 86 99805-3279", "558698053279"),
            ("5586998053279", "558698053279"),
            ("(86) 9805-3279", "558698053279"),
        ],
    )
    def test_formats_converge(self, raw, expected):
        """Test human formats normalize to the same digits."""
        assert normalize_phone(raw, country_prefix="55") == expected

    def test_spurious_nine_removed(self):
        """Test the 9 after the area code is dropped at 13 digits."""
        assert normalize_phone("5586998053279", country_prefix="55") == "558698053279"

    def test_thirteen_digits_without_nine_kept(self):
        """Test 13 digits without the 9 pattern only get checked, not altered."""
        assert normalize_phone("5586898053279", country_prefix="55") == "5586898053279"

    def test_fourteen_digits_untouched(self):
        """Test longer numbers are not shortened even with a 9 after the area code."""
        assert normalize_phone("55869981053014", country_prefix="55") == "55869981053014"

    def test_canonical_length_untouched(self):
        result = normalize_phone("558698053279", country_prefix="55")
        assert len(result) == 12
        assert result == "558698053279"

    def test_short_input_not_rejected(self):
        """Test short numbers are returned with the prefix."""
        assert normalize_phone("1234", country_prefix="55") == "551234"

    def test_empty_input(self):
        """Test empty input yields the bare prefix."""
        assert normalize_phone("", country_prefix="55") == "55"

    def test_other_country_prefix(self):
        """Test the spurious digit position follows the prefix length."""
        # prefix 351 + area 21 + 9 + 8-digit subscriber
        assert normalize_phone("35121912345678", country_prefix="351") == "3512112345678"

    def test_idempotent(self):
        """Test normalizing twice gives the same digits."""
        once = normalize_phone("(86) 99805-3279", "55")
        assert normalize_phone(once, "55") == once


class TestToAddress:
    """Test to_address."""

    def test_appends_suffix(self):
        assert to_address("558698053279", "@s.whatsapp.net") == "558698053279@s.whatsapp.net"

    def test_suffix_not_duplicated(self):
        address = "558698053279@s.whatsapp.net"
        assert to_address(address, "@s.whatsapp.net") == address
