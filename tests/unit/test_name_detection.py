import pytest

from core.conversation.understanding.name_detection import (
    extract_email,
    extract_name_candidate,
    extract_phone,
    is_address_fragment,
    normalize_phone,
    split_name,
    strip_address_fragments,
)


class TestExtractNameCandidate:
    """Person names in free text"""

    def test_first_last_after_command_word(self):
        assert extract_name_candidate("Met Sarah Williams at the open house") == "Sarah Williams"

    def test_street_address_is_not_a_name(self):
        """'Pine Ave' looks like First Last but closes an address"""
        assert extract_name_candidate("Schedule showing at 789 Pine Ave tomorrow") is None

    def test_name_found_after_address(self):
        assert extract_name_candidate("Meeting on Elm St with Tom Hardy") == "Tom Hardy"

    def test_honorific_with_single_name(self):
        assert extract_name_candidate("Call Mrs. Johnson tomorrow") == "Mrs. Johnson"

    def test_possessive_is_stripped(self):
        assert extract_name_candidate("Update Jane Miller's email") == "Jane Miller"

    def test_single_capitalized_word_is_not_enough(self):
        assert extract_name_candidate("Call Sarah tomorrow") is None

    def test_days_and_months_are_ignored(self):
        assert extract_name_candidate("Schedule Monday March 3rd") is None

    @pytest.mark.parametrize("text", ["", None, "all lower case words"])
    def test_nothing_to_find(self, text):
        assert extract_name_candidate(text) is None


class TestAddressFragments:
    def test_suffix_detection(self):
        assert is_address_fragment("Ave")
        assert is_address_fragment("St.")
        assert not is_address_fragment("Williams")

    def test_strip_removes_number_and_street(self):
        assert strip_address_fragments("Schedule a showing at 789 Pine Ave tomorrow") == \
            "Schedule a showing at tomorrow"

    def test_strip_keeps_honorific(self):
        """'Dr. Smith' is a person, not a drive"""
        assert strip_address_fragments("Call Dr. Smith today") == "Call Dr. Smith today"


class TestContactDetails:
    def test_phone_with_dashes(self):
        assert extract_phone("Her number is 555-123-4567") == "5551234567"

    def test_phone_with_parentheses(self):
        assert extract_phone("Call (555) 123-4567 after lunch") == "5551234567"

    def test_iso_date_is_not_a_phone(self):
        assert extract_phone("Closing on 2024-05-01") is None

    def test_international_prefix_kept(self):
        assert normalize_phone("+1 (555) 123-4567") == "+15551234567"

    def test_short_numbers_ignored(self):
        assert extract_phone("Room 12-34") is None

    def test_email_lowercased(self):
        assert extract_email("Reach me at John.Smith@Example.COM please") == "john.smith@example.com"

    def test_no_email(self):
        assert extract_email("no address here") is None


class TestSplitName:
    def test_two_parts(self):
        assert split_name("Sarah Williams") == ("Sarah", "Williams")

    def test_compound_last_name(self):
        assert split_name("Maria de la Cruz") == ("Maria", "de la Cruz")

    def test_single_and_empty(self):
        assert split_name("Cher") == ("Cher", "")
        assert split_name("") == ("", "")
