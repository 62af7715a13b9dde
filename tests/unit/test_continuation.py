import pytest

from core.conversation.context import (
    ActivityBundle,
    ContactRegistry,
    ConversationState,
    Disambiguation,
    PendingItemTracker,
)
from core.conversation.understanding import (
    candidate_label,
    classify_message,
    parse_ordinal,
    select_candidates,
)


@pytest.fixture
def idle_state():
    return ConversationState()


@pytest.fixture
def known_state():
    state = ConversationState()
    ContactRegistry(state).upsert({"first_name": "Sarah", "last_name": "Williams"})
    return state


@pytest.fixture
def awaiting_contact():
    state = ConversationState()
    PendingItemTracker(state).stage(ActivityBundle(appointments=[{"title": "Showing"}]), "Who is this for?")
    return state


@pytest.fixture
def appointment_choice():
    return Disambiguation(
        kind="appointment",
        candidates=[{"title": "Showing at Pine Ave"}, {"title": "Listing consultation"}],
        contact="Sarah Williams",
    )


@pytest.fixture
def contact_choice():
    return Disambiguation(
        kind="contact",
        candidates=[
            {"display_name": "Sarah Williams", "first_name": "Sarah", "last_name": "Williams"},
            {"display_name": "Sarah Wilson", "first_name": "Sarah", "last_name": "Wilson"},
        ],
    )


class TestParseOrdinal:
    @pytest.mark.parametrize("text,expected", [
        ("the first one", 0),
        ("second", 1),
        ("the 3rd", 2),
        ("the last one", -1),
        ("el segundo", 1),
        ("#2", 1),
        ("option 3", 2),
        ("2", 1),
        ("number 1 please", 0),
    ])
    def test_ordinals(self, text, expected):
        assert parse_ordinal(text) == expected

    def test_digits_in_long_messages_are_not_positions(self):
        assert parse_ordinal("schedule a call at 3 tomorrow afternoon") is None

    def test_no_ordinal(self):
        assert parse_ordinal("Sarah Williams") is None


class TestClassifyMessage:
    def test_name_reply_while_awaiting_contact(self, awaiting_contact):
        result = classify_message("Sarah Williams", awaiting_contact)

        assert result.is_continuation
        assert result.name == "Sarah Williams"
        assert result.has_identity()

    def test_lower_case_name_reply(self, awaiting_contact):
        assert classify_message("sarah williams", awaiting_contact).name == "Sarah Williams"

    def test_lower_case_words_are_not_a_name_when_idle(self, known_state):
        assert classify_message("sounds good", known_state).name is None

    def test_phone_and_email_replies(self, awaiting_contact):
        phone = classify_message("555-123-4567", awaiting_contact)
        email = classify_message("sarah@example.com", awaiting_contact)

        assert phone.is_continuation and phone.phone == "5551234567" and phone.name is None
        assert email.is_continuation and email.email == "sarah@example.com"

    def test_affirmation_and_negation(self, awaiting_contact):
        assert classify_message("yes, the same one", awaiting_contact).affirmation
        assert classify_message("no, someone else", awaiting_contact).negation

    def test_short_follow_up_with_known_contacts(self, known_state):
        result = classify_message("prefers mornings", known_state)

        assert result.is_continuation
        assert not result.has_action

    def test_new_command_is_not_a_continuation(self, known_state):
        result = classify_message("Add a note: prefers mornings", known_state)

        assert result.has_action
        assert not result.is_continuation

    def test_fresh_session_small_talk(self, idle_state):
        assert not classify_message("hello", idle_state).is_continuation

    def test_first_reference(self, known_state):
        assert classify_message("call the first contact", known_state).refers_to_first

    def test_state_is_not_mutated(self, awaiting_contact):
        before = awaiting_contact.to_json()
        classify_message("Sarah Williams", awaiting_contact)

        assert awaiting_contact.to_json() == before


class TestSelectCandidates:
    def test_ordinal(self, appointment_choice):
        assert select_candidates("the second one", appointment_choice) == [{"title": "Listing consultation"}]

    def test_last(self, appointment_choice):
        assert select_candidates("the last one", appointment_choice) == [{"title": "Listing consultation"}]

    def test_all(self, appointment_choice):
        assert len(select_candidates("both", appointment_choice)) == 2

    def test_label_named(self, contact_choice):
        assert select_candidates("Sarah Wilson", contact_choice) == [contact_choice.candidates[1]]

    def test_distinctive_word(self, contact_choice, appointment_choice):
        assert select_candidates("Wilson", contact_choice) == [contact_choice.candidates[1]]
        assert select_candidates("the Pine one", appointment_choice) == [appointment_choice.candidates[0]]

    def test_shared_word_selects_nothing(self, contact_choice):
        assert select_candidates("Sarah", contact_choice) == []

    def test_out_of_range(self, appointment_choice):
        assert select_candidates("the fourth", appointment_choice) == []

    def test_no_choice(self):
        assert select_candidates("the first", None) == []


class TestCandidateLabel:
    @pytest.mark.parametrize("candidate,expected", [
        ({"display_name": "Sarah Williams"}, "Sarah Williams"),
        ({"first_name": "John", "last_name": "Smith"}, "John Smith"),
        ({"title": "Showing"}, "Showing"),
        ({"input": {"name": "Send comps"}}, "Send comps"),
        ({"note": "likes pools"}, "likes pools"),
        ({"label": "Option A"}, "Option A"),
        ({"phone": "5551234567"}, "5551234567"),
        ({}, ""),
    ])
    def test_labels(self, candidate, expected):
        assert candidate_label(candidate) == expected
