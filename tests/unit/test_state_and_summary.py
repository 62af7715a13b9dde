import pytest

from core.conversation.context import (
    ActivityBundle,
    ContactRegistry,
    ConversationState,
    Disambiguation,
    PendingItemTracker,
    StateValidator,
)
from core.conversation.orchestration import build_context_summary
from core.conversation.understanding import classify_message
from models.schemas import ConversationPhase


@pytest.fixture
def state():
    state = ConversationState()
    registry = ContactRegistry(state)
    registry.upsert({"first_name": "Sarah", "last_name": "Williams", "phone": "5551234567"})
    registry.upsert({"first_name": "John", "last_name": "Smith"})
    return state


class TestConversationState:
    def test_json_round_trip_keeps_contacts_and_choice(self, state):
        PendingItemTracker(state).stage(
            ActivityBundle(notes=[{"note": "call back"}]),
            "Which contact?",
            Disambiguation(kind="contact", candidates=[{"display_name": "Sarah Williams"}]),
        )

        loaded = ConversationState.from_json(state.to_json())

        assert loaded.to_json() == state.to_json()
        assert loaded.phase == ConversationPhase.AWAITING_DISAMBIGUATION

    def test_empty_payload_is_fresh(self):
        assert ConversationState.from_dict(None).is_empty()
        assert ConversationState.from_dict({}).phase == ConversationPhase.IDLE

    def test_copy_is_deep(self, state):
        clone = state.copy()
        clone.known_contacts[0].phone = ""

        assert state.known_contacts[0].phone == "5551234567"


class TestStateValidator:
    def test_consistent_state(self, state):
        assert StateValidator.validate_state(state) == []
        assert StateValidator.is_valid(state)

    def test_question_without_pending_items(self, state):
        state.outstanding_question = "Who is this for?"

        errors = StateValidator.validate_state(state)

        assert [error.field for error in errors] == ["outstanding_question"]
        assert not StateValidator.is_valid(state)

    def test_pending_items_without_question(self, state):
        state.pending_tasks = [{"input": {"name": "Call back"}}]

        assert not StateValidator.is_valid(state)

    def test_duplicate_contacts(self, state):
        state.known_contacts.append(state.known_contacts[0].__class__(display_name="John Smith"))

        assert any("Duplicate" in error.message for error in StateValidator.validate_state(state))


class TestContextSummary:
    def test_fresh_session_is_empty(self):
        assert build_context_summary(ConversationState()) == ""

    def test_contacts_flagged_by_recency(self, state):
        summary = build_context_summary(state)

        assert "- John Smith [MOST RECENT]" in summary
        assert "- Sarah Williams (5551234567) [FIRST]" in summary
        assert summary.index("John Smith") < summary.index("Sarah Williams")

    def test_named_contact_overrides_most_recent(self, state):
        message = "Add a note for Sarah Williams"
        summary = build_context_summary(state, classify_message(message, state), message)

        assert "names Sarah Williams (already known)" in summary

    def test_outstanding_choice_listed(self, state):
        PendingItemTracker(state).stage(
            ActivityBundle(),
            "Which appointment?",
            Disambiguation(kind="appointment", candidates=[{"title": "Showing"}, {"title": "Listing"}],
                           contact="Sarah Williams"),
        )

        summary = build_context_summary(state)

        assert 'Outstanding question asked to the user: "Which appointment?"' in summary
        assert "1. Showing" in summary and "2. Listing" in summary
        assert "(belonging to Sarah Williams)" in summary

    def test_running_summary_included(self, state):
        state.summary = "Sarah wants a 3 bed near the park."

        assert "Sarah wants a 3 bed near the park." in build_context_summary(state)

    def test_staged_items_listed_once(self, state):
        PendingItemTracker(state).stage(ActivityBundle(notes=[{"note": "call back"}]), "Who is this for?")

        summary = build_context_summary(state)

        assert 'Items waiting for a contact:\n{"notes": [{"note": "call back"}]}' in summary
        assert "do not repeat them" in summary
