"""
Conversation state validation utilities.

This module checks the invariants a ConversationState must hold between
turns. The resolver runs it after every merge and logs what it finds.
"""

from typing import List

from .state import ConversationState


class ValidationError:
    """Represents a state validation error"""

    def __init__(self, field: str, message: str, severity: str = "error"):
        self.field = field
        self.message = message
        self.severity = severity  # "error", "warning"

    def __repr__(self):
        return f"ValidationError({self.field}: {self.message})"


class StateValidator:
    """Validates conversation state for consistency"""

    DISAMBIGUATION_KINDS = {"contact", "appointment", "task", "note"}

    @classmethod
    def validate_state(cls, state: ConversationState) -> List[ValidationError]:
        """
        Validate state data.

        Args:
            state: State to validate

        Returns:
            List of validation errors
        """
        errors = []
        errors.extend(cls._validate_contacts(state))
        errors.extend(cls._validate_question(state))
        errors.extend(cls._validate_counters(state))
        return errors

    @classmethod
    def _validate_contacts(cls, state: ConversationState) -> List[ValidationError]:
        errors = []
        seen = set()
        for contact in state.known_contacts:
            if not contact.display_name:
                errors.append(ValidationError("known_contacts", "Contact without display name"))
            elif contact.display_name in seen:
                errors.append(ValidationError(
                    "known_contacts",
                    f"Duplicate contact {contact.display_name}"
                ))
            seen.add(contact.display_name)
            if contact.last_seen_at > state.clock:
                errors.append(ValidationError(
                    "clock",
                    f"last_seen_at of {contact.display_name} is ahead of the session clock",
                    severity="warning"
                ))
        return errors

    @classmethod
    def _validate_question(cls, state: ConversationState) -> List[ValidationError]:
        """outstanding_question is set iff something is pending or being chosen"""
        errors = []
        awaiting = state.disambiguation is not None or state.has_pending_items()

        if state.outstanding_question and not awaiting:
            errors.append(ValidationError(
                "outstanding_question",
                "Question outstanding with nothing pending"
            ))
        if awaiting and not state.outstanding_question:
            errors.append(ValidationError(
                "outstanding_question",
                "Pending items or candidates without a question"
            ))
        if state.disambiguation is not None:
            if state.disambiguation.kind not in cls.DISAMBIGUATION_KINDS:
                errors.append(ValidationError(
                    "disambiguation",
                    f"Unknown disambiguation kind {state.disambiguation.kind}"
                ))
            if not state.disambiguation.candidates:
                errors.append(ValidationError("disambiguation", "No candidates to choose from"))
        return errors

    @classmethod
    def _validate_counters(cls, state: ConversationState) -> List[ValidationError]:
        errors = []
        if state.message_count < 0:
            errors.append(ValidationError("message_count", "Negative message count"))
        if len(state.recent_turns) % 2 and state.recent_turns[-1].get("role") == "user":
            errors.append(ValidationError(
                "recent_turns",
                "Last raw turn has no assistant reply",
                severity="warning"
            ))
        return errors

    @classmethod
    def is_valid(cls, state: ConversationState) -> bool:
        return not any(error.severity == "error" for error in cls.validate_state(state))
