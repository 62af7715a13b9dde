"""Context summary sent alongside each message to the extraction call"""

import json
from typing import Optional

from models.schemas import ConversationPhase
from core.conversation.context import ContactRegistry, ConversationState
from core.conversation.understanding import MessageClassification, candidate_label


def _describe_contact(contact, flags) -> str:
    details = [value for value in (contact.phone, contact.email) if value]
    line = f"- {contact.display_name}"
    if details:
        line += f" ({', '.join(details)})"
    if flags:
        line += f" [{', '.join(flags)}]"
    return line


def build_context_summary(state: ConversationState,
                          classification: Optional[MessageClassification] = None,
                          message: str = "") -> str:
    """
    Describe the session state for the extraction prompt.

    Args:
        state: Current (read-only) session state
        classification: Result of classify_message for the current message
        message: The current user message

    Returns:
        Multi-section plain-text summary; empty for a fresh session
    """
    registry = ContactRegistry(state)
    sections = []

    if not registry.is_empty():
        most_recent = registry.most_recent()
        first = registry.first()
        lines = []
        # Most recently mentioned first
        for contact in sorted(state.known_contacts, key=lambda c: c.last_seen_at, reverse=True):
            flags = []
            if contact is most_recent:
                flags.append("MOST RECENT")
            if contact is first and len(registry) > 1:
                flags.append("FIRST")
            lines.append(_describe_contact(contact, flags))
        sections.append("Contacts mentioned in this conversation:\n" + "\n".join(lines))

    if classification and classification.name:
        known = registry.find_by_name_fragment(classification.name)
        status = "already known" if known else "new to this conversation"
        sections.append(
            f"The current message names {classification.name} ({status}). "
            f"This contact overrides the most recent contact for this message."
        )

    if state.outstanding_question:
        block = f"Outstanding question asked to the user: \"{state.outstanding_question}\""
        if state.disambiguation is not None:
            labels = [candidate_label(candidate) for candidate in state.disambiguation.candidates]
            block += f"\nChoosing among {state.disambiguation.kind} candidates:"
            block += "".join(f"\n  {index}. {label}" for index, label in enumerate(labels, 1))
            if state.disambiguation.contact:
                block += f"\n(belonging to {state.disambiguation.contact})"
        staged = {
            "appointments": state.pending_appointments,
            "tasks": state.pending_tasks,
            "notes": state.pending_notes,
        }
        staged = {key: value for key, value in staged.items() if value}
        if staged:
            block += "\nItems waiting for a contact:\n" + json.dumps(staged, ensure_ascii=False)
            block += "\nThese are attached automatically once the contact is known; do not repeat them."
        sections.append(block)

    if classification and classification.is_continuation:
        if state.phase != ConversationPhase.IDLE:
            sections.append(
                "The current message is a short reply to the outstanding question. "
                "Use it to complete the pending request instead of starting a new one."
            )
        else:
            sections.append(
                "The current message continues the previous request. Apply it to the "
                "most recent contact unless it names another one."
            )

    if state.summary:
        sections.append(f"Summary of earlier conversation:\n{state.summary}")

    return "\n\n".join(sections)
