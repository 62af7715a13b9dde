"""
Pending-item tracking over ConversationState.

Holds appointments, tasks and notes that were extracted before the contact
they belong to was known, together with the clarifying question that was
asked to identify that contact (or to pick among existing candidates).
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from models.schemas import (
    AppointmentSchema,
    ConversationPhase,
    InputContactSchema,
    NoteSchema,
    TaskPairSchema,
)
from .state import ConversationState, Disambiguation

logger = logging.getLogger(__name__)


@dataclass
class ActivityBundle:
    """Appointments, tasks and notes stored as canonical dictionaries"""
    appointments: List[Dict[str, Any]] = field(default_factory=list)
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    notes: List[Dict[str, Any]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.appointments or self.tasks or self.notes)

    def count(self) -> int:
        return len(self.appointments) + len(self.tasks) + len(self.notes)

    def extend(self, other: 'ActivityBundle') -> 'ActivityBundle':
        self.appointments.extend(other.appointments)
        self.tasks.extend(other.tasks)
        self.notes.extend(other.notes)
        return self

    @classmethod
    def from_contact(cls, contact: InputContactSchema) -> 'ActivityBundle':
        return cls(
            appointments=[item.model_dump() for item in contact.appointments],
            tasks=[item.model_dump() for item in contact.tasks],
            notes=[item.model_dump() for item in contact.notes],
        )

    @classmethod
    def of_kind(cls, kind: str, items: List[Dict[str, Any]]) -> 'ActivityBundle':
        """Bundle holding items of a single disambiguation kind"""
        bundle = cls()
        if kind == "appointment":
            bundle.appointments = list(items)
        elif kind == "task":
            bundle.tasks = list(items)
        elif kind == "note":
            bundle.notes = list(items)
        return bundle


# Fields that tell two items of the same model apart
IDENTITY_FIELDS = {
    AppointmentSchema: ("title", "start", "location"),
    TaskPairSchema: ("name", "dueDate"),
    NoteSchema: ("note",),
}


def _identity(item: Dict[str, Any], model) -> Optional[Tuple[str, ...]]:
    fields = (item.get("input") or {}) if model is TaskPairSchema else item
    key = tuple(str(fields.get(name) or "").strip().lower() for name in IDENTITY_FIELDS[model])
    if not any(key):
        return None
    intent = fields.get("intent") or ""
    return key + (intent,)


def _fill_missing(kept: Dict[str, Any], other: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of kept with its blank or default fields taken from other"""
    merged = dict(kept)
    for key, value in other.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _fill_missing(current, value, defaults.get(key) or {})
        elif key not in merged or current in ("", None) or (key in defaults and current == defaults[key]):
            merged[key] = value
    return merged


def _merge(existing: List[Any], items: List[Dict[str, Any]], model, prepend: bool = True) -> List[Any]:
    """
    Combine items with existing.

    Two items describing the same activity (same identifying fields and
    intent) collapse into one at the first one's position, keeping every
    field either copy carries.
    """
    incoming = [model.model_validate(item).model_dump() for item in items]
    current = [item.model_dump() for item in existing]
    ordered = incoming + current if prepend else current + incoming
    defaults = model().model_dump()

    merged: List[Dict[str, Any]] = []
    for item in ordered:
        key = _identity(item, model)
        match = next(
            (index for index, kept in enumerate(merged)
             if kept == item or (key is not None and _identity(kept, model) == key)),
            None,
        )
        if match is None:
            merged.append(item)
        else:
            merged[match] = _fill_missing(merged[match], item, defaults)
    return [model.model_validate(item) for item in merged]


def attach_bundle(contact: InputContactSchema, bundle: ActivityBundle,
                  prepend: bool = True) -> InputContactSchema:
    """
    Merge staged activities into a contact's outgoing activity lists.

    With prepend (the default) staged items come first, in their original
    order, followed by the contact's own items; otherwise they are appended.
    An item describing one already present is folded into it rather than
    repeated; nothing else is dropped.
    """
    contact.appointments = _merge(contact.appointments, bundle.appointments, AppointmentSchema, prepend)
    contact.tasks = _merge(contact.tasks, bundle.tasks, TaskPairSchema, prepend)
    contact.notes = _merge(contact.notes, bundle.notes, NoteSchema, prepend)
    return contact


class PendingItemTracker:
    """View over the pending lists, outstanding question and disambiguation"""

    def __init__(self, state: ConversationState):
        self.state = state

    @property
    def phase(self) -> ConversationPhase:
        return self.state.phase

    def is_awaiting(self) -> bool:
        return self.phase != ConversationPhase.IDLE

    def staged_items(self) -> ActivityBundle:
        """Copy of the staged items"""
        return ActivityBundle(
            appointments=copy.deepcopy(self.state.pending_appointments),
            tasks=copy.deepcopy(self.state.pending_tasks),
            notes=copy.deepcopy(self.state.pending_notes),
        )

    def stage(self, items: ActivityBundle, question: str,
              disambiguation: Optional[Disambiguation] = None):
        """
        Replace the staged items and set the outstanding question.

        Args:
            items: Activities waiting for a contact
            question: Clarifying question posed to the user
            disambiguation: Candidates when the question is a choice
        """
        self.state.pending_appointments = list(items.appointments)
        self.state.pending_tasks = list(items.tasks)
        self.state.pending_notes = list(items.notes)
        self.state.outstanding_question = question
        self.state.disambiguation = disambiguation
        logger.info(
            f"⏸️ Staged {items.count()} item(s), awaiting "
            f"{'disambiguation' if disambiguation else 'contact'}: {question}"
        )

    def clear(self):
        """Empty pending lists, question and disambiguation"""
        self.state.pending_appointments = []
        self.state.pending_tasks = []
        self.state.pending_notes = []
        self.state.outstanding_question = None
        self.state.disambiguation = None

    def attach_to(self, contact: InputContactSchema) -> InputContactSchema:
        """Attach every staged item to contact, then clear the tracker"""
        staged = self.staged_items()
        attach_bundle(contact, staged)
        if not staged.is_empty():
            logger.info(
                f"📎 Attached {staged.count()} staged item(s) to "
                f"{contact.first_name} {contact.last_name}".rstrip()
            )
        self.clear()
        return contact
