"""
Per-session conversation state.

ConversationState is the single value the resolver loads, mutates once per
turn and hands back to the session store. It is plain data: the contact
registry and the pending-item tracker are views over it.
"""

import copy
import json
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
from dataclasses import dataclass, field

from models.schemas import ConversationPhase


def normalize_display_name(first_name: str = "", last_name: str = "") -> str:
    """Build the "first last" key, collapsing whitespace"""
    return " ".join(f"{first_name or ''} {last_name or ''}".split())


@dataclass
class ContactRef:
    """A contact mentioned during the session"""
    display_name: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    email: str = ""
    last_seen_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "display_name": self.display_name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "email": self.email,
            "last_seen_at": self.last_seen_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContactRef':
        first_name = data.get("first_name") or ""
        last_name = data.get("last_name") or ""
        display_name = data.get("display_name") or normalize_display_name(first_name, last_name)
        return cls(
            display_name=display_name,
            first_name=first_name,
            last_name=last_name,
            phone=data.get("phone") or "",
            email=data.get("email") or "",
            last_seen_at=int(data.get("last_seen_at") or 0),
        )


@dataclass
class Disambiguation:
    """Outstanding choice among existing contacts or activities"""
    kind: str  # contact | appointment | task | note
    candidates: List[Dict[str, Any]] = field(default_factory=list)
    contact: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "candidates": self.candidates, "contact": self.contact}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['Disambiguation']:
        if not data or not data.get("kind"):
            return None
        return cls(
            kind=data["kind"],
            candidates=list(data.get("candidates") or []),
            contact=data.get("contact") or "",
        )


@dataclass
class ConversationState:
    """Structured conversation state for one session key"""
    known_contacts: List[ContactRef] = field(default_factory=list)
    pending_appointments: List[Dict[str, Any]] = field(default_factory=list)
    pending_tasks: List[Dict[str, Any]] = field(default_factory=list)
    pending_notes: List[Dict[str, Any]] = field(default_factory=list)
    outstanding_question: Optional[str] = None
    disambiguation: Optional[Disambiguation] = None
    message_count: int = 0
    summary: Optional[str] = None
    recent_turns: List[Dict[str, str]] = field(default_factory=list)
    clock: int = 0
    token_usage: Dict[str, int] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def phase(self) -> ConversationPhase:
        """Derive the continuation phase from the stored fields"""
        if self.disambiguation is not None:
            return ConversationPhase.AWAITING_DISAMBIGUATION
        if self.outstanding_question:
            return ConversationPhase.AWAITING_CONTACT
        return ConversationPhase.IDLE

    def has_pending_items(self) -> bool:
        return bool(self.pending_appointments or self.pending_tasks or self.pending_notes)

    def is_empty(self) -> bool:
        return self.message_count == 0 and not self.known_contacts and not self.has_pending_items()

    def copy(self) -> 'ConversationState':
        """Deep copy; the resolver only ever mutates a copy"""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for persistence"""
        return {
            "known_contacts": [contact.to_dict() for contact in self.known_contacts],
            "pending_appointments": self.pending_appointments,
            "pending_tasks": self.pending_tasks,
            "pending_notes": self.pending_notes,
            "outstanding_question": self.outstanding_question,
            "disambiguation": self.disambiguation.to_dict() if self.disambiguation else None,
            "message_count": self.message_count,
            "summary": self.summary,
            "recent_turns": self.recent_turns,
            "clock": self.clock,
            "token_usage": self.token_usage,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ConversationState':
        """Create from dictionary; an empty or missing payload yields a fresh state"""
        if not data:
            return cls()

        return cls(
            known_contacts=[ContactRef.from_dict(item) for item in data.get("known_contacts", [])],
            pending_appointments=list(data.get("pending_appointments") or []),
            pending_tasks=list(data.get("pending_tasks") or []),
            pending_notes=list(data.get("pending_notes") or []),
            outstanding_question=data.get("outstanding_question") or None,
            disambiguation=Disambiguation.from_dict(data.get("disambiguation")),
            message_count=int(data.get("message_count") or 0),
            summary=data.get("summary") or None,
            recent_turns=list(data.get("recent_turns") or []),
            clock=int(data.get("clock") or 0),
            token_usage=dict(data.get("token_usage") or {}),
            created_at=_parse_timestamp(data.get("created_at")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )

    @classmethod
    def from_json(cls, payload: str) -> 'ConversationState':
        return cls.from_dict(json.loads(payload))


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO strings or datetimes, always returning timezone-aware values"""
    if not value:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
