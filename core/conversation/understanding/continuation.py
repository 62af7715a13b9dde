"""
Continuation detection for short follow-up replies.

When the assistant has asked "Who is this for?" or "Which appointment?",
the next message is usually a fragment: a name, a phone number, "the
second one", "both". This module recognizes those fragments and picks the
candidates a reply refers to. It reads conversation state duck-typed
(phase, known_contacts, disambiguation) and never mutates it.
"""

import re
import logging
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

from models.schemas import ConversationPhase
from .name_detection import (
    NON_NAME_WORDS,
    extract_email,
    extract_name_candidate,
    extract_phone,
)

logger = logging.getLogger(__name__)


ORDINAL_WORDS = {
    "first": 0, "1st": 0, "primero": 0, "primera": 0,
    "second": 1, "2nd": 1, "segundo": 1, "segunda": 1,
    "third": 2, "3rd": 2, "tercero": 2, "tercera": 2,
    "fourth": 3, "4th": 3, "cuarto": 3, "cuarta": 3,
    "last": -1, "latter": -1, "último": -1, "ultimo": -1, "última": -1, "ultima": -1,
    "former": 0,
}

ALL_WORDS = {"all", "both", "everyone", "ambos", "ambas", "todos", "todas"}

AFFIRMATIONS = {
    "yes", "yeah", "yep", "yup", "sure", "ok", "okay", "correct", "right",
    "exactly", "sí", "si", "claro", "exacto", "correcto", "vale",
}

NEGATIONS = {"no", "nope", "neither", "none", "nah", "ninguno", "ninguna", "tampoco"}

ACTION_WORDS = {
    "add", "schedule", "create", "update", "change", "modify", "delete", "cancel",
    "remove", "show", "list", "remind", "book", "move", "reschedule", "mark",
    "complete", "log", "set",
    "agrega", "agregar", "agenda", "agendar", "crea", "crear", "cambia", "cambiar",
    "actualiza", "actualizar", "borra", "borrar", "elimina", "eliminar", "cancela",
    "cancelar", "muestra", "mostrar", "recuerda", "recordar", "programa", "programar",
}

MAX_CONTINUATION_WORDS = 8

_WORD = re.compile(r"[#\w][\w'\-]*", re.UNICODE)


@dataclass
class MessageClassification:
    """What a user message contributes relative to the session state"""
    is_continuation: bool = False
    has_action: bool = False
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    ordinal: Optional[int] = None  # 0-based, -1 for "last"
    select_all: bool = False
    affirmation: bool = False
    negation: bool = False

    def has_identity(self) -> bool:
        return bool(self.name or self.phone or self.email)

    def has_piece(self) -> bool:
        return (
            self.has_identity()
            or self.ordinal is not None
            or self.select_all
            or self.affirmation
            or self.negation
        )

    @property
    def refers_to_first(self) -> bool:
        return self.ordinal == 0


def _words(text: str) -> List[str]:
    return [word.lower() for word in _WORD.findall(text or "")]


def parse_ordinal(text: str) -> Optional[int]:
    """
    Read an ordinal reference such as "the second one", "#2", "último".

    Bare digits are only read as positions in very short replies so times
    and dates in longer messages are not mistaken for choices.
    """
    words = _words(text)
    for word in words:
        if word in ORDINAL_WORDS:
            return ORDINAL_WORDS[word]

    marked = re.search(r"(?:#|\bnumber\s+|\bn[uú]mero\s+|\bopti?on\s+)(\d{1,2})\b", (text or "").lower())
    if marked:
        return max(int(marked.group(1)) - 1, 0)

    if 0 < len(words) <= 3:
        for word in words:
            if word.isdigit() and 0 < int(word) <= 20:
                return int(word) - 1
    return None


def _bare_name(text: str) -> Optional[str]:
    """Accept "sarah williams" typed in lower case as a reply to "who?"."""
    words = (text or "").strip().rstrip(".!").split()
    if not 1 <= len(words) <= 3:
        return None
    if not all(re.fullmatch(r"[A-Za-zà-ÿÀ-ß'\-]+", word) for word in words):
        return None
    if any(word.lower() in NON_NAME_WORDS or word.lower() in ACTION_WORDS for word in words):
        return None
    return " ".join(word.capitalize() for word in words)


def classify_message(message: str, state: Any) -> MessageClassification:
    """
    Classify a message against the current session state.

    Args:
        message: Raw user message
        state: ConversationState (read only)

    Returns:
        MessageClassification with every detected piece filled in
    """
    words = _words(message)
    phase = getattr(state, "phase", ConversationPhase.IDLE)
    awaiting = phase != ConversationPhase.IDLE
    known = bool(getattr(state, "known_contacts", None))

    result = MessageClassification(
        has_action=any(word in ACTION_WORDS for word in words),
        phone=extract_phone(message),
        email=extract_email(message),
        ordinal=parse_ordinal(message),
        select_all=any(word in ALL_WORDS for word in words),
        affirmation=bool(words) and words[0] in AFFIRMATIONS,
        negation=bool(words) and words[0] in NEGATIONS,
    )

    result.name = extract_name_candidate(message)
    if result.name is None and phase == ConversationPhase.AWAITING_CONTACT and not (
        result.phone or result.email or result.affirmation or result.negation
    ):
        result.name = _bare_name(message)

    short = len(words) <= MAX_CONTINUATION_WORDS
    result.is_continuation = (awaiting and result.has_piece()) or (
        short and not result.has_action and (awaiting or known)
    )

    if result.is_continuation:
        logger.debug(
            f"Continuation reply in phase {phase.value if hasattr(phase, 'value') else phase}: "
            f"name={result.name} phone={bool(result.phone)} email={bool(result.email)} "
            f"ordinal={result.ordinal} all={result.select_all}"
        )
    return result


def candidate_label(candidate: Dict[str, Any]) -> str:
    """Human-readable label of a disambiguation candidate"""
    if not isinstance(candidate, dict):
        return str(candidate or "")
    name = " ".join(f"{candidate.get('first_name') or ''} {candidate.get('last_name') or ''}".split())
    task = candidate.get("input") if isinstance(candidate.get("input"), dict) else {}
    for value in (
        candidate.get("display_name"),
        name,
        candidate.get("title"),
        task.get("name"),
        candidate.get("name"),
        candidate.get("note"),
        candidate.get("label"),
        candidate.get("email"),
        candidate.get("phone"),
    ):
        if value:
            return str(value).strip()
    return ""


def select_candidates(message: str, disambiguation: Any) -> List[Dict[str, Any]]:
    """
    Pick the candidates a reply refers to.

    Matches "all"/"both", then labels named in the reply, then an ordinal
    position. Returns an empty list when the reply selects nothing.
    """
    candidates = list(getattr(disambiguation, "candidates", None) or [])
    if not candidates or not message:
        return []

    words = _words(message)
    if any(word in ALL_WORDS for word in words):
        return candidates

    lowered = " ".join(message.lower().split())
    by_label = []
    for candidate in candidates:
        label = candidate_label(candidate).lower()
        if label and re.search(rf"\b{re.escape(label)}\b", lowered):
            by_label.append(candidate)
    if by_label:
        return by_label

    index = parse_ordinal(message)
    if index is not None and -len(candidates) <= index < len(candidates):
        return [candidates[index]]

    # A single distinctive word of one label ("the Smith one")
    partial = [
        candidate for candidate in candidates
        if any(
            len(part) >= 3 and part in words
            for part in _words(candidate_label(candidate))
            if part not in NON_NAME_WORDS
        )
    ]
    if len(partial) == 1:
        return partial
    return []
