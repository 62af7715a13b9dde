"""
Pattern helpers for spotting contact details in free text.

These are pure functions so their edge cases (street addresses that look
like "First Last", possessives, honorifics, ISO dates that look like phone
numbers) can be unit tested on their own.
"""

import re
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)


# Street suffixes that turn "Pine Ave" or "Elm St" into an address, not a person
ADDRESS_SUFFIXES = {
    "ave", "avenue", "st", "street", "rd", "road", "blvd", "boulevard",
    "dr", "drive", "way", "ln", "lane", "ct", "court", "pl", "place",
    "pkwy", "hwy", "cir", "ter",
}

HONORIFICS = {"mr", "mrs", "ms", "miss", "dr", "sr", "sra", "srta"}

# Capitalized words that start sentences or name things other than people
NON_NAME_WORDS = {
    # English commands / CRM vocabulary
    "add", "schedule", "create", "update", "change", "modify", "delete", "cancel",
    "remove", "show", "list", "find", "call", "email", "text", "meet", "met",
    "remind", "book", "set", "new", "contact", "lead", "please", "task", "tasks",
    "appointment", "appointments", "note", "notes", "follow", "send", "log",
    "move", "reschedule", "mark", "complete", "showing", "listing", "buyer",
    "consultation", "open", "house", "client", "prospect", "phone",
    # Function words that get capitalized at sentence start
    "the", "a", "an", "my", "our", "i", "hi", "hello", "hey", "yes", "no", "ok",
    "okay", "also", "and", "then", "for", "with", "at", "on", "in", "to", "from",
    "tomorrow", "today", "tonight", "next", "this", "last", "first", "second",
    "both", "all", "another", "one",
    # Spanish
    "agregar", "agrega", "agendar", "agenda", "crear", "crea", "llamar", "llama",
    "cancelar", "cancela", "borrar", "borra", "eliminar", "elimina", "mostrar",
    "muestra", "nuevo", "nueva", "cita", "citas", "tarea", "tareas", "nota",
    "notas", "contacto", "con", "para", "el", "la", "los", "las", "mi", "hoy",
    "mañana", "primero", "primera", "segundo", "segunda", "ambos", "todos", "si", "sí",
    # Days and months
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "lunes", "martes", "miércoles", "miercoles", "jueves", "viernes", "sábado",
    "sabado", "domingo",
    "january", "february", "march", "april", "may", "june", "july", "august",
    "september", "october", "november", "december",
}

_NAME_TOKEN = re.compile(r"^[A-Z][a-zà-ÿ]+(?:['\-][A-Za-zà-ÿ]+)*\.?$")
_TOKEN_SPLIT = re.compile(r"[^\s,;:!?()\"]+")
_EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_PHONE_PATTERN = re.compile(r"\+?\(?\d[\d\s().\-]{5,}\d")
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


def _bare(token: str) -> str:
    """Lower-case a token and drop trailing punctuation and possessives"""
    token = re.sub(r"['’]s$", "", token)
    return token.strip(".'’").lower()


def is_address_fragment(token: str) -> bool:
    """True for a street suffix such as "Ave", "St." or "Blvd" """
    return _bare(token) in ADDRESS_SUFFIXES


def _is_address_suffix_at(tokens: List[str], index: int) -> bool:
    """A suffix only counts when it closes an address: "Oak Dr", "123 Main St."

    "Dr. Smith" is an honorific, not a street.
    """
    token = tokens[index]
    if not is_address_fragment(token) or index == 0:
        return False
    previous = tokens[index - 1]
    if not (previous[:1].isupper() or previous[:1].isdigit()):
        return False
    nxt = tokens[index + 1] if index + 1 < len(tokens) else ""
    if token.endswith(".") and _bare(token) in HONORIFICS and _NAME_TOKEN.match(nxt) \
            and _bare(nxt) not in NON_NAME_WORDS:
        return False
    return True


def strip_address_fragments(text: str) -> str:
    """Remove street-address fragments ("789 Pine Ave") from text"""
    tokens = text.split()
    kept: List[str] = []
    for index, token in enumerate(tokens):
        if _is_address_suffix_at(tokens, index):
            # Drop the words that lead into the suffix (street name and number)
            while kept and (kept[-1][:1].isupper() or kept[-1][:1].isdigit()):
                kept.pop()
            continue
        kept.append(token)
    return " ".join(kept)


def _name_runs(tokens: List[str]) -> List[List[str]]:
    """Group consecutive capitalized tokens, splitting at address suffixes"""
    runs: List[List[str]] = []
    current: List[str] = []
    for index, token in enumerate(tokens):
        if _is_address_suffix_at(tokens, index):
            # Everything accumulated so far was a street name
            current = []
            continue
        if _NAME_TOKEN.match(token) or _bare(token) in HONORIFICS:
            current.append(token)
            if token.endswith(".") and _bare(token) not in HONORIFICS:
                runs.append(current)
                current = []
            continue
        if current:
            runs.append(current)
        current = []
    if current:
        runs.append(current)
    return runs


def extract_name_candidate(text: str) -> Optional[str]:
    """
    Find the first "First Last" person name in text.

    Address fragments ("Pine Ave", "Elm St"), command words, days and months
    are never returned as names. Honorifics are kept when only one name word
    follows them ("Mrs. Johnson").

    Args:
        text: Free-text user message

    Returns:
        Candidate display name or None
    """
    if not text:
        return None

    tokens = _TOKEN_SPLIT.findall(text)
    for run in _name_runs(tokens):
        words: List[str] = []
        for token in run:
            if _bare(token) in NON_NAME_WORDS:
                if words:
                    break
                continue
            words.append(re.sub(r"['’]s$", "", token))

        if words and _bare(words[0]) in HONORIFICS:
            names = words[1:3]
            if len(names) >= 2:
                return " ".join(name.rstrip(".") for name in names)
            if len(names) == 1:
                honorific = words[0] if words[0].endswith(".") else f"{words[0]}."
                return f"{honorific} {names[0].rstrip('.')}"
            continue

        if len(words) >= 2:
            return " ".join(word.rstrip(".") for word in words[:2])

    return None


def split_name(name: str) -> tuple:
    """Split a display name into (first_name, last_name)"""
    parts = (name or "").split(maxsplit=1)
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]


def normalize_phone(value: Optional[str]) -> str:
    """Reduce a phone number to digits, keeping a leading '+'"""
    if not value:
        return ""
    value = str(value).strip()
    digits = re.sub(r"\D", "", value)
    if not digits:
        return ""
    return f"+{digits}" if value.startswith("+") else digits


def extract_phone(text: str) -> Optional[str]:
    """Extract a phone number (7 to 15 digits) from text"""
    if not text:
        return None
    for match in _PHONE_PATTERN.finditer(text):
        candidate = match.group(0)
        if _ISO_DATE.search(candidate):
            continue
        phone = normalize_phone(candidate)
        if 7 <= len(phone.lstrip("+")) <= 15:
            return phone
    return None


def normalize_email(value: Optional[str]) -> str:
    return str(value).strip().lower() if value else ""


def extract_email(text: str) -> Optional[str]:
    """Extract and lower-case the first email address in text"""
    if not text:
        return None
    match = _EMAIL_PATTERN.search(text)
    return match.group(0).lower() if match else None
