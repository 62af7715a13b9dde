"""
Extraction result normalizer.

Every raw result coming back from the extraction call passes through here
and leaves as a ContactExtractionResponse with all defaults filled in.
Missing optional fields are never an error; only a payload that cannot be
decoded into a JSON object raises ExtractionFailure.
"""

import json
import re
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from core.conversation.errors import ExtractionFailure
from models.schemas import (
    ACTIVITY_INTENTS,
    CONTACT_INTENTS,
    DISAMBIGUATION_KINDS,
    LANGUAGES,
    ContactExtractionResponse,
)
from .name_detection import normalize_email, normalize_phone

logger = logging.getLogger(__name__)


OPERATION_BY_INTENT = {"add": "add", "update": "update"}

CONTACT_TEXT_FIELDS = ("id", "first_name", "last_name", "phone", "email", "stage", "source")
UPDATE_FIELDS = ("first_name", "last_name", "phone", "email", "stage")

# Keywords used only when the model did not say what kind of choice it asked for
KIND_KEYWORDS = (
    ("appointment", ("appointment", "showing", "meeting", "cita", "reunión", "reunion")),
    ("task", ("task", "to-do", "todo", "tarea")),
    ("note", ("note", "nota")),
    ("contact", ("contact", "contacto", "person", "persona", "who", "quién", "quien")),
)


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def _int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return [value]
    return []


class ExtractionNormalizer:
    """Turns loosely-typed extraction output into the canonical response"""

    def normalize(self, raw: Any) -> ContactExtractionResponse:
        """
        Canonicalize a raw extraction result.

        Args:
            raw: JSON text (optionally fenced), bytes, dict, response model,
                 or a reply object exposing .text

        Returns:
            ContactExtractionResponse with every field defaulted

        Raises:
            ExtractionFailure: if no JSON object can be decoded
        """
        payload = self.decode(raw)
        data = self._coerce_response(payload)
        try:
            return ContactExtractionResponse.model_validate(data)
        except PydanticValidationError as e:
            logger.error(f"Normalized payload still failed validation: {str(e)}")
            raise ExtractionFailure(f"Extraction result failed validation: {e}", raw) from e

    # Decoding

    def decode(self, raw: Any) -> Dict[str, Any]:
        """Decode raw output into a dictionary"""
        if isinstance(raw, ContactExtractionResponse):
            return raw.model_dump()
        if raw is not None and not isinstance(raw, (str, bytes, dict)) and hasattr(raw, "text"):
            raw = raw.text
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ExtractionFailure("Extraction result is not valid UTF-8", raw) from e
        if isinstance(raw, str):
            raw = self._parse_json_text(raw)
        if not isinstance(raw, dict):
            raise ExtractionFailure(f"Extraction result is not a JSON object: {type(raw).__name__}", raw)

        # A single contact returned without the envelope
        if "contacts" not in raw and "input_contact" in raw:
            raw = {"contacts": [raw]}
        return raw

    def _parse_json_text(self, text: str) -> Any:
        """Recover a JSON object from model text"""
        text = text.strip()
        if not text:
            raise ExtractionFailure("Extraction result is empty", text)

        # Method 1: direct parse
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

        # Method 2: markdown code block
        fenced = re.search(r'```(?:json)?\s*(\{[\s\S]*?\})\s*```', text)
        if fenced:
            try:
                return json.loads(fenced.group(1))
            except json.JSONDecodeError:
                pass

        # Method 3: outermost object inside surrounding prose
        braces = re.search(r'\{[\s\S]*\}', text)
        if braces:
            try:
                return json.loads(braces.group(0))
            except json.JSONDecodeError:
                pass

        logger.error(f"Failed to extract JSON from response: {text[:200]}")
        raise ExtractionFailure("Could not parse JSON from extraction result", text)

    # Coercion

    def _coerce_response(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        language = _text(payload.get("language")).lower()
        question = _text(
            payload.get("outstanding_question")
            or payload.get("clarifying_question")
            or payload.get("question")
        )
        return {
            "contacts": [
                self._coerce_contact(contact)
                for contact in _list(payload.get("contacts"))
                if isinstance(contact, dict)
            ],
            "language": language if language in LANGUAGES else "english",
            "skip_to": _text(payload.get("skip_to")),
            "outstanding_question": question,
            "disambiguation": self._coerce_disambiguation(payload.get("disambiguation"), question),
        }

    def _coerce_contact(self, contact: Dict[str, Any]) -> Dict[str, Any]:
        source = contact.get("input_contact")
        if not isinstance(source, dict):
            source = {}
        input_contact = dict(source)

        for field in CONTACT_TEXT_FIELDS:
            if field in input_contact:
                input_contact[field] = _text(input_contact[field])
            else:
                input_contact.pop(field, None)
        if "phone" in input_contact:
            input_contact["phone"] = normalize_phone(input_contact["phone"])
        if "email" in input_contact:
            input_contact["email"] = normalize_email(input_contact["email"])
        for field in ("id", "stage", "source"):
            if not input_contact.get(field):
                input_contact.pop(field, None)

        intent = _text(input_contact.get("intent")).lower()
        if intent not in CONTACT_INTENTS:
            intent = "list"
        input_contact["intent"] = intent

        operation = _text(input_contact.get("operation")).lower()
        input_contact["operation"] = operation or OPERATION_BY_INTENT.get(intent, "list")

        validations = input_contact.get("validations")
        if not isinstance(validations, dict):
            validations = {}
        input_contact["validations"] = {
            "missing_fields": [_text(v) for v in _list(validations.get("missing_fields")) if _text(v)],
            "invalid_fields": [_text(v) for v in _list(validations.get("invalid_fields")) if _text(v)],
        }

        input_contact["notes"] = [
            self._coerce_note(note) for note in _list(input_contact.get("notes"))
            if isinstance(note, (dict, str))
        ]
        input_contact["tasks"] = [
            self._coerce_task(task) for task in _list(input_contact.get("tasks"))
            if isinstance(task, dict)
        ]
        input_contact["appointments"] = [
            self._coerce_appointment(appt) for appt in _list(input_contact.get("appointments"))
            if isinstance(appt, dict)
        ]

        update_source = contact.get("update_contact")
        if not isinstance(update_source, dict):
            update_source = {}
        update_contact = {}
        for field in UPDATE_FIELDS:
            value = update_source.get(field)
            update_contact[field] = _text(value) if value is not None else None

        return {
            "input_contact": input_contact,
            "update_contact": update_contact,
            "approved": contact.get("approved") is True,
        }

    def _activity_intent(self, value: Any) -> str:
        intent = _text(value).lower()
        return intent if intent in ACTIVITY_INTENTS else "list"

    def _coerce_note(self, note: Any) -> Dict[str, Any]:
        if isinstance(note, str):
            return {"note": note.strip(), "intent": "add"}
        coerced = dict(note)
        coerced["note"] = _text(coerced.get("note") or coerced.get("content") or coerced.get("text"))
        coerced["intent"] = self._activity_intent(coerced.get("intent", "add"))
        return coerced

    def _coerce_task(self, task: Dict[str, Any]) -> Dict[str, Any]:
        # Tasks arrive either as {"input": {...}} or flat
        if isinstance(task.get("input"), dict):
            pair = dict(task)
            fields = dict(task["input"])
        else:
            pair = {}
            fields = dict(task)

        fields["name"] = _text(fields.get("name") or fields.get("title"))
        fields["intent"] = self._activity_intent(fields.get("intent", "add"))
        for key in ("id", "type", "dueDate", "dueDateTime"):
            if key in fields:
                fields[key] = _text(fields[key])
                if not fields[key] and key in ("id", "type"):
                    fields.pop(key)
        fields["is_completed"] = 1 if _int(fields.get("is_completed"), 0) else 0

        pair["input"] = fields
        return pair

    def _coerce_appointment(self, appointment: Dict[str, Any]) -> Dict[str, Any]:
        coerced = dict(appointment)
        for key in ("title", "description", "start", "end", "location", "type"):
            if key in coerced:
                coerced[key] = _text(coerced[key])
        if "id" in coerced:
            coerced["id"] = _text(coerced["id"])
            if not coerced["id"]:
                coerced.pop("id")
        coerced["intent"] = self._activity_intent(coerced.get("intent", "add"))
        coerced["appointment_type_id"] = _int(coerced.get("appointment_type_id"), 0)
        host = coerced.get("host_user_id")
        coerced["host_user_id"] = _int(host, 0) if host not in (None, "") else None
        return coerced

    def _coerce_disambiguation(self, value: Any, question: str) -> Optional[Dict[str, Any]]:
        if not isinstance(value, dict):
            return None

        candidates = []
        for candidate in _list(value.get("candidates")):
            if isinstance(candidate, dict):
                candidates.append(candidate)
            elif isinstance(candidate, str) and candidate.strip():
                candidates.append({"label": candidate.strip()})
        if not candidates:
            logger.warning("Dropping disambiguation without candidates")
            return None

        kind = _text(value.get("kind")).lower()
        if kind not in DISAMBIGUATION_KINDS:
            kind = detect_disambiguation_kind(question, candidates)

        return {
            "kind": kind,
            "candidates": [self._coerce_candidate(kind, candidate) for candidate in candidates],
            "contact": _text(value.get("contact")),
        }

    def _coerce_candidate(self, kind: str, candidate: Dict[str, Any]) -> Dict[str, Any]:
        """Give a choice candidate the shape of the item it stands for"""
        label = _text(candidate.get("label"))
        if kind == "appointment":
            coerced = self._coerce_appointment(candidate)
            if not coerced.get("title") and label:
                coerced["title"] = label
            return coerced
        if kind == "task":
            coerced = self._coerce_task(candidate)
            if not coerced["input"]["name"]:
                coerced["input"]["name"] = label or _text(coerced["input"].get("label"))
            return coerced
        if kind == "note":
            coerced = self._coerce_note(candidate)
            if not coerced["note"] and label:
                coerced["note"] = label
            return coerced

        coerced = dict(candidate)
        for field in ("first_name", "last_name", "display_name", "label"):
            if field in coerced:
                coerced[field] = _text(coerced[field])
        if "phone" in coerced:
            coerced["phone"] = normalize_phone(_text(coerced["phone"]))
        if "email" in coerced:
            coerced["email"] = normalize_email(_text(coerced["email"]))
        return coerced


def detect_disambiguation_kind(question: str, candidates: List[Dict[str, Any]]) -> str:
    """
    Infer what a choice is about when the model did not say.

    Candidate shape is checked first; question keywords (English and Spanish)
    are only a fallback.
    """
    for candidate in candidates:
        keys = set(candidate.keys())
        if keys & {"title", "start", "end", "location"}:
            return "appointment"
        if keys & {"input", "dueDate", "dueDateTime", "is_completed"}:
            return "task"
        if "note" in keys:
            return "note"
        if keys & {"first_name", "last_name", "display_name", "phone", "email"}:
            return "contact"

    lowered = (question or "").lower()
    for kind, keywords in KIND_KEYWORDS:
        if any(re.search(rf"\b{re.escape(word)}", lowered) for word in keywords):
            return kind
    return "contact"
