"""Data models for the CRM contact extraction chatbot"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any, Literal
from enum import Enum
from datetime import datetime


ACTIVITY_INTENTS = ("add", "update", "list", "delete", "completed", "failed")
CONTACT_INTENTS = ("add", "update", "list")
LANGUAGES = ("english", "spanish")
DISAMBIGUATION_KINDS = ("contact", "appointment", "task", "note")


class ConversationPhase(str, Enum):
    """Per-session continuation states"""
    IDLE = "idle"
    AWAITING_CONTACT = "awaiting_contact"
    AWAITING_DISAMBIGUATION = "awaiting_disambiguation"


class NoteSchema(BaseModel):
    """A free-text note attached to a contact"""
    model_config = ConfigDict(extra="allow")

    note: str = ""
    intent: Literal["add", "update", "list", "delete", "completed", "failed"] = "add"


class ValidationSchema(BaseModel):
    missing_fields: List[str] = Field(default_factory=list)
    invalid_fields: List[str] = Field(default_factory=list)


class TaskInputSchema(BaseModel):
    """Task fields as extracted"""
    model_config = ConfigDict(extra="allow")

    name: str = ""
    intent: Literal["add", "update", "list", "delete", "completed", "failed"] = "add"
    id: str = "temp_task_1"
    type: str = "Follow Up"
    is_completed: int = 0  # 0 or 1
    dueDate: str = ""  # YYYY-MM-DD
    dueDateTime: str = ""  # ISO 8601 UTC with Z


class TaskPairSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    input: TaskInputSchema = Field(default_factory=TaskInputSchema)


class AppointmentSchema(BaseModel):
    """Appointment fields as extracted"""
    model_config = ConfigDict(extra="allow")

    title: str = ""
    description: str = ""
    intent: Literal["add", "update", "list", "delete", "completed", "failed"] = "add"
    id: str = "temp_appt_1"
    start: str = ""  # ISO 8601 UTC with Z
    end: str = ""
    location: str = ""
    type: str = ""
    appointment_type_id: int = 0
    host_user_id: Optional[int] = None


class InputContactSchema(BaseModel):
    """Contact record as it should be written to the CRM"""
    model_config = ConfigDict(extra="allow")

    id: str = "temp_contact_1"
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    email: str = ""
    stage: str = "Lead"
    source: str = "sumiAgent"
    intent: Literal["add", "update", "list"] = "list"
    operation: str = "list"
    notes: List[NoteSchema] = Field(default_factory=list)
    tasks: List[TaskPairSchema] = Field(default_factory=list)
    appointments: List[AppointmentSchema] = Field(default_factory=list)
    validations: ValidationSchema = Field(default_factory=ValidationSchema)

    def has_identity(self) -> bool:
        """True when the contact carries a name, phone or email"""
        return any(value.strip() for value in (self.first_name, self.last_name, self.phone, self.email))

    def has_activities(self) -> bool:
        return bool(self.notes or self.tasks or self.appointments)


class UpdateContactSchema(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    stage: Optional[str] = None


class ContactSchema(BaseModel):
    input_contact: InputContactSchema = Field(default_factory=InputContactSchema)
    update_contact: UpdateContactSchema = Field(default_factory=UpdateContactSchema)
    approved: bool = False


class DisambiguationSchema(BaseModel):
    """A choice the user has been asked to make among existing items"""
    kind: Literal["contact", "appointment", "task", "note"]
    candidates: List[Dict[str, Any]] = Field(default_factory=list)
    contact: str = ""  # display name the candidates belong to, if any


class ContactExtractionResponse(BaseModel):
    """Canonical result of one conversation turn"""
    contacts: List[ContactSchema] = Field(default_factory=list)
    language: Literal["english", "spanish"] = "english"
    skip_to: str = ""  # 'list_tasks', 'list_appointments', or empty
    outstanding_question: str = ""
    disambiguation: Optional[DisambiguationSchema] = None
    pending_appointments: List[Dict[str, Any]] = Field(default_factory=list)
    pending_tasks: List[Dict[str, Any]] = Field(default_factory=list)
    pending_notes: List[Dict[str, Any]] = Field(default_factory=list)


class TokenUsage(BaseModel):
    """Accumulated model usage for a session"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    calls: int = 0
    messages_count: int = 0
    last_updated: Optional[datetime] = None

    def add(self, usage: Optional[Dict[str, Any]]) -> 'TokenUsage':
        """Accumulate one call's usage (missing counts are treated as zero)"""
        usage = usage or {}
        prompt = int(usage.get("prompt_tokens") or 0)
        completion = int(usage.get("completion_tokens") or 0)
        self.prompt_tokens += prompt
        self.completion_tokens += completion
        self.total_tokens += int(usage.get("total_tokens") or (prompt + completion))
        self.calls += 1
        return self


def fallback_extraction_response() -> ContactExtractionResponse:
    """Safe result returned when extraction fails: one empty list-intent contact"""
    return ContactExtractionResponse(
        contacts=[
            ContactSchema(
                input_contact=InputContactSchema(id="temp_1", intent="list", operation="list"),
            )
        ],
        language="english",
        skip_to="",
    )
