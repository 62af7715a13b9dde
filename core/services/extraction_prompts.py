"""Prompt templates for CRM contact extraction and history summarization"""

import logging
from datetime import datetime, timezone as dt_timezone
from typing import Dict, List, Optional

import pytz

from config import settings

logger = logging.getLogger(__name__)


RESPONSE_FORMAT = """{
  "contacts": [{"input_contact": {"id": "temp_contact_1", "first_name": "", "last_name": "", "phone": "", "email": "", "stage": "Lead", "source": "sumiAgent", "intent": "add", "operation": "add", "notes": [{"note": "", "intent": "add"}], "tasks": [{"input": {"name": "", "intent": "add", "id": "temp_task_1", "type": "Follow Up", "is_completed": 0, "dueDate": "YYYY-MM-DD", "dueDateTime": "YYYY-MM-DDTHH:MM:SSZ"}}], "appointments": [{"title": "", "description": "", "intent": "add", "id": "temp_appt_1", "start": "YYYY-MM-DDTHH:MM:SSZ", "end": "YYYY-MM-DDTHH:MM:SSZ", "location": "", "type": "", "appointment_type_id": 0, "host_user_id": null}], "validations": {"missing_fields": [], "invalid_fields": []}}, "update_contact": {}, "approved": false}],
  "language": "english",
  "skip_to": "",
  "outstanding_question": "",
  "disambiguation": null
}"""


def get_utc_offset(timezone_name: str) -> str:
    """UTC offset such as "UTC-05:00" for an IANA timezone name"""
    try:
        offset = datetime.now(pytz.timezone(timezone_name)).utcoffset()
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{timezone_name}', using UTC")
        return "UTC+00:00"
    total_minutes = int(offset.total_seconds() // 60) if offset else 0
    sign = "+" if total_minutes >= 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"UTC{sign}{hours:02d}:{minutes:02d}"


def build_extraction_prompt(context_summary: str,
                            timezone: Optional[str] = None,
                            now: Optional[datetime] = None,
                            appointment_types: Optional[List[str]] = None,
                            stages: Optional[List[str]] = None) -> str:
    """
    System prompt for one extraction call.

    Args:
        context_summary: Session context built by the resolver
        timezone: User's IANA timezone, used to convert spoken times to UTC
        now: Current time (defaults to the wall clock)
        appointment_types: Appointment types the CRM accepts
        stages: Contact stages the CRM accepts
    """
    timezone = timezone or settings.DEFAULT_TIMEZONE
    now = now or datetime.now(dt_timezone.utc)
    appointment_types = appointment_types or settings.APPOINTMENT_TYPES
    stages = stages or settings.CONTACT_STAGES

    return f"""You extract CRM records (contacts, tasks, appointments, notes) for a real estate agent.

CURRENT DATE AND TIME (UTC): {now.strftime("%Y-%m-%dT%H:%M:%SZ")}
USER TIMEZONE: {timezone} ({get_utc_offset(timezone)})
Convert every date and time the user mentions from their timezone to UTC (ISO 8601 with Z).

AVAILABLE APPOINTMENT TYPES: {", ".join(appointment_types)}
AVAILABLE STAGES: {", ".join(stages)}

CONTEXT:
{context_summary or "No earlier conversation."}

RULES:
1. If the message mentions a specific name, use that contact (HIGHEST PRIORITY)
2. If "last task/appointment", use the MOST RECENT contact
3. If "first task/appointment" or "the first contact", use the FIRST contact
4. If no name is mentioned, use the MOST RECENT contact
5. NEVER create empty contacts when there is a contact in the context
6. Street addresses ("789 Pine Ave", "Elm St") are locations, never contact names
7. If activities are mentioned and no contact can be determined, leave the contact name empty and ask who it is for in "outstanding_question"
8. If a reference could mean several existing items, fill "disambiguation" with kind (contact, appointment, task or note), the candidates and the contact they belong to, and ask in "outstanding_question"

INTENTS:
- DELETE: "cancel", "delete", "remove" -> intent "delete"
- UPDATE: "update", "change", "modify", "reschedule" -> intent "update"
- ADD: "add", "create", "schedule" -> intent "add"
- LIST: "show", "list", "find" -> intent "list"
- COMPLETED: "done", "completed", "finished" -> intent "completed"
Contacts only use add, update or list.

EXTRACTION:
- For existing contacts, preserve name, phone and email from the context
- Reply in the user's language: set "language" to "english" or "spanish"
- Set "skip_to" to "list_tasks" or "list_appointments" when the user only wants to see those

RESPONSE FORMAT (JSON only):
{RESPONSE_FORMAT}
"""


def build_summary_prompt(prior_turns: List[Dict[str, str]]) -> str:
    """Prompt compressing older turns into a short running summary"""
    lines = []
    for turn in prior_turns:
        role = "User" if turn.get("role") == "user" else "Assistant"
        lines.append(f"{role}: {turn.get('content', '')}")
    transcript = "\n".join(lines)

    return f"""Summarize this CRM assistant conversation in at most five sentences.
Keep every contact name with its phone and email, and every task, appointment
and note with the contact it belongs to. Mention any question still waiting
for an answer. Plain text only.

{transcript}
"""
