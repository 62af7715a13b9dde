"""
Contact registry over ConversationState.known_contacts.

Contacts are keyed by display name ("First Last"). A contact seen again is
updated in place; known values are never overwritten with empty ones and
last_seen_at only ever moves forward.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from core.conversation.understanding.name_detection import (
    normalize_email,
    normalize_phone,
    split_name,
    strip_address_fragments,
)
from .state import ContactRef, ConversationState, normalize_display_name

logger = logging.getLogger(__name__)


def contact_key(first_name: str = "", last_name: str = "", phone: str = "", email: str = "") -> str:
    """Display name, or email/phone for contacts that have no name yet"""
    return normalize_display_name(first_name, last_name) or normalize_email(email) or normalize_phone(phone)


class ContactRegistry:
    """Ordered, de-duplicated collection of contacts mentioned in a session"""

    def __init__(self, state: ConversationState):
        self.state = state

    @property
    def contacts(self) -> List[ContactRef]:
        return self.state.known_contacts

    def __len__(self) -> int:
        return len(self.state.known_contacts)

    def is_empty(self) -> bool:
        return not self.state.known_contacts

    def _tick(self) -> int:
        """Advance the session clock past every recorded last_seen_at"""
        highest = max((contact.last_seen_at for contact in self.contacts), default=0)
        self.state.clock = max(self.state.clock, highest) + 1
        return self.state.clock

    def get(self, display_name: str) -> Optional[ContactRef]:
        for contact in self.contacts:
            if contact.display_name == display_name:
                return contact
        return None

    def upsert(self, info: Mapping[str, Any]) -> Optional[ContactRef]:
        """
        Insert or update a contact.

        Args:
            info: Mapping with first_name/last_name (or a combined name),
                  phone and email

        Returns:
            The stored ContactRef, or None when info carries nothing identifying
        """
        first_name = (info.get("first_name") or "").strip()
        last_name = (info.get("last_name") or "").strip()
        if not (first_name or last_name) and info.get("name"):
            first_name, last_name = split_name(info["name"].strip())
        phone = normalize_phone(info.get("phone"))
        email = normalize_email(info.get("email"))

        key = contact_key(first_name, last_name, phone, email)
        if not key:
            return None

        existing = self.get(key)
        if existing is None:
            contact = ContactRef(
                display_name=key,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                email=email,
                last_seen_at=self._tick(),
            )
            self.state.known_contacts.append(contact)
            logger.info(f"👤 New contact registered: {key}")
            return contact

        return self.update(existing, {
            "first_name": first_name,
            "last_name": last_name,
            "phone": phone,
            "email": email,
        })

    def update(self, contact: ContactRef, info: Mapping[str, Any]) -> ContactRef:
        """
        Merge info into an existing contact and mark it as just seen.

        A contact first registered by phone or email is re-keyed by name
        once a name arrives.
        """
        first_name = (info.get("first_name") or "").strip()
        last_name = (info.get("last_name") or "").strip()
        phone = normalize_phone(info.get("phone"))
        email = normalize_email(info.get("email"))

        if (first_name or last_name) and not (contact.first_name or contact.last_name):
            display_name = normalize_display_name(first_name, last_name)
            if self.get(display_name) is None:
                logger.info(f"👤 Contact {contact.display_name} is now known as {display_name}")
                contact.display_name = display_name

        # Never replace a known value with an empty one
        if first_name:
            contact.first_name = first_name
        if last_name:
            contact.last_name = last_name
        if phone:
            contact.phone = phone
        if email:
            contact.email = email
        contact.last_seen_at = self._tick()
        return contact

    def touch(self, contact: ContactRef) -> ContactRef:
        """Mark a contact as referenced in the current turn"""
        contact.last_seen_at = self._tick()
        return contact

    def most_recent(self) -> Optional[ContactRef]:
        """Contact with the highest last_seen_at; ties go to the latest inserted"""
        if not self.contacts:
            return None
        index = max(range(len(self.contacts)), key=lambda i: (self.contacts[i].last_seen_at, i))
        return self.contacts[index]

    def first(self) -> Optional[ContactRef]:
        """Contact with the lowest last_seen_at; ties go to the earliest inserted"""
        if not self.contacts:
            return None
        index = min(range(len(self.contacts)), key=lambda i: (self.contacts[i].last_seen_at, i))
        return self.contacts[index]

    def find_all_by_name_fragment(self, text: str) -> List[ContactRef]:
        """
        Contacts sharing the best match rank for text, most recent first.

        Full display-name hits (or a typed prefix of one, "sarah w") rank
        above first/last name hits. Street addresses are removed from text
        before matching.
        """
        if not text:
            return []

        cleaned = strip_address_fragments(text).lower()
        tokens = {token.strip(".,!?;:'\"").removesuffix("'s") for token in cleaned.split()}
        tokens.discard("")
        fragment = " ".join(cleaned.split())

        scored: List[tuple] = []
        for index, contact in enumerate(self.contacts):
            display = contact.display_name.lower()
            if not display:
                continue
            if re.search(rf"\b{re.escape(display)}\b", fragment) or (
                len(fragment) >= 3 and display.startswith(fragment)
            ):
                rank = 2
            elif any(
                part and len(part) >= 2 and part.lower() in tokens
                for part in (contact.first_name, contact.last_name)
            ):
                rank = 1
            else:
                continue
            scored.append((rank, contact.last_seen_at, index, contact))

        scored.sort(key=lambda item: (item[0], item[1], item[2]), reverse=True)
        best_rank = scored[0][0] if scored else 0
        return [contact for rank, _, _, contact in scored if rank == best_rank]

    def find_by_name_fragment(self, text: str) -> Optional[ContactRef]:
        """Best single contact matching a name fragment, or None"""
        matches = self.find_all_by_name_fragment(text)
        return matches[0] if matches else None

    def find_by_contact_detail(self, phone: str = "", email: str = "") -> Optional[ContactRef]:
        """Most recent contact with the given phone or email"""
        phone = normalize_phone(phone)
        email = normalize_email(email)
        if not (phone or email):
            return None
        matches = [
            contact for contact in self.contacts
            if (phone and contact.phone == phone) or (email and contact.email == email)
        ]
        return max(matches, key=lambda c: c.last_seen_at) if matches else None

    def as_contact_info(self, contact: ContactRef) -> Dict[str, str]:
        """Identity fields of a contact, keyed like an extracted contact"""
        return {
            "first_name": contact.first_name,
            "last_name": contact.last_name,
            "phone": contact.phone,
            "email": contact.email,
        }
