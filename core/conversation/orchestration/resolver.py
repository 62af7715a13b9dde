"""
Continuation resolver.

Runs one conversation turn end to end: loads the session state, asks the
extraction call for structured CRM records, then reconciles the result
with what the session already knows. Short follow-up replies ("Sarah
Williams", "the second one") complete the request that is waiting for
them, activities without a contact are held until one is named, and
references without a name resolve to the most recently mentioned contact.

The extraction result is never trusted for conversation state: the
resolver alone decides what is staged, attached or asked.
"""

import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from core.conversation.errors import ExtractionFailure
from core.conversation.context import (
    ActivityBundle,
    ContactRef,
    ContactRegistry,
    ConversationState,
    Disambiguation,
    PendingItemTracker,
    SessionStore,
    StateValidator,
    attach_bundle,
    normalize_display_name,
)
from core.conversation.understanding import (
    ExtractionNormalizer,
    MessageClassification,
    candidate_label,
    classify_message,
    select_candidates,
    split_name,
)
from models.schemas import (
    ContactExtractionResponse,
    ContactSchema,
    ConversationPhase,
    DisambiguationSchema,
    InputContactSchema,
    TokenUsage,
    fallback_extraction_response,
)
from .context_summary import build_context_summary

logger = logging.getLogger(__name__)


# extract(message, context_summary, prior_turns) -> raw result
ExtractFn = Callable[[str, str, List[Dict[str, str]]], Awaitable[Any]]
# summarize(prior_turns) -> summary text
SummarizeFn = Callable[[List[Dict[str, str]]], Awaitable[str]]

USAGE_COUNTERS = ("prompt_tokens", "completion_tokens", "total_tokens", "calls")

DEFAULT_QUESTIONS = {
    "english": "Who is this for? Please share the contact's name, phone number or email.",
    "spanish": "¿Para quién es esto? Por favor comparte el nombre, teléfono o correo del contacto.",
}


def _contact_choice_question(labels: List[str], language: str) -> str:
    if language == "spanish":
        options = ", ".join(labels[:-1]) + f" o {labels[-1]}"
        return f"¿A qué contacto te refieres: {options}?"
    options = ", ".join(labels[:-1]) + f" or {labels[-1]}"
    return f"Which contact do you mean: {options}?"


class ContinuationResolver:
    """
    Per-turn orchestration over an injected session store and extraction call.

    Turns for one session key are expected to be serialized by the caller.
    """

    def __init__(self,
                 store: SessionStore,
                 extract: ExtractFn,
                 summarize: Optional[SummarizeFn] = None,
                 normalizer: Optional[ExtractionNormalizer] = None,
                 history_window: int = 20,
                 extraction_timeout: Optional[float] = 30.0,
                 summary_timeout: Optional[float] = 15.0):
        self.store = store
        self.extract = extract
        self.summarize = summarize
        self.normalizer = normalizer or ExtractionNormalizer()
        self.history_window = history_window
        self.extraction_timeout = extraction_timeout
        self.summary_timeout = summary_timeout

    async def process_turn(self, session_key: str, message: str,
                           timezone: Optional[str] = None) -> ContactExtractionResponse:
        """
        Process one user message.

        Args:
            session_key: Identifier of the conversation
            message: Raw user message
            timezone: User timezone forwarded to the extraction call, if given

        Returns:
            Canonical extraction result with staged items attached where a
            contact could be resolved, or the fallback result when extraction
            failed (in which case the stored state is left untouched)

        Raises:
            StorageUnavailable: if the session store cannot be read or written
        """
        logger.info(f"💬 Processing turn for session {session_key}: {message[:80]}")

        state = self.store.get(session_key)
        classification = classify_message(message, state)
        context_summary = build_context_summary(state, classification, message)

        extract_options = {"timezone": timezone} if timezone else {}
        try:
            raw = await asyncio.wait_for(
                self.extract(message, context_summary, copy.deepcopy(state.recent_turns), **extract_options),
                timeout=self.extraction_timeout,
            )
            result = self.normalizer.normalize(raw)
        except ExtractionFailure as e:
            logger.warning(f"⚠️ Extraction failed for session {session_key}: {str(e)}")
            return fallback_extraction_response()
        except asyncio.TimeoutError:
            logger.warning(
                f"⏱️ Extraction timed out after {self.extraction_timeout}s for session {session_key}"
            )
            return fallback_extraction_response()
        except Exception as e:
            logger.error(f"❌ Extraction call raised for session {session_key}: {str(e)}", exc_info=True)
            return fallback_extraction_response()

        # Re-read right before merging; another turn may have landed meanwhile
        current = self.store.get(session_key).copy()
        phase_before = current.phase

        reason = self._reconcile(current, result, classification, message)
        self._expose_pending(current, result)

        self._append_turns(current, message, result)
        await self._compress_history(current)
        self._accumulate_usage(current, raw)
        current.message_count += 1

        for error in StateValidator.validate_state(current):
            log = logger.warning if error.severity == "warning" else logger.error
            log(f"State check for session {session_key}: {error}")

        if current.phase != phase_before:
            logger.info(f"🔀 Phase transition: {phase_before.value} -> {current.phase.value} ({reason})")
        self.store.set(session_key, current)

        logger.info(
            f"✅ Turn complete for session {session_key}: {len(result.contacts)} contact(s), "
            f"phase={current.phase.value}"
        )
        return result

    def reset_session(self, session_key: str) -> None:
        """Forget everything stored for a session"""
        self.store.delete(session_key)
        logger.info(f"🔄 Session reset: {session_key}")

    def list_active_sessions(self) -> List[str]:
        return self.store.list_keys()

    def get_token_usage(self, session_key: str) -> TokenUsage:
        """Accumulated model usage for a session"""
        state = self.store.get(session_key)
        counters = {key: int(state.token_usage.get(key) or 0) for key in USAGE_COUNTERS}
        return TokenUsage(
            **counters,
            messages_count=state.message_count,
            last_updated=state.updated_at,
        )

    # Reconciliation

    def _reconcile(self, state: ConversationState, result: ContactExtractionResponse,
                   classification: MessageClassification, message: str) -> str:
        """Merge the extraction result into state; returns the transition reason"""
        registry = ContactRegistry(state)
        tracker = PendingItemTracker(state)

        if state.phase == ConversationPhase.AWAITING_DISAMBIGUATION:
            selected = select_candidates(message, state.disambiguation)
            if selected:
                return self._apply_selection(state, result, selected)
            if classification.negation and not self._has_new_content(result):
                staged = tracker.staged_items()
                tracker.clear()
                if staged.is_empty():
                    return "choice declined"
                tracker.stage(staged, DEFAULT_QUESTIONS[result.language])
                self._drop_shells(result)
                return "choice declined, asking for contact"
            if not self._has_new_content(result) and not classification.has_identity():
                self._drop_shells(result)
                return "choice still unclear"
            logger.info("New request supersedes the outstanding choice")

        identified = self._register_identified(registry, result)

        if result.outstanding_question or result.disambiguation:
            return self._stage_for_question(state, result)

        target, created, choice_staged = self._pick_target(
            registry, tracker, result, classification, message, identified
        )
        if choice_staged:
            return "reference matched several contacts"

        if target is None:
            loose = self._loose_items(result)
            if not loose.is_empty():
                staged = tracker.staged_items().extend(loose)
                tracker.stage(staged, DEFAULT_QUESTIONS[result.language])
                self._drop_shells(result)
                return "activities without a contact"
            if tracker.is_awaiting():
                self._drop_shells(result)
                return "still awaiting contact"
            if not registry.is_empty():
                self._drop_shells(result)
            return "no contact referenced"

        self._attach_to_target(result, tracker, target, created, identified)
        return f"resolved to {target.display_name}"

    def _has_new_content(self, result: ContactExtractionResponse) -> bool:
        if result.outstanding_question or result.disambiguation:
            return True
        return any(
            contact.input_contact.has_identity() or contact.input_contact.has_activities()
            for contact in result.contacts
        )

    def _resolve_identity(self, registry: ContactRegistry,
                          info: Dict[str, Any]) -> Tuple[Optional[ContactRef], bool]:
        """
        Find or register the contact described by info.

        A phone or email already on file, or a lone first or last name that
        uniquely matches a known contact, resolves to that contact instead of
        creating a new one. Returns (contact, created).
        """
        first_name = (info.get("first_name") or "").strip()
        last_name = (info.get("last_name") or "").strip()
        if not (first_name or last_name) and info.get("name"):
            first_name, last_name = split_name(info["name"])
        details = {
            "first_name": first_name,
            "last_name": last_name,
            "phone": info.get("phone") or "",
            "email": info.get("email") or "",
        }
        display_name = normalize_display_name(first_name, last_name)

        existing = registry.get(display_name) if display_name else None
        if existing is None:
            by_detail = registry.find_by_contact_detail(details["phone"], details["email"])
            if by_detail is not None and (
                not display_name or not (by_detail.first_name or by_detail.last_name)
            ):
                existing = by_detail
        if existing is None and display_name and " " not in display_name:
            matches = registry.find_all_by_name_fragment(display_name)
            if len(matches) == 1:
                existing = matches[0]

        if existing is not None:
            return registry.update(existing, details), False

        ref = registry.upsert(details)
        return ref, ref is not None

    def _hydrate(self, contact: InputContactSchema, ref: ContactRef):
        """Fill blank identity fields of an outgoing contact from the registry"""
        if not contact.first_name and not contact.last_name:
            contact.first_name = ref.first_name
            contact.last_name = ref.last_name
        if not contact.phone:
            contact.phone = ref.phone
        if not contact.email:
            contact.email = ref.email

    def _register_identified(self, registry: ContactRegistry,
                             result: ContactExtractionResponse) -> List[Tuple[ContactSchema, ContactRef]]:
        identified = []
        for contact in result.contacts:
            input_contact = contact.input_contact
            if not input_contact.has_identity():
                continue
            ref, _ = self._resolve_identity(registry, input_contact.model_dump())
            if ref is None:
                continue
            self._hydrate(input_contact, ref)
            identified.append((contact, ref))
        return identified

    def _loose_items(self, result: ContactExtractionResponse) -> ActivityBundle:
        """Activities carried by contacts that have no identity"""
        bundle = ActivityBundle()
        for contact in result.contacts:
            if not contact.input_contact.has_identity():
                bundle.extend(ActivityBundle.from_contact(contact.input_contact))
        return bundle

    def _drop_shells(self, result: ContactExtractionResponse):
        result.contacts = [contact for contact in result.contacts if contact.input_contact.has_identity()]

    def _stage_for_question(self, state: ConversationState, result: ContactExtractionResponse) -> str:
        """The extraction asked something; hold unattached items until it is answered"""
        tracker = PendingItemTracker(state)
        items = self._loose_items(result)
        if items.is_empty():
            items = tracker.staged_items()

        disambiguation = None
        if result.disambiguation is not None:
            disambiguation = Disambiguation(
                kind=result.disambiguation.kind,
                candidates=copy.deepcopy(result.disambiguation.candidates),
                contact=result.disambiguation.contact,
            )

        if items.is_empty() and disambiguation is None:
            # Nothing to hold; the question is only passed through
            tracker.clear()
            return "question without pending items"

        question = result.outstanding_question or DEFAULT_QUESTIONS[result.language]
        tracker.stage(items, question, disambiguation)
        self._drop_shells(result)
        return "clarifying question asked"

    def _pick_target(self, registry: ContactRegistry,
                     tracker: PendingItemTracker, result: ContactExtractionResponse,
                     classification: MessageClassification, message: str,
                     identified: List[Tuple[ContactSchema, ContactRef]]) -> Tuple[Optional[ContactRef], bool, bool]:
        """
        Choose the contact this turn's activities belong to.

        Returns (contact, created, choice_staged). choice_staged is True when
        several contacts matched and a choice was staged instead.
        """
        if identified:
            return identified[0][1], False, False

        if classification.is_continuation and classification.has_identity():
            ref, created = self._resolve_identity(registry, {
                "name": classification.name or "",
                "phone": classification.phone or "",
                "email": classification.email or "",
            })
            if ref is not None:
                return ref, created, False

        if registry.is_empty():
            return None, False, False

        matches = registry.find_all_by_name_fragment(message)
        if len(matches) > 1:
            items = tracker.staged_items().extend(self._loose_items(result))
            candidates = [
                {"display_name": match.display_name, **registry.as_contact_info(match)}
                for match in matches
            ]
            labels = [candidate_label(candidate) for candidate in candidates]
            tracker.stage(
                items,
                _contact_choice_question(labels, result.language),
                Disambiguation(kind="contact", candidates=candidates),
            )
            self._drop_shells(result)
            return None, False, True
        if matches:
            return registry.touch(matches[0]), False, False

        if classification.refers_to_first:
            return registry.touch(registry.first()), False, False

        # A vague reply never hands staged items to whoever was mentioned last
        if tracker.phase == ConversationPhase.AWAITING_CONTACT and not classification.affirmation:
            return None, False, False

        return registry.touch(registry.most_recent()), False, False

    def _attach_to_target(self, result: ContactExtractionResponse, tracker: PendingItemTracker,
                          target: ContactRef, created: bool,
                          identified: List[Tuple[ContactSchema, ContactRef]]):
        """Attach staged, own and loose activities to the target and clear the tracker"""
        loose = self._loose_items(result)
        shells = [contact for contact in result.contacts if not contact.input_contact.has_identity()]

        outgoing = next((contact for contact, ref in identified if ref is target), None)
        if outgoing is None:
            outgoing = self._contact_for_target(target, created, shells)

        tracker.attach_to(outgoing.input_contact)
        attach_bundle(outgoing.input_contact, loose, prepend=False)

        others = [
            contact for contact in result.contacts
            if contact is not outgoing and contact.input_contact.has_identity()
        ]
        result.contacts = [outgoing] + others

    def _contact_for_target(self, target: ContactRef, created: bool,
                            shells: List[ContactSchema]) -> ContactSchema:
        """Outgoing record for a registry contact, keeping the shell's intent"""
        if shells:
            contact = shells[0].model_copy(deep=True)
            contact.input_contact.notes = []
            contact.input_contact.tasks = []
            contact.input_contact.appointments = []
        else:
            intent = "add" if created else "update"
            contact = ContactSchema(input_contact=InputContactSchema(intent=intent, operation=intent))
        if created and contact.input_contact.intent == "list":
            contact.input_contact.intent = "add"
            contact.input_contact.operation = "add"
        self._hydrate(contact.input_contact, target)
        return contact

    def _outgoing_for(self, result: ContactExtractionResponse, ref: ContactRef, created: bool,
                      shells: List[ContactSchema]) -> ContactSchema:
        for contact in result.contacts:
            info = contact.input_contact
            if info.has_identity() and normalize_display_name(info.first_name, info.last_name) == ref.display_name:
                self._hydrate(info, ref)
                return contact
        return self._contact_for_target(ref, created, shells)

    def _apply_selection(self, state: ConversationState, result: ContactExtractionResponse,
                         selected: List[Dict[str, Any]]) -> str:
        """The reply picked one or more candidates of the outstanding choice"""
        registry = ContactRegistry(state)
        tracker = PendingItemTracker(state)
        kind = state.disambiguation.kind
        staged = tracker.staged_items()
        shells = [contact for contact in result.contacts if not contact.input_contact.has_identity()]
        loose = self._loose_items(result)

        outgoing: List[ContactSchema] = []
        if kind == "contact":
            for candidate in selected:
                info = dict(candidate)
                if not (info.get("first_name") or info.get("last_name")):
                    info["name"] = candidate_label(candidate)
                ref, created = self._resolve_identity(registry, info)
                if ref is None:
                    continue
                contact = self._outgoing_for(result, ref, created, shells)
                attach_bundle(contact.input_contact, copy.deepcopy(staged))
                attach_bundle(contact.input_contact, copy.deepcopy(loose), prepend=False)
                outgoing.append(contact)
        else:
            owner = None
            if state.disambiguation.contact:
                owner = registry.get(state.disambiguation.contact) or \
                    registry.find_by_name_fragment(state.disambiguation.contact)
            owner = owner or registry.most_recent()
            if owner is not None:
                registry.touch(owner)
                bundle = ActivityBundle.of_kind(kind, copy.deepcopy(selected)).extend(staged)
                contact = self._outgoing_for(result, owner, False, shells)
                attach_bundle(contact.input_contact, bundle)
                attach_bundle(contact.input_contact, loose, prepend=False)
                outgoing.append(contact)

        labels = ", ".join(candidate_label(candidate) for candidate in selected)
        logger.info(f"☑️ Selected {kind} candidate(s): {labels}")

        tracker.clear()
        identified = [
            contact for contact in result.contacts
            if contact.input_contact.has_identity()
            and not any(self._same_contact(contact, chosen) for chosen in outgoing)
        ]
        result.contacts = outgoing + identified
        result.outstanding_question = ""
        result.disambiguation = None
        return f"{kind} choice made"

    def _same_contact(self, left: ContactSchema, right: ContactSchema) -> bool:
        a, b = left.input_contact, right.input_contact
        return normalize_display_name(a.first_name, a.last_name) == normalize_display_name(b.first_name, b.last_name)

    def _expose_pending(self, state: ConversationState, result: ContactExtractionResponse):
        """Copy the outstanding question, choice and staged items into the result"""
        if state.outstanding_question:
            result.outstanding_question = state.outstanding_question
        result.disambiguation = (
            DisambiguationSchema(**copy.deepcopy(state.disambiguation.to_dict()))
            if state.disambiguation is not None else None
        )
        result.pending_appointments = copy.deepcopy(state.pending_appointments)
        result.pending_tasks = copy.deepcopy(state.pending_tasks)
        result.pending_notes = copy.deepcopy(state.pending_notes)

    # Bookkeeping

    def _append_turns(self, state: ConversationState, message: str, result: ContactExtractionResponse):
        state.recent_turns.append({"role": "user", "content": message})
        state.recent_turns.append({"role": "assistant", "content": result.model_dump_json()})

    async def _compress_history(self, state: ConversationState):
        """Fold turns beyond the raw window into the running summary"""
        if self.history_window <= 0 or len(state.recent_turns) <= self.history_window:
            return

        overflow = state.recent_turns[:-self.history_window]
        state.recent_turns = state.recent_turns[-self.history_window:]
        if self.summarize is None:
            return

        prior = list(overflow)
        if state.summary:
            prior.insert(0, {"role": "assistant", "content": f"Summary so far: {state.summary}"})
        try:
            summary = await asyncio.wait_for(self.summarize(prior), timeout=self.summary_timeout)
        except asyncio.TimeoutError:
            logger.warning("Summarization timed out, keeping previous summary")
            return
        except Exception as e:
            logger.warning(f"Summarization failed, keeping previous summary: {str(e)}")
            return
        if summary and summary.strip():
            state.summary = summary.strip()

    def _accumulate_usage(self, state: ConversationState, raw: Any):
        usage = getattr(raw, "usage", None)
        counters = {key: int(state.token_usage.get(key) or 0) for key in USAGE_COUNTERS}
        total = TokenUsage(**counters).add(usage if isinstance(usage, dict) else None)
        state.token_usage = total.model_dump(include=set(USAGE_COUNTERS))
