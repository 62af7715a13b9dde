"""
Core conversation handling system.

This package turns free-text CRM requests into structured contact records
across several turns:
- Session state, contact registry and pending items (context)
- Result normalization, name detection and continuation replies (understanding)
- Per-turn reconciliation (orchestration)
"""

from .errors import ConversationError, ExtractionFailure, StorageUnavailable
from .context import (
    ConversationState,
    ContactRegistry,
    PendingItemTracker,
    SessionStore,
    InMemorySessionStore,
    PostgresSessionStore,
    create_session_store,
)
from .understanding import (
    ExtractionNormalizer,
    classify_message,
    extract_name_candidate,
)
from .orchestration import ContinuationResolver

__all__ = [
    # Errors
    'ConversationError',
    'ExtractionFailure',
    'StorageUnavailable',

    # Context
    'ConversationState',
    'ContactRegistry',
    'PendingItemTracker',
    'SessionStore',
    'InMemorySessionStore',
    'PostgresSessionStore',
    'create_session_store',

    # Understanding
    'ExtractionNormalizer',
    'classify_message',
    'extract_name_candidate',

    # Orchestration
    'ContinuationResolver',
]
