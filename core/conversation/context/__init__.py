"""Conversation state, registry, pending items and storage components"""

from .state import ConversationState, ContactRef, Disambiguation, normalize_display_name
from .registry import ContactRegistry, contact_key
from .pending import ActivityBundle, PendingItemTracker, attach_bundle
from .storage import (
    SessionStore,
    InMemorySessionStore,
    PostgresSessionStore,
    StorageConfig,
    create_session_store,
)
from .validators import StateValidator, ValidationError

__all__ = [
    'ConversationState',
    'ContactRef',
    'Disambiguation',
    'normalize_display_name',
    'ContactRegistry',
    'contact_key',
    'ActivityBundle',
    'PendingItemTracker',
    'attach_bundle',
    'SessionStore',
    'InMemorySessionStore',
    'PostgresSessionStore',
    'StorageConfig',
    'create_session_store',
    'StateValidator',
    'ValidationError',
]
