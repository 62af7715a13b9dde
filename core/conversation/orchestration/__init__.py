"""Conversation orchestration components"""

from .context_summary import build_context_summary
from .resolver import ContinuationResolver, DEFAULT_QUESTIONS

__all__ = [
    'build_context_summary',
    'ContinuationResolver',
    'DEFAULT_QUESTIONS',
]
