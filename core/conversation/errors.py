"""
Error taxonomy for the conversation layer.

Only StorageUnavailable is meant to reach the outer caller. Extraction
problems are absorbed by the resolver and ambiguity is expressed as a
normal result carrying a clarifying question.
"""


class ConversationError(Exception):
    """Base class for conversation layer errors"""


class ExtractionFailure(ConversationError):
    """The extraction call failed, timed out, or returned undecodable data"""

    def __init__(self, message: str, raw: object = None):
        super().__init__(message)
        self.raw = raw


class StorageUnavailable(ConversationError):
    """The session store could not be read or written"""

    def __init__(self, message: str, session_key: str = None):
        super().__init__(message)
        self.session_key = session_key
