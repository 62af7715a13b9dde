"""Message understanding: result normalization, name detection and continuation"""

from .name_detection import (
    extract_name_candidate,
    extract_phone,
    extract_email,
    strip_address_fragments,
    split_name,
)
from .normalizer import ExtractionNormalizer, detect_disambiguation_kind
from .continuation import (
    MessageClassification,
    classify_message,
    parse_ordinal,
    select_candidates,
    candidate_label,
)

__all__ = [
    'extract_name_candidate',
    'extract_phone',
    'extract_email',
    'strip_address_fragments',
    'split_name',
    'ExtractionNormalizer',
    'detect_disambiguation_kind',
    'MessageClassification',
    'classify_message',
    'parse_ordinal',
    'select_candidates',
    'candidate_label',
]
