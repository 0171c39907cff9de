# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Application services exports.
# ============================================================================
"""Application services for the Messaging domain."""

from .backoff import backoff_delay, compute_next_retry_at
from .intent_classifier import (
    IntentClassifier,
    IntentMatch,
    KeywordMatcher,
    KeywordSet,
    PayloadIdMatcher,
    TitleMatcher,
)
from .session_window import SessionWindowCalculator, build_session, is_window_open
from .signature import SignatureCheck, SignatureMode, SignatureVerifier, compute_signature
from .template_builder import TemplateBuilder

__all__ = [
    "IntentClassifier",
    "IntentMatch",
    "KeywordMatcher",
    "KeywordSet",
    "PayloadIdMatcher",
    "SessionWindowCalculator",
    "SignatureCheck",
    "SignatureMode",
    "SignatureVerifier",
    "TemplateBuilder",
    "TitleMatcher",
    "backoff_delay",
    "build_session",
    "compute_next_retry_at",
    "compute_signature",
    "is_window_open",
]
