"""
Services layer for the tipping application.

This package contains:
- dispatch.py: Submission of score jobs to the django-q worker queue
- match_results.py: Entry points for match results and score resyncs
"""

from .dispatch import TaskDispatcher, dispatcher, build_payload, decode_payload
from .match_results import (
    block_match_predictions,
    on_match_finalized,
    request_scores_sync,
)

__all__ = [
    "TaskDispatcher",
    "dispatcher",
    "build_payload",
    "decode_payload",
    "block_match_predictions",
    "on_match_finalized",
    "request_scores_sync",
]
