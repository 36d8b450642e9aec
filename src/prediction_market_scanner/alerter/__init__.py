"""Call selection and message rendering for the post log."""

from prediction_market_scanner.alerter.calls import (
    CallCandidate,
    CallScore,
    post_calls,
    score_call,
    select_calls,
)
from prediction_market_scanner.alerter.formatter import format_call_message

__all__ = [
    "CallCandidate",
    "CallScore",
    "format_call_message",
    "post_calls",
    "score_call",
    "select_calls",
]
