"""Storage layer - append-only signal, receipt and scorecard logs."""

from prediction_market_scanner.storage.models import (
    CallDirection,
    ResolutionReceipt,
    SignalRecord,
    infer_call_direction,
)
from prediction_market_scanner.storage.signal_log import (
    SignalLog,
    SignalLogError,
    read_json_array,
)

__all__ = [
    "CallDirection",
    "ResolutionReceipt",
    "SignalLog",
    "SignalLogError",
    "SignalRecord",
    "infer_call_direction",
    "read_json_array",
]
