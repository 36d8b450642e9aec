"""Operations over the engine - scan, pulse, signals, correlations and the call feedback loop."""

from prediction_market_scanner.scan.backtest import backtest, scorecard, track_resolutions
from prediction_market_scanner.scan.correlations import CorrelationOptions, correlations
from prediction_market_scanner.scan.pulse import PulseLevel, pulse, quick_score
from prediction_market_scanner.scan.runner import (
    Exchange,
    ScanCancelledError,
    ScanError,
    ScanOptions,
    ScanResult,
    analyze_market,
    scan,
)
from prediction_market_scanner.scan.signals import SignalAction, SignalOptions, generate_signals

__all__ = [
    "CorrelationOptions",
    "Exchange",
    "PulseLevel",
    "ScanCancelledError",
    "ScanError",
    "ScanOptions",
    "ScanResult",
    "SignalAction",
    "SignalOptions",
    "analyze_market",
    "backtest",
    "correlations",
    "generate_signals",
    "pulse",
    "quick_score",
    "scan",
    "scorecard",
    "track_resolutions",
]
