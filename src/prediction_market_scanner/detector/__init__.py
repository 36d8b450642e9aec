"""Scoring layer - signal derivation, threat scoring and market intelligence."""

from prediction_market_scanner.detector.aggregator import aggregate_trades, passes_volume_floor
from prediction_market_scanner.detector.classifier import classify_market, is_live_event
from prediction_market_scanner.detector.correlation import (
    Cluster,
    CorrelationInput,
    SignalStrength,
    build_clusters,
)
from prediction_market_scanner.detector.dampening import compute_context, compute_dampening
from prediction_market_scanner.detector.models import (
    FlowDirection,
    MarketSignals,
    ScoreResult,
    ThreatLevel,
    TopicCategory,
    TradeAggregate,
)
from prediction_market_scanner.detector.prescience import (
    Archetype,
    PrescienceScore,
    classify_archetype,
    compute_prescience,
)
from prediction_market_scanner.detector.scorer import score_market
from prediction_market_scanner.detector.signals import derive_signals, estimate_fair_value
from prediction_market_scanner.detector.velocity import (
    VelocityResult,
    VelocitySnapshot,
    VelocityTracker,
)
from prediction_market_scanner.detector.whale import (
    WhaleAggregate,
    WhaleAnalyzer,
    WhaleIntelligence,
    profile_wallet,
)

__all__ = [
    "Archetype",
    "Cluster",
    "CorrelationInput",
    "FlowDirection",
    "MarketSignals",
    "PrescienceScore",
    "ScoreResult",
    "SignalStrength",
    "ThreatLevel",
    "TopicCategory",
    "TradeAggregate",
    "VelocityResult",
    "VelocitySnapshot",
    "VelocityTracker",
    "WhaleAggregate",
    "WhaleAnalyzer",
    "WhaleIntelligence",
    "aggregate_trades",
    "build_clusters",
    "classify_archetype",
    "classify_market",
    "compute_context",
    "compute_dampening",
    "compute_prescience",
    "derive_signals",
    "estimate_fair_value",
    "is_live_event",
    "passes_volume_floor",
    "profile_wallet",
    "score_market",
]
