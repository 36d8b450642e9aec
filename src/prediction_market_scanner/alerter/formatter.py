"""Plain-text call messages built from scan entries."""

from __future__ import annotations

from typing import Any

MARKET_URL = "https://polymarket.com/event/{slug}"

# Threat markers
HIGH_THREAT = 45
ELEVATED_THREAT = 25


def threat_marker(threat_score: int) -> str:
    if threat_score >= HIGH_THREAT:
        return "[HIGH]"
    if threat_score >= ELEVATED_THREAT:
        return "[ELEVATED]"
    return "[LOW]"


def format_thousands(amount: float) -> str:
    """Format a USD amount as whole thousands, e.g. ``$125K``."""
    return f"${amount / 1000:,.0f}K"


def named_price(entry: dict[str, Any], name: str) -> float | None:
    """Current price of outcome ``name`` (case-insensitive) from a scan entry."""
    for outcome, price in (entry.get("current_prices") or {}).items():
        if str(outcome).lower() == name:
            return price
    return None


def format_call_message(
    entry: dict[str, Any], score: int, reasons: list[str], days: int
) -> str:
    """Render a posted call.

    Args:
        entry: Scan entry document.
        score: Call score (0-9).
        reasons: Scoring reasons, in the order they fired.
        days: Whole days to resolution (365 when unknown).
    """
    threat = entry.get("threat_score") or 0
    volume = entry.get("volume_total") or entry.get("total_volume_usd") or 0.0
    lines = [
        f"MARKET SIGNAL - Score {score}/9",
        "",
        entry.get("question") or "",
        "",
        f"{threat_marker(threat)} Threat: {threat}/100 ({entry.get('threat_level', 'LOW')})",
        f"Volume: {format_thousands(volume)}",
        f"Wallets: {entry.get('total_wallets', 0)} ({entry.get('fresh_wallets', 0)} fresh)",
    ]
    flow = entry.get("flow_direction_v2")
    if flow:
        minority = entry.get("minority_outcome") or "minority"
        lines.append(
            f"Flow: {flow}, {format_thousands(entry.get('minority_side_flow_usd') or 0.0)} {minority}"
        )
    if entry.get("veteran_flow_note"):
        lines.append(entry["veteran_flow_note"])
    yes, no = named_price(entry, "yes"), named_price(entry, "no")
    if yes is not None and no is not None:
        lines.append(f"YES {yes * 100:.0f}c | NO {no * 100:.0f}c")
    if days < 365:
        lines.append(f"{days}d to resolution")
    if entry.get("off_hours_amplified"):
        lines.append("Off-hours activity detected")

    slug = entry.get("slug") or entry.get("condition_id") or ""
    lines.extend(["", " | ".join(reasons), "", MARKET_URL.format(slug=slug)])
    return "\n".join(lines)
