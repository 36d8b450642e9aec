"""Append-only JSON logs for posted calls, resolution receipts and the scorecard.

Each log is a single JSON array on disk. Reads are forgiving: a missing or
unreadable file is treated as empty. Writes are strict: appending to a file
that exists but cannot be parsed raises ``SignalLogError`` rather than
replacing its contents.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from prediction_market_scanner.config import StorageSettings
from prediction_market_scanner.storage.models import ResolutionReceipt, SignalRecord

logger = logging.getLogger(__name__)


class SignalLogError(Exception):
    """Raised when a log file cannot be read for an append or cannot be written."""


def read_json_array(path: Path) -> list[dict[str, Any]]:
    """Read a JSON array of objects, degrading to ``[]`` with a warning."""
    try:
        return _read_strict(path)
    except SignalLogError as e:
        logger.warning("%s", e)
        return []


def _read_strict(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise SignalLogError(f"Unreadable log file {path}: {e}") from e
    if not isinstance(payload, list):
        raise SignalLogError(f"Log file {path} does not hold a JSON array")
    return [item for item in payload if isinstance(item, dict)]


def _write_atomic(path: Path, items: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(items, fh, indent=2)
        os.replace(tmp, path)
    except OSError as e:
        Path(tmp).unlink(missing_ok=True)
        raise SignalLogError(f"Failed to write {path}: {e}") from e


class SignalLog:
    """The three signal files, with appends serialized per process.

    Example:
        ```python
        log = SignalLog.from_settings(get_settings().storage)
        await log.append_posts([record])
        print(len(log.load_posts()))
        ```
    """

    def __init__(self, *, post_log_path: Path, receipts_path: Path, scorecard_path: Path) -> None:
        self.post_log_path = post_log_path
        self.receipts_path = receipts_path
        self.scorecard_path = scorecard_path
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> SignalLog:
        return cls(
            post_log_path=settings.post_log_path,
            receipts_path=settings.receipts_path,
            scorecard_path=settings.scorecard_path,
        )

    def load_posts(self) -> list[SignalRecord]:
        return [SignalRecord.from_dict(item) for item in read_json_array(self.post_log_path)]

    def load_receipts(self) -> list[ResolutionReceipt]:
        return [ResolutionReceipt.from_dict(item) for item in read_json_array(self.receipts_path)]

    def load_scorecard(self) -> list[dict[str, Any]]:
        return read_json_array(self.scorecard_path)

    async def _append(self, path: Path, items: list[dict[str, Any]]) -> int:
        if not items:
            return 0
        existing = _read_strict(path)
        await asyncio.to_thread(_write_atomic, path, existing + items)
        logger.info("Appended %d record(s) to %s", len(items), path.name)
        return len(items)

    async def append_posts(self, records: Iterable[SignalRecord]) -> int:
        """Append posted calls to the post log.

        Returns:
            Number of records written.

        Raises:
            SignalLogError: If the existing file is corrupt or the write fails.
        """
        async with self._lock:
            return await self._append(self.post_log_path, [r.to_dict() for r in records])

    async def append_resolutions(self, receipts: Iterable[ResolutionReceipt]) -> int:
        """Append receipts and their scorecard rows.

        Slugs that already have a receipt are skipped, so concurrent tracker
        runs write each resolution once. Receipts are the record of what was
        processed: any receipt without a scorecard row, for instance after a
        failed scorecard write, gets its row backfilled here.

        Returns:
            Number of new receipts written.

        Raises:
            SignalLogError: If either file is corrupt or a write fails.
        """
        receipts = list(receipts)
        async with self._lock:
            if not receipts:
                return 0
            existing = [ResolutionReceipt.from_dict(r) for r in _read_strict(self.receipts_path)]
            scored = {row.get("slug") for row in _read_strict(self.scorecard_path)}
            seen = {r.slug for r in existing}
            fresh: list[ResolutionReceipt] = []
            for receipt in receipts:
                if receipt.slug in seen:
                    logger.debug("Receipt for %s already written, skipping", receipt.slug)
                    continue
                seen.add(receipt.slug)
                fresh.append(receipt)
            await self._append(self.receipts_path, [r.to_dict() for r in fresh])
            missing = [r for r in existing + fresh if r.slug not in scored]
            await self._append(self.scorecard_path, [r.to_scorecard_entry() for r in missing])
            return len(fresh)
