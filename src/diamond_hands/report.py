from __future__ import annotations

import asyncio
import csv
import io
import logging
import os
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import aiofiles

from .models import Holder, WalletAnalysis, fmt_amount
from .project_constants import SHARE_CHUNK_PAUSE_S, SHARE_CHUNK_SIZE

log = logging.getLogger(__name__)

SHARE_QUANT = Decimal("0.0001")

# (record field, CSV header)
COLUMNS = [
    ("status", "Status"),
    ("owner", "Wallet Address"),
    ("current_amount", "Current Balance"),
    ("max_held", "Maximum Ever Held"),
    ("airdrop_share", "Airdrop Share %"),
    ("holding_days", "Days Holding"),
    ("first_acquired", "First Acquired"),
    ("ever_sold", "Ever Sold"),
    ("reason", "Status Reason"),
    ("verdict", "Airdrop Eligible"),
]


def _render(record: Dict[str, Any]) -> List[str]:
    eligible = bool(record.get("is_eligible"))
    amount = record.get("current_amount")
    max_held = record.get("max_held")
    share = record.get("airdrop_share")
    first = record.get("first_acquired")

    if share is None:
        share_text = "0" if eligible else "N/A"
    else:
        share_text = f"{share:f}"

    values = {
        "status": "ELIGIBLE" if eligible else "INELIGIBLE",
        "owner": record.get("owner", ""),
        "current_amount": fmt_amount(amount) if amount is not None else "",
        "max_held": fmt_amount(max_held) if max_held is not None else "",
        "airdrop_share": share_text,
        "holding_days": str(record.get("holding_days", 0)),
        "first_acquired": first.isoformat() if first else "Unknown",
        "ever_sold": "YES" if record.get("has_sold") else "NO",
        "reason": record.get("reason", ""),
        "verdict": "YES" if eligible else "NO",
    }
    return [values[key] for key, _ in COLUMNS]


class ReportAccumulator:
    """
    Per-holder records merged field by field and mirrored to a CSV file.

    Each upsert requests a full rewrite. Requests made while a write is in
    flight wait for it, and the writer runs once more so their changes land.
    """

    def __init__(
        self,
        path: str,
        chunk_size: int = SHARE_CHUNK_SIZE,
        chunk_pause_s: float = SHARE_CHUNK_PAUSE_S,
    ) -> None:
        self.path = path
        self.chunk_size = chunk_size
        self.chunk_pause_s = chunk_pause_s
        self._records: Dict[str, Dict[str, Any]] = {}
        self._pending = False
        self._flushing: Optional[asyncio.Future] = None
        self.writes = 0
        self.last_write_error: Optional[OSError] = None
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> Mapping[str, Mapping[str, Any]]:
        return MappingProxyType(self._records)

    async def upsert(self, key: str, **fields: Any) -> None:
        self._records.setdefault(key, {}).update(fields)
        await self.flush()

    async def record_analysis(self, holder: Holder, analysis: WalletAnalysis) -> None:
        await self.upsert(
            holder.owner,
            owner=holder.owner,
            current_amount=holder.amount,
            max_held=analysis.max_held,
            airdrop_share=None,
            holding_days=analysis.holding_days,
            first_acquired=analysis.first_acquired,
            has_sold=analysis.has_sold,
            reason=analysis.reason,
            is_eligible=analysis.is_eligible,
        )

    def mark_failed(self, key: str, reason: str) -> None:
        """Demote a recorded row whose holder could not be fully processed."""
        record = self._records.get(key)
        if record is not None:
            record.update(is_eligible=False, airdrop_share=None, reason=reason)

    async def flush(self) -> None:
        self._pending = True
        if self._flushing is not None:
            await asyncio.shield(self._flushing)
            return

        self._flushing = asyncio.get_running_loop().create_future()
        try:
            while self._pending:
                self._pending = False
                try:
                    await self._write()
                except OSError as e:
                    # Rows stay in memory; the next flush rewrites the whole table.
                    self.last_write_error = e
                    log.error("Report write error for %s: %s", self.path, e)
                    break
                self.last_write_error = None
        finally:
            done, self._flushing = self._flushing, None
            done.set_result(None)

    async def _write(self) -> None:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow([title for _, title in COLUMNS])
        for record in list(self._records.values()):
            writer.writerow(_render(record))

        async with aiofiles.open(self.path, "w", encoding="utf-8", newline="") as f:
            await f.write(buf.getvalue())
        self.writes += 1
        log.debug("Report written: %d rows to %s", len(self._records), self.path)

    async def finalize_shares(self, total_eligible: Decimal) -> None:
        """Set each eligible holder's share of the pool, then rewrite the file."""
        if total_eligible <= 0:
            raise ValueError("total_eligible must be positive")

        records = list(self._records.values())
        for i in range(0, len(records), self.chunk_size):
            for record in records[i : i + self.chunk_size]:
                if record.get("is_eligible"):
                    share = record["current_amount"] / total_eligible * 100
                    record["airdrop_share"] = share.quantize(
                        SHARE_QUANT, rounding=ROUND_HALF_UP
                    )
            await asyncio.sleep(self.chunk_pause_s)

        await self.flush()
