from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

from .cache import PersistentKeyValueCache
from .models import TransactionRecord
from .project_constants import DETAIL_BATCH_SIZE, PAGE_DELAY_S

log = logging.getLogger(__name__)


class ChainDataClient(Protocol):
    async def list_transaction_signatures(self, wallet: str) -> List[Dict[str, Any]]: ...

    async def get_transaction_detail(self, signature: str) -> Optional[Dict[str, Any]]: ...


def _ui_amount(entry: Dict[str, Any]) -> Decimal:
    ui = entry.get("uiTokenAmount") or {}
    if ui.get("uiAmountString") is not None:
        return Decimal(ui["uiAmountString"])
    return Decimal(int(ui.get("amount", "0"))).scaleb(-int(ui.get("decimals", 0)))


def _wallet_balance(entries: Any, wallet: str, mint: str) -> Optional[Decimal]:
    """Sum over all of the wallet's token accounts for `mint`; None if it has none."""
    matches = [
        _ui_amount(entry)
        for entry in entries or []
        if entry.get("mint") == mint and entry.get("owner") == wallet
    ]
    return sum(matches, Decimal(0)) if matches else None


def extract_balance_change(
    tx: Dict[str, Any],
    wallet: str,
    mint: str,
    fallback_timestamp: Optional[int] = None,
) -> Optional[TransactionRecord]:
    """
    The wallet's pre/post balance of `mint` in a parsed transaction,
    or None when the transaction does not touch that balance or has no
    block time (neither in the transaction nor as `fallback_timestamp`).
    """
    meta = tx.get("meta") or {}
    pre = _wallet_balance(meta.get("preTokenBalances"), wallet, mint)
    post = _wallet_balance(meta.get("postTokenBalances"), wallet, mint)
    if pre is None and post is None:
        return None

    block_time = tx.get("blockTime")
    if block_time is None:
        block_time = fallback_timestamp
    if block_time is None:
        log.debug("Skipping transaction without block time for %s", wallet)
        return None

    signatures = (tx.get("transaction") or {}).get("signatures") or [None]
    return TransactionRecord(
        timestamp=int(block_time),
        pre_balance=pre,
        post_balance=post,
        signature=signatures[0],
    )


class TransactionHistory:
    """Fetches, filters and caches the balance history of one wallet."""

    def __init__(
        self,
        client: ChainDataClient,
        cache: PersistentKeyValueCache,
        mint: str,
        detail_batch_size: int = DETAIL_BATCH_SIZE,
        batch_delay_s: float = PAGE_DELAY_S,
    ) -> None:
        self.client = client
        self.cache = cache
        self.mint = mint
        self.detail_batch_size = detail_batch_size
        self.batch_delay_s = batch_delay_s

    async def fetch(self, wallet: str) -> List[TransactionRecord]:
        """Records newest first. Remote failures propagate to the caller."""
        cache_key = f"tx_history_{wallet}"
        cached = await self.cache.get(cache_key)
        if cached:
            return [TransactionRecord.from_json(item) for item in cached]

        signatures = await self.client.list_transaction_signatures(wallet)
        records: List[TransactionRecord] = []

        for i in range(0, len(signatures), self.detail_batch_size):
            batch = signatures[i : i + self.detail_batch_size]
            details = await asyncio.gather(
                *(self.client.get_transaction_detail(s["signature"]) for s in batch)
            )
            for sig, tx in zip(batch, details):
                if tx is None:
                    continue
                record = extract_balance_change(
                    tx, wallet, self.mint, fallback_timestamp=sig.get("timestamp")
                )
                if record is not None:
                    records.append(record)
            if i + self.detail_batch_size < len(signatures):
                await asyncio.sleep(self.batch_delay_s)

        records.sort(key=lambda r: r.timestamp, reverse=True)
        log.debug(
            "%s: %d signatures, %d relevant records", wallet, len(signatures), len(records)
        )

        # Only cache if we got meaningful results
        if records:
            await self.cache.set(cache_key, [r.to_json() for r in records])
        return records
