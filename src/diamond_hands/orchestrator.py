from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional, Sequence, Set, Tuple

from .analyzer import REASON_ERROR, REASON_NO_ACQUISITION, WalletHistoryAnalyzer
from .cache import PersistentKeyValueCache
from .limiter import ConcurrencyLimiter
from .models import (
    Holder,
    OutcomeStatus,
    RunResult,
    RunStats,
    WalletAnalysis,
)
from .project_constants import BATCH_SIZE, PROGRESS_EVERY
from .report import ReportAccumulator

log = logging.getLogger(__name__)


def analysis_cache_key(wallet: str) -> str:
    return f"analysis_{wallet}"


class BatchOrchestrator:
    def __init__(
        self,
        analyzer: WalletHistoryAnalyzer,
        cache: PersistentKeyValueCache,
        report: ReportAccumulator,
        limiter: ConcurrencyLimiter,
        batch_size: int = BATCH_SIZE,
        progress_every: int = PROGRESS_EVERY,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.analyzer = analyzer
        self.cache = cache
        self.report = report
        self.limiter = limiter
        self.batch_size = batch_size
        self.progress_every = progress_every

    async def _cached_analysis(self, wallet: str) -> Optional[WalletAnalysis]:
        cached = await self.cache.get(analysis_cache_key(wallet))
        if not cached:
            return None
        try:
            return WalletAnalysis.from_json(cached)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Ignoring malformed cached analysis for %s: %s", wallet, e)
            return None

    async def run(self, holders: Sequence[Holder]) -> RunResult:
        stats = RunStats()
        processed: Set[str] = set()
        eligible: List[Tuple[Holder, WalletAnalysis]] = []
        total = Decimal(0)
        n_holders = len(holders)

        async def process(holder: Holder) -> Optional[WalletAnalysis]:
            nonlocal total
            row_unaccounted = False
            try:
                analysis = await self._cached_analysis(holder.owner)
                if analysis is not None:
                    if holder.owner in processed:
                        stats.skipped += 1
                        return None
                    processed.add(holder.owner)
                else:
                    outcome = await self.analyzer.analyze(
                        holder.owner, holder.amount, processed
                    )
                    if outcome.status is OutcomeStatus.SKIPPED:
                        stats.skipped += 1
                        return None
                    analysis = outcome.analysis
                    if analysis is None:
                        raise RuntimeError(
                            f"{outcome.status.value} outcome without analysis"
                        )
                    if outcome.status is OutcomeStatus.ERROR:
                        stats.errors += 1
                    elif analysis.is_eligible or analysis.reason != REASON_NO_ACQUISITION:
                        await self.cache.set(
                            analysis_cache_key(holder.owner), analysis.to_json()
                        )

                row_unaccounted = True
                await self.report.record_analysis(holder, analysis)
                stats.processed += 1

                if analysis.is_eligible:
                    eligible.append((holder, analysis))
                    total += holder.amount
                    stats.eligible += 1
                row_unaccounted = False

                if stats.processed % self.progress_every == 0:
                    log.info(
                        "Analyzing holders: %d/%d | Eligible: %d",
                        stats.processed,
                        n_holders,
                        stats.eligible,
                    )
                return analysis
            except Exception:
                stats.errors += 1
                log.exception("Error analyzing %s", holder.owner)
                if row_unaccounted:
                    self.report.mark_failed(holder.owner, REASON_ERROR)
                return None

        for i in range(0, n_holders, self.batch_size):
            batch = holders[i : i + self.batch_size]
            await self.limiter.map(batch, process)

        if total > 0:
            await self.report.finalize_shares(total)
        await self.report.flush()
        if self.report.last_write_error is not None:
            log.error(
                "Report %s may be incomplete: %s",
                self.report.path,
                self.report.last_write_error,
            )

        log.info(
            "Analysis complete: %d processed, %d eligible, %d errors, %d skipped",
            stats.processed,
            stats.eligible,
            stats.errors,
            stats.skipped,
        )
        return RunResult(eligible=eligible, total_eligible_balance=total, stats=stats)
