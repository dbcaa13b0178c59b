"""
Diamond hands eligibility.

A wallet qualifies when its current balance sits inside the configured window,
it never reduced its balance of the tracked mint, and its earliest acquisition
is at least `required_days` old.

The history scan is a fold over records (newest first) carrying a HoldingState.
The fold stops at the first sale: a wallet that ever sold is ineligible, so
anything older than that sale cannot change the verdict. As a consequence
`first_acquired` and `max_held` only describe the window up to that sale.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional, Protocol, Set

from .models import AnalysisOutcome, TransactionRecord, WalletAnalysis, fmt_amount

log = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400

REASON_OK = "Meets all eligibility criteria"
REASON_SOLD = "Has sold tokens in the past"
REASON_NO_ACQUISITION = "No acquisition history found"
REASON_ERROR = "Error during analysis"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class HoldingState:
    min_acquired: Optional[int]  # unix seconds
    max_held: Decimal
    sold: bool = False


def step(state: HoldingState, record: TransactionRecord) -> HoldingState:
    post = record.post_balance or Decimal(0)
    delta = record.delta

    min_acquired = state.min_acquired
    if delta > 0 and (min_acquired is None or record.timestamp < min_acquired):
        min_acquired = record.timestamp

    return replace(
        state,
        min_acquired=min_acquired,
        max_held=max(state.max_held, post),
        sold=state.sold or delta < 0,
    )


def scan_history(
    records: Iterable[TransactionRecord], current_balance: Decimal
) -> HoldingState:
    state = HoldingState(min_acquired=None, max_held=current_balance)
    for record in records:
        state = step(state, record)
        if state.sold:
            break
    return state


def holding_days(first_acquired: Optional[datetime], now: datetime) -> int:
    if first_acquired is None:
        return 0
    return int((now - first_acquired).total_seconds() // SECONDS_PER_DAY)


@dataclass(frozen=True)
class EligibilityRules:
    min_tokens: Decimal
    max_tokens: Decimal
    required_days: int

    def is_eligible(
        self,
        balance: Decimal,
        first_acquired: Optional[datetime],
        has_sold: bool,
        days: int,
    ) -> bool:
        return (
            self.min_tokens <= balance <= self.max_tokens
            and first_acquired is not None
            and not has_sold
            and days >= self.required_days
        )

    def reason(
        self,
        balance: Decimal,
        first_acquired: Optional[datetime],
        has_sold: bool,
        days: int,
    ) -> str:
        # Order matters: exactly one reason is reported.
        if balance < self.min_tokens:
            return (
                f"Insufficient balance ({fmt_amount(balance)} < "
                f"{fmt_amount(self.min_tokens)})"
            )
        if balance > self.max_tokens:
            return (
                f"Balance exceeds maximum limit ({fmt_amount(balance)} > "
                f"{fmt_amount(self.max_tokens)})"
            )
        if has_sold:
            return REASON_SOLD
        if first_acquired is None:
            return REASON_NO_ACQUISITION
        if days < self.required_days:
            return f"Insufficient holding time ({days} days < {self.required_days} days)"
        return REASON_OK


def evaluate(
    current_balance: Decimal,
    records: Iterable[TransactionRecord],
    rules: EligibilityRules,
    now: datetime,
) -> WalletAnalysis:
    state = scan_history(records, current_balance)
    first_acquired = (
        datetime.fromtimestamp(state.min_acquired, tz=timezone.utc)
        if state.min_acquired is not None
        else None
    )
    days = holding_days(first_acquired, now)
    return WalletAnalysis(
        is_eligible=rules.is_eligible(current_balance, first_acquired, state.sold, days),
        first_acquired=first_acquired,
        max_held=state.max_held,
        has_sold=state.sold,
        holding_days=days,
        reason=rules.reason(current_balance, first_acquired, state.sold, days),
    )


def error_analysis(current_balance: Decimal) -> WalletAnalysis:
    return WalletAnalysis(
        is_eligible=False,
        first_acquired=None,
        max_held=current_balance,
        has_sold=False,
        holding_days=0,
        reason=REASON_ERROR,
    )


class HistorySource(Protocol):
    async def fetch(self, wallet: str) -> list[TransactionRecord]: ...


class WalletHistoryAnalyzer:
    def __init__(
        self,
        history: HistorySource,
        rules: EligibilityRules,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.history = history
        self.rules = rules
        self.clock = clock

    async def analyze(
        self, wallet: str, current_balance: Decimal, processed: Set[str]
    ) -> AnalysisOutcome:
        """
        `processed` is the caller's per-run set of wallets already handled;
        a wallet found there is skipped so duplicate holder entries count once.
        """
        if wallet in processed:
            return AnalysisOutcome.skipped()
        processed.add(wallet)

        try:
            records = await self.history.fetch(wallet)
        except Exception as e:
            log.error("Error fetching history for %s: %s", wallet, e)
            return AnalysisOutcome.failed(error_analysis(current_balance), e)

        return AnalysisOutcome.success(
            evaluate(current_balance, records, self.rules, self.clock())
        )
