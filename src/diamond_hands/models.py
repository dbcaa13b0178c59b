"""
Data models shared by the holder scan, the analyzer and the report.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple


def fmt_amount(value: Decimal) -> str:
    """Thousands separators, no exponent, no trailing zeros."""
    return f"{value.normalize():,f}"


def _dec(value: Any) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


@dataclass(frozen=True)
class Holder:
    owner: str
    amount: Decimal  # current UI balance at fetch time

    def to_json(self) -> Dict[str, Any]:
        return {"owner": self.owner, "amount": str(self.amount)}

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "Holder":
        return Holder(owner=data["owner"], amount=Decimal(str(data["amount"])))


@dataclass(frozen=True)
class TransactionRecord:
    """Balance entry of one wallet for the tracked mint in one transaction."""

    timestamp: int  # unix seconds (block time)
    pre_balance: Optional[Decimal] = None
    post_balance: Optional[Decimal] = None
    signature: Optional[str] = None

    @property
    def delta(self) -> Decimal:
        # A missing side means the token account did not exist (balance 0).
        return (self.post_balance or Decimal(0)) - (self.pre_balance or Decimal(0))

    def to_json(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "pre": None if self.pre_balance is None else str(self.pre_balance),
            "post": None if self.post_balance is None else str(self.post_balance),
            "signature": self.signature,
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "TransactionRecord":
        return TransactionRecord(
            timestamp=int(data["timestamp"]),
            pre_balance=_dec(data.get("pre")),
            post_balance=_dec(data.get("post")),
            signature=data.get("signature"),
        )


@dataclass(frozen=True)
class WalletAnalysis:
    is_eligible: bool
    first_acquired: Optional[datetime]
    max_held: Decimal
    has_sold: bool
    holding_days: int
    reason: str

    def to_json(self) -> Dict[str, Any]:
        return {
            "is_eligible": self.is_eligible,
            "first_acquired": (
                self.first_acquired.isoformat() if self.first_acquired else None
            ),
            "max_held": str(self.max_held),
            "has_sold": self.has_sold,
            "holding_days": self.holding_days,
            "reason": self.reason,
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "WalletAnalysis":
        first = data.get("first_acquired")
        return WalletAnalysis(
            is_eligible=bool(data["is_eligible"]),
            first_acquired=datetime.fromisoformat(first) if first else None,
            max_held=Decimal(str(data["max_held"])),
            has_sold=bool(data["has_sold"]),
            holding_days=int(data["holding_days"]),
            reason=str(data["reason"]),
        )


class OutcomeStatus(enum.Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"  # wallet already analysed during this run
    ERROR = "error"


@dataclass(frozen=True)
class AnalysisOutcome:
    status: OutcomeStatus
    analysis: Optional[WalletAnalysis] = None
    error: Optional[BaseException] = None

    @staticmethod
    def success(analysis: WalletAnalysis) -> "AnalysisOutcome":
        return AnalysisOutcome(OutcomeStatus.SUCCESS, analysis)

    @staticmethod
    def skipped() -> "AnalysisOutcome":
        return AnalysisOutcome(OutcomeStatus.SKIPPED)

    @staticmethod
    def failed(analysis: WalletAnalysis, error: BaseException) -> "AnalysisOutcome":
        return AnalysisOutcome(OutcomeStatus.ERROR, analysis, error)


@dataclass
class RunStats:
    processed: int = 0
    eligible: int = 0
    errors: int = 0
    skipped: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed_s(self) -> float:
        return time.monotonic() - self.started_at


@dataclass
class RunResult:
    eligible: List[Tuple[Holder, WalletAnalysis]]
    total_eligible_balance: Decimal
    stats: RunStats
