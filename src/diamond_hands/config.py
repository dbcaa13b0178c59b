from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from dotenv import load_dotenv

from . import project_constants as pc
from .retry import RetryPolicy


def _env(name: str, default: Any, cast: Callable[[str], Any]) -> Any:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except (ValueError, InvalidOperation) as e:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    token_mint: str = pc.TOKEN_MINT
    min_tokens: Decimal = Decimal(pc.MIN_TOKENS)
    max_tokens: Decimal = Decimal(pc.MAX_TOKENS)
    months_required: int = pc.MONTHS_REQUIRED
    output_dir: str = pc.OUTPUT_DIR
    cache_dir: str = pc.CACHE_DIR
    batch_size: int = pc.BATCH_SIZE
    concurrent_limit: int = pc.CONCURRENT_LIMIT
    retry_limit: int = pc.RETRY_LIMIT
    retry_min_delay: float = pc.RETRY_MIN_DELAY_S
    retry_max_delay: float = pc.RETRY_MAX_DELAY_S
    timeout_s: float = 60.0

    def __post_init__(self) -> None:
        if self.min_tokens > self.max_tokens:
            raise ValueError(
                f"min_tokens ({self.min_tokens}) exceeds max_tokens ({self.max_tokens})"
            )
        if self.batch_size < 1 or self.concurrent_limit < 1:
            raise ValueError("batch_size and concurrent_limit must be >= 1")
        if self.months_required < 0:
            raise ValueError("months_required must be >= 0")

    @property
    def required_holding_days(self) -> int:
        return self.months_required * pc.DAYS_PER_MONTH

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_limit,
            min_delay=self.retry_min_delay,
            max_delay=self.retry_max_delay,
        )

    @staticmethod
    def from_env(rpc_url_override: str | None = None, **overrides: Any) -> "Settings":
        """
        Build settings from .env / environment, then apply explicit overrides.
        Overrides set to None are ignored so argparse defaults can be passed through.
        """
        load_dotenv()

        # If user provides --rpc-url, trust it.
        rpc_url = rpc_url_override or os.getenv("RPC_URL", "").strip()
        if not rpc_url:
            # Otherwise build helius url from key.
            helius_key = os.getenv("HELIUS_API_KEY", "").strip()
            if not helius_key:
                raise RuntimeError(
                    "Missing HELIUS_API_KEY (or RPC_URL). Put it in .env or export it."
                )
            rpc_url = f"https://mainnet.helius-rpc.com/?api-key={helius_key}"

        values: dict[str, Any] = {
            "token_mint": _env("TOKEN_MINT", pc.TOKEN_MINT, str),
            "min_tokens": _env("MIN_TOKENS", Decimal(pc.MIN_TOKENS), Decimal),
            "max_tokens": _env("MAX_TOKENS", Decimal(pc.MAX_TOKENS), Decimal),
            "months_required": _env("MONTHS_REQUIRED", pc.MONTHS_REQUIRED, int),
            "output_dir": _env("OUTPUT_DIR", pc.OUTPUT_DIR, str),
            "cache_dir": _env("CACHE_DIR", pc.CACHE_DIR, str),
            "batch_size": _env("BATCH_SIZE", pc.BATCH_SIZE, int),
            "concurrent_limit": _env("CONCURRENT_LIMIT", pc.CONCURRENT_LIMIT, int),
            "retry_limit": _env("RETRY_LIMIT", pc.RETRY_LIMIT, int),
            "retry_min_delay": _env("RETRY_MIN_DELAY", pc.RETRY_MIN_DELAY_S, float),
            "retry_max_delay": _env("RETRY_MAX_DELAY", pc.RETRY_MAX_DELAY_S, float),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        for key in ("min_tokens", "max_tokens"):
            values[key] = Decimal(str(values[key]))

        return Settings(rpc_url=rpc_url, **values)
