from __future__ import annotations

import argparse
import asyncio
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

from .analyzer import EligibilityRules, WalletHistoryAnalyzer
from .cache import PersistentKeyValueCache
from .config import Settings
from .history import TransactionHistory
from .limiter import ConcurrencyLimiter
from .models import Holder, RunResult, fmt_amount
from .orchestrator import BatchOrchestrator
from .report import ReportAccumulator
from .rpc import RpcClient

HOLDERS_CACHE_KEY = "all_holders"

log = logging.getLogger("diamond_hands")


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def load_settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env(
        rpc_url_override=args.rpc_url,
        timeout_s=args.timeout,
        token_mint=getattr(args, "mint", None),
        min_tokens=getattr(args, "min_tokens", None),
        max_tokens=getattr(args, "max_tokens", None),
        months_required=getattr(args, "months", None),
        output_dir=getattr(args, "output_dir", None),
        cache_dir=getattr(args, "cache_dir", None),
        batch_size=getattr(args, "batch_size", None),
        concurrent_limit=getattr(args, "concurrency", None),
        retry_limit=getattr(args, "retries", None),
        retry_min_delay=getattr(args, "retry_min_delay", None),
        retry_max_delay=getattr(args, "retry_max_delay", None),
    )


def build_rpc(settings: Settings) -> RpcClient:
    # Separate from the holder limiter: workers hold a slot while they wait on RPC.
    return RpcClient(
        settings.rpc_url,
        timeout_s=settings.timeout_s,
        retry_policy=settings.retry_policy,
        limiter=ConcurrencyLimiter(settings.concurrent_limit),
    )


async def load_holders(
    rpc: RpcClient, cache: PersistentKeyValueCache, settings: Settings, reuse: bool
) -> List[Holder]:
    if reuse:
        cached = await cache.get(HOLDERS_CACHE_KEY)
        if cached:
            log.info("Using cached holders list (%d entries)", len(cached))
            return [Holder.from_json(h) for h in cached]

    holders = await rpc.list_holders(settings.token_mint, settings.min_tokens)
    await cache.set(HOLDERS_CACHE_KEY, [h.to_json() for h in holders])
    return holders


def print_summary(result: RunResult, report_path: str) -> None:
    stats = result.stats
    total = result.total_eligible_balance
    n_eligible = len(result.eligible)
    average = total / n_eligible if n_eligible else Decimal(0)

    print("========================================")
    print("💎 DIAMOND HANDS ANALYSIS")
    print("========================================")
    print(f"Processed            : {stats.processed}")
    print(f"Eligible             : {n_eligible}")
    print(f"Errors               : {stats.errors}")
    print(f"Skipped (duplicates) : {stats.skipped}")
    print(f"Total eligible       : {fmt_amount(total)}")
    print(f"Average holding      : {fmt_amount(average.quantize(Decimal('0.01')))}")
    print(f"Duration             : {stats.elapsed_s:.1f}s")

    if n_eligible:
        print("----------------------------------------")
        print("🏆 TOP 10 DIAMOND HANDS")
        top = sorted(result.eligible, key=lambda e: e[0].amount, reverse=True)[:10]
        for rank, (holder, analysis) in enumerate(top, start=1):
            share = holder.amount / total * 100
            print(
                f"#{rank:<3} {holder.owner}  {fmt_amount(holder.amount)}  "
                f"{share:.4f}%  {analysis.holding_days}d"
            )

    print("----------------------------------------")
    print(f"🧾 Wrote report: {report_path}")


async def run_analysis(settings: Settings, reuse_holders: bool) -> int:
    try:
        os.makedirs(settings.output_dir, exist_ok=True)
        os.makedirs(settings.cache_dir, exist_ok=True)
    except OSError as e:
        log.error("Cannot create output/cache directories: %s", e)
        return 1

    cache = PersistentKeyValueCache(settings.cache_dir)
    rpc = build_rpc(settings)
    try:
        log.info("Fetching holders of %s...", settings.token_mint)
        try:
            holders = await load_holders(rpc, cache, settings, reuse_holders)
        except Exception:
            log.exception("Could not fetch the holder list")
            return 1
        log.info(
            "Found %d holder accounts with >= %s tokens",
            len(holders),
            fmt_amount(settings.min_tokens),
        )

        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        report_path = os.path.join(settings.output_dir, f"diamond_hands_{stamp}.csv")
        report = ReportAccumulator(report_path)

        history = TransactionHistory(rpc, cache, settings.token_mint)
        rules = EligibilityRules(
            min_tokens=settings.min_tokens,
            max_tokens=settings.max_tokens,
            required_days=settings.required_holding_days,
        )
        orchestrator = BatchOrchestrator(
            WalletHistoryAnalyzer(history, rules),
            cache,
            report,
            ConcurrencyLimiter(settings.concurrent_limit),
            batch_size=settings.batch_size,
        )

        log.info("Analyzing holder histories...")
        result = await orchestrator.run(holders)
    finally:
        await rpc.aclose()
        await cache.aclose()

    print_summary(result, report_path)
    return 0


def cmd_analyze(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    return asyncio.run(run_analysis(settings, args.reuse_holders))


async def count_holders(settings: Settings) -> int:
    async with build_rpc(settings) as rpc:
        holders = await rpc.list_holders(settings.token_mint, settings.min_tokens)
    owners = {h.owner for h in holders}
    print(f"Mint          : {settings.token_mint}")
    print(f"Floor         : {fmt_amount(settings.min_tokens)}")
    print(f"Accounts      : {len(holders)}")
    print(f"Unique owners : {len(owners)}")
    return 0


def cmd_holders(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    return asyncio.run(count_holders(settings))


def add_token_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--mint", default=None, help="Tracked token mint.")
    p.add_argument("--min-tokens", type=Decimal, default=None, help="Balance floor.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="diamond-hands",
        description="Diamond hands airdrop eligibility for Solana token holders.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=60.0, help="RPC timeout seconds.")

    sub = p.add_subparsers(dest="cmd", required=True)

    a = sub.add_parser("analyze", help="Analyze all holders and write the CSV report.")
    add_token_options(a)
    a.add_argument("--max-tokens", type=Decimal, default=None, help="Balance ceiling.")
    a.add_argument("--months", type=int, default=None, help="Required holding months.")
    a.add_argument("--output-dir", default=None, help="Directory for the CSV report.")
    a.add_argument("--cache-dir", default=None, help="Directory for the cache file.")
    a.add_argument("--batch-size", type=int, default=None, help="Holders per batch.")
    a.add_argument(
        "--concurrency", type=int, default=None, help="Max concurrent analyses."
    )
    a.add_argument("--retries", type=int, default=None, help="Attempts per RPC call.")
    a.add_argument(
        "--retry-min-delay", type=float, default=None, help="First backoff (seconds)."
    )
    a.add_argument(
        "--retry-max-delay", type=float, default=None, help="Backoff ceiling (seconds)."
    )
    a.add_argument(
        "--reuse-holders",
        action="store_true",
        help=(
            "Reuse the holder list cached by a previous run instead of fetching it. "
            "Balances may be stale."
        ),
    )
    a.set_defaults(func=cmd_analyze)

    h = sub.add_parser("holders", help="Count holder accounts above the floor.")
    add_token_options(h)
    h.set_defaults(func=cmd_holders)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    try:
        code = args.func(args)
    except (RuntimeError, ValueError) as e:
        log.error("%s", e)
        code = 1
    raise SystemExit(code)
