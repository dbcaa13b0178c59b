from __future__ import annotations

import asyncio
import itertools
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from .limiter import ConcurrencyLimiter
from .models import Holder
from .project_constants import PAGE_DELAY_S, SIGNATURE_PAGE_SIZE
from .retry import RetryPolicy, with_retry
from .token_accounts import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID, holders_from_b64


class RpcError(RuntimeError):
    """JSON-RPC error payload returned by the node."""


class RpcClient:
    """
    Async Solana JSON-RPC client. Every request goes through the shared
    limiter and is retried with exponential backoff.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        retry_policy: RetryPolicy | None = None,
        limiter: ConcurrencyLimiter | None = None,
        page_delay_s: float = PAGE_DELAY_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.AsyncClient(timeout=timeout_s, transport=transport)
        self.retry_policy = retry_policy or RetryPolicy()
        self.limiter = limiter
        self.page_delay_s = page_delay_s
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def _post_once(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            raise RpcError(f"RPC error: {data['error']}")
        return data

    async def _call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        async def attempt() -> Dict[str, Any]:
            if self.limiter is None:
                return await self._post_once(payload)
            return await self.limiter.run(lambda: self._post_once(payload))

        data = await with_retry(attempt, self.retry_policy, label=method)
        return data.get("result")

    async def get_token_decimals(self, mint: str) -> int:
        result = await self._call("getTokenSupply", [mint])
        if not result or "value" not in result:
            raise RpcError(f"getTokenSupply returned nothing for {mint}")
        return int(result["value"]["decimals"])

    async def get_program_accounts_base64(
        self,
        program_id: str,
        mint: str,
        classic_token_program: bool,
    ) -> List[str]:
        """
        Returns base64 strings for account data.
        Note: For classic SPL Token accounts, we enforce dataSize=165.
        Token-2022 accounts can vary due to extensions.
        """
        filters: List[Dict[str, Any]] = [{"memcmp": {"offset": 0, "bytes": mint}}]
        if classic_token_program:
            filters.append({"dataSize": 165})

        results = await self._call(
            "getProgramAccounts",
            [program_id, {"encoding": "base64", "filters": filters}],
        )
        # item['account']['data'] is [base64_str, "base64"]
        return [item["account"]["data"][0] for item in results or []]

    async def list_holders(self, mint: str, min_balance: Decimal) -> List[Holder]:
        decimals = await self.get_token_decimals(mint)
        classic_b64 = await self.get_program_accounts_base64(
            TOKEN_PROGRAM_ID, mint, classic_token_program=True
        )
        t22_b64 = await self.get_program_accounts_base64(
            TOKEN_2022_PROGRAM_ID, mint, classic_token_program=False
        )
        return holders_from_b64(classic_b64 + t22_b64, decimals, min_balance)

    async def list_transaction_signatures(
        self, wallet: str, page_size: int = SIGNATURE_PAGE_SIZE
    ) -> List[Dict[str, Any]]:
        """All signatures for the wallet, newest first."""
        out: List[Dict[str, Any]] = []
        options: Dict[str, Any] = {"limit": page_size}

        while True:
            page = await self._call("getSignaturesForAddress", [wallet, dict(options)])
            if not page:
                break

            out.extend(
                {"signature": s["signature"], "timestamp": s.get("blockTime")}
                for s in page
            )

            if len(page) < page_size:
                break
            options["before"] = page[-1]["signature"]
            await asyncio.sleep(self.page_delay_s)

        # Entries without a block time sort last.
        out.sort(key=lambda s: s["timestamp"] or 0, reverse=True)
        return out

    async def get_transaction_detail(self, signature: str) -> Optional[Dict[str, Any]]:
        return await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": "confirmed",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
