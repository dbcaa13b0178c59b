import base64
import json
import struct
from decimal import Decimal

import base58
import httpx
import pytest

from diamond_hands.limiter import ConcurrencyLimiter
from diamond_hands.retry import RetryPolicy
from diamond_hands.rpc import RpcClient, RpcError
from diamond_hands.token_accounts import TOKEN_PROGRAM_ID

NO_WAIT = RetryPolicy(max_attempts=3, min_delay=0.0, max_delay=0.0)
MINT_BYTES = bytes([7] * 32)
MINT = base58.b58encode(MINT_BYTES).decode("ascii")


def account_b64(owner: bytes, raw_amount: int) -> str:
    data = MINT_BYTES + owner + struct.pack("<Q", raw_amount) + bytes(165 - 72)
    return base64.b64encode(data).decode("ascii")


def make_client(handler, **kwargs) -> RpcClient:
    return RpcClient(
        "https://rpc.test",
        retry_policy=NO_WAIT,
        page_delay_s=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def rpc_result(request: httpx.Request, result) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


@pytest.mark.asyncio
async def test_list_holders_scans_both_programs_and_applies_floor():
    owner_a, owner_b = bytes([1] * 32), bytes([2] * 32)
    seen_programs = []

    def handler(request):
        body = json.loads(request.content)
        if body["method"] == "getTokenSupply":
            return rpc_result(request, {"value": {"decimals": 6, "amount": "0"}})
        program, opts = body["params"]
        seen_programs.append((program, opts["filters"]))
        if program == TOKEN_PROGRAM_ID:
            items = [
                account_b64(owner_a, 60_000_000 * 10**6),
                account_b64(owner_b, 10 * 10**6),
                account_b64(owner_a, 55_000_000 * 10**6),
            ]
        else:
            items = []
        return rpc_result(request, [{"account": {"data": [i, "base64"]}} for i in items])

    async with make_client(handler) as client:
        holders = await client.list_holders(MINT, Decimal(50_000_000))

    owner = base58.b58encode(owner_a).decode("ascii")
    assert [(h.owner, h.amount) for h in holders] == [
        (owner, Decimal(55_000_000)),
        (owner, Decimal(60_000_000)),
    ]
    assert len(seen_programs) == 2
    assert {"dataSize": 165} in seen_programs[0][1]
    assert {"dataSize": 165} not in seen_programs[1][1]


@pytest.mark.asyncio
async def test_signatures_are_paginated_and_sorted_newest_first():
    pages = {
        None: [
            {"signature": "s1", "blockTime": 50},
            {"signature": "s2", "blockTime": 90},
        ],
        "s2": [
            {"signature": "s3", "blockTime": 70},
            {"signature": "s4", "blockTime": None},
        ],
        "s4": [{"signature": "s5", "blockTime": 10}],
    }
    befores = []

    def handler(request):
        body = json.loads(request.content)
        wallet, opts = body["params"]
        befores.append(opts.get("before"))
        assert opts["limit"] == 2
        return rpc_result(request, pages[opts.get("before")])

    async with make_client(handler) as client:
        sigs = await client.list_transaction_signatures("W", page_size=2)

    assert befores == [None, "s2", "s4"]
    assert [s["signature"] for s in sigs] == ["s2", "s3", "s1", "s5", "s4"]


@pytest.mark.asyncio
async def test_transient_http_errors_are_retried():
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        if calls < 3:
            return httpx.Response(503)
        return rpc_result(request, {"blockTime": 1, "meta": {}})

    async with make_client(handler, limiter=ConcurrencyLimiter(2)) as client:
        detail = await client.get_transaction_detail("sig")

    assert detail == {"blockTime": 1, "meta": {}}
    assert calls == 3


@pytest.mark.asyncio
async def test_rpc_error_surfaces_after_retries():
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32005}})

    async with make_client(handler) as client:
        with pytest.raises(RpcError):
            await client.get_transaction_detail("sig")
    assert calls == 3


@pytest.mark.asyncio
async def test_missing_transaction_is_none():
    async with make_client(lambda r: rpc_result(r, None)) as client:
        assert await client.get_transaction_detail("sig") is None
