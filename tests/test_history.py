from decimal import Decimal

import pytest

from diamond_hands.cache import PersistentKeyValueCache
from diamond_hands.history import TransactionHistory, extract_balance_change

MINT = "Mint1111111111111111111111111111111111111111"
WALLET = "Wallet11111111111111111111111111111111111111"
OTHER = "Other111111111111111111111111111111111111111"


def balance(owner, ui, mint=MINT):
    return {"mint": mint, "owner": owner, "uiTokenAmount": {"uiAmountString": ui}}


def tx(sig, block_time, pre, post):
    return {
        "blockTime": block_time,
        "transaction": {"signatures": [sig]},
        "meta": {"preTokenBalances": pre, "postTokenBalances": post},
    }


def test_extracts_wallet_balance_for_mint():
    t = tx(
        "s1",
        1_700_000_000,
        [balance(WALLET, "10"), balance(OTHER, "99")],
        [balance(WALLET, "25.5"), balance(OTHER, "83.5")],
    )
    record = extract_balance_change(t, WALLET, MINT)
    assert record.timestamp == 1_700_000_000
    assert record.pre_balance == Decimal("10")
    assert record.post_balance == Decimal("25.5")
    assert record.delta == Decimal("15.5")
    assert record.signature == "s1"


def test_account_creation_counts_as_acquisition():
    t = tx("s1", 1, [], [balance(WALLET, "7")])
    record = extract_balance_change(t, WALLET, MINT)
    assert record.pre_balance is None
    assert record.delta == Decimal("7")


def test_falls_back_to_raw_amount():
    entry = {
        "mint": MINT,
        "owner": WALLET,
        "uiTokenAmount": {"amount": "1500000", "decimals": 6},
    }
    record = extract_balance_change(tx("s", 1, [], [entry]), WALLET, MINT)
    assert record.post_balance == Decimal("1.5")


def test_ignores_unrelated_transactions():
    other_mint = tx("s", 1, [balance(WALLET, "1", mint="X")], [balance(WALLET, "2", mint="X")])
    other_owner = tx("s", 1, [balance(OTHER, "1")], [balance(OTHER, "2")])
    no_meta = {"blockTime": 1, "meta": None}
    assert extract_balance_change(other_mint, WALLET, MINT) is None
    assert extract_balance_change(other_owner, WALLET, MINT) is None
    assert extract_balance_change(no_meta, WALLET, MINT) is None


class FakeClient:
    def __init__(self, txs, fail=False):
        self.txs = {t["transaction"]["signatures"][0]: t for t in txs}
        self.fail = fail
        self.signature_calls = 0
        self.detail_calls = 0

    async def list_transaction_signatures(self, wallet):
        self.signature_calls += 1
        if self.fail:
            raise ConnectionError("rpc down")
        return sorted(
            ({"signature": s, "timestamp": t["blockTime"]} for s, t in self.txs.items()),
            key=lambda s: s["timestamp"],
            reverse=True,
        ) + [{"signature": "dropped", "timestamp": None}]

    async def get_transaction_detail(self, signature):
        self.detail_calls += 1
        return self.txs.get(signature)


@pytest.mark.asyncio
async def test_fetch_filters_sorts_and_caches(tmp_path):
    client = FakeClient(
        [
            tx("a", 100, [], [balance(WALLET, "5")]),
            tx("b", 300, [balance(WALLET, "5")], [balance(WALLET, "8")]),
            tx("c", 200, [balance(OTHER, "1")], [balance(OTHER, "0")]),
        ]
    )
    cache = PersistentKeyValueCache(str(tmp_path), debounce_s=60)
    history = TransactionHistory(client, cache, MINT, detail_batch_size=2, batch_delay_s=0)

    records = await history.fetch(WALLET)

    assert [r.signature for r in records] == ["b", "a"]
    assert client.detail_calls == 4

    again = await history.fetch(WALLET)
    assert again == records
    assert client.signature_calls == 1
    await cache.aclose()


@pytest.mark.asyncio
async def test_empty_history_is_not_cached(tmp_path):
    client = FakeClient([])
    cache = PersistentKeyValueCache(str(tmp_path), debounce_s=60)
    history = TransactionHistory(client, cache, MINT, batch_delay_s=0)

    assert await history.fetch(WALLET) == []
    assert await history.fetch(WALLET) == []
    assert client.signature_calls == 2
    assert f"tx_history_{WALLET}" not in cache


@pytest.mark.asyncio
async def test_fetch_failure_propagates(tmp_path):
    cache = PersistentKeyValueCache(str(tmp_path), debounce_s=60)
    history = TransactionHistory(FakeClient([], fail=True), cache, MINT)
    with pytest.raises(ConnectionError):
        await history.fetch(WALLET)


def test_missing_block_time_is_never_the_epoch():
    t = tx("s", None, [], [balance(WALLET, "60000000")])
    assert extract_balance_change(t, WALLET, MINT) is None

    record = extract_balance_change(t, WALLET, MINT, fallback_timestamp=1_750_000_000)
    assert record.timestamp == 1_750_000_000


def test_moves_between_own_accounts_are_not_a_sale():
    t = tx(
        "s",
        1,
        [balance(WALLET, "60000000"), balance(WALLET, "0")],
        [balance(WALLET, "0"), balance(WALLET, "60000000")],
    )
    record = extract_balance_change(t, WALLET, MINT)
    assert record.pre_balance == Decimal("60000000")
    assert record.post_balance == Decimal("60000000")
    assert record.delta == 0


def test_balances_of_several_accounts_are_summed():
    t = tx(
        "s",
        1,
        [balance(WALLET, "10")],
        [balance(WALLET, "10"), balance(WALLET, "5"), balance(OTHER, "100")],
    )
    record = extract_balance_change(t, WALLET, MINT)
    assert record.post_balance == Decimal("15")
    assert record.delta == Decimal("5")


@pytest.mark.asyncio
async def test_fetch_falls_back_to_signature_block_time(tmp_path):
    class NoBlockTimeClient:
        async def list_transaction_signatures(self, wallet):
            return [
                {"signature": "known", "timestamp": 1_700_000_000},
                {"signature": "unknown", "timestamp": None},
            ]

        async def get_transaction_detail(self, signature):
            return tx(signature, None, [], [balance(WALLET, "5")])

    cache = PersistentKeyValueCache(str(tmp_path), debounce_s=60)
    history = TransactionHistory(NoBlockTimeClient(), cache, MINT, batch_delay_s=0)

    records = await history.fetch(WALLET)

    assert [(r.signature, r.timestamp) for r in records] == [("known", 1_700_000_000)]
    await cache.aclose()
