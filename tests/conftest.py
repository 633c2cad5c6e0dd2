"""Shared fakes: no test touches the network."""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

import pytest

from sandwich_finder.config import RAYDIUM_V4_AUTHORITY, RAYDIUM_V4_PROGRAM, WSOL_MINT
from sandwich_finder.errors import RegistryError, RpcError

SANDWICHER = "SandwicherBot1111111111111111111111111111111"
TOKEN_MINT = "TokenMint11111111111111111111111111111111111"


def make_tx(
    slot: int,
    pre_amount: Optional[int],
    post_amount: Optional[int],
    *,
    mint: str = TOKEN_MINT,
    program: str = RAYDIUM_V4_PROGRAM,
    owner: str = RAYDIUM_V4_AUTHORITY,
    quote_pre: int = 5_000_000_000,
    quote_post: int = 4_000_000_000,
    parsed_keys: bool = False,
) -> Dict[str, Any]:
    """Minimal getTransaction(json) payload touching one pool."""
    keys: List[Any] = [SANDWICHER, "PoolVault111", program]
    if parsed_keys:
        keys = [{"pubkey": k, "signer": i == 0} for i, k in enumerate(keys)]

    def balance(idx, m, amount):
        return {
            "accountIndex": idx,
            "mint": m,
            "owner": owner,
            "uiTokenAmount": {"amount": str(amount), "decimals": 6},
        }

    # quote leg first so the extractor has to skip it
    pre = [balance(1, WSOL_MINT, quote_pre)]
    post = [balance(1, WSOL_MINT, quote_post)]
    if pre_amount is not None:
        pre.append(balance(2, mint, pre_amount))
    if post_amount is not None:
        post.append(balance(2, mint, post_amount))

    return {
        "slot": slot,
        "transaction": {"message": {"accountKeys": keys}},
        "meta": {"err": None, "preTokenBalances": pre, "postTokenBalances": post},
    }


class FakeRpc:
    def __init__(
        self,
        pages: Optional[List[List[Dict[str, Any]]]] = None,
        transactions: Optional[Dict[str, Any]] = None,
        leader_schedules: Optional[Dict[int, Dict[str, List[int]]]] = None,
        epoch_schedule: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.pages = list(pages or [])
        self.transactions = transactions or {}
        # first slot of epoch -> schedule
        self.leader_schedules = leader_schedules or {}
        self.epoch_schedule = epoch_schedule or {
            "slotsPerEpoch": 432000,
            "firstNormalEpoch": 0,
            "firstNormalSlot": 0,
            "warmup": False,
        }
        self.page_calls: List[Optional[str]] = []
        self.tx_calls: List[str] = []
        self.leader_calls: List[int] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def get_signatures_for_address(self, address, before=None, limit=1000):
        self.page_calls.append(before)
        idx = len(self.page_calls) - 1
        if idx >= len(self.pages):
            return []
        page = self.pages[idx]
        if isinstance(page, Exception):
            raise page
        return page

    def get_transaction(self, signature):
        with self._lock:
            self.tx_calls.append(signature)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            value = self.transactions.get(signature)
            if isinstance(value, Exception):
                raise value
            return value
        finally:
            with self._lock:
                self.in_flight -= 1

    def get_epoch_schedule(self):
        return self.epoch_schedule

    def get_leader_schedule(self, slot):
        self.leader_calls.append(slot)
        per_epoch = self.epoch_schedule["slotsPerEpoch"]
        first = slot - slot % per_epoch
        value = self.leader_schedules.get(first)
        if isinstance(value, Exception):
            raise value
        return value


class FakeRegistry:
    def __init__(
        self,
        validators: List[Dict[str, Any]],
        stakes: Dict[str, Any],
        fail_listing: bool = False,
    ) -> None:
        self._validators = validators
        self._stakes = stakes
        self.fail_listing = fail_listing
        self.stake_calls: List[str] = []

    def validators(self, sort="-activated_stake"):
        if self.fail_listing:
            raise RegistryError("validators: HTTP 503 Service Unavailable")
        return list(self._validators)

    def validator_stakes(self, vote_account):
        self.stake_calls.append(vote_account)
        value = self._stakes.get(vote_account, [])
        if isinstance(value, Exception):
            raise value
        return value


class CountingPacer:
    def __init__(self) -> None:
        self.waits = 0

    def wait(self) -> None:
        self.waits += 1


@pytest.fixture
def rpc_error():
    return RpcError("getTransaction", "HTTP 429 Too Many Requests")
