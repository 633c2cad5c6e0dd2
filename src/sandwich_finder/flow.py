"""
Balance-flow extraction.

For every signature we fetch the transaction and, when it touches the
monitored pool, record how much of the traded (non-quote) token the pool
authority gained or lost. Signatures are bucketed by
(slot, mint, |delta|); two legs of a sandwich land in the same bucket
because the back-run unwinds exactly what the front-run took.

Fetches run in fixed-size batches. Each batch fans out over a thread
pool, results are gathered into a batch-local list and merged into the
index only after the whole batch resolved, so the index itself is never
written concurrently.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from .config import DEFAULT_BATCH_SIZE, PoolMarkers
from .rpc import RpcClient

logger = logging.getLogger(__name__)


class FlowKey(NamedTuple):
    slot: int
    mint: str
    magnitude: int


class FlowIndex:
    """(slot, mint, magnitude) -> signatures, in the order they were added."""

    def __init__(self) -> None:
        self._buckets: Dict[FlowKey, List[str]] = {}

    def add(self, key: FlowKey, signature: str) -> None:
        self._buckets.setdefault(key, []).append(signature)

    def merge(self, entries: Iterable[Tuple[FlowKey, str]]) -> None:
        for key, signature in entries:
            self.add(key, signature)

    def buckets(self) -> Iterable[Tuple[FlowKey, List[str]]]:
        return self._buckets.items()

    def get(self, key: FlowKey) -> List[str]:
        return list(self._buckets.get(key, []))

    def __len__(self) -> int:
        return len(self._buckets)

    def signature_count(self) -> int:
        return sum(len(sigs) for sigs in self._buckets.values())

    def to_nested(self) -> Dict[str, Dict[str, Dict[str, List[str]]]]:
        """Three-level {slot: {mint: {magnitude: [sig, ...]}}} view with JSON-safe keys."""
        nested: Dict[str, Dict[str, Dict[str, List[str]]]] = {}
        for key in sorted(self._buckets):
            by_mint = nested.setdefault(str(key.slot), {})
            by_mint.setdefault(key.mint, {})[str(key.magnitude)] = list(self._buckets[key])
        return nested


def account_keys(tx: Dict[str, Any]) -> List[str]:
    """Static keys plus any keys loaded through address lookup tables."""
    msg = (tx.get("transaction") or {}).get("message") or {}
    raw = msg.get("accountKeys")
    if raw is None:
        raw = msg.get("staticAccountKeys") or []
    keys = []
    for key in raw:
        if isinstance(key, dict):
            key = key.get("pubkey")
        if key:
            keys.append(str(key))

    loaded = (tx.get("meta") or {}).get("loadedAddresses") or {}
    for group in ("writable", "readonly"):
        keys.extend(str(k) for k in loaded.get(group) or [])
    return keys


def _raw_amount(balance: Dict[str, Any]) -> int:
    return int((balance.get("uiTokenAmount") or {})["amount"])


def flow_key_for_transaction(tx: Dict[str, Any], markers: PoolMarkers) -> Optional[FlowKey]:
    """Bucket key for one fetched transaction, or None when it carries no usable flow.

    Raises on malformed payloads (missing slot, non-numeric amounts); the
    extractor treats that as a per-transaction failure.
    """
    if markers.program_id not in account_keys(tx):
        return None

    meta = tx.get("meta") or {}
    pre_balances = meta.get("preTokenBalances") or []
    post_balances = meta.get("postTokenBalances") or []

    pre = next(
        (
            b
            for b in pre_balances
            if b.get("owner") == markers.authority and b.get("mint") != markers.quote_mint
        ),
        None,
    )
    if pre is None:
        return None
    post = next(
        (
            b
            for b in post_balances
            if b.get("mint") == pre.get("mint") and b.get("owner") == markers.authority
        ),
        None,
    )
    if post is None:
        return None

    magnitude = abs(_raw_amount(pre) - _raw_amount(post))
    if magnitude == 0:
        return None
    return FlowKey(int(tx["slot"]), pre["mint"], magnitude)


class BalanceFlowExtractor:
    def __init__(
        self,
        rpc: RpcClient,
        markers: Optional[PoolMarkers] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.rpc = rpc
        self.markers = markers or PoolMarkers()
        self.batch_size = batch_size
        self.failed: List[str] = []

    def _process(self, signature: str) -> Optional[FlowKey]:
        tx = self.rpc.get_transaction(signature)
        if not tx:
            return None
        return flow_key_for_transaction(tx, self.markers)

    def _run_batch(self, batch: Sequence[str]) -> List[Tuple[FlowKey, str]]:
        found: List[Tuple[int, FlowKey, str]] = []
        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            futures = {
                executor.submit(self._process, sig): (pos, sig) for pos, sig in enumerate(batch)
            }
            for future in as_completed(futures):
                pos, sig = futures[future]
                try:
                    key = future.result()
                except Exception as exc:  # noqa: BLE001 - one bad tx must not sink the batch
                    logger.warning("Error processing transaction %s: %s", sig, exc)
                    self.failed.append(sig)
                    continue
                if key is not None:
                    found.append((pos, key, sig))
        # completion order is arbitrary; keep input order inside buckets
        found.sort(key=lambda item: item[0])
        return [(key, sig) for _, key, sig in found]

    def extract(self, signatures: Iterable[str]) -> FlowIndex:
        signatures = list(signatures)
        self.failed = []
        index = FlowIndex()
        total = len(signatures)
        for start in range(0, total, self.batch_size):
            batch = signatures[start : start + self.batch_size]
            index.merge(self._run_batch(batch))
            logger.info("Processed %d/%d transactions", start + len(batch), total)
        if self.failed:
            logger.warning("%d transactions could not be processed", len(self.failed))
        return index
