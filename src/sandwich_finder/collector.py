"""
Signature collection.

Walks an account's history backward, one getSignaturesForAddress page at
a time, using the oldest signature of the previous page as the cursor.
Failed transactions never executed, so they are skipped outright.

Any transport error aborts the walk: a partial signature set would
silently drop bracket legs further down.
"""

from __future__ import annotations

import logging
from typing import Dict

from .config import DEFAULT_MAX_TRANSACTIONS
from .rpc import SIGNATURES_PAGE_LIMIT, RpcClient

logger = logging.getLogger(__name__)


def collect_signatures(
    rpc: RpcClient,
    address: str,
    max_count: int = DEFAULT_MAX_TRANSACTIONS,
    page_limit: int = SIGNATURES_PAGE_LIMIT,
) -> Dict[str, int]:
    """Return up to ``max_count`` successful signatures mapped to their slot.

    Order is newest first, as the RPC returns them.
    """
    if max_count <= 0:
        raise ValueError(f"max_count must be positive, got {max_count}")

    signature_to_slot: Dict[str, int] = {}
    before = None
    pages = 0

    while len(signature_to_slot) < max_count:
        page = rpc.get_signatures_for_address(address, before=before, limit=page_limit)
        pages += 1
        if not page:
            logger.debug("History exhausted after %d pages", pages)
            break

        for entry in page:
            if entry.get("err") is not None:
                continue
            signature_to_slot[entry["signature"]] = int(entry["slot"])
            if len(signature_to_slot) >= max_count:
                break

        last = page[-1]
        before = last["signature"]
        logger.debug(
            "lastSig: %s slot: %s collected: %d",
            before,
            last.get("slot"),
            len(signature_to_slot),
        )

    logger.info(
        "Collected %d signatures for %s over %d pages",
        len(signature_to_slot),
        address,
        pages,
    )
    return signature_to_slot
