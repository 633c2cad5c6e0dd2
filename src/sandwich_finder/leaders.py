"""
Block-producer attribution.

getLeaderSchedule answers with epoch-relative slot indexes per identity,
so each schedule is shifted by its epoch's first slot before use. Only
epochs that contain a sandwiched slot are fetched, starting from the
lowest one.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, Iterable, Mapping, Tuple

from .errors import LeaderScheduleError, RpcError
from .rpc import RpcClient
from .sandwich import SandwichesBySlot

logger = logging.getLogger(__name__)

SlotLeaderMap = Dict[str, str]

# Solana's MINIMUM_SLOTS_PER_EPOCH; warmup epochs double from here.
MINIMUM_SLOTS_PER_EPOCH = 32


def epoch_bounds(slot: int, epoch_schedule: Mapping[str, Any]) -> Tuple[int, int]:
    """(first slot, length) of the epoch containing ``slot``."""
    first_normal_slot = int(epoch_schedule.get("firstNormalSlot", 0))
    slots_per_epoch = int(epoch_schedule["slotsPerEpoch"])

    if slot < first_normal_slot:
        min_bits = MINIMUM_SLOTS_PER_EPOCH.bit_length()
        epoch = (slot + MINIMUM_SLOTS_PER_EPOCH).bit_length() - min_bits
        length = MINIMUM_SLOTS_PER_EPOCH << epoch
        return length - MINIMUM_SLOTS_PER_EPOCH, length

    offset = (slot - first_normal_slot) // slots_per_epoch
    return first_normal_slot + offset * slots_per_epoch, slots_per_epoch


def fetch_slot_leaders(rpc: RpcClient, slots: Iterable[int]) -> SlotLeaderMap:
    needed = sorted({int(s) for s in slots})
    if not needed:
        return {}

    try:
        epoch_schedule = rpc.get_epoch_schedule()
    except RpcError as exc:
        raise LeaderScheduleError(f"Failed to get epoch schedule: {exc}") from exc
    if not epoch_schedule:
        raise LeaderScheduleError("Failed to get epoch schedule")

    slot_leaders: SlotLeaderMap = {}
    covered_until = None
    for slot in needed:
        if covered_until is not None and slot < covered_until:
            continue
        first, length = epoch_bounds(slot, epoch_schedule)
        try:
            schedule = rpc.get_leader_schedule(slot)
        except RpcError as exc:
            raise LeaderScheduleError(f"Failed to get leader schedule for slot {slot}: {exc}") from exc
        if not schedule:
            raise LeaderScheduleError(f"Failed to get leader schedule for slot {slot}")

        for identity, indexes in schedule.items():
            for idx in indexes:
                slot_leaders[str(first + int(idx))] = identity
        covered_until = first + length
        logger.info("Leader schedule for epoch starting at slot %d loaded", first)

    return slot_leaders


def require_leaders(sandwiches: SandwichesBySlot, slot_leaders: Mapping[str, str]) -> None:
    missing = [slot for slot in sandwiches if str(slot) not in slot_leaders]
    if missing:
        shown = ", ".join(str(s) for s in sorted(missing)[:10])
        raise LeaderScheduleError(
            f"No leader known for {len(missing)} sandwiched slot(s): {shown}"
        )


def count_by_leader(sandwiches: SandwichesBySlot, slot_leaders: Mapping[str, str]) -> Dict[str, int]:
    """Brackets per leader identity. Identities without brackets are left out."""
    require_leaders(sandwiches, slot_leaders)
    counts: Counter = Counter()
    for slot, brackets in sandwiches.items():
        if brackets:
            counts[slot_leaders[str(slot)]] += len(brackets)
    return dict(counts)
