"""
Sandwich identification.

A bucket holding exactly two signatures is read as a front-run/back-run
pair around a victim trade. Single entries are ordinary trades. Three or
more are ambiguous and dropped whole rather than split.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

from .flow import FlowIndex

SandwichBracket = Tuple[str, str]
SandwichesBySlot = Dict[int, List[SandwichBracket]]

BRACKET_SIZE = 2


def identify_sandwiches(flow_index: FlowIndex) -> SandwichesBySlot:
    found: Dict[int, List[Tuple[str, int, SandwichBracket]]] = {}
    for key, signatures in flow_index.buckets():
        if len(signatures) != BRACKET_SIZE:
            continue
        bracket = (signatures[0], signatures[1])
        found.setdefault(key.slot, []).append((key.mint, key.magnitude, bracket))

    return {
        slot: [bracket for _, _, bracket in sorted(found[slot])]
        for slot in sorted(found)
    }


def count_brackets(sandwiches: SandwichesBySlot) -> int:
    return sum(len(brackets) for brackets in sandwiches.values())
