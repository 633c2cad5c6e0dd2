#!/usr/bin/env python3
"""
Sandwich finder pipeline.

Stages, each persisting its output under the data directory:
    collect   signature -> slot map for SANDWICHER_ADDRESS
    filter    balance-flow index and sandwich brackets per slot
    leaders   slot -> leader identity for the sandwiched epochs
    analyze   per-validator sandwich counts and delegated stake
    run       all of the above (default)

Usage:
    sandwich-finder
    sandwich-finder collect --max-transactions 5000
    sandwich-finder analyze --stake-delay 0.25
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Dict, List, Optional

from .collector import collect_signatures
from .config import Settings, load_settings
from .errors import SandwichFinderError
from .flow import BalanceFlowExtractor
from .leaders import SlotLeaderMap, fetch_slot_leaders, require_leaders
from .rpc import RpcClient, SolanaRpc
from .sandwich import SandwichesBySlot, count_brackets, identify_sandwiches
from .stake import (
    ConstantDelay,
    Pacer,
    StakeRegistry,
    StakewizClient,
    ValidatorReport,
    analyze_validators,
)
from .storage import ANALYSIS_FILE, SLOT_LEADERS_FILE, ArtifactStore

logger = logging.getLogger(__name__)

STAGES = ["collect", "filter", "leaders", "analyze", "run"]
NO_SANDWICHES = "No sandwiches found, skipping validator analysis"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Find sandwich brackets and attribute them to slot leaders."
    )
    parser.add_argument("stage", nargs="?", default="run", choices=STAGES, help="Stage to run")
    parser.add_argument("--data-dir", dest="data_dir", default=None, help="Artifact directory (default ./data)")
    parser.add_argument("--env-file", dest="env_file", default=None, help="Load settings from this .env file")
    parser.add_argument(
        "--max-transactions",
        dest="max_transactions",
        type=int,
        default=None,
        help="Successful signatures to collect",
    )
    parser.add_argument(
        "--batch-size",
        dest="batch_size",
        type=int,
        default=None,
        help="Concurrent transaction fetches per batch",
    )
    parser.add_argument(
        "--stake-delay",
        dest="stake_lookup_delay",
        type=float,
        default=None,
        help="Seconds between stake registry lookups",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    return parser.parse_args(argv)


def init_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


def check_config(settings: Settings, stage: str) -> None:
    """Fail before any work when the stage's inputs are not configured."""
    if stage in ("collect", "filter", "leaders", "run"):
        settings.require_rpc()
    if stage in ("collect", "run"):
        settings.require_address()
    if stage in ("analyze", "run"):
        settings.require_stake_authority()


def run_collect(settings: Settings, store: ArtifactStore, rpc: RpcClient) -> Dict[str, int]:
    logger.info("Collecting up to %d transactions", settings.max_transactions)
    signature_to_slot = collect_signatures(
        rpc, settings.require_address(), max_count=settings.max_transactions
    )
    store.save_signatures(signature_to_slot)
    return signature_to_slot


def run_filter(
    settings: Settings,
    store: ArtifactStore,
    rpc: RpcClient,
    signature_to_slot: Optional[Dict[str, int]] = None,
) -> SandwichesBySlot:
    if signature_to_slot is None:
        signature_to_slot = store.load_signatures()
    signatures = list(signature_to_slot)
    logger.info("Processing %d transactions...", len(signatures))

    extractor = BalanceFlowExtractor(rpc, settings.markers, batch_size=settings.batch_size)
    flow_index = extractor.extract(signatures)
    sandwiches = identify_sandwiches(flow_index)

    store.save_flow_index(flow_index)
    store.save_sandwiches(sandwiches)
    logger.info(
        "Found %d sandwiches across %d slots (%d flow buckets)",
        count_brackets(sandwiches),
        len(sandwiches),
        len(flow_index),
    )
    return sandwiches


def run_leaders(
    settings: Settings,
    store: ArtifactStore,
    rpc: RpcClient,
    sandwiches: Optional[SandwichesBySlot] = None,
) -> Optional[SlotLeaderMap]:
    """Slot leaders for the sandwiched slots, or None when there is nothing to attribute."""
    if sandwiches is None:
        sandwiches = store.load_sandwiches()
    if not sandwiches:
        store.discard(SLOT_LEADERS_FILE, ANALYSIS_FILE)
        print(NO_SANDWICHES)
        return None

    slot_leaders = fetch_slot_leaders(rpc, sandwiches.keys())
    require_leaders(sandwiches, slot_leaders)
    store.save_slot_leaders(slot_leaders)
    return slot_leaders


def run_analyze(
    settings: Settings,
    store: ArtifactStore,
    registry: StakeRegistry,
    pacer: Optional[Pacer] = None,
    sandwiches: Optional[SandwichesBySlot] = None,
    slot_leaders: Optional[SlotLeaderMap] = None,
) -> Optional[ValidatorReport]:
    if sandwiches is None:
        sandwiches = store.load_sandwiches()
    if not sandwiches:
        store.discard(ANALYSIS_FILE)
        print(NO_SANDWICHES)
        return None
    if slot_leaders is None:
        slot_leaders = store.load_slot_leaders()
    if pacer is None:
        pacer = ConstantDelay(settings.stake_lookup_delay)

    logger.info("Analyzing validators...")
    report = analyze_validators(
        registry,
        sandwiches,
        slot_leaders,
        settings.require_stake_authority(),
        pacer=pacer,
    )
    store.save_analysis(report.to_json())
    print_summary(report, settings.require_stake_authority())
    return report


def run_all(
    settings: Settings,
    store: ArtifactStore,
    rpc: RpcClient,
    registry: StakeRegistry,
    pacer: Optional[Pacer] = None,
) -> Optional[ValidatorReport]:
    signature_to_slot = run_collect(settings, store, rpc)
    sandwiches = run_filter(settings, store, rpc, signature_to_slot)
    slot_leaders = run_leaders(settings, store, rpc, sandwiches)
    if slot_leaders is None:
        return None
    return run_analyze(settings, store, registry, pacer, sandwiches, slot_leaders)


def print_summary(report: ValidatorReport, stake_authority: str) -> None:
    print("\nAnalysis Summary:")
    print(f"Total sandwiches: {report.total_sandwiches}")
    print(f"Total activated stake: {report.total_activated_stake:,} SOL")
    print(f"Total delegated by {stake_authority}: {report.total_delegated_stake:,} SOL")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    init_logging(args.log_level)

    try:
        settings = load_settings(
            env_file=args.env_file,
            data_dir=args.data_dir,
            max_transactions=args.max_transactions,
            batch_size=args.batch_size,
            stake_lookup_delay=args.stake_lookup_delay,
        )
        check_config(settings, args.stage)

        store = ArtifactStore(settings.data_dir)
        rpc = SolanaRpc(settings.rpc_url, timeout=settings.rpc_timeout) if settings.rpc_url else None
        registry = StakewizClient(settings.stakewiz_api, timeout=settings.rpc_timeout)

        if args.stage == "collect":
            run_collect(settings, store, rpc)
        elif args.stage == "filter":
            run_filter(settings, store, rpc)
        elif args.stage == "leaders":
            run_leaders(settings, store, rpc)
        elif args.stage == "analyze":
            run_analyze(settings, store, registry)
        else:
            run_all(settings, store, rpc, registry)
    except SandwichFinderError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
