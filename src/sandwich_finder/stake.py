"""
Stake correlation against the Stakewiz registry.

For each validator that led at least one sandwiched slot we sum the
active stake a single authority delegates to its vote account. Dust
delegations (under one SOL by default) drop the validator from the report.
"""

from __future__ import annotations

import http.client
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Protocol

import ijson

from .config import LAMPORTS_PER_SOL, STAKEWIZ_API
from .errors import RegistryError
from .leaders import count_by_leader
from .sandwich import SandwichesBySlot

logger = logging.getLogger(__name__)

MIN_DELEGATED_STAKE = Decimal(1)


class StakeRegistry(Protocol):
    def validators(self, sort: str = ...) -> List[Dict[str, Any]]: ...

    def validator_stakes(self, vote_account: str) -> List[Dict[str, Any]]: ...


class Pacer(Protocol):
    def wait(self) -> None: ...


class StakewizClient:
    def __init__(self, base_url: str = STAKEWIZ_API, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout

    def _stream(self, path: str) -> Iterator[Dict[str, Any]]:
        url = self.base_url + path
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp:
                for item in ijson.items(resp, "item"):
                    yield item
        except urllib.error.HTTPError as exc:
            raise RegistryError(f"{url}: HTTP {exc.code} {exc.reason}") from exc
        except urllib.error.URLError as exc:
            raise RegistryError(f"{url}: {exc.reason}") from exc
        except ijson.JSONError as exc:
            raise RegistryError(f"{url}: malformed JSON ({exc})") from exc
        except http.client.HTTPException as exc:
            raise RegistryError(f"{url}: {exc!r}") from exc
        except OSError as exc:
            raise RegistryError(f"{url}: {exc}") from exc

    def validators(self, sort: str = "-activated_stake") -> List[Dict[str, Any]]:
        """All validators as {identity, vote_identity, activated_stake, ...}."""
        return list(self._stream("validators?" + urllib.parse.urlencode({"sort": sort})))

    def validator_stakes(self, vote_account: str) -> List[Dict[str, Any]]:
        return list(self._stream("validator_stakes/" + urllib.parse.quote(vote_account)))


class NoDelay:
    def wait(self) -> None:
        pass


class ConstantDelay:
    """Fixed pause between registry calls."""

    def __init__(self, seconds: float = 0.1, sleep: Callable[[float], None] = time.sleep) -> None:
        if seconds < 0:
            raise ValueError("delay must not be negative")
        self.seconds = seconds
        self._sleep = sleep

    def wait(self) -> None:
        if self.seconds:
            self._sleep(self.seconds)


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def lookup_delegated_stake(
    registry: StakeRegistry, vote_account: str, stake_authority: str
) -> Decimal:
    """Active stake (in SOL) that ``stake_authority`` delegates to ``vote_account``.

    Registry failures count as zero so one bad lookup does not end the pass.
    """
    try:
        stakes = registry.validator_stakes(vote_account)
        lamports = sum(
            (
                _to_decimal(stake.get("active_stake"))
                for stake in stakes
                if stake.get("stake_authority") == stake_authority
            ),
            Decimal(0),
        )
    except RegistryError as exc:
        logger.warning("Error checking stake for vote account %s: %s", vote_account, exc)
        return Decimal(0)
    except (InvalidOperation, AttributeError, TypeError) as exc:
        logger.warning("Unreadable stake data for vote account %s: %s", vote_account, exc)
        return Decimal(0)
    return lamports / LAMPORTS_PER_SOL


@dataclass
class ValidatorDetail:
    vote_account: str
    delegated_stake: Decimal
    sandwich_count: int


@dataclass
class ValidatorReport:
    validator_details: Dict[str, ValidatorDetail] = field(default_factory=dict)
    total_sandwiches: int = 0
    total_activated_stake: Decimal = Decimal(0)
    total_delegated_stake: Decimal = Decimal(0)

    def add(self, identity: str, detail: ValidatorDetail, activated_stake: Decimal) -> None:
        self.validator_details[identity] = detail
        self.total_sandwiches += detail.sandwich_count
        self.total_activated_stake += activated_stake
        self.total_delegated_stake += detail.delegated_stake

    def to_json(self) -> Dict[str, Any]:
        return {
            "validatorDetails": {
                identity: {
                    "voteAccount": d.vote_account,
                    "delegatedStake": float(d.delegated_stake),
                    "sandwichCount": d.sandwich_count,
                }
                for identity, d in self.validator_details.items()
            },
            "totalSandwiches": self.total_sandwiches,
            "totalActivatedStake": float(self.total_activated_stake),
            "totalDelegatedStake": float(self.total_delegated_stake),
        }


def analyze_validators(
    registry: StakeRegistry,
    sandwiches: SandwichesBySlot,
    slot_leaders: Mapping[str, str],
    stake_authority: str,
    pacer: Optional[Pacer] = None,
    min_delegated_stake: Decimal = MIN_DELEGATED_STAKE,
) -> ValidatorReport:
    """Build the per-validator report.

    Failing to list validators is fatal (RegistryError propagates); a
    failed per-validator lookup only zeroes that validator.
    """
    pacer = pacer or NoDelay()
    counts = count_by_leader(sandwiches, slot_leaders)
    report = ValidatorReport()
    seen = set()
    lookups = 0

    for validator in registry.validators():
        identity = validator.get("identity")
        if identity not in counts:
            continue
        seen.add(identity)

        if lookups:
            pacer.wait()
        lookups += 1

        vote_account = validator.get("vote_identity")
        delegated = lookup_delegated_stake(registry, vote_account, stake_authority)
        if delegated < min_delegated_stake:
            logger.debug("Skipping %s: delegated stake %s below threshold", identity, delegated)
            continue

        detail = ValidatorDetail(
            vote_account=vote_account,
            delegated_stake=delegated,
            sandwich_count=counts[identity],
        )
        report.add(identity, detail, _to_decimal(validator.get("activated_stake")))
        logger.info(
            "%s %s %s %d",
            identity,
            vote_account,
            f"{delegated:,}",
            detail.sandwich_count,
        )

    for identity in sorted(set(counts) - seen):
        logger.warning("Leader %s not listed by the stake registry", identity)

    return report
