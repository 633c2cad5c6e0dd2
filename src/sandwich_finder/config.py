"""
Runtime settings.

Values come from the process environment, optionally seeded from a .env
file. Program ids, the pool authority and the stake authority are plain
settings so tests can point everything at fakes.

Env vars:
    RPC_URL              Solana JSON-RPC endpoint (required for RPC stages)
    SANDWICHER_ADDRESS   account whose history is scanned (required for collect)
    MAX_TRANSACTIONS     successful signatures to collect (default 100)
    DATA_DIR             artifact directory (default ./data)
    BATCH_SIZE           concurrent getTransaction calls per batch (default 100)
    STAKE_AUTHORITY      authority whose delegations are correlated
    STAKEWIZ_API         stake registry base URL
    STAKE_LOOKUP_DELAY   seconds between registry lookups (default 0.1)
    RPC_TIMEOUT          per-request timeout in seconds (default 30)
    POOL_PROGRAM_ID / POOL_AUTHORITY / QUOTE_MINT   pool markers
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError

RAYDIUM_V4_PROGRAM = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
RAYDIUM_V4_AUTHORITY = "5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1"
WSOL_MINT = "So11111111111111111111111111111111111111112"

DEFAULT_STAKE_AUTHORITY = "6iQKfEyhr3bZMotVkW6beNZz5CPAkiwvgV2CTje9pVSS"
STAKEWIZ_API = "https://api.stakewiz.com/"

LAMPORTS_PER_SOL = 1_000_000_000

DEFAULT_MAX_TRANSACTIONS = 100
DEFAULT_BATCH_SIZE = 100
DEFAULT_STAKE_LOOKUP_DELAY = 0.1
DEFAULT_RPC_TIMEOUT = 30.0
DEFAULT_DATA_DIR = Path("data")


@dataclass(frozen=True)
class PoolMarkers:
    """Accounts that identify a trade through the monitored pool."""

    program_id: str = RAYDIUM_V4_PROGRAM
    authority: str = RAYDIUM_V4_AUTHORITY
    quote_mint: str = WSOL_MINT


@dataclass(frozen=True)
class Settings:
    rpc_url: Optional[str] = None
    sandwicher_address: Optional[str] = None
    max_transactions: int = DEFAULT_MAX_TRANSACTIONS
    data_dir: Path = DEFAULT_DATA_DIR
    batch_size: int = DEFAULT_BATCH_SIZE
    stake_authority: Optional[str] = DEFAULT_STAKE_AUTHORITY
    stakewiz_api: str = STAKEWIZ_API
    stake_lookup_delay: float = DEFAULT_STAKE_LOOKUP_DELAY
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    markers: PoolMarkers = PoolMarkers()

    def require_rpc(self) -> str:
        if not self.rpc_url:
            raise ConfigError("RPC_URL environment variable not set")
        return self.rpc_url

    def require_address(self) -> str:
        if not self.sandwicher_address:
            raise ConfigError("SANDWICHER_ADDRESS environment variable not set")
        return self.sandwicher_address

    def require_stake_authority(self) -> str:
        if not self.stake_authority:
            raise ConfigError("STAKE_AUTHORITY is empty; nothing to correlate delegations against")
        return self.stake_authority


def _env_str(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _env_str(env, name)
    if raw is None:
        return default
    try:
        value = int(raw, 10)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _env_str(env, name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    env_file: Optional[str] = None,
    **overrides,
) -> Settings:
    """Build Settings from the environment.

    When ``environ`` is None the real process environment is used, after
    loading ``env_file`` (or a .env in the working directory) into it.
    Keyword overrides that are not None win over the environment.
    """
    if environ is None:
        load_dotenv(env_file or find_dotenv(usecwd=True))
        environ = os.environ

    markers = PoolMarkers(
        program_id=_env_str(environ, "POOL_PROGRAM_ID") or RAYDIUM_V4_PROGRAM,
        authority=_env_str(environ, "POOL_AUTHORITY") or RAYDIUM_V4_AUTHORITY,
        quote_mint=_env_str(environ, "QUOTE_MINT") or WSOL_MINT,
    )

    stake_authority = environ.get("STAKE_AUTHORITY")
    settings = Settings(
        rpc_url=_env_str(environ, "RPC_URL"),
        sandwicher_address=_env_str(environ, "SANDWICHER_ADDRESS"),
        max_transactions=_env_int(environ, "MAX_TRANSACTIONS", DEFAULT_MAX_TRANSACTIONS),
        data_dir=Path(_env_str(environ, "DATA_DIR") or DEFAULT_DATA_DIR),
        batch_size=_env_int(environ, "BATCH_SIZE", DEFAULT_BATCH_SIZE),
        # An explicitly empty STAKE_AUTHORITY disables the default on purpose.
        stake_authority=DEFAULT_STAKE_AUTHORITY if stake_authority is None else stake_authority.strip(),
        stakewiz_api=_env_str(environ, "STAKEWIZ_API") or STAKEWIZ_API,
        stake_lookup_delay=_env_float(environ, "STAKE_LOOKUP_DELAY", DEFAULT_STAKE_LOOKUP_DELAY),
        rpc_timeout=_env_float(environ, "RPC_TIMEOUT", DEFAULT_RPC_TIMEOUT),
        markers=markers,
    )

    changes = {k: v for k, v in overrides.items() if v is not None}
    if "data_dir" in changes:
        changes["data_dir"] = Path(changes["data_dir"])
    for name in ("max_transactions", "batch_size"):
        if name in changes and changes[name] <= 0:
            raise ConfigError(f"{name} must be positive, got {changes[name]}")
    if changes.get("stake_lookup_delay", 0) < 0:
        raise ConfigError("stake_lookup_delay must not be negative")
    return replace(settings, **changes) if changes else settings
