import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import base58
from dotenv import dotenv_values
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from qbitflow_bootstrap.constants import (
    DEFAULT_ACCOUNTS_DIR,
    DEFAULT_IDL_PATH,
    DEFAULT_MANIFEST,
    DEFAULT_RPC_URL,
    DEFAULT_WS_URL,
    ENV_FILE_PATTERN,
    LAMPORTS_PER_SOL,
)
from qbitflow_bootstrap.errors import ConfigError
from qbitflow_bootstrap.retry import RetryPolicy

logger = logging.getLogger(__name__)

RPC_URL_VAR    = "SOLANA_NETWORK_URL"
WS_URL_VAR     = "SOLANA_WS_URL"
OWNER_KEY_VAR  = "SOLANA_CONTRACT_OWNER_WALLET_PRIVATE_KEY"
PROGRAM_ID_VAR = "PROGRAM_ID"
TEST_SUFFIX    = "_TEST"


class MintMode(str, Enum):
    # Always create a fresh mint, even if the manifest already records one.
    CREATE = "create"
    # Reuse the manifest's mint when it still exists on chain.
    REUSE = "reuse"


@dataclass(frozen=True)
class TokenConfig:
    symbol: str
    name: str
    decimals: int
    mint_amount: int

    @property
    def raw_amount(self) -> int:
        return self.mint_amount * 10 ** self.decimals


@dataclass(frozen=True)
class FundingTarget:
    role: str
    min_balance: int
    top_up: int


DEFAULT_TOKENS: List[TokenConfig] = [
    TokenConfig("USDC", "Mock USDC", decimals=6, mint_amount=1000),
    TokenConfig("WSOL", "Wrapped SOL", decimals=9, mint_amount=50),
]

DEFAULT_FUNDING: List[FundingTarget] = [
    FundingTarget("deployer", min_balance=2 * LAMPORTS_PER_SOL, top_up=10 * LAMPORTS_PER_SOL),
    FundingTarget("user",     min_balance=5 * LAMPORTS_PER_SOL, top_up=5 * LAMPORTS_PER_SOL),
    FundingTarget("merchant", min_balance=1 * LAMPORTS_PER_SOL, top_up=1 * LAMPORTS_PER_SOL),
]

# Roles whose keypairs live under accounts_dir. The deployer comes from the env.
LOCAL_ROLES = ("user", "merchant")


@dataclass
class BootstrapConfig:
    rpc_url: str
    ws_url: str
    co_signer: Optional[Pubkey]
    # None means: fall back to the local Solana CLI wallet.
    deployer_keypair: Optional[Keypair] = None
    program_id: Optional[Pubkey] = None
    idl_path: Path = DEFAULT_IDL_PATH
    accounts_dir: Path = DEFAULT_ACCOUNTS_DIR
    manifest_path: Path = DEFAULT_MANIFEST
    tokens: List[TokenConfig] = field(default_factory=lambda: list(DEFAULT_TOKENS))
    funding: List[FundingTarget] = field(default_factory=lambda: list(DEFAULT_FUNDING))
    mint_mode: MintMode = MintMode.CREATE
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def funding_for(self, role: str) -> Optional[FundingTarget]:
        for target in self.funding:
            if target.role == role:
                return target
        return None


def check_env_file(env_file: Path) -> Path:
    env_file = Path(env_file)
    if not re.match(ENV_FILE_PATTERN, env_file.name):
        raise ConfigError(
            "Please provide a valid environment file (.env, .env.test, .env.production, etc.)"
        )
    if not env_file.is_file():
        raise ConfigError(f"The specified environment file does not exist: {env_file}")
    return env_file


def parse_pubkey(value: str, what: str) -> Pubkey:
    try:
        return Pubkey.from_string(value.strip())
    except ValueError as exc:
        raise ConfigError(f"invalid {what} public key {value!r}: {exc}") from exc


def parse_secret(value: str) -> Keypair:
    try:
        return Keypair.from_bytes(base58.b58decode(value.strip()))
    except ValueError as exc:
        raise ConfigError(f"{OWNER_KEY_VAR} is not a base58 keypair: {exc}") from exc


def _lookup(env: Mapping[str, Optional[str]], name: str, test: bool) -> Optional[str]:
    value = env.get(name + TEST_SUFFIX if test else name)
    return value or None


def load_config(
    env_file: Path,
    co_signer: Optional[str],
    test: bool = False,
    environ: Optional[Mapping[str, str]] = None,
    **overrides,
) -> BootstrapConfig:
    """
    Build a BootstrapConfig from an env file. Values in the file win over the
    process environment; `test` selects the *_TEST variables.
    """
    env_file = check_env_file(env_file)
    env: Dict[str, Optional[str]] = dict(os.environ if environ is None else environ)
    env.update(dotenv_values(env_file))
    logger.info("Environment variables loaded from %s", env_file)
    if test:
        logger.info("Using test environment variables")

    secret = _lookup(env, OWNER_KEY_VAR, test)
    program_id = env.get(PROGRAM_ID_VAR)

    config = BootstrapConfig(
        rpc_url=_lookup(env, RPC_URL_VAR, test) or DEFAULT_RPC_URL,
        ws_url=_lookup(env, WS_URL_VAR, test) or DEFAULT_WS_URL,
        co_signer=parse_pubkey(co_signer, "co-signer") if co_signer else None,
        deployer_keypair=parse_secret(secret) if secret else None,
        program_id=parse_pubkey(program_id, "program") if program_id else None,
    )
    for key, value in overrides.items():
        if not hasattr(config, key):
            raise TypeError(f"unknown config field {key!r}")
        if value is not None:
            setattr(config, key, value)
    return config
