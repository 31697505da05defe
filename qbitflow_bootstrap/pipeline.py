import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from anchorpy import Program, Wallet
from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey

from qbitflow_bootstrap.config import LOCAL_ROLES, BootstrapConfig, MintMode
from qbitflow_bootstrap.errors import ConfigError, StorageError
from qbitflow_bootstrap.funding import ensure_funded, get_balance, sol
from qbitflow_bootstrap.identities import Identity, load_or_create
from qbitflow_bootstrap.initializer import AuthorityRecord, initialize_authority, load_program
from qbitflow_bootstrap.provisioner import ProvisionResult, create_mint, provision
from qbitflow_bootstrap.reporter import build_manifest, load_manifest, previous_mint, report

logger = logging.getLogger(__name__)

# Receives every provisioned token.
RECIPIENT_ROLE = "user"


@dataclass
class BootstrapResult:
    manifest: Dict[str, str]
    identities: List[Identity]
    tokens: List[ProvisionResult] = field(default_factory=list)
    authority: Optional[AuthorityRecord] = None
    cost: int = 0


def deployer_identity(config: BootstrapConfig) -> Identity:
    if config.deployer_keypair is not None:
        return Identity("deployer", config.deployer_keypair)
    # Same fallback `anchor` uses: ANCHOR_WALLET or ~/.config/solana/id.json
    try:
        return Identity("deployer", Wallet.local().payer)
    except (OSError, KeyError, ValueError) as exc:
        raise ConfigError(f"no deployer key in the environment and no local wallet: {exc}") from exc


def _previous_manifest(config: BootstrapConfig) -> Dict[str, str]:
    try:
        return load_manifest(config.manifest_path)
    except StorageError as exc:
        if config.mint_mode == MintMode.REUSE:
            raise
        logger.warning("Ignoring unreadable previous manifest: %s", exc)
        return {}


async def run_bootstrap(
    config: BootstrapConfig,
    client: AsyncClient,
    program: Optional[Program] = None,
    program_only: bool = False,
    show_keys: bool = False,
) -> BootstrapResult:
    """
    identities → funding → token mints → program authority → summary,
    strictly in that order and one transaction at a time: every step signs
    with the same deployer key.
    """
    if config.co_signer is None:
        raise ConfigError("Please provide the co-signer public key")

    deployer = deployer_identity(config)
    logger.info("Deployer Wallet: %s", deployer.pubkey)
    logger.info("RPC URL: %s", config.rpc_url)

    initial_balance = await get_balance(client, deployer.pubkey, config.retry)
    logger.info("Initial deployer balance: %s SOL", sol(initial_balance))

    # ─── 1. Identities ────────────────────────────────────────────────────────
    identities = [deployer]
    if not program_only:
        identities += [load_or_create(role, config.accounts_dir) for role in LOCAL_ROLES]

    # Must be read before any transaction is sent.
    previous: Dict[str, str] = {}
    if not program_only:
        previous = _previous_manifest(config)

    # ─── 2. Funding ───────────────────────────────────────────────────────────
    if not program_only:
        for identity in identities:
            target = config.funding_for(identity.role)
            if target is not None:
                await ensure_funded(client, identity, target.min_balance, target.top_up, config.retry)

    # ─── 3. Token mints ───────────────────────────────────────────────────────
    tokens: List[ProvisionResult] = []
    if not program_only:
        recipient = next(i for i in identities if i.role == RECIPIENT_ROLE)
        for token in config.tokens:
            tokens.append(
                await provision(
                    client,
                    token,
                    deployer.keypair,
                    recipient.pubkey,
                    mode=config.mint_mode,
                    existing_mint=previous_mint(previous, token.symbol),
                    retry=config.retry,
                )
            )

    # ─── 4. Program authority ─────────────────────────────────────────────────
    if program is None:
        program = load_program(client, deployer.keypair, config.idl_path, config.program_id)
    authority = await initialize_authority(
        program, client, deployer.keypair, config.co_signer, config.retry
    )

    # ─── 5. Summary ───────────────────────────────────────────────────────────
    final_balance = await get_balance(client, deployer.pubkey, config.retry)
    manifest = build_manifest(
        identities,
        config.rpc_url,
        config.ws_url,
        tokens=tokens,
        authority=authority,
        program_id=program.program_id,
    )
    cost = report(
        manifest,
        config.manifest_path,
        initial_balance,
        final_balance,
        identities=identities,
        show_keys=show_keys,
    )
    return BootstrapResult(manifest, identities, tokens, authority, cost)


async def run_create_mints(config: BootstrapConfig, client: AsyncClient) -> Dict[str, Pubkey]:
    """Create one fresh mint per configured token, deployer as authority."""
    deployer = deployer_identity(config)
    logger.info("Using authority wallet: %s", deployer.pubkey)

    mints: Dict[str, Pubkey] = {}
    for token in config.tokens:
        mint = await create_mint(client, token, deployer.keypair)
        mints[token.symbol] = mint.pubkey
        print(f"Created mint for {token.symbol} at address: {mint.pubkey}")
    return mints
