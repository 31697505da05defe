import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from anchorpy import Context, Idl, Program, Provider, Wallet
from anchorpy.error import AccountDoesNotExistError, ProgramError
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, UnconfirmedTxError
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYS_PROGRAM_ID

from qbitflow_bootstrap.constants import (
    AUTHORITY_ACCOUNT,
    AUTHORITY_SEED,
    DEFAULT_PROGRAM_KEYPAIR,
)
from qbitflow_bootstrap.discriminators import has_discriminator
from qbitflow_bootstrap.errors import AlreadyInitialized, ConfigError, InitializationError
from qbitflow_bootstrap.identities import read_keypair
from qbitflow_bootstrap.retry import NO_RETRY, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorityRecord:
    address: Pubkey
    bump: int
    owner: Pubkey
    co_signer: Pubkey
    created: bool


# ─── Program client ───────────────────────────────────────────────────────────

def resolve_program_id(
    explicit: Optional[Pubkey],
    idl_json: dict,
    program_keypair: Path = DEFAULT_PROGRAM_KEYPAIR,
) -> Pubkey:
    """
    Pick the program id: explicit value first, then the `anchor build` deploy
    keypair, then the address recorded in the IDL.
    """
    if explicit is not None:
        return explicit
    if program_keypair.exists():
        return read_keypair(program_keypair).pubkey()
    address = idl_json.get("address") or idl_json.get("metadata", {}).get("address")
    if address:
        return Pubkey.from_string(address)
    raise ConfigError(
        "Couldn't determine the program id: pass --program-id, set PROGRAM_ID "
        f"or deploy the program so {program_keypair} exists"
    )


def load_program(
    client: AsyncClient,
    deployer: Keypair,
    idl_path: Path,
    program_id: Optional[Pubkey] = None,
) -> Program:
    """Load the IDL and return an AnchorPy Program client signing as `deployer`."""
    try:
        raw = Path(idl_path).read_text()
    except OSError as exc:
        raise ConfigError(f"IDL file not found at {idl_path}") from exc

    provider = Provider(client, Wallet(deployer))
    idl = Idl.from_json(raw)
    return Program(idl, resolve_program_id(program_id, json.loads(raw)), provider)


# ─── Authority PDA ────────────────────────────────────────────────────────────

def derive_authority_address(program_id: Pubkey) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address([AUTHORITY_SEED], program_id)


async def _submit_initialize(
    program: Program,
    client: AsyncClient,
    authority_pda: Pubkey,
    deployer: Keypair,
    co_signer: Pubkey,
    retry: RetryPolicy,
):
    info = await retry.run(lambda: client.get_account_info(authority_pda, commitment=Confirmed))
    if info.value is not None:
        if not has_discriminator(info.value.data, AUTHORITY_ACCOUNT):
            raise InitializationError(
                f"{authority_pda} holds data that is not an {AUTHORITY_ACCOUNT} account"
            )
        raise AlreadyInitialized(authority_pda)

    try:
        return await program.rpc["initialize"](
            co_signer,
            ctx=Context(
                accounts={
                    "authority":      authority_pda,
                    "signer":         deployer.pubkey(),
                    "system_program": SYS_PROGRAM_ID,
                },
                signers=[deployer],
            ),
        )
    except (RPCException, SolanaRpcException, UnconfirmedTxError, ProgramError) as exc:
        # Lost a race with another initializer: the system program refuses
        # to allocate an account that already exists.
        if "already in use" in str(exc):
            raise AlreadyInitialized(authority_pda) from exc
        raise InitializationError(f"initialize failed: {exc}") from exc


async def fetch_authority(program: Program, address: Pubkey, created: bool) -> AuthorityRecord:
    try:
        acct = await program.account[AUTHORITY_ACCOUNT].fetch(address)
    except (AccountDoesNotExistError, RPCException, SolanaRpcException) as exc:
        raise InitializationError(f"cannot fetch authority PDA {address}: {exc}") from exc
    return AuthorityRecord(address, acct.bump, acct.owner, acct.co_signer, created)


async def initialize_authority(
    program: Program,
    client: AsyncClient,
    deployer: Keypair,
    co_signer: Pubkey,
    retry: RetryPolicy = NO_RETRY,
) -> AuthorityRecord:
    """
    Run the program's one-time `initialize(co_signer)` against the authority
    PDA. A PDA that is already initialized is not an error: the existing
    record is fetched and returned with `created=False`.
    """
    authority_pda, _ = derive_authority_address(program.program_id)
    logger.info("Initializing on-chain program...")
    logger.info("Co-signer Public Key: %s", co_signer)

    try:
        tx = await _submit_initialize(program, client, authority_pda, deployer, co_signer, retry)
        logger.info("✓ initialize succeeded, tx %s", tx)
        created = True
    except AlreadyInitialized as exc:
        logger.info("%s; skipping initialize", exc)
        created = False

    record = await fetch_authority(program, authority_pda, created)
    if record.co_signer != co_signer:
        logger.warning(
            "Authority PDA records co-signer %s, not the requested %s",
            record.co_signer, co_signer,
        )
    logger.info("Program Authority PDA: %s", authority_pda)
    return record
