import logging
from dataclasses import dataclass
from typing import Optional

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.async_client import AsyncToken
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from qbitflow_bootstrap.config import MintMode, TokenConfig
from qbitflow_bootstrap.errors import ProvisionError
from qbitflow_bootstrap.retry import NO_RETRY, RetryPolicy

logger = logging.getLogger(__name__)

CONFIRMED_TX = TxOpts(skip_confirmation=False, preflight_commitment=Confirmed)

_RPC_ERRORS = (RPCException, SolanaRpcException, UnconfirmedTxError)


@dataclass(frozen=True)
class ProvisionResult:
    symbol: str
    mint: Pubkey
    token_account: Pubkey
    balance: int
    created: bool


async def account_exists(client: AsyncClient, address: Pubkey, retry: RetryPolicy) -> bool:
    resp = await retry.run(lambda: client.get_account_info(address, commitment=Confirmed))
    return resp.value is not None


async def create_mint(client: AsyncClient, token: TokenConfig, payer: Keypair) -> AsyncToken:
    """Create a brand-new mint with `payer` as mint and freeze authority."""
    try:
        mint = await AsyncToken.create_mint(
            client,
            payer,
            payer.pubkey(),                 # mint authority
            token.decimals,
            TOKEN_PROGRAM_ID,
            freeze_authority=payer.pubkey(),
            skip_confirmation=False,
        )
    except _RPC_ERRORS as exc:
        raise ProvisionError(token.symbol, f"mint creation failed: {exc}") from exc
    logger.info("%s mint created: %s", token.symbol, mint.pubkey)
    return mint


async def _resolve_mint(
    client: AsyncClient,
    token: TokenConfig,
    payer: Keypair,
    mode: MintMode,
    existing_mint: Optional[Pubkey],
    retry: RetryPolicy,
):
    if existing_mint is not None:
        if mode is MintMode.REUSE:
            if await account_exists(client, existing_mint, retry):
                logger.info("Reusing existing %s mint %s", token.symbol, existing_mint)
                return AsyncToken(client, existing_mint, TOKEN_PROGRAM_ID, payer), False
            logger.warning(
                "%s mint %s from the previous manifest is gone, creating a new one",
                token.symbol, existing_mint,
            )
        else:
            logger.warning(
                "Creating a duplicate %s mint; previous run recorded %s",
                token.symbol, existing_mint,
            )
    return await create_mint(client, token, payer), True


async def ensure_token_account(
    client: AsyncClient, mint: AsyncToken, owner: Pubkey, retry: RetryPolicy
) -> Pubkey:
    """Return owner's associated token account for `mint`, creating it if missing."""
    ata = get_associated_token_address(owner, mint.pubkey)
    if await account_exists(client, ata, retry):
        return ata
    return await mint.create_associated_token_account(owner, skip_confirmation=False)


async def token_balance(mint: AsyncToken, account: Pubkey, retry: RetryPolicy) -> int:
    resp = await retry.run(lambda: mint.get_balance(account, commitment=Confirmed))
    return int(resp.value.amount)


async def provision(
    client: AsyncClient,
    token: TokenConfig,
    payer: Keypair,
    recipient: Pubkey,
    mode: MintMode = MintMode.CREATE,
    existing_mint: Optional[Pubkey] = None,
    retry: RetryPolicy = NO_RETRY,
) -> ProvisionResult:
    """
    Create (or reuse) the mint for `token`, make sure `recipient` has a token
    account for it, and credit that account up to `token.raw_amount`.

    Nothing is rolled back on failure; mints already created stay on chain.
    """
    logger.info("Creating and minting %s...", token.name)
    try:
        mint, created = await _resolve_mint(client, token, payer, mode, existing_mint, retry)
    except _RPC_ERRORS as exc:
        raise ProvisionError(token.symbol, f"mint lookup failed: {exc}") from exc

    try:
        account = await ensure_token_account(client, mint, recipient, retry)

        current = 0 if created else await token_balance(mint, account, retry)
        shortfall = token.raw_amount - current
        if shortfall > 0:
            await mint.mint_to(account, payer, shortfall, opts=CONFIRMED_TX)
            logger.info("%s minted %d raw units to %s", token.symbol, shortfall, recipient)
        else:
            logger.info("%s account %s already holds %d raw units", token.symbol, account, current)

        balance = await token_balance(mint, account, retry)
    except _RPC_ERRORS as exc:
        raise ProvisionError(token.symbol, f"{exc} (mint {mint.pubkey})") from exc

    logger.info(
        "%s balance: %s %s, token account: %s",
        token.symbol, balance / 10 ** token.decimals, token.symbol, account,
    )
    return ProvisionResult(token.symbol, mint.pubkey, account, balance, created)
