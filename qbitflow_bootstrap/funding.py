import logging

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, UnconfirmedTxError
from solders.pubkey import Pubkey

from qbitflow_bootstrap.constants import LAMPORTS_PER_SOL
from qbitflow_bootstrap.errors import FundingUnavailable
from qbitflow_bootstrap.identities import Identity
from qbitflow_bootstrap.retry import RetryPolicy

logger = logging.getLogger(__name__)


def sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


async def get_balance(client: AsyncClient, pubkey: Pubkey, retry: RetryPolicy) -> int:
    resp = await retry.run(lambda: client.get_balance(pubkey, commitment=Confirmed))
    return resp.value


async def airdrop(client: AsyncClient, identity: Identity, lamports: int, retry: RetryPolicy) -> int:
    """
    Request `lamports` from the faucet and block until the airdrop confirms.
    The request itself is sent once.
    """
    logger.info("Airdropping %s SOL to %s (%s)...", sol(lamports), identity.pubkey, identity.role)
    try:
        sig = (await client.request_airdrop(identity.pubkey, lamports, commitment=Confirmed)).value
    except (RPCException, SolanaRpcException) as exc:
        raise FundingUnavailable(
            f"airdrop of {sol(lamports)} SOL to {identity.role} {identity.pubkey} rejected: {exc}"
        ) from exc

    try:
        conf = await retry.run(lambda: client.confirm_transaction(sig, commitment=Confirmed))
    except (UnconfirmedTxError, RPCException, SolanaRpcException) as exc:
        raise FundingUnavailable(f"airdrop {sig} to {identity.role} never confirmed: {exc}") from exc

    status = conf.value[0] if conf.value else None
    if status is not None and status.err is not None:
        raise FundingUnavailable(f"airdrop {sig} to {identity.role} failed: {status.err}")

    balance = await get_balance(client, identity.pubkey, retry)
    logger.info("Balance after airdrop: %s SOL", sol(balance))
    return balance


async def ensure_funded(
    client: AsyncClient,
    identity: Identity,
    min_balance: int,
    top_up: int,
    retry: RetryPolicy,
) -> int:
    """Top `identity` up by `top_up` lamports if it holds less than `min_balance`."""
    balance = await get_balance(client, identity.pubkey, retry)
    if balance >= min_balance:
        logger.info("%s already holds %s SOL, no airdrop needed", identity.role, sol(balance))
        return balance
    return await airdrop(client, identity, top_up, retry)
