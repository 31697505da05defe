from collections import defaultdict
from types import SimpleNamespace

import pytest
from anchorpy.error import AccountDoesNotExistError
from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from qbitflow_bootstrap import provisioner
from qbitflow_bootstrap.config import BootstrapConfig
from qbitflow_bootstrap.constants import AUTHORITY_ACCOUNT, AUTHORITY_SEED, LAMPORTS_PER_SOL
from qbitflow_bootstrap.discriminators import account_discriminator
from qbitflow_bootstrap.retry import RetryPolicy

TX_FEE = 5_000
MINT_RENT = 1_461_600
AUTHORITY_RENT = 1_385_040


def transport_error() -> SolanaRpcException:
    return SolanaRpcException(ConnectionError("connection reset"), None, None, None)


class FakeLedger:
    """Just enough of a cluster for the bootstrap steps."""

    def __init__(self):
        self.lamports = defaultdict(int)
        self.accounts = {}
        self.token_balances = defaultdict(int)
        self.mint_authority = {}
        self.mints = []
        self.airdrops = []
        self.mint_to_calls = []
        self.authorities = {}
        self.faucet_error = None
        self.airdrop_status_err = None
        self.confirm_error = None
        self.mint_to_error = None

    def charge(self, pubkey: Pubkey, lamports: int):
        self.lamports[pubkey] -= lamports


class FakeClient:
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger
        self.calls = defaultdict(int)

    async def get_balance(self, pubkey, commitment=None):
        self.calls["get_balance"] += 1
        return SimpleNamespace(value=self.ledger.lamports[pubkey])

    async def request_airdrop(self, pubkey, lamports, commitment=None):
        self.calls["request_airdrop"] += 1
        if self.ledger.faucet_error is not None:
            raise self.ledger.faucet_error
        self.ledger.airdrops.append((pubkey, lamports))
        if self.ledger.airdrop_status_err is None:
            self.ledger.lamports[pubkey] += lamports
        return SimpleNamespace(value=f"airdrop-{len(self.ledger.airdrops)}")

    async def confirm_transaction(self, sig, commitment=None):
        self.calls["confirm_transaction"] += 1
        if self.ledger.confirm_error is not None:
            raise self.ledger.confirm_error
        return SimpleNamespace(value=[SimpleNamespace(err=self.ledger.airdrop_status_err)])

    async def get_account_info(self, pubkey, commitment=None):
        data = self.ledger.accounts.get(pubkey)
        return SimpleNamespace(value=None if data is None else SimpleNamespace(data=data))


class FakeToken:
    """Stands in for spl.token.async_client.AsyncToken."""

    def __init__(self, conn, pubkey, program_id, payer):
        self._conn = conn
        self.pubkey = pubkey
        self.program_id = program_id
        self.payer = payer

    @property
    def ledger(self) -> FakeLedger:
        return self._conn.ledger

    @classmethod
    async def create_mint(
        cls,
        conn,
        payer,
        mint_authority,
        decimals,
        program_id,
        freeze_authority=None,
        skip_confirmation=False,
        recent_blockhash=None,
    ):
        mint = Keypair().pubkey()
        conn.ledger.accounts[mint] = b"mint" + bytes([decimals])
        conn.ledger.mints.append(mint)
        conn.ledger.mint_authority[mint] = mint_authority
        conn.ledger.charge(payer.pubkey(), MINT_RENT + TX_FEE)
        return cls(conn, mint, program_id, payer)

    async def create_associated_token_account(self, owner, skip_confirmation=False, recent_blockhash=None):
        ata = get_associated_token_address(owner, self.pubkey)
        if ata in self.ledger.accounts:
            raise RPCException("Allocate: account already in use")
        self.ledger.accounts[ata] = b"token"
        self.ledger.charge(self.payer.pubkey(), TX_FEE)
        return ata

    async def mint_to(self, dest, mint_authority, amount, multi_signers=None, opts=None, recent_blockhash=None):
        if self.ledger.mint_to_error is not None:
            raise self.ledger.mint_to_error
        if self.ledger.mint_authority[self.pubkey] != mint_authority.pubkey():
            raise RPCException("owner does not match")
        self.ledger.token_balances[dest] += amount
        self.ledger.mint_to_calls.append((self.pubkey, dest, amount))
        self.ledger.charge(self.payer.pubkey(), TX_FEE)

    async def get_balance(self, pubkey, commitment=None):
        amount = self.ledger.token_balances[pubkey]
        return SimpleNamespace(value=SimpleNamespace(amount=str(amount)))


class FakeProgram:
    """The parts of an anchorpy Program the initializer touches."""

    def __init__(self, ledger: FakeLedger, program_id: Pubkey):
        self.ledger = ledger
        self.program_id = program_id
        self.rpc = {"initialize": self._initialize}
        self.account = {AUTHORITY_ACCOUNT: SimpleNamespace(fetch=self._fetch)}
        self.initialize_calls = 0

    async def _initialize(self, co_signer, ctx):
        self.initialize_calls += 1
        pda = ctx.accounts["authority"]
        if pda in self.ledger.accounts:
            raise RPCException(f"Allocate: account Address {{ address: {pda} }} already in use")
        signer = ctx.accounts["signer"]
        _, bump = Pubkey.find_program_address([AUTHORITY_SEED], self.program_id)
        self.ledger.accounts[pda] = (
            account_discriminator(AUTHORITY_ACCOUNT) + bytes(signer) + bytes(co_signer) + bytes([bump])
        )
        self.ledger.authorities[pda] = SimpleNamespace(owner=signer, co_signer=co_signer, bump=bump)
        self.ledger.charge(signer, AUTHORITY_RENT + TX_FEE)
        return f"init-{self.initialize_calls}"

    async def _fetch(self, address):
        if address not in self.ledger.authorities:
            raise AccountDoesNotExistError(f"Account {address} does not exist")
        return self.ledger.authorities[address]


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def client(ledger):
    return FakeClient(ledger)


@pytest.fixture
def fake_token(monkeypatch):
    monkeypatch.setattr(provisioner, "AsyncToken", FakeToken)
    return FakeToken


@pytest.fixture
def deployer(ledger):
    kp = Keypair()
    ledger.lamports[kp.pubkey()] = 100 * LAMPORTS_PER_SOL
    return kp


@pytest.fixture
def program(ledger):
    return FakeProgram(ledger, Keypair().pubkey())


@pytest.fixture
def fast_retry():
    return RetryPolicy(max_attempts=3, initial_wait=0, max_wait=0)


@pytest.fixture
def config(tmp_path, deployer, fast_retry):
    return BootstrapConfig(
        rpc_url="http://127.0.0.1:8899",
        ws_url="ws://127.0.0.1:8900",
        co_signer=Keypair().pubkey(),
        deployer_keypair=deployer,
        accounts_dir=tmp_path / "accounts",
        manifest_path=tmp_path / "deployed-addresses.json",
        retry=fast_retry,
    )
