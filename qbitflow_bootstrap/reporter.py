import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence

import base58
from solders.pubkey import Pubkey

from qbitflow_bootstrap.errors import StorageError
from qbitflow_bootstrap.funding import sol
from qbitflow_bootstrap.identities import Identity
from qbitflow_bootstrap.initializer import AuthorityRecord
from qbitflow_bootstrap.provisioner import ProvisionResult

logger = logging.getLogger(__name__)

RULE = "=" * 29


def wallet_key(role: str) -> str:
    return f"{role.upper()}_WALLET"


def token_account_key(symbol: str) -> str:
    return f"{symbol}_TOKEN_ACCOUNT"


def build_manifest(
    identities: Iterable[Identity],
    rpc_url: str,
    ws_url: str,
    tokens: Sequence[ProvisionResult] = (),
    authority: Optional[AuthorityRecord] = None,
    program_id: Optional[Pubkey] = None,
) -> Dict[str, str]:
    manifest = {wallet_key(ident.role): str(ident.pubkey) for ident in identities}
    manifest["RPC_URL"] = rpc_url
    manifest["WS_URL"] = ws_url
    if program_id is not None:
        manifest["PROGRAM_ID"] = str(program_id)
    if authority is not None:
        manifest["AUTHORITY_PDA"] = str(authority.address)
    for result in tokens:
        manifest[result.symbol] = str(result.mint)
    for result in tokens:
        manifest[token_account_key(result.symbol)] = str(result.token_account)
    return manifest


def load_manifest(path: Path) -> Dict[str, str]:
    """Read a previous run's manifest; a missing file is an empty manifest."""
    path = Path(path)
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as exc:
        raise StorageError(f"cannot read manifest {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise StorageError(f"manifest {path} is not a JSON object")
    return {str(k): str(v) for k, v in data.items()}


def previous_mint(manifest: Dict[str, str], symbol: str) -> Optional[Pubkey]:
    value = manifest.get(symbol)
    if not value:
        return None
    try:
        return Pubkey.from_string(value)
    except ValueError:
        logger.warning("Ignoring unparsable %s mint %r in previous manifest", symbol, value)
        return None


def write_manifest(manifest: Dict[str, str], path: Path):
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(manifest, indent=2))
    except OSError as exc:
        raise StorageError(f"cannot write manifest {path}: {exc}") from exc
    print(f"\n→ Addresses saved to: {path}")


def display_keypair(identity: Identity):
    print(f"{identity.role.capitalize()} Wallet Public Key:", identity.pubkey)
    print(
        f"{identity.role.capitalize()} Wallet Private Key:",
        base58.b58encode(bytes(identity.keypair)).decode(),
    )


def report(
    manifest: Dict[str, str],
    path: Path,
    initial_balance: int,
    final_balance: int,
    identities: Iterable[Identity] = (),
    show_keys: bool = False,
) -> int:
    """Print the deployment summary, persist the manifest, return the cost in lamports."""
    cost = initial_balance - final_balance

    print(f"\n{RULE}")
    print("Deployment Summary")
    print(RULE)
    print("Deployer balance after setup:", sol(final_balance), "SOL")
    print("Setup cost:", sol(cost), "SOL")

    print("\nDeployed Addresses:")
    print("=" * 18)
    for key, value in manifest.items():
        print(f"{key}: {value}")

    write_manifest(manifest, path)

    if show_keys:
        print()
        for identity in identities:
            display_keypair(identity)

    return cost
