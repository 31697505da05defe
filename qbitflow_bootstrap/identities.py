import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from qbitflow_bootstrap.errors import StorageError

logger = logging.getLogger(__name__)

SECRET_KEY_LENGTH = 64


@dataclass(frozen=True)
class Identity:
    role: str
    keypair: Keypair

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()


def keypair_path(accounts_dir: Path, role: str) -> Path:
    return Path(accounts_dir) / f"{role}.json"


def read_keypair(path: Path) -> Keypair:
    """Parse a Solana CLI style keypair file (JSON array of 64 byte values)."""
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as exc:
        raise StorageError(f"cannot read keypair {path}: {exc}") from exc

    if (
        not isinstance(data, list)
        or len(data) != SECRET_KEY_LENGTH
        or not all(isinstance(b, int) and 0 <= b <= 255 for b in data)
    ):
        raise StorageError(f"{path} is not a {SECRET_KEY_LENGTH}-byte keypair array")

    try:
        return Keypair.from_bytes(bytes(data))
    except ValueError as exc:
        raise StorageError(f"{path} holds an invalid keypair: {exc}") from exc


def write_keypair(path: Path, kp: Keypair):
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(list(bytes(kp))))
        os.chmod(path, 0o600)
    except OSError as exc:
        raise StorageError(f"cannot persist keypair {path}: {exc}") from exc


def load_or_create(role: str, accounts_dir: Path) -> Identity:
    """
    Return the persisted identity for `role`, generating and saving one first
    if none exists. A corrupt file raises StorageError and is never replaced.
    """
    path = keypair_path(accounts_dir, role)
    if path.exists():
        kp = read_keypair(path)
        logger.info("Reusing %s wallet %s", role, kp.pubkey())
        return Identity(role, kp)

    kp = Keypair()
    write_keypair(path, kp)
    logger.info("Generated new %s wallet and saved to %s", role, path)
    return Identity(role, kp)
