import hashlib

DISCRIMINATOR_SIZE = 8


def account_discriminator(account_name: str) -> bytes:
    """
    Anchor prefixes account data with the first 8 bytes of
    sha256("account:<AccountName>").
    """
    data = f"account:{account_name}".encode("utf-8")
    return hashlib.sha256(data).digest()[:DISCRIMINATOR_SIZE]


def has_discriminator(data: bytes, account_name: str) -> bool:
    return bytes(data[:DISCRIMINATOR_SIZE]) == account_discriminator(account_name)
