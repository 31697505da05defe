"""Bootstrap tooling for the QBitFlow payment system on Solana."""

__version__ = "0.1.0"
