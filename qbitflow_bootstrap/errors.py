class BootstrapError(Exception):
    """Base class for every failure the bootstrap reports."""


class ConfigError(BootstrapError):
    pass


class StorageError(BootstrapError):
    """A persisted keypair or manifest is missing, corrupt or unwritable."""


class FundingUnavailable(BootstrapError):
    """The faucet refused, rate-limited or never confirmed an airdrop."""


class ProvisionError(BootstrapError):
    def __init__(self, symbol: str, message: str):
        super().__init__(f"{symbol}: {message}")
        self.symbol = symbol


class AlreadyInitialized(BootstrapError):
    """The authority PDA already holds data; the setup was applied before."""

    def __init__(self, address):
        super().__init__(f"authority PDA {address} is already initialized")
        self.address = address


class InitializationError(BootstrapError):
    pass
