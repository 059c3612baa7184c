class BundlerError(Exception):
    pass


class NetworkError(BundlerError):
    """RPC or relay transport failure. Transient: retry the whole operation."""


class PoolNotFoundError(BundlerError):
    """Asset is not tradable on either venue."""


class DecodeError(BundlerError):
    """On-chain account layout does not match what we decode. Never retried."""


class SizeExceededError(BundlerError):
    """Signed transaction is larger than the packet size limit."""


class InsufficientBalanceError(BundlerError):
    """Nothing to swap for this account."""
