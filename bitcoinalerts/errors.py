"""Exception types shared across bitcoin-alerts components."""


class BitcoinAlertsError(Exception):
    """Base class for bitcoin-alerts errors."""


class FatalError(BitcoinAlertsError):
    """Unrecoverable condition; the supervisor stops the process.

    Raised for failed node preconditions (wrong network, old node, P2P
    disabled) and when block processing keeps failing past the retry
    ceiling.
    """


class StoreError(BitcoinAlertsError):
    """Raised when the durable store cannot be read or written."""
