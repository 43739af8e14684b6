"""Persisted chain baselines: last processed block and network statistics."""

from typing import Optional

from .errors import StoreError
from .logging import get_logger
from .storage import NETWORK_NAMESPACE, Storage

logger = get_logger(__name__)

LAST_PROCESSED_BLOCK = "last_processed_block"
LAST_DIFFICULTY = "last_difficulty"
LAST_SUPPLY = "last_supply"
LAST_HASHRATE_ATH = "last_hashrate_ath"


class NetworkStateStore:
    """Typed access to the ``network`` namespace.

    A missing key reads as None: callers seed it with the current
    observation. Backend failures raise StoreError.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def get(self, key: str) -> Optional[str]:
        return self.storage.get(NETWORK_NAMESPACE, key)

    def set(self, key: str, value) -> None:
        self.storage.put(NETWORK_NAMESPACE, key, str(value))

    def _get_number(self, key: str, cast):
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return cast(raw)
        except ValueError as e:
            raise StoreError(f"Failed to deserialize {key}={raw!r}") from e

    def get_last_processed_block(self) -> Optional[int]:
        return self._get_number(LAST_PROCESSED_BLOCK, int)

    def set_last_processed_block(self, height: int) -> None:
        self.set(LAST_PROCESSED_BLOCK, int(height))
        logger.debug(f"Last processed block set to {height}")

    def get_last_difficulty(self) -> Optional[float]:
        return self._get_number(LAST_DIFFICULTY, float)

    def set_last_difficulty(self, difficulty: float) -> None:
        self.set(LAST_DIFFICULTY, float(difficulty))

    def get_last_supply(self) -> Optional[float]:
        return self._get_number(LAST_SUPPLY, float)

    def set_last_supply(self, supply: float) -> None:
        self.set(LAST_SUPPLY, float(supply))

    def get_last_hashrate_ath(self) -> Optional[float]:
        return self._get_number(LAST_HASHRATE_ATH, float)

    def set_last_hashrate_ath(self, hashrate: float) -> None:
        self.set(LAST_HASHRATE_ATH, float(hashrate))
