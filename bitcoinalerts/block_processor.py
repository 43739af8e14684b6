"""Block processor: evaluates chain event rules once per new block."""

import threading
import time
from enum import Enum
from typing import Callable, Dict, Iterable, Optional

import requests

from .chain import ChainClient, MiningInfo
from .constants import (
    DEFAULT_METRICS_LOG_INTERVAL_SECS,
    DEFAULT_POLL_SECS,
    DEFAULT_RETRY_DELAY_CEILING_SECS,
    DEFAULT_RETRY_DELAY_FLOOR_SECS,
    DEFAULT_RPC_RETRY_SECS,
)
from .errors import FatalError, StoreError
from .logging import get_logger
from .network_store import LAST_DIFFICULTY, LAST_HASHRATE_ATH, LAST_SUPPLY, NetworkStateStore
from .notification_queue import NotificationQueue, Target
from .rpc import RPCError
from . import rules
from .rules import ChainSnapshot, Message, PriorState, RuleResult, RuleSet

logger = get_logger(__name__)


class ProcessorState(str, Enum):
    IDLE = "idle"
    FETCHING_HEIGHT = "fetching_height"
    WAITING = "waiting"
    PROCESSING = "processing"


class BlockProcessor:
    """Polls the node and processes one block height per iteration.

    Heights are handled strictly in order, one at a time, and the processed
    marker only advances after every rule for that height succeeded.
    Processing failures back off exponentially from ``retry_delay_floor_secs``;
    once the delay exceeds ``retry_delay_ceiling_secs`` a FatalError is raised.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        network_store: NetworkStateStore,
        queue: NotificationQueue,
        targets: Iterable[Target],
        ruleset: RuleSet = RuleSet(),
        poll_secs: int = DEFAULT_POLL_SECS,
        rpc_retry_secs: int = DEFAULT_RPC_RETRY_SECS,
        retry_delay_floor_secs: int = DEFAULT_RETRY_DELAY_FLOOR_SECS,
        retry_delay_ceiling_secs: int = DEFAULT_RETRY_DELAY_CEILING_SECS,
        coinstatsindex: bool = False,
        metrics_log_interval_secs: int = DEFAULT_METRICS_LOG_INTERVAL_SECS,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize block processor.

        Args:
            chain_client: Typed node client
            network_store: Persisted baselines and processed height
            queue: Notification queue receiving the fan-out
            targets: Enabled delivery targets; disabled targets get no rows
            ruleset: Rule configuration
            poll_secs: Wait between polls when no new block is available
            rpc_retry_secs: Wait after a failed tip height query
            retry_delay_floor_secs: Initial backoff after a processing failure
            retry_delay_ceiling_secs: Backoff above which failures are fatal
            coinstatsindex: Query UTXO set totals at a specific height
            metrics_log_interval_secs: Seconds between metrics log lines
            sleep_fn: Sleep function (defaults to a stoppable wait)
        """
        self.chain_client = chain_client
        self.network_store = network_store
        self.queue = queue
        self.targets = [Target(t) for t in targets]
        self.ruleset = ruleset
        self.poll_secs = poll_secs
        self.rpc_retry_secs = rpc_retry_secs
        self.retry_delay_floor_secs = retry_delay_floor_secs
        self.retry_delay_ceiling_secs = retry_delay_ceiling_secs
        self.coinstatsindex = coinstatsindex
        self.metrics_log_interval_secs = metrics_log_interval_secs

        self._stop_event = threading.Event()
        self._sleep_fn = sleep_fn or self._stop_event.wait

        self.state = ProcessorState.IDLE
        self.retry_delay = retry_delay_floor_secs
        self.metrics = {
            "blocks_processed": 0,
            "notifications_queued": 0,
            "rpc_failures": 0,
            "processing_failures": 0,
        }

        logger.info(f"Block processor initialized, targets: {', '.join(map(str, self.targets)) or 'none'}")

    def _sleep(self, secs: float, wait: bool):
        if wait:
            self._sleep_fn(secs)

    def _read_prior_state(self) -> PriorState:
        try:
            last_supply = self.network_store.get_last_supply()
        except StoreError as e:
            logger.warning(f"Get last supply: {e} - refreshing from UTXO set")
            last_supply = None

        return PriorState(
            last_difficulty=self.network_store.get_last_difficulty(),
            last_supply=last_supply,
            last_hashrate_ath=self.network_store.get_last_hashrate_ath(),
        )

    def queue_notification(self, message: Message) -> None:
        """Fan a message out to every enabled target."""
        for target in self.targets:
            try:
                notification_id = self.queue.enqueue(target, message.plain_text, message.html)
            except StoreError as e:
                logger.error(f"Impossible to queue notification for {target}: {e}")
                raise
            self.metrics["notifications_queued"] += 1
            logger.info(f"Queued a new notification for {target} ({notification_id}): {message.plain_text}")

    def _apply_updates(self, height: int, updates: Dict[str, float]) -> None:
        """Persist rule baselines; failed writes are logged and the block still counts as processed."""
        setters = {
            LAST_SUPPLY: self.network_store.set_last_supply,
            LAST_DIFFICULTY: self.network_store.set_last_difficulty,
            LAST_HASHRATE_ATH: self.network_store.set_last_hashrate_ath,
        }
        for key, value in updates.items():
            setter = setters.get(key)
            try:
                if setter is None:
                    self.network_store.set(key, value)
                else:
                    setter(value)
            except StoreError as e:
                logger.warning(f"Block {height}: failed to save {key} {value}: {e}")

    def process_block(self, height: int, mining_info: Optional[MiningInfo] = None) -> RuleResult:
        """
        Evaluate every rule for one block and queue the resulting notifications.

        Args:
            height: Block height to evaluate
            mining_info: Mining snapshot already fetched for this height

        Returns:
            Combined rule result

        Raises:
            RPCError, requests.RequestException: If chain data cannot be fetched
            StoreError: If a required read or write fails
        """
        if mining_info is None:
            mining_info = self.chain_client.get_mining_info()
        prior = self._read_prior_state()

        tx_out_set = None
        if rules.needs_supply_refresh(height, prior.last_supply, self.ruleset.supply_refresh_interval):
            tx_out_set = self.chain_client.get_tx_out_set_info(height if self.coinstatsindex else None)
            logger.debug(f"txoutset height: {tx_out_set.height} - block height: {height}")

        snapshot = ChainSnapshot(height=height, mining_info=mining_info, tx_out_set=tx_out_set)
        result = rules.evaluate(snapshot, prior, self.ruleset)

        for message in result.messages:
            self.queue_notification(message)

        self._apply_updates(height, result.updates)
        return result

    def _handle_failure(self, height: Optional[int], error: Exception, wait: bool) -> None:
        self.metrics["processing_failures"] += 1
        if self.retry_delay > self.retry_delay_ceiling_secs:
            logger.error(f"Impossible to process block {height}: {error}")
            raise FatalError(f"Block {height} failed after retries: {error}") from error

        logger.error(
            f"Process block {height}: {error} - retrying in {self.retry_delay} sec",
            exc_info=True
        )
        self._sleep(self.retry_delay, wait)
        self.retry_delay *= 2

    def step(self, wait: bool = True) -> Dict:
        """
        Run one iteration of the processing loop.

        Args:
            wait: Sleep after waiting/failure outcomes (False for one-shot runs)

        Returns:
            Dictionary describing the iteration outcome

        Raises:
            FatalError: If the retry delay exceeded its ceiling
        """
        outcome = {"processed": False, "height": None, "tip": None, "notifications": 0}

        self.state = ProcessorState.FETCHING_HEIGHT
        try:
            tip = self.chain_client.get_block_count()
        except (RPCError, requests.RequestException) as e:
            self.metrics["rpc_failures"] += 1
            logger.error(f"Get block height: {e} - retrying in {self.rpc_retry_secs} sec")
            self._sleep(self.rpc_retry_secs, wait)
            outcome["error"] = str(e)
            return self._finish(outcome)

        logger.debug(f"Current block is {tip}")
        outcome["tip"] = tip

        next_height = None
        try:
            processed = self.network_store.get_last_processed_block()
            if processed is None:
                logger.info(f"No processed block found, starting from current height {tip}")
                self.network_store.set_last_processed_block(tip)
                processed = tip

            logger.debug(f"Last processed block is {processed}")
            if tip <= processed:
                logger.debug("Wait for new block")
                self.state = ProcessorState.WAITING
                self._sleep(self.poll_secs, wait)
                return self._finish(outcome)

            next_height = processed + 1
            try:
                mining_info = self.chain_client.get_mining_info()
            except (RPCError, requests.RequestException) as e:
                self.metrics["rpc_failures"] += 1
                logger.error(f"Get mining info for block {next_height}: {e} - retrying in {self.rpc_retry_secs} sec")
                self._sleep(self.rpc_retry_secs, wait)
                outcome.update({"height": next_height, "error": str(e)})
                return self._finish(outcome)

            self.state = ProcessorState.PROCESSING
            start = time.monotonic()
            result = self.process_block(next_height, mining_info)
            self.network_store.set_last_processed_block(next_height)
        except FatalError:
            raise
        except Exception as e:
            outcome["height"] = next_height
            outcome["error"] = str(e)
            self._handle_failure(next_height, e, wait)
            return self._finish(outcome)

        self.retry_delay = self.retry_delay_floor_secs
        self.metrics["blocks_processed"] += 1
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            f"Block {next_height} processed in {elapsed_ms:.0f} ms: "
            f"{len(result.messages)} notifications"
        )

        outcome.update({"processed": True, "height": next_height, "notifications": len(result.messages)})
        return self._finish(outcome)

    def _finish(self, outcome: Dict) -> Dict:
        outcome["state"] = self.state.value
        self.state = ProcessorState.IDLE
        outcome["retry_delay"] = self.retry_delay
        outcome["metrics"] = self.metrics.copy()
        return outcome

    def run_continuous(self):
        """Run the processing loop until stop() is called."""
        logger.info("Bitcoin block processor started")
        last_metrics_log = time.monotonic()

        while not self._stop_event.is_set():
            self.step()

            now = time.monotonic()
            if now - last_metrics_log >= self.metrics_log_interval_secs:
                self._log_metrics()
                last_metrics_log = now

        logger.info("Bitcoin block processor stopped")

    def stop(self):
        self._stop_event.set()

    def _log_metrics(self):
        """Log current metrics."""
        logger.info(
            f"Metrics: blocks={self.metrics['blocks_processed']}, "
            f"queued={self.metrics['notifications_queued']}, "
            f"rpc_failures={self.metrics['rpc_failures']}, "
            f"processing_failures={self.metrics['processing_failures']}"
        )
