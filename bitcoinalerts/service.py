"""Service wiring: builds components from config and supervises their threads."""

import threading
from typing import Callable, Dict, List, Optional

from .block_processor import BlockProcessor
from .chain import ChainClient, wait_until_synced
from .config import Config
from .dispatcher import ChannelDispatcher
from .errors import FatalError
from .logging import get_logger
from .network_store import NetworkStateStore
from .notification_queue import NotificationQueue, Target
from .publishers import MatrixPublisher, NostrPublisher, NtfyPublisher, Publisher
from .rpc import RPCClient
from .storage import Storage

logger = get_logger(__name__)


def build_publishers(config: Config) -> Dict[Target, Publisher]:
    """Create a publisher for every enabled channel."""
    publishers = {}

    ntfy = config.ntfy_config
    if ntfy["enabled"]:
        publishers[Target.NTFY] = NtfyPublisher(
            url=ntfy["url"],
            topic=ntfy["topic"],
            title=ntfy["title"],
            priority=ntfy["priority"],
            token=ntfy["token"],
            proxy=ntfy["proxy"],
            timeout=ntfy["timeout_secs"],
        )

    nostr = config.nostr_config
    if nostr["enabled"]:
        publishers[Target.NOSTR] = NostrPublisher(
            secret_key=nostr["secret_key"],
            relays=nostr["relays"],
            pow_difficulty=nostr["pow_difficulty"],
            publish_metadata=nostr["publish_metadata"],
            timeout=nostr["timeout_secs"],
        )

    matrix = config.matrix_config
    if matrix["enabled"]:
        publishers[Target.MATRIX] = MatrixPublisher(
            homeserver_url=matrix["homeserver_url"],
            access_token=matrix["access_token"],
            room_ids=matrix["room_ids"],
            proxy=matrix["proxy"],
            timeout=matrix["timeout_secs"],
        )

    return publishers


class AlertService:
    """Owns the shared handles and runs one thread per component.

    The block processor and each dispatcher only share the durable store.
    A FatalError (or an unexpected crash) in any thread stops the service.
    """

    def __init__(
        self,
        config: Config,
        chain_client: Optional[ChainClient] = None,
        storage: Optional[Storage] = None,
        publishers: Optional[Dict[Target, Publisher]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ):
        self.config = config
        self._sleep_fn = sleep_fn

        self._rpc_client = None
        if chain_client is None:
            self._rpc_client = RPCClient(
                config.rpc_url,
                config.rpc_user,
                config.rpc_password,
                timeout=config.rpc_timeout_secs,
            )
            chain_client = ChainClient(self._rpc_client)
        self.chain_client = chain_client

        if storage is None:
            storage = Storage(
                backend=config.storage_backend,
                db_path=config.storage_db_path,
                json_path=config.storage_json_path,
            )
        self.storage = storage
        self.network_store = NetworkStateStore(storage)
        self.queue = NotificationQueue(storage)

        if publishers is None:
            publishers = build_publishers(config)
        # Disabled channels get neither queue rows nor a dispatcher
        self.publishers = {t: p for t, p in publishers.items() if t in config.enabled_targets}

        processor_cfg = config.processor_config
        self.processor = BlockProcessor(
            self.chain_client,
            self.network_store,
            self.queue,
            targets=list(self.publishers),
            ruleset=config.ruleset,
            poll_secs=processor_cfg["poll_secs"],
            rpc_retry_secs=processor_cfg["rpc_retry_secs"],
            retry_delay_floor_secs=processor_cfg["retry_delay_floor_secs"],
            retry_delay_ceiling_secs=processor_cfg["retry_delay_ceiling_secs"],
            coinstatsindex=config.coinstatsindex,
            metrics_log_interval_secs=processor_cfg["metrics_log_interval_secs"],
            sleep_fn=sleep_fn,
        )

        dispatch_cfg = config.dispatch_config
        self.dispatchers: List[ChannelDispatcher] = [
            ChannelDispatcher(
                target,
                self.queue,
                publisher,
                interval_secs=dispatch_cfg["interval_secs"],
                list_retry_secs=dispatch_cfg["list_retry_secs"],
                sleep_fn=sleep_fn,
            )
            for target, publisher in self.publishers.items()
        ]

        self._stopped = threading.Event()
        self._fatal: Optional[BaseException] = None
        self._threads: List[threading.Thread] = []

        if not self.dispatchers:
            logger.warning("No notification channel enabled, events will only be logged")

    def run_once(self) -> Dict:
        """One processor iteration without sleeping plus one dispatch pass."""
        result = {"block_processing": self.processor.step(wait=False), "dispatch": []}
        for dispatcher in self.dispatchers:
            result["dispatch"].append(dispatcher.run_once())
        return result

    def _run_component(self, name: str, target: Callable[[], None]):
        try:
            target()
        except FatalError as e:
            logger.critical(f"{name} stopped: {e}")
            self._fatal = e
        except Exception as e:
            logger.critical(f"{name} crashed: {e}", exc_info=True)
            self._fatal = e
        finally:
            self._stopped.set()

    def start(self, skip_sync_check: bool = False):
        """
        Check node preconditions and start all component threads.

        Raises:
            FatalError: If the node fails the precondition check
        """
        if not skip_sync_check:
            processor_cfg = self.config.processor_config
            kwargs = {"sleep_fn": self._sleep_fn} if self._sleep_fn else {}
            wait_until_synced(
                self.chain_client,
                self.config.network,
                rpc_retry_secs=processor_cfg["rpc_retry_secs"],
                sync_wait_secs=processor_cfg["sync_wait_secs"],
                **kwargs
            )

        components = [("bitcoin", self.processor.run_continuous)]
        components += [(d.target.value, d.run_continuous) for d in self.dispatchers]

        for name, run in components:
            thread = threading.Thread(
                target=self._run_component,
                args=(name, run),
                name=name,
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

    def wait(self, timeout: Optional[float] = None) -> int:
        """
        Block until a component stops.

        Returns:
            Process exit code: 1 after a fatal error, 0 otherwise
        """
        self._stopped.wait(timeout)
        return 1 if self._fatal is not None else 0

    def stop(self):
        self.processor.stop()
        for dispatcher in self.dispatchers:
            dispatcher.stop()
        self._stopped.set()

    def close(self):
        """Close connections and cleanup."""
        self.stop()
        for thread in self._threads:
            thread.join(timeout=5)
        for publisher in self.publishers.values():
            publisher.close()
        if self._rpc_client is not None:
            self._rpc_client.close()
        self.storage.close()
        logger.info("Service closed")
