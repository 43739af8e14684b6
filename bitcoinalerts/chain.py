"""Typed chain queries and the node readiness check."""

import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from .constants import DEFAULT_RPC_RETRY_SECS, DEFAULT_SYNC_WAIT_SECS, MIN_NODE_VERSION, NETWORKS
from .errors import FatalError
from .logging import get_logger
from .rpc import RPCClient, RPCError

logger = get_logger(__name__)


@dataclass(frozen=True)
class MiningInfo:
    difficulty: float
    network_hash_ps: float


@dataclass(frozen=True)
class TxOutSetInfo:
    height: int
    total_amount: float


@dataclass(frozen=True)
class BlockchainInfo:
    chain: str
    blocks: int
    headers: int
    initial_block_download: bool


@dataclass(frozen=True)
class NetworkInfo:
    version: int
    network_active: bool


class ChainClient:
    """Typed wrapper over the node RPC calls used by the block processor."""

    def __init__(self, rpc_client: RPCClient):
        self.rpc_client = rpc_client

    def get_block_count(self) -> int:
        return int(self.rpc_client.call("getblockcount"))

    def get_mining_info(self) -> MiningInfo:
        info = self.rpc_client.call("getmininginfo")
        return MiningInfo(
            difficulty=float(info["difficulty"]),
            network_hash_ps=float(info["networkhashps"]),
        )

    def get_tx_out_set_info(self, height: Optional[int] = None) -> TxOutSetInfo:
        """
        Get UTXO set statistics.

        Querying a specific height needs the node's coinstatsindex; without a
        height the snapshot describes the current tip.

        Args:
            height: Block height to query, or None for the tip

        Returns:
            TxOutSetInfo with the snapshot height and total amount in BTC
        """
        if height is None:
            info = self.rpc_client.call("gettxoutsetinfo", "none")
        else:
            info = self.rpc_client.call("gettxoutsetinfo", "none", height)
        return TxOutSetInfo(height=int(info["height"]), total_amount=float(info["total_amount"]))

    def get_blockchain_info(self) -> BlockchainInfo:
        info = self.rpc_client.call("getblockchaininfo")
        return BlockchainInfo(
            chain=info["chain"],
            blocks=int(info["blocks"]),
            headers=int(info["headers"]),
            initial_block_download=bool(info.get("initialblockdownload", False)),
        )

    def get_network_info(self) -> NetworkInfo:
        info = self.rpc_client.call("getnetworkinfo")
        return NetworkInfo(
            version=int(info["version"]),
            network_active=bool(info.get("networkactive", False)),
        )


def check_node(blockchain_info: BlockchainInfo, network_info: NetworkInfo, network: str) -> int:
    """
    Validate node preconditions.

    Args:
        blockchain_info: Result of getblockchaininfo
        network_info: Result of getnetworkinfo
        network: Configured network name (bitcoin, testnet, signet, regtest)

    Returns:
        Number of blocks the node still has to download

    Raises:
        FatalError: If the node is too old, offline, or on another chain
    """
    if network_info.version < MIN_NODE_VERSION:
        logger.error("This application requires Bitcoin Core 22.0+")
        raise FatalError(f"Bitcoin Core version incompatible: {network_info.version}")

    if not network_info.network_active:
        logger.error("This application requires active Bitcoin P2P network.")
        raise FatalError("P2P network not enabled")

    expected_chain = NETWORKS[network][0]
    if blockchain_info.chain != expected_chain:
        logger.error(f"Node is on chain '{blockchain_info.chain}', expected '{expected_chain}'")
        raise FatalError(f"Network mismatch: node={blockchain_info.chain} config={expected_chain}")

    return max(blockchain_info.headers - blockchain_info.blocks, 0)


def wait_until_synced(
    chain_client: ChainClient,
    network: str,
    rpc_retry_secs: int = DEFAULT_RPC_RETRY_SECS,
    sync_wait_secs: int = DEFAULT_SYNC_WAIT_SECS,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> None:
    """
    Block until the node is fully synced.

    Connection problems are retried forever; precondition failures raise
    FatalError.
    """
    while True:
        try:
            blockchain_info = chain_client.get_blockchain_info()
            network_info = chain_client.get_network_info()
        except (RPCError, requests.RequestException) as e:
            logger.error(f"Get node info: {e} - retrying in {rpc_retry_secs} sec")
            sleep_fn(rpc_retry_secs)
            continue

        left_blocks = check_node(blockchain_info, network_info, network)
        if left_blocks == 0:
            logger.info(f"Node synced at height {blockchain_info.blocks}")
            return

        logger.info(
            f"Waiting to download {left_blocks} blocks"
            f"{' (IBD)' if blockchain_info.initial_block_download else ''}"
        )
        sleep_fn(sync_wait_secs)
