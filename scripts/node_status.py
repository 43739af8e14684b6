from bitcoinrpc.authproxy import AuthServiceProxy
import logging
import logging.handlers
import os
from pathlib import Path

from bitcoinalerts.constants import (
    DIFFICULTY_ADJUSTMENT_INTERVAL,
    DIFFICULTY_UNIT,
    HALVING_INTERVAL,
    HASHRATE_UNIT,
    NETWORKS,
)
from bitcoinalerts.rules import block_reward, format_btc

# Note: Sensitive values should be set via environment variables
# RPC credentials can be set via BA_RPC_USER and BA_RPC_PASS
NETWORK = os.getenv("BA_NETWORK", "bitcoin")
RPC_HOST = os.getenv("BA_RPC_HOST", "127.0.0.1")
RPC_PORT = int(os.getenv("BA_RPC_PORT", str(NETWORKS.get(NETWORK, NETWORKS["bitcoin"])[1])))
RPC_USER = os.getenv("BA_RPC_USER", "")
RPC_PASSWORD = os.getenv("BA_RPC_PASS", "")


# Setup logging for scripts
def _setup_script_logging():
    """Setup logging for scripts directory."""
    log_dir = Path("logs") / "scripts"
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("scripts.node_status")
    logger.setLevel(logging.INFO)

    # Clear existing handlers
    logger.handlers.clear()

    # File handler
    log_file = log_dir / "node_status.log"
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10485760,  # 10MB
        backupCount=10,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.INFO)
    file_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)-8s] [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_formatter = logging.Formatter('[%(levelname)s] %(message)s')
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    return logger


logger = _setup_script_logging()


def create_rpc_connection() -> AuthServiceProxy:
    """Create and return an authenticated RPC connection to Bitcoin node."""
    if not RPC_USER or not RPC_PASSWORD:
        raise ValueError(
            "RPC credentials not set. Please set BA_RPC_USER and BA_RPC_PASS "
            "environment variables"
        )
    rpc_url = f"http://{RPC_USER}:{RPC_PASSWORD}@{RPC_HOST}:{RPC_PORT}"
    return AuthServiceProxy(rpc_url)


def print_chain_status() -> None:
    """Print the chain figures the alert rules work from."""
    try:
        logger.info(f"Connecting to Bitcoin node at {RPC_HOST}:{RPC_PORT}")
        rpc = create_rpc_connection()

        print("=" * 80)
        print("BITCOIN CHAIN STATUS")
        print("=" * 80)

        blockchain_info = rpc.getblockchaininfo()
        network_info = rpc.getnetworkinfo()
        mining_info = rpc.getmininginfo()

        height = blockchain_info['blocks']
        logger.info(f"Chain: {blockchain_info['chain']}, Blocks: {height}")

        print("\n--- NODE ---")
        print(f"Chain: {blockchain_info['chain']}")
        print(f"Version: {network_info.get('version', 'N/A')}")
        print(f"Network Active: {network_info.get('networkactive', False)}")
        print(f"Blocks: {height:,}")
        print(f"Headers: {blockchain_info.get('headers', 0):,}")
        print(f"Initial Block Download: {blockchain_info.get('initialblockdownload', False)}")

        print("\n--- MINING ---")
        print(f"Difficulty: {float(mining_info['difficulty']) / DIFFICULTY_UNIT:.2f}T")
        print(f"Hashrate: {float(mining_info['networkhashps']) / HASHRATE_UNIT:.2f} EH/s")
        next_retarget = DIFFICULTY_ADJUSTMENT_INTERVAL - height % DIFFICULTY_ADJUSTMENT_INTERVAL
        print(f"Blocks to next difficulty adjustment: {next_retarget:,}")

        print("\n--- SUBSIDY ---")
        print(f"Block reward: {format_btc(block_reward(height))} BTC")
        print(f"Blocks to next Halving: {HALVING_INTERVAL - height % HALVING_INTERVAL:,}")

        print("\n" + "=" * 80)
        logger.info("Chain status retrieval completed successfully")

    except Exception as e:
        logger.error(f"Error connecting to Bitcoin node: {e}", exc_info=True)
        print(f"Error connecting to Bitcoin node: {e}")
        print("\nTroubleshooting:")
        print("1. Bitcoin node is running and reachable")
        print("2. BA_NETWORK matches the node's chain")
        print("3. RPC credentials are correct")


if __name__ == "__main__":
    print_chain_status()
