"""Constants used throughout the bitcoin-alerts application."""

# Consensus schedule
HALVING_INTERVAL = 210_000
DIFFICULTY_ADJUSTMENT_INTERVAL = 2016
INITIAL_BLOCK_REWARD = 50.0  # BTC
MAX_HALVINGS = 32

# Unit normalisation
DIFFICULTY_UNIT = 10 ** 12  # T
HASHRATE_UNIT = 10 ** 18  # EH/s

# Halving countdown cadence: (max missing blocks, notify every N blocks)
DEFAULT_COUNTDOWN_TIERS = [
    (1008, 1),  # ~1 week left
    (4320, 6),
    (8640, 144),
    (51840, 432),
    (103680, 1008),
    (1555520, 2016),
]
DEFAULT_COUNTDOWN_BOUNDARIES = [4320, 8640, 51840, 105000, 1555520]
DEFAULT_COUNTDOWN_HEARTBEAT_BLOCKS = 12960  # ~90 days

DEFAULT_BLOCK_MILESTONES = [
    840_000, 850_000, 888_888, 900_000, 950_000, 999_999, 1_000_000, 1_111_111,
]

DEFAULT_SUPPLY_MILESTONES = [
    19_200_000.0,
    19_300_000.0,
    19_400_000.0,
    19_500_000.0,
    19_600_000.0,
    19_700_000.0,
    19_800_000.0,
    19_900_000.0,
    20_000_000.0,
]
DEFAULT_SUPPLY_REFRESH_INTERVAL = 50_000

# Block processor timing
DEFAULT_POLL_SECS = 60
DEFAULT_RPC_RETRY_SECS = 60
DEFAULT_RETRY_DELAY_FLOOR_SECS = 30
DEFAULT_RETRY_DELAY_CEILING_SECS = 3600
DEFAULT_SYNC_WAIT_SECS = 120
DEFAULT_METRICS_LOG_INTERVAL_SECS = 300

# Dispatcher timing
DEFAULT_DISPATCH_INTERVAL_SECS = 30
DEFAULT_LIST_RETRY_SECS = 60

# Network timeouts
DEFAULT_RPC_TIMEOUT_SECS = 60
DEFAULT_HTTP_TIMEOUT_SECS = 10

# Node requirements
MIN_NODE_VERSION = 220000  # Bitcoin Core 22.0

# Log rotation defaults
DEFAULT_LOG_MAX_BYTES = 10_485_760  # 10MB
DEFAULT_LOG_BACKUP_COUNT = 30

# Network name -> (getblockchaininfo chain, default RPC port)
NETWORKS = {
    "bitcoin": ("main", 8332),
    "testnet": ("test", 18332),
    "signet": ("signet", 38332),
    "regtest": ("regtest", 18443),
}

NOTIFICATION_TITLE = "Bitcoin Alerts"
