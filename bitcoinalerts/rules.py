"""Chain event rules.

Every rule is a pure function of the block height, the chain snapshot taken
for that height and the previously persisted baselines. A rule returns the
messages it wants delivered plus the baseline updates it needs; the block
processor performs all I/O (queueing and persisting).
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .chain import MiningInfo, TxOutSetInfo
from .constants import (
    DEFAULT_BLOCK_MILESTONES,
    DEFAULT_COUNTDOWN_BOUNDARIES,
    DEFAULT_COUNTDOWN_HEARTBEAT_BLOCKS,
    DEFAULT_COUNTDOWN_TIERS,
    DEFAULT_SUPPLY_MILESTONES,
    DEFAULT_SUPPLY_REFRESH_INTERVAL,
    DIFFICULTY_ADJUSTMENT_INTERVAL,
    DIFFICULTY_UNIT,
    HALVING_INTERVAL,
    HASHRATE_UNIT,
    INITIAL_BLOCK_REWARD,
    MAX_HALVINGS,
)
from .logging import get_logger
from .network_store import LAST_DIFFICULTY, LAST_HASHRATE_ATH, LAST_SUPPLY

logger = get_logger(__name__)


@dataclass(frozen=True)
class Message:
    plain_text: str
    html: str

    @classmethod
    def text(cls, plain_text: str) -> "Message":
        return cls(plain_text=plain_text, html=plain_text)


@dataclass
class RuleResult:
    messages: List[Message] = field(default_factory=list)
    updates: Dict[str, float] = field(default_factory=dict)

    def extend(self, other: "RuleResult") -> "RuleResult":
        self.messages.extend(other.messages)
        self.updates.update(other.updates)
        return self


@dataclass(frozen=True)
class CountdownPolicy:
    """When to announce the remaining blocks until the next halving.

    ``tiers`` are (max_missing, every) pairs: while at most ``max_missing``
    blocks remain, notify when ``missing % every == 0``. ``boundaries`` fire
    on exact missing counts and ``heartbeat_blocks`` fires on every height
    that is a multiple of it.
    """
    tiers: Tuple[Tuple[int, int], ...] = tuple(DEFAULT_COUNTDOWN_TIERS)
    boundaries: Tuple[int, ...] = tuple(DEFAULT_COUNTDOWN_BOUNDARIES)
    heartbeat_blocks: int = DEFAULT_COUNTDOWN_HEARTBEAT_BLOCKS

    def should_notify(self, height: int, missing: int) -> bool:
        if any(missing <= limit and missing % every == 0 for limit, every in self.tiers):
            return True
        if missing in self.boundaries:
            return True
        return self.heartbeat_blocks > 0 and height % self.heartbeat_blocks == 0


@dataclass(frozen=True)
class RuleSet:
    """Static rule configuration."""
    countdown: CountdownPolicy = CountdownPolicy()
    block_milestones: frozenset = frozenset(DEFAULT_BLOCK_MILESTONES)
    supply_milestones: Tuple[float, ...] = tuple(DEFAULT_SUPPLY_MILESTONES)
    supply_refresh_interval: int = DEFAULT_SUPPLY_REFRESH_INTERVAL
    always_notify_blocks: bool = False


@dataclass(frozen=True)
class ChainSnapshot:
    """Chain data fetched for the block being evaluated."""
    height: int
    mining_info: MiningInfo
    tx_out_set: Optional[TxOutSetInfo] = None


@dataclass(frozen=True)
class PriorState:
    last_difficulty: Optional[float] = None
    last_supply: Optional[float] = None
    last_hashrate_ath: Optional[float] = None


def format_number(num: int) -> str:
    return f"{int(num):,}"


def format_btc(amount: float) -> str:
    return f"{amount:.8f}".rstrip("0").rstrip(".")


def block_reward(height: int) -> float:
    """Block subsidy in BTC at a height."""
    return INITIAL_BLOCK_REWARD / 2 ** (height // HALVING_INTERVAL)


def halving(height: int, policy: CountdownPolicy = CountdownPolicy()) -> RuleResult:
    """Halving arrival or countdown to the next one."""
    result = RuleResult()

    if height % HALVING_INTERVAL == 0:
        epoch = height // HALVING_INTERVAL
        if epoch > MAX_HALVINGS:
            logger.warning(f"Halving {epoch} at block {height} is past the schedule, not notifying")
            return result
        reward = INITIAL_BLOCK_REWARD / 2 ** epoch
        result.messages.append(Message.text(f"🎉 The Halving has arrived ({epoch}/{MAX_HALVINGS}) 🎉"))
        result.messages.append(Message.text(f"New block reward: {format_btc(reward)} BTC"))
        return result

    missing = (height // HALVING_INTERVAL + 1) * HALVING_INTERVAL - height
    if policy.should_notify(height, missing):
        result.messages.append(Message.text(f"🔥 {format_number(missing)} blocks to the next Halving 🔥"))
    return result


def difficulty_adjustment(height: int, mining_info: MiningInfo, last_difficulty: Optional[float]) -> RuleResult:
    """Report the retarget at every difficulty adjustment height."""
    result = RuleResult()
    if height % DIFFICULTY_ADJUSTMENT_INTERVAL != 0:
        return result

    difficulty = mining_info.difficulty / DIFFICULTY_UNIT
    # First observation: seed with the current value so the change reads 0%
    previous = difficulty if last_difficulty is None else last_difficulty
    change = (difficulty - previous) / previous * 100.0 if previous else 0.0

    result.messages.append(Message.text(f"⛏️ Difficulty adj: {difficulty:.2f}T ({change:.2f}%) ⛏️"))
    result.updates[LAST_DIFFICULTY] = difficulty
    return result


def needs_supply_refresh(height: int, last_supply: Optional[float],
                         refresh_interval: int = DEFAULT_SUPPLY_REFRESH_INTERVAL) -> bool:
    """Whether the authoritative UTXO set total must be fetched for this height."""
    return last_supply is None or height % refresh_interval == 0


def crossed_thresholds(previous: float, current: float, thresholds: Iterable[float]) -> List[float]:
    """Thresholds reached between two consecutive supply observations."""
    return [t for t in sorted(thresholds) if current >= t and previous < t]


def supply(height: int, last_supply: Optional[float], tx_out_set: Optional[TxOutSetInfo],
           thresholds: Sequence[float] = DEFAULT_SUPPLY_MILESTONES) -> RuleResult:
    """
    Track circulating supply and announce milestone crossings.

    Args:
        height: Block height being evaluated
        last_supply: Supply persisted for the previous block, if any
        tx_out_set: Authoritative snapshot; None to extrapolate from last_supply
        thresholds: Supply milestones in BTC

    Returns:
        RuleResult updating ``last_supply``
    """
    result = RuleResult()
    reward = block_reward(height)

    if tx_out_set is not None:
        total = tx_out_set.total_amount
        skew = tx_out_set.height - height
        if skew:
            logger.debug(f"UTXO snapshot at {tx_out_set.height} for block {height}, adjusting by {skew} rewards")
            total -= skew * reward
    elif last_supply is not None:
        total = last_supply + reward
    else:
        logger.warning(f"No supply baseline and no UTXO snapshot for block {height}")
        return result

    result.updates[LAST_SUPPLY] = total
    logger.debug(f"Total supply: {total} BTC")

    previous = last_supply if last_supply is not None else total - reward
    for threshold in crossed_thresholds(previous, total, thresholds):
        result.messages.append(
            Message.text(f"🎊 The supply has just reached {format_number(threshold)} BTC 🎊")
        )
    return result


def hashrate(mining_info: MiningInfo, last_hashrate_ath: Optional[float]) -> RuleResult:
    """Announce a new network hashrate all-time high."""
    result = RuleResult()
    current = mining_info.network_hash_ps / HASHRATE_UNIT

    if last_hashrate_ath is None:
        result.updates[LAST_HASHRATE_ATH] = current
        return result

    if current > last_hashrate_ath:
        result.messages.append(Message.text(f"🎉 New hashrate ATH: {current:.2f} EH/s 🎉"))
        result.updates[LAST_HASHRATE_ATH] = current
    return result


def block_milestone(height: int, milestones: Iterable[int] = DEFAULT_BLOCK_MILESTONES,
                    always: bool = False) -> RuleResult:
    """Announce curated block heights; ``always`` announces every block."""
    result = RuleResult()
    if always or height in milestones:
        result.messages.append(Message.text(f"⛓️ Reached block {format_number(height)} ⛓️"))
    return result


def evaluate(snapshot: ChainSnapshot, prior: PriorState, ruleset: RuleSet = RuleSet()) -> RuleResult:
    """Run every rule for one block height."""
    height = snapshot.height
    result = RuleResult()
    result.extend(halving(height, ruleset.countdown))
    result.extend(difficulty_adjustment(height, snapshot.mining_info, prior.last_difficulty))
    result.extend(supply(height, prior.last_supply, snapshot.tx_out_set, ruleset.supply_milestones))
    result.extend(hashrate(snapshot.mining_info, prior.last_hashrate_ath))
    result.extend(block_milestone(height, ruleset.block_milestones, ruleset.always_notify_blocks))
    return result
