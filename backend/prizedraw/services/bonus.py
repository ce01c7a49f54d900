"""
Bonus ticket tiers.

Buying at least `threshold` tickets in one go earns `bonus` free tickets;
only the highest threshold met applies (10 -> 1, 15 -> 2, 20 -> 3, 50 -> 5
by default). Tiers come from settings as [threshold, bonus] pairs.
"""

from dataclasses import dataclass
from typing import Iterable, Sequence


@dataclass(frozen=True)
class BonusTier:
    threshold: int
    bonus: int


def parse_tiers(pairs: Iterable[Sequence[int]]) -> list[BonusTier]:
    """Build tiers from [threshold, bonus] pairs, sorted by threshold."""
    tiers = []
    for pair in pairs:
        threshold, bonus = int(pair[0]), int(pair[1])
        if threshold <= 0 or bonus < 0:
            raise ValueError(f"Invalid bonus tier {list(pair)!r}")
        tiers.append(BonusTier(threshold=threshold, bonus=bonus))
    tiers.sort(key=lambda t: t.threshold)
    thresholds = [t.threshold for t in tiers]
    if len(set(thresholds)) != len(thresholds):
        raise ValueError(f"Duplicate bonus tier thresholds: {thresholds}")
    return tiers


def calculate_bonus_tickets(quantity: int, tiers: Sequence[BonusTier]) -> int:
    bonus = 0
    for tier in sorted(tiers, key=lambda t: t.threshold):
        if quantity >= tier.threshold:
            bonus = tier.bonus
    return bonus
