# app/utils/fines.py
"""Fine tiers by beam intensity. The only place a fine amount is computed."""

from typing import Iterable, Tuple


def compute_fine(beam_intensity: float, base_fine: int,
                 tiers: Iterable[Tuple[float, int]]) -> int:
    """
    Returns the fine for a beam intensity reading.
    Each tier is (threshold, amount); an intensity strictly above a threshold
    earns that tier's amount. The highest matching tier wins, and amounts never
    drop below base_fine, so the result is non-decreasing in intensity.
    """
    amount = base_fine
    for threshold, tier_amount in sorted(tiers):
        if beam_intensity > threshold:
            amount = max(amount, tier_amount)
    return amount
