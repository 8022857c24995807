from typing import Optional


# Fractional index for a new block placed between two neighbours (either may be missing).
# Repeated midpoints between the same pair exhaust float precision after ~50 splits;
# keys are never rebalanced.
def allocate_order(prev_order: Optional[float] = None, next_order: Optional[float] = None) -> float:
    if prev_order is not None and next_order is not None:
        return (prev_order + next_order) / 2
    if prev_order is not None:
        return prev_order + 1
    if next_order is not None:
        return next_order - 1
    return 1.0
