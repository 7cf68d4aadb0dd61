"""
Axiom Guard - Activation Masks
==============================

Bookkeeping metadata for the generation layer: a resource hint derived
deterministically from content length. Never a policy decision.
"""

from typing import List

MASK_WIDTH = 1000
MAX_ACTIVE = 10
CHARS_PER_ACTIVE = 100


def active_count(
    length: int,
    max_active: int = MAX_ACTIVE,
    chars_per_active: int = CHARS_PER_ACTIVE,
) -> int:
    """clamp(floor(length / chars_per_active), 1, max_active)"""
    return max(1, min(max_active, length // chars_per_active))


def content_length(content: str) -> int:
    """Length in UTF-8 bytes."""
    return len(content.encode("utf-8"))


def activation_mask(
    content: str,
    width: int = MASK_WIDTH,
    max_active: int = MAX_ACTIVE,
    chars_per_active: int = CHARS_PER_ACTIVE,
) -> List[bool]:
    """First active_count positions set, the rest clear."""
    active = min(width, active_count(content_length(content), max_active, chars_per_active))
    return [True] * active + [False] * (width - active)


def optimize_mask_for_sparsity(mask: List[bool], target_sparsity: float) -> List[bool]:
    """
    Rewrite mask in place to keep the first floor(width * (1 - target_sparsity))
    positions active. Returns the same list.
    """
    if not 0.0 <= target_sparsity <= 1.0:
        raise ValueError(f"target_sparsity must be within [0, 1], got {target_sparsity}")
    total = len(mask)
    target_active = int(total * (1.0 - target_sparsity))
    for i in range(total):
        mask[i] = i < target_active
    return mask
