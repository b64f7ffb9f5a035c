"""Random draw helpers.

Draws are uniform with replacement: every position picks from the full
deck, so the same card can land in more than one position of a reading.
Pass a seed to make a draw reproducible.
"""

from __future__ import annotations

import hashlib
import random
from typing import List, Optional, Sequence

from ..models import DrawnCard, Spread, TarotCard


def seeded_random(seed: str, salt: str = "") -> random.Random:
    """Deterministic random.Random built from seed and optional salt.

    Args:
        seed: Base seed string
        salt: Optional salt to modify the seed (e.g. spread id)

    Returns:
        random.Random instance that produces the same sequence for the same inputs
    """
    combined = f"{seed}{salt}"
    int_seed = int(hashlib.sha256(combined.encode("utf-8")).hexdigest(), 16)
    return random.Random(int_seed & ((1 << 31) - 1))


def make_rng(seed: Optional[str] = None, salt: str = "") -> random.Random:
    if seed:
        return seeded_random(seed, salt)
    return random.Random()


def flip_reversed(rng: random.Random) -> bool:
    return rng.random() < 0.5


def draw_for_spread(spread: Spread, deck: Sequence[TarotCard], rng: random.Random) -> List[DrawnCard]:
    """One DrawnCard per spread position, in ascending position order.

    Raises ValueError when the deck is empty.
    """
    if not deck:
        raise ValueError("cannot draw from an empty deck")

    drawn = []
    for position in sorted(spread.positions, key=lambda p: p.order):
        card = rng.choice(deck)
        drawn.append(DrawnCard(card=card, position=position, is_reversed=flip_reversed(rng)))
    return drawn
