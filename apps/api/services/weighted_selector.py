"""Weighted random choice among options (the "coin flip").

A categorical draw: r is uniform in [0, 100) and the first option whose
running weight total reaches r wins. Weights need not sum to exactly 100;
if they fall short of r the last option is returned.
"""

import random
from typing import Optional, Protocol, Sequence

from models.schemas import OptionWeight


class RandomSource(Protocol):
    """Anything with random() -> float in [0, 1), e.g. random.Random."""

    def random(self) -> float: ...


def select(
    option_weights: Sequence[OptionWeight],
    random_source: Optional[RandomSource] = None,
) -> str:
    """Pick one option with probability proportional to its weight.

    Args:
        option_weights: Non-empty ordered options with their weights
        random_source: Source of the draw; a private random.Random is used
            when omitted so concurrent callers share no generator state

    Returns:
        The selected option label

    Raises:
        ValueError: If option_weights is empty
    """
    if not option_weights:
        raise ValueError("Cannot select from an empty option list")

    if len(option_weights) == 1:
        return option_weights[0].option

    if random_source is None:
        random_source = random.Random()

    draw = random_source.random() * 100
    cumulative = 0.0
    for option_weight in option_weights:
        cumulative += option_weight.weight
        if cumulative >= draw:
            return option_weight.option

    return option_weights[-1].option
