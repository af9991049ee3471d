from __future__ import annotations

import random
from collections.abc import MutableSequence
from dataclasses import dataclass
from typing import Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class TrialRecord:
    """Stimuli shown in the trial currently awaiting a response."""

    test_stimulus: float
    reference_stimulus: float
    reference_first: bool
    offset: float

    @property
    def first_stimulus(self) -> float:
        return self.reference_stimulus if self.reference_first else self.test_stimulus

    @property
    def second_stimulus(self) -> float:
        return self.test_stimulus if self.reference_first else self.reference_stimulus


def new_trial(offset: float, reference: float, rng: Optional[random.Random] = None) -> TrialRecord:
    """Create the record for a trial with the presentation order drawn at random."""
    draw = rng.random() if rng is not None else random.random()
    return TrialRecord(
        test_stimulus=offset + reference,
        reference_stimulus=reference,
        reference_first=draw < 0.5,
        offset=offset,
    )


def staircase_response(detected: bool, offset: float) -> bool:
    """Remap a participant judgment so the estimator drives the offset toward zero.

    A detected difference with a positive offset, or an undetected one with a
    non-positive offset, is reported as "detected" (step down); everything
    else as "not detected" (step up).
    """
    if detected:
        return offset > 0
    return offset <= 0


def shuffle(items: MutableSequence[T], rng: Optional[random.Random] = None) -> MutableSequence[T]:
    """Fisher-Yates shuffle of `items` in place; returns `items`."""
    randint = rng.randint if rng is not None else random.randint
    for i in range(len(items) - 1, 0, -1):
        j = randint(0, i)
        items[i], items[j] = items[j], items[i]
    return items


def presentation_order(count: int, randomize: bool = True, rng: Optional[random.Random] = None) -> list[int]:
    """Order in which the configurations of a session are run."""
    order = list(range(max(0, count)))
    if randomize:
        shuffle(order, rng)
    return order
