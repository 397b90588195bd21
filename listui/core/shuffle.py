"""
Computes play orders for a session.

Orders are always regenerated from scratch when the track set changes; a given
(track ids, seed) pair always produces the same order, which is what lets the
player show the upcoming shuffled tracks ahead of time.
"""

import random
from typing import Optional, Sequence

from listui.models.playback import PlaybackOrder

FORWARD = 1
BACKWARD = -1


class ShuffleSequencer:
    """Stateless helper producing and walking `PlaybackOrder` instances."""

    @staticmethod
    def generate(
        track_ids: Sequence[int], seed: Optional[int] = None, generation: int = 0
    ) -> PlaybackOrder:
        """
        Returns the identity order when `seed` is None, otherwise a permutation
        of `track_ids` fully determined by the seed.
        """
        indices = list(range(len(track_ids)))
        if seed is not None:
            random.Random(seed).shuffle(indices)
        return PlaybackOrder(
            indices=tuple(indices),
            track_ids=tuple(track_ids[i] for i in indices),
            seed=seed,
            generation=generation,
        )

    @staticmethod
    def advance(order: PlaybackOrder, cursor: int, direction: int) -> Optional[int]:
        """
        Moves the cursor one step. Stepping forward past the last entry returns
        None (end of order); stepping back from the first entry stays at 0.
        """
        if not len(order):
            return None
        if direction == FORWARD:
            nxt = cursor + 1
            return nxt if nxt < len(order) else None
        if direction == BACKWARD:
            return max(0, cursor - 1)
        raise ValueError(f"Invalid direction: {direction}")

    @staticmethod
    def upcoming(order: PlaybackOrder, cursor: int, limit: int = 10) -> list[int]:
        """Track ids that will play after the cursor, in order."""
        return list(order.track_ids[cursor + 1 : cursor + 1 + limit])

    @staticmethod
    def next_seed(seed: int) -> int:
        """Derives the seed for the next repeat cycle from the current one."""
        return random.Random(seed).getrandbits(32)

    @staticmethod
    def new_seed() -> int:
        return random.SystemRandom().getrandbits(32)
