import pytest

from listui.core.shuffle import BACKWARD, FORWARD, ShuffleSequencer


def test_identity_order_without_seed():
    order = ShuffleSequencer.generate([10, 20, 30])
    assert order.track_ids == (10, 20, 30)
    assert order.indices == (0, 1, 2)
    assert not order.shuffled


def test_seeded_order_is_a_reproducible_permutation():
    ids = list(range(100, 150))
    first = ShuffleSequencer.generate(ids, seed=1234)
    second = ShuffleSequencer.generate(ids, seed=1234)
    assert first.track_ids == second.track_ids
    assert sorted(first.track_ids) == ids
    assert first.track_ids != tuple(ids)
    assert first.track_ids == tuple(ids[i] for i in first.indices)


def test_different_seeds_give_different_orders():
    ids = list(range(50))
    assert (
        ShuffleSequencer.generate(ids, seed=1).track_ids
        != ShuffleSequencer.generate(ids, seed=2).track_ids
    )


def test_empty_order():
    order = ShuffleSequencer.generate([], seed=5)
    assert len(order) == 0
    assert ShuffleSequencer.advance(order, 0, FORWARD) is None


@pytest.mark.parametrize(
    "cursor, direction, expected",
    [(0, FORWARD, 1), (2, FORWARD, None), (2, BACKWARD, 1), (0, BACKWARD, 0)],
)
def test_advance(cursor, direction, expected):
    order = ShuffleSequencer.generate([1, 2, 3])
    assert ShuffleSequencer.advance(order, cursor, direction) == expected


def test_advance_rejects_unknown_direction():
    with pytest.raises(ValueError):
        ShuffleSequencer.advance(ShuffleSequencer.generate([1]), 0, 0)


def test_upcoming():
    order = ShuffleSequencer.generate([1, 2, 3, 4, 5])
    assert ShuffleSequencer.upcoming(order, 1, limit=2) == [3, 4]
    assert ShuffleSequencer.upcoming(order, 4) == []


def test_next_seed_is_deterministic():
    assert ShuffleSequencer.next_seed(7) == ShuffleSequencer.next_seed(7)
    assert ShuffleSequencer.next_seed(7) != 7


def test_regenerated_order_follows_the_mutated_track_set():
    before = ShuffleSequencer.generate([1, 2, 3, 4], seed=9, generation=1)
    after = ShuffleSequencer.generate([1, 3, 4, 5, 6], seed=9, generation=1)

    assert sorted(after.track_ids) == [1, 3, 4, 5, 6]
    assert 2 not in after.track_ids
    assert {5, 6} <= set(after.track_ids)
    assert sorted(after.indices) == list(range(5))
    assert sorted(before.track_ids) == [1, 2, 3, 4]
