"""
Test Deterministic Shuffle
"""
from assessment.services.shuffle import seed_from_parts, seeded_shuffle


def test_same_seed_same_order():
    items = list(range(20))
    assert seeded_shuffle(items, 1234) == seeded_shuffle(items, 1234)


def test_shuffle_is_a_permutation():
    items = [f"q{i}" for i in range(15)]
    shuffled = seeded_shuffle(items, 987)
    assert sorted(shuffled) == sorted(items)
    assert len(shuffled) == len(items)


def test_shuffle_does_not_mutate_input():
    items = [1, 2, 3, 4, 5]
    seeded_shuffle(items, 42)
    assert items == [1, 2, 3, 4, 5]


def test_different_seeds_give_different_orders():
    items = list(range(10))
    orders = {tuple(seeded_shuffle(items, seed)) for seed in range(50)}
    assert len(orders) > 25


def test_negative_and_large_seeds_are_accepted():
    items = list(range(6))
    assert sorted(seeded_shuffle(items, -17)) == items
    assert sorted(seeded_shuffle(items, 10 ** 12)) == items


def test_empty_and_single_item_lists():
    assert seeded_shuffle([], 5) == []
    assert seeded_shuffle(["only"], 5) == ["only"]


def test_seed_from_parts_sums_char_codes():
    assert seed_from_parts("ab") == ord("a") + ord("b")
    assert seed_from_parts("a", "b") == seed_from_parts("ab")
    assert seed_from_parts("exam", 2, "att") == seed_from_parts("exam2att")
