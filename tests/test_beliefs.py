import pytest

from robust_bisect.beliefs import BeliefStore
from robust_bisect.errors import ExhaustedDomain, PreconditionError


def test_initialize_is_uniform():
    store = BeliefStore({"a": 3, "b": 1})
    assert len(store) == 4
    assert list(store.handles()) == ["a", "b"]
    assert store.weight("a", 2) == pytest.approx(0.25)
    assert store.total() == pytest.approx(1.0)


def test_update_reinforces_consistent_positions():
    store = BeliefStore({0: 4})
    new_total = store.update(0, 1, True, 0.1)
    assert new_total == pytest.approx(0.5)
    assert store.block(0).to_list() == pytest.approx([0.45, 0.45, 0.05, 0.05])
    assert store.total() == pytest.approx(1.0)


def test_update_false_moves_mass_up():
    store = BeliefStore({0: 4})
    store.update(0, 1, False, 0.1)
    assert store.block(0).to_list() == pytest.approx([0.05, 0.05, 0.45, 0.45])


def test_update_counts_blocks_below_as_down_set():
    store = BeliefStore({"a": 2, "b": 2, "c": 1})
    store.update("b", 0, False, 0.1, below=("a",))
    # Down-set: all of "a" plus b[0]; everything else is the complement.
    down = store.block("a").to_list() + [store.weight("b", 0)]
    up = [store.weight("b", 1), store.weight("c", 0)]
    # down mass 0.6, up mass 0.4, so the normalizer is 0.9 * 0.4 + 0.1 * 0.6.
    assert down == pytest.approx([0.1 * 0.2 / 0.42] * 3)
    assert up == pytest.approx([0.9 * 0.2 / 0.42] * 2)
    assert store.total() == pytest.approx(1.0)


def test_collapse_raises_and_keeps_state():
    store = BeliefStore({0: 4})
    store.update(0, 1, True, 0.0)
    before = store.block(0).to_list()
    with pytest.raises(ExhaustedDomain):
        store.update(0, 1, False, 0.0)
    assert store.block(0).to_list() == before


def test_update_on_empty_store_raises():
    with pytest.raises(ExhaustedDomain):
        BeliefStore().update(0, 0, True, 0.1)


def test_update_rejects_bad_arguments():
    store = BeliefStore({0: 2})
    with pytest.raises(PreconditionError):
        store.update(1, 0, True, 0.1)
    with pytest.raises(PreconditionError):
        store.update(0, 2, True, 0.1)


def test_merge_concatenates_blocks():
    store = BeliefStore({"a": 2, "b": 3, "c": 1})
    store.update("a", 1, True, 0.1, below=())
    expected = store.block("a").to_list() + store.block("b").to_list()
    store.merge("a", "b", "a")
    assert "b" not in store
    assert len(store.block("a")) == 5
    assert store.block("a").to_list() == pytest.approx(expected)
    with pytest.raises(PreconditionError):
        store.merge("a", "a", "a")


def test_reorder_requires_every_handle():
    store = BeliefStore({"a": 1, "b": 1})
    store.reorder(["b", "a"])
    assert list(store.handles()) == ["b", "a"]
    with pytest.raises(PreconditionError):
        store.reorder(["a"])


def test_leading_ties_go_to_lowest_rank():
    store = BeliefStore({"x": 2, "y": 2})
    ranks = {"x": 10, "y": 0}
    leader = store.leading(lambda handle, index: ranks[handle] + index)
    assert (leader.handle, leader.index) == ("y", 0)
    assert leader.weight == pytest.approx(0.25)


def test_leading_finds_the_heaviest_of_tiny_weights():
    store = BeliefStore({"x": 2, "y": 2})
    for handle in ("x", "y"):
        store.block(handle).scale_all(1e-12)
    store.block("y").scale(1, 2, 2.0)
    ranks = {"x": 0, "y": 10}
    leader = store.leading(lambda handle, index: ranks[handle] + index)
    assert (leader.handle, leader.index) == ("y", 1)
    assert leader.weight == pytest.approx(5e-13, rel=1e-9)


def test_nearest_split_on_a_diamond():
    # a -> b, a -> c, b -> d, c -> d, one position per block.
    store = BeliefStore({"a": 1, "b": 1, "c": 1, "d": 1})
    bases = {"a": 0.0, "b": 0.25, "c": 0.25, "d": 0.75}
    ranks = {"a": 0, "b": 1, "c": 2, "d": 3}

    choice = store.nearest_split(bases, lambda h, i: ranks[h])
    assert choice.handle == "b"
    assert choice.down == pytest.approx(0.5)
    assert choice.distance == pytest.approx(0.0)

    swapped = {"a": 0, "b": 2, "c": 1, "d": 3}
    assert store.nearest_split(bases, lambda h, i: swapped[h]).handle == "c"


def test_nearest_split_respects_exclusions():
    store = BeliefStore({0: 8})
    choice = store.nearest_split({0: 0.0}, lambda h, i: i, excluded={0: {3}})
    assert choice.index == 2
    assert store.nearest_split({0: 0.0}, lambda h, i: i, excluded={0: set(range(8))}) is None
    assert BeliefStore().nearest_split({}, lambda h, i: i) is None
