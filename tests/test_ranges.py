import pytest

from robust_bisect.errors import PreconditionError
from robust_bisect.ranges import RangeWeights


def test_scale_splits_runs():
    weights = RangeWeights(6, 1.0)
    weights.scale(1, 4, 2.0)
    assert weights.to_list() == [1.0, 2.0, 2.0, 2.0, 1.0, 1.0]
    assert weights.num_runs() == 3
    assert weights.total() == pytest.approx(9.0)


def test_prefix_is_inclusive():
    weights = RangeWeights(6, 1.0)
    weights.scale(1, 4, 2.0)
    assert weights.prefix(0) == pytest.approx(1.0)
    assert weights.prefix(3) == pytest.approx(7.0)
    assert weights.prefix(5) == pytest.approx(weights.total())


def test_split_is_idempotent():
    weights = RangeWeights(5, 0.2)
    first = weights.split(2)
    second = weights.split(2)
    assert first == second == 1
    assert weights.num_runs() == 2
    assert weights.split(5) == weights.num_runs()


def test_extend_coalesces_equal_runs():
    head = RangeWeights(2, 0.5)
    head.extend(RangeWeights(3, 0.5))
    assert len(head) == 5
    assert head.num_runs() == 1

    head.extend(RangeWeights(1, 0.25))
    assert head.num_runs() == 2
    assert head.weight(5) == 0.25


def test_leading_prefers_lowest_index_on_ties():
    weights = RangeWeights(4, 0.25)
    assert weights.leading() == (0, 0.25)
    weights.scale(2, 3, 2.0)
    assert weights.leading() == (2, 0.5)


def test_leading_ties_are_relative_to_the_heaviest_weight():
    weights = RangeWeights(10, 1e-12)
    weights.scale(7, 8, 3.0)
    assert weights.leading() == (7, pytest.approx(3e-12, rel=1e-9))
    weights.scale(3, 4, 3.0 * (1 - 1e-12))
    assert weights.leading()[0] == 3


def test_nearest_prefix_uniform():
    weights = RangeWeights(8, 0.125)
    candidate = weights.nearest_prefix(0.0, 0.5)
    assert candidate.index == 3
    assert candidate.prefix == pytest.approx(0.5)
    assert candidate.distance == pytest.approx(0.0)


def test_nearest_prefix_with_base():
    weights = RangeWeights(4, 0.125)
    candidate = weights.nearest_prefix(0.25, 0.5)
    assert candidate.index == 1


def test_nearest_prefix_skips_excluded_members():
    weights = RangeWeights(8, 0.125)
    candidate = weights.nearest_prefix(0.0, 0.5, excluded={3})
    # 2 and 4 are equally far from the median; the lower index wins.
    assert candidate.index == 2
    assert weights.nearest_prefix(0.0, 0.5, excluded=set(range(8))) is None


def test_float_noise_does_not_break_ties():
    weights = RangeWeights(3, 1.0 / 3.0)
    # prefix(0) and prefix(1) are equally far from 0.5 up to rounding.
    assert weights.nearest_prefix(0.0, 0.5).index == 0


def test_nearest_prefix_over_zero_weight_runs():
    weights = RangeWeights(8, 0.125)
    weights.scale(0, 4, 0.0)
    weights.scale(4, 8, 2.0)
    assert weights.nearest_prefix(0.0, 0.5).index == 5


def test_invalid_arguments():
    with pytest.raises(PreconditionError):
        RangeWeights(0, 1.0)
    weights = RangeWeights(3, 1.0)
    with pytest.raises(IndexError):
        weights.scale(2, 4, 1.0)
    with pytest.raises(IndexError):
        weights.weight(3)
