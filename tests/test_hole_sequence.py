import pytest

from core.exceptions import InvalidConfiguration, InvalidUnit
from services.hole_sequence_service import (
    front_back_ranges,
    is_valid_unit,
    position_index,
    sequence,
)


def test_shotgun_start_wraps_around():
    assert sequence(8, 18) == [8, 9, 10, 11, 12, 13, 14, 15, 16, 17, 18, 1, 2, 3, 4, 5, 6, 7]


def test_start_at_one_is_identity():
    assert sequence(1, 9) == list(range(1, 10))


@pytest.mark.parametrize("total", [1, 2, 9, 18, 27])
def test_every_start_yields_permutation_beginning_at_start(total):
    for start in range(1, total + 1):
        holes = sequence(start, total)
        assert len(holes) == total
        assert holes[0] == start
        assert sorted(holes) == list(range(1, total + 1))


@pytest.mark.parametrize("start,total", [(0, 18), (19, 18), (-1, 9), (1, 0)])
def test_invalid_configuration(start, total):
    with pytest.raises(InvalidConfiguration):
        sequence(start, total)


def test_unit_membership():
    assert is_valid_unit(8, 18, 1)
    assert is_valid_unit(8, 18, 18)
    assert not is_valid_unit(8, 18, 0)
    assert not is_valid_unit(8, 18, 19)


def test_position_index_follows_sequence():
    assert position_index(8, 18, 8) == 0
    assert position_index(8, 18, 18) == 10
    assert position_index(8, 18, 1) == 11
    assert position_index(8, 18, 7) == 17
    for index, unit in enumerate(sequence(5, 9)):
        assert position_index(5, 9, unit) == index


def test_position_index_rejects_unknown_unit():
    with pytest.raises(InvalidUnit):
        position_index(1, 18, 19)


def test_front_back_ranges():
    assert front_back_ranges(18) == ((1, 9), (10, 18))
    assert front_back_ranges(9) == ((1, 4), (5, 9))
