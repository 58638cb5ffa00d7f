import pytest

from salvo.coord_utils import coord_to_xy, format_coord, in_bounds, neighbourhood


@pytest.mark.parametrize("text,xy", [("A1", (0, 0)), ("J10", (9, 9)), ("c7", (2, 6)), (" B10 ", (1, 9))])
def test_coord_to_xy(text, xy):
    assert coord_to_xy(text) == xy


@pytest.mark.parametrize("bad", ["", "K1", "A0", "A11", "1A", "AA1"])
def test_coord_to_xy_rejects(bad):
    with pytest.raises(ValueError):
        coord_to_xy(bad)


def test_format_coord():
    assert format_coord(0, 0) == "A1"
    assert format_coord(9, 9) == "J10"


def test_in_bounds():
    assert in_bounds(0, 0)
    assert in_bounds(9, 9)
    assert not in_bounds(10, 0)
    assert not in_bounds(0, -1)


def test_neighbourhood_centre_and_corner():
    assert len(list(neighbourhood(5, 5))) == 9
    assert sorted(neighbourhood(0, 0)) == [(0, 0), (0, 1), (1, 0), (1, 1)]
    assert len(list(neighbourhood(9, 4))) == 6
