import random

import pytest

from conftest import FLEET_CELLS, STANDARD_LAYOUT
from salvo.errors import ErrorCode, PlacementError
from salvo.fleet import (
    Ruleset,
    ShipSpec,
    is_fleet_destroyed,
    random_fleet,
    resolve_shot,
    ship_presence,
    sink_all,
    surrounding_cells,
    validate_placement,
)

STANDARD = Ruleset.named("standard")
CLASSIC = Ruleset.named("classic")


def specs(layout=STANDARD_LAYOUT):
    return [ShipSpec(type=t, cells=tuple(cells)) for t, cells in layout]


def replace(layout, index, cells):
    out = list(layout)
    out[index] = (layout[index][0], cells)
    return out


def reason(layout, ruleset=STANDARD) -> ErrorCode:
    with pytest.raises(PlacementError) as exc:
        validate_placement(specs(layout), ruleset)
    return exc.value.code


def test_valid_standard_fleet():
    fleet = validate_placement(specs(), STANDARD)
    assert len(fleet.ships) == 10
    assert fleet.cells == set(FLEET_CELLS)
    assert all(not s.hits for s in fleet.ships)


def test_ship_config_largest_first():
    assert STANDARD.ship_config() == [
        {"size": 4, "count": 1},
        {"size": 3, "count": 2},
        {"size": 2, "count": 3},
        {"size": 1, "count": 4},
    ]
    assert STANDARD.ship_count == 10
    assert STANDARD.total_cells == 20


def test_unknown_ruleset():
    with pytest.raises(ValueError):
        Ruleset.named("salvo-deluxe")


def test_out_of_bounds():
    assert reason(replace(STANDARD_LAYOUT, 6, [(10, 4)])) is ErrorCode.OUT_OF_BOUNDS
    assert reason(replace(STANDARD_LAYOUT, 6, [(3, -1)])) is ErrorCode.OUT_OF_BOUNDS


def test_bent_ship_is_invalid_shape():
    bent = replace(STANDARD_LAYOUT, 1, [(5, 0), (6, 0), (6, 1)])
    assert reason(bent) is ErrorCode.INVALID_SHAPE


def test_gapped_ship_is_invalid_shape():
    gapped = replace(STANDARD_LAYOUT, 3, [(4, 2), (6, 2)])
    assert reason(gapped) is ErrorCode.INVALID_SHAPE


def test_empty_ship_is_invalid_shape():
    assert reason(replace(STANDARD_LAYOUT, 6, [])) is ErrorCode.INVALID_SHAPE


def test_missing_ship_is_wrong_count():
    assert reason(STANDARD_LAYOUT[:-1]) is ErrorCode.WRONG_SHIP_COUNT


def test_extra_ship_is_wrong_count():
    assert reason(STANDARD_LAYOUT + [("Patrol", [(9, 9)])]) is ErrorCode.WRONG_SHIP_COUNT


def test_wrong_size_mix_is_wrong_count():
    # a destroyer stretched to three cells: ten ships, wrong composition
    stretched = replace(STANDARD_LAYOUT, 5, [(0, 4), (1, 4), (2, 4)])
    assert reason(stretched) is ErrorCode.WRONG_SHIP_COUNT


def test_overlap():
    # last patrol boat moved onto the battleship
    assert reason(replace(STANDARD_LAYOUT, 9, [(0, 0)])) is ErrorCode.OVERLAP


def test_adjacent_ships_rejected_under_no_touch():
    touching = replace(STANDARD_LAYOUT, 9, [(4, 0)])
    assert reason(touching) is ErrorCode.ADJACENCY_VIOLATION


def test_diagonal_touch_rejected_under_no_touch():
    diagonal = replace(STANDARD_LAYOUT, 9, [(4, 1)])
    assert reason(diagonal) is ErrorCode.ADJACENCY_VIOLATION


def test_classic_ruleset_allows_touching():
    layout = [
        ("Carrier", [(0, 0), (1, 0), (2, 0), (3, 0), (4, 0)]),
        ("Battleship", [(0, 1), (1, 1), (2, 1), (3, 1)]),
        ("Cruiser", [(0, 2), (1, 2), (2, 2)]),
        ("Submarine", [(0, 3), (1, 3), (2, 3)]),
        ("Destroyer", [(0, 4), (1, 4)]),
    ]
    fleet = validate_placement(specs(layout), CLASSIC)
    assert [s.type for s in fleet.ships] == ["Carrier", "Battleship", "Cruiser", "Submarine", "Destroyer"]


def test_missing_type_gets_default_name():
    layout = [(None, cells) for _, cells in STANDARD_LAYOUT]
    fleet = validate_placement(specs(layout), STANDARD)
    assert fleet.ships[0].type == "Battleship"
    assert fleet.ships[-1].type == "Patrol"


def test_resolve_shot_miss_hit_and_sink():
    fleet = validate_placement(specs(), STANDARD)
    assert resolve_shot(fleet, (9, 9)).hit is False

    first = resolve_shot(fleet, (4, 2))
    assert first.hit and first.sunk_ship is None
    second = resolve_shot(fleet, (5, 2))
    assert second.hit and second.sunk_ship is not None
    assert second.sunk_ship.type == "Destroyer"

    # repeat hit on a wreck never reports the sinking again
    again = resolve_shot(fleet, (5, 2))
    assert again.hit and again.sunk_ship is None


def test_fleet_destroyed_only_after_last_cell():
    fleet = validate_placement(specs(), STANDARD)
    for cell in FLEET_CELLS[:-1]:
        resolve_shot(fleet, cell)
        assert not is_fleet_destroyed(fleet)
    resolve_shot(fleet, FLEET_CELLS[-1])
    assert is_fleet_destroyed(fleet)


def test_ship_presence_does_not_mutate():
    fleet = validate_placement(specs(), STANDARD)
    assert ship_presence(fleet, (0, 0))
    assert not ship_presence(fleet, (9, 9))
    assert all(not s.hits for s in fleet.ships)


def test_sink_all():
    fleet = validate_placement(specs(), STANDARD)
    sink_all(fleet)
    assert is_fleet_destroyed(fleet)


def test_surrounding_cells_of_corner_ship():
    fleet = validate_placement(specs(), STANDARD)
    battleship = fleet.ship_at((0, 0))
    assert battleship is not None
    around = surrounding_cells(battleship)
    assert around == sorted([(4, 0)] + [(x, 1) for x in range(5)])


@pytest.mark.parametrize("ruleset", [STANDARD, CLASSIC])
def test_random_fleet_is_legal(ruleset):
    rng = random.Random(7)
    for _ in range(20):
        fleet = random_fleet(ruleset, rng)
        # random_fleet already validated; re-validating must agree
        again = validate_placement([ShipSpec(s.type, s.coordinates) for s in fleet.ships], ruleset)
        assert len(again.ships) == ruleset.ship_count
