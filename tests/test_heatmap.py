"""
Heatmap tests: spatial binning and mean-speed normalisation.
"""

import pytest

from conftest import make_sample, ts
from trackreplay.heatmap import build_heatmap, cell_of
from trackreplay.models import EnhancedSample


def enhanced(entity_id, x, y, speed, t=0):
    return EnhancedSample.from_sample(make_sample(entity_id, x, y, t), speed=speed)


def test_cells_are_half_open_and_floor_negative():
    assert cell_of(0, 199.9, 200) == (0, 0)
    assert cell_of(200, 200, 200) == (1, 1)
    assert cell_of(-0.1, -200, 200) == (-1, -1)


def test_single_cell_is_fully_intense():
    cells = build_heatmap([enhanced("1", 10, 10, 30), enhanced("1", 20, 20, 10, 1)])

    assert len(cells) == 1
    assert cells[0].normalized_intensity == 1.0
    assert cells[0].count == 2
    assert cells[0].raw_intensity == pytest.approx(40.0)
    assert cells[0].mean_intensity == pytest.approx(20.0)


def test_intensity_is_relative_to_fastest_mean():
    samples = [
        enhanced("1", 10, 10, 10),
        enhanced("1", 20, 20, 30, 1),
        enhanced("1", 250, 10, 40, 2),
        enhanced("1", 450, 10, 0, 3),
    ]

    cells = {(c.cell_x, c.cell_y): c for c in build_heatmap(samples, cell_size=200)}

    assert cells[(0, 0)].normalized_intensity == pytest.approx(0.5)
    assert cells[(1, 0)].normalized_intensity == pytest.approx(1.0)
    assert cells[(2, 0)].normalized_intensity == 0.0
    assert max(c.normalized_intensity for c in cells.values()) == 1.0
    for cell in cells.values():
        assert 0.0 <= cell.normalized_intensity <= 1.0


def test_all_stationary_gives_zero_intensity():
    cells = build_heatmap([enhanced("1", 10, 10, 0), enhanced("1", 500, 500, 0, 1)])

    assert [c.normalized_intensity for c in cells] == [0.0, 0.0]


def test_filters_by_entity_and_window():
    samples = [enhanced("1", 10, 10, 5, 0), enhanced("44", 900, 900, 5, 0), enhanced("1", 500, 10, 5, 9)]

    cells = build_heatmap(samples, entity_ids=["1"], start=ts(0), end=ts(5))

    assert [(c.cell_x, c.cell_y) for c in cells] == [(0, 0)]


def test_empty_selection_gives_no_cells():
    assert build_heatmap([]) == []
    assert build_heatmap([enhanced("1", 10, 10, 5)], entity_ids=[]) == []


def test_rejects_non_positive_cell_size():
    with pytest.raises(ValueError):
        build_heatmap([], cell_size=0)


def test_cell_dict_carries_colour():
    payload = build_heatmap([enhanced("1", 210, 410, 8)])[0].to_dict()

    assert payload["x"] == 200
    assert payload["y"] == 400
    assert payload["fill"] == "hsl(0.0, 100%, 50%)"
    assert payload["opacity"] == 0.7
