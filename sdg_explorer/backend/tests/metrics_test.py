import math

import pytest

from metrics import (
    GeometryError,
    build_metric_cards,
    collection_bounds,
    compute_rates,
    feature_area,
    feature_area_frame,
    feature_collection_area,
    format_number,
)
from models import PopulationPayload


def _square(lon, lat, size, clockwise=False):
    ring = [[lon, lat], [lon + size, lat], [lon + size, lat + size], [lon, lat + size], [lon, lat]]
    if clockwise:
        ring = list(reversed(ring))
    return {"type": "Feature", "properties": {}, "geometry": {"type": "Polygon", "coordinates": [ring]}}


def _collection(*features):
    return {"type": "FeatureCollection", "features": list(features)}


# ============================================================================
# Growth Rates
# ============================================================================

def test_equal_values_give_zero_rates_and_undefined_ratio():
    stats = compute_rates(100, 100, 2000, 2010, 1000, 1000)
    assert stats.years == 10
    assert stats.lcr == 0
    assert stats.pgr == 0
    assert stats.ratio is None


def test_growth_rates_and_ratio():
    stats = compute_rates(100, 200, 2000, 2010, 1000, 1100)
    assert stats.years == 10
    assert stats.lcr == pytest.approx(math.log(2) / 10)
    assert stats.lcr == pytest.approx(0.069315, abs=1e-6)
    assert stats.pgr == pytest.approx(0.009531, abs=1e-6)
    assert stats.ratio == pytest.approx(7.2725, abs=1e-4)


def test_non_positive_area_leaves_lcr_undefined():
    stats = compute_rates(0, 200, 2000, 2010, 1000, 1100)
    assert stats.lcr is None
    assert stats.pgr is not None
    assert stats.ratio is None


def test_non_positive_population_leaves_pgr_undefined():
    stats = compute_rates(100, 200, 2000, 2010, -5, 1100)
    assert stats.lcr is not None
    assert stats.pgr is None
    assert stats.ratio is None


def test_elapsed_years_are_clamped_to_one():
    assert compute_rates(100, 200, 2010, 2010, 1, 2).years == 1
    assert compute_rates(100, 200, 2010, 2000, 1, 2).years == 1
    assert compute_rates(100, 200, 2010, 2010, 1, 2).lcr == pytest.approx(math.log(2))


# ============================================================================
# Area Aggregation
# ============================================================================

def test_small_equatorial_square_area():
    # 0.01 deg is ~1113 m east-west and ~1106 m north-south at the equator
    assert feature_area(_square(0.0, 0.0, 0.01)) == pytest.approx(1.2309e6, rel=0.01)


def test_ring_orientation_does_not_change_area():
    ccw = feature_area(_square(29.0, 41.0, 0.01))
    cw = feature_area(_square(29.0, 41.0, 0.01, clockwise=True))
    assert ccw > 0
    assert cw == pytest.approx(ccw)


def test_collection_area_is_sum_of_features():
    a = _square(29.0, 41.0, 0.01)
    b = _square(29.1, 41.0, 0.01)
    total = feature_collection_area(_collection(a, b))
    assert total == pytest.approx(feature_area(a) + feature_area(b))


def test_non_areal_and_null_geometries_contribute_nothing():
    point = {"type": "Feature", "properties": {}, "geometry": {"type": "Point", "coordinates": [29.0, 41.0]}}
    empty = {"type": "Feature", "properties": {}, "geometry": None}
    assert feature_area(point) == 0.0
    assert feature_area(empty) == 0.0
    assert feature_collection_area(_collection()) == 0.0


def test_feature_area_frame_lists_each_feature():
    frame = feature_area_frame(_collection(_square(29.0, 41.0, 0.01), _square(29.1, 41.0, 0.02)))
    assert list(frame["feature_index"]) == [0, 1]
    assert list(frame["geometry_type"]) == ["Polygon", "Polygon"]
    assert frame["area_m2"].iloc[1] > frame["area_m2"].iloc[0]


def test_collection_bounds():
    fc = _collection(_square(29.0, 41.0, 0.01), _square(29.05, 41.02, 0.01))
    assert collection_bounds(fc) == pytest.approx([29.0, 41.0, 29.06, 41.03])
    assert collection_bounds(_collection()) is None


# ============================================================================
# Display Formatting
# ============================================================================

def test_format_number():
    assert format_number(1234567.891, 0) == "1,234,568"
    assert format_number(0.0693147, 6) == "0.069315"
    assert format_number(7.25, 4) == "7.25"
    assert format_number(0.0, 6) == "0"


def test_metric_cards_show_dash_for_undefined_values():
    meta = PopulationPayload(t=2000, t_n=2010, population_t=1000, population_tn=1000)
    stats = compute_rates(100, 100, meta.t, meta.t_n, meta.population_t, meta.population_tn)
    cards = build_metric_cards(stats, meta)

    assert [c.label for c in cards][:3] == ["Built-up area @ t (2000)", "Built-up area @ t+n (2010)", "Years (n)"]
    assert cards[0].value == "100 m²"
    assert cards[3].value == "0"
    assert cards[5].label == "LCR / PGR"
    assert cards[5].value == "—"
    assert cards[5].kind == "ratio"


def test_malformed_geometry_raises_geometry_error():
    broken = {"type": "Feature", "properties": {}, "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1]]]}}
    with pytest.raises(GeometryError):
        feature_area(broken)
    with pytest.raises(GeometryError):
        collection_bounds(_collection(broken))


def test_non_object_feature_raises_geometry_error():
    with pytest.raises(GeometryError):
        feature_collection_area({"type": "FeatureCollection", "features": [None]})
    with pytest.raises(GeometryError):
        feature_collection_area({"type": "FeatureCollection", "features": "nope"})
