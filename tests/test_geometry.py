import pytest

from conftest import square
from errors import AreaExceeded, InvalidGeometryShape
from geometry import calculate_geometry_area, check_shape, validate


def test_one_degree_square_at_equator_area():
    # 1 deg x 1 deg at the equator is about 12,308 km² on WGS84
    area = calculate_geometry_area(square(0.0, 0.0, 1.0))
    assert 12200 <= area <= 12400


def test_area_independent_of_ring_orientation():
    ccw = square(10.0, 45.0, 0.1)
    cw = {"type": "Polygon", "coordinates": [list(reversed(ccw["coordinates"][0]))]}
    assert calculate_geometry_area(ccw) == pytest.approx(calculate_geometry_area(cw))


def test_hole_is_subtracted():
    outer = square(0.0, 0.0, 1.0)["coordinates"][0]
    hole = list(reversed(square(0.25, 0.25, 0.5)["coordinates"][0]))
    with_hole = calculate_geometry_area({"type": "Polygon", "coordinates": [outer, hole]})
    solid = calculate_geometry_area(square(0.0, 0.0, 1.0))
    assert with_hole == pytest.approx(solid * 0.75, rel=0.01)


def test_multipolygon_sums_parts():
    a = square(0.0, 0.0, 0.1)
    b = square(5.0, 0.0, 0.1)
    multi = {"type": "MultiPolygon", "coordinates": [a["coordinates"], b["coordinates"]]}
    assert calculate_geometry_area(multi) == pytest.approx(
        calculate_geometry_area(a) + calculate_geometry_area(b), rel=1e-6
    )


def test_feature_collection_overlap_counted_once():
    a = square(0.0, 0.0, 0.1)
    fc = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {}, "geometry": a},
            {"type": "Feature", "properties": {}, "geometry": a},
        ],
    }
    assert calculate_geometry_area(fc) == pytest.approx(calculate_geometry_area(a), rel=1e-6)


@pytest.mark.parametrize(
    "geometry",
    [
        {"type": "Point", "coordinates": [36.8, -1.3]},
        {"type": "LineString", "coordinates": [[0, 0], [1, 1]]},
        {"type": "GeometryCollection", "geometries": []},
        {"coordinates": [[0, 0], [1, 1]]},
        None,
        "Polygon",
    ],
)
def test_non_polygonal_geometry_rejected(geometry):
    with pytest.raises(InvalidGeometryShape):
        check_shape(geometry)


def test_feature_collection_with_point_rejected():
    fc = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "geometry": square(0.0, 0.0, 0.1)},
            {"type": "Feature", "geometry": {"type": "Point", "coordinates": [0, 0]}},
        ],
    }
    with pytest.raises(InvalidGeometryShape) as exc:
        check_shape(fc)
    assert exc.value.message == "All features in the ROI must be polygons."


def test_empty_feature_collection_rejected():
    with pytest.raises(InvalidGeometryShape):
        check_shape({"type": "FeatureCollection", "features": []})


def test_malformed_polygon_rejected():
    with pytest.raises(InvalidGeometryShape):
        check_shape({"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]})


def test_validate_returns_area_within_limit(small_roi):
    area = validate(small_roi, 100)
    assert 25 <= area <= 35


def test_validate_area_exceeded_reports_both_figures(large_roi):
    with pytest.raises(AreaExceeded) as exc:
        validate(large_roi, 100)
    err = exc.value
    assert err.max_area_sq_km == 100
    assert 480 <= err.area_sq_km <= 500
    assert f"{err.area_sq_km:.2f} sq km" in err.message
    assert "maximum area limit of 100 sq km" in err.message
    assert err.to_payload()["code"] == "area_exceeded"


BOW_TIE = {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [1, 0], [0, 1], [0, 0]]]}


def test_self_intersecting_polygon_measured_by_its_lobes():
    # two triangles, together half of the 1 deg square
    area = calculate_geometry_area(BOW_TIE)
    assert area == pytest.approx(calculate_geometry_area(square(0.0, 0.0, 1.0)) / 2, rel=0.01)


def test_self_intersecting_polygon_cannot_slip_past_ceiling():
    with pytest.raises(AreaExceeded):
        validate(BOW_TIE, 100.0)


def test_bare_and_wrapped_bow_tie_agree():
    fc = {"type": "FeatureCollection", "features": [{"type": "Feature", "geometry": BOW_TIE}]}
    assert calculate_geometry_area(BOW_TIE) == pytest.approx(calculate_geometry_area(fc))


def test_zero_area_ring_rejected():
    flat = {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [2, 0], [0, 0]]]}
    with pytest.raises(InvalidGeometryShape):
        check_shape(flat)


@pytest.mark.parametrize(
    "area,ceiling,shown",
    [
        (2500000.0, 1234567.0, "maximum area limit of 1,234,567 sq km"),
        (2500000.0, 1000000.0, "maximum area limit of 1,000,000 sq km"),
        (150.0, 100.5, "maximum area limit of 100.50 sq km"),
    ],
)
def test_area_exceeded_writes_ceiling_in_full(area, ceiling, shown):
    message = AreaExceeded(area, ceiling).message
    assert shown in message
    assert "e+" not in message


def test_area_exceeded_area_figure_grouped():
    assert "is 2,500,000.00 sq km" in AreaExceeded(2500000.0, 100.0).message


def test_area_limit_is_inclusive(small_roi):
    area = calculate_geometry_area(small_roi)
    assert validate(small_roi, area) == pytest.approx(area)
