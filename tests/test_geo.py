import math

import pytest

from charge_quest.geo import (
    BoundingBox,
    Movement,
    bounding_box_around,
    classify_movement,
    destination_point,
    haversine_m,
)


def test_haversine_zero_and_symmetry():
    assert haversine_m(59.3293, 18.0686, 59.3293, 18.0686) == 0.0
    a = haversine_m(59.3293, 18.0686, 59.4280, 17.9470)
    b = haversine_m(59.4280, 17.9470, 59.3293, 18.0686)
    assert a == pytest.approx(b)


def test_haversine_one_degree_latitude():
    # One degree of latitude on a 6 371 km sphere.
    expected = 6_371_000.0 * math.pi / 180.0
    assert haversine_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(expected, rel=1e-9)


@pytest.mark.parametrize("bearing", [0, 45, 90, 180, 270])
def test_destination_point_round_trips_distance(bearing):
    lat, lon = destination_point(59.3293, 18.0686, bearing, 20.0)
    assert haversine_m(59.3293, 18.0686, lat, lon) == pytest.approx(20.0, abs=1e-6)


def test_bounding_box_contains_is_inclusive():
    box = BoundingBox(south=59.0, west=18.0, north=60.0, east=19.0)
    assert box.contains(59.0, 18.0)
    assert box.contains(60.0, 19.0)
    assert not box.contains(60.0001, 18.5)
    assert box.northeast == (60.0, 19.0)
    assert box.southwest == (59.0, 18.0)


def test_bounding_box_rejects_inverted_corners():
    with pytest.raises(ValueError):
        BoundingBox(south=60.0, west=18.0, north=59.0, east=19.0)


def test_bounding_box_around_clamps_at_poles():
    box = bounding_box_around(89.8, 179.9, 0.45)
    assert box.north == 90.0
    assert box.east == 180.0
    assert box.south == pytest.approx(89.35)


def test_classify_movement_bands():
    assert classify_movement(0.5, 1.0, 10.0) is Movement.NOISE
    assert classify_movement(5.0, 1.0, 10.0) is Movement.MOVE
    assert classify_movement(10.0, 1.0, 10.0) is Movement.JUMP


def test_classify_movement_threshold_above_exit_distance_is_still_noise():
    # A 40 m accuracy gives a 20 m threshold; a 15 m delta is noise, not a jump.
    assert classify_movement(15.0, 20.0, 10.0) is Movement.NOISE
