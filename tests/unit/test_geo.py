"""Unit tests for GPS summary."""

import math

import pytest

from workproof.utils.geo import EARTH_RADIUS_METERS, gps_summary, haversine_meters


def test_haversine_one_degree_of_longitude_at_equator():
    expected = EARTH_RADIUS_METERS * math.pi / 180
    assert haversine_meters(0.0, 0.0, 0.0, 1.0) == pytest.approx(expected)


def test_haversine_same_point_is_zero():
    assert haversine_meters(51.4545, -2.5879, 51.4545, -2.5879) == 0.0


def test_gps_summary_empty_is_none():
    assert gps_summary([]) is None


def test_gps_summary_single_point_has_zero_radius():
    summary = gps_summary([(51.4545, -2.5879)])
    assert summary is not None
    assert summary.latitude == pytest.approx(51.4545)
    assert summary.longitude == pytest.approx(-2.5879)
    assert summary.radius_meters == 0


def test_gps_summary_centroid_and_radius_rounded_up():
    summary = gps_summary([(0.0, 0.0), (0.0, 0.002)])
    assert summary is not None
    assert summary.latitude == pytest.approx(0.0)
    assert summary.longitude == pytest.approx(0.001)
    half = haversine_meters(0.0, 0.001, 0.0, 0.0)
    assert summary.radius_meters == math.ceil(half)
    assert isinstance(summary.radius_meters, int)


def test_gps_summary_accepts_generators():
    summary = gps_summary((p for p in [(10.0, 10.0), (10.0, 10.0)]))
    assert summary is not None
    assert summary.radius_meters == 0
