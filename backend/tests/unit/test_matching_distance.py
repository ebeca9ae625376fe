import math

import pytest

from crowd.domain.exceptions import InvalidCoordinate
from crowd.domain.geo.distance import haversine_meters
from crowd.domain.targeting.matching import category_matches, interests_overlap, tags_match

from fakes import make_event, make_subscriber


def test_haversine_zero_for_same_point():
    assert haversine_meters(33.21, -97.15, 33.21, -97.15) == 0.0


def test_haversine_known_distance():
    # one degree of latitude on a 6371km sphere
    assert math.isclose(haversine_meters(0.0, 0.0, 1.0, 0.0), 111_194.9, rel_tol=1e-4)


def test_haversine_is_symmetric():
    forward = haversine_meters(33.2100, -97.1500, 33.2200, -97.1600)
    backward = haversine_meters(33.2200, -97.1600, 33.2100, -97.1500)
    assert math.isclose(forward, backward)
    assert 1_300 < forward < 1_500


def test_haversine_short_distance():
    distance = haversine_meters(33.2100, -97.1500, 33.2103, -97.1503)
    assert 35 < distance < 50


def test_haversine_rejects_missing_coordinates():
    with pytest.raises(InvalidCoordinate):
        haversine_meters(33.21, -97.15, None, None)
    with pytest.raises(InvalidCoordinate):
        haversine_meters(95.0, 0.0, 0.0, 0.0)


def test_category_match_is_case_insensitive():
    assert category_matches("music", ["Music"])
    assert category_matches("Music", [" music "])
    assert not category_matches("music", ["sports"])
    assert not category_matches("", ["music"])


def test_tags_match_substrings_both_ways():
    assert tags_match(["live music"], ["music"])
    assert tags_match(["jazz"], ["jazz fusion"])
    assert not tags_match(["jazz"], ["sports"])


def test_tags_match_ignores_blank_entries():
    assert not tags_match(["", "  "], ["music"])
    assert not tags_match(["music"], ["", " "])


def test_short_tag_over_matches():
    assert tags_match(["a"], ["basketball"])


def test_interests_overlap_uses_category_or_tags():
    near = make_subscriber("s", 33.21, -97.15, interests=["coding"])
    assert not interests_overlap(make_event(category="music"), near)
    assert interests_overlap(make_event(category="music", tags=["Coding Night"]), near)
    assert interests_overlap(make_event(category="coding"), near)
