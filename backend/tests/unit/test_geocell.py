import math

import pytest

from crowd.domain.exceptions import InvalidCoordinate, InvalidGeocell
from crowd.domain.geo import geocell
from crowd.domain.geo.geocell import SortedGeoCellIndex, SubscriberStoreGeoCellIndex

from fakes import FakeSubscriberStore, make_subscriber


def test_encode_known_values():
    assert geocell.encode(57.64911, 10.40744, 11) == "u4pruydqqvj"
    assert geocell.encode(0.0, 0.0, 1) == "s"
    assert geocell.encode(-90.0, -180.0, 5) == "00000"


def test_encode_prefix_is_stable_across_precisions():
    full = geocell.encode(33.21, -97.15, 12)
    for precision in range(1, 12):
        assert geocell.encode(33.21, -97.15, precision) == full[:precision]


def test_decode_bbox_contains_original_point():
    lat, lon = 45.5048, -73.5772
    for precision in (3, 6, 9):
        box = geocell.decode_bbox(geocell.encode(lat, lon, precision))
        assert box.contains(lat, lon)


def test_decode_returns_cell_center():
    lat, lon = geocell.decode(geocell.encode(33.21, -97.15, 9))
    assert math.isclose(lat, 33.21, abs_tol=1e-4)
    assert math.isclose(lon, -97.15, abs_tol=1e-4)


@pytest.mark.parametrize(
    "lat,lon",
    [(None, 0.0), (0.0, None), (91.0, 0.0), (0.0, -181.0), (float("nan"), 0.0), (0.0, float("inf")), (True, 0.0)],
)
def test_encode_rejects_invalid_coordinates(lat, lon):
    with pytest.raises(InvalidCoordinate):
        geocell.encode(lat, lon)


def test_encode_rejects_bad_precision():
    with pytest.raises(ValueError):
        geocell.encode(0.0, 0.0, 0)
    with pytest.raises(ValueError):
        geocell.encode(0.0, 0.0, 13)


def test_decode_rejects_invalid_characters():
    with pytest.raises(InvalidGeocell):
        geocell.decode_bbox("9vga")
    with pytest.raises(InvalidGeocell):
        geocell.decode_bbox("")


def test_is_valid_geocell():
    assert geocell.is_valid_geocell("9vgm0")
    assert not geocell.is_valid_geocell("9VGM0")
    assert not geocell.is_valid_geocell("abc")
    assert not geocell.is_valid_geocell("0" * 13)
    assert not geocell.is_valid_geocell(None)


def test_prefix_range_bounds_every_extension():
    low, high = geocell.prefix_range("9vgm")
    assert low <= "9vgm" < high
    assert low <= "9vgmzzzzzzzz" < high
    assert not (low <= "9vgn" < high)
    assert not (low <= "9vgk" < high)


@pytest.mark.asyncio
async def test_sorted_index_prefix_query():
    index = SortedGeoCellIndex()
    index.put("a", "9vgm0abc")
    index.put("b", "9vgm1xyz")
    index.put("c", "9vgn0000")
    index.put("d", "9vgm")
    assert await index.candidates_by_prefix("9vgm") == {"a", "b", "d"}
    assert await index.candidates_by_prefix("9vgm0") == {"a"}
    assert await index.candidates_by_prefix("zzzz") == set()


@pytest.mark.asyncio
async def test_sorted_index_put_moves_subscriber():
    index = SortedGeoCellIndex()
    index.put("a", "9vgm0abc")
    index.put("a", "dr5ru000")
    assert len(index) == 1
    assert await index.candidates_by_prefix("9vgm") == set()
    assert await index.candidates_by_prefix("dr5ru") == {"a"}
    index.remove("a")
    index.remove("a")
    assert len(index) == 0


def test_sorted_index_rejects_invalid_cell():
    with pytest.raises(InvalidGeocell):
        SortedGeoCellIndex().put("a", "not-a-cell")


@pytest.mark.asyncio
async def test_nearby_points_share_candidate_prefix():
    index = SortedGeoCellIndex()
    event_cell = geocell.encode(33.2100, -97.1500, 6)
    index.put_coordinate("near", 33.2103, -97.1503)
    index.put_coordinate("far-away", 40.7128, -74.0060)
    assert await index.candidates_by_prefix(event_cell[:5]) == {"near"}


@pytest.mark.asyncio
async def test_store_backed_index_delegates_to_store():
    store = FakeSubscriberStore([make_subscriber("s1", 33.2103, -97.1503)])
    index = SubscriberStoreGeoCellIndex(store)
    prefix = geocell.encode(33.21, -97.15, 5)
    assert await index.candidates_by_prefix(prefix) == {"s1"}
