"""Unit tests for parks.py: parsing and directory filters."""

import pytest

from geometry import Coordinates
from parks import (
    Park,
    filter_parks,
    find_park,
    haversine_km,
    parse_parks,
    sort_by_name,
    unique_classes,
)


class TestParseParks:
    def test_fields_mapped(self, park_rows):
        parks = parse_parks(park_rows)
        hawrelak = parks[0]

        assert hawrelak.id == 101
        assert hawrelak.common_name == "Hawrelak Park"
        assert hawrelak.status == "active"
        assert hawrelak.park_class == "District"
        assert hawrelak.area_sq_m == 556000.0
        assert hawrelak.coordinates == Coordinates(53.5284, -113.547)

    def test_non_numeric_id_falls_back_to_index(self, park_rows):
        assert parse_parks(park_rows)[1].id == 1

    def test_missing_values_default(self, park_rows):
        louise = parse_parks(park_rows)[2]
        assert louise.area_sq_m == 0.0
        assert louise.coordinates is None

    def test_non_list_payload(self):
        assert parse_parks({"error": "nope"}) == []
        assert parse_parks(None) == []

    def test_display_name_prefers_common(self, park_rows):
        parks = parse_parks(park_rows)
        assert parks[0].display_name == "Hawrelak Park"
        assert parks[1].display_name == "Rundle Park"


class TestFilterParks:
    @pytest.fixture()
    def parks(self, park_rows):
        return parse_parks(park_rows)

    def test_no_filters_keeps_order(self, parks):
        assert [p.id for p in filter_parks(parks)] == [101, 1, 303]

    def test_search_matches_either_name(self, parks):
        assert [p.id for p in filter_parks(parks, search="hawrelak")] == [101]
        assert [p.id for p in filter_parks(parks, search="RIVERFRONT")] == [303]

    def test_active_only(self, parks):
        assert [p.id for p in filter_parks(parks, active_only=True)] == [101, 303]

    def test_class_filter(self, parks):
        assert [p.id for p in filter_parks(parks, park_class="Regional")] == [1]

    def test_distance_computed_without_sorting(self, parks):
        user = Coordinates(53.5651, -113.3918)
        result = filter_parks(parks, user=user)
        assert [p.id for p in result] == [101, 1, 303]
        assert result[1].distance_km == pytest.approx(0.0, abs=0.01)
        assert result[2].distance_km is None

    def test_sort_near_puts_unlocated_last(self, parks):
        user = Coordinates(53.5651, -113.3918)
        result = filter_parks(parks, user=user, sort_near=True)
        assert [p.id for p in result] == [1, 101, 303]

    def test_input_not_mutated(self, parks):
        filter_parks(parks, user=Coordinates(53.5, -113.5))
        assert all(p.distance_km is None for p in parks)


class TestHelpers:
    def test_haversine_known_distance(self):
        # Edmonton to Calgary is roughly 280 km
        d = haversine_km(Coordinates(53.5461, -113.4938), Coordinates(51.0447, -114.0719))
        assert 270 < d < 290

    def test_sort_by_name(self, park_rows):
        names = [p.display_name for p in sort_by_name(parse_parks(park_rows))]
        assert names == ["Hawrelak Park", "Louise McKinney", "Rundle Park"]

    def test_unique_classes_first_seen(self, park_rows):
        assert unique_classes(parse_parks(park_rows)) == ["District", "Regional"]

    def test_find_park(self, park_rows):
        parks = parse_parks(park_rows)
        assert find_park(parks, 303).official_name.startswith("Louise")
        assert find_park(parks, 999) is None
        assert find_park(parks, None) is None
        assert find_park([Park(id=1)], 1) is not None
