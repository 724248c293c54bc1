"""
Tests for resource matching, distances and reuse savings
"""

import pytest

from lifelines_core.resource.matching import (
    DEFAULT_CO2_FACTOR_T,
    MaterialNeed,
    co2_reduction_kg,
    cost_savings,
    haversine_km,
    is_available_to,
    match_distance,
    match_resources,
)
from lifelines_core.resource.models import GeoPoint, Resource, ResourceLocation
from tests.helpers import FIXED_NOW

SITE = GeoPoint(lat=25.2854, lng=51.5310)


def resource(rid: str, type: str = "Bricks", qty: float = 1000, lat: float = 25.29, lng: float = 51.53, **kw) -> Resource:
    return Resource(
        id=rid,
        type=type,
        quantity=qty,
        unit="units",
        location=ResourceLocation(lat=lat, lng=lng),
        created_at=FIXED_NOW,
        **kw,
    )


class TestDistance:
    """Great-circle distance"""

    def test_zero_for_same_point(self):
        assert haversine_km(SITE, SITE) == 0.0

    def test_one_degree_of_latitude(self):
        assert haversine_km(GeoPoint(lat=0, lng=0), GeoPoint(lat=1, lng=0)) == pytest.approx(111.19, abs=0.01)

    def test_match_distance_is_exactly_symmetric(self):
        other = GeoPoint(lat=25.3002, lng=51.5172)
        assert match_distance(SITE, other) == match_distance(other, SITE)


class TestSavings:
    """Reuse economics"""

    def test_known_material(self):
        assert cost_savings("Bricks", 1000) == pytest.approx(1100.0)
        assert co2_reduction_kg("Bricks", 1000) == pytest.approx(350.0)

    def test_unknown_material_saves_no_money_but_some_co2(self):
        assert cost_savings("Adobe", 10) == 0.0
        assert co2_reduction_kg("Adobe", 10) == pytest.approx(10 * DEFAULT_CO2_FACTOR_T * 1000)


class TestMatchResources:
    """Candidate lists for a plan's needs"""

    def test_sorted_nearest_first(self):
        far = resource("res_far", lat=25.40)
        near = resource("res_near", lat=25.2860)
        candidates = match_resources("proj_1", SITE, [MaterialNeed(type="Bricks", quantity=500)], [far, near])
        assert [c.resource_id for c in candidates] == ["res_near", "res_far"]

    def test_equal_distance_breaks_on_cost_then_id(self):
        big = resource("res_b", qty=2000)
        small = resource("res_a", qty=100)
        twin = resource("res_c", qty=100)
        candidates = match_resources(
            "proj_1", SITE, [MaterialNeed(type="Bricks", quantity=5000)], [big, twin, small]
        )
        assert [c.resource_id for c in candidates] == ["res_a", "res_c", "res_b"]

    def test_usable_quantity_capped_by_need(self):
        (candidate,) = match_resources(
            "proj_1", SITE, [MaterialNeed(type="Bricks", quantity=300)], [resource("res_1", qty=8600)]
        )
        assert candidate.usable_quantity == 300
        assert candidate.cost_savings == pytest.approx(330.0)

    def test_reserved_elsewhere_is_excluded(self):
        mine = resource("res_mine", reserved_for_project_id="proj_1")
        theirs = resource("res_theirs", reserved_for_project_id="proj_2")
        candidates = match_resources(
            "proj_1", SITE, [MaterialNeed(type="Bricks", quantity=10)], [mine, theirs]
        )
        assert [c.resource_id for c in candidates] == ["res_mine"]
        assert candidates[0].reserved_for_project_id == "proj_1"

    def test_type_must_match_and_quantity_positive(self):
        steel = resource("res_steel", type="Steel")
        empty = resource("res_empty", qty=0)
        assert match_resources("p", SITE, [MaterialNeed(type="Bricks", quantity=1)], [steel, empty]) == []
        assert not is_available_to(empty, "p")
