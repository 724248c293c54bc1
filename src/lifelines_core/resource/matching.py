"""
Resource Matching - nearest salvage first

For each material the current plan needs, list every inventory item of the
same type that this project could use (unreserved, or already reserved by
this project), with the great-circle distance to the site, the quantity that
would actually be used, and what reusing it saves in money and CO2.

Fun fact: concrete is the most-used material on Earth after water, and cement
production alone accounts for roughly 8% of global CO2 emissions. That is why
its factor below dwarfs most of the others.
"""

import math
from collections.abc import Iterable

from pydantic import BaseModel, Field

from lifelines_core.kernel.metrics import match_candidates
from lifelines_core.resource.models import GeoPoint, Resource

EARTH_RADIUS_KM = 6371.0

# Fallback emissions factor (tonnes CO2 per unit) for unlisted material types
DEFAULT_CO2_FACTOR_T = 0.2


class MaterialProfile(BaseModel):
    """Reference economics of one material type, per unit"""

    unit_cost_new: float = Field(..., ge=0)
    unit_cost_recycled: float = Field(..., ge=0)
    co2_factor_t: float = Field(..., ge=0, description="Tonnes CO2 avoided per unit reused")

    model_config = {"frozen": True}


MATERIAL_PROFILES: dict[str, MaterialProfile] = {
    "Bricks": MaterialProfile(unit_cost_new=2.2, unit_cost_recycled=1.1, co2_factor_t=0.00035),
    "Concrete": MaterialProfile(unit_cost_new=520, unit_cost_recycled=260, co2_factor_t=0.95),
    "Steel": MaterialProfile(unit_cost_new=16000, unit_cost_recycled=9200, co2_factor_t=1.8),
    "Timber": MaterialProfile(unit_cost_new=650, unit_cost_recycled=360, co2_factor_t=0.12),
    "Insulation": MaterialProfile(unit_cost_new=80, unit_cost_recycled=55, co2_factor_t=0.02),
    "Solar Panels": MaterialProfile(unit_cost_new=260, unit_cost_recycled=220, co2_factor_t=0.04),
}


class MaterialNeed(BaseModel):
    """One line of a plan's material list"""

    type: str
    quantity: float = Field(..., gt=0)
    unit: str = ""


class MatchCandidate(BaseModel):
    """One (need, resource) pairing"""

    need_type: str
    needed_quantity: float
    resource_id: str
    resource_type: str
    condition: str
    unit: str
    distance_km: float = Field(..., ge=0)
    usable_quantity: float = Field(..., ge=0)
    cost_savings: float = Field(..., ge=0)
    co2_reduction_kg: float = Field(..., ge=0)
    reference_cost: float = Field(..., ge=0, description="Recycled reference cost of the usable quantity")
    reserved_for_project_id: str | None = None


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """
    Great-circle distance in kilometres

    Example:
        >>> doha = GeoPoint(lat=25.2854, lng=51.5310)
        >>> haversine_km(doha, doha)
        0.0
    """
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.lng - a.lng)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def match_distance(a: GeoPoint, b: GeoPoint) -> float:
    """Symmetric distance used for ordering matches"""
    # Sort endpoints so floating-point evaluation order is identical both ways
    first, second = sorted((a, b), key=lambda p: (p.lat, p.lng))
    return haversine_km(first, second)


def cost_savings(material_type: str, quantity: float) -> float:
    """Money saved by reusing quantity units instead of buying new, floored at 0"""
    profile = MATERIAL_PROFILES.get(material_type)
    if profile is None:
        return 0.0
    return max(0.0, quantity * (profile.unit_cost_new - profile.unit_cost_recycled))


def co2_reduction_kg(material_type: str, quantity: float) -> float:
    """CO2 avoided by reuse, in kilograms, floored at 0"""
    profile = MATERIAL_PROFILES.get(material_type)
    factor = profile.co2_factor_t if profile else DEFAULT_CO2_FACTOR_T
    return max(0.0, quantity * factor * 1000)


def _reference_cost(material_type: str, quantity: float) -> float:
    profile = MATERIAL_PROFILES.get(material_type)
    return quantity * profile.unit_cost_recycled if profile else 0.0


def is_available_to(resource: Resource, project_id: str) -> bool:
    return resource.reserved_for_project_id in (None, project_id) and resource.quantity > 0


def match_resources(
    project_id: str,
    site: GeoPoint,
    needs: Iterable[MaterialNeed],
    resources: Iterable[Resource],
) -> list[MatchCandidate]:
    """
    Candidate matches for a project's material needs

    Args:
        project_id: Project doing the matching (its own reservations stay eligible)
        site: Project location
        needs: Plan material list
        resources: Inventory to search

    Returns:
        Candidates sorted by distance, then lower reference cost, then resource id
    """
    resources = list(resources)
    candidates: list[MatchCandidate] = []

    for need in needs:
        for resource in resources:
            if resource.type != need.type or not is_available_to(resource, project_id):
                continue
            usable = min(resource.quantity, need.quantity)
            candidates.append(
                MatchCandidate(
                    need_type=need.type,
                    needed_quantity=need.quantity,
                    resource_id=resource.id,
                    resource_type=resource.type,
                    condition=resource.condition,
                    unit=resource.unit,
                    distance_km=round(match_distance(site, resource.location), 3),
                    usable_quantity=usable,
                    cost_savings=round(cost_savings(need.type, usable), 2),
                    co2_reduction_kg=round(co2_reduction_kg(need.type, usable), 2),
                    reference_cost=round(_reference_cost(need.type, usable), 2),
                    reserved_for_project_id=resource.reserved_for_project_id,
                )
            )

    candidates.sort(key=lambda c: (c.distance_km, c.reference_cost, c.resource_id))
    match_candidates.observe(len(candidates))
    return candidates
