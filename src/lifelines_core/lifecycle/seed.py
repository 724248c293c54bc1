"""
Demo data - four identities, three Doha projects, a small salvage inventory

The same identities seed the server's credential registry and every client's
local fallback registry, so a field device can sign in with a demo account
before it has ever reached the server.
"""

from lifelines_core.bidding.models import Bid
from lifelines_core.bidding.scoring import rescore_cohort
from lifelines_core.kernel.time import TimeProvider
from lifelines_core.lifecycle.credentials import CredentialRegistry
from lifelines_core.lifecycle.models import (
    Actor,
    CostItem,
    DamageReport,
    DebrisVolume,
    Location,
    Plan,
    PlanMaterial,
    Project,
    ProjectStatus,
    Recoverable,
    Region,
    Role,
    Severity,
    SustainabilityMetrics,
    SustainabilityOptions,
    Visibility,
)
from lifelines_core.resource.models import Resource, ResourceLocation, ResourceStatus
from lifelines_core.store.audit import AuditLedger
from lifelines_core.store.entity_store import EntityStore

DOHA = Region(id="doha", name="Doha")

# (id, name, email, role, password)
DEMO_IDENTITIES: list[tuple[str, str, str, Role, str]] = [
    ("user_admin", "Admin", "admin@example.com", Role.ADMIN, "admin123"),
    ("user_official", "Urban Planner", "official@example.com", Role.OFFICIAL, "official123"),
    ("user_contractor", "ReBuild Co.", "contractor@example.com", Role.CONTRACTOR, "contractor123"),
    ("user_community", "Community Rep", "community@example.com", Role.COMMUNITY, "community123"),
]


def demo_actors(time_provider: TimeProvider) -> list[Actor]:
    now = time_provider.now()
    return [
        Actor(id=actor_id, name=name, email=email, role=role, region=DOHA, created_at=now)
        for actor_id, name, email, role, _ in DEMO_IDENTITIES
    ]


def seed_credentials(registry: CredentialRegistry) -> None:
    """Register the demo identities (skipping any already present)"""
    for actor_id, _, email, _, password in DEMO_IDENTITIES:
        if not registry.knows(email):
            registry.register(actor_id, email, password)


def _projects(now) -> list[Project]:
    def project(project_id, title, description, lat, lng, address, status, public):
        return Project(
            id=project_id,
            title=title,
            description=description,
            location=Location(lat=lat, lng=lng, address=address, region=DOHA.id),
            status=status,
            visibility=Visibility.PUBLIC if public else Visibility.PRIVATE,
            community_feedback_enabled=public,
            owner_id="user_official",
            created_at=now,
            updated_at=now,
        )

    return [
        project(
            "proj_alnoor",
            "Al Noor Community Center",
            "Multi-purpose center supporting temporary shelter and services. "
            "Structural damage observed after flooding.",
            25.2859, 51.5352, "Al Noor District, Doha",
            ProjectStatus.PUBLISHED, True,
        ),
        project(
            "proj_seaside_clinic",
            "Seaside Clinic Wing",
            "Small clinic wing requiring repairs and retrofit. "
            "Focus on resilient materials and safer access.",
            25.2742, 51.5480, "Corniche Area, Doha",
            ProjectStatus.DRAFT, False,
        ),
        project(
            "proj_school_blockb",
            "Al Bayan School Block B",
            "School classroom block with roof and masonry issues. "
            "Priority reconstruction before next term.",
            25.2958, 51.5204, "Al Bayan, Doha",
            ProjectStatus.PUBLISHED, True,
        ),
    ]


def _resources(now) -> list[Resource]:
    rows = [
        ("res_bricks_01", "Bricks", "Good", 8600, "units", 25.2866, 51.5321, "proj_alnoor", ResourceStatus.IDENTIFIED),
        ("res_steel_01", "Steel", "Fair", 3.2, "tons", 25.2801, 51.5446, "proj_alnoor", ResourceStatus.SAMPLED),
        ("res_timber_01", "Timber", "Good", 24, "m3", 25.3002, 51.5172, "proj_school_blockb", ResourceStatus.CERTIFIED),
        ("res_insulation_01", "Insulation", "New", 140, "rolls", 25.2920, 51.5275, None, ResourceStatus.CERTIFIED),
        ("res_solar_01", "Solar Panels", "New", 40, "panels", 25.2721, 51.5520, None, ResourceStatus.CERTIFIED),
    ]
    return [
        Resource(
            id=rid,
            type=rtype,
            condition=condition,
            quantity=qty,
            unit=unit,
            location=ResourceLocation(lat=lat, lng=lng),
            source_project_id=source,
            status=status,
            created_at=now,
        )
        for rid, rtype, condition, qty, unit, lat, lng, source, status in rows
    ]


def seed_store(
    store: EntityStore,
    ledger: AuditLedger,
    time_provider: TimeProvider,
    actor_id: str | None = None,
    action: str = "seed",
) -> None:
    """
    Load the demo dataset into an empty store

    Writes one audit record (``seed``, or ``reset`` for an admin reset) for
    the whole dataset.
    """
    now = time_provider.now()
    with store.transaction():
        for actor in demo_actors(time_provider):
            store.put("actors", actor)
        for project in _projects(now):
            store.put("projects", project)
        for resource in _resources(now):
            store.put("resources", resource)

        store.put(
            "reports",
            DamageReport(
                id="dr_alnoor_v1",
                project_id="proj_alnoor",
                severity=Severity.MEDIUM,
                issues=("Wall cracking", "Water intrusion", "Electrical safety risk"),
                debris_volume=DebrisVolume(estimate_m3=38, margin_pct=18, min_m3=31, max_m3=45),
                recoverables=(
                    Recoverable(type="Bricks", unit="units", quantity=5200, margin_pct=12,
                                min_quantity=4576, max_quantity=5824, quality_score=0.72),
                    Recoverable(type="Steel", unit="tons", quantity=2.8, margin_pct=15,
                                min_quantity=2.38, max_quantity=3.22, quality_score=0.66),
                ),
                confidence={"severity": 0.79, "issues": 0.74, "debris": 0.69, "recoverables": 0.71},
                producer_version="stub-1.0",
                created_by="user_official",
                created_at=now,
            ),
        )
        store.put(
            "plans",
            Plan(
                id="plan_alnoor_v1",
                project_id="proj_alnoor",
                version=1,
                building_spec={"building_type": "Community Center", "floors": 2, "area_sqm": 980},
                materials=(
                    PlanMaterial(type="Concrete", quantity=85, unit="m3", notes="Foundation and slab repairs"),
                    PlanMaterial(type="Steel", quantity=4.6, unit="tons", notes="Reinforcement"),
                    PlanMaterial(type="Bricks", quantity=8000, unit="units", notes="Masonry replacement"),
                ),
                cost_breakdown=(
                    CostItem(item="Materials", cost=92000),
                    CostItem(item="Labor", cost=64000),
                    CostItem(item="Transport", cost=12500),
                    CostItem(item="Permits & inspections", cost=6500),
                ),
                timeline_months=6,
                sustainability_options=SustainabilityOptions(
                    solar_panels=True, insulation=True, seismic_reinforcement=True
                ),
                sustainability_metrics=SustainabilityMetrics(
                    recycled_percent=28, co2_saved_kg=3200, energy_kwh_saved=18000
                ),
                created_by="user_official",
                created_at=now,
            ),
        )

        bid = Bid(
            id="bid_01",
            project_id="proj_alnoor",
            contractor_id="user_contractor",
            cost=168500,
            timeline_months=6,
            experience=8,
            recycled_percent=30,
            created_at=now,
        )
        (score,) = rescore_cohort([bid])
        store.put("bids", bid.evolve(score=score))

        ledger.record("system", action, action, actor_id, {"message": "Demo dataset loaded"})
