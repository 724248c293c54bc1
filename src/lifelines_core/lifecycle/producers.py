"""
Stand-in producers for damage assessment and plan generation

Both are black boxes to the lifecycle core: it persists and versions what
they return and never looks inside an image. These implementations are
deterministic for a given seed so that demos and tests are reproducible.

Fun fact: the debris base volumes (8 to 140 m3 per building) are roughly the
spread between a cracked single-storey house and a collapsed four-storey
block. One truck carries about 10 m3.
"""

import random

from lifelines_core.lifecycle.commands import SaveDamageReport, SavePlan
from lifelines_core.lifecycle.models import (
    CostItem,
    DebrisVolume,
    PlanMaterial,
    Project,
    Recoverable,
    Severity,
    SustainabilityMetrics,
    SustainabilityOptions,
)

PRODUCER_VERSION = "stub-1.0"

SEVERITY_ISSUES: dict[Severity, list[str]] = {
    Severity.LOW: ["Minor cracking", "Surface damage"],
    Severity.MEDIUM: ["Wall cracking", "Water intrusion", "Electrical safety risk"],
    Severity.HIGH: ["Partial structural failure", "Roof instability", "Foundation concerns"],
    Severity.CRITICAL: ["Major collapse risk", "Unsafe occupancy", "Immediate stabilization required"],
}
EXTRA_ISSUES = ["Masonry failure", "Stairwell damage", "HVAC failure", "Plumbing rupture", "Hazardous debris"]
EXTRA_ISSUE_COUNT = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}

DEBRIS_BASE_M3 = {Severity.LOW: 8, Severity.MEDIUM: 35, Severity.HIGH: 85, Severity.CRITICAL: 140}
DEBRIS_MARGIN_PCT = {Severity.LOW: 25, Severity.MEDIUM: 18, Severity.HIGH: 14, Severity.CRITICAL: 12}

# (type, unit, base quantity, base quality)
RECOVERABLE_CANDIDATES = [
    ("Bricks", "units", 5000, 0.72),
    ("Concrete", "m3", 22, 0.64),
    ("Steel", "tons", 3.2, 0.66),
    ("Timber", "m3", 18, 0.58),
]
RECOVERABLE_MULTIPLIER = {Severity.LOW: 0.35, Severity.MEDIUM: 0.7, Severity.HIGH: 1.0, Severity.CRITICAL: 1.25}
RECOVERABLE_COUNT = {Severity.LOW: 2, Severity.MEDIUM: 3, Severity.HIGH: 4, Severity.CRITICAL: 4}
RECOVERABLE_MARGIN_PCT = {Severity.LOW: 22, Severity.MEDIUM: 15, Severity.HIGH: 13, Severity.CRITICAL: 12}

# Severity weights for the stand-in classifier, nudged by image count
SEVERITY_WEIGHTS = [0.25, 0.35, 0.25, 0.15]


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _round_qty(value: float, unit: str) -> float:
    return float(round(value)) if unit == "units" else round(value, 1)


def _issues(severity: Severity, rng: random.Random) -> tuple[str, ...]:
    issues = list(SEVERITY_ISSUES[severity])
    for _ in range(EXTRA_ISSUE_COUNT[severity]):
        extra = rng.choice(EXTRA_ISSUES)
        if extra not in issues:
            issues.append(extra)
    return tuple(issues)


def _debris(severity: Severity, rng: random.Random) -> DebrisVolume:
    estimate = round(DEBRIS_BASE_M3[severity] * (1 + (rng.random() - 0.5) * 0.25))
    margin = DEBRIS_MARGIN_PCT[severity]
    return DebrisVolume(
        estimate_m3=estimate,
        margin_pct=margin,
        min_m3=round(estimate * (1 - margin / 100)),
        max_m3=round(estimate * (1 + margin / 100)),
    )


def _recoverables(severity: Severity, rng: random.Random) -> tuple[Recoverable, ...]:
    margin = RECOVERABLE_MARGIN_PCT[severity]
    items = []
    for material, unit, base, quality in RECOVERABLE_CANDIDATES[: RECOVERABLE_COUNT[severity]]:
        estimate = base * RECOVERABLE_MULTIPLIER[severity] * (1 + 0.18 * (rng.random() - 0.5))
        items.append(
            Recoverable(
                type=material,
                unit=unit,
                quantity=_round_qty(estimate, unit),
                margin_pct=margin,
                min_quantity=_round_qty(estimate * (1 - margin / 100), unit),
                max_quantity=_round_qty(estimate * (1 + margin / 100), unit),
                quality_score=round(_clamp(quality + (rng.random() - 0.5) * 0.16, 0.35, 0.92), 3),
            )
        )
    return tuple(items)


def assess_damage(image_count: int = 1, seed: int | str | None = None) -> SaveDamageReport:
    """
    Produce a structured damage report

    Args:
        image_count: Number of images submitted (more images, more confident)
        seed: Seed for reproducible output

    Returns:
        Report payload ready for ``LifecycleService.save_damage_report``
    """
    if image_count < 0:
        raise ValueError("image_count must be >= 0")
    rng = random.Random(seed)
    severity = rng.choices(list(Severity), weights=SEVERITY_WEIGHTS)[0]

    base = 0.62 + rng.random() * 0.25 + min(image_count, 10) * 0.005
    confidence = {
        "severity": round(_clamp(base + (rng.random() - 0.5) * 0.12, 0.45, 0.95), 3),
        "issues": round(_clamp(base + (rng.random() - 0.5) * 0.14, 0.45, 0.92), 3),
        "debris": round(_clamp(base - 0.06 + (rng.random() - 0.5) * 0.12, 0.35, 0.90), 3),
        "recoverables": round(_clamp(base - 0.03 + (rng.random() - 0.5) * 0.12, 0.40, 0.92), 3),
    }

    return SaveDamageReport(
        severity=severity,
        issues=_issues(severity, rng),
        debris_volume=_debris(severity, rng),
        recoverables=_recoverables(severity, rng),
        confidence=confidence,
        producer_version=PRODUCER_VERSION,
    )


# ============================================================================
# Plan generator
# ============================================================================

BUILDING_TYPES = ["Residential", "Clinic", "School", "Community Center", "Road Segment", "Facility"]
MATERIAL_FACTOR = {Severity.LOW: 0.65, Severity.MEDIUM: 1.0, Severity.HIGH: 1.35, Severity.CRITICAL: 1.6}
TIMELINE_FACTOR = {Severity.LOW: 0.8, Severity.MEDIUM: 1.0, Severity.HIGH: 1.25, Severity.CRITICAL: 1.45}
PERMITS_COST = 6500


def _building_spec(project: Project, rng: random.Random) -> dict:
    title = project.title.lower()
    for keyword, building_type in (
        ("school", "School"),
        ("clinic", "Clinic"),
        ("road", "Road Segment"),
        ("center", "Community Center"),
    ):
        if keyword in title:
            break
    else:
        building_type = rng.choice(BUILDING_TYPES)

    if building_type == "Road Segment":
        return {"building_type": building_type, "floors": 1, "area_sqm": 1200}
    floors = 1 if "wing" in title else 1 + rng.randrange(3)
    return {"building_type": building_type, "floors": floors, "area_sqm": round(450 + rng.random() * 900)}


def generate_plan(
    project: Project,
    severity: Severity = Severity.MEDIUM,
    options: SustainabilityOptions | None = None,
    seed: int | str | None = None,
) -> SavePlan:
    """
    Produce a plan skeleton for a project

    Args:
        project: Project being planned
        severity: Severity of the latest damage report
        options: Sustainability toggles
        seed: Seed for reproducible output

    Returns:
        Plan payload ready for ``LifecycleService.save_plan``
    """
    options = options or SustainabilityOptions()
    rng = random.Random(seed)
    spec = _building_spec(project, rng)
    area = spec["area_sqm"]

    factor = MATERIAL_FACTOR[severity]
    concrete = round(area * 0.07 * factor)
    steel = round(area * 0.0038 * factor, 1)
    bricks = round(area * 7.5 * factor)
    materials = (
        PlanMaterial(type="Concrete", quantity=max(concrete, 1), unit="m3", notes="Structural reinforcement & slab repairs"),
        PlanMaterial(type="Steel", quantity=max(steel, 0.1), unit="tons", notes="Rebar & framing"),
        PlanMaterial(type="Bricks", quantity=max(bricks, 1), unit="units", notes="Masonry replacement"),
    )

    materials_cost = round(concrete * 420 + steel * 14500 + bricks * 1.9)
    uplift = (
        (12000 if options.solar_panels else 0)
        + (6000 if options.insulation else 0)
        + (9000 if options.seismic_reinforcement else 0)
    )
    cost_breakdown = (
        CostItem(item="Materials", cost=materials_cost + round(uplift * 0.45)),
        CostItem(item="Labor", cost=round(materials_cost * 0.72) + round(uplift * 0.40)),
        CostItem(item="Transport", cost=round(materials_cost * 0.12) + round(uplift * 0.15)),
        CostItem(item="Permits & inspections", cost=PERMITS_COST),
    )

    months = 3 + (area / 500) * TIMELINE_FACTOR[severity]
    months += 0.3 if options.solar_panels else 0
    months += 0.2 if options.insulation else 0
    months += 0.4 if options.seismic_reinforcement else 0
    timeline = _clamp(round(months), 3, 14)

    co2 = 2400 + rng.random() * 1200
    co2 += 1100 if options.solar_panels else 0
    co2 += 700 if options.insulation else 0
    co2 += 450 if options.seismic_reinforcement else 0
    recycled = _clamp(
        22 + (6 if options.insulation else 0) + (4 if options.seismic_reinforcement else 0), 8, 65
    )
    energy = 11000 + rng.random() * 12000
    energy += 12000 if options.solar_panels else 0
    energy += 6000 if options.insulation else 0

    return SavePlan(
        building_spec=spec,
        materials=materials,
        cost_breakdown=cost_breakdown,
        timeline_months=timeline,
        sustainability_options=options,
        sustainability_metrics=SustainabilityMetrics(
            recycled_percent=round(recycled),
            co2_saved_kg=round(co2),
            energy_kwh_saved=round(energy),
        ),
    )
