"""
Lifecycle Module - actors, projects, assessments, plans and licenses

This module implements the project state machine and everything hanging off
it:
- Role capabilities and ownership guards
- Damage reports and versioned plans from pluggable producers
- Award and license invariants
"""

from lifelines_core.lifecycle.models import (
    Actor,
    DamageReport,
    License,
    Plan,
    Project,
    ProjectStatus,
    Role,
    Visibility,
)

__all__ = [
    "Actor",
    "Role",
    "Project",
    "ProjectStatus",
    "Visibility",
    "DamageReport",
    "Plan",
    "License",
]
