"""
Resource Module - salvaged material inventory and distance-aware matching
"""

from lifelines_core.resource.models import GeoPoint, Resource, ResourceStatus

__all__ = ["GeoPoint", "Resource", "ResourceStatus"]
