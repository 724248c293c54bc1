"""
Test Helper Functions - Builders and a switchable transport

Payload builders keep tests readable; ToggleTransport lets a test pull the
network cable out from under a sync engine talking to the real Flask app.

Fun fact: The Builder pattern was formalized by the Gang of Four in 1994,
but test data builders were popularized by the growing programmer test
movement in the 2000s - we use them to keep tests readable and maintainable!
"""

from datetime import datetime, timezone
from typing import Any

import httpx
from flask import Flask

from lifelines_core.kernel.time import TimeProvider
from lifelines_core.sync.engine import SyncEngine
from lifelines_core.sync.transport import RemoteClient

FIXED_NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

DOHA_REGION = {"id": "doha", "name": "Doha"}


def project_payload(title: str = "Library Rebuild", **overrides: Any) -> dict[str, Any]:
    """Builder for CreateProject payloads"""
    payload: dict[str, Any] = {
        "title": title,
        "description": "Public library damaged by flooding",
        "location": {"lat": 25.2854, "lng": 51.5310, "address": "Corniche, Doha", "region": "doha"},
    }
    payload.update(overrides)
    return payload


def bid_payload(
    cost: float,
    timeline_months: float,
    experience: int,
    recycled_percent: float,
    notes: str = "",
) -> dict[str, Any]:
    """Builder for SubmitBid payloads"""
    return {
        "cost": cost,
        "timeline_months": timeline_months,
        "experience": experience,
        "recycled_percent": recycled_percent,
        "notes": notes,
    }


def plan_payload(
    materials: list[tuple[str, float, str]] | None = None, **overrides: Any
) -> dict[str, Any]:
    """Builder for SavePlan payloads; materials as (type, quantity, unit)"""
    materials = materials or [("Bricks", 4000, "units"), ("Steel", 2.0, "tons")]
    payload: dict[str, Any] = {
        "building_spec": {"building_type": "Library", "floors": 2},
        "materials": [{"type": t, "quantity": q, "unit": u} for t, q, u in materials],
        "cost_breakdown": [{"item": "Materials", "cost": 50000}, {"item": "Labor", "cost": 30000}],
        "timeline_months": 6,
    }
    payload.update(overrides)
    return payload


def report_payload(severity: str = "Medium") -> dict[str, Any]:
    """Builder for SaveDamageReport payloads"""
    return {
        "severity": severity,
        "issues": ["Wall cracking"],
        "debris_volume": {"estimate_m3": 30, "margin_pct": 18, "min_m3": 25, "max_m3": 35},
        "recoverables": [],
        "confidence": {"severity": 0.8},
        "producer_version": "stub-1.0",
    }


def resource_payload(
    type: str = "Bricks",
    quantity: float = 1000,
    unit: str = "units",
    lat: float = 25.2860,
    lng: float = 51.5320,
    **overrides: Any,
) -> dict[str, Any]:
    """Builder for RegisterResource payloads"""
    payload: dict[str, Any] = {
        "type": type,
        "quantity": quantity,
        "unit": unit,
        "location": {"lat": lat, "lng": lng},
    }
    payload.update(overrides)
    return payload


def register_payload(
    email: str, role: str = "contractor", name: str | None = None, password: str = "secret123"
) -> dict[str, Any]:
    """Builder for RegisterActor payloads"""
    return {
        "name": name or email.split("@")[0].title(),
        "email": email,
        "password": password,
        "role": role,
        "region": DOHA_REGION,
    }


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class ToggleTransport(httpx.BaseTransport):
    """
    WSGI transport into a Flask app that can be switched off

    While ``online`` is False every request fails the way an unplugged
    network does, with ``httpx.ConnectError``.
    """

    def __init__(self, app: Flask) -> None:
        self._inner = httpx.WSGITransport(app=app)
        self.online = True
        self.requests: list[tuple[str, str]] = []

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("network unreachable", request=request)
        self.requests.append((request.method, request.url.path))
        return self._inner.handle_request(request)


def make_engine(app: Flask, time_provider: TimeProvider, **kwargs: Any) -> tuple[SyncEngine, ToggleTransport]:
    """A sync engine talking to ``app`` through a switchable transport"""
    transport = ToggleTransport(app)
    remote = RemoteClient("http://testserver/api", timeout=2.0, transport=transport)
    engine = SyncEngine(remote, time_provider=time_provider, **kwargs)
    return engine, transport
