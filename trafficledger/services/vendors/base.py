"""
Traffic vendor capability interface.

The reconciliation engine and the lifecycle service only depend on
TrafficVendor; concrete adapters live next to this module and are resolved
by name through ``trafficledger.services.vendors.get_vendor``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date


@dataclass(frozen=True)
class VendorUsage:
    """Cumulative usage over a date window, bucketed by day (``YYYY-MM-DD``)."""

    hits_by_bucket: dict[str, int] = field(default_factory=dict)
    visits_by_bucket: dict[str, int] = field(default_factory=dict)

    @property
    def total_hits(self) -> int:
        return sum(self.hits_by_bucket.values())

    @property
    def total_visits(self) -> int:
        return sum(self.visits_by_bucket.values())


class TrafficVendor(ABC):
    """Abstract traffic vendor.

    Implementations raise VendorUnavailable for transport errors, timeouts,
    429 and 5xx responses, and VendorDataInvalid when the vendor answers
    with a payload that carries no readable usage.
    """

    name: str = "abstract"

    @abstractmethod
    async def get_usage(self, project_id: str, from_date: date, to_date: date) -> VendorUsage:
        """Usage buckets for the project between from_date and to_date, inclusive."""
        ...

    @abstractmethod
    async def set_speed(self, project_id: str, speed: int) -> None:
        """Set delivery speed. ``0`` pauses delivery, a positive value resumes it."""
        ...

    @abstractmethod
    async def create_project(self, payload: dict) -> str:
        """Create a project at the vendor and return its id."""
        ...
