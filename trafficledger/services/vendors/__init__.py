"""
Vendor registry.

Resolves a campaign's vendor name to a configured TrafficVendor adapter.
Tests and alternative deployments can register their own adapters with
``register_vendor``.
"""

import logging
from typing import Callable, Dict

from trafficledger.config import settings
from trafficledger.core.errors import VendorNotConfigured
from trafficledger.services.vendors.base import TrafficVendor, VendorUsage
from trafficledger.services.vendors.sparktraffic import SparkTrafficVendor

logger = logging.getLogger(__name__)


def _build_sparktraffic() -> TrafficVendor:
    if not settings.sparktraffic_api_key:
        raise VendorNotConfigured(
            detail="TRAFFICLEDGER_SPARKTRAFFIC_API_KEY is not set",
            context={"vendor": "sparktraffic"},
        )
    return SparkTrafficVendor(api_key=settings.sparktraffic_api_key)


_factories: Dict[str, Callable[[], TrafficVendor]] = {
    "sparktraffic": _build_sparktraffic,
}
_instances: Dict[str, TrafficVendor] = {}


def register_vendor(name: str, vendor: TrafficVendor) -> None:
    """Install a ready-made adapter under ``name``."""
    _instances[name.lower()] = vendor


def reset_vendors() -> None:
    """Forget cached adapters (used by tests)."""
    _instances.clear()


def get_vendor(name: str | None = None) -> TrafficVendor:
    """Return the adapter for a vendor name, building it on first use."""
    key = (name or settings.default_vendor).lower()
    if key in _instances:
        return _instances[key]
    factory = _factories.get(key)
    if factory is None:
        raise VendorNotConfigured(detail=f"unknown vendor {key!r}", context={"vendor": key})
    vendor = factory()
    _instances[key] = vendor
    logger.info("Vendor adapter initialised: %s", key)
    return vendor


__all__ = [
    "SparkTrafficVendor",
    "TrafficVendor",
    "VendorUsage",
    "get_vendor",
    "register_vendor",
    "reset_vendors",
]
