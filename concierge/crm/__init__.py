"""CRM integration (HubSpot)."""

from .hubspot import HubSpotClient

__all__ = ["HubSpotClient"]
