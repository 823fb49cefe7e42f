"""
HubSpot CRM v3 client over httpx.

Listing walks the `after` cursor. Incremental listing goes through the
search endpoint with a last-modified >= filter, since the plain list
endpoint cannot filter server-side.
"""

import logging
from datetime import datetime, timezone

import httpx

from ..config import settings
from ..exceptions import RemoteAPIError, SourceNotConnectedError
from ..models import CacheItem, CompanyItem, ContactItem, DealItem, ItemRef, SourceKind
from ..utils.resilience import with_resilience

logger = logging.getLogger(__name__)

OBJECT_TYPES: dict[SourceKind, str] = {
    SourceKind.CRM_CONTACTS: "contacts",
    SourceKind.CRM_COMPANIES: "companies",
    SourceKind.CRM_DEALS: "deals",
}

PROPERTIES: dict[str, list[str]] = {
    "contacts": [
        "firstname", "lastname", "email", "phone", "company",
        "jobtitle", "lifecyclestage", "lastmodifieddate",
    ],
    "companies": [
        "name", "domain", "industry", "city", "state", "country",
        "numberofemployees", "annualrevenue", "hs_lastmodifieddate",
    ],
    "deals": [
        "dealname", "dealstage", "pipeline", "amount", "closedate",
        "hs_priority", "hs_lastmodifieddate",
    ],
}

# Contacts predate the hs_ prefix convention
MODIFIED_PROPERTY: dict[str, str] = {
    "contacts": "lastmodifieddate",
    "companies": "hs_lastmodifieddate",
    "deals": "hs_lastmodifieddate",
}

# HubSpot-defined association: note -> contact
NOTE_TO_CONTACT_ASSOCIATION = 202


def parse_hubspot_time(value: str | None) -> datetime | None:
    if not value:
        return None
    if value.isdigit():
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


def _to_float(value: str | None) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _to_int(value: str | None) -> int | None:
    number = _to_float(value)
    return int(number) if number is not None else None


def parse_object(kind: SourceKind, obj: dict) -> CacheItem:
    """Map a HubSpot object (id + properties) onto a cache item."""
    if not kind.is_crm:
        raise ValueError(f"Not a CRM source: {kind}")
    p = obj.get("properties", {}) or {}
    modified = parse_hubspot_time(
        p.get(MODIFIED_PROPERTY[OBJECT_TYPES[kind]]) or obj.get("updatedAt")
    )
    match kind:
        case SourceKind.CRM_CONTACTS:
            return ContactItem(
                external_id=str(obj["id"]),
                first_name=p.get("firstname"),
                last_name=p.get("lastname"),
                email=p.get("email"),
                phone=p.get("phone"),
                company=p.get("company"),
                job_title=p.get("jobtitle"),
                lifecycle_stage=p.get("lifecyclestage"),
                last_modified=modified,
            )
        case SourceKind.CRM_COMPANIES:
            return CompanyItem(
                external_id=str(obj["id"]),
                name=p.get("name"),
                domain=p.get("domain"),
                industry=p.get("industry"),
                city=p.get("city"),
                state=p.get("state"),
                country=p.get("country"),
                employees=_to_int(p.get("numberofemployees")),
                annual_revenue=_to_float(p.get("annualrevenue")),
                last_modified=modified,
            )
        case SourceKind.CRM_DEALS:
            return DealItem(
                external_id=str(obj["id"]),
                deal_name=p.get("dealname"),
                stage=p.get("dealstage"),
                pipeline=p.get("pipeline"),
                amount=_to_float(p.get("amount")),
                close_date=parse_hubspot_time(p.get("closedate")),
                priority=p.get("hs_priority"),
                last_modified=modified,
            )
    raise ValueError(f"Unhandled CRM source: {kind}")


class HubSpotClient:
    """HubSpot CRM calls for one user's bearer token."""

    def __init__(
        self,
        access_token: str | None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not access_token:
            raise SourceNotConnectedError("HubSpot is not connected for this user")
        self._token = access_token
        self._base_url = (base_url or settings.hubspot_base_url).rstrip("/")
        self._timeout = timeout or settings.remote_call_timeout
        self._transport = transport

    async def _request(
        self, method: str, path: str, max_retries: int = 3, **kwargs
    ) -> dict:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

        async def _call() -> dict:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method, f"{self._base_url}{path}", headers=headers, **kwargs
                )
            if response.status_code >= 400:
                raise RemoteAPIError(
                    f"HubSpot {method} {path} failed ({response.status_code}): "
                    f"{response.text[:200]}",
                    status_code=response.status_code,
                )
            return response.json() if response.content else {}

        return await with_resilience("hubspot", _call, max_retries=max_retries)

    async def list_page(
        self,
        object_type: str,
        since: datetime | None = None,
        after: str | None = None,
        limit: int = 100,
    ) -> tuple[list[ItemRef], str | None]:
        """
        One page of objects with their properties, plus the next `after` cursor.
        With `since`, only objects modified at or after it are returned.
        """
        properties = PROPERTIES[object_type]
        if since is None:
            params: dict = {"limit": limit, "properties": ",".join(properties)}
            if after:
                params["after"] = after
            data = await self._request("GET", f"/crm/v3/objects/{object_type}", params=params)
        else:
            modified = MODIFIED_PROPERTY[object_type]
            body: dict = {
                "filterGroups": [{
                    "filters": [{
                        "propertyName": modified,
                        "operator": "GTE",
                        "value": str(int(since.timestamp() * 1000)),
                    }],
                }],
                "sorts": [{"propertyName": modified, "direction": "ASCENDING"}],
                "properties": properties,
                "limit": limit,
            }
            if after:
                body["after"] = after
            data = await self._request(
                "POST", f"/crm/v3/objects/{object_type}/search", json=body
            )

        refs = [ItemRef(external_id=str(o["id"]), raw=o) for o in data.get("results", [])]
        next_after = data.get("paging", {}).get("next", {}).get("after")
        return refs, next_after or None

    async def get_object(self, object_type: str, object_id: str) -> dict:
        return await self._request(
            "GET",
            f"/crm/v3/objects/{object_type}/{object_id}",
            params={"properties": ",".join(PROPERTIES[object_type])},
        )

    async def create_object(self, object_type: str, properties: dict) -> dict:
        # Creation is not idempotent: a retried 5xx could create a duplicate
        return await self._request(
            "POST", f"/crm/v3/objects/{object_type}", max_retries=1,
            json={"properties": properties},
        )

    async def update_object(self, object_type: str, object_id: str, properties: dict) -> dict:
        return await self._request(
            "PATCH",
            f"/crm/v3/objects/{object_type}/{object_id}",
            json={"properties": properties},
        )

    async def add_note(self, contact_id: str, body: str, timestamp: datetime) -> str:
        """Create a note associated with a contact. Returns the note id."""
        payload = {
            "properties": {
                "hs_note_body": body,
                "hs_timestamp": str(int(timestamp.timestamp() * 1000)),
            },
            "associations": [{
                "to": {"id": contact_id},
                "types": [{
                    "associationCategory": "HUBSPOT_DEFINED",
                    "associationTypeId": NOTE_TO_CONTACT_ASSOCIATION,
                }],
            }],
        }
        data = await self._request("POST", "/crm/v3/objects/notes", max_retries=1, json=payload)
        return str(data.get("id", ""))
