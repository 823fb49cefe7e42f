"""
Tests for concierge/crm/hubspot.py, served by httpx.MockTransport.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from concierge.crm.hubspot import HubSpotClient, parse_hubspot_time, parse_object
from concierge.exceptions import RemoteAPIError, SourceNotConnectedError
from concierge.models import CompanyItem, ContactItem, DealItem, SourceKind


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def _client(recorder: Recorder) -> HubSpotClient:
    return HubSpotClient(
        "h-token", base_url="https://hubspot.test", transport=httpx.MockTransport(recorder)
    )


def test_missing_token_is_not_connected():
    with pytest.raises(SourceNotConnectedError):
        HubSpotClient(None)


class TestParsing:

    def test_parse_time_millis_and_iso(self):
        assert parse_hubspot_time("1741600800000") == datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)
        assert parse_hubspot_time("2025-03-10T10:00:00.000Z") == datetime(
            2025, 3, 10, 10, 0, tzinfo=timezone.utc
        )
        assert parse_hubspot_time("") is None

    def test_parse_contact(self):
        item = parse_object(SourceKind.CRM_CONTACTS, {
            "id": 101,
            "properties": {
                "firstname": "Jane", "lastname": "Doe", "email": "jane@acme.com",
                "jobtitle": "CFO", "lastmodifieddate": "2025-03-10T10:00:00Z",
            },
        })
        assert isinstance(item, ContactItem)
        assert item.external_id == "101"
        assert item.job_title == "CFO"
        assert item.last_modified == datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)

    def test_parse_company_numbers(self):
        item = parse_object(SourceKind.CRM_COMPANIES, {
            "id": "7",
            "properties": {"name": "Acme", "numberofemployees": "250", "annualrevenue": "not a number"},
        })
        assert isinstance(item, CompanyItem)
        assert item.employees == 250
        assert item.annual_revenue is None

    def test_parse_deal_falls_back_to_updated_at(self):
        item = parse_object(SourceKind.CRM_DEALS, {
            "id": "9",
            "properties": {"dealname": "Acme renewal", "amount": "1500.5", "closedate": ""},
            "updatedAt": "2025-03-10T10:00:00Z",
        })
        assert isinstance(item, DealItem)
        assert item.amount == 1500.5
        assert item.close_date is None
        assert item.last_modified is not None

    def test_non_crm_kind_rejected(self):
        with pytest.raises(ValueError):
            parse_object(SourceKind.MAIL, {"id": "x"})


class TestHubSpotClient:

    @pytest.mark.asyncio
    async def test_full_listing_uses_list_endpoint_and_paging(self):
        recorder = Recorder(httpx.Response(200, json={
            "results": [{"id": "1", "properties": {}}, {"id": "2", "properties": {}}],
            "paging": {"next": {"after": "2"}},
        }))
        refs, after = await _client(recorder).list_page("contacts", limit=2)

        request = recorder.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/crm/v3/objects/contacts"
        assert request.url.params["limit"] == "2"
        assert request.headers["Authorization"] == "Bearer h-token"
        assert [r.external_id for r in refs] == ["1", "2"]
        assert after == "2"

    @pytest.mark.asyncio
    async def test_incremental_listing_filters_on_modified_date(self):
        recorder = Recorder(httpx.Response(200, json={"results": []}))
        since = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)

        refs, after = await _client(recorder).list_page("deals", since=since, after="40")

        request = recorder.requests[0]
        body = json.loads(request.content)
        assert request.method == "POST"
        assert request.url.path == "/crm/v3/objects/deals/search"
        assert body["filterGroups"][0]["filters"][0] == {
            "propertyName": "hs_lastmodifieddate", "operator": "GTE", "value": "1741600800000",
        }
        assert body["after"] == "40"
        assert refs == [] and after is None

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        recorder = Recorder(httpx.Response(404, text="not found"))
        with pytest.raises(RemoteAPIError) as exc_info:
            await _client(recorder).get_object("contacts", "404")
        assert exc_info.value.status_code == 404
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_create_is_attempted_once(self, monkeypatch):
        recorder = Recorder(httpx.Response(503, text="unavailable"))
        with pytest.raises(RemoteAPIError):
            await _client(recorder).create_object("contacts", {"email": "a@b.com"})
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_update_patches_properties(self):
        recorder = Recorder(httpx.Response(200, json={"id": "9"}))
        await _client(recorder).update_object("deals", "9", {"dealstage": "closedwon"})
        request = recorder.requests[0]
        assert request.method == "PATCH"
        assert json.loads(request.content) == {"properties": {"dealstage": "closedwon"}}

    @pytest.mark.asyncio
    async def test_add_note_associates_contact(self):
        recorder = Recorder(httpx.Response(201, json={"id": "n1"}))
        when = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)

        note_id = await _client(recorder).add_note("101", "Called about renewal", when)

        payload = json.loads(recorder.requests[0].content)
        assert note_id == "n1"
        assert payload["properties"]["hs_timestamp"] == "1741600800000"
        assert payload["associations"][0]["to"] == {"id": "101"}
        assert payload["associations"][0]["types"][0]["associationTypeId"] == 202
