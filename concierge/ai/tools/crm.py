"""HubSpot CRM tool executors.

Contacts and deals are located in the local cache (by e-mail, by fuzzy deal
name) before anything is sent to HubSpot; after a successful create or patch
the cached row is refreshed so the next turn sees the new values.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ...crm.hubspot import parse_object
from ...exceptions import ConfigurationError, SourceNotConnectedError
from ...models import ITEM_MODELS, SourceKind, utcnow

if TYPE_CHECKING:
    from ...crm.hubspot import HubSpotClient
    from .args import ContactArgs, DealArgs, NoteArgs
    from .registry import ToolDispatcher

logger = logging.getLogger(__name__)

_NOT_CONNECTED = "Error: HubSpot is not connected. Please connect your HubSpot account first."


async def _hubspot(dispatcher: ToolDispatcher, user_id: int) -> HubSpotClient | str:
    try:
        return await dispatcher._clients.hubspot(user_id)
    except (SourceNotConnectedError, ConfigurationError):
        return _NOT_CONNECTED


async def _refresh_cached(
    dispatcher: ToolDispatcher,
    user_id: int,
    kind: SourceKind,
    row: dict[str, Any],
    changes: dict[str, Any],
) -> None:
    """Write patched fields back onto the cached row."""
    model = ITEM_MODELS[kind]
    fields = {name: row.get(name) for name in model.model_fields}
    fields.update(changes)
    fields["last_modified"] = utcnow()
    try:
        await dispatcher._cache.upsert_item(user_id, model.model_validate(fields))
    except Exception as e:
        # The remote write already succeeded; the next sync repairs the row
        logger.warning("Could not refresh cached %s %s: %s", kind.value, row["external_id"], e)


async def _cache_created(
    dispatcher: ToolDispatcher, user_id: int, kind: SourceKind, obj: dict
) -> None:
    try:
        await dispatcher._cache.upsert_item(user_id, parse_object(kind, obj))
    except Exception as e:
        logger.warning("Could not cache new %s %s: %s", kind.value, obj.get("id"), e)


def _contact_name(row: dict[str, Any], fallback: str) -> str:
    name = f"{row.get('first_name') or ''} {row.get('last_name') or ''}".strip()
    return name or fallback


async def exec_create_contact(dispatcher: ToolDispatcher, user_id: int, args: ContactArgs) -> str:
    """Create a HubSpot contact."""
    hubspot = await _hubspot(dispatcher, user_id)
    if isinstance(hubspot, str):
        return hubspot
    try:
        created = await hubspot.create_object("contacts", args.properties())
    except Exception as e:
        logger.error("create_hubspot_contact failed: %s", e, exc_info=True)
        return f"Error creating HubSpot contact: {e}"

    await _cache_created(dispatcher, user_id, SourceKind.CRM_CONTACTS, created)
    name = f"{args.first_name or ''} {args.last_name or ''}".strip() or args.email
    lines = [f"✅ Contact '{name}' created in HubSpot!", f"📧 Email: {args.email}"]
    if args.company:
        lines.append(f"🏢 Company: {args.company}")
    if args.job_title:
        lines.append(f"💼 Title: {args.job_title}")
    lines.append(f"🆔 Contact ID: {created.get('id', '')}")
    return "\n".join(lines)


async def exec_update_contact(dispatcher: ToolDispatcher, user_id: int, args: ContactArgs) -> str:
    """Patch a HubSpot contact found by e-mail."""
    properties = args.properties(include_email=False)
    if not properties:
        return "Error: No update fields provided. Please specify what to change on the contact."

    contact = await dispatcher._cache.find_contact_by_email(user_id, args.email)
    if contact is None:
        return (
            f"Error: Could not find contact with email '{args.email}'. "
            "Make sure the contact exists in HubSpot."
        )

    hubspot = await _hubspot(dispatcher, user_id)
    if isinstance(hubspot, str):
        return hubspot
    try:
        await hubspot.update_object("contacts", contact["external_id"], properties)
    except Exception as e:
        logger.error("update_hubspot_contact failed: %s", e, exc_info=True)
        return f"Error updating contact: {e}"

    await _refresh_cached(dispatcher, user_id, SourceKind.CRM_CONTACTS, contact, args.cache_changes())
    changed = ", ".join(f"{k}={v}" for k, v in properties.items())
    return f"✅ Contact '{_contact_name(contact, args.email)}' updated: {changed}"


async def exec_create_deal(dispatcher: ToolDispatcher, user_id: int, args: DealArgs) -> str:
    """Create a HubSpot deal."""
    hubspot = await _hubspot(dispatcher, user_id)
    if isinstance(hubspot, str):
        return hubspot
    try:
        created = await hubspot.create_object("deals", args.properties())
    except Exception as e:
        logger.error("create_hubspot_deal failed: %s", e, exc_info=True)
        return f"Error creating deal: {e}"

    await _cache_created(dispatcher, user_id, SourceKind.CRM_DEALS, created)
    lines = [f"✅ Deal '{args.deal_name}' created in HubSpot!"]
    if args.deal_stage:
        lines.append(f"📊 Stage: {args.deal_stage}")
    if args.amount:
        lines.append(f"💰 Amount: ${args.amount}")
    lines.append(f"🆔 Deal ID: {created.get('id', '')}")
    return "\n".join(lines)


async def exec_update_deal(dispatcher: ToolDispatcher, user_id: int, args: DealArgs) -> str:
    """Patch a HubSpot deal found by case-insensitive name match."""
    deal = await dispatcher._cache.find_deal_by_name(user_id, args.deal_name)
    if deal is None:
        return (
            f"Error: Could not find a deal matching '{args.deal_name}'. "
            "Please check the deal name and try again."
        )

    properties = args.properties(include_name=False)
    if not properties:
        return (
            "Error: No update fields provided. Please specify what to update "
            "(stage, amount, close date, or priority)."
        )

    hubspot = await _hubspot(dispatcher, user_id)
    if isinstance(hubspot, str):
        return hubspot
    logger.info("Updating HubSpot deal %r (id=%s)", deal["deal_name"], deal["external_id"])
    try:
        await hubspot.update_object("deals", deal["external_id"], properties)
    except Exception as e:
        logger.error("update_hubspot_deal failed: %s", e, exc_info=True)
        return f"Error updating deal: {e}"

    await _refresh_cached(dispatcher, user_id, SourceKind.CRM_DEALS, deal, args.cache_changes())
    lines = [f"✅ Deal '{deal['deal_name']}' updated successfully!"]
    if args.deal_stage:
        lines.append(f"📊 Stage: {args.deal_stage}")
    if args.amount:
        lines.append(f"💰 Amount: ${args.amount}")
    if args.close_date:
        lines.append(f"📆 Close date: {args.close_date}")
    if args.priority:
        lines.append(f"⭐ Priority: {args.priority}")
    return "\n".join(lines)


async def exec_add_note(dispatcher: ToolDispatcher, user_id: int, args: NoteArgs) -> str:
    """Attach a note to a HubSpot contact found by e-mail."""
    contact = await dispatcher._cache.find_contact_by_email(user_id, args.contact_email)
    if contact is None:
        return (
            f"Error: Could not find contact with email '{args.contact_email}'. "
            "Make sure the contact exists in HubSpot."
        )

    hubspot = await _hubspot(dispatcher, user_id)
    if isinstance(hubspot, str):
        return hubspot
    try:
        note_id = await hubspot.add_note(contact["external_id"], args.note, utcnow())
    except Exception as e:
        logger.error("add_hubspot_note failed: %s", e, exc_info=True)
        return f"Error adding note: {e}"

    logger.info("Note %s added to contact %s", note_id, contact["external_id"])
    name = _contact_name(contact, args.contact_email)
    return f"✅ Note added to {name}'s HubSpot contact!\n📝 Note: {args.note}"
