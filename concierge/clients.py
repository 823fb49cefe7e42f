"""
Per-user remote clients built from the credentials on the user row.

A missing Google credential raises ConfigurationError (fatal for that
user's sync). A missing HubSpot credential raises SourceNotConnectedError
(the CRM stages are skipped, everything else proceeds).
"""

import logging

from .cache.users import UserStore
from .config import settings
from .crm.hubspot import HubSpotClient
from .exceptions import ConfigurationError
from .google.calendar import CalendarClient
from .google.gmail import GmailClient
from .models import User

logger = logging.getLogger(__name__)


class ClientFactory:
    def __init__(self, user_store: UserStore) -> None:
        self._users = user_store

    async def _user(self, user_id: int) -> User:
        user = await self._users.get(user_id)
        if user is None:
            raise ConfigurationError(f"Unknown user {user_id}")
        return user

    async def gmail(self, user_id: int) -> GmailClient:
        return GmailClient((await self._user(user_id)).google_access_token)

    async def calendar(self, user_id: int) -> CalendarClient:
        return CalendarClient(
            (await self._user(user_id)).google_access_token,
            timezone=settings.scheduler_timezone,
        )

    async def hubspot(self, user_id: int) -> HubSpotClient:
        return HubSpotClient((await self._user(user_id)).hubspot_access_token)
