"""
User Directory Service

Looks up auth user details through the Supabase admin API.
Used when a JWT carries no email but Stripe needs one for the customer.
"""

import asyncio
import logging
from typing import Optional

from supabase import Client, create_client
from supabase.lib.client_options import ClientOptions

from criaprompt.config.settings import get_settings


logger = logging.getLogger(__name__)


class UserDirectoryService:
    """Thin wrapper over ``supabase.auth.admin``."""

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            settings = get_settings()
            options = ClientOptions(postgrest_client_timeout=30)
            self._client = create_client(
                settings.supabase_url,
                settings.supabase_service_role_key,
                options,
            )
        return self._client

    async def get_email(self, user_id: str) -> Optional[str]:
        """Email of the auth user, or None when the user cannot be found."""
        try:
            response = await asyncio.to_thread(self.client.auth.admin.get_user_by_id, user_id)
        except Exception as e:
            logger.warning(f"Could not look up user {user_id} in Supabase: {e}")
            return None
        user = getattr(response, "user", None)
        return getattr(user, "email", None)


_user_directory: Optional[UserDirectoryService] = None


def get_user_directory() -> UserDirectoryService:
    """Get or create the user directory singleton."""
    global _user_directory
    if _user_directory is None:
        _user_directory = UserDirectoryService()
    return _user_directory
