# backend/services/directory.py
from abc import ABC, abstractmethod

from supabase import Client

from models.notification import DisplayName


class DirectoryLookup(ABC):
    """Resolves a user id to the name and handle shown in notification text."""

    @abstractmethod
    def get_display_name(self, user_id: str) -> DisplayName:
        ...


class SupabaseDirectory(DirectoryLookup):

    def __init__(self, client: Client):
        self._client = client

    def get_display_name(self, user_id: str) -> DisplayName:
        result = self._client.table("user").select(
            "user_id, user_name, user_handle"
        ).eq("user_id", user_id).execute()

        if not result.data:
            # Unknown users still render; fall back to the raw id
            return DisplayName(user_id=user_id, name=user_id, handle=user_id)

        row = result.data[0]
        return DisplayName(
            user_id=user_id,
            name=row.get("user_name") or user_id,
            handle=row.get("user_handle") or row.get("user_name") or user_id,
        )
