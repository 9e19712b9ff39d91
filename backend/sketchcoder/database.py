"""
Supabase client for version history records.
One row per project: project_id (pk), versions (jsonb), current_version_id.
"""

from sketchcoder.config import get_settings
from sketchcoder.models import VersionHistory


def _get_client():
    """Get a Supabase client. Raises if credentials are missing."""
    settings = get_settings()
    url = settings.supabase_url
    key = settings.supabase_key
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in .env")
    from supabase import create_client
    return create_client(url, key)


class SupabaseBackend:
    def __init__(self, table: str = "version_histories", client=None):
        self.table = table
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = _get_client()
        return self._client

    def load(self, project_id: str) -> VersionHistory | None:
        result = (
            self.client.table(self.table)
            .select("project_id, versions, current_version_id")
            .eq("project_id", project_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return VersionHistory.model_validate(result.data[0])

    def save(self, history: VersionHistory) -> None:
        # upsert writes the whole row in one statement
        row = history.model_dump(mode="json")
        self.client.table(self.table).upsert(row, on_conflict="project_id").execute()

    def delete(self, project_id: str) -> None:
        self.client.table(self.table).delete().eq("project_id", project_id).execute()
