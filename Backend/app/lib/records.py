"""
Read-only lookups against Supabase PostgREST.

Webhook producers only need to know who owns a build or a store submission;
writes to those tables happen elsewhere.
"""
from typing import Any, Dict, Optional

import httpx

from app.core.exceptions import CapyCodeError


class RecordLookupError(CapyCodeError):
    """PostgREST returned an error or could not be reached."""
    def __init__(self, table: str, message: str):
        super().__init__(f"Lookup in {table} failed: {message}", {"table": table})
        self.table = table


class SupabaseRecords:
    def __init__(
        self,
        url: str,
        service_key: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.service_key = service_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def find_one(self, table: str, column: str, value: str, select: str = "*") -> Optional[Dict[str, Any]]:
        """First row of `table` where `column` equals `value`, or None."""
        if not self.url:
            raise RecordLookupError(table, "SUPABASE_URL is not configured")

        try:
            response = await self._client.get(
                f"{self.url}/rest/v1/{table}",
                params={column: f"eq.{value}", "select": select, "limit": "1"},
                headers={
                    "apikey": self.service_key,
                    "Authorization": f"Bearer {self.service_key}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise RecordLookupError(table, f"{type(e).__name__}: {e}")

        if response.status_code != 200:
            raise RecordLookupError(table, f"status {response.status_code}")

        rows = response.json()
        if not rows:
            return None
        return rows[0]

    async def find_build(self, eas_build_id: str) -> Optional[Dict[str, Any]]:
        return await self.find_one("builds", "eas_build_id", eas_build_id, select="id,user_id,project_id")

    async def find_submission(self, submission_id: str) -> Optional[Dict[str, Any]]:
        return await self.find_one("store_submissions", "submission_id", submission_id, select="id,user_id")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
