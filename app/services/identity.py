import logging

import httpx

logger = logging.getLogger(__name__)

USER_PATH = "/auth/v1/user"


class SupabaseIdentityService:
    """Resolves a bearer token to a stable user id via Supabase Auth.

    Absent, invalid or unverifiable tokens resolve to None, never an error.
    """

    def __init__(self, client: httpx.AsyncClient, supabase_url: str, anon_key: str):
        self._client = client
        self._url = supabase_url.rstrip("/") + USER_PATH
        self._anon_key = anon_key

    async def resolve(self, token: str | None) -> str | None:
        if not token:
            return None
        try:
            resp = await self._client.get(
                self._url,
                headers={"apikey": self._anon_key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Identity lookup failed: %s", exc)
            return None

        if resp.status_code != 200:
            logger.debug("Identity lookup rejected token (status=%s)", resp.status_code)
            return None
        try:
            user_id = resp.json().get("id")
        except ValueError:
            return None
        return str(user_id) if user_id else None
