from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from adscrape.config import settings
from adscrape.errors import ApifyApiError


class ApifyClient:
    """Minimal async Apify REST client for actor runs and dataset fetches."""

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token = token or settings.APIFY_API_TOKEN or ""
        self.base_url = (base_url or settings.APIFY_API_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.APIFY_TIMEOUT_SECONDS
        self._transport = transport
        if not self.token:
            raise RuntimeError("APIFY_API_TOKEN is required for Apify client")

    async def start_actor_run(self, actor_id: str, *, input_payload: Dict[str, Any]) -> Dict[str, Any]:
        body = await self._request("POST", f"/acts/{actor_id}/runs", json=input_payload)
        data = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, dict) else {}

    async def fetch_run(self, run_id: str) -> Dict[str, Any]:
        body = await self._request("GET", f"/actor-runs/{run_id}")
        data = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, dict) else {}

    async def fetch_dataset_items(self, dataset_id: str, *, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"format": "json"}
        if limit:
            params["limit"] = limit
        data = await self._request("GET", f"/datasets/{dataset_id}/items", params=params)
        return data if isinstance(data, list) else []

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
    ) -> Any:
        query = {"token": self.token, **(params or {})}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.request(method, f"{self.base_url}{path}", params=query, json=json)
        except httpx.HTTPError as exc:
            raise ApifyApiError(message=f"Network error while calling Apify: {exc}") from exc

        if response.status_code >= 400:
            raise ApifyApiError(
                message=f"Apify API call failed ({response.status_code}): {response.text}",
                status_code=502,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ApifyApiError(message="Apify API returned invalid JSON") from exc
