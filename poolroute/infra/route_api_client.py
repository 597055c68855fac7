# poolroute/infra/route_api_client.py
"""
HTTP client for the route API.

``HttpJobUpdateGateway`` lets a ``RouteEditSession`` running outside the
API process commit through ``POST /routes/bulk-reschedule`` and load its
ordering store from ``GET /routes/jobs``.
"""
from __future__ import annotations

from datetime import date
from typing import Any

import aiohttp

from poolroute.config import settings
from poolroute.core.errors import CommitError, RouteError
from poolroute.core.scheduling.domain import Job
from poolroute.core.scheduling.ordering import OrderingStore
from poolroute.core.scheduling.pending import JobUpdate
from poolroute.infra.http_client import get_route_api_session
from poolroute.infra.logging_config import get_logger
from poolroute.transport.schemas import JobOut

logger = get_logger(__name__)


class HttpJobUpdateGateway:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.base_url = (base_url or settings.route_api_base_url).rstrip("/")
        self.token = token if token is not None else settings.admin_token
        self._session = session

    @property
    def session(self) -> aiohttp.ClientSession:
        return self._session or get_route_api_session()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @staticmethod
    async def _error_detail(resp: aiohttp.ClientResponse) -> str:
        try:
            body = await resp.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return f"HTTP {resp.status}"
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return f"HTTP {resp.status}"

    async def update_jobs(self, updates: list[JobUpdate]) -> int:
        payload: dict[str, Any] = {"updates": [u.to_payload() for u in updates]}
        url = f"{self.base_url}/routes/bulk-reschedule"
        try:
            async with self.session.post(url, json=payload, headers=self._headers()) as resp:
                if resp.status >= 400:
                    detail = await self._error_detail(resp)
                    logger.warning(f"Route API rejected bulk update: status={resp.status}, error={detail}")
                    raise CommitError(detail)
                body = await resp.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise CommitError(f"Route API unreachable: {exc}") from exc

        return int(body.get("updated", len(updates))) if isinstance(body, dict) else len(updates)

    async def fetch_jobs(self, start: date, end: date) -> list[Job]:
        """Jobs with route days in ``[start, end]``."""
        url = f"{self.base_url}/routes/jobs"
        params = {"start": start.isoformat(), "end": end.isoformat()}
        try:
            async with self.session.get(url, params=params, headers=self._headers()) as resp:
                if resp.status >= 400:
                    raise RouteError(await self._error_detail(resp))
                body = await resp.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise RouteError(f"Route API unreachable: {exc}") from exc

        return [JobOut.model_validate(item).to_job() for item in body.get("jobs", [])]

    async def load_store(self, start: date, end: date) -> OrderingStore:
        return OrderingStore(await self.fetch_jobs(start, end), settings.tz)
