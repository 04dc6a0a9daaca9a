"""Persistence gateway over the hosted database's REST endpoint.

Every call forwards the caller's token so the store's row-level security
scopes the rows; this module adds no authorization of its own.
"""

import logging
from typing import Any

import httpx

from auth import AuthContext
from config import settings
from errors import PersistenceError
from models import MeterReading, MeterStatistics, ProcessingMetrics, ReadingRow, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100


class ReadingStore:
    """Reads and writes meter readings through PostgREST (``/rest/v1``)."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        table: str | None = None,
        stats_view: str | None = None,
        max_limit: int | None = None,
        timeout: int | None = None,
    ):
        self._api_key = api_key if api_key is not None else settings.SUPABASE_KEY
        self._table = table or settings.READINGS_TABLE
        self._stats_view = stats_view or settings.STATS_VIEW
        self._max_limit = max_limit if max_limit is not None else settings.MAX_PAGE_LIMIT

        read_timeout = timeout if timeout is not None else settings.DB_TIMEOUT_SECONDS
        self._client = httpx.Client(
            base_url=(base_url or settings.SUPABASE_URL).rstrip("/") + "/rest/v1",
            timeout=httpx.Timeout(float(read_timeout), connect=float(settings.CONNECT_TIMEOUT_SECONDS)),
        )

    def close(self):
        self._client.close()

    def save(self, reading: MeterReading, metrics: ProcessingMetrics, ctx: AuthContext) -> Any:
        """Insert one row for the caller and return its generated id."""
        row = {
            "user_id": ctx.user_id,
            "meter_id": reading.meter_id,
            "meter_type": reading.meter_type,
            "reading_value": reading.reading_value,
            "unit": reading.unit,
            "confidence": reading.confidence,
            "confidence_score": metrics.confidence_score,
            "processing_time_ms": metrics.processing_time_ms,
            "image_size_bytes": metrics.image_size_bytes,
            "created_at": utc_now_iso(),
        }
        headers = self._headers(ctx)
        headers["Prefer"] = "return=representation"

        rows = self._request("POST", f"/{self._table}", ctx, json=[row], headers=headers)
        if not rows:
            raise PersistenceError("Insert returned no row")
        logger.info("Saved reading %s for meter %s", rows[0].get("id"), reading.meter_id)
        return rows[0].get("id")

    def list_readings(
        self,
        ctx: AuthContext,
        meter_id: str | None = None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
    ) -> list[ReadingRow]:
        """Caller's rows, newest first, optionally for one meter."""
        params = {
            "select": "*",
            "order": "created_at.desc",
            "limit": str(min(limit, self._max_limit)),
            "offset": str(offset),
        }
        if meter_id:
            params["meter_id"] = f"eq.{meter_id}"

        rows = self._request("GET", f"/{self._table}", ctx, params=params)
        return [ReadingRow.model_validate(r) for r in rows]

    def stats(self, ctx: AuthContext) -> MeterStatistics:
        """Aggregate owned by the store's statistics view; empty view means zeros."""
        rows = self._request("GET", f"/{self._stats_view}", ctx, params={"select": "*"})
        if not rows:
            return MeterStatistics()
        return MeterStatistics.model_validate({k: v for k, v in rows[0].items() if v is not None})

    def _headers(self, ctx: AuthContext) -> dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {ctx.token}",
        }

    def _request(self, method: str, path: str, ctx: AuthContext, headers: dict | None = None, **kwargs) -> list[dict]:
        try:
            resp = self._client.request(method, path, headers=headers or self._headers(ctx), **kwargs)
        except httpx.HTTPError as e:
            logger.error("Database request failed: %s", e)
            raise PersistenceError(f"Database error: {e}") from e

        if resp.status_code >= 300:
            detail = _error_message(resp)
            logger.error("Database error %d on %s %s: %s", resp.status_code, method, path, detail)
            raise PersistenceError(f"Database error: {detail}")

        try:
            data = resp.json()
        except ValueError as e:
            raise PersistenceError(f"Database error: unreadable response {resp.text[:200]}") from e
        return data if isinstance(data, list) else [data]


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return body["message"]
    return resp.text or f"HTTP {resp.status_code}"
