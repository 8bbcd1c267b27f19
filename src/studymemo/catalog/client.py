"""HTTP transport for the remote catalog (Orthanc-style REST API).

Every method issues exactly one request. Non-2xx responses and transport
errors surface as CatalogError so callers deal with a single failure type.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import aiohttp

if TYPE_CHECKING:
    from studymemo.config import CatalogConfig

logger = logging.getLogger(__name__)


class CatalogError(RuntimeError):
    """A catalog request failed (non-success status or transport error)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class CatalogClient:
    """Async client sharing one aiohttp session across all requests."""

    def __init__(self, config: CatalogConfig, session: aiohttp.ClientSession | None = None) -> None:
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    # ── Session lifecycle ────────────────────────────────────

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> CatalogClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Request core ─────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        expect: str = "json",
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Issue one request and decode the body as json, text or bytes.

        With allow_missing, a 404 returns None instead of raising.
        """
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(method, url, **kwargs) as resp:
                if allow_missing and resp.status == 404:
                    return None
                if resp.status >= 300:
                    detail = (await resp.text())[:200]
                    raise CatalogError(
                        f"{method} {path} failed: {resp.status} {detail}".rstrip(),
                        status=resp.status,
                    )
                if expect == "json":
                    return await resp.json(content_type=None)
                if expect == "bytes":
                    return await resp.read()
                return await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise CatalogError(f"{method} {path} error: {e!r}") from e

    # ── Listing & details ────────────────────────────────────

    async def ping(self) -> None:
        """Cheap request against the root listing endpoint."""
        await self._request("GET", self.config.probe_path, params={"limit": "1"})

    async def list_studies(self) -> list[str]:
        return list(await self._request("GET", "/studies"))

    async def get_study(self, study_id: str) -> dict:
        return await self._request("GET", f"/studies/{study_id}")

    async def get_series(self, series_id: str) -> dict:
        return await self._request("GET", f"/series/{series_id}")

    async def get_instance_tags(self, instance_id: str) -> dict:
        return await self._request("GET", f"/instances/{instance_id}/tags")

    async def lookup(self, identifier: str) -> list[dict]:
        """Server-side identifier lookup. Returns [{ID, Type, Path}, ...]."""
        return list(await self._request("POST", "/tools/lookup", data=identifier))

    # ── Study metadata ───────────────────────────────────────

    async def get_metadata(self, study_id: str, key: str) -> str | None:
        return await self._request(
            "GET", f"/studies/{study_id}/metadata/{key}", expect="text", allow_missing=True
        )

    async def put_metadata(self, study_id: str, key: str, value: str) -> None:
        await self._request(
            "PUT",
            f"/studies/{study_id}/metadata/{key}",
            expect="text",
            data=value.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        )

    async def delete_metadata(self, study_id: str, key: str) -> bool:
        """Returns False if there was no value to delete."""
        result = await self._request(
            "DELETE", f"/studies/{study_id}/metadata/{key}", expect="text", allow_missing=True
        )
        return result is not None

    # ── Instances ────────────────────────────────────────────

    async def modify_instance(self, instance_id: str, payload: dict) -> bytes:
        """Derive a modified copy of an instance. Returns the copy's file content."""
        return await self._request(
            "POST", f"/instances/{instance_id}/modify", expect="bytes", json=payload
        )

    async def store_instance(self, content: bytes) -> str:
        """Store an instance file. Returns its internal id."""
        result = await self._request(
            "POST",
            "/instances",
            data=content,
            headers={"Content-Type": "application/dicom"},
        )
        if not isinstance(result, dict) or "ID" not in result:
            raise CatalogError(f"POST /instances returned no instance id: {result!r}")
        return result["ID"]

    async def delete_instance(self, instance_id: str) -> None:
        await self._request("DELETE", f"/instances/{instance_id}", expect="text")
