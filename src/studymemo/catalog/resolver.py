"""External identifier → catalog internal id resolution.

Order of attempts:
1. Session index (filled by earlier lookups and scans)
2. Server-side /tools/lookup, when enabled and supported
3. Sequential scan over the study listing, fetching details only for
   studies not indexed yet. First match wins.

Resolution never raises; None means "not found".
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from studymemo.catalog.client import CatalogError

if TYPE_CHECKING:
    from studymemo.catalog.client import CatalogClient

logger = logging.getLogger(__name__)


class CatalogResolver:
    def __init__(self, client: CatalogClient, *, use_lookup: bool = True) -> None:
        self._client = client
        self._use_lookup = use_lookup
        self._index: dict[str, str] = {}  # external id → internal id
        self._scanned: set[str] = set()  # internal ids whose detail was fetched

    async def resolve(self, external_id: str) -> str | None:
        cached = self._index.get(external_id)
        if cached is not None:
            return cached

        if self._use_lookup:
            internal_id = await self._lookup(external_id)
            if internal_id is not None:
                self._index[external_id] = internal_id
                return internal_id

        return await self._scan(external_id)

    def invalidate(self, external_id: str | None = None) -> None:
        """Forget one mapping, or the whole index."""
        if external_id is None:
            self._index.clear()
            self._scanned.clear()
            return
        internal_id = self._index.pop(external_id, None)
        if internal_id is not None:
            self._scanned.discard(internal_id)

    async def _lookup(self, external_id: str) -> str | None:
        try:
            matches = await self._client.lookup(external_id)
        except CatalogError as e:
            if e.status in (404, 405):
                # Server has no lookup endpoint; scan from now on
                logger.info("Catalog lookup unsupported (%s), falling back to scans", e.status)
                self._use_lookup = False
            else:
                logger.warning("Catalog lookup failed for %s: %s", external_id, e)
            return None
        for match in matches:
            if isinstance(match, dict) and match.get("Type") == "Study" and match.get("ID"):
                return match["ID"]
        return None

    async def _scan(self, external_id: str) -> str | None:
        try:
            study_ids = await self._client.list_studies()
        except CatalogError as e:
            logger.warning("Cannot list catalog studies: %s", e)
            return None

        for study_id in study_ids:
            if study_id in self._scanned:
                continue
            try:
                detail = await self._client.get_study(study_id)
            except CatalogError as e:
                logger.debug("Skipping study %s: %s", study_id, e)
                continue
            self._scanned.add(study_id)
            uid = (detail.get("MainDicomTags") or {}).get("StudyInstanceUID")
            if not uid:
                continue
            self._index[uid] = study_id
            if uid == external_id:
                return study_id

        logger.info("Study %s not found among %d catalog studies", external_id, len(study_ids))
        return None
