"""Preferred remote channel: one metadata value per catalog study."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from studymemo.models import MemoRecord

if TYPE_CHECKING:
    from studymemo.catalog.client import CatalogClient

logger = logging.getLogger(__name__)

DEFAULT_METADATA_KEY = "1025"


class RemoteMetadataStore:
    """Each operation is a single round trip once the study is resolved."""

    def __init__(self, client: CatalogClient, key: str = DEFAULT_METADATA_KEY) -> None:
        self._client = client
        self.key = key

    async def write(self, internal_id: str, record: MemoRecord) -> None:
        """Raises CatalogError if the server does not acknowledge the write."""
        value = json.dumps(record.to_payload(), ensure_ascii=False)
        await self._client.put_metadata(internal_id, self.key, value)
        logger.info("Memo for %s written to study %s metadata", record.external_identifier, internal_id)

    async def read(self, internal_id: str, external_id: str = "") -> MemoRecord | None:
        raw = await self._client.get_metadata(internal_id, self.key)
        if raw is None:
            return None
        return MemoRecord.from_payload(external_id, raw)

    async def delete(self, internal_id: str) -> bool:
        deleted = await self._client.delete_metadata(internal_id, self.key)
        if deleted:
            logger.info("Memo metadata deleted from study %s", internal_id)
        return deleted
