"""Reachability check for the remote catalog."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from studymemo.catalog.client import CatalogError

if TYPE_CHECKING:
    from studymemo.catalog.client import CatalogClient
    from studymemo.models import ReachabilityStatus

logger = logging.getLogger(__name__)


class ConnectivityProbe:
    """One lightweight request decides remote-first vs local-only."""

    def __init__(self, client: CatalogClient) -> None:
        self._client = client
        self.status: ReachabilityStatus = "checking"

    async def is_reachable(self) -> bool:
        """Never raises: any failure means unreachable."""
        self.status = "checking"
        try:
            await self._client.ping()
        except CatalogError as e:
            logger.warning("Catalog unreachable at %s: %s", self._client.base_url, e)
            self.status = "disconnected"
            return False
        except Exception:
            logger.exception("Unexpected error probing catalog at %s", self._client.base_url)
            self.status = "disconnected"
            return False
        self.status = "connected"
        return True
