"""MemoService — the orchestrator between callers and the memo tiers.

Responsibilities:
1. Probe reachability once per operation (never trust an earlier probe)
2. Resolve StudyInstanceUID → catalog study id
3. Route writes to remote metadata, falling back to the local backup
4. Route reads through metadata → embedded tags → local backup
5. Report which tier answered (SaveOutcome / LoadOutcome)

Remote failures degrade to the next tier and are logged. Only the local
tier failing is reported back as a failure.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from studymemo.backup.store import LocalBackupStore
from studymemo.catalog.client import CatalogClient
from studymemo.catalog.embedded import RemoteEmbeddedTagStore
from studymemo.catalog.metadata import RemoteMetadataStore
from studymemo.catalog.probe import ConnectivityProbe
from studymemo.catalog.resolver import CatalogResolver
from studymemo.config import StudyMemoConfig, load_config
from studymemo.models import LoadOutcome, MemoRecord, ReachabilityStatus, SaveOutcome

if TYPE_CHECKING:
    import aiohttp

logger = logging.getLogger(__name__)


class MemoService:
    """Save/load/delete study memos across the remote and local tiers.

    Meant to be built once and shared by every caller.
    """

    def __init__(
        self,
        probe: ConnectivityProbe,
        resolver: CatalogResolver,
        metadata: RemoteMetadataStore,
        embedded: RemoteEmbeddedTagStore,
        backup: LocalBackupStore,
        *,
        mirror_on_remote_save: bool = False,
        client: CatalogClient | None = None,
    ) -> None:
        self.probe = probe
        self.resolver = resolver
        self.metadata = metadata
        self.embedded = embedded
        self.backup = backup
        self.mirror_on_remote_save = mirror_on_remote_save
        self._client = client

    # ── Lifecycle ─────────────────────────────────────────────

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    async def __aenter__(self) -> MemoService:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Reachability ─────────────────────────────────────────

    @property
    def status(self) -> ReachabilityStatus:
        return self.probe.status

    async def check_connection(self) -> bool:
        return await self.probe.is_reachable()

    # ── Save ─────────────────────────────────────────────────

    async def save(self, external_id: str, text: str) -> SaveOutcome:
        try:
            if await self.probe.is_reachable():
                try:
                    internal_id = await self.resolver.resolve(external_id)
                    if internal_id is None:
                        message = f"Study {external_id} not found in catalog; saved to local backup."
                    else:
                        await self.metadata.write(internal_id, MemoRecord.new(external_id, text))
                        return self._remote_saved(external_id, text)
                except Exception as e:
                    logger.error("Remote save failed for %s: %s", external_id, e)
                    self.resolver.invalidate(external_id)
                    message = f"Remote save failed ({e}); saved to local backup."
            else:
                message = "Catalog unreachable; saved to local backup."

            self.backup.write(external_id, text)
            return SaveOutcome(success=True, remote_saved=False, local_saved=True, message=message)

        except Exception as e:
            logger.exception("Saving memo for %s failed", external_id)
            return SaveOutcome(
                success=False, remote_saved=False, local_saved=False, message=f"Save failed: {e}"
            )

    def _remote_saved(self, external_id: str, text: str) -> SaveOutcome:
        # Remote is authoritative; the local tier is only touched when mirroring
        local_saved = False
        if self.mirror_on_remote_save:
            try:
                self.backup.write(external_id, text)
                local_saved = True
            except Exception as e:
                logger.warning("Local mirror of %s failed: %s", external_id, e)
        return SaveOutcome(
            success=True, remote_saved=True, local_saved=local_saved, message="Saved to catalog."
        )

    # ── Load ─────────────────────────────────────────────────

    async def load(self, external_id: str) -> LoadOutcome:
        try:
            if not await self.probe.is_reachable():
                return self._load_local(external_id)

            internal_id = await self.resolver.resolve(external_id)
            if internal_id is not None:
                record = await self.metadata.read(internal_id, external_id)
                if record is not None:
                    return LoadOutcome(record.text, "remote", "Loaded from catalog metadata.")

                text = await self.embedded.scan(internal_id)
                if text is not None:
                    return LoadOutcome(text, "remote", "Loaded from embedded instance tags.")

            return self._load_local(external_id)

        except Exception:
            logger.exception("Loading memo for %s failed, trying local backup", external_id)
            self.resolver.invalidate(external_id)
            try:
                return self._load_local(external_id)
            except Exception:
                logger.exception("Local backup read for %s failed", external_id)
                return LoadOutcome(None, "not_found", "Memo not found.")

    def _load_local(self, external_id: str) -> LoadOutcome:
        record = self.backup.read(external_id)
        if record is None:
            return LoadOutcome(None, "not_found", "No memo in catalog or local backup.")
        return LoadOutcome(record.text, "local", "Loaded from local backup.")

    def load_local_only(self, external_id: str) -> str | None:
        record = self.backup.read(external_id)
        return record.text if record else None

    async def has_memo(self, external_id: str) -> bool:
        outcome = await self.load(external_id)
        return outcome.memo is not None and outcome.memo.strip() != ""

    # ── Delete ───────────────────────────────────────────────

    async def delete(self, external_id: str) -> None:
        """Remove the memo from every tier. Remote removal is best-effort."""
        try:
            if await self.probe.is_reachable():
                internal_id = await self.resolver.resolve(external_id)
                if internal_id is None:
                    logger.info("Study %s not in catalog, skipping remote delete", external_id)
                else:
                    await self._delete_remote(external_id, internal_id)

            self.backup.delete(external_id)

        except Exception:
            logger.exception("Deleting memo for %s failed", external_id)
            try:
                self.backup.delete(external_id)
            except Exception:
                logger.exception("Local backup delete for %s failed", external_id)
            raise

    async def _delete_remote(self, external_id: str, internal_id: str) -> None:
        try:
            if not await self.metadata.delete(internal_id):
                logger.info("No memo metadata on study %s", internal_id)
        except Exception as e:
            logger.warning("Metadata delete failed for %s: %s", external_id, e)
            self.resolver.invalidate(external_id)

        try:
            if not await self.embedded.remove(internal_id):
                logger.debug("No embedded memo on study %s", internal_id)
        except Exception as e:
            logger.warning("Embedded memo removal failed for %s: %s", external_id, e)

    # ── Debug helpers ────────────────────────────────────────

    def clear_all(self) -> int:
        return self.backup.clear_all()

    async def embed(self, external_id: str, text: str) -> str | None:
        """Write through the legacy embedded channel. Returns the new instance id."""
        internal_id = await self.resolver.resolve(external_id)
        if internal_id is None:
            return None
        return await self.embedded.embed(internal_id, text)


def build_service(
    config: StudyMemoConfig | None = None, session: aiohttp.ClientSession | None = None
) -> MemoService:
    """Wire every tier around one shared CatalogClient."""
    config = config or load_config()
    client = CatalogClient(config.catalog, session=session)
    return MemoService(
        probe=ConnectivityProbe(client),
        resolver=CatalogResolver(client, use_lookup=config.catalog.use_lookup),
        metadata=RemoteMetadataStore(client, key=config.catalog.metadata_key),
        embedded=RemoteEmbeddedTagStore(client, prune_superseded=config.catalog.prune_superseded),
        backup=LocalBackupStore(config.backup.backup_dir),
        mirror_on_remote_save=config.backup.mirror_on_remote_save,
        client=client,
    )
