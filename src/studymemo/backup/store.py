"""Local backup tier — one frontmatter file per study.

Each study's memo lives in its own markdown file, so updates for different
studies never touch the same file. The memo text is kept in the `memo`
frontmatter field (exact round-trip, including whitespace and empty memos)
and repeated in the body for people reading the files directly.

The legacy layout, a single JSON blob mapping UID → memo, is imported once
on startup and renamed so it is never read again.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import weakref
from pathlib import Path
from urllib.parse import quote, unquote

import frontmatter

from studymemo.models import MemoRecord, utc_now

logger = logging.getLogger(__name__)

LEGACY_BLOB_NAME = "ohif_study_memos.json"
FILE_SUFFIX = ".md"
MAX_NAME_BYTES = 200


class LocalBackupStore:
    """Durable fallback keyed by external identifier."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()
        self.root.mkdir(parents=True, exist_ok=True)
        self._import_legacy_blob()

    # ── Paths & locks ────────────────────────────────────────

    def _path(self, external_id: str) -> Path:
        # quote() keeps dots, so DICOM UIDs stay readable as file names.
        # Names too long for the filesystem use a digest instead; "@" never
        # appears in quote() output, so the two schemes cannot collide.
        name = quote(external_id, safe="")
        if len(name.encode()) > MAX_NAME_BYTES:
            name = "@" + hashlib.sha256(external_id.encode("utf-8")).hexdigest()
        return self.root / f"{name}{FILE_SUFFIX}"

    def _lock(self, external_id: str) -> threading.Lock:
        with self._locks_guard:
            # Weak values: a lock lives only while some caller holds it
            lock = self._locks.get(external_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[external_id] = lock
            return lock

    # ── Serialization ────────────────────────────────────────

    def _load(self, path: Path) -> MemoRecord | None:
        if not path.exists():
            return None
        post = frontmatter.load(str(path))
        # The study field is authoritative; digest-named files cannot be unquoted
        external_id = unquote(path.name[: -len(FILE_SUFFIX)])
        text = post.metadata.get("memo")
        if text is None:
            text = post.content
        created = str(post.metadata.get("created", ""))
        return MemoRecord(
            external_identifier=str(post.metadata.get("study", external_id)),
            text=str(text),
            created_at=created,
            updated_at=str(post.metadata.get("updated", created)),
        )

    def _dump(self, record: MemoRecord) -> None:
        post = frontmatter.Post(
            record.text,
            study=record.external_identifier,
            created=record.created_at,
            updated=record.updated_at,
            memo=record.text,
        )
        path = self._path(record.external_identifier)
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(frontmatter.dumps(post))
                f.write("\n")
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    # ── Operations ───────────────────────────────────────────

    def write(self, external_id: str, text: str) -> MemoRecord:
        """Create or update a memo. created_at of an existing entry is kept."""
        with self._lock(external_id):
            existing = self._load(self._path(external_id))
            ts = utc_now()
            record = MemoRecord(
                external_identifier=external_id,
                text=text,
                created_at=existing.created_at if existing and existing.created_at else ts,
                updated_at=ts,
            )
            self._dump(record)
        logger.info("Memo for %s written to local backup", external_id)
        return record

    def read(self, external_id: str) -> MemoRecord | None:
        with self._lock(external_id):
            return self._load(self._path(external_id))

    def delete(self, external_id: str) -> bool:
        """Returns False if there was nothing to delete."""
        with self._lock(external_id):
            path = self._path(external_id)
            if not path.exists():
                return False
            path.unlink()
        logger.info("Memo for %s deleted from local backup", external_id)
        return True

    def list_identifiers(self) -> list[str]:
        identifiers = []
        for path in self.root.glob(f"*{FILE_SUFFIX}"):
            record = self._load(path)
            if record is not None:
                identifiers.append(record.external_identifier)
        return sorted(identifiers)

    def clear_all(self) -> int:
        """Remove every backed-up memo. Returns how many were removed."""
        count = 0
        for external_id in self.list_identifiers():
            if self.delete(external_id):
                count += 1
        logger.info("Cleared %d memos from local backup", count)
        return count

    # ── Legacy blob import ───────────────────────────────────

    def _import_legacy_blob(self) -> None:
        blob = self.root / LEGACY_BLOB_NAME
        if not blob.exists():
            return
        try:
            entries = json.loads(blob.read_text(encoding="utf-8") or "{}")
        except ValueError as e:
            logger.error("Legacy backup %s is not valid JSON, leaving it in place: %s", blob, e)
            return
        if not isinstance(entries, dict):
            logger.error("Legacy backup %s is not a JSON object, leaving it in place", blob)
            return

        imported = 0
        for external_id, entry in entries.items():
            if not isinstance(entry, dict) or self._path(external_id).exists():
                continue
            created = str(entry.get("createdAt") or utc_now())
            self._dump(
                MemoRecord(
                    external_identifier=external_id,
                    text=str(entry.get("memo") or ""),
                    created_at=created,
                    updated_at=str(entry.get("updatedAt") or created),
                )
            )
            imported += 1

        blob.rename(blob.with_name(blob.name + ".migrated"))
        logger.info("Imported %d memos from legacy backup %s", imported, blob)
