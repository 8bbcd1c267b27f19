"""Legacy remote channel: the memo embedded in an instance's attributes.

Writing derives a modified copy of the study's first instance (the server
never edits instances in place). Reading walks every series and instance
in listing order and returns the first embedded memo found, so when a
study holds several copies the listing order decides, not recency.

With prune_superseded, the instance a derived copy replaces is deleted
in the same operation so repeated writes do not pile up stale copies.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from studymemo.catalog.client import CatalogError
from studymemo.models import utc_now

if TYPE_CHECKING:
    from studymemo.catalog.client import CatalogClient

logger = logging.getLogger(__name__)

PRIVATE_CREATOR = "OHIF_MEMO"
TAG_PRIVATE_CREATOR = "7777,0001"
TAG_MEMO_TEXT = "7777,1001"
TAG_MEMO_CREATED = "7777,1002"
TAG_MEMO_VERSION = "7777,1003"
MEMO_VERSION = "1.0"

TAG_IMAGE_COMMENTS = "0020,4000"
TAG_IDENTIFYING_COMMENTS = "0008,4000"
TAG_STUDY_DESCRIPTION = "0008,1030"

IMAGE_COMMENTS_PREFIX = "OHIF Memo: "
IDENTIFYING_COMMENTS_PREFIX = "Study memo added by OHIF: "
DEFAULT_DESCRIPTION = "CT Study"
PREVIEW_LENGTH = 50
PREVIEW_SUFFIX_RE = re.compile(r" \[Memo:.*?\]$")

MEMO_TAGS = [
    TAG_PRIVATE_CREATOR,
    TAG_MEMO_TEXT,
    TAG_MEMO_CREATED,
    TAG_MEMO_VERSION,
    TAG_IMAGE_COMMENTS,
    TAG_IDENTIFYING_COMMENTS,
]


def preview_suffix(text: str) -> str:
    preview = text[:PREVIEW_LENGTH]
    if len(text) > PREVIEW_LENGTH:
        preview += "..."
    return f" [Memo: {preview}]"


def strip_preview(description: str) -> str:
    return PREVIEW_SUFFIX_RE.sub("", description)


def _tag_value(tags: dict, tag: str) -> str:
    entry = tags.get(tag)
    if isinstance(entry, dict):
        value = entry.get("Value")
    else:
        value = entry
    return value if isinstance(value, str) else ""


def extract_memo(tags: dict) -> str | None:
    """Memo embedded in one instance's tags: private tag first, then image comments."""
    text = _tag_value(tags, TAG_MEMO_TEXT)
    if text:
        return text
    comments = _tag_value(tags, TAG_IMAGE_COMMENTS)
    if comments.startswith(IMAGE_COMMENTS_PREFIX):
        return comments[len(IMAGE_COMMENTS_PREFIX):]
    return None


@dataclass
class EmbeddedMatch:
    instance_id: str
    memo: str
    description: str


class RemoteEmbeddedTagStore:
    def __init__(self, client: CatalogClient, *, prune_superseded: bool = True) -> None:
        self._client = client
        self.prune_superseded = prune_superseded

    # ── Write ────────────────────────────────────────────────

    async def embed(self, internal_id: str, text: str) -> str:
        """Embed the memo into a derived copy of the first instance. Returns the copy's id.

        Raises CatalogError on failure.
        """
        study = await self._client.get_study(internal_id)
        series_ids = study.get("Series") or []
        if not series_ids:
            raise CatalogError(f"Study {internal_id} has no series")
        series = await self._client.get_series(series_ids[0])
        instance_ids = series.get("Instances") or []
        if not instance_ids:
            raise CatalogError(f"Series {series_ids[0]} has no instances")

        description = self._description(study)
        payload = {
            "Replace": {
                TAG_PRIVATE_CREATOR: PRIVATE_CREATOR,
                TAG_MEMO_TEXT: text,
                TAG_MEMO_CREATED: utc_now(),
                TAG_MEMO_VERSION: MEMO_VERSION,
                TAG_IMAGE_COMMENTS: f"{IMAGE_COMMENTS_PREFIX}{text}",
                TAG_IDENTIFYING_COMMENTS: f"{IDENTIFYING_COMMENTS_PREFIX}{text}",
                TAG_STUDY_DESCRIPTION: strip_preview(description) + preview_suffix(text),
            },
            "PrivateCreator": PRIVATE_CREATOR,
        }
        new_id = await self._derive(instance_ids[0], payload)
        logger.info("Memo embedded into study %s as instance %s", internal_id, new_id)
        return new_id

    # ── Read ─────────────────────────────────────────────────

    async def scan(self, internal_id: str) -> str | None:
        """First embedded memo in listing order, or None. Never raises."""
        try:
            match = await self._find(internal_id)
        except Exception as e:
            logger.warning("Embedded memo scan failed for study %s: %s", internal_id, e)
            return None
        return match.memo if match else None

    # ── Remove ───────────────────────────────────────────────

    async def remove(self, internal_id: str) -> bool:
        """Strip the memo from the first instance carrying one. Never raises."""
        try:
            match = await self._find(internal_id)
            if match is None:
                return False
            payload = {
                "Remove": MEMO_TAGS,
                "Replace": {TAG_STUDY_DESCRIPTION: strip_preview(match.description)},
                "PrivateCreator": PRIVATE_CREATOR,
            }
            new_id = await self._derive(match.instance_id, payload)
        except Exception as e:
            logger.warning("Embedded memo removal failed for study %s: %s", internal_id, e)
            return False
        logger.info("Embedded memo removed from study %s (instance %s)", internal_id, new_id)
        return True

    # ── Internals ────────────────────────────────────────────

    @staticmethod
    def _description(study: dict) -> str:
        return (study.get("MainDicomTags") or {}).get("StudyDescription") or DEFAULT_DESCRIPTION

    async def _find(self, internal_id: str) -> EmbeddedMatch | None:
        study = await self._client.get_study(internal_id)
        description = self._description(study)
        for series_id in study.get("Series") or []:
            try:
                series = await self._client.get_series(series_id)
            except CatalogError as e:
                logger.debug("Skipping series %s: %s", series_id, e)
                continue
            for instance_id in series.get("Instances") or []:
                try:
                    tags = await self._client.get_instance_tags(instance_id)
                except CatalogError as e:
                    logger.debug("Skipping instance %s: %s", instance_id, e)
                    continue
                memo = extract_memo(tags)
                if memo is not None:
                    return EmbeddedMatch(instance_id, memo, description)
        return None

    async def _derive(self, instance_id: str, payload: dict) -> str:
        """Modify-and-store one instance, then drop the superseded original."""
        content = await self._client.modify_instance(instance_id, payload)
        new_id = await self._client.store_instance(content)
        if self.prune_superseded and new_id != instance_id:
            try:
                await self._client.delete_instance(instance_id)
            except CatalogError as e:
                logger.warning("Could not delete superseded instance %s: %s", instance_id, e)
        return new_id
