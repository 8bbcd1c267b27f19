"""Memo record and outcome types shared by every tier."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

MemoSource = Literal["remote", "local", "not_found"]
ReachabilityStatus = Literal["checking", "connected", "disconnected"]

PAYLOAD_TYPE = "StudyMemo"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class MemoRecord:
    """A memo as stored by any tier."""

    external_identifier: str
    text: str
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def new(cls, external_identifier: str, text: str) -> MemoRecord:
        ts = utc_now()
        return cls(external_identifier, text, created_at=ts, updated_at=ts)

    def to_payload(self) -> dict[str, Any]:
        """JSON form written to the remote metadata slot."""
        return {
            "studyInstanceUID": self.external_identifier,
            "memo": self.text,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "type": PAYLOAD_TYPE,
        }

    @classmethod
    def from_payload(cls, external_identifier: str, raw: str) -> MemoRecord | None:
        """Parse a metadata value. Values that are not a JSON object are the memo text itself.

        A payload whose memo is null holds no memo and yields None.
        """
        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        if not isinstance(data, dict) or "memo" not in data:
            return cls(external_identifier, raw)
        if data["memo"] is None:
            return None
        created = str(data.get("createdAt", ""))
        return cls(
            external_identifier=str(data.get("studyInstanceUID") or external_identifier),
            text=str(data["memo"]),
            created_at=created,
            updated_at=str(data.get("updatedAt", created)),
        )


@dataclass
class SaveOutcome:
    """Result of MemoService.save()."""

    success: bool
    remote_saved: bool
    local_saved: bool
    message: str = ""


@dataclass
class LoadOutcome:
    """Result of MemoService.load(). `source` names the tier that answered."""

    memo: str | None
    source: MemoSource
    message: str = ""
