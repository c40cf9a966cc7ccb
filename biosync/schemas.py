"""
Wire format for documents (local cache value and remote replica value).

Parsing is strict about types but forgiving about shape: the legacy layout
written by earlier app generations (smokeHistory / appStartDate / packPrice
...) is migrated on read. Anything that still fails validation is reported
as "absent" (None) so callers fall back instead of crashing.

Current wire layout:

    {
      "settings": {"unitPrice", "unitsPerPack", "baselineDailyCount",
                   "minIntervalMinutes", "targetDailyCount"},
      "settingsRevisionTime": int,
      "profileStartTime": int,
      "longestAbstentionHours": int,
      "ownerId": str | null,
      "events": [{"timestamp": int, "kind": "normal" | "override"}],
      "documentRevisionTime": int,
      "lastEventTime": int | null          # derived, ignored on read
    }
"""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from biosync.clock import now_ms, start_of_local_day
from biosync.event_log import normalize
from biosync.logging_utils import get_logger
from biosync.models import NEVER_REVISED, Document, EventKind, LoggedEvent, ProfileState, Settings

logger = get_logger(__name__)

# Legacy event "type" values -> kinds
LEGACY_KINDS = {
    "regular": EventKind.NORMAL.value,
    "emergency": EventKind.OVERRIDE.value,
}

# Legacy settings keys -> current keys
LEGACY_SETTINGS_KEYS = {
    "packPrice": "unitPrice",
    "packSize": "unitsPerPack",
    "oldHabit": "baselineDailyCount",
    "smokeIntervalMinutes": "minIntervalMinutes",
    "desiredDailySticks": "targetDailyCount",
}


class EventPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    timestamp: int = Field(ge=0, description="Epoch milliseconds; identity key.")
    kind: EventKind = Field(default=EventKind.NORMAL)

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_shapes(cls, data: Any) -> Any:
        # Oldest generation stored bare numbers
        if isinstance(data, (int, float)) and not isinstance(data, bool):
            return {"timestamp": int(data), "kind": EventKind.NORMAL.value}
        if isinstance(data, dict) and "kind" not in data and "type" in data:
            data = dict(data)
            data["kind"] = LEGACY_KINDS.get(data.pop("type"), EventKind.NORMAL.value)
        return data


def _migrate_settings(raw: Any) -> Any:
    if not isinstance(raw, dict):
        return raw
    settings = dict(raw)
    for old, new in LEGACY_SETTINGS_KEYS.items():
        if old in settings and new not in settings:
            settings[new] = settings.pop(old)
    if "smokeIntervalHours" in settings and "minIntervalMinutes" not in settings:
        hours = settings.pop("smokeIntervalHours")
        if isinstance(hours, (int, float)):
            settings["minIntervalMinutes"] = int(hours * 60)
    return settings


class DocumentPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    settings: Settings = Field(default_factory=Settings)
    settings_revision_time: int = Field(default=0, ge=NEVER_REVISED, alias="settingsRevisionTime")
    profile_start_time: Optional[int] = Field(default=None, ge=0, alias="profileStartTime")
    longest_abstention_hours: int = Field(default=0, ge=0, alias="longestAbstentionHours")
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    events: List[EventPayload] = Field(default_factory=list)
    document_revision_time: int = Field(default=0, ge=NEVER_REVISED, alias="documentRevisionTime")

    @model_validator(mode="before")
    @classmethod
    def migrate_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "events" not in data and "smokeHistory" in data:
            data["events"] = data.pop("smokeHistory") or []
        if "profileStartTime" not in data and data.get("appStartDate") is not None:
            data["profileStartTime"] = data.pop("appStartDate")
        if "longestAbstentionHours" not in data and "longestSmokeFreeStreakHours" in data:
            hours = data.pop("longestSmokeFreeStreakHours") or 0
            data["longestAbstentionHours"] = int(hours) if isinstance(hours, (int, float)) else hours
        if "ownerId" not in data and "currentUserId" in data:
            data["ownerId"] = data.pop("currentUserId")
        if "settings" in data:
            data["settings"] = _migrate_settings(data["settings"])
        return data

    def to_document(self, fallback_start: Optional[int] = None) -> Document:
        events = normalize(LoggedEvent(e.timestamp, e.kind) for e in self.events)
        start = self.profile_start_time
        if start is None:
            start = fallback_start if fallback_start is not None else start_of_local_day(now_ms())
        return Document(
            settings=self.settings,
            profile=ProfileState(
                profile_start_time=start,
                longest_abstention_hours=self.longest_abstention_hours,
                owner_id=self.owner_id,
            ),
            events=events,
            document_revision_time=self.document_revision_time,
            settings_revision_time=self.settings_revision_time,
        )


def document_to_wire(document: Document) -> Dict[str, Any]:
    """Serialize a Document to its JSON-compatible wire dict."""
    return {
        "settings": document.settings.to_wire(),
        "settingsRevisionTime": int(document.settings_revision_time),
        "profileStartTime": int(document.profile.profile_start_time),
        "longestAbstentionHours": int(document.profile.longest_abstention_hours),
        "ownerId": document.profile.owner_id,
        "events": [e.to_dict() for e in document.events],
        "documentRevisionTime": int(document.document_revision_time),
        "lastEventTime": document.last_event_time,
    }


def dumps_document(document: Document) -> str:
    return json.dumps(document_to_wire(document), ensure_ascii=False)


def parse_document(
    raw: Union[str, bytes, Dict[str, Any], None],
    *,
    fallback_start: Optional[int] = None,
    source: str = "document",
) -> Optional[Document]:
    """
    Parse a wire payload into a Document.

    Args:
        raw: JSON text, bytes, an already-decoded dict, or None
        fallback_start: profileStartTime to use when the payload has none
        source: Label for log messages ("cache", "remote", ...)

    Returns:
        Document, or None when absent or malformed (never raises)
    """
    if raw is None:
        return None
    try:
        if isinstance(raw, (str, bytes, bytearray)):
            raw = json.loads(raw)
        if not isinstance(raw, dict):
            logger.warning(f"Malformed {source}: expected object, got {type(raw).__name__}")
            return None
        return DocumentPayload.model_validate(raw).to_document(fallback_start)
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError, ValueError, TypeError) as e:
        logger.warning(f"Malformed {source} treated as absent: {e}")
        return None
