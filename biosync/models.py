"""
Document model: the single synchronized unit of state for one account.

Document = Settings + ProfileState + event log + two independent revision
stamps (documentRevisionTime, settingsRevisionTime). All timestamps are epoch
milliseconds. Documents are immutable; mutations build a new instance via
dataclasses.replace().
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config.sync_config import config
from biosync.clock import start_of_local_day


# Revision stamp of a first-run default; loses to any stored or remote document
NEVER_REVISED = -1


class EventKind(Enum):
    NORMAL = "normal"
    OVERRIDE = "override"


@dataclass(frozen=True)
class LoggedEvent:
    """One timestamped entry in the history. The timestamp is its identity."""
    timestamp: int
    kind: EventKind = EventKind.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": int(self.timestamp), "kind": self.kind.value}


class Settings(BaseModel):
    """
    User-editable settings. Replaced wholesale on merge, never field-by-field.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    unit_price: float = Field(
        default=config.DEFAULT_SETTINGS["unitPrice"],
        ge=0.0,
        alias="unitPrice",
        description="Price of one pack."
    )
    units_per_pack: int = Field(
        default=config.DEFAULT_SETTINGS["unitsPerPack"],
        alias="unitsPerPack",
        description="Units in one pack (minimum 1)."
    )
    baseline_daily_count: int = Field(
        default=config.DEFAULT_SETTINGS["baselineDailyCount"],
        ge=0,
        alias="baselineDailyCount",
        description="Daily count before tracking started."
    )
    min_interval_minutes: int = Field(
        default=config.DEFAULT_SETTINGS["minIntervalMinutes"],
        alias="minIntervalMinutes",
        description="Minimum minutes between events."
    )
    target_daily_count: int = Field(
        default=config.DEFAULT_SETTINGS["targetDailyCount"],
        ge=0,
        alias="targetDailyCount",
        description="Planned daily count."
    )

    @field_validator("units_per_pack", mode="after")
    @classmethod
    def at_least_one_unit(cls, value: int) -> int:
        return value if value >= 1 else 1

    @field_validator("min_interval_minutes", mode="after")
    @classmethod
    def positive_interval(cls, value: int) -> int:
        return value if value > 0 else config.DEFAULT_MIN_INTERVAL_MINUTES

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class ProfileState:
    profile_start_time: int
    # Monotonically non-decreasing; merged with max()
    longest_abstention_hours: int = 0
    owner_id: Optional[str] = None


@dataclass(frozen=True)
class Document:
    settings: Settings
    profile: ProfileState
    events: Tuple[LoggedEvent, ...] = field(default_factory=tuple)
    document_revision_time: int = 0
    settings_revision_time: int = 0

    @property
    def last_event_time(self) -> Optional[int]:
        """Derived from the log, never trusted from storage."""
        return self.events[-1].timestamp if self.events else None

    @property
    def event_count(self) -> int:
        return len(self.events)

    def with_owner(self, owner_id: Optional[str]) -> "Document":
        if owner_id is None or self.profile.owner_id == owner_id:
            return self
        return replace(self, profile=replace(self.profile, owner_id=owner_id))


def default_document(
    now: int,
    owner_id: Optional[str] = None,
    *,
    revision_time: int = NEVER_REVISED,
    tz=None,
) -> Document:
    """
    Fresh document for a first run or an explicit reset.

    A first run stamps NEVER_REVISED so any existing document, including a
    migrated legacy one without stamps (parsed as 0), wins the merge with
    its real settings and profile start. A reset passes revision_time=now
    so the wipe wins instead.
    """
    return Document(
        settings=Settings(),
        profile=ProfileState(
            profile_start_time=start_of_local_day(now, tz),
            longest_abstention_hours=0,
            owner_id=owner_id,
        ),
        events=(),
        document_revision_time=revision_time,
        settings_revision_time=revision_time,
    )
