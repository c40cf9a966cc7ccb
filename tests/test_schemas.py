"""
Tests for biosync/schemas.py - wire format, legacy migration, malformed input.
"""

import json
import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from biosync.models import NEVER_REVISED, Document, EventKind, LoggedEvent, ProfileState, Settings, default_document
from biosync.schemas import document_to_wire, dumps_document, parse_document


@pytest.fixture
def document():
    return Document(
        settings=Settings(unit_price=80.0, units_per_pack=25),
        profile=ProfileState(profile_start_time=1_000, longest_abstention_hours=7, owner_id="user-a"),
        events=(LoggedEvent(2_000), LoggedEvent(3_000, EventKind.OVERRIDE)),
        document_revision_time=3_000,
        settings_revision_time=1_500,
    )


# ============================================================================
# Current format
# ============================================================================

class TestWireFormat:

    def test_wire_keys(self, document):
        wire = document_to_wire(document)
        assert wire["settings"]["unitPrice"] == 80.0
        assert wire["settings"]["unitsPerPack"] == 25
        assert wire["profileStartTime"] == 1_000
        assert wire["longestAbstentionHours"] == 7
        assert wire["ownerId"] == "user-a"
        assert wire["events"] == [
            {"timestamp": 2_000, "kind": "normal"},
            {"timestamp": 3_000, "kind": "override"},
        ]
        assert wire["documentRevisionTime"] == 3_000
        assert wire["settingsRevisionTime"] == 1_500

    def test_last_event_time_is_derived(self, document):
        assert document_to_wire(document)["lastEventTime"] == 3_000

    def test_parse_serialized(self, document):
        assert parse_document(dumps_document(document)) == document

    def test_parse_dict(self, document):
        assert parse_document(document_to_wire(document)) == document

    def test_stored_last_event_time_ignored(self, document):
        wire = document_to_wire(document)
        wire["lastEventTime"] = 99
        assert parse_document(wire).last_event_time == 3_000

    def test_unsorted_events_normalized(self):
        doc = parse_document({
            "profileStartTime": 0,
            "events": [{"timestamp": 5}, {"timestamp": 1}, {"timestamp": 5}],
        })
        assert [e.timestamp for e in doc.events] == [1, 5]

    def test_missing_settings_take_defaults(self):
        doc = parse_document({"profileStartTime": 0})
        assert doc.settings == Settings()

    def test_missing_start_uses_fallback(self):
        doc = parse_document({"events": []}, fallback_start=42)
        assert doc.profile.profile_start_time == 42


# ============================================================================
# Legacy layout
# ============================================================================

class TestLegacyMigration:

    def test_legacy_document(self):
        legacy = {
            "lastSmokeTime": 3_000,
            "smokeHistory": [1_000, {"timestamp": 2_000, "type": "emergency"}, {"timestamp": 3_000, "type": "regular"}],
            "appStartDate": 500,
            "longestSmokeFreeStreakHours": 12.7,
            "currentUserId": "user-a",
            "settings": {
                "packPrice": 120,
                "packSize": 25,
                "oldHabit": 30,
                "smokeIntervalMinutes": 90,
                "desiredDailySticks": 5,
            },
        }
        doc = parse_document(legacy)
        assert doc.events == (
            LoggedEvent(1_000, EventKind.NORMAL),
            LoggedEvent(2_000, EventKind.OVERRIDE),
            LoggedEvent(3_000, EventKind.NORMAL),
        )
        assert doc.profile.profile_start_time == 500
        assert doc.profile.longest_abstention_hours == 12
        assert doc.profile.owner_id == "user-a"
        assert doc.settings.unit_price == 120
        assert doc.settings.units_per_pack == 25
        assert doc.settings.baseline_daily_count == 30
        assert doc.settings.min_interval_minutes == 90
        assert doc.settings.target_daily_count == 5

    def test_interval_hours_converted(self):
        doc = parse_document({"profileStartTime": 0, "settings": {"smokeIntervalHours": 2}})
        assert doc.settings.min_interval_minutes == 120

    def test_unknown_legacy_type_is_normal(self):
        doc = parse_document({"profileStartTime": 0, "smokeHistory": [{"timestamp": 1, "type": "other"}]})
        assert doc.events[0].kind is EventKind.NORMAL

    def test_never_revised_stamps_round_trip(self):
        doc = default_document(1_000, owner_id="user-a")
        parsed = parse_document(dumps_document(doc))
        assert parsed.document_revision_time == NEVER_REVISED
        assert parsed.settings_revision_time == NEVER_REVISED

    def test_legacy_without_stamps_parses_as_zero(self):
        doc = parse_document({"appStartDate": 500, "settings": {"packPrice": 150}})
        assert doc.document_revision_time == 0
        assert doc.settings_revision_time == 0


# ============================================================================
# Malformed input
# ============================================================================

class TestMalformed:

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2, 3]",
        json.dumps({"events": "nope"}),
        json.dumps({"events": [{"timestamp": -5}]}),
        json.dumps({"documentRevisionTime": "yesterday"}),
        json.dumps({"settingsRevisionTime": -2}),
        json.dumps({"settings": {"unitPrice": -1}}),
        b"\xff\xfe",
        42,
    ])
    def test_malformed_is_absent(self, raw):
        assert parse_document(raw) is None

    def test_none_is_absent(self):
        assert parse_document(None) is None

    def test_sanitizes_settings(self):
        doc = parse_document({
            "profileStartTime": 0,
            "settings": {"unitsPerPack": 0, "minIntervalMinutes": -10},
        })
        assert doc.settings.units_per_pack == 1
        assert doc.settings.min_interval_minutes == 60
