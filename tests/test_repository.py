"""Unit tests for incidents/repository.py -- incident lifecycle and state ownership.

Covers:
- Seeding and response-time derivation
- add_incident() defaults, code allocation and validation
- Draft promotion and discard
- update_incident() history diffs and field contracts
- Supplemented writes: resolve, compliance, timeline, follow-ups, attachments
- Listing order, filters and the business unit registry
- Persistence round-trip and corrupt snapshot recovery
"""

import pytest

from incidents.repository import IncidentRepository
from storage.store import SnapshotStore
from tests.conftest import fixed_today

# ---------------------------------------------------------------------------
# Seeding and derived fields
# ---------------------------------------------------------------------------


class TestSeedState:
    def test_seed_codes(self, repo):
        codes = sorted(i.incident_id for i in repo.list_incidents())
        assert codes == [f"INC-2025-00{n}" for n in range(1, 7)]

    def test_response_time_resolved(self, repo):
        inc = next(i for i in repo.list_incidents() if i.incident_id == "INC-2025-006")
        assert inc.response_time_hours == 72

    def test_response_time_open_counts_to_today(self, repo):
        """Unresolved incidents report elapsed time up to today, not None."""
        inc = next(i for i in repo.list_incidents() if i.incident_id == "INC-2025-001")
        assert inc.response_time_hours == 15 * 24

    def test_next_incident_id(self, repo):
        assert repo.next_incident_id() == "INC-2025-007"

    def test_custom_prefix(self):
        repo = IncidentRepository(id_prefix="BR-2026", today=fixed_today)
        assert repo.next_incident_id() == "BR-2026-007"


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestAddIncident:
    def test_defaults(self, repo):
        inc = repo.add_incident(
            {
                "discovered_date": "2025-12-18",
                "affected_records": 150,
                "data_types": ["Contact Information"],
                "remediation_actions": "Rotated keys",
            }
        )
        assert inc.incident_id == "INC-2025-007"
        assert inc.severity == "HIGH"
        assert inc.status == "INVESTIGATING"
        assert inc.pdpc_status == "NO"
        assert inc.created_by == "DPO Desk"
        assert inc.remediation_actions_list == ["Rotated keys"]
        assert inc.response_time_hours == 48
        assert inc.created_at and inc.updated_at

    def test_incident_is_prepended(self, repo):
        inc = repo.add_incident({"discovered_date": "2020-01-01"})
        assert repo._state.incidents[0].id == inc.id

    def test_pdpc_status_follows_required_flag(self, repo):
        inc = repo.add_incident({"pdpc_notification_required": True})
        assert inc.pdpc_status == "YES"

    def test_explicit_severity_kept(self, repo):
        inc = repo.add_incident({"severity": "LOW", "affected_records": 5000})
        assert inc.severity == "LOW"

    def test_no_discovered_date_has_no_response_time(self, repo):
        assert repo.add_incident({}).response_time_hours is None

    def test_supplied_response_time_is_ignored(self, repo):
        inc = repo.add_incident({"discovered_date": "2025-12-19", "response_time_hours": 1})
        assert inc.response_time_hours == 24

    def test_codes_strictly_increase(self, repo):
        codes = [repo.add_incident({}, draft=bool(n % 2)).incident_id for n in range(5)]
        assert codes == [f"INC-2025-{n:03d}" for n in range(7, 12)]

    def test_unknown_field_rejected(self, repo):
        with pytest.raises(ValueError):
            repo.add_incident({"colour": "red"})

    def test_invalid_severity_rejected_without_change(self, repo):
        before = len(repo.list_incidents())
        with pytest.raises(ValueError):
            repo.add_incident({"severity": "APOCALYPTIC"})
        assert len(repo.list_incidents()) == before

    def test_under_review_requires_reviewer(self, repo):
        with pytest.raises(ValueError, match="pdpc_review_person"):
            repo.add_incident({"pdpc_status": "UNDER_REVIEW"})

    def test_bad_date_rejected(self, repo):
        with pytest.raises(ValueError):
            repo.add_incident({"discovered_date": "next tuesday"})

    def test_returned_copy_is_detached(self, repo):
        inc = repo.add_incident({"description": "original"})
        inc.description = "tampered"
        assert repo.get_incident(inc.id).description == "original"


# ---------------------------------------------------------------------------
# Drafts
# ---------------------------------------------------------------------------


class TestDrafts:
    def test_draft_is_kept_apart(self, repo):
        draft = repo.add_incident({"description": "half-written"}, draft=True)
        assert draft.status == "DRAFT"
        assert repo.get_incident(draft.id) is None
        assert [d.id for d in repo.list_drafts()] == [draft.id]

    def test_promote_keeps_identity(self, repo):
        draft = repo.add_incident({"discovered_date": "2025-12-19"}, draft=True)
        promoted = repo.promote_draft(draft.id)
        assert promoted.id == draft.id
        assert promoted.incident_id == draft.incident_id
        assert promoted.status == "INVESTIGATING"
        assert repo.list_drafts() == []
        assert repo.get_incident(draft.id) is not None

    def test_promote_missing_returns_none(self, repo):
        assert repo.promote_draft("nope") is None

    def test_discard(self, repo):
        draft = repo.add_incident({}, draft=True)
        repo.discard_draft(draft.id)
        repo.discard_draft(draft.id)  # silent when absent
        assert repo.list_drafts() == []

    def test_code_repeats_after_discard(self, repo):
        """Codes are count-based, so a discarded draft's code is handed out again."""
        draft = repo.add_incident({}, draft=True)
        repo.discard_draft(draft.id)
        assert repo.next_incident_id() == draft.incident_id


# ---------------------------------------------------------------------------
# Updates and history
# ---------------------------------------------------------------------------


class TestUpdateIncident:
    def _first(self, repo):
        return next(i for i in repo.list_incidents() if i.incident_id == "INC-2025-001")

    def test_single_change_appends_one_entry(self, repo):
        inc = self._first(repo)
        updated = repo.update_incident(inc.id, {"status": "CONTAINED"})
        assert len(updated.history) == len(inc.history) + 1
        assert updated.history[-1].text == "status: INVESTIGATING -> CONTAINED"

    def test_identical_payload_adds_no_history(self, repo):
        inc = self._first(repo)
        updated = repo.update_incident(
            inc.id,
            {
                "status": inc.status,
                "data_types": list(inc.data_types),
                "timeline": [{"date": e.date, "text": e.text} for e in inc.timeline],
            },
        )
        assert updated.history == inc.history

    def test_multiple_changes_in_one_entry(self, repo):
        inc = self._first(repo)
        updated = repo.update_incident(
            inc.id,
            {"severity": "CRITICAL", "data_types": ["Financial Data"], "pdpc_notified": True},
        )
        assert updated.history[-1].text == (
            "severity: HIGH -> CRITICAL | data_types: [2 items] -> [1 items] | pdpc_notified: false -> true"
        )

    def test_none_rendered_as_null(self, repo):
        inc = self._first(repo)
        updated = repo.update_incident(inc.id, {"resolved_date": "2025-12-19"})
        assert updated.history[-1].text == "resolved_date: null -> 2025-12-19"
        assert updated.response_time_hours == 14 * 24

    def test_history_and_updated_at_keys_ignored(self, repo):
        inc = self._first(repo)
        updated = repo.update_incident(inc.id, {"history": [], "updated_at": "1999-01-01"})
        assert updated.history == inc.history
        assert updated.updated_at != "1999-01-01"

    @pytest.mark.parametrize("field", ["id", "incident_id", "response_time_hours", "created_at", "nonsense"])
    def test_non_editable_fields_rejected(self, repo, field):
        inc = self._first(repo)
        with pytest.raises(ValueError):
            repo.update_incident(inc.id, {field: "x"})

    def test_invalid_value_leaves_state_untouched(self, repo):
        inc = self._first(repo)
        with pytest.raises(ValueError):
            repo.update_incident(inc.id, {"description": "changed", "status": "DRAFT"})
        assert repo.get_incident(inc.id) == inc

    def test_missing_id_returns_none(self, repo):
        assert repo.update_incident("missing", {"status": "CONTAINED"}) is None

    def test_resolved_incident_stays_editable(self, repo):
        resolved = next(i for i in repo.list_incidents() if i.status == "RESOLVED")
        updated = repo.update_incident(resolved.id, {"description": "amended"})
        assert updated.description == "amended"

    def test_notes_and_activities(self, repo):
        inc = self._first(repo)
        noted = repo.add_note(inc.id, "Called HR")
        assert noted.notes[-1].text == "Called HR"
        assert noted.notes[-1].date == "2025-12-20"
        acted = repo.add_activity(inc.id, "Scheduled review")
        assert acted.activities[-1].text == "Scheduled review"
        assert repo.add_note("missing", "x") is None


class TestSupplementedWrites:
    def _first(self, repo):
        return next(i for i in repo.list_incidents() if i.incident_id == "INC-2025-001")

    def test_resolve(self, repo):
        inc = self._first(repo)
        resolved = repo.resolve_incident(inc.id, "Lesson", "Measure", "Improve")
        assert resolved.status == "RESOLVED"
        assert resolved.resolved_date == "2025-12-20"
        assert resolved.improvements == "Improve"
        assert "status: INVESTIGATING -> RESOLVED" in resolved.history[-1].text

    def test_resolve_requires_all_narratives(self, repo):
        inc = self._first(repo)
        with pytest.raises(ValueError, match="preventive_measures"):
            repo.resolve_incident(inc.id, "Lesson", "  ", "Improve")

    def test_compliance_history_entry(self, repo):
        inc = self._first(repo)
        updated = repo.update_compliance(
            inc.id,
            pdpc_status="YES",
            pdpc_notified=True,
            pdpc_notified_person="Officer Tan",
        )
        assert updated.compliance_history[-1].text == "YES | PDPC Notified: Yes (Officer Tan) | DPO Notified: No"
        assert updated.pdpc_notified_date == "2025-12-20"
        assert updated.pdpc_notified_person == "Officer Tan"

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"pdpc_status": "UNDER_REVIEW"}, "Reviewer"),
            ({"pdpc_status": "YES", "pdpc_notified": True}, "PDPC contact"),
            ({"pdpc_status": "YES", "dpo_guidance_issued": True}, "DPO contact"),
            ({"pdpc_status": "MAYBE"}, "pdpc_status"),
        ],
    )
    def test_compliance_preconditions(self, repo, kwargs, message):
        inc = self._first(repo)
        with pytest.raises(ValueError, match=message):
            repo.update_compliance(inc.id, **kwargs)

    def test_timeline_follow_up_remediation_attachment(self, repo):
        inc = self._first(repo)
        repo.add_timeline_entry(inc.id, "2025-12-19", "Forensics engaged")
        repo.add_follow_up(inc.id, "Quarterly phishing drill")
        repo.add_remediation_action(inc.id, "Enforce MFA")
        updated = repo.add_attachment(inc.id, "report.pdf", "https://example.org/report.pdf")
        assert updated.timeline[-1].text == "Forensics engaged"
        assert updated.follow_up_actions == ["Quarterly phishing drill"]
        assert updated.remediation_actions_list[-1] == "Enforce MFA"
        assert updated.attachments[-1].url == "https://example.org/report.pdf"
        assert len(updated.history) == 4

    def test_blank_text_rejected(self, repo):
        inc = self._first(repo)
        with pytest.raises(ValueError):
            repo.add_follow_up(inc.id, " ")


# ---------------------------------------------------------------------------
# Listing and filters
# ---------------------------------------------------------------------------


class TestListing:
    def test_risk_first_then_newest(self, repo):
        codes = [i.incident_id for i in repo.list_incidents()]
        # 005 and 001 carry an open PDPC obligation; the rest are ordered by discovery date.
        assert codes == [
            "INC-2025-005",
            "INC-2025-001",
            "INC-2025-002",
            "INC-2025-003",
            "INC-2025-004",
            "INC-2025-006",
        ]

    def test_idempotent(self, repo):
        assert repo.list_incidents() == repo.list_incidents()

    def test_filters(self, repo):
        repo.set_filters(severity="CRITICAL")
        assert {i.incident_id for i in repo.filter_incidents()} == {"INC-2025-002", "INC-2025-004"}
        repo.set_filters(severity="ALL", search="ransomware")
        assert [i.incident_id for i in repo.filter_incidents()] == ["INC-2025-004"]
        repo.set_filters(search="inc-2025-00", unit="Administration")
        assert [i.incident_id for i in repo.filter_incidents()] == ["INC-2025-003"]

    def test_unknown_filter_rejected(self, repo):
        with pytest.raises(ValueError):
            repo.set_filters(colour="red")


class TestBusinessUnits:
    def test_add_ignores_blank_and_duplicates(self, repo):
        before = repo.list_units()
        repo.add_business_unit("  ")
        repo.add_business_unit("Finance")
        assert repo.list_units() == before
        repo.add_business_unit("Library")
        assert repo.list_units()[-1] == "Library"

    def test_rename_cascades(self, repo):
        repo.set_filters(unit="IT Services")
        repo.rename_business_unit("IT Services", "Digital Services")
        assert "IT Services" not in repo.list_units()
        inc = next(i for i in repo.list_incidents() if i.incident_id == "INC-2025-001")
        assert inc.business_unit == "Digital Services"
        assert repo.filters().unit == "Digital Services"

    def test_remove_keeps_referenced_units_listed(self, repo):
        repo.set_filters(unit="Administration")
        repo.remove_business_unit("Administration")
        assert "Administration" in repo.list_units()  # INC-2025-003 still references it
        assert "Administration" not in repo._state.business_units
        assert repo.filters().unit == "ALL"

    def test_reset(self, repo):
        repo.add_incident({})
        repo.add_business_unit("Library")
        repo.reset()
        assert len(repo.list_incidents()) == 6
        assert "Library" not in repo.list_units()


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_round_trip(self, store):
        first = IncidentRepository(store, today=fixed_today)
        inc = first.add_incident({"description": "persist me", "discovered_date": "2025-12-01"})
        first.update_incident(inc.id, {"status": "CONTAINED"})
        draft = first.add_incident({"description": "draft"}, draft=True)

        second = IncidentRepository(store, today=fixed_today)
        assert second.list_incidents() == first.list_incidents()
        assert second.get_draft(draft.id) == first.get_draft(draft.id)
        assert second.get_incident(inc.id).history[-1].text == "status: INVESTIGATING -> CONTAINED"

    def test_every_mutation_is_saved(self, store):
        repo = IncidentRepository(store, today=fixed_today)
        repo.add_business_unit("Library")
        assert "Library" in store.load()["business_units"]

    def test_malformed_json_yields_seed_and_clears(self, store):
        store.save_raw("{not json")
        repo = IncidentRepository(store, today=fixed_today)
        assert len(repo.list_incidents()) == 6
        # The repository re-saved a clean snapshot after reseeding.
        assert len(store.load()["incidents"]) == 6

    def test_unmappable_entry_yields_seed(self, store):
        store.save({"incidents": [{"incident_id": "INC-2025-001"}]})
        repo = IncidentRepository(store, today=fixed_today)
        assert len(repo.list_incidents()) == 6

    @pytest.mark.parametrize("field,value", [("status", "BOGUS"), ("severity", "SEVERE"), ("pdpc_status", "MAYBE")])
    def test_out_of_range_value_yields_seed(self, store, field, value):
        IncidentRepository(store, today=fixed_today).add_incident({"description": "tampered"})
        snapshot = store.load()
        snapshot["incidents"][0][field] = value
        store.save(snapshot)
        repo = IncidentRepository(store, today=fixed_today)
        assert len(repo.list_incidents()) == 6
        assert all(i.description != "tampered" for i in repo.list_incidents())

    def test_non_draft_in_drafts_yields_seed(self, store):
        IncidentRepository(store, today=fixed_today).add_incident({}, draft=True)
        snapshot = store.load()
        snapshot["drafts"][0]["status"] = "INVESTIGATING"
        store.save(snapshot)
        repo = IncidentRepository(store, today=fixed_today)
        assert repo.list_drafts() == []

    def test_empty_incidents_yields_seed(self, store):
        store.save({"incidents": [], "drafts": [], "business_units": [], "filters": {}})
        repo = IncidentRepository(store, today=fixed_today)
        assert len(repo.list_incidents()) == 6

    def test_missing_collections_are_repaired(self, store):
        seeded = IncidentRepository(store, today=fixed_today)
        snapshot = store.load()
        store.save({"incidents": snapshot["incidents"]})
        repo = IncidentRepository(store, today=fixed_today)
        assert repo.list_drafts() == []
        assert repo.list_units() == seeded.list_units()
        assert repo.filters().severity == "ALL"

    def test_store_untouched_when_none(self):
        repo = IncidentRepository(store=None, today=fixed_today)
        repo.add_incident({})
        assert len(repo.list_incidents()) == 7

    def test_separate_stores_do_not_share_state(self):
        a = SnapshotStore("sqlite:///:memory:", key="a")
        IncidentRepository(a, today=fixed_today).add_incident({})
        b = SnapshotStore("sqlite:///:memory:", key="b")
        assert b.load() is None
        a.close()
        b.close()
