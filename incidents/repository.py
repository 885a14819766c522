"""
incidents/repository.py -- The single owner of BreachTracker state.

IncidentRepository holds the authoritative TrackerState (incidents, drafts,
business units, filters) and is the only code that mutates it. Every write
operation validates first, then mutates, then saves the full snapshot through
the SnapshotStore before returning -- an all-or-nothing transition.

Reads hand out deep copies. Callers can never reach into the live state and
change it in place; the only way to change state is a repository method.

Pattern: Repository + Data Mapper. The _incident_from_dict / _incident_to_dict
functions at the bottom translate between the JSON snapshot and the domain
dataclasses in core/models.py.

Usage:
    repo = IncidentRepository(SnapshotStore())
    incident = repo.add_incident({"discovered_date": "2025-12-01", ...})
    repo.update_incident(incident.id, {"status": "CONTAINED"})
    repo.list_incidents()
"""

import copy
import functools
import json
import logging
import threading
import uuid
from dataclasses import asdict, fields, replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from core.classifier import pdpc_risk, severity_from_inputs
from core.models import (
    BUSINESS_UNITS,
    FILTER_ALL,
    PDPC_STATUSES,
    SEVERITIES,
    STATUSES,
    Attachment,
    Filters,
    Incident,
    LogEntry,
    TrackerState,
)
from incidents.seed import seed_incidents
from storage.store import SnapshotStore, normalize_snapshot

logger = logging.getLogger("breachtracker.repository")

_DEFAULT_PREFIX = "INC-2025"

# ---------------------------------------------------------------------------
# Field contracts
# ---------------------------------------------------------------------------

_ALL_FIELDS = {f.name for f in fields(Incident)}

# Set by the repository only; callers may not supply them.
_SYSTEM_FIELDS = {"id", "incident_id", "response_time_hours", "created_at", "updated_at", "history"}

# Accepted in update payloads but never diffed or applied: updated_at is always
# refreshed and history is only ever appended by the repository itself.
_UNTRACKED_FIELDS = {"updated_at", "history"}

_EDITABLE_FIELDS = _ALL_FIELDS - _SYSTEM_FIELDS

_LOG_FIELDS = {"timeline", "activities", "notes", "history", "compliance_history"}
_STR_LIST_FIELDS = {"data_types", "remediation_actions_list", "follow_up_actions"}
_BOOL_FIELDS = {"pdpc_notification_required", "pdpc_notified", "dpo_guidance_issued"}
_DATE_FIELDS = {
    "incident_date",
    "discovered_date",
    "reported_date",
    "resolved_date",
    "pdpc_notified_date",
    "dpo_notified_date",
}
_OPTIONAL_STR_FIELDS = _DATE_FIELDS
_INT_FIELDS = {"affected_records", "response_time_hours"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_date(value: str) -> date:
    """Parse an ISO calendar date, accepting a full timestamp by truncating it."""
    return date.fromisoformat(value[:10])


def _coerce_log_entry(value: Any) -> LogEntry:
    if isinstance(value, LogEntry):
        return LogEntry(date=value.date, text=value.text, person=value.person or "")
    if isinstance(value, dict):
        return LogEntry(
            date=str(value.get("date") or ""),
            text=str(value.get("text") or ""),
            person=str(value.get("person") or ""),
        )
    raise ValueError(f"Invalid log entry: {value!r}")


def _coerce_attachment(value: Any) -> Attachment:
    """Accept Attachment objects, {"name", "url"} mappings, or bare strings.

    A bare string that looks like a URL becomes both the name and the url.
    """
    if isinstance(value, Attachment):
        return Attachment(name=value.name, url=value.url)
    if isinstance(value, str):
        return Attachment(name=value, url=value if value.startswith("http") else None)
    if isinstance(value, dict):
        return Attachment(name=str(value.get("name") or "Attachment"), url=value.get("url") or None)
    raise ValueError(f"Invalid attachment: {value!r}")


def _coerce(name: str, value: Any) -> Any:
    """Normalize a raw field value into the type the Incident dataclass holds.

    Raises ValueError for values that cannot be represented.
    """
    if name in _LOG_FIELDS:
        return [_coerce_log_entry(v) for v in (value or [])]
    if name == "attachments":
        return [_coerce_attachment(v) for v in (value or [])]
    if name in _STR_LIST_FIELDS:
        if isinstance(value, str):
            raise ValueError(f"{name} must be a list, not a string")
        return [str(v) for v in (value or [])]
    if name in _BOOL_FIELDS:
        return bool(value)
    if name in _DATE_FIELDS:
        if value in (None, ""):
            return None
        value = str(value)
        try:
            _parse_date(value)
        except ValueError:
            raise ValueError(f"{name} must be an ISO date (YYYY-MM-DD), got {value!r}") from None
        return value[:10]
    if name in _INT_FIELDS:
        if value in (None, ""):
            return None if name == "response_time_hours" else 0
        try:
            return int(float(value))
        except (TypeError, ValueError):
            raise ValueError(f"{name} must be a number, got {value!r}") from None
    if value is None:
        return ""
    return str(value)


def _readable(value: Any) -> str:
    """Render a field value for a history line."""
    if isinstance(value, list):
        return f"[{len(value)} items]"
    if isinstance(value, dict):
        return json.dumps(value)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _validate(incident: Incident, draft: bool = False) -> None:
    """Enforce enumerations and compliance preconditions on a candidate record."""
    if incident.severity not in SEVERITIES:
        raise ValueError(f"severity must be one of {', '.join(SEVERITIES)}, got {incident.severity!r}")
    if incident.status not in STATUSES:
        raise ValueError(f"status must be one of {', '.join(STATUSES)}, got {incident.status!r}")
    if draft != (incident.status == "DRAFT"):
        raise ValueError("DRAFT status is reserved for drafts" if not draft else "drafts must have DRAFT status")
    if incident.pdpc_status not in PDPC_STATUSES:
        raise ValueError(f"pdpc_status must be one of {', '.join(PDPC_STATUSES)}, got {incident.pdpc_status!r}")
    if incident.pdpc_status == "UNDER_REVIEW" and not incident.pdpc_review_person.strip():
        raise ValueError("pdpc_review_person is required when pdpc_status is UNDER_REVIEW")
    if incident.affected_records < 0:
        raise ValueError("affected_records must not be negative")


def _synchronized(method):
    """Serialize access to repository state.

    The HTTP API serves synchronous routes from a thread pool. History diffs
    read the old value and write the new one in separate steps, so no two
    repository calls may interleave.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IncidentRepository:
    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        id_prefix: str = _DEFAULT_PREFIX,
        today: Callable[[], date] = date.today,
    ) -> None:
        """Load state from store, falling back to the seed set.

        store=None keeps state in memory only (nothing is persisted).
        today is injectable so elapsed response times are deterministic.
        """
        self._store = store
        self._id_prefix = id_prefix
        self._today = today
        self._lock = threading.RLock()
        self._state = self._load()
        for incident in self._state.incidents + self._state.drafts:
            self._refresh_response_time(incident)
        self._persist()

    # ------------------------------------------------------------------
    # Loading and persistence
    # ------------------------------------------------------------------

    def _seed_state(self) -> TrackerState:
        return TrackerState(incidents=seed_incidents(), business_units=list(BUSINESS_UNITS))

    def _load(self) -> TrackerState:
        raw = self._store.load() if self._store is not None else None
        if raw is None:
            return self._seed_state()
        shaped = normalize_snapshot(raw, BUSINESS_UNITS)
        try:
            state = TrackerState(
                incidents=[_incident_from_dict(d) for d in shaped["incidents"]],
                drafts=[_incident_from_dict(d) for d in shaped["drafts"]],
                business_units=shaped["business_units"],
                filters=Filters(**shaped["filters"]),
            )
            for incident in state.incidents:
                _validate(incident)
            for draft in state.drafts:
                _validate(draft, draft=True)
        except (TypeError, ValueError, KeyError) as exc:
            logger.warning("Saved state could not be read, resetting to seed data: %s", exc)
            self._store.clear()
            return self._seed_state()
        if not state.incidents:
            logger.info("Saved state has no incidents, loading seed data")
            return self._seed_state()
        return state

    def _persist(self) -> None:
        if self._store is not None:
            self._store.save(self._snapshot())

    def _snapshot(self) -> dict:
        return {
            "incidents": [_incident_to_dict(i) for i in self._state.incidents],
            "drafts": [_incident_to_dict(d) for d in self._state.drafts],
            "business_units": list(self._state.business_units),
            "filters": asdict(self._state.filters),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _today_iso(self) -> str:
        return self._today().isoformat()

    def _refresh_response_time(self, incident: Incident) -> None:
        """Hours from discovery to resolution, or to today while unresolved.

        An open incident therefore reports elapsed time-to-date, not None.
        None only when there is no usable discovered date.
        """
        if not incident.discovered_date:
            incident.response_time_hours = None
            return
        try:
            start = _parse_date(incident.discovered_date)
            end = _parse_date(incident.resolved_date) if incident.resolved_date else self._today()
        except ValueError:
            incident.response_time_hours = None
            return
        incident.response_time_hours = max(0, (end - start).days * 24)

    @staticmethod
    def _index(collection: list[Incident], incident_id: str) -> Optional[int]:
        return next((idx for idx, inc in enumerate(collection) if inc.id == incident_id), None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @_synchronized
    def next_incident_id(self) -> str:
        """Return the code the next add_incident() call will allocate.

        count(incidents) + count(drafts) + 1, so a code can repeat after a
        draft has been discarded.
        """
        number = len(self._state.incidents) + len(self._state.drafts) + 1
        return f"{self._id_prefix}-{number:03d}"

    @_synchronized
    def get_incident(self, incident_id: str) -> Optional[Incident]:
        idx = self._index(self._state.incidents, incident_id)
        return copy.deepcopy(self._state.incidents[idx]) if idx is not None else None

    @_synchronized
    def get_draft(self, draft_id: str) -> Optional[Incident]:
        idx = self._index(self._state.drafts, draft_id)
        return copy.deepcopy(self._state.drafts[idx]) if idx is not None else None

    @_synchronized
    def list_incidents(self) -> list[Incident]:
        """All incidents, PDPC-risk incidents first, newest discovery first within each group."""
        by_date = sorted(self._state.incidents, key=lambda i: i.discovered_date or "", reverse=True)
        ordered = sorted(by_date, key=pdpc_risk, reverse=True)
        return copy.deepcopy(ordered)

    @_synchronized
    def filter_incidents(self) -> list[Incident]:
        """list_incidents() narrowed by the stored filters."""
        f = self._state.filters
        search = f.search.lower()
        return [
            inc
            for inc in self.list_incidents()
            if (f.severity == FILTER_ALL or inc.severity == f.severity)
            and (f.unit == FILTER_ALL or inc.business_unit == f.unit)
            and (f.status == FILTER_ALL or inc.status == f.status)
            and (not search or search in inc.incident_id.lower() or search in (inc.description or "").lower())
        ]

    @_synchronized
    def list_drafts(self) -> list[Incident]:
        return copy.deepcopy(sorted(self._state.drafts, key=lambda d: d.discovered_date or "", reverse=True))

    @_synchronized
    def list_units(self) -> list[str]:
        """Registry units plus any unit referenced by an incident or draft, first-seen order."""
        referenced = [i.business_unit for i in self._state.incidents + self._state.drafts]
        return [u for u in dict.fromkeys(self._state.business_units + referenced) if u]

    @_synchronized
    def filters(self) -> Filters:
        return copy.deepcopy(self._state.filters)

    # ------------------------------------------------------------------
    # Incident and draft lifecycle
    # ------------------------------------------------------------------

    @_synchronized
    def add_incident(self, payload: dict, draft: bool = False) -> Incident:
        """Create a draft (appended) or a submitted incident (prepended).

        Identity and derived fields in payload (id, incident_id,
        response_time_hours, timestamps, history) are ignored. Unknown fields
        raise ValueError. Missing severity is inferred from
        affected_records and data_types.
        """
        payload = dict(payload or {})
        unknown = set(payload) - _ALL_FIELDS
        if unknown:
            raise ValueError(f"Unknown incident field(s): {', '.join(sorted(unknown))}")
        values = {k: _coerce(k, v) for k, v in payload.items() if k in _EDITABLE_FIELDS}

        if not values.get("severity"):
            values["severity"] = severity_from_inputs(values.get("affected_records", 0), values.get("data_types", []))
        values["status"] = "DRAFT" if draft else (values.get("status") or "INVESTIGATING")
        if not values.get("pdpc_status"):
            values["pdpc_status"] = "YES" if values.get("pdpc_notification_required") else "NO"
        if "remediation_actions_list" not in values:
            text = values.get("remediation_actions", "")
            values["remediation_actions_list"] = [text] if text else []
        if not values.get("created_by"):
            values.pop("created_by", None)

        now = _now_iso()
        incident = Incident(
            id=str(uuid.uuid4()),
            incident_id=self.next_incident_id(),
            created_at=now,
            updated_at=now,
            **values,
        )
        _validate(incident, draft=draft)
        self._refresh_response_time(incident)

        if draft:
            self._state.drafts.append(incident)
        else:
            self._state.incidents.insert(0, incident)
        self._persist()
        logger.info("Created %s %s", "draft" if draft else "incident", incident.incident_id)
        return copy.deepcopy(incident)

    @_synchronized
    def promote_draft(self, draft_id: str) -> Optional[Incident]:
        """Submit a draft: same id and code, status INVESTIGATING. None if not found."""
        idx = self._index(self._state.drafts, draft_id)
        if idx is None:
            return None
        incident = replace(self._state.drafts[idx], status="INVESTIGATING", updated_at=_now_iso())
        self._refresh_response_time(incident)
        del self._state.drafts[idx]
        self._state.incidents.insert(0, incident)
        self._persist()
        logger.info("Promoted draft %s", incident.incident_id)
        return copy.deepcopy(incident)

    @_synchronized
    def discard_draft(self, draft_id: str) -> None:
        idx = self._index(self._state.drafts, draft_id)
        if idx is not None:
            del self._state.drafts[idx]
        self._persist()

    @_synchronized
    def update_incident(self, incident_id: str, updates: dict) -> Optional[Incident]:
        """Apply field updates to an incident and record what changed.

        Each field uses value equality (lists compare element-wise). When any
        field differs, one history entry is appended listing every changed
        field as "field: old -> new", joined by " | ". updated_at and the
        response time are refreshed even when nothing changed.

        Returns the updated incident, or None if incident_id is unknown.
        Raises ValueError, before touching state, for non-editable or unknown
        fields and for values that break an invariant.
        """
        idx = self._index(self._state.incidents, incident_id)
        if idx is None:
            return None
        current = self._state.incidents[idx]

        changes: dict[str, Any] = {}
        for key, value in (updates or {}).items():
            if key in _UNTRACKED_FIELDS:
                continue
            if key not in _EDITABLE_FIELDS:
                raise ValueError(f"Field {key!r} cannot be updated")
            changes[key] = _coerce(key, value)

        candidate = replace(current, **changes)
        _validate(candidate)

        changed = [k for k, v in changes.items() if getattr(current, k) != v]
        history = list(current.history)
        if changed:
            text = " | ".join(f"{k}: {_readable(getattr(current, k))} -> {_readable(changes[k])}" for k in changed)
            history.append(LogEntry(date=_now_iso(), text=text))
        candidate.history = history
        candidate.updated_at = _now_iso()
        self._refresh_response_time(candidate)

        self._state.incidents[idx] = candidate
        self._persist()
        return copy.deepcopy(candidate)

    def _append_entry(self, incident_id: str, field_name: str, text: str) -> Optional[Incident]:
        idx = self._index(self._state.incidents, incident_id)
        if idx is None:
            return None
        incident = self._state.incidents[idx]
        getattr(incident, field_name).append(LogEntry(date=self._today_iso(), text=text))
        incident.updated_at = _now_iso()
        self._persist()
        return copy.deepcopy(incident)

    @_synchronized
    def add_note(self, incident_id: str, text: str) -> Optional[Incident]:
        return self._append_entry(incident_id, "notes", text)

    @_synchronized
    def add_activity(self, incident_id: str, text: str) -> Optional[Incident]:
        return self._append_entry(incident_id, "activities", text)

    @_synchronized
    def add_timeline_entry(self, incident_id: str, entry_date: str, text: str) -> Optional[Incident]:
        if not text or not text.strip():
            raise ValueError("Timeline text is required")
        current = self.get_incident(incident_id)
        if current is None:
            return None
        entry = LogEntry(date=_coerce("incident_date", entry_date) or self._today_iso(), text=text.strip())
        return self.update_incident(incident_id, {"timeline": current.timeline + [entry]})

    @_synchronized
    def add_follow_up(self, incident_id: str, text: str) -> Optional[Incident]:
        if not text or not text.strip():
            raise ValueError("Follow-up action text is required")
        current = self.get_incident(incident_id)
        if current is None:
            return None
        return self.update_incident(incident_id, {"follow_up_actions": current.follow_up_actions + [text.strip()]})

    @_synchronized
    def add_remediation_action(self, incident_id: str, text: str) -> Optional[Incident]:
        if not text or not text.strip():
            raise ValueError("Remediation action text is required")
        current = self.get_incident(incident_id)
        if current is None:
            return None
        return self.update_incident(
            incident_id, {"remediation_actions_list": current.remediation_actions_list + [text.strip()]}
        )

    @_synchronized
    def add_attachment(self, incident_id: str, name: str, url: Optional[str] = None) -> Optional[Incident]:
        if not name or not name.strip():
            raise ValueError("Attachment name is required")
        current = self.get_incident(incident_id)
        if current is None:
            return None
        attachment = Attachment(name=name.strip(), url=url or None)
        return self.update_incident(incident_id, {"attachments": current.attachments + [attachment]})

    @_synchronized
    def resolve_incident(
        self,
        incident_id: str,
        lessons_learned: str,
        preventive_measures: str,
        improvements: str,
    ) -> Optional[Incident]:
        """Close an incident. All three close-out narratives are required.

        RESOLVED incidents stay editable; resolving again just overwrites the
        narratives and resolved date.
        """
        required = {
            "lessons_learned": lessons_learned,
            "preventive_measures": preventive_measures,
            "improvements": improvements,
        }
        missing = [k for k, v in required.items() if not v or not v.strip()]
        if missing:
            raise ValueError(f"Required to resolve: {', '.join(missing)}")
        if self._index(self._state.incidents, incident_id) is None:
            return None
        return self.update_incident(
            incident_id,
            {
                "status": "RESOLVED",
                "resolved_date": self._today_iso(),
                **{k: v.strip() for k, v in required.items()},
            },
        )

    @_synchronized
    def update_compliance(
        self,
        incident_id: str,
        pdpc_status: str,
        review_person: str = "",
        pdpc_notified: bool = False,
        pdpc_notified_person: str = "",
        dpo_guidance_issued: bool = False,
        dpo_notified_person: str = "",
    ) -> Optional[Incident]:
        """Record a compliance decision and append it to compliance_history.

        Named contacts are required: a reviewer for UNDER_REVIEW, and a
        person-in-charge for each channel marked as notified. Notification
        dates default to today the first time a channel is marked notified.
        """
        review_person = (review_person or "").strip()
        pdpc_notified_person = (pdpc_notified_person or "").strip()
        dpo_notified_person = (dpo_notified_person or "").strip()
        if pdpc_status not in PDPC_STATUSES:
            raise ValueError(f"pdpc_status must be one of {', '.join(PDPC_STATUSES)}, got {pdpc_status!r}")
        if pdpc_status == "UNDER_REVIEW" and not review_person:
            raise ValueError("Reviewer required for UNDER_REVIEW")
        if pdpc_notified and not pdpc_notified_person:
            raise ValueError("PDPC contact required when notified")
        if dpo_guidance_issued and not dpo_notified_person:
            raise ValueError("DPO contact required when notified")

        current = self.get_incident(incident_id)
        if current is None:
            return None

        pdpc_part = f"PDPC Notified: {'Yes' if pdpc_notified else 'No'}"
        if pdpc_notified_person:
            pdpc_part += f" ({pdpc_notified_person})"
        dpo_part = f"DPO Notified: {'Yes' if dpo_guidance_issued else 'No'}"
        if dpo_notified_person:
            dpo_part += f" ({dpo_notified_person})"
        entry = LogEntry(date=self._today_iso(), text=f"{pdpc_status} | {pdpc_part} | {dpo_part}")

        updates: dict[str, Any] = {
            "pdpc_status": pdpc_status,
            "pdpc_review_person": review_person,
            "pdpc_notified": pdpc_notified,
            "pdpc_notified_person": pdpc_notified_person,
            "dpo_guidance_issued": dpo_guidance_issued,
            "dpo_notified_person": dpo_notified_person,
            "compliance_history": current.compliance_history + [entry],
        }
        if pdpc_notified and not current.pdpc_notified_date:
            updates["pdpc_notified_date"] = self._today_iso()
        if dpo_guidance_issued and not current.dpo_notified_date:
            updates["dpo_notified_date"] = self._today_iso()
        return self.update_incident(incident_id, updates)

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    @_synchronized
    def set_filters(self, **changes: str) -> Filters:
        """Merge changes into the stored filters. Unknown keys raise ValueError."""
        known = {f.name for f in fields(Filters)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown filter(s): {', '.join(sorted(unknown))}")
        self._state.filters = replace(self._state.filters, **{k: str(v) for k, v in changes.items() if v is not None})
        self._persist()
        return copy.deepcopy(self._state.filters)

    # ------------------------------------------------------------------
    # Business unit registry
    # ------------------------------------------------------------------

    @_synchronized
    def add_business_unit(self, name: str) -> None:
        trimmed = (name or "").strip()
        if not trimmed or trimmed in self._state.business_units:
            return
        self._state.business_units.append(trimmed)
        self._persist()

    @_synchronized
    def rename_business_unit(self, old_name: str, new_name: str) -> None:
        """Rename a unit everywhere: registry, incidents, drafts and the active filter."""
        new_trimmed = (new_name or "").strip()
        if not old_name or not new_trimmed:
            return
        units = [new_trimmed if u == old_name else u for u in self._state.business_units]
        self._state.business_units = list(dict.fromkeys(units))
        for incident in self._state.incidents + self._state.drafts:
            if incident.business_unit == old_name:
                incident.business_unit = new_trimmed
        if self._state.filters.unit == old_name:
            self._state.filters.unit = new_trimmed
        self._persist()

    @_synchronized
    def remove_business_unit(self, name: str) -> None:
        """Drop a unit from the registry. Incidents keep their literal unit value."""
        if not name:
            return
        self._state.business_units = [u for u in self._state.business_units if u != name]
        if self._state.filters.unit == name:
            self._state.filters.unit = FILTER_ALL
        self._persist()

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    @_synchronized
    def reset(self) -> None:
        """Discard all state and restore the seed incidents."""
        self._state = self._seed_state()
        for incident in self._state.incidents:
            self._refresh_response_time(incident)
        self._persist()
        logger.info("State reset to seed data")


# ---------------------------------------------------------------------------
# Mappers (snapshot dict <-> domain dataclass)
# ---------------------------------------------------------------------------


def _incident_to_dict(incident: Incident) -> dict:
    return asdict(incident)


def _incident_from_dict(data: dict) -> Incident:
    """Build an Incident from a snapshot entry.

    Unknown keys are dropped. Raises ValueError when the entry is not a
    mapping, lacks an identity, or holds values that cannot be coerced.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Incident entry must be an object, got {type(data).__name__}")
    if not data.get("id") or not data.get("incident_id"):
        raise ValueError("Incident entry is missing id or incident_id")
    values = {}
    for key, value in data.items():
        if key not in _ALL_FIELDS:
            continue
        if key in ("id", "incident_id", "created_at", "updated_at"):
            values[key] = str(value or "")
        else:
            values[key] = _coerce(key, value)
    return Incident(**values)
