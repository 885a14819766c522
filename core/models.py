"""
core/models.py -- Domain dataclasses and vocabularies for BreachTracker.

These are pure data containers with zero logic. Lifecycle rules (code
allocation, response-time derivation, history diffs) live in
incidents/repository.py; derived signals live in core/classifier.py and
core/analytics.py.

Dates are ISO 8601 strings ("YYYY-MM-DD" for calendar dates, full ISO
timestamps for created_at / updated_at), matching the persisted snapshot.
"""

from dataclasses import dataclass, field
from typing import Optional

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

SEVERITIES = ("CRITICAL", "HIGH", "MEDIUM", "LOW")

# Lifecycle order. DRAFT only ever appears on records in TrackerState.drafts.
STATUSES = ("DRAFT", "DETECTED", "INVESTIGATING", "CONTAINED", "RESOLVED")

PDPC_STATUSES = ("YES", "NO", "UNDER_REVIEW")

FILTER_ALL = "ALL"

# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

BREACH_TYPES = [
    "Unauthorized Access",
    "Data Loss",
    "Ransomware/Malware",
    "Phishing Attack",
    "Insider Threat",
    "Third-Party/Vendor Breach",
    "Misconfiguration",
    "Physical Theft/Loss",
    "Accidental Disclosure",
    "System Vulnerability",
    "Other",
]

ROOT_CAUSES = [
    "Phishing/Social Engineering",
    "Weak Passwords/Authentication",
    "Misconfigured Systems",
    "Unpatched Software",
    "Inadequate Access Controls",
    "Third-Party/Vendor Error",
    "Human Error/Negligence",
    "Malicious Insider",
    "Physical Security Failure",
    "Unknown/Under Investigation",
]

DATA_TYPES = [
    "Personally Identifiable Information (PII)",
    "Financial Data",
    "Health/Medical Records",
    "Academic Records",
    "Employment Data",
    "Authentication Credentials",
    "Contact Information",
    "Biometric Data",
    "Other Sensitive Data",
]

BUSINESS_UNITS = [
    "School of Computing",
    "School of Business",
    "School of Engineering",
    "School of Health Sciences",
    "Administration",
    "Finance",
    "Human Resources",
    "IT Services",
    "Student Services",
    "Research & Development",
]


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class LogEntry:
    """A dated line in one of an incident's audit collections.

    Used for timeline, activities, notes, history and compliance_history.
    person is only filled in for activities logged against a named owner.
    """

    date: str
    text: str
    person: str = ""


@dataclass
class Attachment:
    name: str
    url: Optional[str] = None


@dataclass
class Incident:
    """A recorded breach event.

    response_time_hours is derived by the repository from discovered_date and
    resolved_date (today when unresolved) and is never taken from callers.
    Drafts are Incidents with status "DRAFT".
    """

    id: str
    incident_id: str
    discovered_date: Optional[str] = None
    incident_date: Optional[str] = None
    reported_date: Optional[str] = None
    resolved_date: Optional[str] = None
    breach_type: str = ""
    root_cause: str = ""
    severity: str = "LOW"
    affected_records: int = 0
    data_types: list[str] = field(default_factory=list)
    business_unit: str = ""
    response_time_hours: Optional[int] = None
    status: str = "INVESTIGATING"
    # Narrative
    description: str = ""
    remediation_actions: str = ""
    remediation_actions_list: list[str] = field(default_factory=list)
    lessons_learned: str = ""
    preventive_measures: str = ""
    improvements: str = ""
    follow_up_actions: list[str] = field(default_factory=list)
    detection_method: str = ""
    immediate_actions: str = ""
    # Compliance
    pdpc_notification_required: bool = False
    pdpc_status: str = "NO"  # YES | NO | UNDER_REVIEW
    pdpc_review_person: str = ""
    pdpc_notified: bool = False
    pdpc_notified_date: Optional[str] = None
    pdpc_notified_person: str = ""
    dpo_guidance_issued: bool = False
    dpo_notified_date: Optional[str] = None
    dpo_notified_person: str = ""
    # Audit
    created_at: str = ""
    updated_at: str = ""
    created_by: str = "DPO Desk"
    attachments: list[Attachment] = field(default_factory=list)
    timeline: list[LogEntry] = field(default_factory=list)
    activities: list[LogEntry] = field(default_factory=list)
    notes: list[LogEntry] = field(default_factory=list)
    history: list[LogEntry] = field(default_factory=list)
    compliance_history: list[LogEntry] = field(default_factory=list)


@dataclass
class Filters:
    severity: str = FILTER_ALL
    unit: str = FILTER_ALL
    status: str = FILTER_ALL
    search: str = ""


@dataclass
class TrackerState:
    """The complete mutable state, owned by a single IncidentRepository."""

    incidents: list[Incident] = field(default_factory=list)
    drafts: list[Incident] = field(default_factory=list)
    business_units: list[str] = field(default_factory=lambda: list(BUSINESS_UNITS))
    filters: Filters = field(default_factory=Filters)
