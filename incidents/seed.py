"""
incidents/seed.py -- Built-in demonstration incidents.

Loaded on first start, whenever the saved snapshot is absent or corrupt, when
the saved incident collection is empty, and on reset(). Each call returns
fresh objects with new ids so callers can mutate them freely.
"""

import uuid
from datetime import datetime, timezone

from core.models import Attachment, Incident, LogEntry


def _entries(*pairs: tuple[str, str]) -> list[LogEntry]:
    return [LogEntry(date=d, text=t) for d, t in pairs]


def seed_incidents() -> list[Incident]:
    now = datetime.now(timezone.utc).isoformat()
    return [
        Incident(
            id=str(uuid.uuid4()),
            incident_id="INC-2025-001",
            incident_date="2025-12-05",
            discovered_date="2025-12-05",
            reported_date="2025-12-06",
            breach_type="Phishing Attack",
            severity="HIGH",
            root_cause="Phishing/Social Engineering",
            affected_records=45,
            data_types=["Authentication Credentials", "Contact Information"],
            business_unit="IT Services",
            status="INVESTIGATING",
            description="Employee credentials exposed via phishing email impersonating VDI team.",
            remediation_actions="Reset affected credentials, blocked sender domain, tightened MFA prompts.",
            lessons_learned="Need stronger phishing simulations and targeted MFA reminders.",
            pdpc_notification_required=True,
            pdpc_status="YES",
            pdpc_notified=False,
            dpo_guidance_issued=True,
            created_at=now,
            updated_at=now,
            created_by="Jane DPO",
            attachments=[Attachment("phishing_email_screenshot.png"), Attachment("affected_users.csv")],
            timeline=_entries(
                ("2025-12-05", "Phishing email reported by staff"),
                ("2025-12-06", "Credentials reset for affected accounts"),
                ("2025-12-07", "Domain blocked, SOC monitoring"),
            ),
            activities=_entries(
                ("2025-12-06", "Issued remediation action"),
                ("2025-12-07", "MFA prompt hardening scheduled"),
            ),
            notes=_entries(("2025-12-07", "Awaiting updated user list from HR.")),
        ),
        Incident(
            id=str(uuid.uuid4()),
            incident_id="INC-2025-002",
            incident_date="2025-12-10",
            discovered_date="2025-12-10",
            reported_date="2025-12-11",
            breach_type="Misconfiguration",
            severity="CRITICAL",
            root_cause="Misconfigured Systems",
            affected_records=1250,
            data_types=["Personally Identifiable Information (PII)", "Financial Data"],
            business_unit="School of Business",
            status="CONTAINED",
            description="S3 bucket exposed student PII and payment records publicly.",
            remediation_actions="Closed public access, rotated keys, enabled object-lock, notified impacted parties.",
            lessons_learned="Automate configuration scanning pre-deployment.",
            pdpc_notification_required=True,
            pdpc_status="YES",
            pdpc_notified=True,
            dpo_guidance_issued=True,
            created_at=now,
            updated_at=now,
            created_by="Arun Compliance",
            attachments=[Attachment("s3-audit.txt"), Attachment("exposure_report.pdf")],
            timeline=_entries(
                ("2025-12-10", "Exposure detected by cloud config scan"),
                ("2025-12-10", "Bucket access restricted and keys rotated"),
                ("2025-12-11", "PDPC notification submitted"),
            ),
            activities=_entries(
                ("2025-12-11", "Ran follow-up scan: no additional exposures"),
                ("2025-12-12", "Planned training for cloud admins"),
            ),
            notes=_entries(("2025-12-12", "Need pen-test validation before closing.")),
        ),
        Incident(
            id=str(uuid.uuid4()),
            incident_id="INC-2025-003",
            incident_date="2025-12-08",
            discovered_date="2025-12-08",
            resolved_date="2025-12-10",
            breach_type="Accidental Disclosure",
            severity="MEDIUM",
            root_cause="Human Error/Negligence",
            affected_records=12,
            data_types=["Employment Data", "Contact Information"],
            business_unit="Administration",
            status="RESOLVED",
            description="Email sent to wrong recipient with salary data for 12 staff.",
            remediation_actions="Issued recall, notified intended recipients, updated mailing safeguards.",
            lessons_learned="Enable DLP rule for salary spreadsheets.",
            pdpc_notification_required=False,
            pdpc_status="NO",
            created_at=now,
            updated_at=now,
            created_by="Lee Ops",
            attachments=[Attachment("email_recall.log")],
            timeline=_entries(
                ("2025-12-08", "Incident reported by recipient"),
                ("2025-12-09", "DLP rule added for salary pattern"),
            ),
            activities=_entries(("2025-12-10", "Remediated: verified recall success")),
        ),
        Incident(
            id=str(uuid.uuid4()),
            incident_id="INC-2025-004",
            incident_date="2025-11-29",
            discovered_date="2025-11-30",
            reported_date="2025-12-01",
            breach_type="Ransomware/Malware",
            severity="CRITICAL",
            root_cause="Unpatched Software",
            affected_records=4200,
            data_types=["Health/Medical Records", "Authentication Credentials"],
            business_unit="School of Computing",
            status="CONTAINED",
            description="Ransomware encrypted lab file server; backups available.",
            remediation_actions="Isolated host, restored from backups, patched vulnerable service.",
            lessons_learned="Quarterly patch compliance checks needed.",
            pdpc_notification_required=True,
            pdpc_status="YES",
            pdpc_notified=True,
            dpo_guidance_issued=True,
            created_at=now,
            updated_at=now,
            created_by="SOC Lead",
            attachments=[Attachment("forensic_notes.pdf")],
            timeline=_entries(
                ("2025-11-30", "Host isolated, backups verified"),
                ("2025-12-01", "PDPC notified"),
                ("2025-12-02", "Restoration and patch completed"),
            ),
            activities=_entries(("2025-12-03", "Post-incident review scheduled")),
        ),
        Incident(
            id=str(uuid.uuid4()),
            incident_id="INC-2025-005",
            incident_date="2025-12-15",
            discovered_date="2025-12-15",
            breach_type="Third-Party/Vendor Breach",
            severity="HIGH",
            root_cause="Third-Party/Vendor Error",
            affected_records=280,
            data_types=["Personally Identifiable Information (PII)", "Employment Data"],
            business_unit="Research & Development",
            status="DETECTED",
            description="Vendor exposed research participant list via mis-sent email.",
            remediation_actions="Requested vendor purge, audit of distribution lists, added NDA reminder.",
            lessons_learned="Vendor governance checklist needed for mailouts.",
            pdpc_notification_required=True,
            pdpc_status="YES",
            pdpc_notified=False,
            dpo_guidance_issued=False,
            created_at=now,
            updated_at=now,
            created_by="DPO Desk",
            attachments=[Attachment("vendor_letter.docx")],
            timeline=_entries(("2025-12-15", "Vendor notified and acknowledged")),
            activities=_entries(("2025-12-15", "Awaiting vendor confirmation of purge")),
        ),
        Incident(
            id=str(uuid.uuid4()),
            incident_id="INC-2025-006",
            incident_date="2025-10-20",
            discovered_date="2025-10-21",
            resolved_date="2025-10-24",
            breach_type="Unauthorized Access",
            severity="MEDIUM",
            root_cause="Weak Passwords/Authentication",
            affected_records=88,
            data_types=["Academic Records", "Contact Information"],
            business_unit="Student Services",
            status="RESOLVED",
            description="Unauthorized access to student portal via reused passwords.",
            remediation_actions="Forced password reset, enabled MFA, ran awareness campaign.",
            lessons_learned="Password rotation alerts quarterly.",
            pdpc_notification_required=False,
            pdpc_status="NO",
            dpo_guidance_issued=True,
            created_at=now,
            updated_at=now,
            created_by="Security Ops",
            timeline=_entries(
                ("2025-10-21", "Credentials reset and MFA enabled"),
                ("2025-10-24", "Closed after verification"),
            ),
            activities=_entries(("2025-10-25", "Published MFA job-aid")),
        ),
    ]
