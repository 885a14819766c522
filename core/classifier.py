"""
classifier.py -- Derives severity, keyword tags, vulnerability class, compliance
score and recurring patterns from incident data.

No side effects. Every function here is a pure function of its arguments, so
callers can recompute signals on every read without caching.

The keyword tables and the ordered vulnerability rules are configuration:
IncidentClassifier takes them in its constructor and the module-level
defaults are used when nothing is passed.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .models import Incident

# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------

def round_half_up(value: float, digits: int = 0) -> float:
    """Round with halves going up, as SQLite ROUND() does (0.125 -> 0.13)."""
    result = Decimal(str(value)).quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP)
    return int(result) if digits == 0 else float(result)


SEVERITY_RANK: dict[str, int] = {
    "CRITICAL": 4,
    "HIGH": 3,
    "MEDIUM": 2,
    "LOW": 1,
}

# Score penalty per incident. Unknown severities are charged as LOW.
_SEVERITY_PENALTY: dict[str, int] = {
    "CRITICAL": 18,
    "HIGH": 12,
    "MEDIUM": 7,
    "LOW": 4,
}


def severity_from_inputs(records: int, data_types: list[str]) -> str:
    """Infer severity from the affected-record count and exposed data types.

    Thresholds are checked in order and the first match wins:
      CRITICAL -- 1000+ records, or any Financial / Health data type
      HIGH     -- 100+ records, or Authentication Credentials exposed
      MEDIUM   -- 10+ records
      LOW      -- everything else
    """
    data_types = data_types or []
    sensitive = any("Financial" in d or "Health" in d for d in data_types)
    if records >= 1000 or sensitive:
        return "CRITICAL"
    if records >= 100 or "Authentication Credentials" in data_types:
        return "HIGH"
    if records >= 10:
        return "MEDIUM"
    return "LOW"


def pdpc_risk(incident: Incident) -> bool:
    """Return True when regulatory notification attention is still outstanding."""
    needs_attention = incident.pdpc_notification_required or incident.pdpc_status == "UNDER_REVIEW"
    outstanding = not incident.pdpc_notified or not incident.dpo_guidance_issued
    return bool(needs_attention and outstanding)


def compliance_score(incidents: list[Incident]) -> int:
    """Return a [0, 100] heuristic of an incident set's regulatory health.

    The running total is only clamped once, after every incident has been
    applied, so bonuses can offset earlier penalties.
    """
    if not incidents:
        return 100
    score = 100
    for incident in incidents:
        score -= _SEVERITY_PENALTY.get(incident.severity, _SEVERITY_PENALTY["LOW"])
        if incident.response_time_hours is not None and incident.response_time_hours <= 24:
            score += 3
        if incident.status == "RESOLVED":
            score += 2
        if incident.pdpc_notification_required and not incident.pdpc_notified:
            score -= 4
    return max(0, min(100, round_half_up(score)))


# ---------------------------------------------------------------------------
# Keyword tables
# ---------------------------------------------------------------------------

TRIGGER_KEYWORDS: dict[str, list[str]] = {
    "Phishing": ["phishing", "spoof", "domain", "email"],
    "Misconfig": ["misconfig", "open bucket", "public access", "exposed", "s3"],
    "Access Control": ["unauthorized", "access", "privilege", "credential"],
    "Patch Gap": ["unpatched", "vulnerability", "cve", "patch"],
    "Human Error": ["accidental", "mistake", "wrong", "mis-sent", "typo"],
    "Vendor": ["vendor", "third-party", "supplier"],
}

ACTION_KEYWORDS: dict[str, list[str]] = {
    "Reset Credentials": ["reset password", "reset credentials", "lock account"],
    "Block/Filter": ["block domain", "block", "filter", "blacklist"],
    "Patch/Fix": ["patch", "fixed", "update", "upgrade"],
    "Awareness/Training": ["train", "awareness", "education", "simulate"],
    "DLP/Controls": ["dlp", "rule", "control", "mfa", "2fa"],
    "Review/Policy": ["policy", "review", "procedure", "checklist"],
}

_TOP_PATTERNS = 5


# ---------------------------------------------------------------------------
# Vulnerability rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VulnerabilityRule:
    """One entry in the ordered vulnerability rule list.

    A rule holds when the breach type is one of breach_types, or the root
    cause contains any of root_cause_terms, or the lowercase narrative blob
    contains any of blob_terms. catch_all rules always hold.
    """

    key: str
    label: str
    breach_types: tuple[str, ...] = ()
    root_cause_terms: tuple[str, ...] = ()
    blob_terms: tuple[str, ...] = ()
    catch_all: bool = False


# Order is significant: the first rule that holds wins. OTHER must stay last.
VULNERABILITY_RULES: tuple[VulnerabilityRule, ...] = (
    VulnerabilityRule(
        key="PHISHING",
        label="Phishing / Social Engineering",
        breach_types=("Phishing Attack",),
        root_cause_terms=("Phishing",),
        blob_terms=("phish", "spoof"),
    ),
    VulnerabilityRule(
        key="MISCONFIG",
        label="Access Misconfigurations & Exposure",
        breach_types=("Misconfiguration",),
        root_cause_terms=("Misconfigured",),
        blob_terms=("misconfig", "open bucket", "public access", "exposed"),
    ),
    VulnerabilityRule(
        key="ACCESS",
        label="Access Control / Credential Misuse",
        breach_types=("Unauthorized Access",),
        root_cause_terms=("Access", "Weak Password"),
        blob_terms=("unauthorized", "privilege", "credential"),
    ),
    VulnerabilityRule(
        key="PATCH",
        label="Patch & Vulnerability Management",
        breach_types=("System Vulnerability", "Ransomware/Malware"),
        root_cause_terms=("Unpatched",),
        blob_terms=("cve", "patch"),
    ),
    VulnerabilityRule(
        key="HUMAN",
        label="Human Error / Data Handling",
        breach_types=("Accidental Disclosure",),
        root_cause_terms=("Human Error",),
        blob_terms=("mis-sent", "typo", "sent to wrong"),
    ),
    VulnerabilityRule(
        key="VENDOR",
        label="Third-Party / Vendor",
        breach_types=("Third-Party/Vendor Breach",),
        root_cause_terms=("Vendor",),
        blob_terms=("vendor", "third-party"),
    ),
    VulnerabilityRule(key="OTHER", label="Other / Unknown", catch_all=True),
)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class IncidentTags:
    triggers: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)


@dataclass
class VulnerabilityClassSummary:
    key: str
    label: str
    count: int = 0
    open: int = 0
    frequency: float = 0.0  # percent of all incidents, one decimal
    top_severity: str = "LOW"
    sample: Optional[str] = None  # "<incident code> (<breach type>)"


@dataclass
class VulnerabilitySummary:
    total: int
    items: list[VulnerabilityClassSummary]


@dataclass
class PatternStat:
    name: str
    count: int
    avg_response_hours: Optional[float]


@dataclass
class PatternSummary:
    triggers: list[PatternStat]
    actions: list[PatternStat]
    max_value: int  # largest count across both tables, at least 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def text_blob(incident: Incident) -> str:
    """Join the narrative fields into one lowercase string for keyword matching."""
    parts = [
        incident.description,
        incident.remediation_actions,
        incident.immediate_actions,
        incident.lessons_learned,
        incident.preventive_measures,
        incident.improvements,
        " ".join(incident.follow_up_actions or []),
    ]
    return " ".join(p or "" for p in parts).lower()


def _match_keywords(blob: str, table: dict[str, list[str]]) -> list[str]:
    return [group for group, keywords in table.items() if any(k in blob for k in keywords)]


def _rule_holds(rule: VulnerabilityRule, incident: Incident, blob: str) -> bool:
    if rule.catch_all:
        return True
    if incident.breach_type in rule.breach_types:
        return True
    root_cause = incident.root_cause or ""
    if any(term in root_cause for term in rule.root_cause_terms):
        return True
    return any(term in blob for term in rule.blob_terms)


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class IncidentClassifier:
    """Keyword tagging, vulnerability classification and pattern aggregation.

    Usage:
        classifier = IncidentClassifier()                      # default tables
        classifier = IncidentClassifier(trigger_keywords={...})  # test override
        tags = classifier.derive_tags(incident)
        rule = classifier.classify_vulnerability(incident)
    """

    def __init__(
        self,
        trigger_keywords: Optional[dict[str, list[str]]] = None,
        action_keywords: Optional[dict[str, list[str]]] = None,
        vulnerability_rules: Optional[tuple[VulnerabilityRule, ...]] = None,
    ) -> None:
        self.trigger_keywords = trigger_keywords if trigger_keywords is not None else TRIGGER_KEYWORDS
        self.action_keywords = action_keywords if action_keywords is not None else ACTION_KEYWORDS
        rules = tuple(vulnerability_rules if vulnerability_rules is not None else VULNERABILITY_RULES)
        if not rules or not rules[-1].catch_all:
            raise ValueError("The last vulnerability rule must be a catch_all rule.")
        self.vulnerability_rules = rules

    def derive_tags(self, incident: Incident) -> IncidentTags:
        """Return the trigger and action groups whose keywords appear in the narrative."""
        blob = text_blob(incident)
        return IncidentTags(
            triggers=_match_keywords(blob, self.trigger_keywords),
            actions=_match_keywords(blob, self.action_keywords),
        )

    def classify_vulnerability(self, incident: Incident) -> VulnerabilityRule:
        """Return the first rule that holds for this incident."""
        blob = text_blob(incident)
        for rule in self.vulnerability_rules:
            if _rule_holds(rule, incident, blob):
                return rule
        # Unreachable: the constructor guarantees a trailing catch_all rule.
        return self.vulnerability_rules[-1]

    def summarize_vulnerabilities(self, incidents: list[Incident]) -> VulnerabilitySummary:
        """Aggregate incidents per vulnerability class.

        Every configured class is present in the result, including classes
        with zero incidents. Sorted by count descending, then by top severity
        rank descending.
        """
        total = len(incidents) or 1
        entries = {rule.key: VulnerabilityClassSummary(key=rule.key, label=rule.label) for rule in self.vulnerability_rules}
        for incident in incidents:
            entry = entries[self.classify_vulnerability(incident).key]
            entry.count += 1
            entry.frequency = round_half_up(entry.count / total * 100, 1)
            if incident.status != "RESOLVED":
                entry.open += 1
            if SEVERITY_RANK.get(incident.severity, 0) > SEVERITY_RANK.get(entry.top_severity, 0):
                entry.top_severity = incident.severity
            if entry.sample is None:
                entry.sample = f"{incident.incident_id} ({incident.breach_type})"
        items = sorted(
            entries.values(),
            key=lambda e: (-e.count, -SEVERITY_RANK.get(e.top_severity, 0)),
        )
        return VulnerabilitySummary(total=total, items=items)

    def aggregate_patterns(self, incidents: list[Incident]) -> PatternSummary:
        """Count trigger and action groups across incidents.

        Average response time per group only considers incidents with a
        non-zero response time; a group with none reports None.
        """
        trigger_counts: dict[str, int] = {}
        action_counts: dict[str, int] = {}
        speeds: dict[str, list[int]] = {}
        for incident in incidents:
            tags = self.derive_tags(incident)
            rt = incident.response_time_hours
            for counts, groups in ((trigger_counts, tags.triggers), (action_counts, tags.actions)):
                for group in groups:
                    counts[group] = counts.get(group, 0) + 1
                    if rt:
                        speeds.setdefault(group, []).append(rt)

        def top(counts: dict[str, int]) -> list[PatternStat]:
            ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:_TOP_PATTERNS]
            stats = []
            for name, count in ranked:
                samples = speeds.get(name)
                avg = sum(samples) / len(samples) if samples else None
                stats.append(PatternStat(name=name, count=count, avg_response_hours=avg))
            return stats

        triggers = top(trigger_counts)
        actions = top(action_counts)
        max_value = max([1] + [s.count for s in triggers] + [s.count for s in actions])
        return PatternSummary(triggers=triggers, actions=actions, max_value=max_value)


# ---------------------------------------------------------------------------
# Module-level convenience wrappers (default tables)
# ---------------------------------------------------------------------------

_default = IncidentClassifier()


def derive_tags(incident: Incident) -> IncidentTags:
    return _default.derive_tags(incident)


def classify_vulnerability(incident: Incident) -> VulnerabilityRule:
    return _default.classify_vulnerability(incident)


def summarize_vulnerabilities(incidents: list[Incident]) -> VulnerabilitySummary:
    return _default.summarize_vulnerabilities(incidents)


def aggregate_patterns(incidents: list[Incident]) -> PatternSummary:
    return _default.aggregate_patterns(incidents)
