"""
formatter.py -- Renders incidents, scores and query rows to the terminal, JSON or CSV.
"""

import csv
import io
import json
import os
import sys
from dataclasses import asdict, is_dataclass
from typing import Any, Optional

from .models import Incident

W = 68  # output width

# ---------------------------------------------------------------------------
# ANSI color control
# ---------------------------------------------------------------------------


def _use_color() -> bool:
    """Return True if stdout is a TTY and color has not been disabled.

    Respects NO_COLOR env var (https://no-color.org) and checks sys.stdout.isatty().
    Can be overridden by calling disable_color().
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


_color_enabled: Optional[bool] = None  # None = auto-detect


def disable_color() -> None:
    """Force-disable color output (called when --no-color flag is set)."""
    global _color_enabled
    _color_enabled = False


def _color_active() -> bool:
    if _color_enabled is not None:
        return _color_enabled
    return _use_color()


# ---------------------------------------------------------------------------
# ANSI code helpers -- return empty string when color is off
# ---------------------------------------------------------------------------

SEVERITY_COLORS = {
    "CRITICAL": "\033[91m",  # red
    "HIGH": "\033[93m",  # yellow
    "MEDIUM": "\033[94m",  # blue
    "LOW": "\033[92m",  # green
}


def _reset() -> str:
    return "\033[0m" if _color_active() else ""


def _bold() -> str:
    return "\033[1m" if _color_active() else ""


def _dim() -> str:
    return "\033[2m" if _color_active() else ""


def _red() -> str:
    return "\033[91m" if _color_active() else ""


def _s_color(severity: str) -> str:
    return SEVERITY_COLORS.get(severity, "") if _color_active() else ""


# ---------------------------------------------------------------------------
# Layout helpers
# ---------------------------------------------------------------------------


def _bar(char: str = "═") -> str:
    return char * W


def _section(title: str) -> str:
    bold = _bold()
    reset = _reset()
    return f"\n  {bold}{title}{reset}\n  {'─' * (W - 2)}"


def _wrap(text: str, indent: int = 4, width: int = W) -> str:
    """Simple word-wrap at `width` chars with leading indent."""
    words = text.split()
    lines = []
    line = " " * indent
    for word in words:
        if len(line) + len(word) + 1 > width:
            lines.append(line)
            line = " " * indent + word
        else:
            line += ("" if line.strip() == "" else " ") + word
    if line.strip():
        lines.append(line)
    return "\n".join(lines)


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


# ---------------------------------------------------------------------------
# Terminal renderers
# ---------------------------------------------------------------------------


def print_incident(incident: Incident, risk: bool = False, vulnerability: str = "") -> None:
    """Print the full record for one incident."""
    bold = _bold()
    reset = _reset()
    red = _red()
    s_color = _s_color(incident.severity)

    # -- Header ---------------------------------------------------------------
    print(f"\n{bold}{_bar()}{reset}")
    risk_tag = f"  {bold}{red}*** PDPC ACTION PENDING ***{reset}" if risk else ""
    print(f"  {bold}{incident.incident_id}{reset}  │  {s_color}{incident.severity}{reset}  │  {incident.status}{risk_tag}")
    print(f"{bold}{_bar()}{reset}")

    # -- Overview -------------------------------------------------------------
    print(_section("OVERVIEW"))
    for label, val in [
        ("Business unit", incident.business_unit),
        ("Breach type", incident.breach_type),
        ("Root cause", incident.root_cause),
        ("Vulnerability class", vulnerability),
        ("Affected records", incident.affected_records),
        ("Data types", ", ".join(incident.data_types)),
        ("Discovered", incident.discovered_date),
        ("Resolved", incident.resolved_date),
        ("Response time (h)", incident.response_time_hours),
        ("Created by", incident.created_by),
    ]:
        if val not in (None, ""):
            print(f"    {label:<22}  {val}")

    if incident.description:
        print(_section("WHAT HAPPENED?"))
        print(_wrap(incident.description))

    # -- Compliance -----------------------------------------------------------
    print(_section("COMPLIANCE"))
    print(f"    {'PDPC status':<22}  {incident.pdpc_status}")
    print(f"    {'Notification required':<22}  {_cell(incident.pdpc_notification_required)}")
    pdpc = _cell(incident.pdpc_notified)
    if incident.pdpc_notified_person:
        pdpc += f" ({incident.pdpc_notified_person})"
    print(f"    {'PDPC notified':<22}  {pdpc}")
    dpo = _cell(incident.dpo_guidance_issued)
    if incident.dpo_notified_person:
        dpo += f" ({incident.dpo_notified_person})"
    print(f"    {'DPO guidance issued':<22}  {dpo}")

    # -- Remediation ----------------------------------------------------------
    actions = incident.remediation_actions_list or ([incident.remediation_actions] if incident.remediation_actions else [])
    if actions:
        print(_section("REMEDIATION"))
        for i, action in enumerate(actions, 1):
            print(_wrap(f"{i}. {action}", indent=4))

    for title, entries in [("TIMELINE", incident.timeline), ("HISTORY", incident.history)]:
        if entries:
            dim = _dim()
            print(_section(title))
            for entry in entries:
                print(f"    {dim}{entry.date[:10]}{reset}  {entry.text}")

    print(f"\n{_bar()}\n")


def print_incident_table(incidents: list[Incident], risk_ids: Optional[set[str]] = None) -> None:
    """Print a one-line-per-incident summary table.

    Incidents whose id is in risk_ids are tagged PDPC.
    """
    bold = _bold()
    reset = _reset()
    red = _red()
    risk_ids = risk_ids or set()

    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}INCIDENTS -- {len(incidents)} listed{reset}")
    print(f"{bold}{_bar()}{reset}")
    print(f"  {'CODE':<14} {'SEVERITY':<9} {'STATUS':<14} {'    ':<4}  UNIT")
    print(f"  {'─' * (W - 2)}")
    for inc in incidents:
        s_color = _s_color(inc.severity)
        tag = f"{bold}{red}PDPC{reset}" if inc.id in risk_ids else "    "
        unit = inc.business_unit[:26] if inc.business_unit else "-"
        print(f"  {inc.incident_id:<14} {s_color}{inc.severity:<9}{reset} {inc.status:<14} {tag}  {unit}")
    print(f"\n{_bar()}\n")


def print_rows(rows: list[dict], title: str = "QUERY RESULTS") -> None:
    """Print query rows as an aligned table, columns taken from the first row."""
    bold = _bold()
    reset = _reset()

    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}{title} -- {len(rows)} row(s){reset}")
    print(f"{bold}{_bar()}{reset}")
    if not rows:
        print("    No rows.")
        print(f"\n{_bar()}\n")
        return

    headers = list(rows[0].keys())
    widths = {h: max(len(h), *(len(_cell(r.get(h))) for r in rows)) for h in headers}
    widths = {h: min(w, 30) for h, w in widths.items()}
    print("  " + "  ".join(f"{h:<{widths[h]}}" for h in headers))
    print(f"  {'─' * (W - 2)}")
    for row in rows:
        print("  " + "  ".join(f"{_cell(row.get(h))[: widths[h]]:<{widths[h]}}" for h in headers))
    print(f"\n{_bar()}\n")


# ---------------------------------------------------------------------------
# JSON export
# ---------------------------------------------------------------------------


def to_json(value: Any) -> str:
    """Serialize dataclasses (or lists of them) and plain rows to indented JSON."""
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    elif isinstance(value, list):
        value = [asdict(v) if is_dataclass(v) and not isinstance(v, type) else v for v in value]
    return json.dumps(value, indent=2)


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------

_FORMULA_PREFIXES = ("=", "+", "-", "@")


def _sanitize_csv_cell(value: Any) -> Any:
    """Neutralize spreadsheet formulas (CWE-1236) by tab-prefixing risky strings.

    Only strings are touched, so negative numbers stay numeric.
    """
    if isinstance(value, str) and value.startswith(_FORMULA_PREFIXES):
        return "\t" + value
    return value


def to_csv(rows: list[dict]) -> str:
    """Render query rows as CSV. Columns come from the first row; missing keys are blank."""
    buf = io.StringIO()
    if not rows:
        return ""
    headers = list(rows[0].keys())
    writer = csv.writer(buf)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_sanitize_csv_cell("" if row.get(h) is None else row.get(h)) for h in headers])
    return buf.getvalue()
