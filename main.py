#!/usr/bin/env python3
"""
BreachTracker -- Data-breach incident tracking and PDPC compliance signals.
State is kept in a local SQLite database (STATE_DB_URL, see core/config.py).

Usage:
  python main.py list
  python main.py list --filtered
  python main.py list --format csv > incidents.csv
  python main.py show INC-2025-001
  python main.py score
  python main.py vulns
  python main.py patterns
  python main.py samples
  python main.py query --sample coverage
  python main.py query --sql "SELECT severity, COUNT(*) AS n FROM ? GROUP BY severity"
  python main.py add --file incident.json
  python main.py add --file incident.json --draft
  python main.py reset

Environment variables:
  STATE_DB_URL           SQLAlchemy URL of the state database
  INCIDENT_ID_PREFIX     Prefix for new incident codes (default INC-2025)
  SQL_EVALUATOR_ENABLED  false to answer every query from the built-in fallbacks
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from core.analytics import SAMPLE_QUERIES, build_sql_dataset, default_evaluator, get_sample_query, run_sql_query
from core.classifier import aggregate_patterns, classify_vulnerability, compliance_score, pdpc_risk, summarize_vulnerabilities
from core.config import get_settings
from core.formatter import disable_color, print_incident, print_incident_table, print_rows, to_csv, to_json
from core.models import Incident
from incidents.repository import IncidentRepository
from storage.store import SnapshotStore

logger = logging.getLogger("breachtracker.cli")


def _load_payload(path: str) -> Optional[dict]:
    """Read an incident payload from a JSON file. Returns None (after a message) on failure.

    Resolves symlinks and verifies the path is a regular file before reading.
    """
    file_path = Path(path).resolve()
    if not file_path.is_file():
        print(f"  [!] '{path}' is not a readable file.")
        return None
    try:
        payload = json.loads(file_path.read_text())
    except (OSError, ValueError) as e:
        print(f"  [!] Could not read JSON from '{path}': {e}")
        return None
    if not isinstance(payload, dict):
        print(f"  [!] '{path}' must contain a JSON object.")
        return None
    return payload


def _find(repo: IncidentRepository, ref: str) -> Optional[Incident]:
    """Look up an incident by internal id or by INC code (first match)."""
    incident = repo.get_incident(ref)
    if incident is not None:
        return incident
    ref = ref.strip().upper()
    return next((i for i in repo.list_incidents() if i.incident_id.upper() == ref), None)


def _emit_rows(rows: list[dict], output_format: str, title: str) -> None:
    if output_format == "json":
        print(to_json(rows))
    elif output_format == "csv":
        print(to_csv(rows), end="")
    else:
        print_rows(rows, title=title)


# ---------------------------------------------------------------------------
# Sub-commands
# ---------------------------------------------------------------------------


def cmd_list(repo: IncidentRepository, args: argparse.Namespace) -> int:
    incidents = repo.filter_incidents() if args.filtered else repo.list_incidents()
    if args.format == "json":
        print(to_json(incidents))
    elif args.format == "csv":
        print(to_csv(build_sql_dataset(incidents)), end="")
    else:
        print_incident_table(incidents, risk_ids={i.id for i in incidents if pdpc_risk(i)})
    return 0


def cmd_show(repo: IncidentRepository, args: argparse.Namespace) -> int:
    incident = _find(repo, args.ref)
    if incident is None:
        print(f"  [!] No incident matches '{args.ref}'.")
        return 1
    if args.format == "json":
        print(to_json(incident))
    else:
        print_incident(incident, risk=pdpc_risk(incident), vulnerability=classify_vulnerability(incident).label)
    return 0


def cmd_score(repo: IncidentRepository, args: argparse.Namespace) -> int:
    incidents = repo.list_incidents()
    score = compliance_score(incidents)
    if args.format == "json":
        print(json.dumps({"score": score, "incidents": len(incidents)}))
    else:
        print(f"\n  Compliance score: {score}/100  ({len(incidents)} incidents)\n")
    return 0


def cmd_vulns(repo: IncidentRepository, args: argparse.Namespace) -> int:
    summary = summarize_vulnerabilities(repo.list_incidents())
    if args.format == "json":
        print(to_json(summary))
        return 0
    rows = [
        {
            "class": item.label,
            "count": item.count,
            "open": item.open,
            "frequency_pct": item.frequency,
            "top_severity": item.top_severity,
            "sample": item.sample,
        }
        for item in summary.items
    ]
    _emit_rows(rows, args.format, f"VULNERABILITY CLASSES ({summary.total} incidents)")
    return 0


def cmd_patterns(repo: IncidentRepository, args: argparse.Namespace) -> int:
    patterns = aggregate_patterns(repo.list_incidents())
    if args.format == "json":
        print(to_json(patterns))
        return 0
    for title, stats in (("TRIGGERS", patterns.triggers), ("ACTIONS", patterns.actions)):
        rows = [{"name": s.name, "count": s.count, "avg_response_hours": s.avg_response_hours} for s in stats]
        _emit_rows(rows, args.format, title)
    return 0


def cmd_samples(repo: IncidentRepository, args: argparse.Namespace) -> int:
    for sample in SAMPLE_QUERIES:
        print(f"\n  [{sample.id}] {sample.title}\n")
        print("\n".join(f"    {line}" for line in sample.sql.splitlines()))
    print()
    return 0


def cmd_query(repo: IncidentRepository, args: argparse.Namespace) -> int:
    if args.sample:
        sample = get_sample_query(args.sample)
        if sample is None:
            print(f"  [!] Unknown sample '{args.sample}'. Choose from: {', '.join(q.id for q in SAMPLE_QUERIES)}")
            return 1
        query_text = sample.sql
    elif args.sql:
        query_text = args.sql
    else:
        print("  [!] Pass --sample ID or --sql TEXT.")
        return 1

    evaluator = default_evaluator(get_settings().sql_evaluator_enabled)
    result = run_sql_query(query_text, build_sql_dataset(repo.list_incidents()), args.sample, evaluator)
    if result.used_fallback:
        reason = f": {result.error}" if result.error else ""
        print(f"  [!] Showing built-in fallback results{reason}", file=sys.stderr)
    _emit_rows(result.rows, args.format, "QUERY RESULTS")
    return 0


def cmd_add(repo: IncidentRepository, args: argparse.Namespace) -> int:
    payload = _load_payload(args.file)
    if payload is None:
        return 1
    try:
        incident = repo.add_incident(payload, draft=args.draft)
    except ValueError as e:
        print(f"  [!] Incident rejected: {e}")
        return 1
    kind = "draft" if args.draft else "incident"
    print(f"  Logged {kind} {incident.incident_id} ({incident.severity}).")
    return 0


def cmd_reset(repo: IncidentRepository, args: argparse.Namespace) -> int:
    if not args.yes:
        print("  [!] This discards all incidents and drafts. Re-run with --yes to confirm.")
        return 1
    repo.reset()
    print(f"  State reset: {len(repo.list_incidents())} seed incidents restored.")
    return 0


_COMMANDS = {
    "list": cmd_list,
    "show": cmd_show,
    "score": cmd_score,
    "vulns": cmd_vulns,
    "patterns": cmd_patterns,
    "samples": cmd_samples,
    "query": cmd_query,
    "add": cmd_add,
    "reset": cmd_reset,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="breach-tracker",
        description="Data-breach incident tracking, PDPC compliance signals and audit queries.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py list --filtered
  python main.py show INC-2025-002
  python main.py query --sample throughput --format csv > throughput.csv
  STATE_DB_URL=sqlite:///demo.db python main.py reset --yes
        """,
    )
    parser.add_argument(
        "--db",
        metavar="URL",
        help="SQLAlchemy URL of the state database (default: STATE_DB_URL setting)",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable ANSI color codes in terminal output",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    def add_format(p: argparse.ArgumentParser, choices=("terminal", "json", "csv")) -> None:
        p.add_argument(
            "--format",
            choices=list(choices),
            default="terminal",
            metavar="FORMAT",
            help=f"Output format: {', '.join(choices)} (default: terminal)",
        )

    p = sub.add_parser("list", help="List incidents, PDPC-risk first")
    p.add_argument("--filtered", action="store_true", help="Apply the stored filters")
    add_format(p)

    p = sub.add_parser("show", help="Show one incident by INC code or id")
    p.add_argument("ref", metavar="INC-CODE")
    add_format(p, ("terminal", "json"))

    p = sub.add_parser("score", help="Print the compliance score")
    add_format(p, ("terminal", "json"))

    p = sub.add_parser("vulns", help="Summarize vulnerability classes")
    add_format(p)

    p = sub.add_parser("patterns", help="Top trigger and action keyword groups")
    add_format(p)

    sub.add_parser("samples", help="List built-in sample queries")

    p = sub.add_parser("query", help="Run a sample or ad-hoc SQL query over the incident dataset")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--sample", metavar="ID", help="Sample query id (see 'samples')")
    group.add_argument("--sql", metavar="TEXT", help="SQL text; use 'FROM ?' or 'FROM incidents'")
    add_format(p)

    p = sub.add_parser("add", help="Log an incident from a JSON payload file")
    p.add_argument("--file", required=True, metavar="PATH", help="JSON object with incident fields")
    p.add_argument("--draft", action="store_true", help="Save as a draft instead of submitting")

    p = sub.add_parser("reset", help="Discard all state and restore the seed incidents")
    p.add_argument("--yes", action="store_true", help="Confirm the reset")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(levelname)-5s %(name)s %(message)s",
    )

    # Apply color preference before any output
    if args.no_color:
        disable_color()

    store = SnapshotStore(args.db or settings.state_db_url, key=settings.state_key)
    try:
        repo = IncidentRepository(store, id_prefix=settings.incident_id_prefix)
        return _COMMANDS[args.command](repo, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
