#!/usr/bin/env python3
# CUI // SP-CTI
"""ATO Engine command-line interface.

Usage:
    atoengine --scan-file scans.json assess --subscription production
    atoengine plan --subscription production --json
    atoengine evidence --subscription production --family AC --export emass --output ac.xml
    atoengine poam --subscription production --format emass-csv --output poam.csv
    atoengine risk --subscription production
    atoengine --scan-file scans.json serve --port 8443

Assessments persist in the configured SQLite store, so ``plan``, ``poam`` and
``risk`` read the latest assessment written by an earlier ``assess`` run.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from atoengine.compat.datetime_utils import format_duration
from atoengine.compliance.scanner import FileResourceScanner
from atoengine.config.engine_config import load_engine_config
from atoengine.engine import ComplianceEngine
from atoengine.evidence.poam_generator import render_poam_emass_csv, render_poam_text
from atoengine.resilience.correlation import (
    CorrelationLogFilter,
    generate_correlation_id,
    set_correlation_id,
)
from atoengine.resilience.errors import AtoEngineError

logger = logging.getLogger("atoengine.cli")

DEFAULT_PORT = 8443


def _configure_logging(verbose: bool = False):
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationLogFilter())
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(correlation_id)s] %(name)s %(levelname)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    ))
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=[handler])


def _write(text: str, output):
    if output:
        Path(output).write_text(text, encoding="utf-8")
        print(f"Wrote {output}")
    else:
        sys.stdout.write(text if text.endswith("\n") else text + "\n")


def _emit(data: dict, json_output: bool):
    if json_output:
        print(json.dumps(data, indent=2, default=str))
    else:
        for k, v in data.items():
            if not isinstance(v, (dict, list)):
                print(f"{k}: {v}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
def cmd_assess(engine: ComplianceEngine, args) -> int:
    def _progress(update):
        if not args.json_output:
            print(f"  [{update.percent_complete:5.1f}%] {update.control_family}: "
                  f"{update.findings_in_family} findings, score {update.family_score:.1f}")

    assessment = engine.run_assessment(
        args.subscription, resource_group=args.resource_group,
        progress=_progress, timeout=args.timeout,
    )
    if args.json_output:
        _emit(assessment.to_dict(include_findings=args.include_findings), True)
        return 0
    print(f"Assessment {assessment.assessment_id}")
    print(f"  Subscription: {assessment.subscription_id}")
    print(f"  Duration:     {format_duration(assessment.duration)}")
    print(f"  Score:        {assessment.overall_compliance_score:.1f} "
          f"({assessment.grade}, {assessment.status})")
    print(f"  Findings:     {assessment.total_findings} "
          f"(critical {assessment.critical_findings}, high {assessment.high_findings}, "
          f"medium {assessment.medium_findings}, low {assessment.low_findings})")
    print()
    print(assessment.executive_summary)
    return 0


def cmd_plan(engine: ComplianceEngine, args) -> int:
    options = {}
    if args.auto_only:
        options["autoRemediableOnly"] = True
    if args.family:
        options["controlFamily"] = args.family
    plan = engine.generate_plan(args.subscription, options=options)
    if args.json_output:
        _emit(plan.to_dict(), True)
        return 0
    print(f"Remediation plan {plan.plan_id} (priority {plan.priority})")
    print(plan.executive_summary)
    for n, item in enumerate(plan.remediation_items, start=1):
        auto = "auto" if item.automation_available else "manual"
        print(f"  {n:>3}. [{item.severity.value:<8}] {item.control_id:<10} {auto:<6} "
              f"{format_duration(item.estimated_effort)}  {item.title}")
    if plan.timeline:
        print("Milestones:")
        for milestone in plan.timeline.milestones:
            print(f"  {milestone.date:%Y-%m-%d}  {milestone.description}")
    return 0


def cmd_evidence(engine: ComplianceEngine, args) -> int:
    package = engine.collect_evidence(args.subscription, args.family, collected_by=args.collected_by)
    if args.export:
        artifact = engine.export_evidence(package.package_id, args.export)
        _write(artifact.content, args.output)
        return 0 if not package.error else 1
    _emit(package.to_dict() if args.json_output else {
        "packageId": package.package_id,
        "controlFamily": package.control_family,
        "totalItems": package.total_items,
        "completenessScore": package.completeness_score,
        "summary": package.summary,
        "error": package.error,
    }, args.json_output)
    for warning in package.warnings:
        logger.warning(warning)
    return 0 if not package.error else 1


def cmd_poam(engine: ComplianceEngine, args) -> int:
    doc = engine.generate_poam(args.subscription, control_family=args.family)
    if args.format == "text":
        _write(render_poam_text(doc), args.output)
    elif args.format == "emass-csv":
        _write(render_poam_emass_csv(doc), args.output)
    else:
        _write(json.dumps(doc.to_dict(), indent=2), args.output)
    return 0


def cmd_risk(engine: ComplianceEngine, args) -> int:
    risk = engine.assess_risk(args.subscription)
    if args.json_output:
        _emit(risk.to_dict(), True)
        return 0
    print(f"Overall risk: {risk.overall_risk_score:.1f} ({risk.risk_level}, trend {risk.risk_trend})")
    for name, category in risk.risk_categories.items():
        print(f"  {name:<24} {category.risk_score:5.1f}  {category.risk_level}")
    print()
    print(risk.executive_summary)
    return 0


def cmd_serve(engine: ComplianceEngine, args) -> int:
    from atoengine.api.app import create_app
    app = create_app(engine)
    app.run(host=args.host, port=args.port, debug=args.debug)
    return 0


COMMANDS = {
    "assess": cmd_assess,
    "plan": cmd_plan,
    "evidence": cmd_evidence,
    "poam": cmd_poam,
    "risk": cmd_risk,
    "serve": cmd_serve,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="atoengine",
        description="CUI // SP-CTI -- ATO compliance assessment and remediation engine",
    )
    parser.add_argument("--config", help="Engine config YAML (default: args/engine_config.yaml)")
    parser.add_argument("--scan-file", help="JSON scan export replayed as the resource scanner")
    parser.add_argument("--verbose", "-v", action="store_true")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--subscription", "-s", help="Subscription GUID or friendly name")
    common.add_argument("--json", action="store_true", dest="json_output")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("assess", parents=[common], help="Run a compliance assessment")
    p.add_argument("--resource-group")
    p.add_argument("--timeout", type=float, default=None, help="Timeout in seconds")
    p.add_argument("--no-findings", action="store_false", dest="include_findings",
                   help="Omit findings from --json output")

    p = sub.add_parser("plan", parents=[common], help="Generate a remediation plan")
    p.add_argument("--auto-only", action="store_true", help="Only auto-remediable findings")
    p.add_argument("--family", help="Restrict to a control family")

    p = sub.add_parser("evidence", parents=[common], help="Collect an evidence package")
    p.add_argument("--family", required=True, help="Control family code or 'All'")
    p.add_argument("--collected-by", default="system")
    p.add_argument("--export", choices=["json", "csv", "pdf", "emass"])
    p.add_argument("--output", help="Write the export to this file")

    p = sub.add_parser("poam", parents=[common], help="Generate a POA&M")
    p.add_argument("--family", help="Restrict to a control family")
    p.add_argument("--format", choices=["json", "text", "emass-csv"], default="json")
    p.add_argument("--output", help="Write the POA&M to this file")

    sub.add_parser("risk", parents=[common], help="Assess category risk")

    p = sub.add_parser("serve", help="Run the REST API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=DEFAULT_PORT)
    p.add_argument("--debug", action="store_true")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    set_correlation_id(generate_correlation_id())

    try:
        config = load_engine_config(Path(args.config) if args.config else None)
        scanner = FileResourceScanner(Path(args.scan_file)) if args.scan_file else None
        engine = ComplianceEngine(config, scanner=scanner)
    except AtoEngineError as exc:
        logger.error("Startup failed: %s", exc.message)
        return 2

    try:
        return COMMANDS[args.command](engine, args)
    except AtoEngineError as exc:
        if getattr(args, "json_output", False):
            print(json.dumps(exc.to_dict(), indent=2))
        else:
            print(f"Error: {exc.message}", file=sys.stderr)
            hint = getattr(exc, "hint", "")
            if hint:
                print(f"Hint: {hint}", file=sys.stderr)
        return 1
    finally:
        engine.close()


if __name__ == "__main__":
    sys.exit(main())
