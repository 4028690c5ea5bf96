#!/usr/bin/env python3
# CUI // SP-CTI
"""Evidence package renderings for download: JSON, CSV, PDF-text, eMASS XML.

Usage:
    artifact = export_package(package, "csv")
    Path(artifact.file_name).write_text(artifact.content)
"""

import csv
import io
import json
import logging
from datetime import datetime
from typing import Optional

from atoengine.compat.datetime_utils import format_duration, utc_now
from atoengine.evidence.emass_export import (
    DEFAULT_SCHEMA_VERSION,
    DEFAULT_VALID_THRESHOLD,
    data_string,
    render_emass_xml,
)
from atoengine.resilience.errors import ValidationError
from atoengine.schemas.evidence import EvidencePackage, ExportArtifact

logger = logging.getLogger("atoengine.evidence.packager")

EXPORT_FORMATS = ("json", "csv", "pdf", "emass")
CSV_HEADER = "Evidence ID,Control ID,Evidence Type,Resource ID,Collected At,Data Summary"
SUMMARY_MAX_LENGTH = 200
PDF_MAX_ROWS = 50
REPORT_WIDTH = 80


def csv_data_summary(item) -> str:
    summary = data_string(item).replace(",", ";").replace("\r", "").replace("\n", " ")
    if len(summary) > SUMMARY_MAX_LENGTH:
        summary = summary[:197] + "..."
    return summary


def render_csv(package: EvidencePackage) -> str:
    buffer = io.StringIO()
    buffer.write(CSV_HEADER + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for item in package.evidence:
        writer.writerow([
            item.evidence_id,
            item.control_id,
            item.evidence_type,
            item.resource_id,
            item.collected_at.strftime("%Y-%m-%d %H:%M:%S"),
            csv_data_summary(item),
        ])
    return buffer.getvalue()


def render_json(package: EvidencePackage) -> str:
    return json.dumps(package.to_dict(), indent=2)


def render_pdf_text(package: EvidencePackage, generated_at: Optional[datetime] = None) -> str:
    """Plain-text evidence report laid out like the printable PDF."""
    generated_at = generated_at or utc_now()
    rule = "=" * REPORT_WIDTH
    lines = [
        rule,
        "COMPLIANCE EVIDENCE REPORT".center(REPORT_WIDTH).rstrip(),
        rule,
        "",
        "PACKAGE INFORMATION",
        f"  Package ID:        {package.package_id}",
        f"  Subscription:      {package.subscription_id}",
        f"  Control Family:    {package.control_family}",
        f"  Collection Date:   {package.collection_date:%Y-%m-%d %H:%M:%S} UTC",
        f"  Collected By:      {package.collected_by}",
        "",
        "SUMMARY",
        f"  Total Evidence Items: {package.total_items}",
        f"  Completeness Score:   {package.completeness_score:.1f}%",
        f"  Collection Duration:  {format_duration(package.collection_duration)}",
        f"  {package.summary}",
    ]
    if package.error:
        lines.append(f"  Error: {package.error}")
    for warning in package.warnings:
        lines.append(f"  Warning: {warning}")

    shown = package.evidence[:PDF_MAX_ROWS]
    lines.extend([
        "",
        "EVIDENCE ITEMS",
        f"  Showing {len(shown)} of {package.total_items} items",
        f"  {'#':>3}  {'Type':<16} {'Control':<10} Resource ID",
    ])
    for i, item in enumerate(shown, start=1):
        resource = item.resource_id
        if len(resource) > 60:
            resource = resource[:57] + "..."
        lines.append(f"  {i:>3}  {item.evidence_type:<16} {item.control_id:<10} {resource}")
    if package.total_items > PDF_MAX_ROWS:
        lines.append(f"  ... and {package.total_items - PDF_MAX_ROWS} more items")

    lines.extend([
        "",
        "ATTESTATION",
        f"  {package.attestation_statement}",
        "",
        "-" * REPORT_WIDTH,
        f"Generated: {generated_at:%Y-%m-%d %H:%M:%S} UTC | ATO Engine - Compliance Evidence",
    ])
    return "\n".join(lines) + "\n"


def export_package(
    package: EvidencePackage,
    fmt: str,
    family_name: str = "",
    schema_version: str = DEFAULT_SCHEMA_VERSION,
    valid_threshold: float = DEFAULT_VALID_THRESHOLD,
) -> ExportArtifact:
    fmt = (fmt or "").strip().lower()
    stem = f"{package.control_family}-{package.package_id}"
    if fmt == "json":
        artifact = ExportArtifact(render_json(package), "application/json",
                                  f"evidence-{stem}.json")
    elif fmt == "csv":
        artifact = ExportArtifact(render_csv(package), "text/csv", f"evidence-{stem}.csv")
    elif fmt == "pdf":
        artifact = ExportArtifact(render_pdf_text(package), "text/plain",
                                  f"evidence-{stem}.txt")
    elif fmt == "emass":
        doc = render_emass_xml(package, family_name=family_name,
                               schema_version=schema_version,
                               valid_threshold=valid_threshold)
        artifact = ExportArtifact(doc.xml, "application/xml", f"emass-{stem}.xml")
    else:
        raise ValidationError(
            f"Unknown export format '{fmt}'",
            valid_values=EXPORT_FORMATS,
        )
    logger.info("Exported evidence package %s as %s", package.package_id, fmt)
    return artifact
