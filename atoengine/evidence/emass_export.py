#!/usr/bin/env python3
# CUI // SP-CTI
"""eMASS evidence package export.

Renders an EvidencePackage as the eMASS XML artifact document. The layout is
fixed byte for byte: two-space indentation, ``\\n`` line endings, a trailing
newline, timestamps as ``yyyy-MM-ddTHH:mm:ssZ``. Free text (resource ids,
evidence data, attestation) is wrapped in CDATA; everything else is
XML-escaped. Content that cannot be represented (``]]>`` inside CDATA,
characters XML 1.0 forbids such as NUL or ESC, data values that are not
JSON-encodable) raises SerializationError and nothing is produced.

``parse_emass_xml`` reads a rendered document back (ElementTree) for
verification and import.

Usage:
    doc = render_emass_xml(package, family_name="Access Control")
    summary = parse_emass_xml(doc.xml)
"""

import json
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple
from xml.sax.saxutils import escape

from atoengine.compat.datetime_utils import to_iso, utc_now
from atoengine.resilience.errors import SerializationError
from atoengine.schemas.evidence import EvidenceItem, EvidencePackage

logger = logging.getLogger("atoengine.evidence.emass_export")

DEFAULT_SCHEMA_VERSION = "6.2"
NAMESPACE_BASE = "https://emass.apps.mil/schema/"
DEFAULT_VALID_THRESHOLD = 80.0

# Characters XML 1.0 does not allow, escaped or not.
_INVALID_XML_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


@dataclass(frozen=True)
class EmassDocument:
    xml: str
    system_id: str
    is_valid: bool


@dataclass(frozen=True)
class EmassSummary:
    schema_version: str
    system_id: str
    package_id: str
    control_family: str
    artifact_count: int
    artifact_ids: Tuple[str, ...]
    completeness_score: float


def system_id_for(subscription_id: str) -> str:
    return "SYS-" + subscription_id[:8].upper()


def _format_value(value, evidence_id: str) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    try:
        return json.dumps(value, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise SerializationError(
            f"Evidence {evidence_id} has a value that cannot be serialized: {exc}",
            evidence_id=evidence_id,
        ) from exc


def data_string(item: EvidenceItem) -> str:
    """``key=value; key=value`` in insertion order."""
    return "; ".join(
        f"{key}={_format_value(value, item.evidence_id)}" for key, value in item.data.items()
    )


def _check_chars(text: str, evidence_id: str = "") -> str:
    match = _INVALID_XML_CHARS.search(text)
    if match:
        raise SerializationError(
            f"Content contains character U+{ord(match.group()):04X} which XML 1.0 does not allow",
            evidence_id=evidence_id,
        )
    return text


def _text(value: str, evidence_id: str = "") -> str:
    return escape(_check_chars(value, evidence_id))


def _cdata(text: str, evidence_id: str = "") -> str:
    _check_chars(text, evidence_id)
    if "]]>" in text:
        raise SerializationError(
            "Content contains ']]>' and cannot be wrapped in CDATA",
            evidence_id=evidence_id,
        )
    return f"<![CDATA[{text}]]>"


def render_emass_xml(
    package: EvidencePackage,
    family_name: str = "",
    schema_version: str = DEFAULT_SCHEMA_VERSION,
    submitted_at: Optional[datetime] = None,
    valid_threshold: float = DEFAULT_VALID_THRESHOLD,
) -> EmassDocument:
    submitted_at = submitted_at or utc_now()
    system_id = system_id_for(package.subscription_id)
    version = escape(_check_chars(schema_version), {'"': "&quot;"})

    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<emass-package xmlns="{NAMESPACE_BASE}{version}" version="{version}">',
        "  <metadata>",
        f"    <system-id>{_text(system_id)}</system-id>",
        f"    <package-id>{_text(package.package_id)}</package-id>",
        f"    <submission-date>{to_iso(submitted_at)}</submission-date>",
        f"    <control-family>{_text(package.control_family)}</control-family>",
        f"    <control-family-name>{_text(family_name or package.control_family)}</control-family-name>",
        "  </metadata>",
        f'  <artifacts count="{len(package.evidence)}">',
    ]
    for item in package.evidence:
        lines.extend([
            "    <artifact>",
            f"      <artifact-id>{_text(item.evidence_id, item.evidence_id)}</artifact-id>",
            f"      <control-id>{_text(item.control_id, item.evidence_id)}</control-id>",
            f"      <artifact-type>{_text(item.evidence_type, item.evidence_id)}</artifact-type>",
            f"      <resource-id>{_cdata(item.resource_id, item.evidence_id)}</resource-id>",
            f"      <collection-date>{to_iso(item.collected_at)}</collection-date>",
            f"      <data>{_cdata(data_string(item), item.evidence_id)}</data>",
            "    </artifact>",
        ])
    lines.extend([
        "  </artifacts>",
        "  <attestation>",
        f"    <statement>{_cdata(package.attestation_statement)}</statement>",
        f"    <completeness-score>{package.completeness_score:.2f}</completeness-score>",
        "  </attestation>",
        "</emass-package>",
    ])
    is_valid = package.completeness_score >= valid_threshold
    logger.info("Rendered eMASS package %s (%d artifacts, valid=%s)",
                package.package_id, len(package.evidence), is_valid)
    return EmassDocument(xml="\n".join(lines) + "\n", system_id=system_id, is_valid=is_valid)


def parse_emass_xml(text: str) -> EmassSummary:
    try:
        root = ET.fromstring(text.encode("utf-8"))
    except ET.ParseError as exc:
        raise SerializationError(f"Invalid eMASS XML: {exc}") from exc

    ns = ""
    if root.tag.startswith("{"):
        ns = root.tag[: root.tag.index("}") + 1]
    if root.tag != f"{ns}emass-package":
        raise SerializationError(f"Unexpected root element '{root.tag}'")

    def find_text(path: str) -> str:
        node = root.find("/".join(f"{ns}{part}" for part in path.split("/")))
        if node is None:
            raise SerializationError(f"eMASS XML is missing <{path}>")
        return node.text or ""

    artifacts = root.find(f"{ns}artifacts")
    if artifacts is None:
        raise SerializationError("eMASS XML is missing <artifacts>")
    artifact_ids = tuple(
        (a.findtext(f"{ns}artifact-id") or "") for a in artifacts.findall(f"{ns}artifact")
    )
    try:
        count = int(artifacts.get("count", len(artifact_ids)))
        score = float(find_text("attestation/completeness-score"))
    except ValueError as exc:
        raise SerializationError(f"Invalid numeric value in eMASS XML: {exc}") from exc

    return EmassSummary(
        schema_version=root.get("version", ""),
        system_id=find_text("metadata/system-id"),
        package_id=find_text("metadata/package-id"),
        control_family=find_text("metadata/control-family"),
        artifact_count=count,
        artifact_ids=artifact_ids,
        completeness_score=score,
    )
