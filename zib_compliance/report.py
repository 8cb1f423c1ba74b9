"""Render validation results as XML or text, and compute the exit verdict."""

from __future__ import annotations

import xml.etree.ElementTree as ET

from zib_compliance.concepts import ConceptIndex
from zib_compliance.outcomes import Outcome, Severity, ValidationContext
from zib_compliance.validate_mappings import ReportLine, ResourceResult, ResourceState

OUTPUT_FORMATS = ("xml", "text")
THRESHOLDS = ("error", "warn")

ROOT_TAG = "zibcompliance"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

# field name -> label used in text output
_TEXT_LABELS = {
    "short": "short",
    "alias": "alias",
    "datatype": "type",
    "cardinality": "card",
}


def _validated(results: list[ResourceResult]) -> list[ResourceResult]:
    return [r for r in results if r.state is ResourceState.VALIDATED]


def _line_element(parent: ET.Element, line: ReportLine) -> ET.Element:
    el = ET.SubElement(parent, "line")
    for tag, value in (
        ("conceptId", line.concept_id),
        ("path", line.path),
        ("elementId", line.element_id),
    ):
        ET.SubElement(el, tag).text = value
    for name, result in line.fields.items():
        ET.SubElement(el, name).text = result.actual
        ET.SubElement(el, f"{name}Expected").text = result.expected
        outcome = result.outcome.value
        if result.note:
            outcome = f"{outcome} {result.note}"
        ET.SubElement(el, f"{name}Result").text = outcome
    ET.SubElement(el, "severity").text = line.severity.name
    return el


def render_xml(results: list[ResourceResult], release: str = "", fhir_version: str = "") -> str:
    root = ET.Element(ROOT_TAG)
    if release:
        root.set("release", release)
    if fhir_version:
        root.set("fhirVersion", fhir_version)
    for res in _validated(results):
        res_el = ET.SubElement(root, "resource", {"id": res.resource_id, "file": res.filename})
        for line in res.lines:
            _line_element(res_el, line)
    ET.indent(root)
    return XML_DECLARATION + ET.tostring(root, encoding="unicode")


def _text_finding(name: str, result) -> str:
    label = _TEXT_LABELS[name]
    if name in ("short", "alias"):
        text = f'{result.outcome.value} {label}: "{result.actual}" -> "{result.expected}"'
    else:
        text = f"{result.outcome.value} {label}: {result.actual or '-'} -> {result.expected or '-'}"
    if result.note:
        text += f" ({result.note})"
    if result.overridden:
        text += " [deviation]"
    return text


def render_text(results: list[ResourceResult]) -> str:
    """Non-OK findings only, grouped per resource then per path/concept."""
    out = []
    for res in _validated(results):
        block = []
        for line in res.lines:
            findings = [
                _text_finding(name, result)
                for name, result in line.fields.items()
                if result.outcome not in (Outcome.OK, Outcome.NA)
            ]
            if findings:
                block.append(f"  {line.path} -> {line.concept_id}")
                block.extend(f"    {f}" for f in findings)
        if block:
            out.append(f"{res.filename} ({res.resource_id})")
            out.extend(block)
    return "\n".join(out)


def render_summary(concepts: ConceptIndex, context: ValidationContext) -> str:
    return (
        f"zibIds: {len(concepts)} mapped: {len(context.seen_mappings)}\n"
        f"worst severity: {context.worst.name}"
    )


def exit_code(worst: Severity, threshold: str | Severity) -> int:
    """1 when the worst severity is at or below the threshold, else 0."""
    if not isinstance(threshold, Severity):
        threshold = Severity.from_name(threshold)
    return 1 if worst <= threshold else 0
