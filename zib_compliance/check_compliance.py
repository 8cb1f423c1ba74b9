#!/usr/bin/env python3
"""Check FHIR profiles against the zib information model.

Reads the zib model export, validates every StructureDefinition that maps to
the selected zib release, lists zib concepts that no profile maps to, and
exits non-zero when the worst finding reaches the severity threshold.

Usage:
  python -m zib_compliance.check_compliance \\
    --model definitions/zibs2017.max \\
    --release 2017 \\
    [--fhir-version STU3] \\
    [--deviations zib-deviations.yaml] \\
    [--restrict] \\
    [--output text|xml] \\
    [--severity error|warn] \\
    [--report report.xml] \\
    package/

Exit status:
  0  no finding at or below the threshold
  1  worst finding at or below the threshold
  2  fatal: unreadable model export or invalid deviations file
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from zib_compliance.concepts import ModelError, build_concept_index, load_model
from zib_compliance.conformance import FHIR_VERSIONS, FhirClientConformance, no_conformance
from zib_compliance.console import abort, error, info, warn
from zib_compliance.outcomes import Severity, ValidationContext
from zib_compliance.overrides import OverrideError, load_overrides
from zib_compliance.report import (
    OUTPUT_FORMATS,
    THRESHOLDS,
    exit_code,
    render_summary,
    render_text,
    render_xml,
)
from zib_compliance.unmapped import scan_unmapped
from zib_compliance.validate_mappings import RELEASES, load_profiles, validate_profiles


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check zib mappings in FHIR StructureDefinitions against the zib model.",
    )
    parser.add_argument("profiles", nargs="*", default=["package"],
                        help="Profile JSON files or directories (default: package)")
    parser.add_argument("-m", "--model", required=True,
                        help="Path to the zib model export (.max XML)")
    parser.add_argument("-z", "--release", required=True, choices=RELEASES,
                        help="zib release the mappings refer to")
    parser.add_argument("-f", "--fhir-version", default="STU3", choices=sorted(FHIR_VERSIONS),
                        help="FHIR version of the profiles (default: STU3)")
    parser.add_argument("-r", "--restrict", action="store_true",
                        help="Only report unmapped concepts of zibs the profiles map to")
    parser.add_argument("-d", "--deviations", default=None,
                        help="YAML file with approved deviations per resource/element")
    parser.add_argument("-o", "--output", default="text", choices=OUTPUT_FORMATS,
                        help="Report format (default: text)")
    parser.add_argument("-s", "--severity", default="error", choices=THRESHOLDS,
                        help="Exit non-zero when a finding is at least this severe (default: error)")
    parser.add_argument("--report", default=None,
                        help="Also write the report body to this path")
    parser.add_argument("--skip-conformance", action="store_true",
                        help="Skip the FHIR conformance check of each profile")
    return parser


def print_diagnostics(context: ValidationContext) -> None:
    for diag in context.diagnostics:
        if diag.severity is Severity.ERROR:
            error(diag.message)
        else:
            warn(diag.message)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        concepts = build_concept_index(load_model(args.model))
    except ModelError as e:
        abort(str(e))
    try:
        overrides = load_overrides(args.deviations)
    except OverrideError as e:
        abort(str(e))

    conformance = no_conformance if args.skip_conformance else FhirClientConformance(args.fhir_version)
    context = ValidationContext()

    try:
        results = validate_profiles(
            load_profiles(args.profiles, context),
            concepts,
            overrides,
            context,
            release=args.release,
            conformance=conformance,
        )
    except OverrideError as e:
        abort(str(e))

    scan_unmapped(concepts, context, restrict=args.restrict)
    print_diagnostics(context)

    if args.output == "xml":
        body = render_xml(results, release=args.release, fhir_version=args.fhir_version)
    else:
        body = render_text(results)
    if body:
        info(body)
    if args.report:
        Path(args.report).write_text(body + "\n", encoding="utf-8")

    summary = render_summary(concepts, context)
    if args.output == "xml":
        print(summary, file=sys.stderr)
    else:
        info(summary)

    return exit_code(context.worst, args.severity)


if __name__ == "__main__":
    sys.exit(main())
