"""Validate zib mappings in FHIR StructureDefinitions.

A profile element claims to implement a zib concept through an element
mapping whose identity carries the zib release, e.g.

    {"identity": "zib-patient-v3.1-2017EN", "map": "NL-CM:0.1.6"}

For every such mapping the element's short, alias, datatype and cardinality
are compared with the concept, after applying approved deviations. Each
mapping yields one ReportLine; its worst field outcome is folded into the
ValidationContext.

Resource lifecycle:
  unvalidated -> validated   StructureDefinition with a mapping for the release
  unvalidated -> skipped     anything else
Input that is not a JSON object stays unvalidated.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from zib_compliance.compatibility import classify
from zib_compliance.concepts import Concept, ConceptIndex, normalize_cardinality
from zib_compliance.conformance import Conformance, filter_conformance_messages, no_conformance
from zib_compliance.outcomes import Outcome, Severity, ValidationContext
from zib_compliance.overrides import OverrideResolver

RELEASES = ("2017", "2020")

STRUCTURE_DEFINITION = "StructureDefinition"

# Expected ranges that allow repetition; a profile capping these at one
# drops data the model can carry
_REPEATING = ("0..*", "1..*")


def release_pattern(release: str) -> re.Pattern:
    """Mapping identity pattern for a zib release, e.g. '-2017EN'."""
    return re.compile(rf"-{re.escape(str(release))}EN")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

class ResourceState(Enum):
    UNVALIDATED = "unvalidated"
    VALIDATED = "validated"
    SKIPPED = "skipped"


@dataclass
class MappedElement:
    """One profile element's claim to implement a concept."""
    path: str
    element_id: str
    short: str
    alias: list[str]
    type_code: str
    min: str
    max: str
    concept_id: str

    @property
    def cardinality(self) -> str:
        return f"{self.min}..{self.max}"


@dataclass
class FieldResult:
    outcome: Outcome
    expected: str = ""
    actual: str = ""
    note: str = ""
    overridden: bool = False

    @property
    def severity(self) -> Severity:
        return self.outcome.severity


@dataclass
class ReportLine:
    concept_id: str
    resource_id: str
    path: str
    element_id: str
    short: FieldResult
    alias: FieldResult
    datatype: FieldResult
    cardinality: FieldResult

    @property
    def fields(self) -> dict[str, FieldResult]:
        return {
            "short": self.short,
            "alias": self.alias,
            "datatype": self.datatype,
            "cardinality": self.cardinality,
        }

    @property
    def severity(self) -> Severity:
        return min(f.severity for f in self.fields.values())


@dataclass
class ResourceResult:
    filename: str
    resource_id: str
    state: ResourceState = ResourceState.UNVALIDATED
    conformance: list[str] = field(default_factory=list)
    lines: list[ReportLine] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Element comparison
# ---------------------------------------------------------------------------

def _text(value) -> str:
    return "" if value is None else str(value)


def mapped_elements(element: dict, pattern: re.Pattern) -> Iterator[MappedElement]:
    """Yield one MappedElement per release mapping on a snapshot element."""
    types = element.get("type") or []
    type_code = _text(types[0].get("code")) if types else ""
    alias = element.get("alias") or []
    if isinstance(alias, str):
        alias = [alias]
    for mapping in element.get("mapping") or []:
        if not pattern.search(_text(mapping.get("identity"))):
            continue
        yield MappedElement(
            path=_text(element.get("path")),
            element_id=_text(element.get("id") or element.get("path")),
            short=_text(element.get("short")),
            alias=[_text(a) for a in alias],
            type_code=type_code,
            min=_text(element.get("min")),
            max=_text(element.get("max")),
            concept_id=_text(mapping.get("map")).strip(),
        )


def check_short(mapped: MappedElement, concept: Concept, override: Optional[str]) -> FieldResult:
    expected = override if override is not None else concept.english_alias
    if not expected:
        # No English name in the model to hold the short text against
        return FieldResult(Outcome.NA, "", mapped.short, overridden=override is not None)
    outcome = Outcome.OK if mapped.short == expected else Outcome.WARN
    return FieldResult(outcome, expected, mapped.short, overridden=override is not None)


def check_alias(mapped: MappedElement, concept: Concept, override: Optional[str]) -> FieldResult:
    expected = override if override is not None else concept.name
    actual = ",".join(mapped.alias)
    outcome = Outcome.OK if expected in actual else Outcome.WARN
    return FieldResult(outcome, expected, actual, overridden=override is not None)


def check_datatype(mapped: MappedElement, concept: Concept, override: Optional[str]) -> FieldResult:
    result = classify(
        concept.datatype,
        mapped.type_code,
        stereotype=concept.stereotype,
        referenced_concept=concept.referenced_concept,
        override=override,
    )
    return FieldResult(result.outcome, result.expected, mapped.type_code,
                       note=result.note, overridden=override is not None)


def check_cardinality(mapped: MappedElement, concept: Concept, override: Optional[str]) -> FieldResult:
    expected = normalize_cardinality(override) if override is not None else concept.cardinality
    actual = mapped.cardinality
    outcome = Outcome.OK if actual == expected else Outcome.WARN
    if expected in _REPEATING and mapped.max == "1":
        outcome = Outcome.ERROR
    return FieldResult(outcome, expected, actual, overridden=override is not None)


def compare_element(
    resource_id: str,
    mapped: MappedElement,
    concept: Concept,
    overrides: OverrideResolver,
) -> ReportLine:
    """Compare one mapped element with its concept; raises OverrideError."""
    def override(name: str) -> Optional[str]:
        return overrides.check(resource_id, mapped.element_id, name)

    return ReportLine(
        concept_id=concept.id,
        resource_id=resource_id,
        path=mapped.path,
        element_id=mapped.element_id,
        short=check_short(mapped, concept, override("short")),
        alias=check_alias(mapped, concept, override("alias")),
        datatype=check_datatype(mapped, concept, override("datatype")),
        cardinality=check_cardinality(mapped, concept, override("cardinality")),
    )


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

def has_release_mapping(resource: dict, pattern: re.Pattern) -> bool:
    return any(pattern.search(_text(m.get("identity"))) for m in resource.get("mapping") or [])


def validate_resource(
    resource: Any,
    filename: str,
    concepts: ConceptIndex,
    overrides: OverrideResolver,
    context: ValidationContext,
    *,
    pattern: re.Pattern,
    conformance: Conformance = no_conformance,
) -> ResourceResult:
    """Validate every release mapping of one profile."""
    if not isinstance(resource, dict):
        context.error(f"{filename}: not a FHIR resource")
        return ResourceResult(filename=filename, resource_id="")
    result = ResourceResult(filename=filename, resource_id=_text(resource.get("id")))

    if resource.get("resourceType") != STRUCTURE_DEFINITION or not has_release_mapping(resource, pattern):
        result.state = ResourceState.SKIPPED
        return result
    result.state = ResourceState.VALIDATED

    check = conformance(resource)
    result.conformance = filter_conformance_messages(check.messages)
    for msg in result.conformance:
        if check.valid:
            context.warn(f"{filename}: {msg}")
        else:
            context.error(f"{filename}: {msg}")

    snapshot = resource.get("snapshot") or {}
    elements = snapshot.get("element")
    if not elements:
        context.error(f"{filename}: has no snapshot")
        return result

    for element in elements:
        for mapped in mapped_elements(element, pattern):
            context.saw_mapping(mapped.concept_id)
            concept = concepts.get(mapped.concept_id)
            if concept is None:
                context.error(f"{filename}: {mapped.path} maps to unknown concept {mapped.concept_id}")
                continue
            context.seen_concepts.add(concept.id)
            line = compare_element(result.resource_id, mapped, concept, overrides)
            context.fold(line.severity)
            result.lines.append(line)

    return result


def validate_profiles(
    profiles: Iterable[tuple[str, dict]],
    concepts: ConceptIndex,
    overrides: OverrideResolver,
    context: ValidationContext,
    *,
    release: str,
    conformance: Conformance = no_conformance,
) -> list[ResourceResult]:
    """Validate (filename, resource) pairs in the order supplied."""
    pattern = release_pattern(release)
    return [
        validate_resource(resource, filename, concepts, overrides, context,
                          pattern=pattern, conformance=conformance)
        for filename, resource in profiles
    ]


# ---------------------------------------------------------------------------
# Profile loading
# ---------------------------------------------------------------------------

def iter_profile_files(paths: Iterable[str | Path]) -> Iterator[Path]:
    """Expand directories to their *.json files, sorted by name."""
    for p in paths:
        p = Path(p)
        if p.is_dir():
            yield from sorted(f for f in p.iterdir() if f.is_file() and f.suffix == ".json")
        else:
            yield p


def load_profiles(paths: Iterable[str | Path], context: ValidationContext) -> Iterator[tuple[str, Any]]:
    """Yield (filename, parsed JSON); unreadable files become ERROR diagnostics."""
    for path in iter_profile_files(paths):
        try:
            with open(path, encoding="utf-8") as f:
                resource = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            context.error(f"{path.name}: cannot read profile: {e}")
            continue
        yield path.name, resource
