"""FHIR conformance check for a StructureDefinition resource.

The mapping validator treats conformance as an opaque collaborator: any
callable taking the resource dict and returning a ConformanceResult will do.
The default implementation parses the resource with fhirclient's model
classes in strict mode and turns its validation errors into messages.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Callable

from fhirclient.models.fhirabstractbase import FHIRValidationError
from fhirclient.models.structuredefinition import StructureDefinition

FHIR_VERSIONS: dict[str, tuple[str, ...]] = {
    "STU3": ("3.0.0", "3.0.1", "3.0.2"),
    "R4": ("4.0.0", "4.0.1"),
}

# Unknown properties do not make a resource invalid
_SUPERFLUOUS = "Superfluous entry"

_VERSION_NOISE_RE = re.compile(r"^fhirVersion: unrecognized version code\b")

# STU3 extension context types and their R4 StructureDefinitionContext.type
_STU3_CONTEXT_TYPES = {"resource": "element", "datatype": "element", "extension": "extension"}


@dataclass
class ConformanceResult:
    valid: bool = True
    messages: list[str] = field(default_factory=list)


Conformance = Callable[[dict], ConformanceResult]


def is_version_noise(message: str) -> bool:
    return bool(_VERSION_NOISE_RE.match(message))


def filter_conformance_messages(messages: list[str]) -> list[str]:
    """Drop a leading message that only complains about the version code."""
    if messages and is_version_noise(messages[0]):
        return messages[1:]
    return list(messages)


def _flatten(err: FHIRValidationError, path: str = "") -> list[str]:
    out = []
    for sub in err.errors:
        if isinstance(sub, FHIRValidationError):
            sub_path = ".".join(p for p in (path, sub.path) if p)
            out.extend(_flatten(sub, sub_path))
        else:
            out.append(f"{path}: {sub}" if path else str(sub))
    return out


def _as_list(value):
    return value if isinstance(value, list) else [value]


def _lift_element(element: dict) -> None:
    for type_ in element.get("type") or []:
        for key in ("profile", "targetProfile"):
            if key in type_:
                type_[key] = _as_list(type_[key])

    binding = element.get("binding")
    if isinstance(binding, dict) and "valueSet" not in binding:
        if "valueSetUri" in binding:
            binding["valueSet"] = binding.pop("valueSetUri")
        elif "valueSetReference" in binding:
            ref = binding.pop("valueSetReference") or {}
            if ref.get("reference"):
                binding["valueSet"] = ref["reference"]


def lift_stu3(resource: dict) -> dict:
    """Copy of an STU3 StructureDefinition reshaped for fhirclient's R4 models.

    Only the properties whose JSON shape changed between the two versions
    are touched: element type profiles, value set bindings and the
    extension context.
    """
    lifted = copy.deepcopy(resource)

    context = lifted.get("context")
    if isinstance(context, list) and all(isinstance(c, str) for c in context):
        kind = _STU3_CONTEXT_TYPES.get(lifted.pop("contextType", None), "element")
        lifted["context"] = [{"type": kind, "expression": c} for c in context]

    for view in ("snapshot", "differential"):
        for element in (lifted.get(view) or {}).get("element") or []:
            if isinstance(element, dict):
                _lift_element(element)
    return lifted


class FhirClientConformance:
    """Validate StructureDefinitions with fhirclient's strict model parsing.

    fhirclient ships R4 models, so STU3 resources are lifted to the R4 shape
    first.
    """

    def __init__(self, fhir_version: str = "STU3"):
        if fhir_version not in FHIR_VERSIONS:
            raise ValueError(f"Unsupported FHIR version: {fhir_version}")
        self.fhir_version = fhir_version

    def __call__(self, resource: dict) -> ConformanceResult:
        result = ConformanceResult()

        version = resource.get("fhirVersion")
        if version not in FHIR_VERSIONS[self.fhir_version]:
            result.messages.append(
                f"fhirVersion: unrecognized version code '{version}' for {self.fhir_version}"
            )

        if self.fhir_version == "STU3":
            resource = lift_stu3(resource)
        try:
            StructureDefinition(resource, strict=True)
        except FHIRValidationError as e:
            for msg in _flatten(e):
                result.messages.append(msg)
                if _SUPERFLUOUS not in msg:
                    result.valid = False
        return result


def no_conformance(resource: dict) -> ConformanceResult:
    """Stand-in used with --skip-conformance."""
    return ConformanceResult()
