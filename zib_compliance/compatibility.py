"""zib datatype -> FHIR datatype compatibility.

Concepts with a datatype are judged by COMPATIBILITY. Concepts without one
are structural (container, rootconcept) or point at another concept, and are
judged by their stereotype instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from zib_compliance.concepts import CONTAINER, ROOTCONCEPT
from zib_compliance.outcomes import Outcome

EXTENSION = "Extension"
REFERENCE = "Reference"
BACKBONE = "BackboneElement"

# (zib datatype, FHIR type code) -> (outcome, note)
COMPATIBILITY: dict[tuple[str, str], tuple[Outcome, str]] = {
    ("TS", "dateTime"): (Outcome.OK, ""),
    ("TS", "date"): (Outcome.OK, ""),
    ("TS", "instant"): (Outcome.OK, ""),
    # a single timestamp cannot become an interval
    ("TS", "Period"): (Outcome.ERROR, "start|end"),
    ("CD", "CodeableConcept"): (Outcome.OK, ""),
    ("CD", "Coding"): (Outcome.OK, ""),
    ("CD", "code"): (Outcome.OK, ""),
    ("CD", "string"): (Outcome.WARN, "codesystem"),
    ("CO", "CodeableConcept"): (Outcome.OK, ""),
    ("CO", "Coding"): (Outcome.OK, ""),
    ("CO", "code"): (Outcome.OK, ""),
    ("CO", "integer"): (Outcome.WARN, "codesystem"),
    ("ST", "string"): (Outcome.OK, ""),
    ("ST", "Annotation"): (Outcome.OK, ""),
    ("ST", "markdown"): (Outcome.OK, ""),
    ("PQ", "Quantity"): (Outcome.OK, ""),
    ("PQ", "Duration"): (Outcome.OK, ""),
    ("PQ", "Age"): (Outcome.OK, ""),
    ("PQ", "SimpleQuantity"): (Outcome.OK, ""),
    ("PQ", "integer"): (Outcome.WARN, "unit"),
    ("PQ", "decimal"): (Outcome.WARN, "unit"),
    ("BL", "boolean"): (Outcome.OK, ""),
    ("INT", "integer"): (Outcome.OK, ""),
    ("INT", "positiveInt"): (Outcome.OK, ""),
    ("INT", "unsignedInt"): (Outcome.OK, ""),
    ("INT", "Quantity"): (Outcome.WARN, "unit"),
    ("ED", "Attachment"): (Outcome.OK, ""),
    ("ED", "base64Binary"): (Outcome.OK, ""),
    ("II", "Identifier"): (Outcome.OK, ""),
    ("II", "string"): (Outcome.WARN, "system"),
    ("ANY", "Quantity"): (Outcome.OK, ""),
    ("ANY", "CodeableConcept"): (Outcome.OK, ""),
    ("ANY", "string"): (Outcome.OK, ""),
    ("ANY", "boolean"): (Outcome.OK, ""),
    ("ANY", "integer"): (Outcome.OK, ""),
    ("ANY", "dateTime"): (Outcome.OK, ""),
    ("ANY", "Ratio"): (Outcome.OK, ""),
    ("ANY", "Range"): (Outcome.OK, ""),
    ("ANY", "Attachment"): (Outcome.OK, ""),
}


@dataclass(frozen=True)
class Classification:
    outcome: Outcome
    expected: str
    note: str = ""


def classify(
    datatype: Optional[str],
    type_code: str,
    *,
    stereotype: Optional[str] = None,
    referenced_concept: bool = False,
    override: Optional[str] = None,
) -> Classification:
    """Classify a profile type code against a concept's datatype or shape.

    *override* is an approved expected FHIR type for this element. When it
    equals the profile's type the pair is accepted without the table.
    """
    type_code = type_code or ""
    if override is not None and override == type_code:
        return Classification(Outcome.OK, override)

    if datatype:
        if type_code == EXTENSION:
            return Classification(Outcome.CHECK, datatype)
        outcome, note = COMPATIBILITY.get((datatype, type_code), (Outcome.ERROR, ""))
        return Classification(outcome, datatype, note)

    return _classify_structural(type_code, stereotype, referenced_concept)


def _classify_structural(type_code: str, stereotype: Optional[str],
                         referenced_concept: bool) -> Classification:
    if referenced_concept:
        outcome = Outcome.OK if type_code == REFERENCE else Outcome.WARN
        return Classification(outcome, REFERENCE)

    if stereotype == CONTAINER:
        # the type is carried by the nested elements
        if type_code in ("", REFERENCE, BACKBONE):
            return Classification(Outcome.OK, type_code)
    elif stereotype == ROOTCONCEPT:
        return Classification(Outcome.OK if not type_code else Outcome.WARN, "")

    if type_code == EXTENSION:
        return Classification(Outcome.CHECK, stereotype or "")
    return Classification(Outcome.ERROR, stereotype or "")
