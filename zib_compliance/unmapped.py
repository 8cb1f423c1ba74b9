"""Find zib concepts that no profile maps to."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from zib_compliance.concepts import ConceptIndex
from zib_compliance.outcomes import ValidationContext, concept_prefix

UNKNOWN_ROOT = "<unknown>"


@dataclass
class UnmappedConcept:
    concept_id: str
    name: str
    rootconcept: Optional[str]

    def __str__(self) -> str:
        return f"not mapped {self.rootconcept or UNKNOWN_ROOT}.{self.name} {self.concept_id}"


def scan_unmapped(concepts: ConceptIndex, context: ValidationContext,
                  restrict: bool = False) -> list[UnmappedConcept]:
    """Concepts never referenced by a report line, in index order.

    Containers and rootconcepts are skipped. With *restrict*, only concepts
    from zibs (NL-CM:<domain>.<n>) that the input mapped at least once are
    reported.
    """
    prefixes = context.seen_prefixes if restrict else None
    unmapped = []
    for concept_id, concept in concepts.concepts.items():
        if concept_id in context.seen_concepts or concept.is_structural:
            continue
        if prefixes is not None and concept_prefix(concept_id) not in prefixes:
            continue
        item = UnmappedConcept(concept_id, concept.name, concepts.find_rootconcept(concept))
        context.warn(str(item))
        unmapped.append(item)
    return unmapped
