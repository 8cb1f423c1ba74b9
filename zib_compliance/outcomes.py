"""Outcome tags, severities and the run-wide validation context."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum


class Severity(IntEnum):
    """Ordinal severity; lower is worse."""
    ERROR = 0
    WARN = 1
    NONE = 2

    @classmethod
    def from_name(cls, name: str) -> "Severity":
        return cls[name.upper()]


class Outcome(Enum):
    """Per-field result of comparing a profile element against a concept."""
    NA = "NA"          # field not applicable for this concept
    OK = "OK"
    WARN = "WARN"
    ERROR = "ERROR"
    CHECK = "CHECK"    # needs human review, not an automatic verdict

    @property
    def severity(self) -> Severity:
        if self is Outcome.ERROR:
            return Severity.ERROR
        if self is Outcome.WARN:
            return Severity.WARN
        return Severity.NONE


@dataclass
class Diagnostic:
    """A free-standing finding that is not tied to a single report field."""
    severity: Severity
    message: str

    def __str__(self) -> str:
        return f"{self.severity.name}: {self.message}"


# Leading "NL-CM:<domain>.<n>" segment of a concept id
_PREFIX_RE = re.compile(r"^(NL-CM:\d+\.\d+)")


def concept_prefix(concept_id: str) -> str:
    m = _PREFIX_RE.match(concept_id or "")
    return m.group(1) if m else (concept_id or "")


@dataclass
class ValidationContext:
    """Mutable state shared by the mapping validator and the unmapped scan.

    Owns the running worst severity, the concept ids referenced by report
    lines, every mapping id seen in the input, and collected diagnostics.
    """
    worst: Severity = Severity.NONE
    seen_concepts: set[str] = field(default_factory=set)
    seen_mappings: dict[str, None] = field(default_factory=dict)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def fold(self, severity: Severity) -> None:
        if severity < self.worst:
            self.worst = severity

    def error(self, msg: str) -> None:
        self.diagnostics.append(Diagnostic(Severity.ERROR, msg))
        self.fold(Severity.ERROR)

    def warn(self, msg: str) -> None:
        self.diagnostics.append(Diagnostic(Severity.WARN, msg))
        self.fold(Severity.WARN)

    def saw_mapping(self, concept_id: str) -> None:
        self.seen_mappings.setdefault(concept_id, None)

    @property
    def seen_prefixes(self) -> set[str]:
        return {concept_prefix(cid) for cid in self.seen_mappings}
