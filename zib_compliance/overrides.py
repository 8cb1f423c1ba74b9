"""Approved deviations from zib concept values, per profile element.

Deviations file (YAML or JSON):

    zib-Patient:
      deviations:
        Patient.birthDate:
          - cardinality: "1..1"
            reason: "Birth date is mandatory in this exchange"
          - datatype: date
            reason: "Only the date part is exchanged"

Every entry must carry a reason. An entry without one is not an approved
deviation but a silent bypass, so the whole run is aborted.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import jsonschema
import yaml

FIELDS = ("cardinality", "datatype", "short", "alias")

DEVIATIONS_SCHEMA = {
    "type": "object",
    "additionalProperties": {
        "type": ["object", "null"],
        "properties": {
            "deviations": {
                "type": ["object", "null"],
                "additionalProperties": {
                    "type": ["array", "null"],
                    "items": {"type": "object"},
                },
            },
        },
    },
}


class OverrideError(ValueError):
    """Fatal configuration error in the deviations file."""


def load_overrides(path: Optional[str | Path]) -> "OverrideResolver":
    """Load and shape-check a deviations file; None gives an empty resolver."""
    if path is None:
        return OverrideResolver(None)
    try:
        with open(path, encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise OverrideError(f"Cannot read deviations file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise OverrideError(f"Deviations file {path} is not valid YAML: {e}") from e
    return OverrideResolver(document, source=str(path))


class OverrideResolver:
    def __init__(self, document: Optional[dict], source: str = "<memory>"):
        if document is not None:
            try:
                jsonschema.validate(document, DEVIATIONS_SCHEMA)
            except jsonschema.ValidationError as e:
                where = "/".join(str(p) for p in e.absolute_path) or "<root>"
                raise OverrideError(f"{source}: malformed deviations at {where}: {e.message}") from e
        self.document = document or {}
        self.source = source

    def check(self, resource_id: str, element_id: str, field: str) -> Optional[str]:
        """Approved value for (resource, element, field), or None.

        The last entry for a field wins. Raises OverrideError when a matching
        entry has no reason.
        """
        resource = self.document.get(resource_id)
        if not resource:
            return None
        deviations = resource.get("deviations") or {}
        entries = deviations.get(element_id) or []

        value = None
        for entry in entries:
            if field not in entry:
                continue
            if not entry.get("reason"):
                raise OverrideError(
                    f"{self.source}: deviation {resource_id} / {element_id} / {field} has no reason"
                )
            value = entry[field]
        return None if value is None else str(value)
