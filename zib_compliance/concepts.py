"""Concept index: turn a zib model export (.max XML) into a lookup table.

The export lists every model object (packages, rootconcepts, containers and
data elements) plus two kinds of relationships that carry the information a
concept needs:

  Generalization  concept -> datatype object (see DATATYPES)
  Aggregation     concept -> parent, with the concept's cardinality in sourceCard

Only objects tagged with a concept id become concepts. Older exports lack the
DCM::ConceptId tag; for those the DCM::DefinitionCode tag is used when its
value is an NL-CM identifier.

Usage:
    model = load_model("definitions/zibs2017.max")
    index = build_concept_index(model)
    index.concepts["NL-CM:0.1.1"].cardinality
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from zib_compliance.console import warn

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CONCEPT_ID_TAG = "DCM::ConceptId"
LEGACY_CONCEPT_ID_TAG = "DCM::DefinitionCode"
REFERENCED_CONCEPT_TAG = "DCM::ReferencedConceptId"
CONCEPT_ID_PREFIX = "NL-CM:"

DEFAULT_CARDINALITY = "0..1"

# Object ids of the datatype classes in the zib model's datatype package
DATATYPES: dict[str, str] = {
    "7887": "TS",
    "7906": "CD",
    "7895": "ST",
    "7891": "PQ",
    "7892": "BL",
    "7888": "INT",
    "7886": "CO",
    "7885": "ED",
    "7889": "II",
    "7903": "ANY",
}

CONTAINER = "container"
ROOTCONCEPT = "rootconcept"


class ModelError(ValueError):
    """The model export is malformed; nothing can be checked without it."""


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Concept:
    """One modeled clinical data element."""
    id: str
    object_id: str
    parent_id: str
    name: str
    english_alias: str
    stereotype: str
    datatype: Optional[str]
    cardinality: str
    referenced_concept: bool = False

    @property
    def is_structural(self) -> bool:
        return self.stereotype in (CONTAINER, ROOTCONCEPT)


@dataclass
class ConceptIndex:
    concepts: dict[str, Concept] = field(default_factory=dict)
    package_by_concept: dict[str, str] = field(default_factory=dict)
    objects: list[dict] = field(default_factory=list)
    _roots: Optional[dict[str, str]] = field(default=None, repr=False)
    _by_id: Optional[dict[str, dict]] = field(default=None, repr=False)

    def __len__(self) -> int:
        return len(self.concepts)

    def __contains__(self, concept_id: str) -> bool:
        return concept_id in self.concepts

    def get(self, concept_id: str) -> Optional[Concept]:
        return self.concepts.get(concept_id)

    def find_rootconcept(self, concept: Concept) -> Optional[str]:
        """Name of the rootconcept that owns *concept*, or None.

        A rootconcept sits next to the concepts it owns, i.e. it shares their
        parent id. Nested concepts are resolved by walking up the parent chain.
        """
        if self._roots is None:
            self._roots, self._by_id = {}, {}
            for obj in self.objects:
                self._by_id.setdefault(obj.get("id", ""), obj)
                if obj.get("stereotype") == ROOTCONCEPT and obj.get("parentId"):
                    self._roots.setdefault(obj["parentId"], obj.get("name", ""))
        roots, by_id = self._roots, self._by_id

        visited: set[str] = set()
        pid = concept.parent_id
        while pid and pid not in visited:
            visited.add(pid)
            if pid in roots:
                return roots[pid]
            parent = by_id.get(pid)
            pid = parent.get("parentId") if parent else None
        return None


# ---------------------------------------------------------------------------
# XML loading
# ---------------------------------------------------------------------------

def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(elem: ET.Element, name: str) -> Optional[str]:
    for child in elem:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return None


def _object_from_xml(elem: ET.Element) -> dict:
    obj: dict = {"tag": [], "alias": []}
    for child in elem:
        name = _local(child.tag)
        if name == "tag":
            value = child.get("value")
            if value is None:
                value = (child.text or "").strip()
            obj["tag"].append({"name": child.get("name", ""), "value": value})
        elif name == "alias":
            obj["alias"].append((child.text or "").strip())
        elif name in ("id", "parentId", "name", "stereotype"):
            obj[name] = (child.text or "").strip()
    return obj


def _relationship_from_xml(elem: ET.Element) -> dict:
    return {
        "type": _child_text(elem, "type") or "",
        "sourceId": _child_text(elem, "sourceId") or "",
        "destId": _child_text(elem, "destId") or "",
        "sourceCard": _child_text(elem, "sourceCard") or "",
    }


def parse_model(xml_text: str) -> dict:
    """Parse .max XML text into {"objects": [...], "relationships": [...]}."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ModelError(f"Model export is not well-formed XML: {e}") from e

    if _local(root.tag) != "model":
        raise ModelError(f"Model export root must be <model>, found <{_local(root.tag)}>")

    objects_elem = next((c for c in root if _local(c.tag) == "objects"), None)
    rels_elem = next((c for c in root if _local(c.tag) == "relationships"), None)
    if objects_elem is None:
        raise ModelError("Model export has no <objects> section")
    if rels_elem is None:
        raise ModelError("Model export has no <relationships> section")

    return {
        "objects": [_object_from_xml(o) for o in objects_elem if _local(o.tag) == "object"],
        "relationships": [
            _relationship_from_xml(r) for r in rels_elem if _local(r.tag) == "relationship"
        ],
    }


def load_model(path: str | Path) -> dict:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ModelError(f"Cannot read model export {path}: {e}") from e
    return parse_model(text)


# ---------------------------------------------------------------------------
# Index building
# ---------------------------------------------------------------------------

def resolve_concept_id(obj: dict) -> Optional[str]:
    """Concept id of a model object, or None when the object is not a concept."""
    tags = obj.get("tag") or []
    for tag in tags:
        if tag.get("name") == CONCEPT_ID_TAG:
            return tag.get("value")
    for tag in tags:
        if tag.get("name") == LEGACY_CONCEPT_ID_TAG and str(tag.get("value", "")).startswith(CONCEPT_ID_PREFIX):
            return tag["value"]
    return None


def english_alias(obj: dict) -> str:
    """First alias with its language prefix ("EN:") stripped."""
    aliases = obj.get("alias") or []
    if not aliases:
        return ""
    return str(aliases[0])[3:].strip()


def normalize_cardinality(card: Optional[str]) -> str:
    if not card:
        return DEFAULT_CARDINALITY
    if card == "1":
        return "1..1"
    return card


def build_concept_index(model: dict) -> ConceptIndex:
    """Build the concept lookup table from a parsed model export."""
    if not isinstance(model, dict) or "objects" not in model or "relationships" not in model:
        raise ModelError("Model export must contain 'objects' and 'relationships'")

    objects = list(model["objects"] or [])
    relationships = list(model["relationships"] or [])

    # First relationship of each kind per source object wins
    datatype_rel: dict[str, dict] = {}
    card_rel: dict[str, dict] = {}
    for rel in relationships:
        src = str(rel.get("sourceId", ""))
        if rel.get("type") == "Generalization":
            datatype_rel.setdefault(src, rel)
        elif rel.get("type") == "Aggregation":
            card_rel.setdefault(src, rel)

    index = ConceptIndex(objects=objects)
    for obj in objects:
        if not obj.get("parentId") or not obj.get("tag"):
            continue
        concept_id = resolve_concept_id(obj)
        if not concept_id:
            continue

        object_id = str(obj.get("id", ""))
        rel_dt = datatype_rel.get(object_id)
        datatype = DATATYPES.get(str(rel_dt.get("destId", ""))) if rel_dt else None
        rel_card = card_rel.get(object_id)
        cardinality = normalize_cardinality(rel_card.get("sourceCard") if rel_card else None)

        if concept_id in index.concepts:
            warn(f"Duplicate concept id {concept_id} (object {object_id}); last one wins")

        index.concepts[concept_id] = Concept(
            id=concept_id,
            object_id=object_id,
            parent_id=str(obj["parentId"]),
            name=str(obj.get("name", "")),
            english_alias=english_alias(obj),
            stereotype=str(obj.get("stereotype") or ""),
            datatype=datatype,
            cardinality=cardinality,
            referenced_concept=any(
                t.get("name") == REFERENCED_CONCEPT_TAG for t in obj.get("tag") or []
            ),
        )
        index.package_by_concept[concept_id] = str(obj["parentId"])

    return index
