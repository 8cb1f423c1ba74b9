"""Tests for zib_compliance/conformance.py: fhirclient-backed conformance check."""

import pytest

from zib_compliance.concepts import build_concept_index
from zib_compliance.conformance import (
    FhirClientConformance,
    filter_conformance_messages,
    is_version_noise,
    lift_stu3,
)
from zib_compliance.outcomes import Severity, ValidationContext
from zib_compliance.overrides import OverrideResolver
from zib_compliance.validate_mappings import release_pattern, validate_resource


def _structure_definition(**extra):
    sd = {
        "resourceType": "StructureDefinition",
        "id": "zib-Patient",
        "url": "http://nictiz.nl/fhir/StructureDefinition/zib-Patient",
        "name": "ZibPatient",
        "status": "active",
        "kind": "resource",
        "abstract": False,
        "type": "Patient",
        "fhirVersion": "3.0.2",
    }
    sd.update(extra)
    return sd


GP_URL = "http://nictiz.nl/fhir/StructureDefinition/zib-HealthProfessional"


def _stu3_profile():
    """STU3 zib profile with string-valued type profiles in the snapshot."""
    return _structure_definition(
        mapping=[{"identity": "zib-patient-v3.1-2017EN", "name": "zib Patient"}],
        snapshot={"element": [
            {
                "id": "Patient",
                "path": "Patient",
                "min": 0,
                "max": "*",
            },
            {
                "id": "Patient.generalPractitioner",
                "path": "Patient.generalPractitioner",
                "short": "GeneralPractitioner",
                "alias": ["Huisarts"],
                "min": 0,
                "max": "1",
                "type": [{
                    "code": "Reference",
                    "targetProfile": GP_URL,
                    "profile": "http://hl7.org/fhir/StructureDefinition/Reference",
                }],
                "mapping": [{"identity": "zib-patient-v3.1-2017EN", "map": "NL-CM:0.1.12"}],
            },
        ]},
    )


class TestFilterMessages:
    def test_leading_version_message_dropped(self):
        msgs = ["fhirVersion: unrecognized version code '3.0.2' for R4", "other"]
        assert filter_conformance_messages(msgs) == ["other"]

    def test_only_leading_message_is_dropped(self):
        noise = "fhirVersion: unrecognized version code '3.0.2' for R4"
        assert filter_conformance_messages(["other", noise]) == ["other", noise]

    def test_empty(self):
        assert filter_conformance_messages([]) == []

    def test_is_version_noise(self):
        assert is_version_noise("fhirVersion: unrecognized version code 'x' for STU3")
        assert not is_version_noise("status: missing")


class TestFhirClientConformance:
    def test_valid_resource(self):
        result = FhirClientConformance("STU3")(_structure_definition())
        assert result.valid is True
        assert result.messages == []

    def test_version_mismatch_is_first_message(self):
        result = FhirClientConformance("R4")(_structure_definition())
        assert is_version_noise(result.messages[0])
        assert result.valid is True

    def test_unknown_property_does_not_invalidate(self):
        result = FhirClientConformance("STU3")(_structure_definition(bogus="x"))
        assert result.valid is True
        assert any("Superfluous entry" in m for m in result.messages)

    def test_missing_required_property_invalidates(self):
        sd = _structure_definition()
        del sd["status"]
        result = FhirClientConformance("STU3")(sd)
        assert result.valid is False
        assert any("status" in m for m in result.messages)

    def test_unsupported_version(self):
        with pytest.raises(ValueError):
            FhirClientConformance("DSTU2")

    def test_stu3_snapshot_with_string_target_profile_is_valid(self):
        result = FhirClientConformance("STU3")(_stu3_profile())
        assert result.valid is True
        assert result.messages == []

    def test_r4_still_rejects_string_target_profile(self):
        sd = _stu3_profile()
        sd["fhirVersion"] = "4.0.1"
        result = FhirClientConformance("R4")(sd)
        assert result.valid is False
        assert any("targetProfile" in m for m in result.messages)

    def test_stu3_extension_context_is_valid(self):
        sd = _structure_definition(
            kind="complex-type",
            type="Extension",
            contextType="resource",
            context=["Patient"],
            differential={"element": [{"id": "Extension", "path": "Extension"}]},
        )
        result = FhirClientConformance("STU3")(sd)
        assert result.valid is True

    def test_stu3_profile_passes_mapping_validation(self):
        concepts = build_concept_index({
            "objects": [{
                "id": "1", "name": "Huisarts", "parentId": "100", "stereotype": "",
                "alias": ["EN: GeneralPractitioner"],
                "tag": [
                    {"name": "DCM::ConceptId", "value": "NL-CM:0.1.12"},
                    {"name": "DCM::ReferencedConceptId", "value": "NL-CM:17.1.1"},
                ],
            }],
            "relationships": [],
        })
        context = ValidationContext()
        result = validate_resource(_stu3_profile(), "zib-Patient.json", concepts, OverrideResolver(None),
                                   context, pattern=release_pattern("2017"),
                                   conformance=FhirClientConformance("STU3"))
        assert result.conformance == []
        assert context.diagnostics == []
        assert context.worst is Severity.NONE


class TestLiftStu3:
    def test_type_profiles_become_lists(self):
        element = lift_stu3(_stu3_profile())["snapshot"]["element"][1]
        assert element["type"][0]["targetProfile"] == [GP_URL]
        assert element["type"][0]["profile"] == ["http://hl7.org/fhir/StructureDefinition/Reference"]

    def test_input_is_not_modified(self):
        sd = _stu3_profile()
        lift_stu3(sd)
        assert sd["snapshot"]["element"][1]["type"][0]["targetProfile"] == GP_URL

    def test_lists_are_left_alone(self):
        sd = _structure_definition(snapshot={"element": [
            {"path": "X", "type": [{"code": "Reference", "targetProfile": [GP_URL]}]},
        ]})
        assert lift_stu3(sd)["snapshot"]["element"][0]["type"][0]["targetProfile"] == [GP_URL]

    def test_value_set_binding(self):
        sd = _structure_definition(differential={"element": [
            {"path": "X", "binding": {"strength": "required",
                                      "valueSetReference": {"reference": "http://x/vs"}}},
            {"path": "Y", "binding": {"strength": "extensible", "valueSetUri": "http://x/vs2"}},
        ]})
        elements = lift_stu3(sd)["differential"]["element"]
        assert elements[0]["binding"] == {"strength": "required", "valueSet": "http://x/vs"}
        assert elements[1]["binding"] == {"strength": "extensible", "valueSet": "http://x/vs2"}

    def test_extension_context(self):
        sd = lift_stu3(_structure_definition(contextType="resource", context=["Patient", "Person"]))
        assert "contextType" not in sd
        assert sd["context"] == [
            {"type": "element", "expression": "Patient"},
            {"type": "element", "expression": "Person"},
        ]
