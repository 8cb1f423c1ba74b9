"""Tests for zib_compliance/overrides.py: approved deviations."""

import pytest

from zib_compliance.overrides import OverrideError, OverrideResolver, load_overrides


SAMPLE_YAML = """\
zib-Patient:
  deviations:
    Patient.birthDate:
      - cardinality: "1..1"
        reason: "Birth date is mandatory in this exchange"
      - datatype: date
        reason: "Only the date is exchanged"
    Patient.name:
      - short: "Name"
        reason: "Shortened"
      - short: "Patient name"
        reason: "Later decision"
"""


class TestOverrideResolver:
    def test_no_document_returns_none(self):
        resolver = OverrideResolver(None)
        assert resolver.check("zib-Patient", "Patient.birthDate", "cardinality") is None

    def test_returns_value(self, tmp_path):
        path = tmp_path / "deviations.yaml"
        path.write_text(SAMPLE_YAML, encoding="utf-8")
        resolver = load_overrides(path)
        assert resolver.check("zib-Patient", "Patient.birthDate", "cardinality") == "1..1"
        assert resolver.check("zib-Patient", "Patient.birthDate", "datatype") == "date"

    def test_last_entry_wins(self, tmp_path):
        path = tmp_path / "deviations.yaml"
        path.write_text(SAMPLE_YAML, encoding="utf-8")
        resolver = load_overrides(path)
        assert resolver.check("zib-Patient", "Patient.name", "short") == "Patient name"

    def test_unknown_keys_return_none(self, tmp_path):
        path = tmp_path / "deviations.yaml"
        path.write_text(SAMPLE_YAML, encoding="utf-8")
        resolver = load_overrides(path)
        assert resolver.check("zib-Other", "Patient.name", "short") is None
        assert resolver.check("zib-Patient", "Patient.gender", "short") is None
        assert resolver.check("zib-Patient", "Patient.name", "alias") is None

    def test_missing_reason_is_fatal(self):
        resolver = OverrideResolver({
            "R1": {"deviations": {"E1": [{"cardinality": "0..1"}]}},
        })
        with pytest.raises(OverrideError, match="no reason"):
            resolver.check("R1", "E1", "cardinality")

    def test_empty_reason_is_fatal(self):
        resolver = OverrideResolver({
            "R1": {"deviations": {"E1": [{"cardinality": "0..1", "reason": ""}]}},
        })
        with pytest.raises(OverrideError):
            resolver.check("R1", "E1", "cardinality")

    def test_missing_reason_on_other_field_is_not_checked(self):
        resolver = OverrideResolver({
            "R1": {"deviations": {"E1": [
                {"short": "x"},
                {"cardinality": "0..1", "reason": "ok"},
            ]}},
        })
        assert resolver.check("R1", "E1", "cardinality") == "0..1"

    def test_scalar_values_are_strings(self):
        resolver = OverrideResolver({"R1": {"deviations": {"E1": [{"cardinality": 1, "reason": "r"}]}}})
        assert resolver.check("R1", "E1", "cardinality") == "1"


class TestLoadOverrides:
    def test_none_path(self):
        assert load_overrides(None).check("R", "E", "short") is None

    def test_json_is_accepted(self, tmp_path):
        path = tmp_path / "deviations.json"
        path.write_text('{"R1": {"deviations": {"E1": [{"alias": "x", "reason": "r"}]}}}', encoding="utf-8")
        assert load_overrides(path).check("R1", "E1", "alias") == "x"

    def test_malformed_shape(self, tmp_path):
        path = tmp_path / "deviations.yaml"
        path.write_text("R1:\n  deviations:\n    E1: not-a-list\n", encoding="utf-8")
        with pytest.raises(OverrideError, match="malformed"):
            load_overrides(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "deviations.yaml"
        path.write_text("R1: [unclosed\n", encoding="utf-8")
        with pytest.raises(OverrideError):
            load_overrides(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(OverrideError):
            load_overrides(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "deviations.yaml"
        path.write_text("", encoding="utf-8")
        assert load_overrides(path).check("R1", "E1", "short") is None
