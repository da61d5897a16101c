"""
Column resolver tests.

Covers header normalization, every default field, header-order tie-breaks
and the non-exclusive binding rule.
"""

import pytest

from referrals.columns import (
    CANONICAL_FIELDS,
    DEFAULT_SYNONYMS,
    FIELD_KEYS,
    REQUIRED_FIELDS,
    ColumnMapping,
    available_columns,
    normalize_header,
    resolve_columns,
    validate_required_columns,
)


class TestNormalizeHeader:
    @pytest.mark.parametrize("header", ["Case Facility", "CASEFACILITY", "case_facility", "  case-facility. "])
    def test_case_spacing_and_punctuation_ignored(self, header):
        assert normalize_header(header) == "casefacility"

    def test_non_string_header(self):
        assert normalize_header(2024) == "2024"

    def test_none_and_nan_are_empty(self):
        assert normalize_header(None) == ""
        assert normalize_header(float("nan")) == ""

    def test_non_ascii_letters_stripped(self):
        assert normalize_header("Médecin") == "mdecin"


class TestSynonymTable:
    def test_every_field_has_synonyms(self):
        for f in CANONICAL_FIELDS:
            assert f.synonyms, f.key

    def test_required_fields(self):
        assert REQUIRED_FIELDS == ("created_date", "referring_doctor")

    def test_schema_order(self):
        assert FIELD_KEYS[0] == "created_date"
        assert FIELD_KEYS[-1] == "case_status"
        assert len(FIELD_KEYS) == 14

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_SYNONYMS["facility"] = ("Site",)

    def test_no_default_synonym_shared_between_fields(self):
        seen = {}
        for key, synonyms in DEFAULT_SYNONYMS.items():
            for s in synonyms:
                norm = normalize_header(s)
                assert seen.setdefault(norm, key) == key, f"{s!r} used by {seen[norm]} and {key}"


class TestResolveColumns:
    @pytest.mark.parametrize("header", ["Case Facility", "CASEFACILITY", "case_facility"])
    def test_facility_variants(self, header):
        mapping = resolve_columns([header])
        assert mapping.header_for("facility") == header

    def test_every_synonym_resolves_to_its_field(self):
        for f in CANONICAL_FIELDS:
            for synonym in f.synonyms:
                mapping = resolve_columns([synonym.upper()])
                assert mapping.header_for(f.key) == synonym.upper()

    def test_header_row_from_export(self):
        headers = [
            "Created Date",
            "Referring Doctor",
            "Referring Doctor NPI",
            "Case Facility",
            "Primary Insurance",
            "Discipline",
            "Case Therapist",
            "Arrived Visits",
            "Scheduled Visits",
            "Date of Initial Eval",
            "Date of First Scheduled Visit",
            "Date of First Arrived Visit",
            "Discharge Date",
            "Case Status",
        ]
        mapping = resolve_columns(headers)
        assert mapping.keys() == list(FIELD_KEYS)
        assert mapping.as_dict() == dict(zip(FIELD_KEYS, headers))

    def test_unmatched_fields_are_absent(self):
        mapping = resolve_columns(["Doctor", "Notes"])
        assert "referring_doctor" in mapping
        assert "created_date" not in mapping
        assert mapping.header_for("created_date") is None
        assert len(mapping) == 1

    def test_empty_headers_give_empty_mapping(self):
        mapping = resolve_columns([])
        assert len(mapping) == 0
        assert mapping.missing_required() == ["created_date", "referring_doctor"]

    def test_header_order_beats_synonym_priority(self):
        mapping = resolve_columns(["Doctor", "Referring Doctor"])
        assert mapping.header_for("referring_doctor") == "Doctor"
        mapping = resolve_columns(["Referring Doctor", "Doctor"])
        assert mapping.header_for("referring_doctor") == "Referring Doctor"

    def test_first_header_wins_for_equivalent_headers(self):
        mapping = resolve_columns(["facility", "FACILITY", "Facility"])
        assert mapping.header_for("facility") == "facility"

    def test_header_may_bind_several_fields(self):
        synonyms = {"facility": ("Site",), "therapist": ("Provider", "site")}
        mapping = resolve_columns(["Provider Name", "SITE"], synonyms)
        assert mapping.header_for("facility") == "SITE"
        assert mapping.header_for("therapist") == "SITE"

    def test_injected_table_replaces_defaults(self):
        mapping = resolve_columns(["Created Date", "Referral Source"], {"referring_doctor": ("Referral Source",)})
        assert mapping.as_dict() == {"referring_doctor": "Referral Source"}

    def test_empty_synonym_never_matches(self):
        mapping = resolve_columns(["", "---"], {"facility": ("", "Facility")})
        assert "facility" not in mapping

    def test_deterministic(self):
        headers = ["Status", "Doctor", "Created", "Payer", "Clinic"]
        assert resolve_columns(headers).as_dict() == resolve_columns(headers).as_dict()

    def test_unmatched_headers(self):
        headers = ["Doctor", "Notes", "Created Date", "Internal ID"]
        mapping = resolve_columns(headers)
        assert mapping.unmatched_headers(headers) == ["Notes", "Internal ID"]

    def test_mapping_is_immutable(self):
        mapping = resolve_columns(["Doctor"])
        with pytest.raises(TypeError):
            mapping.bindings["facility"] = "Doctor"
        with pytest.raises(AttributeError):
            mapping.bindings = {}

    def test_mapping_copies_input(self):
        source = {"facility": "Clinic"}
        mapping = ColumnMapping(source)
        source["facility"] = "Other"
        assert mapping.header_for("facility") == "Clinic"


class TestHelpers:
    def test_available_columns_in_schema_order(self):
        assert available_columns(["Case Status", "Doctor", "Created"]) == ["created_date", "referring_doctor", "case_status"]

    def test_validate_required_columns_ok(self):
        assert validate_required_columns(["Created Date", "Physician"]) == (True, [])

    def test_validate_required_columns_missing(self):
        assert validate_required_columns(["Facility"]) == (False, ["created_date", "referring_doctor"])
