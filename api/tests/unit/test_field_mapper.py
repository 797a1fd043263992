"""
Tests unitarios para field_mapper.py.

Verifica la resolución por candidatos, validaciones, tablas de mapeo,
acumulación de errores y el pre-flight de esquema.
"""
from __future__ import annotations

import json

import pytest

from app.infrastructure.external.airtable_sync.field_mapper import (
    FieldMapper,
    FieldMappingConfig,
    ValidationType,
    apply_validation,
    load_field_mappings,
    _FieldFailure,
)
from app.infrastructure.external.airtable_sync.types import AirtableRecord
from app.shared.exceptions.sync import MappingError, SyncConfigError


def _mapper(config: dict) -> FieldMapper:
    return FieldMapper(FieldMappingConfig.model_validate(config))


USER_TABLES = {
    "countries": {"recC1": "Kenya"},
    "forms": {"recF1": "aKE1", "recF2": "aKE2"},
    "enumerators": {"recE1": "enum1"},
    "districts": {"recD1": "12345"},
}


class TestCandidateResolution:
    """Tests para la resolución de campos por nombres candidatos."""

    def test_email_resolves_from_capitalized_candidate(self, field_mapper) -> None:
        record = AirtableRecord("rec1", {"username": "ana", "Email": "  Ana@Example.org "})

        result = field_mapper.map_record("users", record, USER_TABLES)

        assert result.mapped["email"] == "ana@example.org"

    def test_first_candidate_with_value_wins(self, field_mapper) -> None:
        record = AirtableRecord("rec1", {"username": "ana", "email": "", "Email": "ana@example.org"})

        result = field_mapper.map_record("users", record, USER_TABLES)

        assert result.mapped["email"] == "ana@example.org"

    def test_required_missing_lists_all_candidates(self, field_mapper) -> None:
        record = AirtableRecord("rec9", {"Email": "x@example.org"})

        with pytest.raises(MappingError) as exc_info:
            field_mapper.map_record("users", record, USER_TABLES)

        error = exc_info.value
        assert error.record_id == "rec9"
        assert error.entity_type == "users"
        assert len(error.errors) == 1
        assert "username" in error.errors[0]
        assert "probados: username, Username" in error.errors[0]

    def test_optional_missing_is_omitted(self, field_mapper) -> None:
        record = AirtableRecord("rec1", {"username": "ana"})

        result = field_mapper.map_record("users", record, USER_TABLES)

        assert "email" not in result.mapped

    def test_default_applies_when_missing(self, field_mapper) -> None:
        record = AirtableRecord("rec1", {"username": "ana"})

        result = field_mapper.map_record("users", record, USER_TABLES)

        assert result.mapped["role"] == "user"

    def test_mapping_substitutes_literal_values(self, field_mapper) -> None:
        admin = AirtableRecord("rec1", {"username": "ana", "permission": "Admin"})
        manager = AirtableRecord("rec2", {"username": "ben", "Permission": "Manager"})

        assert field_mapper.map_record("users", admin, USER_TABLES).mapped["role"] == "admin"
        assert field_mapper.map_record("users", manager, USER_TABLES).mapped["role"] == "user"

    def test_dotted_names_build_nested_documents(self, field_mapper) -> None:
        record = AirtableRecord(
            "rec1",
            {"username": "ana", "asset": ["recF1"], "enumerators": ["recE1"], "gaul 2": ["recD1"]},
        )

        result = field_mapper.map_record("users", record, USER_TABLES)

        assert result.mapped["permissions"] == {
            "surveys": ["aKE1"],
            "enumerators": ["enum1"],
            "gaul_codes": ["12345"],
        }


class TestMappingTables:
    """Tests para la resolución de IDs vía tablas de mapeo."""

    def test_partial_resolution_warns_with_ratio(self, field_mapper) -> None:
        record = AirtableRecord("rec1", {"username": "ana", "asset": ["recF1", "recF2", "recX"]})

        result = field_mapper.map_record("users", record, USER_TABLES)

        assert result.mapped["permissions"]["surveys"] == ["aKE1", "aKE2"]
        assert any("2/3 resolved" in w for w in result.warnings)

    def test_nothing_resolved_on_optional_field_warns(self, field_mapper) -> None:
        record = AirtableRecord("rec1", {"username": "ana", "country": ["recNope"]})

        result = field_mapper.map_record("users", record, USER_TABLES)

        assert result.mapped["country"] == []
        assert any("0/1 resolved" in w for w in result.warnings)

    def test_missing_table_on_optional_field_warns(self, field_mapper) -> None:
        record = AirtableRecord("rec1", {"username": "ana", "country": ["recC1"]})

        result = field_mapper.map_record("users", record, {})

        assert "country" not in result.mapped
        assert any("'countries' no disponible" in w for w in result.warnings)

    def test_required_link_without_resolution_fails(self) -> None:
        mapper = _mapper(
            {"things": {"owner": {"airtable_fields": ["Owner"], "required": True, "mapping_table": "people"}}}
        )
        record = AirtableRecord("rec1", {"Owner": ["recP9"]})

        with pytest.raises(MappingError) as exc_info:
            mapper.map_record("things", record, {"people": {"recP1": "ana"}})

        assert "0/1 resolved" in exc_info.value.errors[0]

    def test_scalar_link_resolves(self) -> None:
        mapper = _mapper({"things": {"owner": {"airtable_fields": ["Owner"], "mapping_table": "people"}}})
        record = AirtableRecord("rec1", {"Owner": "recP1"})

        result = mapper.map_record("things", record, {"people": {"recP1": "ana"}})

        assert result.mapped == {"owner": "ana"}

    @pytest.mark.parametrize(
        "value",
        [
            {"id": "usrA1", "email": "ana@example.org", "name": "Ana"},
            [{"id": "att1", "url": "https://dl.airtable.com/a.png"}],
            ["recP1", 7],
        ],
    )
    def test_non_text_link_values_fail_the_record(self, value) -> None:
        mapper = _mapper({"things": {"owner": {"airtable_fields": ["Owner"], "mapping_table": "people"}}})
        record = AirtableRecord("rec1", {"Owner": value})

        with pytest.raises(MappingError) as exc_info:
            mapper.map_record("things", record, {"people": {"recP1": "ana"}})

        assert exc_info.value.record_id == "rec1"
        assert "se esperaba ID de texto" in exc_info.value.errors[0]

    def test_required_tables_are_unique_and_ordered(self, field_mapper) -> None:
        assert field_mapper.required_tables("users") == ["countries", "forms", "enumerators", "districts"]
        assert field_mapper.required_tables("surveys") == []
        assert field_mapper.required_tables("districts") == ["country_ids"]


class TestErrorAccumulation:
    def test_all_field_errors_reported_together(self, field_mapper) -> None:
        record = AirtableRecord("rec1", {"Form ID": "bad id!"})

        with pytest.raises(MappingError) as exc_info:
            field_mapper.map_record("surveys", record)

        errors = exc_info.value.errors
        assert len(errors) == 2
        assert any(e.startswith("asset_id:") for e in errors)
        assert any(e.startswith("name:") for e in errors)
        assert "bad id!" in exc_info.value.message

    def test_allowed_values_rejects_unknown(self) -> None:
        mapper = _mapper(
            {"things": {"kind": {"airtable_fields": ["Kind"], "allowed_values": ["a", "b"]}}}
        )

        with pytest.raises(MappingError) as exc_info:
            mapper.map_record("things", AirtableRecord("rec1", {"Kind": "c"}))

        assert "no permitido" in exc_info.value.errors[0]


class TestValidations:
    """Tests para apply_validation."""

    def test_lowercase_trim(self) -> None:
        assert apply_validation(ValidationType.LOWERCASE_TRIM, "  MiXeD ", "f") == "mixed"

    def test_email_format_rejects_invalid(self) -> None:
        with pytest.raises(_FieldFailure):
            apply_validation(ValidationType.EMAIL_FORMAT, "not-an-email", "email")

    def test_alphanumeric(self) -> None:
        assert apply_validation(ValidationType.ALPHANUMERIC, " aBc_12-3 ", "f") == "aBc_12-3"
        with pytest.raises(_FieldFailure):
            apply_validation(ValidationType.ALPHANUMERIC, "a b", "f")

    def test_numeric(self) -> None:
        assert apply_validation(ValidationType.NUMERIC, "42", "f") == 42
        assert apply_validation(ValidationType.NUMERIC, "4.5", "f") == 4.5
        assert apply_validation(ValidationType.NUMERIC, 7, "f") == 7
        with pytest.raises(_FieldFailure):
            apply_validation(ValidationType.NUMERIC, "abc", "f")
        with pytest.raises(_FieldFailure):
            apply_validation(ValidationType.NUMERIC, True, "f")

    def test_comma_separated(self) -> None:
        assert apply_validation(ValidationType.COMMA_SEPARATED, "a, b,,c ", "f") == ["a", "b", "c"]
        assert apply_validation(ValidationType.COMMA_SEPARATED, ["x", " y "], "f") == ["x", "y"]


class TestNaturalKey:
    def test_natural_key_is_normalized(self, field_mapper) -> None:
        record = AirtableRecord("rec1", {"Username": "  Ana "})

        assert field_mapper.resolve_natural_key("users", "username", record) == "ana"

    def test_missing_natural_key_is_none(self, field_mapper) -> None:
        assert field_mapper.resolve_natural_key("users", "username", AirtableRecord("rec1", {})) is None

    def test_unmapped_natural_key_is_config_error(self, field_mapper) -> None:
        with pytest.raises(SyncConfigError):
            field_mapper.resolve_natural_key("users", "nickname", AirtableRecord("rec1", {}))


class TestSchemaValidation:
    """Tests para validate_schema (pre-flight)."""

    def test_missing_required_column_is_error(self, field_mapper) -> None:
        sample = [AirtableRecord("rec1", {"Form ID": "a1", "Status": "Deployed", "Associated Countries": ["x"]})]

        report = field_mapper.validate_schema("surveys", sample)

        assert len(report["errors"]) == 1
        assert "'name'" in report["errors"][0]
        assert "probados: Form Name, name" in report["errors"][0]
        assert report["warnings"] == []

    def test_missing_optional_column_is_warning(self, field_mapper) -> None:
        sample = [AirtableRecord("rec1", {"Form ID": "a1", "Form Name": "Catch"})]

        report = field_mapper.validate_schema("surveys", sample)

        assert report["errors"] == []
        assert len(report["warnings"]) == 2

    def test_legacy_candidate_satisfies_schema(self, field_mapper) -> None:
        sample = [AirtableRecord("rec1", {"asset_id": "a1", "name": "Catch", "status": "x", "country_id": "y"})]

        assert field_mapper.validate_schema("surveys", sample) == {"errors": [], "warnings": []}

    def test_empty_sample_only_warns(self, field_mapper) -> None:
        report = field_mapper.validate_schema("surveys", [])

        assert report["errors"] == []
        assert len(report["warnings"]) == 1


class TestLoadFieldMappings:
    """Tests para load_field_mappings."""

    def test_bundled_file_has_all_entities(self, field_mapper) -> None:
        assert field_mapper.config.entity_types == ["users", "surveys", "districts"]

    def test_comment_keys_are_ignored(self, tmp_path) -> None:
        path = tmp_path / "mappings.json"
        path.write_text(json.dumps({"_comment": "x", "things": {"a": {"airtable_fields": ["A"]}}}))

        config = load_field_mappings(path)

        assert config.entity_types == ["things"]

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(SyncConfigError):
            load_field_mappings(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path) -> None:
        path = tmp_path / "mappings.json"
        path.write_text("{not json")

        with pytest.raises(SyncConfigError):
            load_field_mappings(path)

    @pytest.mark.parametrize(
        "rule",
        [
            {"airtable_fields": []},
            {"airtable_fields": ["A"], "validation": "uppercase"},
            {"airtable_fields": ["A"], "unknown_option": True},
            {"airtable_fields": ["  "]},
        ],
    )
    def test_invalid_rules_are_rejected(self, tmp_path, rule) -> None:
        path = tmp_path / "mappings.json"
        path.write_text(json.dumps({"things": {"a": rule}}))

        with pytest.raises(SyncConfigError):
            load_field_mappings(path)

    def test_unknown_entity(self, field_mapper) -> None:
        with pytest.raises(SyncConfigError):
            field_mapper.rules("boats")
