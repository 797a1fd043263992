"""
Tests unitarios para mapping_tables.py y table_mappings.py.
"""
from __future__ import annotations

import asyncio

import pytest

from app.infrastructure.external.airtable_sync.mapping_tables import (
    MAPPING_TABLES,
    MappingTableBuilder,
    build_table,
    normalize_country_id,
)
from app.infrastructure.external.airtable_sync.sync_config import SkipRecord
from app.infrastructure.external.airtable_sync.table_mappings import (
    build_district,
    build_survey,
    build_user,
    country_from_district_code,
    entity_for_source_table,
    get_entity_definition,
)
from app.infrastructure.external.airtable_sync.types import AirtableRecord
from app.shared.exceptions.sync import AirtableApiError, SyncConfigError, UnknownEntityTypeError


class TestNormalizeCountryId:
    @pytest.mark.parametrize(
        "code,name,expected",
        [
            ("KE", None, "kenya"),
            ("ken", None, "kenya"),
            ("MOZ", None, "mozambique"),
            ("ZAN", None, "zanzibar"),
            ("TLS", None, "timor"),
            (None, "Timor-Leste", "timor"),
            ("XX", "Republic of Kenya", "kenya"),
            ("XX", "Atlantis", None),
            (None, None, None),
        ],
    )
    def test_normalize(self, code, name, expected) -> None:
        assert normalize_country_id(code=code, name=name) == expected


class TestBuildTable:
    def test_build_table_skips_blank_values(self) -> None:
        records = [
            AirtableRecord("recF1", {"Form ID": "aKE1"}),
            AirtableRecord("recF2", {"Form ID": ""}),
            AirtableRecord("recF3", {}),
        ]

        assert build_table(MAPPING_TABLES["forms"], records) == {"recF1": "aKE1"}

    def test_enumerators_are_stripped(self) -> None:
        records = [AirtableRecord("recE1", {"Kobo Username": " enum1 "})]

        assert build_table(MAPPING_TABLES["enumerators"], records) == {"recE1": "enum1"}

    def test_districts_are_strings(self) -> None:
        records = [AirtableRecord("recD1", {"Gaul 2 Code": 12345})]

        assert build_table(MAPPING_TABLES["districts"], records) == {"recD1": "12345"}

    def test_country_ids_from_code_or_name(self) -> None:
        records = [
            AirtableRecord("recC1", {"Country": "Kenya", "Code": "KE"}),
            AirtableRecord("recC2", {"Country": "Timor-Leste"}),
            AirtableRecord("recC3", {"Country": "Atlantis"}),
        ]

        assert build_table(MAPPING_TABLES["country_ids"], records) == {"recC1": "kenya", "recC2": "timor"}


class TestMappingTableBuilder:
    """Tests para MappingTableBuilder.build."""

    @pytest.mark.asyncio
    async def test_builds_tables_and_fetches_each_source_once(self, fake_airtable, airtable_client) -> None:
        fake_airtable.set_table("countries", [
            {"id": "recC1", "fields": {"Country": "Kenya", "Code": "KE"}},
            {"id": "recC2", "fields": {"Country": "Mozambique", "Code": "MZ"}},
        ])
        fake_airtable.set_table("forms", [{"id": "recF1", "fields": {"Form ID": "aKE1"}}])

        tables = await MappingTableBuilder(airtable_client).build(["countries", "country_ids", "forms"])

        assert tables == {
            "countries": {"recC1": "Kenya", "recC2": "Mozambique"},
            "country_ids": {"recC1": "kenya", "recC2": "mozambique"},
            "forms": {"recF1": "aKE1"},
        }
        assert len(fake_airtable.requests_for("countries")) == 1
        assert len(fake_airtable.requests_for("forms")) == 1

    @pytest.mark.asyncio
    async def test_no_tables_no_requests(self, fake_airtable, airtable_client) -> None:
        assert await MappingTableBuilder(airtable_client).build([]) == {}
        assert fake_airtable.requests == []

    @pytest.mark.asyncio
    async def test_unknown_table_is_config_error(self, fake_airtable, airtable_client) -> None:
        with pytest.raises(SyncConfigError):
            await MappingTableBuilder(airtable_client).build(["forms", "boats"])

        assert fake_airtable.requests == []

    @pytest.mark.asyncio
    async def test_failed_fetch_cancels_pending_fetches(self) -> None:
        cancelled = asyncio.Event()

        class Client:
            async def fetch_table(self, table_name: str) -> list:
                if table_name == "countries":
                    raise AirtableApiError("Airtable respondió 403", status_code=403)
                try:
                    await asyncio.sleep(30)
                except asyncio.CancelledError:
                    cancelled.set()
                    raise
                return []

        with pytest.raises(AirtableApiError):
            await MappingTableBuilder(Client()).build(["forms", "countries"])

        assert cancelled.is_set()


class TestDocumentBuilders:
    """Tests para los builders de documentos por entidad."""

    def test_build_user_defaults(self) -> None:
        document = build_user({"username": "ana", "role": "superuser"}, AirtableRecord("rec1"))

        assert document == {
            "username": "ana",
            "email": None,
            "name": "ana",
            "role": "user",
            "country": [],
            "permissions": {"surveys": [], "enumerators": [], "gaul_codes": []},
        }

    def test_build_user_keeps_admin_and_lists(self) -> None:
        mapped = {
            "username": "ana",
            "name": "Ana",
            "role": "admin",
            "country": "Kenya",
            "permissions": {"surveys": ["aKE1"]},
        }

        document = build_user(mapped, AirtableRecord("rec1"))

        assert document["role"] == "admin"
        assert document["name"] == "Ana"
        assert document["country"] == ["Kenya"]
        assert document["permissions"]["surveys"] == ["aKE1"]

    def test_build_survey_active_only_when_true(self) -> None:
        deployed = build_survey({"asset_id": "a1", "name": "Catch", "active": True}, AirtableRecord("rec1"))
        unknown = build_survey({"asset_id": "a2", "name": "Catch", "active": "Paused"}, AirtableRecord("rec2"))

        assert deployed["active"] is True
        assert unknown["active"] is False

    @pytest.mark.parametrize(
        "district_code,expected",
        [("ZAN-01", "zanzibar"), ("KEY-3", "kenya"), ("MOZ-1", "mozambique"), ("XX-1", None), (None, None)],
    )
    def test_country_from_district_code(self, district_code, expected) -> None:
        assert country_from_district_code(district_code) == expected

    def test_build_district_uses_linked_country(self) -> None:
        mapped = {"code": 12345, "name": "Kilifi", "country_id": ["kenya"], "asset_ids": ["aKE1"]}

        document = build_district(mapped, AirtableRecord("rec1"))

        assert document == {
            "code": "12345",
            "name": "Kilifi",
            "district_code": None,
            "country_id": "kenya",
            "asset_ids": ["aKE1"],
        }

    def test_build_district_falls_back_to_code_prefix(self) -> None:
        mapped = {"code": "1", "name": "Unguja", "district_code": "ZAN-01", "asset_ids": ["aZ1"]}

        assert build_district(mapped, AirtableRecord("rec1"))["country_id"] == "zanzibar"

    def test_build_district_without_country_is_skipped(self) -> None:
        with pytest.raises(SkipRecord):
            build_district({"code": "1", "name": "X", "asset_ids": ["a1"]}, AirtableRecord("rec1"))

    def test_build_district_without_assets_is_skipped(self) -> None:
        with pytest.raises(SkipRecord):
            build_district({"code": "1", "name": "X", "country_id": ["kenya"]}, AirtableRecord("rec1"))


class TestEntityDefinitions:
    def test_get_entity_definition(self) -> None:
        definition = get_entity_definition("users")

        assert definition.source_table == "validation"
        assert definition.natural_key == "username"
        assert definition.issues_credentials is True

    def test_unknown_entity_type(self) -> None:
        with pytest.raises(UnknownEntityTypeError) as exc_info:
            get_entity_definition("boats")

        assert exc_info.value.status_code == 404
        assert exc_info.value.details["known_entity_types"] == ["users", "surveys", "districts"]

    @pytest.mark.parametrize(
        "table,expected",
        [("validation", "users"), (" Forms ", "surveys"), ("districts", "districts"), ("boats", None)],
    )
    def test_entity_for_source_table(self, table, expected) -> None:
        assert entity_for_source_table(table) == expected
