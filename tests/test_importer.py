"""Tests for manual and bulk run import."""

from __future__ import annotations

import json

import pytest

from conftest import ms
from keytracker.config import get_settings
from keytracker.db.models import Character
from keytracker.errors import ImportValidationError
from keytracker.imports.runner import format_summary, main
from keytracker.imports.service import ImportedRun, ImportSummary, RowError, RunImporter
from keytracker.runs.schemas import CharacterIdentity

ROWS = [
    {
        "character": "Daemourne",
        "dungeon": "The Dawnbreaker",
        "level": 15,
        "spec": "Blood",
        "result": "+2",
        "date": "2025-09-10",
    },
    {
        "character": "Daemourne",
        "dungeon": "Ara-Kara, City of Echoes",
        "level": 14,
        "spec": "Unholy",
        "result": "+1",
        "date": "09/11/2025",
        "score": 285.5,
    },
    {
        "character": "Daemonk",
        "dungeon": "Halls of Atonement",
        "level": 16,
        "spec": "Windwalker",
        "result": "depleted",
        "date": "2025-09-12",
    },
]


@pytest.fixture
def importer(store, season_settings) -> RunImporter:
    return RunImporter(store, season_settings)


class TestImportedRun:
    def test_defaults_and_derived_fields(self):
        run = ImportedRun.model_validate(ROWS[0])
        assert run.upgrades == 2
        assert run.timed is True
        assert run.effective_score == 15 * 10 * 1.5
        assert run.completed_timestamp == ms(2025, 9, 10)
        assert run.identity == CharacterIdentity("Daemourne", "thrall", "us")

    def test_us_date_format(self):
        run = ImportedRun.model_validate(ROWS[1])
        assert run.completed_timestamp == ms(2025, 9, 11)
        assert run.effective_score == 285.5

    def test_depleted_score(self):
        run = ImportedRun.model_validate(ROWS[2])
        assert run.upgrades == 0
        assert run.effective_score == 160.0

    def test_record_uses_spec_role_and_default_season(self):
        record = ImportedRun.model_validate(ROWS[2]).to_run_record("season-tww-3")
        assert record.spec_role == "DPS"
        assert record.season == "season-tww-3"
        assert record.is_completed_within_time is False
        assert record.keystone_run_id is None


class TestBulkImport:
    async def test_imports_valid_rows(self, store, importer):
        summary = await importer.import_runs(ROWS)
        assert (summary.total, summary.added, summary.skipped, summary.errors) == (3, 3, 0, [])

        runs = await store.get_runs_by_spec(CharacterIdentity("Daemourne"))
        assert {run.spec_name for run in runs} == {"Blood", "Unholy"}

    async def test_reimport_reports_duplicates(self, importer):
        await importer.import_runs(ROWS)
        summary = await importer.import_runs(ROWS)
        assert (summary.added, summary.skipped) == (0, 3)

    async def test_row_errors_carry_one_based_index(self, importer):
        bad = [
            ROWS[0],
            {**ROWS[1], "level": 1},
            {**ROWS[2], "result": "+4"},
            {"character": "Daemourne"},
            {**ROWS[0], "date": "13/45/2025"},
        ]
        summary = await importer.import_runs(bad)
        assert summary.added == 1
        assert [error.index for error in summary.errors] == [2, 3, 4, 5]
        assert "level" in summary.errors[0].message
        assert "result" in summary.errors[1].message

    async def test_non_list_payload_rejected(self, importer):
        with pytest.raises(ImportValidationError):
            await importer.import_runs({"runs": ROWS})

    async def test_imported_character_class_unknown(self, store, importer):
        await importer.import_runs(ROWS[:1])
        character_id = await store.get_character_id(CharacterIdentity("Daemourne"))
        async with store._session_factory() as session:
            row = await session.get(Character, character_id)
        assert row.class_name == "Unknown"
        assert row.active_spec_role == "TANK"

    def test_summary_formatting(self):
        summary = ImportSummary(total=12, added=0, skipped=0, errors=[RowError(i, "bad") for i in range(1, 13)])
        text = format_summary(summary)
        assert "Errors: 12" in text
        assert "Run 10: bad" in text
        assert "Run 11: bad" not in text
        assert "...and 2 more" in text


class TestManualRun:
    async def test_add_manual_run(self, store, importer):
        result = await importer.add_manual_run(ROWS[0])
        assert result.inserted is True
        duplicate = await importer.add_manual_run(ImportedRun.model_validate(ROWS[0]))
        assert duplicate.inserted is False

    async def test_manual_run_validation_error(self, importer):
        with pytest.raises(ImportValidationError) as exc_info:
            await importer.add_manual_run({**ROWS[0], "spec": ""})
        assert exc_info.value.errors
        assert "spec" in str(exc_info.value)

    async def test_manual_run_explicit_season(self, store, importer):
        await importer.add_manual_run({**ROWS[0], "season": "season-tww-2"})
        runs = await store.get_runs_by_spec(CharacterIdentity("Daemourne"), season="season-tww-2")
        assert len(runs) == 1


class TestImportRunner:
    async def test_main_imports_file(self, tmp_path, database_url, monkeypatch, capsys):
        path = tmp_path / "runs.json"
        path.write_text(json.dumps(ROWS), encoding="utf-8")
        monkeypatch.setenv("KEYTRACKER_DATABASE_URL", database_url)
        get_settings.cache_clear()
        try:
            assert await main(path) == 0
        finally:
            get_settings.cache_clear()
        out = capsys.readouterr().out
        assert "Added: 3" in out

    async def test_main_rejects_invalid_json(self, tmp_path, database_url, monkeypatch):
        path = tmp_path / "runs.json"
        path.write_text("{not json", encoding="utf-8")
        monkeypatch.setenv("KEYTRACKER_DATABASE_URL", database_url)
        get_settings.cache_clear()
        try:
            assert await main(path) == 1
        finally:
            get_settings.cache_clear()
