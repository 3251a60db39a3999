"""Tests for serving stored profiles when the profile source is unavailable."""

from __future__ import annotations

import pytest

from conftest import FakeProfileSource, make_run, ms, profile_payload, upstream_run
from keytracker.errors import CharacterNotFoundError, MalformedResponseError, TransientFetchError
from keytracker.fallback.service import FallbackProfileSource, StoredProfiles
from keytracker.runs.schemas import CharacterIdentity, CharacterProfile

PROFILE = CharacterProfile(class_name="Death Knight", active_spec_name="Blood", active_spec_role="TANK")


@pytest.fixture
def stored(store, season_settings) -> StoredProfiles:
    return StoredProfiles(store, season_settings)


@pytest.fixture
async def seeded(store, identity):
    character_id = await store.upsert_character(identity, PROFILE)
    await store.insert_run(character_id, make_run("The Dawnbreaker", 12, ms(2025, 9, 10), score=250.0))
    await store.insert_run(character_id, make_run("The Dawnbreaker", 11, ms(2025, 9, 11), score=240.0))
    await store.insert_run(character_id, make_run("Halls of Atonement", 13, ms(2025, 9, 12), score=270.0))
    await store.insert_run(character_id, make_run("Halls of Atonement", 15, ms(2025, 3, 1), season="season-tww-2"))
    return character_id


class TestStoredProfile:
    async def test_profile_shape(self, stored, identity, seeded):
        profile = await stored.get_profile(identity)

        assert profile.data_source == "database"
        assert (profile.name, profile.realm, profile.region) == ("Daemourne", "thrall", "us")
        assert profile.class_name == "Death Knight"
        assert (profile.active_spec_name, profile.active_spec_role) == ("Blood", "TANK")
        assert [run.mythic_level for run in profile.recent_runs] == [13, 11, 12]
        assert [run.dungeon for run in profile.best_runs] == ["Halls of Atonement", "The Dawnbreaker"]

        run = profile.recent_runs[0]
        assert run.completed_at.timestamp() * 1000 == ms(2025, 9, 12)
        assert run.clear_time_ms == 1_800_000
        assert run.affixes == ["Tyrannical", "Xal'atath's Bargain: Ascendant"]

    async def test_explicit_season(self, stored, identity, seeded):
        profile = await stored.get_profile(identity, season="season-tww-2")
        assert [run.mythic_level for run in profile.recent_runs] == [15]

    async def test_recent_runs_capped(self, store, season_settings, identity, seeded):
        capped = StoredProfiles(store, season_settings, recent_limit=2)
        profile = await capped.get_profile(identity)
        assert len(profile.recent_runs) == 2

    async def test_unknown_character(self, stored):
        assert await stored.get_profile(CharacterIdentity("Nobody")) is None
        assert await stored.character_exists(CharacterIdentity("Nobody")) is False

    async def test_imported_character_without_class(self, store, stored):
        await store.upsert_character(CharacterIdentity("Daevoker"), CharacterProfile(active_spec_name="Devastation"))
        profile = await stored.get_profile(CharacterIdentity("Daevoker"))
        assert profile.class_name == "Unknown"
        assert profile.recent_runs == []


class TestRosterReads:
    async def test_recent_runs_skips_unknown(self, stored, identity, seeded):
        profiles = await stored.recent_runs([identity, CharacterIdentity("Nobody")])
        assert [profile.name for profile in profiles] == ["Daemourne"]
        assert await stored.character_exists(identity) is True

    async def test_mythic_plus_data_sums_best_scores(self, stored, identity, seeded):
        [entry] = await stored.mythic_plus_data([identity, CharacterIdentity("Nobody")])
        assert entry.name == "Daemourne"
        assert entry.role == "TANK"
        assert entry.mythic_plus_score == 520.0
        assert [run.mythic_level for run in entry.best_runs] == [13, 12]


class TestFallbackProfileSource:
    async def test_primary_used_when_available(self, stored, identity, seeded):
        primary = FakeProfileSource({"Daemourne": profile_payload(best=[upstream_run()])})
        profile = await FallbackProfileSource(primary, stored).fetch_profile(identity, "mythic_plus_best_runs")
        assert profile.data_source == "raiderio"

    async def test_stored_profile_served_on_outage(self, stored, identity, seeded):
        primary = FakeProfileSource({}, errors={"Daemourne": TransientFetchError("HTTP 503")})
        profile = await FallbackProfileSource(primary, stored).fetch_profile(identity, "mythic_plus_recent_runs")
        assert profile.data_source == "database"
        assert len(profile.recent_runs) == 3

    async def test_outage_for_unstored_character_reraised(self, stored):
        primary = FakeProfileSource({}, errors={"Nobody": TransientFetchError("timeout")})
        with pytest.raises(TransientFetchError):
            await FallbackProfileSource(primary, stored).fetch_profile(CharacterIdentity("Nobody"), "")

    async def test_other_failures_not_masked(self, stored, identity, seeded):
        primary = FakeProfileSource({}, errors={"Daemourne": MalformedResponseError("missing name")})
        source = FallbackProfileSource(primary, stored)
        with pytest.raises(MalformedResponseError):
            await source.fetch_profile(identity, "")
        with pytest.raises(CharacterNotFoundError):
            await FallbackProfileSource(FakeProfileSource({}), stored).fetch_profile(identity, "")

    async def test_stored_profiles_as_profile_source(self, stored, identity, seeded):
        profile = await stored.fetch_profile(identity, "mythic_plus_recent_runs")
        assert profile.name == "Daemourne"
        with pytest.raises(CharacterNotFoundError):
            await stored.fetch_profile(CharacterIdentity("Nobody"), "")
