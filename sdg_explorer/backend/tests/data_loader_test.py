import asyncio
import json
import shutil

import pytest

import explorer
from data_loader import (
    DEMO_FILES,
    ExplorerStore,
    FixtureLoadError,
    default_data_dir,
    load_crosswalk,
    load_demo_fixtures,
    read_json_fixture,
)
from models import PopulationPayload


@pytest.fixture
def data_dir(tmp_path):
    """Copy of the shipped fixtures that tests may break."""
    for path in default_data_dir().iterdir():
        shutil.copy(path, tmp_path / path.name)
    return tmp_path


def test_load_crosswalk_fixture():
    records = load_crosswalk(default_data_dir())
    assert len(records) > 0
    assert all(isinstance(r, dict) for r in records)
    assert "indicator" in records[0]


def test_crosswalk_single_object_is_wrapped(tmp_path):
    (tmp_path / "crosswalk.v1.json").write_text(json.dumps({"a": 1}))
    assert load_crosswalk(tmp_path) == [{"a": 1}]


def test_missing_or_malformed_fixture_raises(tmp_path):
    with pytest.raises(FixtureLoadError):
        read_json_fixture(tmp_path / "missing.json")

    bad = tmp_path / "crosswalk.v1.json"
    bad.write_text("[{")
    with pytest.raises(FixtureLoadError) as exc_info:
        load_crosswalk(tmp_path)
    assert exc_info.value.path == bad


def test_load_demo_fixtures(data_dir):
    fixtures = asyncio.run(load_demo_fixtures(data_dir))
    assert fixtures["built_up_t"]["type"] == "FeatureCollection"
    assert fixtures["admin_unit"]["type"] == "FeatureCollection"
    assert isinstance(fixtures["populations"], PopulationPayload)
    assert fixtures["populations"].t_n > fixtures["populations"].t


@pytest.mark.parametrize("missing", DEMO_FILES)
def test_any_missing_demo_fixture_fails_the_whole_load(data_dir, missing):
    (data_dir / missing).unlink()
    with pytest.raises(FixtureLoadError):
        asyncio.run(load_demo_fixtures(data_dir))


def test_invalid_populations_payload_fails(data_dir):
    (data_dir / "populations.json").write_text(json.dumps({"t": 2000}))
    with pytest.raises(FixtureLoadError):
        asyncio.run(load_demo_fixtures(data_dir))


def test_store_collapses_to_empty_when_fixture_fails(tmp_path):
    store = ExplorerStore()
    store.load_fixture(tmp_path)
    assert store.record_count == 0
    assert store.state.known_fields == []
    assert store.load_error is not None


def test_store_reset_discards_edits_and_keeps_filters(data_dir):
    store = ExplorerStore()
    store.load_fixture(data_dir)
    original = explorer.export_snapshot(store.state)

    state = explorer.set_editing_enabled(store.state, True)
    state = explorer.set_global_query(state, "land")
    first_id = explorer.identities(state)[0]
    state, _ = explorer.begin_edit(state, first_id)
    state = explorer.update_draft(state, "title", "edited")
    store.state = explorer.commit_edit(state)
    assert store.state.edited == {first_id}

    store.reset_edits()
    assert store.state.edited == set()
    assert explorer.export_snapshot(store.state) == original
    assert store.state.filters.query == "land"


def test_non_utf8_fixture_raises_load_error(tmp_path):
    bad = tmp_path / "crosswalk.v1.json"
    bad.write_bytes(b'[{"a": "\xff"}]')
    with pytest.raises(FixtureLoadError):
        read_json_fixture(bad)


def test_store_collapses_to_empty_on_undecodable_fixture(tmp_path):
    (tmp_path / "crosswalk.v1.json").write_bytes(b'[{"a": "\xff"}]')
    store = ExplorerStore()
    store.load_fixture(tmp_path)
    assert store.record_count == 0
    assert store.load_error is not None


def test_null_feature_in_demo_fixture_fails(data_dir):
    (data_dir / "built_up_t.geojson").write_text(json.dumps({"type": "FeatureCollection", "features": [None]}))
    with pytest.raises(FixtureLoadError):
        asyncio.run(load_demo_fixtures(data_dir))
