"""
Fixture loading for the explorer and the SDG 11.3.1 demo.
Handles JSON/GeoJSON fixture reads, the concurrent demo fixture join,
and the in-memory explorer session.
"""
import asyncio
import json
from pathlib import Path
from typing import Any

import explorer
from models import ExplorerState, PopulationPayload, Record


# ============================================================================
# Fixture Definitions
# ============================================================================

CROSSWALK_FILE = "crosswalk.v1.json"

BUILT_UP_T_FILE = "built_up_t.geojson"
BUILT_UP_TN_FILE = "built_up_tn.geojson"
ADMIN_UNIT_FILE = "admin_unit.geojson"
POPULATIONS_FILE = "populations.json"

DEMO_FILES = [BUILT_UP_T_FILE, BUILT_UP_TN_FILE, ADMIN_UNIT_FILE, POPULATIONS_FILE]


def default_data_dir() -> Path:
    """data/ in the project root (two levels up from backend)."""
    backend_dir = Path(__file__).parent
    project_root = backend_dir.parent.parent
    return project_root / "data"


class FixtureLoadError(Exception):
    """Raised when a fixture file is missing or cannot be parsed."""

    def __init__(self, path: str | Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Could not load fixture {self.path}: {reason}")


# ============================================================================
# Fixture Readers
# ============================================================================

def read_json_fixture(path: str | Path) -> Any:
    """
    Read and parse a JSON or GeoJSON fixture.

    Raises:
        FixtureLoadError: if the file is missing, unreadable or not valid JSON
    """
    path = Path(path)
    if not path.exists():
        raise FixtureLoadError(path, "file not found")
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FixtureLoadError(path, str(exc)) from exc


def load_crosswalk(data_dir: str | Path) -> list[Record]:
    """
    Load the default explorer collection.

    A single object is treated as a one-record collection, like an import.
    """
    path = Path(data_dir) / CROSSWALK_FILE
    data = read_json_fixture(path)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise FixtureLoadError(path, "expected a JSON array of objects")
    return data


async def load_demo_fixtures(data_dir: str | Path) -> dict[str, Any]:
    """
    Load the four demo fixtures concurrently.

    The reads run in worker threads and are joined; the first failure
    fails the whole load.

    Returns:
        Dict with built_up_t, built_up_tn, admin_unit (GeoJSON dicts)
        and populations (PopulationPayload)
    """
    data_dir = Path(data_dir)
    built_t, built_tn, admin, pop = await asyncio.gather(
        *(asyncio.to_thread(read_json_fixture, data_dir / name) for name in DEMO_FILES)
    )

    for name, fc in ((BUILT_UP_T_FILE, built_t), (BUILT_UP_TN_FILE, built_tn), (ADMIN_UNIT_FILE, admin)):
        if not isinstance(fc, dict) or "type" not in fc:
            raise FixtureLoadError(data_dir / name, "expected a GeoJSON object")
        features = fc.get("features", [])
        if not isinstance(features, list) or not all(isinstance(f, dict) for f in features):
            raise FixtureLoadError(data_dir / name, "features must be a list of GeoJSON objects")

    try:
        populations = PopulationPayload.model_validate(pop)
    except ValueError as exc:
        raise FixtureLoadError(data_dir / POPULATIONS_FILE, str(exc)) from exc

    return {
        "built_up_t": built_t,
        "built_up_tn": built_tn,
        "admin_unit": admin,
        "populations": populations,
    }


# ============================================================================
# Explorer Session
# ============================================================================

class ExplorerStore:
    """
    Singleton-like holder for the explorer state of the running process.

    The state itself is immutable; every operation swaps in the state
    returned by the explorer functions.
    """

    def __init__(self):
        self.state = ExplorerState()
        self.data_dir: Path = default_data_dir()
        self.load_error: str | None = None

    def load_records(self, records: list[Record]) -> None:
        self.state = explorer.load(self.state, records)

    def load_fixture(self, data_dir: str | Path | None = None) -> None:
        """
        Load the crosswalk fixture into the explorer.

        On failure the collection collapses to empty and the error is kept
        in load_error; nothing is raised.
        """
        if data_dir is not None:
            self.data_dir = Path(data_dir)

        print(f"[data_loader] Loading crosswalk from {self.data_dir / CROSSWALK_FILE}")
        try:
            records = load_crosswalk(self.data_dir)
        except FixtureLoadError as exc:
            print(f"[data_loader] WARNING: {exc}")
            self.load_error = str(exc)
            records = []
        else:
            self.load_error = None

        self.load_records(records)
        print(f"[data_loader] Loaded {len(self.state.records):,} records")
        print(f"  Known fields: {len(self.state.known_fields)}")

    def reset_edits(self) -> None:
        """Reload the fixture, discarding edits. Filters are kept."""
        self.load_fixture()

    def clear(self) -> None:
        self.state = ExplorerState()
        self.load_error = None

    @property
    def record_count(self) -> int:
        return len(self.state.records)

    @property
    def field_count(self) -> int:
        return len(self.state.known_fields)


# Global explorer store instance
explorer_store = ExplorerStore()


def get_explorer_store() -> ExplorerStore:
    """Get the global explorer store instance."""
    return explorer_store
