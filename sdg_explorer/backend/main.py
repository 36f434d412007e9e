"""
FastAPI application for the SDG Explorer.
Provides the JSON explorer endpoints and the SDG 11.3.1 (LCR/PGR) demo.
"""
import json
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware

import explorer
from data_loader import (
    CROSSWALK_FILE,
    DEMO_FILES,
    FixtureLoadError,
    default_data_dir,
    get_explorer_store,
    load_demo_fixtures,
)
from explorer import (
    EditingDisabled,
    EditSessionConflict,
    NoActiveEditSession,
    RecordImportError,
    UnknownRecordIdentity,
)
from metrics import (
    GeometryError,
    build_metric_cards,
    collection_bounds,
    compute_rates,
    compute_rates_for_payload,
    feature_collection_area,
)
from models import (
    AreaStats,
    ColumnVisibilityRequest,
    ConfigResponse,
    DemoResponse,
    DraftResponse,
    DraftUpdateRequest,
    EditingToggleRequest,
    ExplorerState,
    FieldFilterRequest,
    HealthResponse,
    ImportResponse,
    QueryRequest,
    RatesRequest,
    RecordRow,
    RecordsResponse,
)


DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"]


# ============================================================================
# Application Lifecycle
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the crosswalk fixture on startup."""
    # Data directory - check environment variable first, then default location
    data_dir = os.environ.get("SDG_DATA_DIR")
    data_dir = Path(data_dir) if data_dir else default_data_dir()

    print(f"Looking for fixtures in: {data_dir}")

    store = get_explorer_store()
    store.clear()
    store.load_fixture(data_dir)
    if store.load_error:
        print("API will start with an empty explorer collection.")

    yield


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="SDG Explorer API",
    description="JSON data explorer and SDG 11.3.1 land consumption demo",
    version="1.0.0",
    lifespan=lifespan,
)

cors_origins = os.environ.get("SDG_CORS_ORIGINS")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins.split(",") if cors_origins else DEFAULT_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Simple health check endpoint."""
    return HealthResponse(status="ok")


# ============================================================================
# Configuration
# ============================================================================

@app.get("/config", response_model=ConfigResponse)
async def get_config():
    """Data directory, fixture names and the size of the loaded collection."""
    store = get_explorer_store()
    return ConfigResponse(
        data_dir=str(store.data_dir),
        crosswalk_file=CROSSWALK_FILE,
        demo_files=DEMO_FILES,
        record_count=store.record_count,
        field_count=store.field_count,
        priority_columns=explorer.PRIORITY_COLUMNS,
    )


# ============================================================================
# Explorer: Records & Filters
# ============================================================================

@app.get("/explorer/records", response_model=RecordsResponse)
async def get_records():
    """
    Records passing the current filters, with their identities and
    edit flags, plus the column metadata needed to render the table.
    """
    state = get_explorer_store().state
    editing_identity = state.editing.identity if state.editing else None

    rows = []
    for index, record in explorer.iter_visible(state):
        identity = explorer.record_identity(record, index, state.known_fields)
        rows.append(RecordRow(
            identity=identity,
            index=index,
            edited=identity in state.edited,
            editing=identity == editing_identity,
            record=record,
        ))

    return RecordsResponse(
        rows=rows,
        visible_count=len(rows),
        total_count=len(state.records),
        edited_count=len(state.edited),
        known_fields=state.known_fields,
        visible_fields=explorer.visible_fields(state),
        column_labels={key: explorer.column_label(key) for key in state.known_fields},
        filters_active=state.filters.is_active,
    )


@app.get("/explorer/state", response_model=ExplorerState)
async def get_state():
    return get_explorer_store().state


@app.put("/explorer/query", response_model=ExplorerState)
async def set_query(request: QueryRequest):
    store = get_explorer_store()
    store.state = explorer.set_global_query(store.state, request.query)
    return store.state


@app.put("/explorer/filters/{field}", response_model=ExplorerState)
async def set_field_filter(field: str, request: FieldFilterRequest):
    store = get_explorer_store()
    store.state = explorer.set_field_filter(store.state, field, request.pattern, request.mode)
    return store.state


@app.delete("/explorer/filters", response_model=ExplorerState)
async def clear_filters():
    """Clear the query and all column filters, and exit edit mode."""
    store = get_explorer_store()
    store.state = explorer.clear_filters(store.state)
    return store.state


# ============================================================================
# Explorer: Settings
# ============================================================================

@app.put("/explorer/columns/{field}", response_model=ExplorerState)
async def set_column_visibility(field: str, request: ColumnVisibilityRequest):
    store = get_explorer_store()
    try:
        store.state = explorer.set_column_visible(store.state, field, request.visible)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown field '{field}'")
    return store.state


@app.post("/explorer/columns/show-all", response_model=ExplorerState)
async def show_all_columns():
    store = get_explorer_store()
    store.state = explorer.show_all_columns(store.state)
    return store.state


@app.put("/explorer/editing", response_model=ExplorerState)
async def set_editing(request: EditingToggleRequest):
    store = get_explorer_store()
    store.state = explorer.set_editing_enabled(store.state, request.enabled)
    return store.state


# ============================================================================
# Explorer: Edit Session
# ============================================================================

@app.post("/explorer/edit/commit", response_model=ExplorerState)
async def commit_edit():
    """Write the draft back into the collection and mark the record edited."""
    store = get_explorer_store()
    try:
        store.state = explorer.commit_edit(store.state)
    except NoActiveEditSession as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except UnknownRecordIdentity as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return store.state


@app.post("/explorer/edit/{identity}", response_model=DraftResponse)
async def begin_edit(identity: str):
    store = get_explorer_store()
    try:
        store.state, draft = explorer.begin_edit(store.state, identity)
    except (EditSessionConflict, EditingDisabled) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except UnknownRecordIdentity as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return DraftResponse(identity=identity, draft=draft)


@app.patch("/explorer/edit", response_model=DraftResponse)
async def update_draft(request: DraftUpdateRequest):
    store = get_explorer_store()
    session = store.state.editing
    if session is None:
        raise HTTPException(status_code=409, detail=str(NoActiveEditSession()))

    value = request.value
    if request.raw is not None:
        value = explorer.coerce_draft_input(session.draft.get(request.field), request.raw)

    store.state = explorer.update_draft(store.state, request.field, value)
    return DraftResponse(identity=session.identity, draft=store.state.editing.draft)


@app.delete("/explorer/edit", response_model=ExplorerState)
async def cancel_edit():
    store = get_explorer_store()
    store.state = explorer.cancel_edit(store.state)
    return store.state


# ============================================================================
# Explorer: Import / Export
# ============================================================================

@app.post("/explorer/import", response_model=ImportResponse)
async def import_records(request: Request):
    """
    Replace the collection with the JSON document in the request body.
    A single object becomes a one-record collection.
    """
    store = get_explorer_store()
    body = await request.body()
    try:
        records = explorer.import_collection(body)
    except RecordImportError as exc:
        print(f"[explorer] Import rejected ({exc.reason}): {exc}")
        raise HTTPException(
            status_code=400,
            detail={"reason": exc.reason, "message": "Invalid JSON file. Please check the format."},
        ) from exc

    store.load_records(records)
    print(f"[explorer] Imported {len(records):,} records")
    return ImportResponse(record_count=store.record_count, known_fields=store.state.known_fields)


@app.get("/explorer/export")
async def export_records():
    """Download the full collection, edits included, as indented JSON."""
    snapshot = explorer.export_snapshot(get_explorer_store().state)
    filename = f"exported-data-{datetime.now(timezone.utc).date().isoformat()}.json"
    return Response(
        content=json.dumps(snapshot, indent=2, ensure_ascii=False),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/explorer/reset", response_model=ImportResponse)
async def reset_edits():
    """Reload the crosswalk fixture, discarding all edits."""
    store = get_explorer_store()
    store.reset_edits()
    return ImportResponse(record_count=store.record_count, known_fields=store.state.known_fields)


# ============================================================================
# SDG 11.3.1 Demo
# ============================================================================

@app.get("/demo/sdg-11-3-1", response_model=DemoResponse)
async def sdg_demo():
    """
    Load the built-up, admin boundary and population fixtures, compute
    built-up areas and the LCR/PGR indicators.
    """
    store = get_explorer_store()
    try:
        fixtures = await load_demo_fixtures(store.data_dir)
        area_t = feature_collection_area(fixtures["built_up_t"])
        area_tn = feature_collection_area(fixtures["built_up_tn"])
        admin_bounds = collection_bounds(fixtures["admin_unit"])
    except (FixtureLoadError, GeometryError) as exc:
        print(f"[demo] {exc}")
        raise HTTPException(
            status_code=502,
            detail="There was a problem loading the demo data.",
        ) from exc

    pop = fixtures["populations"]
    stats = compute_rates_for_payload(area_t, area_tn, pop)
    print(f"[demo] area_t={area_t:,.0f} m2 area_tn={area_tn:,.0f} m2 years={stats.years} lcr={stats.lcr} pgr={stats.pgr}")

    return DemoResponse(
        stats=stats,
        meta=pop,
        metrics=build_metric_cards(stats, pop),
        admin_bounds=admin_bounds,
        built_up_t=fixtures["built_up_t"],
        built_up_tn=fixtures["built_up_tn"],
        admin_unit=fixtures["admin_unit"],
    )


@app.post("/demo/rates", response_model=AreaStats)
async def compute_demo_rates(request: RatesRequest):
    """Compute LCR, PGR and their ratio from explicit areas and populations."""
    return compute_rates(
        request.area_t_m2,
        request.area_tn_m2,
        request.t,
        request.t_n,
        request.population_t,
        request.population_tn,
    )


# ============================================================================
# Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
