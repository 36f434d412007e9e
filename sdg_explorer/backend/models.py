"""
Pydantic models for explorer state, rate payloads and API request/response schemas.
"""
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


# A record is an arbitrary JSON object: null, bool, number, text,
# list or nested mapping values keyed by field name.
Record = dict[str, Any]


# ============================================================================
# Filter State
# ============================================================================

class MatchMode(str, Enum):
    """How a per-field pattern is compared against a value."""
    SUBSTRING = "substring"
    EXACT = "exact"


class ColumnFilter(BaseModel):
    """Pattern and match mode configured for a single field."""
    pattern: str = ""
    mode: MatchMode = MatchMode.SUBSTRING


class FilterState(BaseModel):
    """Global text query plus per-field filters."""
    query: str = ""
    column_filters: dict[str, ColumnFilter] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return bool(self.query) or any(f.pattern for f in self.column_filters.values())


# ============================================================================
# Edit Overlay
# ============================================================================

class EditSession(BaseModel):
    """The single record currently being edited and its draft fields."""
    identity: str
    draft: Record = Field(default_factory=dict)


# ============================================================================
# Explorer State
# ============================================================================

class ExplorerState(BaseModel):
    """
    Complete, serializable state of the JSON explorer.

    Owned by the caller; the functions in explorer.py take a state and
    return a new one without mutating the input.
    """
    records: list[Record] = Field(default_factory=list)
    known_fields: list[str] = Field(default_factory=list)
    filters: FilterState = Field(default_factory=FilterState)
    visible_columns: dict[str, bool] = Field(default_factory=dict)
    edited: set[str] = Field(default_factory=set)
    editing: Optional[EditSession] = None
    editing_enabled: bool = False


# ============================================================================
# Rate Calculator
# ============================================================================

class PopulationPayload(BaseModel):
    """Contents of populations.json: two time labels and their populations."""
    t: int
    t_n: int
    population_t: float
    population_tn: float


class AreaStats(BaseModel):
    """Built-up areas and the derived SDG 11.3.1 rates."""
    area_t_m2: float
    area_tn_m2: float
    years: int
    lcr: Optional[float] = None
    pgr: Optional[float] = None
    ratio: Optional[float] = None  # LCR / PGR


class MetricCard(BaseModel):
    """A labelled, display-formatted value for the demo results grid."""
    label: str
    value: str
    kind: str = Field(default="other", description="area, rate, ratio or other")


# ============================================================================
# API Requests
# ============================================================================

class QueryRequest(BaseModel):
    """Request body for PUT /explorer/query."""
    query: str = ""


class FieldFilterRequest(BaseModel):
    """Request body for PUT /explorer/filters/{field}."""
    pattern: str = ""
    mode: MatchMode = MatchMode.SUBSTRING


class ColumnVisibilityRequest(BaseModel):
    """Request body for PUT /explorer/columns/{field}."""
    visible: bool


class EditingToggleRequest(BaseModel):
    """Request body for PUT /explorer/editing."""
    enabled: bool


class DraftUpdateRequest(BaseModel):
    """
    Request body for PATCH /explorer/edit.

    Either send a JSON `value` to store as-is, or `raw` text as typed into a
    table cell, which is coerced according to the field's current type.
    """
    field: str
    value: Any = None
    raw: Optional[str] = Field(
        default=None,
        description="Cell text; takes precedence over value when given",
    )


class RatesRequest(BaseModel):
    """Request body for POST /demo/rates."""
    area_t_m2: float = Field(ge=0)
    area_tn_m2: float = Field(ge=0)
    t: int
    t_n: int
    population_t: float
    population_tn: float


# ============================================================================
# API Responses
# ============================================================================

class HealthResponse(BaseModel):
    """Response for GET /health endpoint."""
    status: str = "ok"


class ConfigResponse(BaseModel):
    """Response model for GET /config endpoint."""
    data_dir: str
    crosswalk_file: str
    demo_files: list[str]
    record_count: int
    field_count: int
    priority_columns: list[str]


class RecordRow(BaseModel):
    """A record in the filtered view with its UI bookkeeping."""
    identity: str
    index: int
    edited: bool = False
    editing: bool = False
    record: Record


class RecordsResponse(BaseModel):
    """Response for GET /explorer/records."""
    rows: list[RecordRow]
    visible_count: int
    total_count: int
    edited_count: int
    known_fields: list[str]
    visible_fields: list[str]
    column_labels: dict[str, str]
    filters_active: bool = False


class DraftResponse(BaseModel):
    """Response for edit-session endpoints."""
    identity: str
    draft: Record


class ImportResponse(BaseModel):
    """Response for POST /explorer/import and POST /explorer/reset."""
    record_count: int
    known_fields: list[str]


class DemoResponse(BaseModel):
    """Response for GET /demo/sdg-11-3-1."""
    stats: AreaStats
    meta: PopulationPayload
    metrics: list[MetricCard]
    admin_bounds: Optional[list[float]] = Field(
        default=None,
        description="[min_lon, min_lat, max_lon, max_lat] of the admin unit",
    )
    built_up_t: dict[str, Any]
    built_up_tn: dict[str, Any]
    admin_unit: dict[str, Any]
