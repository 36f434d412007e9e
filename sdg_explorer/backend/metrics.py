"""
SDG 11.3.1 indicator computation.
Implements Land Consumption Rate (LCR), Population Growth Rate (PGR),
their ratio, and geodesic area aggregation over GeoJSON features.
"""
from typing import Any, Optional

import numpy as np
import pandas as pd
from pyproj import Geod
from shapely.errors import ShapelyError
from shapely.geometry import shape

from models import AreaStats, MetricCard, PopulationPayload


# WGS84 ellipsoid; GeoJSON coordinates are lon/lat (EPSG:4326)
GEOD = Geod(ellps="WGS84")

AREAL_GEOMETRY_TYPES = ("Polygon", "MultiPolygon")

UNDEFINED_DISPLAY = "—"


class GeometryError(ValueError):
    """Raised when a GeoJSON object cannot be turned into a geometry."""


# ============================================================================
# Growth Rates
# ============================================================================

def log_growth_rate(start: float, end: float, years: int) -> Optional[float]:
    """
    Annualized logarithmic growth rate ln(end/start) / years.

    Returns None (undefined) unless both values are strictly positive.
    """
    if start > 0 and end > 0:
        return float(np.log(end / start) / years)
    return None


def compute_rates(
    area_t: float,
    area_tn: float,
    t: int,
    t_n: int,
    population_t: float,
    population_tn: float,
) -> AreaStats:
    """
    Compute LCR, PGR and their ratio for two observation times.

    The elapsed time is clamped to at least one year. Non-positive inputs
    leave the affected rate undefined instead of raising, and the ratio is
    undefined whenever either rate is undefined or PGR is zero.

    Args:
        area_t: Built-up area at time t (m²)
        area_tn: Built-up area at time t+n (m²)
        t: First time label (year)
        t_n: Second time label (year)
        population_t: Population at time t
        population_tn: Population at time t+n

    Returns:
        AreaStats with years, lcr, pgr and ratio
    """
    years = max(1, t_n - t)
    lcr = log_growth_rate(area_t, area_tn, years)
    pgr = log_growth_rate(population_t, population_tn, years)
    ratio = lcr / pgr if lcr is not None and pgr is not None and pgr != 0 else None

    return AreaStats(
        area_t_m2=area_t,
        area_tn_m2=area_tn,
        years=years,
        lcr=lcr,
        pgr=pgr,
        ratio=ratio,
    )


def compute_rates_for_payload(area_t: float, area_tn: float, pop: PopulationPayload) -> AreaStats:
    """compute_rates with time labels and populations taken from populations.json."""
    return compute_rates(
        area_t,
        area_tn,
        pop.t,
        pop.t_n,
        pop.population_t,
        pop.population_tn,
    )


# ============================================================================
# Area Aggregation
# ============================================================================

def _geometry_of(obj: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Geometry mapping of a GeoJSON Feature, or the object itself if it is a geometry."""
    if not isinstance(obj, dict):
        raise GeometryError(f"expected a GeoJSON object, got {type(obj).__name__}")
    if obj.get("type") == "Feature":
        return obj.get("geometry")
    return obj


def _to_shape(geometry: dict[str, Any]):
    try:
        return shape(geometry)
    except (ShapelyError, TypeError, ValueError, IndexError, KeyError, AttributeError) as exc:
        raise GeometryError(f"invalid {geometry.get('type')} geometry: {exc}") from exc


def geometry_area(geometry: Optional[dict[str, Any]]) -> float:
    """Geodesic area (m²) of a GeoJSON geometry; 0 for points, lines and null."""
    if not geometry:
        return 0.0
    if not isinstance(geometry, dict):
        raise GeometryError(f"expected a GeoJSON geometry, got {type(geometry).__name__}")

    if geometry.get("type") == "GeometryCollection":
        return sum(geometry_area(g) for g in geometry.get("geometries", []))
    if geometry.get("type") not in AREAL_GEOMETRY_TYPES:
        return 0.0

    geom = _to_shape(geometry)
    try:
        area, _perimeter = GEOD.geometry_area_perimeter(geom)
    except (ValueError, TypeError) as exc:
        raise GeometryError(f"cannot measure {geometry.get('type')}: {exc}") from exc
    # Sign depends on ring orientation
    return abs(float(area))


def feature_area(feature: dict[str, Any]) -> float:
    """Geodesic area (m²) of a GeoJSON Feature or bare geometry."""
    return geometry_area(_geometry_of(feature))


def _features_of(collection: dict[str, Any]) -> list[dict[str, Any]]:
    if collection.get("type") == "FeatureCollection":
        features = collection.get("features") or []
        if not isinstance(features, list):
            raise GeometryError("FeatureCollection features must be a list")
        return features
    return [collection]


def feature_area_frame(collection: dict[str, Any]) -> pd.DataFrame:
    """
    Per-feature areas of a FeatureCollection.

    Returns:
        DataFrame with columns feature_index, geometry_type, area_m2
    """
    rows = []
    for i, feature in enumerate(_features_of(collection)):
        geometry = _geometry_of(feature) or {}
        rows.append({
            "feature_index": i,
            "geometry_type": geometry.get("type"),
            "area_m2": feature_area(feature),
        })
    return pd.DataFrame(rows, columns=["feature_index", "geometry_type", "area_m2"])


def feature_collection_area(collection: dict[str, Any]) -> float:
    """Total area (m²) as the sum of every feature's area."""
    frame = feature_area_frame(collection)
    if frame.empty:
        return 0.0
    return float(frame["area_m2"].sum())


def collection_bounds(collection: dict[str, Any]) -> Optional[list[float]]:
    """[min_lon, min_lat, max_lon, max_lat] over all feature geometries."""
    bounds = []
    for feature in _features_of(collection):
        geometry = _geometry_of(feature)
        if not geometry:
            continue
        if not isinstance(geometry, dict):
            raise GeometryError(f"expected a GeoJSON geometry, got {type(geometry).__name__}")
        geom = _to_shape(geometry)
        if not geom.is_empty:
            bounds.append(geom.bounds)

    if not bounds:
        return None
    arr = np.asarray(bounds, dtype=float)
    return [
        float(arr[:, 0].min()),
        float(arr[:, 1].min()),
        float(arr[:, 2].max()),
        float(arr[:, 3].max()),
    ]


# ============================================================================
# Display Formatting
# ============================================================================

def format_number(value: float, max_fraction_digits: int = 2) -> str:
    """
    en-US number formatting: thousands separators, at most
    max_fraction_digits decimals, trailing zeros dropped.
    """
    text = f"{value:,.{max_fraction_digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        text = "0"
    return text


def _format_optional(value: Optional[float], digits: int) -> str:
    return format_number(value, digits) if value is not None else UNDEFINED_DISPLAY


def build_metric_cards(stats: AreaStats, meta: PopulationPayload) -> list[MetricCard]:
    """Labelled values for the demo results grid."""
    return [
        MetricCard(
            label=f"Built-up area @ t ({meta.t})",
            value=f"{format_number(stats.area_t_m2, 0)} m²",
            kind="area",
        ),
        MetricCard(
            label=f"Built-up area @ t+n ({meta.t_n})",
            value=f"{format_number(stats.area_tn_m2, 0)} m²",
            kind="area",
        ),
        MetricCard(label="Years (n)", value=str(stats.years)),
        MetricCard(label="LCR (yr⁻¹)", value=_format_optional(stats.lcr, 6), kind="rate"),
        MetricCard(label="PGR (yr⁻¹)", value=_format_optional(stats.pgr, 6), kind="rate"),
        MetricCard(label="LCR / PGR", value=_format_optional(stats.ratio, 4), kind="ratio"),
    ]
