"""
Record store and filter engine for the JSON explorer.

Every operation takes an ExplorerState and returns a new one; inputs are
never mutated. Records have no stable key, so identities are recomputed
from the current collection (base value + position) whenever needed.
"""
import copy
import json
import re
from typing import Any, Iterator

from models import (
    ColumnFilter,
    EditSession,
    ExplorerState,
    FilterState,
    MatchMode,
    Record,
)


# Fields shown by default when present in the collection
PRIORITY_COLUMNS = ["indicator", "title", "tier", "ladmLink", "externalData"]

# Number of leading fields shown when no priority field exists
DEFAULT_VISIBLE_COUNT = 6

# Fields tried, in order, as the base of a record identity
IDENTITY_FIELDS = ["unsd_code", "id", "indicator"]


# ============================================================================
# Errors
# ============================================================================

class EditSessionConflict(ValueError):
    """Raised when an edit is started while another record is being edited."""

    def __init__(self, open_identity: str, requested_identity: str):
        self.open_identity = open_identity
        self.requested_identity = requested_identity
        super().__init__(
            f"Record '{open_identity}' is already being edited; "
            f"cannot start editing '{requested_identity}'"
        )


class NoActiveEditSession(ValueError):
    """Raised when a draft operation is attempted with no open edit session."""

    def __init__(self):
        super().__init__("No record is currently being edited")


class EditingDisabled(ValueError):
    """Raised when an edit is started while editing is switched off."""

    def __init__(self):
        super().__init__("Editing is disabled; enable it before editing records")


class UnknownRecordIdentity(LookupError):
    """Raised when no record in the collection has the requested identity."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"No record with identity '{identity}'")


class RecordImportError(ValueError):
    """
    Raised when imported content cannot become a record collection.

    reason is "malformed_json" when the source is not valid JSON and
    "invalid_record" when an element of the collection is not an object.
    """

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)


# ============================================================================
# Collection Helpers
# ============================================================================

def collect_known_fields(records: list[Record]) -> list[str]:
    """Ordered union of keys across all records, first appearance wins."""
    seen: dict[str, None] = {}
    for record in records:
        if isinstance(record, dict):
            for key in record:
                seen.setdefault(key, None)
    return list(seen)


def default_visible_columns(known_fields: list[str]) -> dict[str, bool]:
    """
    Seed column visibility: priority columns if any exist,
    otherwise the first few fields of a generic collection.
    """
    visible = {key: key in PRIORITY_COLUMNS for key in known_fields}
    if not any(visible.values()):
        visible = {key: i < DEFAULT_VISIBLE_COUNT for i, key in enumerate(known_fields)}
    return visible


def record_identity(record: Record, index: int, known_fields: list[str]) -> str:
    """
    Derive the UI identity of a record at a given position.

    The base is the first truthy value among unsd_code, id and indicator,
    falling back to the value of the first known field. The index is always
    appended, so identical records at different positions stay distinct.
    """
    base = None
    for key in IDENTITY_FIELDS:
        if is_present(record.get(key)):
            base = stringify_value(record[key])
            break
    if base is None:
        if known_fields and known_fields[0] in record:
            base = stringify_value(record[known_fields[0]])
        else:
            base = "unknown"
    return f"{base}-{index}"


def is_present(value: Any) -> bool:
    """Truthiness as the JSON source sees it: empty lists and objects count."""
    if value is None or value is False or value == "":
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == value and value != 0  # NaN and zero are blank
    return True


def identities(state: ExplorerState) -> list[str]:
    """Identities of every record in the collection, in order."""
    return [
        record_identity(record, i, state.known_fields)
        for i, record in enumerate(state.records)
    ]


def find_record_index(state: ExplorerState, identity: str) -> int:
    for i, record in enumerate(state.records):
        if record_identity(record, i, state.known_fields) == identity:
            return i
    raise UnknownRecordIdentity(identity)


_CAMEL_BOUNDARY = re.compile(r"([A-Z])")
_WORD_START = re.compile(r"\b\w")


def column_label(field: str) -> str:
    """Readable column header from a camelCase or snake_case field name."""
    label = _CAMEL_BOUNDARY.sub(r" \1", field)
    label = label.replace("_", " ")
    label = _WORD_START.sub(lambda m: m.group(0).upper(), label)
    return label.strip()


# ============================================================================
# Value Matching
# ============================================================================

def stringify_scalar(value: Any) -> str:
    """Render a scalar the way it prints in JSON source (true, 3, 2.5, text)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _json_numbers(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, list):
        return [_json_numbers(item) for item in value]
    if isinstance(value, dict):
        return {key: _json_numbers(item) for key, item in value.items()}
    return value


def canonical_json(value: Any) -> str:
    """Compact JSON text used to compare nested mappings; 2.0 renders as 2."""
    return json.dumps(_json_numbers(value), separators=(",", ":"), ensure_ascii=False)


def stringify_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(stringify_value(item) for item in value)
    if isinstance(value, dict):
        return canonical_json(value)
    return stringify_scalar(value)


def match_value(value: Any, pattern: str, mode: MatchMode = MatchMode.SUBSTRING) -> bool:
    """
    Test a record value against a filter pattern, case-insensitively.

    Args:
        value: Field value (None when the field is absent)
        pattern: Filter text; an empty pattern matches everything
        mode: SUBSTRING or EXACT

    Returns:
        True if the value satisfies the pattern
    """
    if not pattern:
        return True
    if value is None:
        return False

    needle = pattern.lower()
    exact = mode == MatchMode.EXACT

    if isinstance(value, list):
        if exact:
            return any(stringify_value(item).lower() == needle for item in value)
        return needle in stringify_value(value).lower()

    if isinstance(value, dict):
        text = canonical_json(value).lower()
    else:
        text = stringify_scalar(value).lower()
    return text == needle if exact else needle in text


def matches_query(record: Record, query: str, known_fields: list[str]) -> bool:
    """Global search: substring match on any known field."""
    if not query:
        return True
    return any(
        match_value(record.get(key), query, MatchMode.SUBSTRING)
        for key in known_fields
    )


def matches_filters(record: Record, filters: FilterState, known_fields: list[str]) -> bool:
    """A record passes if it matches the global query and every column filter."""
    if not matches_query(record, filters.query, known_fields):
        return False
    return all(
        match_value(record.get(field), column.pattern, column.mode)
        for field, column in filters.column_filters.items()
    )


# ============================================================================
# Filtered View
# ============================================================================

class FilteredView:
    """
    Lazy view over the records of a state that pass its filters.

    Iterating again re-evaluates the filter against the same snapshot,
    so the view can be consumed any number of times.
    """

    def __init__(self, state: ExplorerState):
        self._records = state.records
        self._filters = state.filters
        self._known_fields = state.known_fields

    def iter_indexed(self) -> Iterator[tuple[int, Record]]:
        for i, record in enumerate(self._records):
            if matches_filters(record, self._filters, self._known_fields):
                yield i, record

    def __iter__(self) -> Iterator[Record]:
        for _, record in self.iter_indexed():
            yield record


def visible_records(state: ExplorerState) -> FilteredView:
    """Records passing the current filter state, in original order."""
    return FilteredView(state)


def iter_visible(state: ExplorerState) -> Iterator[tuple[int, Record]]:
    """(original index, record) pairs for the filtered view."""
    return FilteredView(state).iter_indexed()


def visible_fields(state: ExplorerState) -> list[str]:
    return [key for key in state.known_fields if state.visible_columns.get(key, False)]


# ============================================================================
# Loading
# ============================================================================

def load(state: ExplorerState, records: list[Record]) -> ExplorerState:
    """
    Replace the collection.

    Known fields and column visibility are recomputed and the edit overlay
    is cleared. Filters are kept as they were.
    """
    records = [copy.deepcopy(r) for r in records]
    known_fields = collect_known_fields(records)
    return state.model_copy(update={
        "records": records,
        "known_fields": known_fields,
        "visible_columns": default_visible_columns(known_fields),
        "edited": set(),
        "editing": None,
    })


def import_collection(source: str | bytes) -> list[Record]:
    """
    Parse imported JSON text into a record collection.

    A top-level object becomes a single-record collection; a top-level
    array is used as-is.

    Raises:
        RecordImportError: if the text is not valid JSON or an element is not an object
    """
    try:
        parsed = json.loads(source)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RecordImportError("malformed_json", f"Invalid JSON file: {exc}") from exc

    records = parsed if isinstance(parsed, list) else [parsed]
    for i, item in enumerate(records):
        if not isinstance(item, dict):
            raise RecordImportError(
                "invalid_record",
                f"Element {i} is {type(item).__name__}, expected a JSON object",
            )
    return records


def export_snapshot(state: ExplorerState) -> list[Record]:
    """The full collection, edits included, regardless of active filters."""
    return copy.deepcopy(state.records)


# ============================================================================
# Filter State
# ============================================================================

def set_global_query(state: ExplorerState, text: str) -> ExplorerState:
    filters = state.filters.model_copy(update={"query": text})
    return state.model_copy(update={"filters": filters})


def set_field_filter(
    state: ExplorerState,
    field: str,
    pattern: str,
    mode: MatchMode = MatchMode.SUBSTRING,
) -> ExplorerState:
    column_filters = dict(state.filters.column_filters)
    column_filters[field] = ColumnFilter(pattern=pattern, mode=mode)
    filters = state.filters.model_copy(update={"column_filters": column_filters})
    return state.model_copy(update={"filters": filters})


def clear_filters(state: ExplorerState) -> ExplorerState:
    """Reset query and column filters, and leave edit mode."""
    return state.model_copy(update={"filters": FilterState(), "editing": None})


# ============================================================================
# Column Visibility
# ============================================================================

def set_column_visible(state: ExplorerState, field: str, visible: bool) -> ExplorerState:
    if field not in state.known_fields:
        raise KeyError(field)
    columns = dict(state.visible_columns)
    columns[field] = visible
    return state.model_copy(update={"visible_columns": columns})


def show_all_columns(state: ExplorerState) -> ExplorerState:
    return state.model_copy(update={
        "visible_columns": {key: True for key in state.known_fields},
    })


# ============================================================================
# Edit Overlay
# ============================================================================

def set_editing_enabled(state: ExplorerState, enabled: bool) -> ExplorerState:
    """Toggle editing; switching it off discards any open draft."""
    update: dict[str, Any] = {"editing_enabled": enabled}
    if not enabled:
        update["editing"] = None
    return state.model_copy(update=update)


def begin_edit(state: ExplorerState, identity: str) -> tuple[ExplorerState, Record]:
    """
    Open an edit session on the record with the given identity.

    Returns:
        The new state and the draft (a deep copy of the record)

    Raises:
        EditingDisabled: editing is switched off
        EditSessionConflict: a different record is already being edited
        UnknownRecordIdentity: no record has this identity
    """
    if not state.editing_enabled:
        raise EditingDisabled()
    if state.editing is not None:
        if state.editing.identity == identity:
            return state, state.editing.draft
        raise EditSessionConflict(state.editing.identity, identity)

    index = find_record_index(state, identity)
    draft = copy.deepcopy(state.records[index])
    session = EditSession(identity=identity, draft=draft)
    return state.model_copy(update={"editing": session}), draft


def update_draft(state: ExplorerState, field: str, value: Any) -> ExplorerState:
    if state.editing is None:
        raise NoActiveEditSession()
    draft = dict(state.editing.draft)
    draft[field] = value
    session = state.editing.model_copy(update={"draft": draft})
    return state.model_copy(update={"editing": session})


def coerce_draft_input(current: Any, raw: str) -> Any:
    """
    Convert text typed into an edit cell back to a field value.

    List fields are comma separated ("a, b"), mapping fields are JSON
    (kept as raw text until it parses), anything else is stored as text.
    """
    if isinstance(current, list):
        return [part for part in raw.split(", ") if part]
    if isinstance(current, dict):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw
    return raw


def commit_edit(state: ExplorerState) -> ExplorerState:
    """
    Write the draft back in place of the original record and mark it edited.

    Raises:
        NoActiveEditSession: no edit session is open
    """
    if state.editing is None:
        raise NoActiveEditSession()

    identity = state.editing.identity
    index = find_record_index(state, identity)
    records = list(state.records)
    records[index] = copy.deepcopy(state.editing.draft)
    # Fields added in the draft become known without reseeding visibility
    known_fields = state.known_fields + [
        key for key in records[index] if key not in state.known_fields
    ]
    return state.model_copy(update={
        "records": records,
        "known_fields": known_fields,
        "edited": state.edited | {identity},
        "editing": None,
    })


def cancel_edit(state: ExplorerState) -> ExplorerState:
    if state.editing is None:
        return state
    return state.model_copy(update={"editing": None})
