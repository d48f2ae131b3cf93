"""
Slot-filling tracker carried between chat turns.

The tracker is owned by the caller: it is returned in the final event of a
turn and must be sent back with the next message. Everything here is pure so
the same encoding can be stored in the database or shipped over the wire.
"""
import json
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from errors import ValidationFailed

Operation = Literal["add_task", "edit_task", "remove_task", "find_tasks", "none"]
Confirmation = Literal["yes", "no", "unset"]

OPERATIONS = ("add_task", "edit_task", "remove_task", "find_tasks")
DESTRUCTIVE_OPERATIONS = frozenset({"edit_task", "remove_task"})


class PartialRange(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None


class TrackerArgs(BaseModel):
    """Arguments gathered so far. Values stay as raw strings until a call is validated."""
    id: Optional[str] = None
    name: Optional[str] = None
    desc: Optional[str] = None
    datetime: Optional[str] = None
    date_range: Optional[PartialRange] = None
    status: Optional[str] = None
    confirmation: Optional[Confirmation] = None
    patch: Optional[dict[str, Any]] = None
    before: Optional[str] = None
    after: Optional[str] = None
    query: Optional[str] = None

    @field_validator("confirmation", mode="before")
    @classmethod
    def normalize_confirmation(cls, value):
        if value is None:
            return None
        value = str(value).strip().lower()
        return value if value in ("yes", "no") else "unset"

    @field_validator("id", "name", "desc", "datetime", "status", "before", "after", "query", mode="before")
    @classmethod
    def stringify(cls, value):
        if value is None or isinstance(value, str):
            return value
        return str(value)


class Tracker(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    op: Operation = "none"
    args: TrackerArgs = Field(default_factory=TrackerArgs)
    missing: list[str] = Field(default_factory=list)
    needs_confirmation: bool = Field(default=False, alias="needsConfirmation")

    @field_validator("op", mode="before")
    @classmethod
    def default_op(cls, value):
        return value or "none"

    @field_validator("args", "missing", mode="before")
    @classmethod
    def default_empty(cls, value, info):
        if value is None:
            return {} if info.field_name == "args" else []
        return value


def empty_tracker() -> Tracker:
    return Tracker()


def is_empty(tracker: Optional[Tracker]) -> bool:
    if tracker is None:
        return True
    return (
        tracker.op == "none"
        and not _prune(tracker.args.model_dump(exclude_none=True))
        and not tracker.missing
        and not tracker.needs_confirmation
    )


def _prune(data: dict) -> dict:
    """Drop None, blank strings and empty mappings, recursively."""
    pruned = {}
    for key, value in data.items():
        if isinstance(value, dict):
            value = _prune(value)
            if not value:
                continue
        elif value is None:
            continue
        elif isinstance(value, str) and not value.strip():
            continue
        pruned[key] = value
    return pruned


def _drop_conflicting_due(values: dict, prior: dict) -> dict:
    """Keep a single due representation; the one that changed since `prior` wins."""
    if "datetime" not in values or "date_range" not in values:
        return values
    values = dict(values)
    range_changed = values["date_range"] != prior.get("date_range")
    datetime_changed = values["datetime"] != prior.get("datetime")
    if range_changed and not datetime_changed:
        del values["datetime"]
    else:
        del values["date_range"]
    return values


def canonicalize(tracker: Tracker, prior: Optional[Tracker] = None) -> Tracker:
    """
    Return the canonical form of `tracker`.

    - blank args are dropped, `missing` is deduplicated and sorted
    - at most one of datetime/date_range survives (top level and inside patch)
    - needsConfirmation is true exactly for edit/remove without confirmation=yes
    """
    prior_args = _prune(prior.args.model_dump(exclude_none=True)) if prior else {}
    args = _drop_conflicting_due(_prune(tracker.args.model_dump(exclude_none=True)), prior_args)
    if "patch" in args:
        args["patch"] = _drop_conflicting_due(args["patch"], prior_args.get("patch") or {})

    missing = sorted({m.strip() for m in tracker.missing if m and m.strip()})
    needs_confirmation = tracker.op in DESTRUCTIVE_OPERATIONS and args.get("confirmation") != "yes"

    return Tracker(
        op=tracker.op,
        args=TrackerArgs.model_validate(args),
        missing=missing,
        needs_confirmation=needs_confirmation,
    )


def tracker_from_call(
    name: str,
    arguments: Optional[dict],
    missing: Optional[list[str]] = None,
    reset_confirmation: bool = False,
) -> Tracker:
    """Rebuild carried state from a function call that was not executed."""
    args = {k: v for k, v in _prune(arguments or {}).items() if k in TrackerArgs.model_fields}
    if reset_confirmation and name in DESTRUCTIVE_OPERATIONS:
        args["confirmation"] = "unset"
    try:
        tracker_args = TrackerArgs.model_validate(args)
    except ValidationError:
        tracker_args = TrackerArgs()
    op = name if name in OPERATIONS else "none"
    return canonicalize(Tracker(op=op, args=tracker_args, missing=missing or []))


def tracker_to_dict(tracker: Optional[Tracker]) -> dict:
    tracker = canonicalize(tracker or empty_tracker())
    return tracker.model_dump(by_alias=True, exclude_none=True)


def encode_tracker(tracker: Optional[Tracker]) -> str:
    """Canonical JSON encoding: sorted keys, no nulls, no whitespace."""
    return json.dumps(tracker_to_dict(tracker), sort_keys=True, separators=(",", ":"))


def decode_tracker(data) -> Tracker:
    """Decode a tracker from JSON text, a dict, or None (meaning empty)."""
    if data is None:
        return empty_tracker()
    if isinstance(data, Tracker):
        return canonicalize(data)
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    if isinstance(data, str):
        if not data.strip():
            return empty_tracker()
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValidationFailed("Tracker is not valid JSON", ["tracker"]) from e
    if not isinstance(data, dict):
        raise ValidationFailed("Tracker must be a JSON object", ["tracker"])
    try:
        tracker = Tracker.model_validate(data)
    except ValidationError as e:
        fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
        raise ValidationFailed(f"Malformed tracker: {e.error_count()} error(s)", fields or ["tracker"]) from e
    return canonicalize(tracker)
