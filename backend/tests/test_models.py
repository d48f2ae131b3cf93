"""
Tests for models.py - argument validation for each operation and the oracle response shape.
"""
from datetime import datetime, timezone
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from errors import ValidationFailed
from models import (
    AddArgs,
    EditArgs,
    FindArgs,
    FixedDue,
    OracleResponse,
    RangeDue,
    RemoveArgs,
    Task,
    missing_fields,
    parse_call_args,
)

TOMORROW_5PM = "2025-10-22T17:00:00Z"


class TestAddArgs:

    def test_add_with_datetime(self):
        args = parse_call_args("add_task", {"name": "call mom", "datetime": TOMORROW_5PM})
        assert isinstance(args, AddArgs)
        assert args.due() == FixedDue(at=datetime(2025, 10, 22, 17, tzinfo=timezone.utc))

    def test_add_with_range(self):
        args = parse_call_args("add_task", {
            "name": "conference",
            "date_range": {"start": "2025-11-03T09:00:00Z", "end": "2025-11-05T18:00:00Z"},
        })
        due = args.due()
        assert isinstance(due, RangeDue)
        assert due.start < due.end

    def test_naive_datetime_is_utc(self):
        args = parse_call_args("add_task", {"name": "call mom", "datetime": "2025-10-22T17:00:00"})
        assert args.datetime.tzinfo == timezone.utc

    def test_add_missing_name(self):
        with pytest.raises(ValidationFailed) as exc:
            parse_call_args("add_task", {"name": "  ", "datetime": TOMORROW_5PM})
        assert exc.value.fields == ["name"]

    def test_add_missing_due(self):
        assert missing_fields("add_task", {"name": "call mom"}) == ["datetime"]

    def test_add_partial_range(self):
        assert missing_fields("add_task", {"name": "trip", "date_range": {"start": TOMORROW_5PM}}) == ["date_range"]

    def test_add_with_both_due_forms(self):
        with pytest.raises(ValidationFailed):
            parse_call_args("add_task", {
                "name": "call mom",
                "datetime": TOMORROW_5PM,
                "date_range": {"start": "2025-11-03T09:00:00Z", "end": "2025-11-05T18:00:00Z"},
            })

    def test_add_with_inverted_range(self):
        with pytest.raises(ValidationFailed):
            parse_call_args("add_task", {
                "name": "trip",
                "date_range": {"start": "2025-11-05T09:00:00Z", "end": "2025-11-03T18:00:00Z"},
            })

    def test_add_with_bad_datetime(self):
        with pytest.raises(ValidationFailed) as exc:
            parse_call_args("add_task", {"name": "call mom", "datetime": "tomorrow at five"})
        assert "datetime" in exc.value.fields


class TestTargetArgs:

    def test_edit_needs_target(self):
        assert missing_fields("edit_task", {"patch": {"status": "done"}}) == ["id"]

    def test_edit_needs_non_empty_patch(self):
        assert missing_fields("edit_task", {"id": "t-1", "patch": {"name": ""}}) == ["patch"]

    def test_edit_by_name(self):
        args = parse_call_args("edit_task", {"name": "Call Mom", "patch": {"status": "done"}, "confirmation": "YES"})
        assert isinstance(args, EditArgs)
        assert args.target == "Call Mom"
        assert args.confirmation == "yes"

    def test_edit_patch_with_both_due_forms(self):
        with pytest.raises(ValidationFailed):
            parse_call_args("edit_task", {"id": "t-1", "patch": {
                "datetime": TOMORROW_5PM,
                "date_range": {"start": "2025-11-03T09:00:00Z", "end": "2025-11-05T18:00:00Z"},
            }})

    def test_remove_by_id(self):
        args = parse_call_args("remove_task", {"id": "t-1"})
        assert isinstance(args, RemoveArgs)
        assert args.target == "t-1"

    def test_remove_needs_target(self):
        with pytest.raises(ValidationFailed) as exc:
            parse_call_args("remove_task", {"confirmation": "yes"})
        assert exc.value.fields == ["id"]


class TestFindArgs:

    def test_find_without_filters(self):
        assert isinstance(parse_call_args("find_tasks", {}), FindArgs)

    def test_find_rejects_unknown_status(self):
        with pytest.raises(ValidationFailed):
            parse_call_args("find_tasks", {"status": "archived"})

    def test_unknown_operation(self):
        with pytest.raises(ValidationFailed):
            parse_call_args("archive_task", {})


class TestOracleResponse:

    def test_null_call_and_empty_tracker(self):
        response = OracleResponse.model_validate({"reply": "Hi!", "function_call": None, "tracker": {}})
        assert response.function_call is None
        assert response.tracker.op == "none"

    def test_none_call_is_dropped(self):
        response = OracleResponse.model_validate({"reply": "ok", "function_call": {"name": "none"}})
        assert response.function_call is None

    def test_missing_tracker(self):
        response = OracleResponse.model_validate({"reply": "ok", "tracker": None})
        assert response.tracker.op == "none"

    def test_call_arguments_default(self):
        response = OracleResponse.model_validate({"function_call": {"name": "find_tasks", "arguments": None}})
        assert response.function_call.arguments == {}


class TestTaskAnchor:

    def test_fixed_anchor(self):
        task = Task(id="1", name="a", due={"kind": "fixed", "at": TOMORROW_5PM}, created_at=TOMORROW_5PM)
        assert task.anchor == datetime(2025, 10, 22, 17, tzinfo=timezone.utc)

    def test_range_anchor_is_start(self):
        task = Task(
            id="1", name="a", created_at=TOMORROW_5PM,
            due={"kind": "range", "start": "2025-11-03T09:00:00Z", "end": "2025-11-05T18:00:00Z"},
        )
        assert task.anchor == datetime(2025, 11, 3, 9, tzinfo=timezone.utc)

    def test_no_anchor(self):
        assert Task(id="1", name="a", created_at=TOMORROW_5PM).anchor is None


def test_confirmation_values_shared_with_tracker():
    import tracker
    import models

    assert models.Confirmation is tracker.Confirmation
    with pytest.raises(ValidationFailed):
        parse_call_args("remove_task", {"name": "call mom", "confirmation": "maybe"})
