"""
Tests for session.py - event order, multi-turn flows and failure handling.
"""
import asyncio
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import create_task_db, get_all_tasks
from dialogue import DialogueMachine
from dispatcher import ActionDispatcher
from errors import OracleFailure
from models import ChatRequest, FixedDue
from session import TIMEOUT_TEXT, TextEvent, format_sse, reply_only, stream_turn
from tracker import tracker_to_dict

EMPTY = {"op": "none", "args": {}, "missing": [], "needsConfirmation": False}


@pytest.fixture
def turn(oracle, store, collect):
    """Run one turn through the scripted oracle and return its events."""
    def _turn(message, tracker=None, history=(), timeout=None):
        request = ChatRequest(message=message, history=list(history), tracker=tracker)
        events = stream_turn(request, DialogueMachine(oracle), ActionDispatcher(store), timeout=timeout)
        return collect(events)
    return _turn


def types(events):
    return [event.type for event in events]


class TestScenarios:

    def test_add_in_one_turn(self, oracle, turn):
        oracle.queue({
            "reply": "Added 'call mom' for tomorrow at 5pm.",
            "function_call": {"name": "add_task", "arguments": {"name": "call mom", "datetime": "2025-10-22T17:00:00Z"}},
            "tracker": {},
        })

        events = turn("add a task to call mom tomorrow at 5pm")

        assert types(events) == ["text", "toolCall", "done"]
        assert events[1].name == "add_task"
        assert events[1].args["name"] == "call mom"
        assert events[1].result["task"]["name"] == "call mom"
        assert events[2].tracker == EMPTY
        tasks = get_all_tasks()
        assert len(tasks) == 1
        assert tasks[0].due == FixedDue(at="2025-10-22T17:00:00Z")

    def test_remove_needs_confirmation_then_executes(self, oracle, turn):
        create_task_db("t-1", "call mom")
        oracle.queue(
            {
                "reply": "Are you sure you want to delete 'call mom'?",
                "function_call": None,
                "tracker": {"op": "remove_task", "args": {"name": "call mom", "confirmation": "unset"}, "needsConfirmation": True},
            },
            {
                "reply": "Deleted 'call mom'.",
                "function_call": {"name": "remove_task", "arguments": {"name": "call mom", "confirmation": "yes"}},
                "tracker": {},
            },
        )

        first = turn("delete the call mom task")

        assert types(first) == ["text", "done"]
        assert first[1].tracker["needsConfirmation"] is True
        assert len(get_all_tasks()) == 1

        second = turn("yes", tracker=first[1].tracker)

        assert oracle.requests[1]["tracker"].op == "remove_task"
        assert types(second) == ["text", "toolCall", "done"]
        assert second[1].name == "remove_task"
        assert second[1].args["name"] == "call mom"
        assert second[1].result == {"id": "t-1"}
        assert second[2].tracker == EMPTY
        assert get_all_tasks() == []

    def test_premature_remove_is_not_dispatched(self, oracle, turn):
        create_task_db("t-1", "call mom")
        oracle.queue({
            "reply": "Deleted.",
            "function_call": {"name": "remove_task", "arguments": {"name": "call mom"}},
            "tracker": {},
        })

        events = turn("delete call mom")

        assert "toolCall" not in types(events)
        assert events[-1].tracker["op"] == "remove_task"
        assert events[-1].tracker["needsConfirmation"] is True
        assert len(get_all_tasks()) == 1

    def test_find_pending_before_date(self, oracle, turn):
        first = create_task_db("t-1", "pay rent", due=FixedDue(at="2025-11-01T00:00:00Z"))
        second = create_task_db("t-2", "book trip", due=FixedDue(at="2025-11-15T00:00:00Z"))
        create_task_db("t-3", "file taxes", due=FixedDue(at="2025-10-01T00:00:00Z"), status="done")
        oracle.queue({
            "reply": "Here are your pending tasks.",
            "function_call": {"name": "find_tasks", "arguments": {"status": "pending", "before": "2025-12-01T00:00:00Z"}},
        })

        events = turn("what's pending before December?")

        assert types(events) == ["text", "text", "toolCall", "done"]
        assert events[1].text == "Found 2 task(s)."
        assert events[2].result["ids"] == [second.id, first.id]

    def test_collecting_turn_carries_tracker(self, oracle, turn):
        oracle.queue({
            "reply": "When is it due?",
            "tracker": {"op": "add_task", "args": {"name": "call mom"}, "missing": ["datetime"]},
        })

        events = turn("add call mom")

        assert types(events) == ["text", "done"]
        assert events[1].tracker["args"] == {"name": "call mom"}
        assert events[1].tracker["missing"] == ["datetime"]


class TestFailures:

    def test_oracle_failure(self, oracle, turn):
        oracle.queue(OracleFailure("Failed to parse AI response"))
        prior = {"op": "add_task", "args": {"name": "call mom"}, "missing": ["datetime"], "needsConfirmation": False}

        events = turn("tomorrow", tracker=prior)

        assert types(events) == ["text", "done"]
        assert events[0].text == "Error: Failed to parse AI response"
        assert events[1].tracker == prior

    def test_unexpected_oracle_error_still_finishes_turn(self, oracle, turn):
        oracle.queue(RuntimeError("boom"))

        events = turn("hi")

        assert types(events) == ["text", "done"]
        assert "boom" in events[0].text

    def test_oracle_timeout(self, store, collect):
        class SlowOracle:
            async def respond(self, message, history, context, tracker):
                await asyncio.sleep(1)

        request = ChatRequest(message="hi")
        events = collect(stream_turn(request, DialogueMachine(SlowOracle()), ActionDispatcher(store), timeout=0.01))

        assert types(events) == ["text", "done"]
        assert events[0].text == TIMEOUT_TEXT

    def test_target_not_found(self, oracle, turn):
        create_task_db("t-1", "call mom")
        oracle.queue({
            "reply": "Deleted.",
            "function_call": {"name": "remove_task", "arguments": {"name": "call dad", "confirmation": "yes"}},
        })

        events = turn("yes")

        assert types(events) == ["text", "done"]
        assert "call dad" in events[0].text
        tracker = events[1].tracker
        assert tracker["op"] == "remove_task"
        assert tracker["missing"] == ["id"]
        assert tracker["args"]["confirmation"] == "unset"
        assert len(get_all_tasks()) == 1

    def test_store_unavailable(self, oracle, turn, monkeypatch, tmp_path):
        import database
        monkeypatch.setattr(database, "DATABASE_PATH", str(tmp_path))

        events = turn("hi")

        assert types(events) == ["text", "done"]
        assert oracle.requests == []


class TestEncoding:

    def test_format_sse(self):
        assert format_sse(TextEvent(text="hi")) == 'data: {"type":"text","text":"hi"}\n\n'

    def test_reply_only(self, collect):
        events = collect(reply_only("API key not configured"))
        assert types(events) == ["text", "done"]
        assert events[1].tracker == tracker_to_dict(None)
