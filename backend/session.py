"""
Turn streaming.

A turn yields events in the order text* -> toolCall? -> done. Every turn ends
with exactly one done event carrying the tracker for the next turn, including
when the oracle or the store fails. Once dispatch has begun it runs to
completion; closing the stream before that point leaves no trace.
"""
import asyncio
import logging
from typing import AsyncIterator, Literal, Optional, Union

from pydantic import BaseModel, Field

from dialogue import DialogueMachine
from dispatcher import ActionDispatcher
from errors import OracleFailure, StoreUnavailable, TargetNotFound
from models import ChatRequest
from tracker import Tracker, canonicalize, empty_tracker, tracker_from_call, tracker_to_dict

logger = logging.getLogger(__name__)

STORE_ERROR_TEXT = "Something went wrong while accessing your tasks. Please try again."
TIMEOUT_TEXT = "Error: the assistant did not respond in time. Please try again."


class TextEvent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolCallEvent(BaseModel):
    type: Literal["toolCall"] = "toolCall"
    name: str
    args: dict = Field(default_factory=dict)
    result: Optional[dict] = None


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    tracker: dict = Field(default_factory=lambda: tracker_to_dict(None))


StreamEvent = Union[TextEvent, ToolCallEvent, DoneEvent]


def format_sse(event: StreamEvent) -> str:
    """Encode one event as a server-sent events frame."""
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"


def done(tracker: Optional[Tracker]) -> DoneEvent:
    return DoneEvent(tracker=tracker_to_dict(tracker))


async def reply_only(text: str, tracker: Optional[Tracker] = None) -> AsyncIterator[StreamEvent]:
    """A turn that answers with fixed text and leaves the tracker untouched."""
    yield TextEvent(text=text)
    yield done(tracker)


async def stream_turn(
    request: ChatRequest,
    machine: DialogueMachine,
    dispatcher: ActionDispatcher,
    timeout: Optional[float] = None,
) -> AsyncIterator[StreamEvent]:
    prior = canonicalize(request.tracker) if request.tracker is not None else empty_tracker()

    try:
        context = dispatcher.store.list()
    except StoreUnavailable as e:
        logger.error("Could not load task context: %s", e)
        yield TextEvent(text=STORE_ERROR_TEXT)
        yield done(prior)
        return

    try:
        outcome = await asyncio.wait_for(
            machine.advance(request.message, request.history, context, prior),
            timeout,
        )
    except asyncio.TimeoutError:
        logger.error("Oracle timed out after %ss", timeout)
        yield TextEvent(text=TIMEOUT_TEXT)
        yield done(prior)
        return
    except OracleFailure as e:
        logger.error("Oracle failure: %s", e)
        yield TextEvent(text=f"Error: {e}")
        yield done(prior)
        return
    except Exception as e:
        logger.exception("Unexpected failure while running turn")
        yield TextEvent(text=f"Error: {e}")
        yield done(prior)
        return

    if not outcome.accepted:
        if outcome.reply:
            yield TextEvent(text=outcome.reply)
        yield done(outcome.tracker)
        return

    call = outcome.call
    try:
        result = dispatcher.dispatch(outcome.arguments, context)
    except TargetNotFound as e:
        logger.warning("%s target not found: %s", call.name, e)
        yield TextEvent(text=f"{e}. Which task did you mean?")
        yield done(tracker_from_call(call.name, call.arguments, missing=["id"], reset_confirmation=True))
        return
    except StoreUnavailable as e:
        logger.error("%s failed: %s", call.name, e)
        yield TextEvent(text=STORE_ERROR_TEXT)
        yield done(tracker_from_call(call.name, call.arguments))
        return

    if outcome.reply:
        yield TextEvent(text=outcome.reply)
    if result.summary:
        yield TextEvent(text=result.summary)
    yield ToolCallEvent(
        name=call.name,
        args=outcome.arguments.model_dump(mode="json", exclude_none=True),
        result=result.as_dict(),
    )
    yield done(empty_tracker())
