"""
Slot-filling dialogue state machine.

Each turn sends the user's message and the carried tracker to the intent
oracle, then decides whether the oracle's proposed function call may run:

    Idle -> Collecting -> AwaitingConfirmation -> Ready -> (dispatch) -> Idle

The oracle is never trusted on completeness or confirmation. A call is
accepted only when its arguments validate locally and, for edit/remove,
confirmation="yes" has been recorded. Otherwise the turn is downgraded to the
oracle's reply and the state is carried forward without the call.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from errors import ValidationFailed
from models import CallArguments, FunctionCall, Message, OracleResponse, Task, parse_call_args
from oracle import IntentOracle
from tracker import (
    DESTRUCTIVE_OPERATIONS,
    Tracker,
    canonicalize,
    empty_tracker,
    tracker_from_call,
)

logger = logging.getLogger(__name__)


class DialogueState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    READY = "ready"


def state_of(tracker: Tracker) -> DialogueState:
    if tracker.op == "none":
        return DialogueState.IDLE
    if tracker.missing:
        return DialogueState.COLLECTING
    if tracker.needs_confirmation:
        return DialogueState.AWAITING_CONFIRMATION
    return DialogueState.READY


@dataclass
class TurnOutcome:
    reply: str
    tracker: Tracker
    call: Optional[FunctionCall] = None
    arguments: Optional[CallArguments] = None
    rejection: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.call is not None

    @property
    def state(self) -> DialogueState:
        if self.accepted:
            return DialogueState.READY
        return state_of(self.tracker)


def is_confirmed(arguments: CallArguments, tracker: Tracker) -> bool:
    return getattr(arguments, "confirmation", None) == "yes" or tracker.args.confirmation == "yes"


def _carried_state(
    call: FunctionCall,
    proposed: Tracker,
    missing: list[str],
    reset_confirmation: bool = False,
) -> Tracker:
    """State to keep when a call is rejected: the oracle's tracker if it still describes the call."""
    if proposed.op != call.name:
        return tracker_from_call(call.name, call.arguments, missing=missing, reset_confirmation=reset_confirmation)
    update = {}
    if missing:
        update["missing"] = sorted(set(proposed.missing) | set(missing))
    if reset_confirmation and proposed.op in DESTRUCTIVE_OPERATIONS:
        # A "yes" given before the call was complete does not cover the final change
        update["args"] = proposed.args.model_copy(update={"confirmation": "unset"})
    return canonicalize(proposed.model_copy(update=update)) if update else proposed


def decide(prior: Tracker, response: OracleResponse) -> TurnOutcome:
    """Apply the required-field and confirmation gates to an oracle response."""
    proposed = canonicalize(response.tracker, prior)
    call = response.function_call

    if call is None:
        return TurnOutcome(reply=response.reply, tracker=proposed)

    try:
        arguments = parse_call_args(call.name, call.arguments)
    except ValidationFailed as e:
        logger.warning("Rejected %s call: %s", call.name, e)
        return TurnOutcome(
            reply=response.reply,
            tracker=_carried_state(call, proposed, e.fields, reset_confirmation=True),
            rejection=str(e),
        )

    if call.name in DESTRUCTIVE_OPERATIONS and not is_confirmed(arguments, proposed):
        logger.warning("Rejected %s call: not confirmed by the user", call.name)
        tracker = _carried_state(call, proposed, [])
        return TurnOutcome(
            reply=response.reply,
            tracker=tracker.model_copy(update={"needs_confirmation": True}),
            rejection="confirmation required",
        )

    return TurnOutcome(reply=response.reply, tracker=empty_tracker(), call=call, arguments=arguments)


class DialogueMachine:
    """Runs one turn against the oracle. Holds no state between turns."""

    def __init__(self, oracle: IntentOracle):
        self.oracle = oracle

    async def advance(
        self,
        message: str,
        history: list[Message],
        context: list[Task],
        tracker: Optional[Tracker] = None,
    ) -> TurnOutcome:
        prior = canonicalize(tracker) if tracker is not None else empty_tracker()
        response = await self.oracle.respond(message, history, context, prior)
        outcome = decide(prior, response)
        logger.info("Turn %s -> %s", state_of(prior).value, outcome.state.value)
        return outcome
