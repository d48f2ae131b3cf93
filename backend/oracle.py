"""
Intent oracle: turns a chat turn into {reply, function_call?, tracker}.

The model behind it is untrusted. This module only guarantees the response
has the right shape; completeness and confirmation are checked by the
dialogue machine.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

import anthropic
from pydantic import ValidationError

from errors import OracleFailure
from models import Message, OracleResponse, Task
from prompts import SYSTEM_PROMPT
from tracker import Tracker, tracker_to_dict

logger = logging.getLogger(__name__)


class IntentOracle(Protocol):
    async def respond(
        self,
        message: str,
        history: list[Message],
        context: list[Task],
        tracker: Tracker,
    ) -> OracleResponse:
        ...


def strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code block if present."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]  # Remove first line (```json)
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]  # Remove last line (```)
        text = "\n".join(lines)
    return text


def parse_oracle_response(text: str) -> OracleResponse:
    try:
        parsed = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        raise OracleFailure("Failed to parse AI response") from e
    if not isinstance(parsed, dict):
        raise OracleFailure("AI response is not a JSON object")
    try:
        return OracleResponse.model_validate(parsed)
    except ValidationError as e:
        raise OracleFailure(f"AI response has an unexpected shape: {e.error_count()} error(s)") from e


def build_turn_content(message: str, context: list[Task], tracker: Tracker) -> str:
    """The final user message: a JSON document with tasks, message and tracker."""
    return json.dumps({
        "contextTasks": [task.model_dump(mode="json") for task in context],
        "user": message,
        "tracker": tracker_to_dict(tracker),
    }, indent=2)


def build_messages(history: list[Message], content: str) -> list[dict]:
    """
    Convert history to Messages API format.
    The API wants the first message from the user and roles alternating, so
    leading assistant messages are dropped and consecutive same-role messages merged.
    """
    messages: list[dict] = []
    for m in history:
        if not messages and m.role != "user":
            continue
        if messages and messages[-1]["role"] == m.role:
            messages[-1]["content"] += "\n\n" + m.content
        else:
            messages.append({"role": m.role, "content": m.content})

    if messages and messages[-1]["role"] == "user":
        messages[-1]["content"] += "\n\n" + content
    else:
        messages.append({"role": "user", "content": content})
    return messages


class ClaudeOracle:
    """Oracle backed by the Anthropic Messages API."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        model: str,
        max_tokens: int = 1024,
        today: Optional[str] = None,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.today = today

    def system_prompt(self) -> str:
        today = self.today or datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return SYSTEM_PROMPT.format(today=today)

    async def respond(
        self,
        message: str,
        history: list[Message],
        context: list[Task],
        tracker: Tracker,
    ) -> OracleResponse:
        messages = build_messages(history, build_turn_content(message, context, tracker))
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=self.system_prompt(),
                messages=messages
            )
        except anthropic.APITimeoutError as e:
            raise OracleFailure("AI request timed out") from e
        except anthropic.APIError as e:
            raise OracleFailure(f"API error: {e}") from e

        text = "".join(block.text for block in response.content if block.type == "text")
        logger.debug("Claude response: %s", text)
        return parse_oracle_response(text)
